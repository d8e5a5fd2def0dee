"""
CLI to run the complete storybook pipeline end-to-end.

Usage:
    python scripts/run_full_pipeline.py --request story_request.yaml

    python scripts/run_full_pipeline.py \
        --child-name Ana --theme moral-values --style pixar-style --language spanish
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict

import yaml
from dotenv import load_dotenv
from tqdm.auto import tqdm

# Ensure project root is on the Python path when running as a script.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from storybook.common import configure_logging, get_settings  # noqa: E402
from storybook.pipeline import StoryLibrary, StorybookPipeline  # noqa: E402
from storybook.storage import LocalStoryStorage, storage_from_settings  # noqa: E402
from storybook.story_generation import StoryRequest  # noqa: E402


class ProgressTracker:
    """
    Provides user-friendly command-line progress updates for the storybook pipeline.
    """

    def __init__(self) -> None:
        self._page_bar: tqdm | None = None

    def __call__(self, stage: str, payload: Dict[str, Any]) -> None:
        match stage:
            case "story:generating":
                name = payload.get("child_name", "the child")
                self._write(f"[1/4] Writing the story for {name}...")
            case "story:generated":
                total = payload.get("total_pages", 0)
                self._write(f"[1/4] Story '{payload.get('title', '')}' ready with {total} pages.")
                self._page_bar = tqdm(total=total, desc="Illustrated pages", unit="page")
            case "character:resolving":
                self._write("[2/4] Building the character profile...")
            case "character:ready":
                self._write(f"[2/4] Character profile ready for {payload.get('name') or 'the protagonist'}.")
            case "images:batch":
                if self._page_bar is not None:
                    self._page_bar.set_description(f"Batch {payload.get('batch')} ({payload.get('size')} images)")
            case "cover:done":
                self._write("[3/4] Cover illustrated.")
            case "cover:failed":
                self._write(f"[3/4] Cover failed ({payload.get('error_type')}); using a placeholder.")
            case "page:done":
                if self._page_bar is not None:
                    self._page_bar.update(1)
            case "page:failed":
                self._write(f"      Page {payload.get('page_number')} failed ({payload.get('error_type')}).")
            case "images:retrying_failed":
                self._write(f"[3/4] Retrying failed pages: {payload.get('failed_pages')}")
            case "images:complete":
                self.close()
                self._write(
                    f"[4/4] {payload.get('successful', 0)}/{payload.get('total', 0)} pages illustrated."
                )

    def close(self) -> None:
        if self._page_bar is not None:
            self._page_bar.close()
            self._page_bar = None

    @staticmethod
    def _write(message: str) -> None:
        tqdm.write(message)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the full storybook generation pipeline.")
    parser.add_argument(
        "--request",
        default=None,
        help="Path to a story request YAML/JSON file (childName, theme, style, language, age).",
    )
    parser.add_argument("--child-name", default=None, help="Name of the child starring in the story.")
    parser.add_argument("--theme", default=None, help="Theme id, e.g. moral-values.")
    parser.add_argument("--style", default=None, help="Illustration style id, e.g. pixar-style.")
    parser.add_argument("--language", default=None, help="english or spanish.")
    parser.add_argument("--age", default=None, help="Age or age range such as 4-7.")
    parser.add_argument("--custom-prompt", default=None, help="Additional considerations for the story.")
    parser.add_argument(
        "--pages",
        type=int,
        default=None,
        help="Override the configured page count.",
    )
    parser.add_argument(
        "--stories-root",
        default=None,
        help="Store story folders under this directory instead of the configured backend.",
    )
    parser.add_argument(
        "--placeholders",
        action="store_true",
        help="Skip the image model and use placeholder images.",
    )
    parser.add_argument(
        "--output",
        default=None,
        help="Optional YAML file to export the finished story document to.",
    )
    return parser.parse_args()


def load_request_mapping(path: Path) -> Dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    suffix = path.suffix.lower()
    if suffix in {".yaml", ".yml"}:
        data = yaml.safe_load(text)
    elif suffix == ".json":
        data = json.loads(text)
    else:
        raise ValueError("Unsupported request file format. Use YAML or JSON.")

    if not isinstance(data, Dict):
        raise ValueError("Request file must deserialize to a mapping.")
    return data


def build_request(args: argparse.Namespace) -> StoryRequest:
    mapping: Dict[str, Any] = load_request_mapping(Path(args.request)) if args.request else {}
    overrides = {
        "childName": args.child_name,
        "theme": args.theme,
        "style": args.style,
        "language": args.language,
        "age": args.age,
        "customPrompt": args.custom_prompt,
    }
    mapping.update({key: value for key, value in overrides.items() if value is not None})
    return StoryRequest.from_mapping(mapping)


async def run(args: argparse.Namespace) -> int:
    settings = get_settings()
    configure_logging(settings.log_level)

    config = settings.pipeline_config()
    if args.pages is not None:
        config = config.with_overrides(page_count=args.pages)
    if args.placeholders:
        config = config.with_overrides(use_placeholder_images=True)

    storage = LocalStoryStorage(args.stories_root) if args.stories_root else storage_from_settings(settings)
    pipeline = StorybookPipeline(
        config=config,
        storage=storage,
        text_api_key=settings.openai_api_key,
        image_api_token=settings.replicate_api_token,
    )
    library = StoryLibrary(storage, downloader=pipeline.downloader)
    request = build_request(args)
    tracker = ProgressTracker()

    try:
        document = await pipeline.generate_story(request, progress_callback=tracker)
        result = await pipeline.illustrate(document, progress_callback=tracker)
    finally:
        tracker.close()

    saved = await library.save_story(document)
    for warning in [*result.warnings, *saved["warnings"]]:
        tqdm.write(f"warning: {warning}")

    if args.output:
        output_path = Path(args.output)
        output_path.write_text(document.to_yaml(), encoding="utf-8")
        print(f"Exported story document to {output_path}")

    print(f"Saved story to {saved['storyFolder']} (PDF: {saved['savedFiles']['pdf']})")
    return 0


def main() -> int:
    load_dotenv()
    args = parse_args()
    return asyncio.run(run(args))


if __name__ == "__main__":
    raise SystemExit(main())

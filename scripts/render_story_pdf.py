"""
Render a saved story (story.json or a YAML export) into a printable PDF.

Usage:
    python scripts/render_story_pdf.py \
        --story public/stories/ana_y_el_bosque/story.json \
        --output ana_y_el_bosque.pdf
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Ensure project root is on the Python path.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from storybook.common import configure_logging, get_settings  # noqa: E402
from storybook.pdf_generation import StorybookPDFBuilder  # noqa: E402
from storybook.pdf_generation.builder import PAGE_SIZES  # noqa: E402
from storybook.storage import ImageDownloader, LocalStoryStorage  # noqa: E402
from storybook.story_generation import StoryDocument  # noqa: E402


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Convert a saved story document into a storybook PDF."
    )
    parser.add_argument(
        "--story",
        required=True,
        help="Path to story.json or a YAML export (output of run_full_pipeline.py).",
    )
    parser.add_argument(
        "--output",
        required=True,
        help="Destination PDF file path.",
    )
    parser.add_argument(
        "--page-size",
        choices=sorted(PAGE_SIZES.keys()),
        default="a4",
        help="Page size to render (default: a4).",
    )
    parser.add_argument(
        "--margin",
        type=float,
        default=50.0,
        help="Page margin in points (default: 50).",
    )
    parser.add_argument(
        "--font-dir",
        action="append",
        default=[],
        help="Extra directory searched for the story TTF fonts (repeatable).",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=30.0,
        help="Timeout in seconds for downloading illustration assets (default: 30).",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    settings = get_settings()
    configure_logging(settings.log_level)

    document = StoryDocument.from_file(args.story)
    downloader = ImageDownloader(
        storage=LocalStoryStorage(settings.stories_root, url_prefix=settings.stories_url_prefix),
        timeout=args.timeout,
    )
    builder = StorybookPDFBuilder(
        page_size=PAGE_SIZES[args.page_size],
        margin=args.margin,
        image_loader=downloader.get_bytes,
        font_dirs=args.font_dir,
        request_timeout=args.timeout,
    )
    summary = builder.build(document, args.output)

    print(f"Rendered storybook PDF to {args.output} ({summary.page_count} pages, font {summary.font})")
    if summary.missing_images:
        print(f"Images not available for: {', '.join(summary.missing_images)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

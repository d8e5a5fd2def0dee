import base64
import json
import re
from io import BytesIO

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from storybook.common import ChatResult, PipelineConfig, Settings
from storybook.pipeline import StoryLibrary, StorybookPipeline
from storybook.storage import ImageDownloader, LocalStoryStorage
from storybook.web import create_app

PROFILE_TEXT = (
    "Age: 7-year-old girl\n"
    "Hair: curly red hair tied with a yellow ribbon\n"
    "Eyes: round green eyes\n"
    "Main outfit: blue overalls over a white t-shirt"
)

_PAGE_IN_PROMPT = re.compile(r"page (\d+)")


def png_bytes(color: str = "orange", size: tuple[int, int] = (8, 6)) -> bytes:
    buffer = BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def png_data_url(color: str = "orange") -> str:
    return "data:image/png;base64," + base64.b64encode(png_bytes(color)).decode("ascii")


def story_payload(page_count: int, *, title: str = "Ana y el Bosque Magico", name: str = "Ana") -> dict:
    return {
        "title": title,
        "coverDescription": f"{name} smiling at the entrance of a magical forest full of fireflies.",
        "pages": [
            {
                "pageNumber": number,
                "content": f"{name} camina por el bosque y descubre algo nuevo en la pagina {number}.",
                "imageDescription": (
                    f"{name} is a seven-year-old girl with curly red hair. "
                    f"Scene {number}: she explores a sunny forest clearing."
                ),
            }
            for number in range(1, page_count + 1)
        ],
    }


class FakeClock:
    """Monotonic clock whose ``sleep`` advances time instead of waiting."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeCompletion:
    """Stand-in for ``call_chat_completion`` routing on the prompt it receives."""

    def __init__(self, payload: dict, *, characters: dict | None = None, profile: str = PROFILE_TEXT) -> None:
        self.payload = payload
        self.characters = characters if characters is not None else {
            "Ana": "A seven-year-old girl with curly red hair and blue overalls."
        }
        self.profile = profile
        self.calls: list[dict] = []

    async def __call__(self, *, model, messages, temperature=None, api_key=None, json_mode=False, **kwargs):
        self.calls.append({"model": model, "messages": list(messages), "json_mode": json_mode})
        system = messages[0]["content"]
        if "character profile for a children's book protagonist" in messages[-1]["content"]:
            return ChatResult(text=self.profile, raw=None)
        if "character descriptions for illustrations" in system:
            return ChatResult(text=json.dumps(self.characters), raw=None)
        return ChatResult(text=json.dumps(self.payload), raw=None)


class FakeVendorError(Exception):
    def __init__(self, message: str, status: int) -> None:
        super().__init__(message)
        self.status = status


class FakeImageGenerator:
    """
    Returns a PNG data URL per call. Pages listed in ``failing_pages`` raise with
    ``failure_status`` on every attempt.
    """

    def __init__(self, *, failing_pages=(), failure_status: int = 500, fail_cover: bool = False) -> None:
        self.failing_pages = set(failing_pages)
        self.failure_status = failure_status
        self.fail_cover = fail_cover
        self.prompts: list[str] = []
        self.references: list[str | None] = []

    def page_calls(self) -> list[int]:
        numbers = []
        for prompt in self.prompts:
            match = _PAGE_IN_PROMPT.search(prompt)
            if match:
                numbers.append(int(match.group(1)))
        return numbers

    def cover_calls(self) -> int:
        return sum(1 for prompt in self.prompts if "front cover" in prompt)

    async def generate_image(self, prompt, *, reference_image=None, **kwargs):
        self.prompts.append(prompt)
        self.references.append(reference_image)
        match = _PAGE_IN_PROMPT.search(prompt)
        if match and int(match.group(1)) in self.failing_pages:
            raise FakeVendorError(f"upstream rejected page {match.group(1)}", self.failure_status)
        if self.fail_cover and "front cover" in prompt:
            raise FakeVendorError("upstream rejected the cover", self.failure_status)
        return [png_data_url()]


@pytest.fixture(name="clock")
def clock_fixture():
    return FakeClock()


@pytest.fixture(name="storage")
def storage_fixture(tmp_path):
    return LocalStoryStorage(tmp_path / "stories")


@pytest.fixture(name="image_generator")
def image_generator_fixture():
    return FakeImageGenerator()


@pytest.fixture(name="config")
def config_fixture():
    return PipelineConfig(page_count=8, sse_interval_seconds=0.0)


@pytest.fixture(name="completion")
def completion_fixture(config: PipelineConfig):
    return FakeCompletion(story_payload(config.page_count))


@pytest.fixture(name="pipeline")
def pipeline_fixture(config, storage, image_generator, completion, clock):
    return StorybookPipeline(
        config=config,
        storage=storage,
        image_generator=image_generator,
        downloader=ImageDownloader(storage=storage, sleep=clock.sleep),
        completion_fn=completion,
        sleep=clock.sleep,
        clock=clock,
    )


@pytest.fixture(name="library")
def library_fixture(pipeline: StorybookPipeline):
    return StoryLibrary(pipeline.storage, downloader=pipeline.downloader)


@pytest.fixture(name="client")
def client_fixture(pipeline, library, tmp_path):
    settings = Settings(log_level="WARNING", stories_root=tmp_path / "stories")
    app = create_app(settings, pipeline=pipeline, library=library)
    with TestClient(app) as client:
        yield client

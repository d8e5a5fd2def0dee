"""
Single-image rendering: retries, error classification and placeholders.
"""
import asyncio

import httpx
import pytest

from storybook.ai_generation import (
    Illustrator,
    classify_image_error,
    is_placeholder,
    placeholder_cover_url,
    placeholder_page_url,
)
from storybook.common import ImageGenerationError, PipelineConfig

from .conftest import FakeClock, FakeImageGenerator, FakeVendorError


class TestClassification:
    @pytest.mark.parametrize(
        "status, expected",
        [
            (400, "CONTENT_POLICY_VIOLATION"),
            (422, "CONTENT_POLICY_VIOLATION"),
            (429, "RATE_LIMIT_EXCEEDED"),
            (401, "AUTHENTICATION_ERROR"),
            (403, "AUTHENTICATION_ERROR"),
            (503, "SERVER_ERROR"),
        ],
    )
    def test_status_codes(self, status, expected):
        assert classify_image_error(FakeVendorError("failed", status)) == expected

    def test_timeouts(self):
        assert classify_image_error(httpx.ReadTimeout("slow")) == "TIMEOUT_ERROR"
        assert classify_image_error(asyncio.TimeoutError()) == "TIMEOUT_ERROR"

    def test_message_markers(self):
        assert classify_image_error(RuntimeError("NSFW content detected")) == "CONTENT_POLICY_VIOLATION"
        assert classify_image_error(RuntimeError("something odd")) == "UNKNOWN_ERROR"


class TestPlaceholders:
    def test_page_placeholder_rotates_colors(self):
        first = placeholder_page_url(1, "pixar-style")
        sixth = placeholder_page_url(6, "pixar-style")
        assert first.startswith("https://placehold.co/1024x1024/9089fc/ffffff?text=Page+1:")
        assert "/9089fc/ffffff?" in sixth
        assert "pixar-style" in first

    def test_cover_placeholder(self):
        url = placeholder_cover_url("El Bosque")
        assert "/FF8C42/ffffff?" in url
        assert "Cover:+El+Bosque" in url
        assert is_placeholder(url)
        assert not is_placeholder("/stories/el_bosque/cover.png")
        assert not is_placeholder("")


def _illustrator(generator, clock, **overrides) -> Illustrator:
    config = PipelineConfig(**overrides)
    return Illustrator(generator, config=config, sleep=clock.sleep)


class TestIllustrator:
    def test_returns_first_url(self, clock: FakeClock):
        generator = FakeImageGenerator()
        url = asyncio.run(_illustrator(generator, clock).render("Create an illustration for page 1", label="Page 1"))
        assert url.startswith("data:image/png;base64,")
        assert len(generator.prompts) == 1

    def test_server_errors_are_retried_with_linear_backoff(self, clock: FakeClock):
        generator = FakeImageGenerator(failing_pages={2}, failure_status=502)
        illustrator = _illustrator(generator, clock, max_image_attempts=3, image_retry_delay=3.0)

        with pytest.raises(ImageGenerationError) as excinfo:
            asyncio.run(illustrator.render("Create an illustration for page 2", label="Page 2", page_number=2))

        assert excinfo.value.error_type == "SERVER_ERROR"
        assert len(generator.prompts) == 3
        assert clock.sleeps == [3.0, 6.0]

    def test_policy_violation_goes_straight_to_simplified_prompt(self, clock: FakeClock):
        generator = FakeImageGenerator(failing_pages={4}, failure_status=400)
        illustrator = _illustrator(generator, clock, max_image_attempts=3)

        url = asyncio.run(
            illustrator.render(
                "Create an illustration for page 4: a scary night",
                label="Page 4",
                illustration_style="pixar-style",
                page_number=None,
            )
        )

        assert url.startswith("data:image/png")
        assert len(generator.prompts) == 2
        assert generator.prompts[1].startswith("A safe, child-friendly illustration")
        assert clock.sleeps == []

    def test_policy_violation_without_simplification(self, clock: FakeClock):
        generator = FakeImageGenerator(failing_pages={4}, failure_status=400)
        illustrator = _illustrator(generator, clock, simplify_on_policy_violation=False)

        with pytest.raises(ImageGenerationError) as excinfo:
            asyncio.run(illustrator.render("Create an illustration for page 4", label="Page 4", page_number=4))

        assert excinfo.value.error_type == "CONTENT_POLICY_VIOLATION"
        assert len(generator.prompts) == 1

    def test_prompt_is_sanitized_and_trimmed(self, clock: FakeClock):
        generator = FakeImageGenerator()
        illustrator = _illustrator(generator, clock, max_prompt_length=60)
        prompt = "A violent wind over the hills\n\n" + "detail " * 50

        asyncio.run(illustrator.render(prompt, label="Cover"))

        assert generator.prompts == ["A gentle wind over the hills"]

    def test_simplified_prompt_respects_the_configured_budget(self, clock: FakeClock):
        generator = FakeImageGenerator(failing_pages={4}, failure_status=400)
        illustrator = _illustrator(generator, clock, max_prompt_length=40)

        asyncio.run(illustrator.render("Create an illustration for page 4", label="Page 4"))

        assert generator.prompts[1].startswith("A safe, child-friendly")
        assert len(generator.prompts[1]) <= 40

    def test_reference_image_reaches_the_model(self, clock: FakeClock):
        generator = FakeImageGenerator()
        asyncio.run(
            _illustrator(generator, clock).render(
                "Create an illustration for page 1", label="Page 1", reference_image="data:image/png;base64,AAAA"
            )
        )
        assert generator.references == ["data:image/png;base64,AAAA"]

    def test_empty_output_counts_as_failure(self, clock: FakeClock):
        class EmptyGenerator:
            async def generate_image(self, prompt, *, reference_image=None, **kwargs):
                return []

        illustrator = _illustrator(EmptyGenerator(), clock, max_image_attempts=2)
        with pytest.raises(ImageGenerationError) as excinfo:
            asyncio.run(illustrator.render("anything", label="Cover"))
        assert excinfo.value.error_type == "UNKNOWN_ERROR"

"""
End-to-end pipeline behaviour with fake text and image models.
"""
import asyncio
import json

import pytest
import requests

from storybook.common import ImageGenerationError, PipelineConfig, StoryRequestError
from storybook.pipeline import StorybookPipeline, needs_story_text
from storybook.storage import ImageDownloader, LocalStoryStorage, to_data_url
from storybook.story_generation import Page, StoryDocument, StoryRequest

from .conftest import PROFILE_TEXT, FakeClock, FakeCompletion, FakeImageGenerator, png_bytes, story_payload

FOLDER = "ana_y_el_bosque_magico"


def make_pipeline(storage, clock, *, image_generator=None, downloader=None, **config_overrides):
    config = PipelineConfig(**{"page_count": 3, **config_overrides})
    return StorybookPipeline(
        config=config,
        storage=storage,
        image_generator=image_generator,
        downloader=downloader or ImageDownloader(storage=storage, sleep=clock.sleep),
        completion_fn=FakeCompletion(story_payload(config.page_count)),
        sleep=clock.sleep,
        clock=clock,
    )


def make_document(page_count: int) -> StoryDocument:
    document = StoryDocument.from_dict(story_payload(page_count))
    document.main_character = "Ana"
    document.illustration_style = "pixar-style"
    document.language = "spanish"
    return document


def spanish_request() -> StoryRequest:
    return StoryRequest.from_mapping(
        {"childName": "Ana", "theme": "moral-values", "style": "pixar-style", "language": "spanish"}
    )


class TestFullIllustration:
    def test_story_and_all_images(self, pipeline: StorybookPipeline, image_generator, storage, clock):
        stages = []

        async def scenario():
            document = await pipeline.generate_story(
                spanish_request(), progress_callback=lambda stage, payload: stages.append(stage)
            )
            result = await pipeline.illustrate(
                document, progress_callback=lambda stage, payload: stages.append(stage)
            )
            return document, result

        document, result = asyncio.run(scenario())

        assert document.characters == {"Ana": "A seven-year-old girl with curly red hair and blue overalls."}
        assert document.character_profile == PROFILE_TEXT
        assert document.cover_image == f"/stories/{FOLDER}/cover.png"
        assert document.page_images == [f"/stories/{FOLDER}/page{number}.png" for number in range(1, 9)]
        assert storage.path_for(FOLDER, "page8.png").is_file()
        assert result.all_pages_generated
        assert result.images_generated == 8
        assert result.used_fallback_images is False
        assert result.warnings == []

        assert len(image_generator.prompts) == 9
        assert all("curly red hair tied with a yellow ribbon" in prompt for prompt in image_generator.prompts)

        # Cover plus eight pages is a batch of five then a batch of four that waits for refill.
        assert clock.sleeps == [pytest.approx(4 / (5 / 62.0))]
        assert stages.count("images:batch") == 2
        assert stages[0] == "story:generating"
        assert stages[-1] == "images:complete"

        progress = json.loads(storage.path_for(FOLDER, "generation_progress.json").read_text())
        assert progress["coverGenerated"] is True
        assert progress["pagesGenerated"] == list(range(1, 9))
        story = json.loads(storage.path_for(FOLDER, "story.json").read_text())
        assert story["pages"][0]["imageUrl"] == f"/stories/{FOLDER}/page1.png"

    def test_run_response_shape(self, pipeline: StorybookPipeline):
        response = asyncio.run(pipeline.run(spanish_request()))

        assert response["title"] == "Ana y el Bosque Magico"
        assert response["language"] == "Spanish"
        assert response["totalPages"] == 8
        assert len(response["pageImages"]) == 8
        assert response["pages"][0]["pageNumber"] == 1
        debug = response["_debug"]
        assert debug["promptsGenerated"] == 9
        assert debug["imagesGenerated"] == 8
        assert debug["generationTime"].endswith("ms")
        assert debug["usedFallbackImages"] is False
        assert debug["failedPages"] == []


class TestFailures:
    def test_failed_page_is_retried_once_after_pause(self, storage, clock: FakeClock):
        generator = FakeImageGenerator(failing_pages={2}, failure_status=500)
        pipeline = make_pipeline(storage, clock, image_generator=generator)

        result = asyncio.run(pipeline.illustrate(make_document(3)))

        assert generator.page_calls().count(2) == 3
        assert 65.0 in clock.sleeps
        assert result.summary["failedPages"] == [2]
        assert result.summary["successful"] == 2
        assert not result.all_pages_generated
        assert "placehold.co" in result.document.pages[1].image_url
        assert any("Page 2" in warning for warning in result.warnings)
        assert result.used_fallback_images is True

    def test_no_second_pass_when_every_page_fails(self, storage, clock: FakeClock):
        generator = FakeImageGenerator(failing_pages={1, 2, 3}, failure_status=500)
        pipeline = make_pipeline(storage, clock, image_generator=generator)

        result = asyncio.run(pipeline.illustrate(make_document(3)))

        assert sorted(generator.page_calls()) == [1, 1, 2, 2, 3, 3]
        assert 65.0 not in clock.sleeps
        assert result.summary["failed"] == 3
        assert result.images_generated == 0

    def test_cover_failure_uses_placeholder(self, storage, clock: FakeClock):
        generator = FakeImageGenerator(fail_cover=True, failure_status=503)
        pipeline = make_pipeline(storage, clock, image_generator=generator)

        result = asyncio.run(pipeline.illustrate(make_document(3)))

        assert "placehold.co" in result.document.cover_image
        assert result.all_pages_generated
        assert any("Cover" in warning for warning in result.warnings)

    def test_storage_failure_keeps_remote_url(self, storage, clock: FakeClock):
        class RemoteGenerator(FakeImageGenerator):
            async def generate_image(self, prompt, *, reference_image=None, **kwargs):
                self.prompts.append(prompt)
                return ["https://replicate.delivery/output.png"]

        class OfflineSession:
            def get(self, url, timeout):
                raise requests.ConnectionError("offline")

        downloader = ImageDownloader(storage=storage, session=OfflineSession(), attempts=1, sleep=clock.sleep)
        pipeline = make_pipeline(storage, clock, image_generator=RemoteGenerator(), downloader=downloader)

        result = asyncio.run(pipeline.illustrate(make_document(3)))

        assert result.document.page_images == ["https://replicate.delivery/output.png"] * 3
        assert result.all_pages_generated
        assert any("page1.png" in warning for warning in result.warnings)

    def test_placeholder_mode_skips_the_image_model(self, storage, clock: FakeClock):
        generator = FakeImageGenerator()
        pipeline = make_pipeline(storage, clock, image_generator=generator, use_placeholder_images=True)

        result = asyncio.run(pipeline.illustrate(make_document(3)))

        assert generator.prompts == []
        assert all("placehold.co" in url for url in result.document.page_images)
        assert "placehold.co" in result.document.cover_image
        assert result.images_generated == 0
        assert result.used_fallback_images is True


class TestResume:
    def test_only_missing_pages_are_requested(self, storage: LocalStoryStorage, clock: FakeClock):
        storage.write_json(
            FOLDER,
            "generation_progress.json",
            {"coverGenerated": True, "pagesGenerated": [1, 2], "failedPages": [3]},
        )
        for filename in ("cover.png", "page1.png", "page2.png"):
            storage.write_bytes(FOLDER, filename, b"existing")
        generator = FakeImageGenerator()
        pipeline = make_pipeline(storage, clock, image_generator=generator)

        result = asyncio.run(pipeline.illustrate(make_document(3)))

        assert generator.page_calls() == [3]
        assert generator.cover_calls() == 0
        assert result.skipped_pages == [1, 2]
        assert result.document.cover_image == f"/stories/{FOLDER}/cover.png"
        assert result.document.page_images[0] == f"/stories/{FOLDER}/page1.png"
        assert result.summary["pagesGenerated"] == [1, 2, 3]
        assert result.summary["failedPages"] == []


class TestCharacterReference:
    def test_stored_sheet_is_sent_with_every_image(self, storage: LocalStoryStorage, clock: FakeClock):
        sheet = png_bytes("purple")
        storage.write_bytes(FOLDER, "character_profile.png", sheet)
        generator = FakeImageGenerator()
        pipeline = make_pipeline(storage, clock, image_generator=generator)

        asyncio.run(pipeline.illustrate(make_document(3)))

        assert len(generator.references) == 4
        assert set(generator.references) == {to_data_url(sheet)}

    def test_no_reference_without_a_sheet(self, storage: LocalStoryStorage, clock: FakeClock):
        generator = FakeImageGenerator()
        pipeline = make_pipeline(storage, clock, image_generator=generator)

        asyncio.run(pipeline.illustrate(make_document(3)))

        assert generator.references == [None] * 4


class TestRegenerate:
    def _store_story(self, pipeline, storage):
        document = make_document(3)
        document.character_profile = PROFILE_TEXT
        storage.write_json(FOLDER, "story.json", document.to_dict())

    def test_page_regeneration_with_feedback(self, storage, clock: FakeClock):
        generator = FakeImageGenerator()
        pipeline = make_pipeline(storage, clock, image_generator=generator)
        self._store_story(pipeline, storage)

        response = asyncio.run(
            pipeline.regenerate_image(
                story_id="story-1",
                page_index=1,
                feedback={"type": "text_visibility"},
                title="Ana y el Bosque Magico",
            )
        )

        assert response["success"] is True
        assert response["imageUrl"].startswith(f"/stories/{FOLDER}/")
        assert response["imageUrl"].endswith("-page2.png")
        prompt = generator.prompts[-1]
        assert "illustration for page 2" in prompt
        assert "CRITICAL TEXT-FREE INSTRUCTIONS" in prompt
        assert "curly red hair tied with a yellow ribbon" in prompt

    def test_cover_regeneration(self, storage, clock: FakeClock):
        generator = FakeImageGenerator()
        pipeline = make_pipeline(storage, clock, image_generator=generator)
        self._store_story(pipeline, storage)

        response = asyncio.run(
            pipeline.regenerate_image(
                story_id="story-1",
                page_index="cover",
                feedback="Make the title bigger",
                title="Ana y el Bosque Magico",
            )
        )

        assert response["imageUrl"].endswith("-cover.png")
        assert "Make the title bigger" in generator.prompts[-1]

    def test_invalid_page_index(self, storage, clock: FakeClock):
        pipeline = make_pipeline(storage, clock, image_generator=FakeImageGenerator())
        with pytest.raises(StoryRequestError):
            asyncio.run(pipeline.regenerate_image(story_id="x", page_index=-1, feedback=None))
        with pytest.raises(StoryRequestError):
            asyncio.run(pipeline.regenerate_image(story_id="x", page_index=7, feedback=None))

    def test_without_image_model(self, storage, clock: FakeClock):
        pipeline = make_pipeline(storage, clock, use_placeholder_images=True)
        with pytest.raises(ImageGenerationError):
            asyncio.run(
                pipeline.regenerate_image(
                    story_id="x", page_index=0, feedback=None, page_data={"imageDescription": "A forest"}
                )
            )


class TestCharacterSheet:
    def test_sheet_from_pages(self, storage, clock: FakeClock):
        generator = FakeImageGenerator()
        pipeline = make_pipeline(storage, clock, image_generator=generator)
        pages = make_document(2).pages

        response = asyncio.run(
            pipeline.create_character_sheet(
                story_id="story-1",
                title="Ana y el Bosque Magico",
                illustration_style="pixar-style",
                pages=pages,
            )
        )

        assert response["characterName"] == "Ana"
        assert response["characterDescription"] == "Ana is a seven-year-old girl with curly red hair."
        assert response["characterProfileUrl"] == f"/stories/{FOLDER}/character_profile.png"
        assert "character profile sheet for Ana" in response["characterProfilePrompt"]
        assert storage.path_for(FOLDER, "character_profile.png").is_file()

    def test_missing_details(self, storage, clock: FakeClock):
        pipeline = make_pipeline(storage, clock, image_generator=FakeImageGenerator())
        with pytest.raises(StoryRequestError):
            asyncio.run(
                pipeline.create_character_sheet(
                    story_id="story-1", title="T", illustration_style="pixar-style", character_name="Ana"
                )
            )


class TestNeedsStoryText:
    def test_rules(self):
        complete = [Page(1, "text", image_description="scene")]
        assert needs_story_text("cover", complete) is False
        assert needs_story_text(None, complete) is True
        assert needs_story_text("cover", []) is True
        assert needs_story_text("cover", [Page(1, "text")]) is True

"""
Story request parsing, text generation and character extraction.
"""
import asyncio
import json

import pytest

from storybook.common import ChatResult, GenerationFormatError, StoryRequestError
from storybook.story_generation import (
    Page,
    StoryDocument,
    StoryRequest,
    StoryTextGenerator,
    build_story_prompt,
    extract_character_from_pages,
    story_folder_name,
)
from storybook.story_generation.request import age_group, age_prompt, normalize_language

from .conftest import FakeCompletion, story_payload


def spanish_request(**overrides) -> StoryRequest:
    data = {"childName": "Ana", "theme": "moral-values", "style": "pixar-style", "language": "spanish", "age": "4-7"}
    data.update(overrides)
    return StoryRequest.from_mapping(data)


class TestStoryRequest:
    def test_from_mapping(self):
        request = spanish_request()
        assert request.child_name == "Ana"
        assert request.illustration_style == "pixar-style"
        assert request.language_label == "Spanish"
        assert request.age_group == "early"

    def test_missing_fields_are_all_named(self):
        with pytest.raises(StoryRequestError) as excinfo:
            StoryRequest.from_mapping({"style": "pixar-style"})
        assert "childName" in str(excinfo.value)
        assert "theme" in str(excinfo.value)

    def test_language_defaults_and_validation(self):
        assert normalize_language(None) == "spanish"
        assert normalize_language("English") == "english"
        with pytest.raises(StoryRequestError):
            normalize_language("klingon")

    @pytest.mark.parametrize(
        "age, group",
        [(2, "toddler"), ("4-7", "early"), ("8", "middle"), (11, "older"), (None, "middle"), ("n/a", "middle")],
    )
    def test_age_groups(self, age, group):
        assert age_group(age) == group

    def test_age_prompt_for_known_range(self):
        assert age_prompt("7-10") == "for an independent reader aged 7-10 years"
        assert age_prompt(None) == "for children"


class TestStoryPrompt:
    def test_prompt_mentions_language_name_and_page_count(self):
        prompt = build_story_prompt(spanish_request(), page_count=8)
        assert "in Spanish" in prompt.system
        assert "named Ana" in prompt.system
        assert "exactly 8 pages" in prompt.system
        assert prompt.user.count('"pageNumber"') == 8


class TestStoryTextGenerator:
    def test_generates_document_with_configured_pages(self):
        completion = FakeCompletion(story_payload(8))
        generator = StoryTextGenerator(completion_fn=completion, page_count=8, model="test-model")

        document = asyncio.run(generator.generate_story(spanish_request()))

        assert document.title == "Ana y el Bosque Magico"
        assert [page.page_number for page in document.pages] == list(range(1, 9))
        assert document.language == "spanish"
        assert document.main_character == "Ana"
        assert completion.calls[0]["json_mode"] is True
        assert completion.calls[0]["model"] == "test-model"

    def test_extra_pages_are_truncated(self):
        generator = StoryTextGenerator(completion_fn=FakeCompletion(story_payload(10)), page_count=8)
        document = asyncio.run(generator.generate_story(spanish_request()))
        assert len(document.pages) == 8

    def test_too_few_pages_is_a_format_error(self):
        generator = StoryTextGenerator(completion_fn=FakeCompletion(story_payload(5)), page_count=8)
        with pytest.raises(GenerationFormatError):
            asyncio.run(generator.generate_story(spanish_request()))

    def test_non_json_response_is_a_format_error(self):
        async def completion(**kwargs):
            return ChatResult(text="Once upon a time...", raw=None)

        generator = StoryTextGenerator(completion_fn=completion, page_count=8)
        with pytest.raises(GenerationFormatError):
            asyncio.run(generator.generate_story(spanish_request()))

    def test_missing_title_is_a_format_error(self):
        payload = story_payload(8)
        del payload["title"]
        generator = StoryTextGenerator(completion_fn=FakeCompletion(payload), page_count=8)
        with pytest.raises(GenerationFormatError):
            asyncio.run(generator.generate_story(spanish_request()))

    def test_story_text_is_sanitized(self):
        payload = story_payload(8)
        payload["pages"][0]["content"] = "Nobody wanted to hurt the dragon."
        generator = StoryTextGenerator(completion_fn=FakeCompletion(payload), page_count=8)
        document = asyncio.run(generator.generate_story(spanish_request()))
        assert document.pages[0].content == "Nobody wanted to interact with the dragon."

    def test_describe_characters_falls_back_on_bad_json(self):
        async def completion(**kwargs):
            return ChatResult(text="not json", raw=None)

        generator = StoryTextGenerator(completion_fn=completion, page_count=1)
        document = StoryDocument(title="T", cover_description="c", pages=[Page(1, "text")])
        characters = asyncio.run(generator.describe_characters(document, "Ana"))
        assert list(characters) == ["Ana"]

    def test_describe_characters_flattens_nested_values(self):
        completion = FakeCompletion(story_payload(1), characters={"Ana": {"hair": "red", "eyes": "green"}})
        generator = StoryTextGenerator(completion_fn=completion, page_count=1)
        document = StoryDocument(title="T", cover_description="c", pages=[Page(1, "text")])
        characters = asyncio.run(generator.describe_characters(document, "Ana"))
        assert characters == {"Ana": "hair: red; eyes: green"}


class TestCharacterExtraction:
    def test_name_and_description_from_scene(self):
        pages = [
            Page(1, "Texto.", image_description="Maria is a seven-year-old girl with curly red hair. She waves."),
        ]
        profile = extract_character_from_pages(pages)
        assert profile.name == "Maria"
        assert profile.description == "Maria is a seven-year-old girl with curly red hair."

    def test_explicit_name_skips_detection(self):
        pages = [Page(1, "", image_description="Leo has a green cap. Maria is tall.")]
        profile = extract_character_from_pages(pages, character_name="Leo")
        assert profile.name == "Leo"
        assert profile.description == "Leo has a green cap."

    def test_falls_back_to_page_text(self):
        pages = [Page(1, "Tom was wearing a striped scarf.", image_description="Tom the boy runs.")]
        profile = extract_character_from_pages(pages)
        assert profile.name == "Tom"
        assert profile.description == "Tom was wearing a striped scarf."

    def test_falls_back_to_first_scene(self):
        pages = [Page(1, "", image_description="a quiet meadow at dawn")]
        profile = extract_character_from_pages(pages)
        assert profile.name == "the protagonist"
        assert profile.description == "a quiet meadow at dawn"


class TestStoryDocument:
    def test_folder_name(self):
        assert story_folder_name("Ana y el Bosque Mágico!") == "ana_y_el_bosque_m_gico_"

    def test_dict_round_trip_keeps_camel_case_fields(self):
        payload = story_payload(2)
        payload["illustrationStyle"] = "pixar-style"
        payload["language"] = "spanish"
        document = StoryDocument.from_dict(payload)
        restored = StoryDocument.from_dict(json.loads(document.to_json()))
        assert restored.to_dict() == document.to_dict()
        assert restored.illustration_style == "pixar-style"

    def test_from_dict_requires_title_and_pages(self):
        with pytest.raises(ValueError):
            StoryDocument.from_dict({"pages": []})
        with pytest.raises(ValueError):
            StoryDocument.from_dict({"title": "T"})

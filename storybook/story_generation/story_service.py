"""
Service layer for producing structured storybooks via LiteLLM-compatible models.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Mapping

from storybook.ai_generation.safety import sanitize_prompt
from storybook.common import (
    ChatResult,
    CompletionCallable,
    GenerationFormatError,
    call_chat_completion,
)

from .document import Page, StoryDocument
from .prompting import StoryPrompt, build_character_description_prompt, build_story_prompt
from .request import StoryRequest

logger = logging.getLogger(__name__)

DEFAULT_PAGE_COUNT = 8
FALLBACK_CHARACTER_DESCRIPTION = (
    "The main character of the story. A child with an adventurous spirit."
)


class StoryTextGenerator:
    """
    High-level helper that turns a :class:`StoryRequest` into a :class:`StoryDocument`.
    """

    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str | None = None,
        completion_fn: CompletionCallable | None = None,
        page_count: int = DEFAULT_PAGE_COUNT,
    ) -> None:
        self._api_key = api_key or os.getenv("OPENAI_API_KEY") or os.getenv("LITELLM_API_KEY")
        self._model = (
            model
            or os.getenv("STORYBOOK_TEXT_MODEL")
            or os.getenv("LITELLM_MODEL")
            or "gpt-4o-mini"
        )
        self._completion_fn: CompletionCallable = completion_fn or call_chat_completion
        self._page_count = page_count

    @property
    def model(self) -> str:
        """Return the model identifier in use."""
        return self._model

    @property
    def page_count(self) -> int:
        return self._page_count

    async def generate_story(
        self,
        request: StoryRequest,
        *,
        temperature: float = 0.7,
        **response_kwargs: Any,
    ) -> StoryDocument:
        """
        Invoke the configured LLM once and parse the JSON story it returns.

        Raises
        ------
        GenerationFormatError
            When the response is not a JSON object with ``title``, ``coverDescription``
            and at least ``page_count`` usable pages.
        """
        prompt: StoryPrompt = build_story_prompt(request, page_count=self._page_count)
        result: ChatResult = await self._completion_fn(
            model=self._model,
            messages=[
                {"role": "system", "content": prompt.system},
                {"role": "user", "content": prompt.user},
            ],
            temperature=temperature,
            api_key=self._api_key,
            json_mode=True,
            **response_kwargs,
        )

        payload = result.json_object()
        document = self._parse_story_payload(payload, request)
        logger.info(
            "Story generated with title '%s' (%d pages)", document.title, len(document.pages)
        )
        return document

    async def describe_characters(
        self,
        document: StoryDocument,
        child_name: str,
        *,
        temperature: float | None = None,
    ) -> dict[str, str]:
        """
        Ask for a name -> visual description mapping, falling back to a generic entry.
        """
        prompt = build_character_description_prompt(document, child_name)
        fallback = {child_name: FALLBACK_CHARACTER_DESCRIPTION}

        result = await self._completion_fn(
            model=self._model,
            messages=[
                {"role": "system", "content": prompt.system},
                {"role": "user", "content": prompt.user},
            ],
            temperature=temperature,
            api_key=self._api_key,
            json_mode=True,
        )

        try:
            payload = result.json_object()
        except GenerationFormatError as exc:
            logger.warning("Character descriptions were not a JSON object: %s", exc)
            return fallback

        descriptions = {
            str(name).strip(): _describe(value)
            for name, value in payload.items()
            if str(name).strip() and _describe(value)
        }
        if not descriptions:
            return fallback

        logger.info("Character descriptions created for %d characters", len(descriptions))
        return descriptions

    def _parse_story_payload(
        self,
        payload: Mapping[str, Any],
        request: StoryRequest,
    ) -> StoryDocument:
        title = payload.get("title")
        cover_description = payload.get("coverDescription")
        raw_pages = payload.get("pages")

        if not isinstance(title, str) or not title.strip():
            raise GenerationFormatError("Story response is missing a 'title'.")
        if not isinstance(cover_description, str) or not cover_description.strip():
            raise GenerationFormatError("Story response is missing a 'coverDescription'.")
        if not isinstance(raw_pages, list):
            raise GenerationFormatError("Story response is missing a 'pages' list.")

        pages: list[Page] = []
        for entry in raw_pages:
            if not isinstance(entry, Mapping):
                raise GenerationFormatError(f"Invalid page entry in story response: {entry!r}")
            content = entry.get("content") or entry.get("text")
            if not isinstance(content, str) or not content.strip():
                raise GenerationFormatError("Story page is missing its 'content'.")
            pages.append(
                Page(
                    page_number=len(pages) + 1,
                    content=sanitize_prompt(content.strip()),
                    image_description=sanitize_prompt(
                        str(entry.get("imageDescription") or "").strip()
                    ),
                )
            )

        if len(pages) < self._page_count:
            raise GenerationFormatError(
                f"Story response contained {len(pages)} pages; expected {self._page_count}."
            )
        if len(pages) > self._page_count:
            logger.warning(
                "Story response contained %d pages; keeping the first %d",
                len(pages),
                self._page_count,
            )
            pages = pages[: self._page_count]

        return StoryDocument(
            title=sanitize_prompt(title.strip()),
            cover_description=sanitize_prompt(cover_description.strip()),
            pages=pages,
            language=request.language,
            theme=request.theme,
            illustration_style=request.illustration_style,
            main_character=request.child_name,
        )


def _describe(value: Any) -> str:
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, Mapping):
        parts = [f"{key}: {item}" for key, item in value.items() if item]
        return "; ".join(parts)
    if isinstance(value, list):
        return ", ".join(str(item) for item in value if item)
    return ""

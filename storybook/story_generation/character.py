"""
Protagonist profiles used to keep illustrations visually consistent.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from typing import Any, Sequence

from storybook.ai_generation.prompting import format_consistency_block
from storybook.common import ChatResult, CompletionCallable, call_chat_completion

from .document import Page

logger = logging.getLogger(__name__)

DEFAULT_PROTAGONIST_NAME = "the protagonist"

_NAME_PATTERN = re.compile(
    r"([A-Z][a-z]+)(?:\s+is|\s+was|\s+the\s+(?:boy|girl|child|protagonist|main\s+character))"
)


def _description_pattern(name: str) -> re.Pattern[str]:
    return re.compile(rf"{re.escape(name)}\s+(?:is|was|has|with|wearing)\s+[^.]+\.")


@dataclass(frozen=True)
class CharacterProfile:
    """
    Free-text description of the protagonist's appearance.

    Attributes
    ----------
    name:
        Protagonist name as it appears in the story.
    description:
        Appearance notes repeated verbatim in every image prompt.
    reference_image:
        Optional URL or path of a rendered character sheet.
    """

    name: str
    description: str
    reference_image: str | None = None

    def consistency_block(self) -> str:
        """Format the profile as the block prefixed to every image prompt."""
        return format_consistency_block(self.description)

    def to_dict(self) -> dict[str, Any]:
        return {
            "characterName": self.name,
            "characterDescription": self.description,
            "characterProfileUrl": self.reference_image,
        }


def build_character_profile_prompt(character_name: str) -> str:
    return f"""Create a detailed character profile for a children's book protagonist named {character_name}.
The profile must include EXHAUSTIVE details to ensure consistency across all illustrations.

Physical attributes (be extremely specific):
- Age: Exact age (e.g., "7-year-old")
- Gender/presentation: How the character presents
- Ethnicity/skin tone: Detailed description of skin color and tone
- Hair: Exact color, length, style, texture (e.g., "sandy brown hair in a neat undercut")
- Eyes: Shape, color, distinctive features (e.g., "almond-shaped hazel eyes")
- Face shape: Detailed description of facial structure
- Body type: Build, height relative to age
- Distinctive features: Any unique marks, freckles, dimples, etc.

Clothing and accessories (provide exact details):
- Main outfit: All clothing items with exact colors and style
- Signature items: Any accessories or items always worn
- Color palette: Consistent color scheme for the character

Include 3-5 unique, memorable features that make this character instantly recognizable and should appear in EVERY illustration.

Format the profile as a structured list with categories and specific details that can be directly copied into every image prompt."""


class CharacterProfileGenerator:
    """
    Ask the text model for an exhaustive appearance profile of the protagonist.
    """

    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str | None = None,
        completion_fn: CompletionCallable | None = None,
    ) -> None:
        self._api_key = api_key or os.getenv("OPENAI_API_KEY") or os.getenv("LITELLM_API_KEY")
        self._model = (
            model
            or os.getenv("STORYBOOK_PROFILE_MODEL")
            or os.getenv("LITELLM_MODEL")
            or "gpt-4o"
        )
        self._completion_fn: CompletionCallable = completion_fn or call_chat_completion

    @property
    def model(self) -> str:
        return self._model

    async def generate_profile(
        self,
        character_name: str,
        *,
        temperature: float = 0.7,
    ) -> CharacterProfile:
        result: ChatResult = await self._completion_fn(
            model=self._model,
            messages=[{"role": "user", "content": build_character_profile_prompt(character_name)}],
            temperature=temperature,
            api_key=self._api_key,
        )

        if not result.text:
            raise RuntimeError("LLM response did not contain a character profile.")

        logger.info("Character profile text generated for %s", character_name)
        return CharacterProfile(name=character_name, description=result.text)


def extract_character_from_pages(
    pages: Sequence[Page],
    *,
    character_name: str | None = None,
) -> CharacterProfile:
    """
    Guess the protagonist's name and appearance from already generated pages.

    Scene descriptions are scanned page by page; each name match replaces the previous
    one and the first page yielding a description for it ends the scan. When no scene
    description describes the character the page text is searched, and finally the
    first page's scene description is used verbatim. When several names match, the
    first one found in page order wins; no further disambiguation is attempted.
    """
    name = character_name or ""
    description = ""

    for page in pages:
        scene = page.image_description
        if not scene:
            continue

        if not character_name:
            match = _NAME_PATTERN.search(scene)
            if match is None:
                continue
            name = match.group(1)

        if not name:
            continue

        found = _description_pattern(name).findall(scene)
        if found:
            description = " ".join(found)
            break

    if not description and name:
        for page in pages:
            if not page.content:
                continue
            found = _description_pattern(name).findall(page.content)
            if found:
                description = " ".join(found)
                break

    if not description and pages:
        logger.info("Using first page description as fallback for character details")
        description = pages[0].image_description

    if not name:
        name = DEFAULT_PROTAGONIST_NAME

    return CharacterProfile(name=name, description=description)

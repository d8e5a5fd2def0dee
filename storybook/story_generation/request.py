"""
Structured representation of the storybook form submitted by a parent or guardian.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Mapping

from storybook.common.errors import StoryRequestError

SUPPORTED_LANGUAGES: dict[str, str] = {
    "english": "English",
    "spanish": "Spanish",
}

DEFAULT_LANGUAGE = "spanish"

AGE_RANGE_PROMPTS: dict[str, str] = {
    "1-4": "for a toddler aged 1-4 years",
    "4-7": "for an early reader aged 4-7 years",
    "7-10": "for an independent reader aged 7-10 years",
}

AGE_GROUP_PROMPTS: dict[str, str] = {
    "toddler": AGE_RANGE_PROMPTS["1-4"],
    "early": AGE_RANGE_PROMPTS["4-7"],
    "middle": AGE_RANGE_PROMPTS["7-10"],
    "older": "for a confident reader aged 10 years and up",
}

THEME_DESCRIPTIONS: dict[str, str] = {
    "moral-values": (
        "Moral values focusing on character growth through ethical choices. The story should "
        "illustrate important virtues such as honesty, kindness, responsibility, respect, or fairness. "
        "Include a clear moral dilemma appropriate for the child's age, and show how making the right "
        "choice leads to positive outcomes. The lesson should be conveyed through the story's events "
        "rather than explicit preaching, allowing the child to understand the value through the "
        "character's experience."
    ),
    "social-education": (
        "Social education emphasizing interpersonal skills and emotional intelligence. The story should "
        "explore concepts such as friendship, teamwork, empathy, conflict resolution, or inclusion. The "
        "main character should face a social challenge (like making friends, resolving a disagreement, "
        "or understanding someone different), and learn to navigate it successfully. Include realistic "
        "dialogue and age-appropriate social situations that children can relate to and learn from."
    ),
    "knowledge-building": (
        "Educational content about science, nature, space, animals, or other fascinating subjects "
        "presented through an engaging narrative. The story should weave accurate, age-appropriate facts "
        "into an entertaining plot where the main character discovers or explores something new. The "
        "educational content should feel natural within the story, sparking curiosity and a love of "
        "learning. Include 3-5 interesting facts that would fascinate a child of the specified age."
    ),
    "fantasy-adventure": (
        "An imaginative fantasy adventure with magical elements, creative settings, and an engaging "
        "quest or journey. The story should transport the child to a wondrous world with fantastical "
        "elements (like magical creatures, enchanted objects, or special abilities) while maintaining a "
        "clear narrative arc with age-appropriate challenges. The adventure should encourage creativity, "
        "bravery, and problem-solving, with the main character growing through their experiences in "
        "this magical realm."
    ),
}

# Short ids used by the older form.
THEME_ALIASES: dict[str, str] = {
    "moral": "moral-values",
    "social": "social-education",
    "knowledge": "knowledge-building",
    "fantasy": "fantasy-adventure",
}

DEFAULT_THEME_DESCRIPTION = (
    "A fun and educational story with engaging characters and a meaningful message "
    "appropriate for the child's age."
)


def _coerce_optional_str(value: Any) -> str | None:
    if value is None:
        return None

    text = str(value).strip()
    return text or None


def normalize_language(value: Any) -> str:
    """Return the canonical lowercase language id, raising for unsupported languages."""
    text = _coerce_optional_str(value)
    if text is None:
        return DEFAULT_LANGUAGE

    language = text.lower()
    if language not in SUPPORTED_LANGUAGES:
        supported = ", ".join(sorted(SUPPORTED_LANGUAGES))
        raise StoryRequestError(
            f"Unsupported language '{text}'. Supported languages: {supported}."
        )
    return language


def language_label(language: str) -> str:
    return SUPPORTED_LANGUAGES.get(language.lower(), language)


def _leading_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)

    match = re.match(r"\s*(\d+)", str(value))
    return int(match.group(1)) if match else None


def age_group(age: Any) -> str:
    """
    Bucket an age (or the lower bound of a range like ``"4-7"``) into a reading group.

    Missing or unparsable ages default to ``"middle"``.
    """
    if age is None or age == "":
        return "middle"

    years = _leading_int(age)
    if years is None:
        return "middle"

    if years <= 3:
        return "toddler"
    if years <= 6:
        return "early"
    if years <= 9:
        return "middle"
    return "older"


def age_prompt(age: Any) -> str:
    """Phrase describing the target reader, e.g. ``"for an early reader aged 4-7 years"``."""
    if age is None or age == "":
        return "for children"

    text = str(age).strip()
    if text in AGE_RANGE_PROMPTS:
        return AGE_RANGE_PROMPTS[text]

    if _leading_int(text) is None:
        return "for children"
    return AGE_GROUP_PROMPTS[age_group(text)]


def theme_description(theme: str | None) -> str:
    if not theme:
        return DEFAULT_THEME_DESCRIPTION

    key = theme.strip().lower()
    key = THEME_ALIASES.get(key, key)
    return THEME_DESCRIPTIONS.get(key, DEFAULT_THEME_DESCRIPTION)


@dataclass(frozen=True)
class StoryRequest:
    """
    Canonical representation of the storybook form.

    Attributes
    ----------
    child_name:
        Name of the child starring in the story (required).
    theme:
        Theme id such as ``"moral-values"`` (required).
    illustration_style:
        Illustration style id such as ``"pixar-style"``.
    language:
        Lowercase language id, one of :data:`SUPPORTED_LANGUAGES`.
    age:
        Numeric age or an age range like ``"4-7"``.
    custom_prompt:
        Free-text guidance appended to the theme.
    """

    child_name: str
    theme: str
    illustration_style: str | None = None
    language: str = DEFAULT_LANGUAGE
    age: str | None = None
    custom_prompt: str | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "StoryRequest":
        """
        Build a request from a dict-like object (parsed JSON body, YAML file, CLI flags).
        """
        child_name = _coerce_optional_str(data.get("childName") or data.get("child_name"))
        theme = _coerce_optional_str(data.get("theme"))

        missing = [
            field_name
            for field_name, value in (("childName", child_name), ("theme", theme))
            if not value
        ]
        if missing:
            raise StoryRequestError(f"Missing required fields: {', '.join(missing)}")

        return cls(
            child_name=child_name,  # type: ignore[arg-type]
            theme=theme,  # type: ignore[arg-type]
            illustration_style=_coerce_optional_str(
                data.get("style")
                or data.get("illustrationStyle")
                or data.get("illustration_style")
            ),
            language=normalize_language(data.get("language")),
            age=_coerce_optional_str(
                data.get("age") or data.get("ageRange") or data.get("age_range")
            ),
            custom_prompt=_coerce_optional_str(
                data.get("customPrompt") or data.get("custom_prompt")
            ),
        )

    @property
    def language_label(self) -> str:
        return language_label(self.language)

    @property
    def is_spanish(self) -> bool:
        return self.language == "spanish"

    @property
    def age_group(self) -> str:
        return age_group(self.age)

    @property
    def age_prompt(self) -> str:
        return age_prompt(self.age)

    @property
    def theme_description(self) -> str:
        return theme_description(self.theme)

    def to_dict(self) -> dict[str, Any]:
        return {
            "childName": self.child_name,
            "theme": self.theme,
            "style": self.illustration_style,
            "language": self.language,
            "age": self.age,
            "customPrompt": self.custom_prompt,
        }

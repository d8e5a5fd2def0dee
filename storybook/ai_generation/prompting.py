"""
Prompt construction utilities for storybook illustration generation.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Sequence

NEGATIVE_PROMPT = (
    "text, letters, words, watermark, logo, signature, book pages, book spine, photo of a book, "
    "extra limbs, missing limbs, extra fingers, deformed hands, asymmetrical face"
)

STYLE_DIRECTIVES: dict[str, str] = {
    "pixar-style": "in Pixar 3D animation style, with vibrant colors and detailed textures",
    "disney-classic": "in classic Disney animation style, with fluid lines and warm colors",
    "hand-drawn-watercolor": (
        "in hand-drawn watercolor style, with soft brush strokes and translucent colors"
    ),
    "cartoon-sketch": "in cartoon sketch style, with bold outlines and flat colors",
    "minimalist-modern": (
        "in minimalist modern style, with simple geometric shapes and solid colors"
    ),
}

DEFAULT_STYLE_DIRECTIVE = "in a colorful and child-friendly illustration style"

STYLE_CONSISTENCY_SUFFIX = (
    "Maintain consistent character designs with the same proportions, features, and "
    "clothing styles throughout all illustrations."
)

FEEDBACK_TYPES = (
    "text_visibility",
    "character_appearance",
    "style_mismatch",
    "composition_issue",
    "unwanted_elements",
    "missing_elements",
    "color_scheme",
    "other",
)


@dataclass(frozen=True)
class StorybookPrompt:
    """Container for the positive and negative prompts passed to the image model."""

    positive: str
    negative: str = NEGATIVE_PROMPT


@dataclass(frozen=True)
class ImageFeedback:
    """User feedback attached to an image regeneration request."""

    type: str = "other"
    details: str | None = None
    custom_description: str | None = None

    @classmethod
    def from_value(cls, value: Any) -> "ImageFeedback | None":
        """Accept a free-text string or a ``{type, details, customDescription}`` mapping."""
        if value is None:
            return None

        if isinstance(value, str):
            text = value.strip()
            return cls(type="other", custom_description=text) if text else None

        if isinstance(value, Mapping):
            feedback_type = str(value.get("type") or "other").strip().lower()
            if feedback_type not in FEEDBACK_TYPES:
                feedback_type = "other"
            details = value.get("details")
            custom = value.get("customDescription") or value.get("custom_description")
            return cls(
                type=feedback_type,
                details=str(details).strip() if details else None,
                custom_description=str(custom).strip() if custom else None,
            )

        raise TypeError("feedback must be a string or a mapping.")


def style_directive(style: str | None) -> str:
    if not style:
        return DEFAULT_STYLE_DIRECTIVE
    return STYLE_DIRECTIVES.get(style.strip().lower(), DEFAULT_STYLE_DIRECTIVE)


def _format_bullet_section(title: str, lines: Sequence[str]) -> str:
    bullet_block = "\n".join(f"- {line}" for line in lines if line.strip())
    return f"{title}\n{bullet_block}"


def _format_numbered_section(title: str, lines: Sequence[str]) -> str:
    numbered = "\n".join(f"{index}. {line}" for index, line in enumerate(lines, start=1))
    return f"{title}\n{numbered}"


TEXT_VISIBILITY_REQUIREMENTS = _format_bullet_section(
    "TEXT VISIBILITY REQUIREMENTS:",
    [
        "All text must be LARGE (minimum 24pt equivalent) and CENTERED",
        "Text must have HIGH CONTRAST with its background (e.g., dark text on light background or vice versa)",
        "Text must be placed against a SIMPLE, UNCLUTTERED portion of the image",
        "Each letter must be CLEAR and DISTINCT with appropriate spacing",
        "NO handwriting-style or decorative fonts that sacrifice readability",
        "Text must NOT be positioned near edges or busy areas of the illustration",
    ],
)

TEXT_PROHIBITION_REQUIREMENTS = _format_bullet_section(
    "TEXT PROHIBITION REQUIREMENTS:",
    [
        "DO NOT include ANY text in the illustration whatsoever",
        "NO words, labels, captions, speech bubbles, or text elements of any kind",
        "DO NOT try to include the story text in the image",
        "CREATE ONLY a text-free illustration that visually represents the scene",
        "FOCUS COMPLETELY on creating a beautiful, clear illustration without any text elements",
    ],
)

ANTI_META_REQUIREMENTS = _format_bullet_section(
    "CRITICAL FORMAT REQUIREMENTS:",
    [
        "This must be a DIRECT ILLUSTRATION, NOT a photograph of a book",
        "DO NOT show book pages, spines, edges, or borders",
        'DO NOT create a meta-view of a "book within the image"',
        "DO NOT show the illustration from an angle or perspective",
        "DO NOT include any photographic elements, camera artifacts, or shadows",
        "Create ONLY the actual content of the page as a flat, direct illustration",
    ],
)

ANATOMICAL_CORRECTNESS_REQUIREMENTS = _format_bullet_section(
    "ANATOMICAL CORRECTNESS REQUIREMENTS:",
    [
        "All characters must have EXACTLY the correct number of body parts (two arms, two hands, etc.)",
        "Body proportions must be consistent and anatomically appropriate",
        "No missing, extra, or deformed limbs, fingers, etc.",
        "Character poses must be physically possible and natural",
        "Facial features must be symmetrical and properly aligned",
    ],
)


def format_consistency_block(profile_text: str) -> str:
    """Wrap a character profile in the block repeated verbatim in every image prompt."""
    return (
        "CHARACTER PROFILE (MUST BE FOLLOWED EXACTLY IN EVERY DETAIL):\n"
        f"{profile_text.strip()}\n\n"
        + _format_numbered_section(
            "CRITICAL CONSISTENCY REQUIREMENTS:",
            [
                "Maintain EXACT consistency with all physical attributes described above",
                "Use the SAME unique features in every illustration",
                "Keep clothing and accessories identical unless explicitly stated otherwise",
                "Maintain the same color palette for the character across all illustrations",
                "Render the character in the SAME art style and proportions throughout",
            ],
        )
    )


def _join_sections(sections: Sequence[str | None]) -> str:
    return "\n\n".join(section.strip() for section in sections if section and section.strip())


def build_cover_prompt(
    *,
    title: str,
    cover_description: str,
    character_profile: str | None,
    illustration_style: str | None,
    main_character: str,
) -> str:
    """
    Cover prompt: the title is the only text allowed, rendered under the visibility rules.
    """
    head = (
        f'Create a front cover illustration for a children\'s book titled "{title}", '
        f"{style_directive(illustration_style)}.\n{cover_description.strip()}"
    )
    return _join_sections(
        [
            head,
            format_consistency_block(character_profile) if character_profile else None,
            TEXT_VISIBILITY_REQUIREMENTS,
            ANTI_META_REQUIREMENTS,
            ANATOMICAL_CORRECTNESS_REQUIREMENTS,
            _format_numbered_section(
                "CRITICAL REQUIREMENTS:",
                [
                    f'The ONLY text allowed is the title "{title}"; NO other words, labels, or lettering',
                    "Create a direct illustration, NOT a photograph or meta-representation of a book",
                    f"Character {main_character} MUST be rendered with 100% consistency to the profile above",
                ],
            ),
        ]
    )


def build_page_prompt(
    *,
    page_number: int,
    scene_description: str,
    character_profile: str | None,
    illustration_style: str | None,
    main_character: str,
) -> str:
    head = (
        f"Create an illustration for page {page_number} of a children's story-book "
        f"{style_directive(illustration_style)}.\n"
        f"Scene description:\n{scene_description.strip()}"
    )
    return _join_sections(
        [
            head,
            format_consistency_block(character_profile) if character_profile else None,
            TEXT_PROHIBITION_REQUIREMENTS,
            ANTI_META_REQUIREMENTS,
            ANATOMICAL_CORRECTNESS_REQUIREMENTS,
            _format_numbered_section(
                "CRITICAL REQUIREMENTS:",
                [
                    "Do NOT include ANY text in the illustration",
                    "NO words, lettering, labels, or text elements of any kind should appear",
                    "Create a direct illustration, NOT a photograph or meta-representation of a book",
                    f"Character {main_character} MUST match EXACTLY the character profile above with no deviations",
                ],
            ),
        ]
    )


def build_retry_page_prompt(
    *,
    page_number: int,
    scene_description: str,
    character_profile: str | None,
    illustration_style: str | None,
) -> str:
    """Shortened page prompt used on the second pass over failed pages."""
    head = (
        f"Create an illustration for page {page_number} of a children's story-book "
        f"{style_directive(illustration_style)}.\n"
        f"Scene description:\n{scene_description.strip()}"
    )
    return _join_sections(
        [
            head,
            format_consistency_block(character_profile) if character_profile else None,
            _format_numbered_section(
                "CRITICAL REQUIREMENTS:",
                [
                    "Do NOT include ANY text in the illustration",
                    "NO words, letters, labels, or text elements of any kind",
                    "Create a direct illustration of the scene described above",
                    "Character must be consistent with the description",
                ],
            ),
        ]
    )


def build_simplified_prompt(*, illustration_style: str | None, page_number: int | None) -> str:
    """Minimal prompt tried once after a content-policy rejection."""
    target = "the cover" if page_number is None else f"page {page_number}"
    return (
        f"A safe, child-friendly illustration {style_directive(illustration_style)} "
        f"for {target} of a children's story."
    )


def build_character_sheet_prompt(
    *,
    character_name: str,
    character_description: str,
    illustration_style: str | None,
) -> str:
    style = f"{style_directive(illustration_style)}. {STYLE_CONSISTENCY_SUFFIX}"
    return _join_sections(
        [
            f"Create a character profile sheet for {character_name}, the protagonist of a "
            f"children's book, {style}",
            f"DETAILED CHARACTER DESCRIPTION:\n{character_description.strip()}",
            _format_bullet_section(
                "CRITICAL REQUIREMENTS:",
                [
                    "This must be a FLAT ILLUSTRATION, NOT a photograph",
                    "Create a DIRECT FRONT-FACING view of the character (head-to-toe)",
                    "Show the COMPLETE character with anatomically correct proportions (exactly two arms, two legs)",
                    "Include clear, distinct facial features that can be easily replicated",
                    "Ensure hair style and color are highly distinctive and memorable",
                    "Show detailed clothing with specific colors and patterns",
                    "Character should be posed naturally with a neutral background",
                ],
            ),
            _format_bullet_section(
                "This is a REFERENCE SHEET ONLY, so do NOT include:",
                [
                    "NO text, labels, captions, or words anywhere",
                    "NO background elements, scenes, or other characters",
                    "NO book frames, pages, spines, or meta-representations",
                    "NO photographic angles, lighting effects, or camera artifacts",
                ],
            ),
            "PURPOSE: This reference image will be used to ensure the character appears EXACTLY "
            "the same in all subsequent illustrations. All details must be clear and easy to "
            "reproduce consistently.",
        ]
    )


_FEEDBACK_AMENDMENTS: dict[str, str] = {
    "character_appearance": _format_numbered_section(
        "CRITICAL CHARACTER CONSISTENCY INSTRUCTIONS:",
        [
            "Ensure the character appears EXACTLY as described in the story",
            "Maintain consistent proportions, features, clothing, and coloring",
            "Character should be instantly recognizable as the same character from other illustrations",
            "Follow the exact character description without creative modifications",
            "Match the style guide precisely for this character",
        ],
    ),
    "composition_issue": (
        "IMPORTANT: Improve the composition to create a more balanced and visually appealing "
        "image. Center the main action or characters, create a clear focal point, and use "
        "proper visual hierarchy."
    ),
    "unwanted_elements": (
        "IMPORTANT: Remove any unnecessary or distracting elements from the image. Keep the "
        "composition clean and focused on the main subject and story content."
    ),
    "missing_elements": (
        "IMPORTANT: Include all the key elements mentioned in the description. Ensure all "
        "important story elements are clearly visible and properly represented."
    ),
    "color_scheme": (
        "IMPORTANT: Use a more harmonious and appropriate color scheme. Ensure colors are "
        "child-friendly, visually appealing, and consistent with the style guide."
    ),
}

_COVER_TEXT_AMENDMENT = _format_numbered_section(
    "CRITICAL TEXT READABILITY INSTRUCTIONS:",
    [
        "Make the title text MUCH LARGER and CLEARLY VISIBLE with excellent contrast",
        "Use a simple, highly legible font style",
        "Place title text against a simplified, uncluttered background area",
        "Ensure title text has a contrasting outline or shadow if needed for legibility",
        "Position title text in the center or in a prominent area of the image",
        "Title text must be perfectly readable at a glance",
        "Do NOT stylize the text to the point it becomes difficult to read",
        "ONLY the title text should be included - NO other text elements at all",
    ],
)

_PAGE_TEXT_AMENDMENT = _format_numbered_section(
    "CRITICAL TEXT-FREE INSTRUCTIONS:",
    [
        "Do NOT include ANY text in the image whatsoever",
        "Create a completely text-free illustration",
        "Remove all text elements including any words, labels, or captions",
        "Focus entirely on the visual illustration without any text",
    ],
)


def _final_quality_checks(is_cover: bool) -> str:
    text_rule = (
        "Ensure ONLY the title text is included and is easily readable with proper contrast and sizing"
        if is_cover
        else "Ensure NO text is included anywhere in the illustration"
    )
    return _format_bullet_section(
        "FINAL QUALITY CHECKS:",
        [
            "Verify all characters have anatomically correct features",
            text_rule,
            "Confirm this is a direct illustration, NOT a book photograph",
            "Check that character appearance matches the reference exactly",
        ],
    )


def enhance_prompt_with_feedback(
    base_prompt: str,
    feedback: ImageFeedback | str | Mapping[str, Any] | None,
    *,
    is_cover: bool,
) -> str:
    """
    Append the amendment for the feedback type, any extra details, and the final checks.
    """
    if not isinstance(feedback, ImageFeedback):
        feedback = ImageFeedback.from_value(feedback)
    if feedback is None:
        return base_prompt

    sections = [base_prompt]

    if feedback.type == "text_visibility":
        sections.append(_COVER_TEXT_AMENDMENT if is_cover else _PAGE_TEXT_AMENDMENT)
    elif feedback.type == "style_mismatch":
        sections.append(
            _format_numbered_section(
                "CRITICAL STYLE CONSISTENCY INSTRUCTIONS:",
                [
                    f"Follow the requested {feedback.details or 'illustration style'} with PERFECT accuracy",
                    "The illustration must maintain consistent visual language with other pages",
                    "Use the exact same art techniques, color palette, and stylistic elements",
                    "Do not mix different artistic styles within the same illustration",
                    "Match the overall aesthetic of a professional children's book in this style",
                ],
            )
        )
    elif feedback.type == "other":
        if feedback.custom_description:
            sections.append(f"IMPORTANT: {feedback.custom_description}")
    else:
        sections.append(_FEEDBACK_AMENDMENTS[feedback.type])

    if feedback.details and feedback.type != "other":
        sections.append(f"Additional details: {feedback.details}")

    sections.append(_final_quality_checks(is_cover))
    return _join_sections(sections)

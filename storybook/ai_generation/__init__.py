"""
AI image generation package: prompts, safety filters and the Replicate client.
"""

from .illustrator import (
    Illustrator,
    classify_image_error,
    is_placeholder,
    placeholder_cover_url,
    placeholder_page_url,
)
from .prompting import (
    ImageFeedback,
    StorybookPrompt,
    build_character_sheet_prompt,
    build_cover_prompt,
    build_page_prompt,
    build_retry_page_prompt,
    enhance_prompt_with_feedback,
    format_consistency_block,
    style_directive,
)
from .replicate_service import ReplicateImageGenerator, normalize_image_outputs
from .safety import prepare_prompt, sanitize_prompt, trim_prompt_to_limit

__all__ = [
    "Illustrator",
    "classify_image_error",
    "is_placeholder",
    "placeholder_cover_url",
    "placeholder_page_url",
    "ImageFeedback",
    "StorybookPrompt",
    "build_character_sheet_prompt",
    "build_cover_prompt",
    "build_page_prompt",
    "build_retry_page_prompt",
    "enhance_prompt_with_feedback",
    "format_consistency_block",
    "style_directive",
    "ReplicateImageGenerator",
    "normalize_image_outputs",
    "prepare_prompt",
    "sanitize_prompt",
    "trim_prompt_to_limit",
]

"""
Story text generation: requests, documents, prompts and character profiles.
"""

from .character import (
    CharacterProfile,
    CharacterProfileGenerator,
    extract_character_from_pages,
    format_consistency_block,
)
from .document import Page, StoryDocument, story_folder_name
from .prompting import StoryPrompt, build_story_prompt
from .request import StoryRequest
from .story_service import StoryTextGenerator

__all__ = [
    "StoryRequest",
    "StoryDocument",
    "Page",
    "story_folder_name",
    "StoryPrompt",
    "build_story_prompt",
    "StoryTextGenerator",
    "CharacterProfile",
    "CharacterProfileGenerator",
    "extract_character_from_pages",
    "format_consistency_block",
]

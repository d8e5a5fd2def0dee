"""
Pipeline orchestration: generation, resumable illustration and the story library.
"""

from .library import StoryLibrary
from .pipeline import IllustrationResult, StorybookPipeline, needs_story_text
from .progress import GenerationProgress, ProgressStore

__all__ = [
    "GenerationProgress",
    "IllustrationResult",
    "ProgressStore",
    "StoryLibrary",
    "StorybookPipeline",
    "needs_story_text",
]

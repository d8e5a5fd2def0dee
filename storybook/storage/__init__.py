"""
Story folder persistence: local filesystem or S3, plus image downloads.
"""

from storybook.common import Settings

from .base import (
    CHARACTER_SHEET_FILENAME,
    COVER_FILENAME,
    PROGRESS_FILENAME,
    STORY_FILENAME,
    StoryStorage,
    page_filename,
    pdf_filename,
    regeneration_filename,
)
from .download import ImageDownloader, to_data_url
from .local import LocalStoryStorage
from .s3 import S3StoryStorage


def storage_from_settings(settings: Settings) -> StoryStorage:
    if settings.storage_backend == "s3":
        return S3StoryStorage(
            bucket=settings.s3_bucket or "",
            region=settings.s3_region,
            prefix=settings.s3_prefix,
        )
    return LocalStoryStorage(settings.stories_root, url_prefix=settings.stories_url_prefix)


__all__ = [
    "CHARACTER_SHEET_FILENAME",
    "COVER_FILENAME",
    "PROGRESS_FILENAME",
    "STORY_FILENAME",
    "ImageDownloader",
    "LocalStoryStorage",
    "S3StoryStorage",
    "StoryStorage",
    "page_filename",
    "pdf_filename",
    "regeneration_filename",
    "storage_from_settings",
    "to_data_url",
]

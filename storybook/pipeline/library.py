"""
Saving finished stories into their folder and listing what has been saved.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Mapping

from storybook.common import StorageError
from storybook.pdf_generation import StorybookPDFBuilder
from storybook.storage import (
    COVER_FILENAME,
    STORY_FILENAME,
    ImageDownloader,
    StoryStorage,
    page_filename,
    pdf_filename,
)
from storybook.story_generation import StoryDocument

logger = logging.getLogger(__name__)


class StoryLibrary:
    """
    Persist stories as ``{folder}/story.json``, images and ``{folder}.pdf``.
    """

    def __init__(
        self,
        storage: StoryStorage,
        *,
        downloader: ImageDownloader | None = None,
        pdf_builder: StorybookPDFBuilder | None = None,
    ) -> None:
        self.storage = storage
        self._downloader = downloader or ImageDownloader(storage=storage)
        self._pdf_builder = pdf_builder

    def _builder(self) -> StorybookPDFBuilder:
        if self._pdf_builder is None:
            self._pdf_builder = StorybookPDFBuilder(image_loader=self._downloader.get_bytes)
        return self._pdf_builder

    async def save_story(self, document: StoryDocument) -> dict[str, Any]:
        """
        Copy every image into the story folder, then write ``story.json`` and the PDF.

        Storage failures for any single file are reported in ``warnings`` and the
        remaining files are still attempted.
        """
        folder = document.folder_name
        warnings: list[str] = []
        saved_images: list[str] = []

        targets = [(document, "cover_image", COVER_FILENAME)]
        targets.extend((page, "image_url", page_filename(page.page_number)) for page in document.pages)

        for owner, attribute, filename in targets:
            url = getattr(owner, attribute)
            if not url:
                continue
            if self.storage.locate(url) == (folder, filename):
                saved_images.append(url)
                continue
            try:
                data = await self._downloader.fetch(url)
                stored_url = await asyncio.to_thread(
                    self.storage.write_bytes, folder, filename, data, content_type="image/png"
                )
            except StorageError as exc:
                logger.error("Failed to save %s for %s: %s", filename, folder, exc)
                warnings.append(f"Could not save {filename}: {exc}")
                continue
            setattr(owner, attribute, stored_url)
            saved_images.append(stored_url)

        json_url: str | None = None
        try:
            json_url = await asyncio.to_thread(
                self.storage.write_json, folder, STORY_FILENAME, document.to_dict()
            )
        except StorageError as exc:
            logger.error("Failed to save %s for %s: %s", STORY_FILENAME, folder, exc)
            warnings.append(f"Could not save {STORY_FILENAME}: {exc}")

        pdf_url: str | None = None
        try:
            pdf_bytes, summary = await asyncio.to_thread(self._builder().build_bytes, document)
            pdf_url = await asyncio.to_thread(
                self.storage.write_bytes,
                folder,
                pdf_filename(folder),
                pdf_bytes,
                content_type="application/pdf",
            )
            if summary.missing_images:
                warnings.append(
                    "PDF rendered without images for: " + ", ".join(summary.missing_images)
                )
        except StorageError as exc:
            logger.error("Failed to save the PDF for %s: %s", folder, exc)
            warnings.append(f"Could not save the PDF: {exc}")

        logger.info("Story saved to %s (%d images)", folder, len(saved_images))
        return {
            "success": True,
            "message": "Story saved successfully",
            "storyFolder": f"{self.storage.url_prefix}/{folder}",
            "savedFiles": {
                "pdf": pdf_url,
                "json": json_url,
                "images": saved_images,
            },
            "warnings": warnings,
        }

    def list_stories(self) -> list[dict[str, Any]]:
        """Every story folder, newest first."""
        stories: list[dict[str, Any]] = []
        for folder in self.storage.list_folders():
            try:
                payload = self.storage.read_json(folder, STORY_FILENAME)
            except StorageError as exc:
                logger.error("Error parsing story data for %s: %s", folder, exc)
                continue

            if isinstance(payload, Mapping):
                stories.append(
                    {
                        "title": payload.get("title") or payload.get("storyTitle") or folder,
                        "folder": folder,
                        "timestamp": payload.get("generatedAt")
                        or payload.get("timestamp")
                        or self._folder_timestamp(folder),
                        "pageCount": len(payload.get("pages") or []),
                        "coverImage": self.storage.url_for(folder, COVER_FILENAME),
                        "pdfPath": self.storage.url_for(folder, pdf_filename(folder)),
                    }
                )
            else:
                stories.append(
                    {
                        "title": folder.replace("_", " "),
                        "folder": folder,
                        "timestamp": self._folder_timestamp(folder),
                        "pageCount": 0,
                        "coverImage": None,
                        "pdfPath": None,
                    }
                )

        stories.sort(key=lambda story: _sort_key(story["timestamp"]), reverse=True)
        return stories

    def _folder_timestamp(self, folder: str) -> str:
        modified = self.storage.modified_at(folder)
        return datetime.fromtimestamp(modified, tz=timezone.utc).isoformat()


def _sort_key(timestamp: str) -> float:
    try:
        moment = datetime.fromisoformat(str(timestamp).replace("Z", "+00:00"))
    except ValueError:
        return 0.0
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.timestamp()

"""
Per-folder generation progress, used to resume partially illustrated books.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from storybook.common import StorageError
from storybook.storage import PROGRESS_FILENAME, StoryStorage
from storybook.story_generation.document import utc_timestamp

logger = logging.getLogger(__name__)


@dataclass
class GenerationProgress:
    cover_generated: bool = False
    pages_generated: list[int] = field(default_factory=list)
    failed_pages: list[int] = field(default_factory=list)
    last_updated: str = ""

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "GenerationProgress":
        return cls(
            cover_generated=bool(payload.get("coverGenerated", False)),
            pages_generated=sorted({int(number) for number in payload.get("pagesGenerated") or []}),
            failed_pages=sorted({int(number) for number in payload.get("failedPages") or []}),
            last_updated=str(payload.get("lastUpdated") or ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "coverGenerated": self.cover_generated,
            "pagesGenerated": sorted(self.pages_generated),
            "failedPages": sorted(self.failed_pages),
            "lastUpdated": self.last_updated,
        }

    def is_page_done(self, page_number: int) -> bool:
        return page_number in self.pages_generated

    def mark_page_succeeded(self, page_number: int) -> None:
        if page_number not in self.pages_generated:
            self.pages_generated.append(page_number)
        if page_number in self.failed_pages:
            self.failed_pages.remove(page_number)

    def mark_page_failed(self, page_number: int) -> None:
        if page_number in self.pages_generated:
            return
        if page_number not in self.failed_pages:
            self.failed_pages.append(page_number)


class ProgressStore:
    """Read and rewrite ``generation_progress.json`` inside a story folder."""

    def __init__(self, storage: StoryStorage) -> None:
        self._storage = storage

    def load(self, folder: str) -> GenerationProgress:
        try:
            payload = self._storage.read_json(folder, PROGRESS_FILENAME)
        except StorageError as exc:
            logger.warning("Ignoring unreadable progress record for %s: %s", folder, exc)
            return GenerationProgress()

        if not isinstance(payload, Mapping):
            return GenerationProgress()

        try:
            progress = GenerationProgress.from_dict(payload)
        except (TypeError, ValueError) as exc:
            logger.warning("Ignoring malformed progress record for %s: %s", folder, exc)
            return GenerationProgress()

        logger.info(
            "Loaded progress for %s: %d pages generated, %d failed",
            folder,
            len(progress.pages_generated),
            len(progress.failed_pages),
        )
        return progress

    def save(self, folder: str, progress: GenerationProgress) -> None:
        progress.last_updated = utc_timestamp()
        self._storage.write_json(folder, PROGRESS_FILENAME, progress.to_dict())

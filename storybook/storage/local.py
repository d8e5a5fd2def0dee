"""
Filesystem-backed story storage served by the web app's static mount.
"""

from __future__ import annotations

import logging
from pathlib import Path

from storybook.common import StorageError

from .base import StoryStorage

logger = logging.getLogger(__name__)


class LocalStoryStorage(StoryStorage):
    def __init__(self, root: Path | str, *, url_prefix: str = "/stories") -> None:
        self.root = Path(root)
        self.url_prefix = url_prefix.rstrip("/")

    def path_for(self, folder: str, filename: str) -> Path:
        root = self.root.resolve()
        target = (root / folder / filename).resolve()
        if root not in target.parents:
            raise StorageError(f"{folder}/{filename} is outside the stories root.")
        return target

    def url_for(self, folder: str, filename: str) -> str:
        return f"{self.url_prefix}/{folder}/{filename}"

    def write_bytes(
        self,
        folder: str,
        filename: str,
        data: bytes,
        *,
        content_type: str | None = None,
    ) -> str:
        target = self.path_for(folder, filename)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as exc:
            raise StorageError(f"Could not write {target}: {exc}") from exc
        logger.debug("Wrote %d bytes to %s", len(data), target)
        return self.url_for(folder, filename)

    def read_bytes(self, folder: str, filename: str) -> bytes | None:
        target = self.path_for(folder, filename)
        if not target.is_file():
            return None
        try:
            return target.read_bytes()
        except OSError as exc:
            raise StorageError(f"Could not read {target}: {exc}") from exc

    def exists(self, folder: str, filename: str) -> bool:
        return self.path_for(folder, filename).is_file()

    def list_folders(self) -> list[str]:
        if not self.root.is_dir():
            return []
        return sorted(entry.name for entry in self.root.iterdir() if entry.is_dir())

    def modified_at(self, folder: str) -> float:
        directory = self.root / folder
        if not directory.exists():
            return 0.0
        stamps = [directory.stat().st_mtime]
        stamps.extend(entry.stat().st_mtime for entry in directory.iterdir() if entry.is_file())
        return max(stamps)

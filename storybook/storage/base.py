"""
Storage abstraction for persisted story folders.

Every backend stores files under ``{folder}/{filename}`` and returns a public URL for
each write. Methods are blocking; the pipeline runs them through ``asyncio.to_thread``.
"""

from __future__ import annotations

import json
import secrets
import string
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any

from storybook.common import StorageError

STORY_FILENAME = "story.json"
PROGRESS_FILENAME = "generation_progress.json"
COVER_FILENAME = "cover.png"
CHARACTER_SHEET_FILENAME = "character_profile.png"

_TOKEN_ALPHABET = string.ascii_lowercase + string.digits


def page_filename(page_number: int) -> str:
    return f"page{page_number}.png"


def pdf_filename(folder: str) -> str:
    return f"{folder}.pdf"


def regeneration_filename(filename: str, *, now: datetime | None = None) -> str:
    """Prefix ``filename`` with a timestamp and a random token so regenerations never collide."""
    moment = now or datetime.now(timezone.utc)
    token = "".join(secrets.choice(_TOKEN_ALPHABET) for _ in range(6))
    return f"{int(moment.timestamp() * 1000)}-{token}-{filename}"


def is_safe_segment(name: str) -> bool:
    """True for a single file or folder name that cannot climb out of its parent."""
    if not name or ".." in name:
        return False
    return not any(character in name for character in ("/", "\\", "\x00"))


class StoryStorage(ABC):
    """Blocking key/value storage scoped to story folders."""

    url_prefix: str

    @abstractmethod
    def write_bytes(
        self,
        folder: str,
        filename: str,
        data: bytes,
        *,
        content_type: str | None = None,
    ) -> str:
        """Persist ``data`` and return its public URL."""

    @abstractmethod
    def read_bytes(self, folder: str, filename: str) -> bytes | None:
        """Return the stored bytes, or ``None`` when the file does not exist."""

    @abstractmethod
    def exists(self, folder: str, filename: str) -> bool: ...

    @abstractmethod
    def list_folders(self) -> list[str]: ...

    @abstractmethod
    def modified_at(self, folder: str) -> float:
        """POSIX timestamp of the most recent change inside ``folder``."""

    @abstractmethod
    def url_for(self, folder: str, filename: str) -> str: ...

    def locate(self, url: str) -> tuple[str, str] | None:
        """Map a URL produced by :meth:`url_for` back to ``(folder, filename)``."""
        prefix = self.url_prefix.rstrip("/") + "/"
        if not url or not url.startswith(prefix):
            return None
        remainder = url[len(prefix):]
        folder, _, filename = remainder.partition("/")
        if not is_safe_segment(folder) or not is_safe_segment(filename):
            return None
        return folder, filename

    def write_json(self, folder: str, filename: str, payload: Any) -> str:
        data = json.dumps(payload, ensure_ascii=False, indent=2).encode("utf-8")
        return self.write_bytes(folder, filename, data, content_type="application/json")

    def read_json(self, folder: str, filename: str) -> Any | None:
        raw = self.read_bytes(folder, filename)
        if raw is None:
            return None
        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise StorageError(f"{folder}/{filename} is not valid JSON: {exc}") from exc

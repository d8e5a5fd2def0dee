"""
Fetch generated images so they can be persisted next to the story.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
from typing import Awaitable, Callable

import requests

from storybook.common import StorageError, linear_backoff, retry_async

from .base import StoryStorage

logger = logging.getLogger(__name__)


class ImageDownloader:
    """
    Resolve an image URL to bytes.

    URLs that point into ``storage`` are read directly, ``data:`` URLs are decoded and
    anything else is fetched over HTTP with ``requests``.
    """

    def __init__(
        self,
        *,
        storage: StoryStorage | None = None,
        session: requests.Session | None = None,
        attempts: int = 3,
        retry_delay: float = 2.0,
        timeout: float = 30.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._storage = storage
        self._session = session or requests.Session()
        self._attempts = attempts
        self._retry_delay = retry_delay
        self._timeout = timeout
        self._sleep = sleep

    def get_bytes(self, url: str) -> bytes:
        """Single blocking fetch. Raises :class:`StorageError` on any failure."""
        if not url:
            raise StorageError("No image URL given.")

        if url.startswith("data:"):
            return _decode_data_url(url)

        if self._storage is not None:
            location = self._storage.locate(url)
            if location is not None:
                data = self._storage.read_bytes(*location)
                if data is None:
                    raise StorageError(f"{url} is not present in storage.")
                return data

        try:
            response = self._session.get(url, timeout=self._timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise StorageError(f"Failed to download {url}: {exc}") from exc
        return response.content

    async def fetch(self, url: str) -> bytes:
        """Fetch ``url`` off the event loop, retrying with a linear backoff."""
        try:
            return await retry_async(
                lambda: asyncio.to_thread(self.get_bytes, url),
                attempts=self._attempts,
                delay=linear_backoff(self._retry_delay),
                sleep=self._sleep,
                label=f"download {url[:80]}",
            )
        except StorageError:
            raise
        except Exception as exc:
            raise StorageError(f"Failed to download {url}: {exc}") from exc


def _decode_data_url(url: str) -> bytes:
    header, _, payload = url.partition(",")
    if ";base64" not in header:
        raise StorageError("Only base64 data URLs are supported.")
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise StorageError(f"Invalid base64 image data: {exc}") from exc


def to_data_url(data: bytes, mime_type: str = "image/png") -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"

"""
Single-image rendering with bounded retries, failure classification and placeholders.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Protocol
from urllib.parse import quote_plus

import httpx

from storybook.common import ImageGenerationError, PipelineConfig, linear_backoff, retry_async

from .prompting import build_simplified_prompt
from .safety import prepare_prompt

logger = logging.getLogger(__name__)

CONTENT_POLICY_VIOLATION = "CONTENT_POLICY_VIOLATION"
RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
AUTHENTICATION_ERROR = "AUTHENTICATION_ERROR"
SERVER_ERROR = "SERVER_ERROR"
TIMEOUT_ERROR = "TIMEOUT_ERROR"
UNKNOWN_ERROR = "UNKNOWN_ERROR"

PLACEHOLDER_HOST = "https://placehold.co"
PLACEHOLDER_COLORS = (
    "9089fc/ffffff",
    "90caf9/333333",
    "a5d6a7/333333",
    "ffcc80/333333",
    "ef9a9a/ffffff",
)
COVER_PLACEHOLDER_COLOR = "FF8C42/ffffff"

_POLICY_MARKERS = ("nsfw", "content policy", "safety", "flagged", "sensitive")

SleepCallable = Callable[[float], Awaitable[None]]


class ImageGeneratorLike(Protocol):
    async def generate_image(
        self,
        prompt: Any,
        *,
        reference_image: str | None = None,
        **model_kwargs: Any,
    ) -> list[str]: ...


def placeholder_page_url(page_number: int, illustration_style: str | None) -> str:
    color = PLACEHOLDER_COLORS[(page_number - 1) % len(PLACEHOLDER_COLORS)]
    label = quote_plus(f"Page {page_number}: {illustration_style or 'default'} Style", safe=":")
    return f"{PLACEHOLDER_HOST}/1024x1024/{color}?text={label}"


def placeholder_cover_url(title: str) -> str:
    label = quote_plus(f"Cover: {title}", safe=":")
    return f"{PLACEHOLDER_HOST}/1024x1024/{COVER_PLACEHOLDER_COLOR}?text={label}"


def is_placeholder(url: str | None) -> bool:
    return bool(url) and "placehold.co" in url  # type: ignore[operator]


def _status_of(exc: BaseException) -> int | None:
    for attribute in ("status", "status_code"):
        value = getattr(exc, attribute, None)
        if isinstance(value, int):
            return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None


def classify_image_error(exc: BaseException) -> str:
    """Map a vendor exception onto one of the coarse error types used in logs and placeholders."""
    if isinstance(exc, ImageGenerationError):
        return exc.error_type

    if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
        return TIMEOUT_ERROR

    status = _status_of(exc)
    if status is not None:
        if status in (400, 422):
            return CONTENT_POLICY_VIOLATION
        if status == 429:
            return RATE_LIMIT_EXCEEDED
        if status in (401, 403):
            return AUTHENTICATION_ERROR
        if status >= 500:
            return SERVER_ERROR

    message = str(exc).lower()
    if any(marker in message for marker in _POLICY_MARKERS):
        return CONTENT_POLICY_VIOLATION
    return UNKNOWN_ERROR


def log_vendor_error(log: logging.Logger | logging.LoggerAdapter, label: str, exc: BaseException) -> None:
    details = {
        "status": _status_of(exc),
        "code": getattr(exc, "code", None),
        "type": getattr(exc, "type", None) or getattr(exc, "title", None),
    }
    present = ", ".join(f"{key}={value}" for key, value in details.items() if value is not None)
    log.error(
        "%s failed (%s): %s%s",
        label,
        classify_image_error(exc),
        exc,
        f" [{present}]" if present else "",
    )


class Illustrator:
    """
    Render one illustration, retrying and classifying failures along the way.

    Prompts are sanitized and trimmed to ``config.max_prompt_length`` before every call.
    """

    def __init__(
        self,
        image_generator: ImageGeneratorLike,
        *,
        config: PipelineConfig,
        sleep: SleepCallable = asyncio.sleep,
        log: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> None:
        self._image_generator = image_generator
        self._config = config
        self._sleep = sleep
        self._log = log or logger

    async def render(
        self,
        prompt: str,
        *,
        label: str,
        illustration_style: str | None = None,
        page_number: int | None = None,
        attempts: int | None = None,
        reference_image: str | None = None,
    ) -> str:
        """
        Return the first image URL produced for ``prompt``.

        Raises
        ------
        ImageGenerationError
            Once every attempt (and the simplified-prompt fallback, when applicable) failed.
        """
        prepared = prepare_prompt(prompt, self._config.max_prompt_length)
        self._log.info("%s prompt length: %d characters", label, len(prepared))
        failures: list[str] = []

        def _record(attempt: int, exc: Exception) -> None:
            failures.append(classify_image_error(exc))
            log_vendor_error(self._log, f"{label} attempt {attempt}", exc)

        try:
            return await retry_async(
                lambda: self._generate_once(prepared, reference_image),
                attempts=attempts or self._config.max_image_attempts,
                delay=linear_backoff(self._config.image_retry_delay),
                sleep=self._sleep,
                on_error=_record,
                retry_if=lambda exc: classify_image_error(exc) != CONTENT_POLICY_VIOLATION,
                label=label,
            )
        except Exception as exc:
            last_error = failures[-1] if failures else classify_image_error(exc)
            if last_error == CONTENT_POLICY_VIOLATION and self._config.simplify_on_policy_violation:
                self._log.info("%s retrying once with a simplified prompt", label)
                simplified = build_simplified_prompt(
                    illustration_style=illustration_style,
                    page_number=page_number,
                )
                try:
                    return await self._generate_once(
                        prepare_prompt(simplified, self._config.max_prompt_length), None
                    )
                except Exception as retry_exc:
                    log_vendor_error(self._log, f"{label} simplified prompt", retry_exc)
                    last_error = classify_image_error(retry_exc)

            raise ImageGenerationError(
                f"{label} failed after exhausting all attempts: {exc}",
                error_type=last_error,
            ) from exc

    async def _generate_once(self, prompt: str, reference_image: str | None) -> str:
        urls = await self._image_generator.generate_image(prompt, reference_image=reference_image)
        if not urls:
            raise ImageGenerationError("Image model returned no output.", error_type=UNKNOWN_ERROR)
        return urls[0]

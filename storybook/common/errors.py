"""
Exception hierarchy shared by the storybook pipeline and web layer.
"""

from __future__ import annotations


class StorybookError(Exception):
    """Base class for all storybook errors."""

    status_code = 500


class StoryRequestError(StorybookError, ValueError):
    """The submitted request is missing fields or carries unsupported values."""

    status_code = 400


class GenerationFormatError(StorybookError, ValueError):
    """The text model returned a payload that does not match the expected shape."""

    status_code = 500


class ImageGenerationError(StorybookError):
    """
    Image generation failed after exhausting every attempt.

    ``error_type`` carries the classification of the last failure.
    """

    def __init__(self, message: str, *, error_type: str = "UNKNOWN_ERROR") -> None:
        super().__init__(message)
        self.error_type = error_type


class StorageError(StorybookError):
    """Downloading or persisting an asset failed."""

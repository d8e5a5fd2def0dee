"""
Common utilities shared across storybook modules.
"""

from .config import PipelineConfig, Settings, get_settings
from .errors import (
    GenerationFormatError,
    ImageGenerationError,
    StorageError,
    StorybookError,
    StoryRequestError,
)
from .llm import ChatResult, CompletionCallable, call_chat_completion
from .log import configure_logging, request_logger
from .rate_limit import RateLimiter
from .retry import exponential_backoff, linear_backoff, retry_async

__all__ = [
    "ChatResult",
    "CompletionCallable",
    "call_chat_completion",
    "PipelineConfig",
    "Settings",
    "get_settings",
    "StorybookError",
    "StoryRequestError",
    "GenerationFormatError",
    "ImageGenerationError",
    "StorageError",
    "configure_logging",
    "request_logger",
    "RateLimiter",
    "retry_async",
    "linear_backoff",
    "exponential_backoff",
]

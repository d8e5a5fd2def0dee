"""
Runtime configuration for the storybook pipeline and web service.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


@dataclass(frozen=True)
class PipelineConfig:
    """
    Explicit knobs handed to :class:`storybook.pipeline.StorybookPipeline`.

    Attributes
    ----------
    page_count:
        Number of story pages the text stage must return.
    max_image_attempts:
        Attempts per image before falling back to a placeholder.
    image_retry_delay:
        Base seconds for the linear backoff between image attempts.
    batch_size:
        Images fired concurrently per batch; also the token-bucket capacity.
    batch_window_seconds:
        Seconds over which a drained bucket fully refills.
    failed_page_retry_delay:
        Pause before the second pass over failed pages.
    max_prompt_length:
        Character budget for image prompts.
    use_placeholder_images:
        Skip the image model and return placeholder URLs.
    enable_image_generation:
        When false the image stage is skipped entirely and placeholders are used.
    simplify_on_policy_violation:
        Retry once with a minimal prompt after a content-policy rejection.
    save_images:
        Persist generated images into the story folder.
    download_attempts:
        Attempts when downloading a generated image.
    download_retry_delay:
        Base seconds for the linear backoff between downloads.
    sse_interval_seconds:
        Delay between canned progress events on the SSE endpoint.
    """

    page_count: int = 8
    text_model: str = "gpt-4o-mini"
    profile_model: str = "gpt-4o"
    image_model: str = "black-forest-labs/flux-schnell"
    max_image_attempts: int = 2
    image_retry_delay: float = 3.0
    batch_size: int = 5
    batch_window_seconds: float = 62.0
    failed_page_retry_delay: float = 65.0
    max_prompt_length: int = 3800
    use_placeholder_images: bool = False
    enable_image_generation: bool = True
    simplify_on_policy_violation: bool = True
    save_images: bool = True
    download_attempts: int = 3
    download_retry_delay: float = 2.0
    sse_interval_seconds: float = 3.0

    def __post_init__(self) -> None:
        if self.page_count < 1:
            raise ValueError("page_count must be at least 1.")
        if self.max_image_attempts < 1:
            raise ValueError("max_image_attempts must be at least 1.")
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1.")
        if self.batch_window_seconds <= 0:
            raise ValueError("batch_window_seconds must be positive.")
        if self.max_prompt_length < 1:
            raise ValueError("max_prompt_length must be positive.")

    def with_overrides(self, **overrides: Any) -> "PipelineConfig":
        return replace(self, **overrides)


class Settings(BaseSettings):
    """Environment-driven settings, read from the process environment and ``.env``."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="STORYBOOK_",
        extra="ignore",
    )

    app_name: str = "Storybook Generator"
    app_version: str = "0.1.0"
    log_level: str = "INFO"

    openai_api_key: str | None = None
    replicate_api_token: str | None = None

    text_model: str = "gpt-4o-mini"
    profile_model: str = "gpt-4o"
    image_model: str = "black-forest-labs/flux-schnell"

    storage_backend: Literal["local", "s3"] = "local"
    stories_root: Path = Path("public/stories")
    stories_url_prefix: str = "/stories"
    s3_bucket: str | None = None
    s3_region: str | None = None
    s3_prefix: str = "stories"

    page_count: int = 8
    max_image_attempts: int = 2
    image_retry_delay: float = 3.0
    batch_size: int = 5
    batch_window_seconds: float = 62.0
    failed_page_retry_delay: float = 65.0
    max_prompt_length: int = 3800
    use_placeholder_images: bool = False
    enable_image_generation: bool = True
    simplify_on_policy_violation: bool = True
    save_images: bool = True
    download_attempts: int = 3
    download_retry_delay: float = 2.0
    sse_interval_seconds: float = 3.0

    def pipeline_config(self) -> PipelineConfig:
        return PipelineConfig(
            page_count=self.page_count,
            text_model=self.text_model,
            profile_model=self.profile_model,
            image_model=self.image_model,
            max_image_attempts=self.max_image_attempts,
            image_retry_delay=self.image_retry_delay,
            batch_size=self.batch_size,
            batch_window_seconds=self.batch_window_seconds,
            failed_page_retry_delay=self.failed_page_retry_delay,
            max_prompt_length=self.max_prompt_length,
            use_placeholder_images=self.use_placeholder_images,
            enable_image_generation=self.enable_image_generation,
            simplify_on_policy_violation=self.simplify_on_policy_violation,
            save_images=self.save_images,
            download_attempts=self.download_attempts,
            download_retry_delay=self.download_retry_delay,
            sse_interval_seconds=self.sse_interval_seconds,
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()

"""
Retry, rate limiting and configuration helpers.
"""
import asyncio

import pytest

from storybook.common import (
    PipelineConfig,
    RateLimiter,
    Settings,
    exponential_backoff,
    linear_backoff,
    retry_async,
)

from .conftest import FakeClock


class TestRetry:
    def test_returns_first_success(self, clock: FakeClock):
        calls = []

        async def operation():
            calls.append(1)
            if len(calls) < 3:
                raise RuntimeError("boom")
            return "ok"

        result = asyncio.run(
            retry_async(operation, attempts=3, delay=linear_backoff(2.0), sleep=clock.sleep)
        )

        assert result == "ok"
        assert len(calls) == 3
        assert clock.sleeps == [2.0, 4.0]

    def test_reraises_after_last_attempt(self, clock: FakeClock):
        errors = []

        async def operation():
            raise ValueError("still broken")

        with pytest.raises(ValueError):
            asyncio.run(
                retry_async(
                    operation,
                    attempts=2,
                    delay=linear_backoff(1.0),
                    sleep=clock.sleep,
                    on_error=lambda attempt, exc: errors.append(attempt),
                )
            )
        assert errors == [1, 2]
        assert clock.sleeps == [1.0]

    def test_retry_if_stops_early(self, clock: FakeClock):
        calls = []

        async def operation():
            calls.append(1)
            raise KeyError("fatal")

        with pytest.raises(KeyError):
            asyncio.run(
                retry_async(
                    operation,
                    attempts=5,
                    delay=linear_backoff(1.0),
                    sleep=clock.sleep,
                    retry_if=lambda exc: not isinstance(exc, KeyError),
                )
            )
        assert len(calls) == 1
        assert clock.sleeps == []

    def test_backoff_schedules(self):
        assert [linear_backoff(3.0)(attempt) for attempt in (1, 2, 3)] == [3.0, 6.0, 9.0]
        assert [exponential_backoff(1.0)(attempt) for attempt in (1, 2, 3)] == [1.0, 2.0, 4.0]


class TestRateLimiter:
    def test_full_bucket_does_not_wait(self, clock: FakeClock):
        limiter = RateLimiter(capacity=5, period=62.0, clock=clock, sleep=clock.sleep)
        waited = asyncio.run(limiter.acquire(5))
        assert waited == 0.0
        assert clock.sleeps == []

    def test_drained_bucket_waits_for_refill(self, clock: FakeClock):
        limiter = RateLimiter(capacity=5, period=62.0, clock=clock, sleep=clock.sleep)

        async def two_batches():
            await limiter.acquire(5)
            return await limiter.acquire(5)

        waited = asyncio.run(two_batches())

        assert waited == pytest.approx(62.0)
        assert clock.now == pytest.approx(62.0)

    def test_partial_refill(self, clock: FakeClock):
        limiter = RateLimiter(capacity=4, period=40.0, clock=clock, sleep=clock.sleep)

        async def scenario():
            await limiter.acquire(4)
            clock.now += 20.0
            return await limiter.acquire(3)

        waited = asyncio.run(scenario())
        assert waited == pytest.approx(10.0)

    def test_rejects_more_than_capacity(self, clock: FakeClock):
        limiter = RateLimiter(capacity=2, period=10.0, clock=clock, sleep=clock.sleep)
        with pytest.raises(ValueError):
            asyncio.run(limiter.acquire(3))


class TestConfig:
    def test_defaults(self):
        config = PipelineConfig()
        assert config.page_count == 8
        assert config.batch_size == 5
        assert config.batch_window_seconds == 62.0
        assert config.max_image_attempts == 2
        assert config.max_prompt_length == 3800

    def test_invalid_values_rejected(self):
        with pytest.raises(ValueError):
            PipelineConfig(page_count=0)
        with pytest.raises(ValueError):
            PipelineConfig(batch_size=0)
        with pytest.raises(ValueError):
            PipelineConfig(batch_window_seconds=0)

    def test_with_overrides(self):
        config = PipelineConfig().with_overrides(page_count=3, use_placeholder_images=True)
        assert config.page_count == 3
        assert config.use_placeholder_images is True

    def test_settings_from_environment(self, monkeypatch):
        monkeypatch.setenv("STORYBOOK_PAGE_COUNT", "6")
        monkeypatch.setenv("STORYBOOK_STORAGE_BACKEND", "s3")
        monkeypatch.setenv("STORYBOOK_S3_BUCKET", "kids-books")

        settings = Settings(_env_file=None)

        assert settings.storage_backend == "s3"
        assert settings.s3_bucket == "kids-books"
        assert settings.pipeline_config().page_count == 6

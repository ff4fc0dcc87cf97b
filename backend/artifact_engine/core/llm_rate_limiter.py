"""LLM API rate limiter for a shared API key across concurrent artifact operations."""
import asyncio
import logging
from typing import Optional
from contextlib import asynccontextmanager
from artifact_engine.core.config import settings
from artifact_engine.core.metrics import MetricsCollector

logger = logging.getLogger(__name__)


class LLMRateLimiter:
    """
    Rate limiter for model producer calls using asyncio.Semaphore.

    Every streaming generation holds one permit for its whole duration, so
    concurrent artifact operations sharing one API key never exceed
    ``max_concurrent_calls`` open streams.

    Features:
    - Configurable max_concurrent_calls via LLM_MAX_CONCURRENCY env var
    - Process-wide shared instance via get_instance_sync()
    - Context manager for easy acquire/release
    - Logging for rate limit warnings and 429 errors
    """

    _instance: Optional['LLMRateLimiter'] = None

    def __init__(self, max_concurrent_calls: int = 3):
        """
        Initialize the rate limiter.

        Args:
            max_concurrent_calls: Maximum number of concurrent model calls allowed
        """
        self.max_concurrent_calls = max_concurrent_calls
        self.semaphore = asyncio.Semaphore(max_concurrent_calls)
        self._active_calls = 0
        self._total_calls = 0
        self._rate_limit_hits = 0
        self._error_429_count = 0

        logger.info(
            f"LLMRateLimiter initialized with max_concurrent_calls={max_concurrent_calls}"
        )

    @classmethod
    def get_instance_sync(cls) -> 'LLMRateLimiter':
        """
        Get or create the shared instance.

        Returns:
            LLMRateLimiter shared instance
        """
        if cls._instance is None:
            cls._instance = cls(max_concurrent_calls=settings.llm_max_concurrency)
        return cls._instance

    @asynccontextmanager
    async def acquire(self):
        """
        Acquire a permit for a model call.

        Usage:
            async with rate_limiter.acquire():
                async for snapshot in producer.stream(system, prompt):
                    ...
        """
        if self.semaphore.locked():
            logger.warning(
                f"LLM rate limit reached: {self._active_calls}/{self.max_concurrent_calls} "
                f"concurrent calls active. New calls will wait."
            )
            self._rate_limit_hits += 1
            MetricsCollector.record_rate_limit_hit()

        await self.semaphore.acquire()

        # No await between these updates, so the counters stay consistent
        self._active_calls += 1
        self._total_calls += 1
        MetricsCollector.update_concurrent_llm_calls(self._active_calls)

        try:
            yield
        except Exception as e:
            error_str = str(e).lower()
            if '429' in error_str or 'rate limit' in error_str or 'too many requests' in error_str:
                self._error_429_count += 1
                MetricsCollector.record_llm_call(status="rate_limited")
                MetricsCollector.record_rate_limit_hit()
                logger.error(
                    f"LLM API returned 429 (Rate Limit Exceeded). "
                    f"Total 429 errors: {self._error_429_count}. "
                    f"Active calls: {self._active_calls}/{self.max_concurrent_calls}"
                )
            else:
                MetricsCollector.record_llm_call(status="error")
            raise
        else:
            MetricsCollector.record_llm_call(status="success")
        finally:
            self.semaphore.release()
            self._active_calls -= 1
            MetricsCollector.update_concurrent_llm_calls(self._active_calls)

    def get_stats(self) -> dict:
        """
        Get rate limiter statistics.

        Returns:
            Dictionary with active_calls, total_calls, rate_limit_hits,
            error_429_count and max_concurrent_calls
        """
        return {
            "active_calls": self._active_calls,
            "total_calls": self._total_calls,
            "rate_limit_hits": self._rate_limit_hits,
            "error_429_count": self._error_429_count,
            "max_concurrent_calls": self.max_concurrent_calls
        }

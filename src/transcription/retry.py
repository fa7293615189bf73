"""
Retry policy for calls to the transcription API.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

import aiohttp
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from pipeline.errors import TranscriptionTransportError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RETRYABLE: Tuple[Type[BaseException], ...] = (
    aiohttp.ClientError,
    asyncio.TimeoutError,
    TranscriptionTransportError,
)


def _log_retry(state: RetryCallState) -> None:
    exc = state.outcome.exception() if state.outcome else None
    logger.warning(f"Transcription attempt {state.attempt_number} failed: {exc!r}; retrying")


@dataclass(frozen=True)
class RetryPolicy:
    """Fixed-delay retry: how many attempts, how long between them, and which errors qualify."""
    max_attempts: int = 3
    delay: float = 2.0
    retry_on: Tuple[Type[BaseException], ...] = field(default=DEFAULT_RETRYABLE)

    def is_retryable(self, exc: BaseException) -> bool:
        return isinstance(exc, self.retry_on)

    def retrying(self, sleep: Optional[Callable[[float], Awaitable[None]]] = None) -> AsyncRetrying:
        kwargs = {}
        if sleep is not None:
            kwargs["sleep"] = sleep
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_fixed(self.delay),
            retry=retry_if_exception_type(self.retry_on),
            before_sleep=_log_retry,
            reraise=True,
            **kwargs,
        )

    async def call(self, operation: Callable[[], Awaitable[T]],
                   sleep: Optional[Callable[[float], Awaitable[None]]] = None) -> T:
        """Run ``operation`` until it succeeds, a non-retryable error occurs, or attempts run out.

        The last exception is re-raised unchanged.
        """
        async for attempt in self.retrying(sleep=sleep):
            with attempt:
                return await operation()
        raise AssertionError("unreachable")  # pragma: no cover

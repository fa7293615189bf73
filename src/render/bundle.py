"""
Process-wide, build-once handle for the Remotion bundle.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class BundleHandle:
    """
    Lazily builds a resource at most once and shares it with every caller.

    Concurrent callers that arrive while a build is running wait for that same
    build and receive its outcome, success or failure. A failed build is not
    remembered: the next caller starts a fresh one.
    """

    def __init__(self, builder: Callable[[], Awaitable[str]]):
        self._builder = builder
        self._lock = asyncio.Lock()
        self._pending: Optional[asyncio.Future] = None
        self._location: Optional[str] = None
        self.build_count = 0

    @property
    def location(self) -> Optional[str]:
        return self._location

    @property
    def ready(self) -> bool:
        return self._location is not None

    async def get(self) -> str:
        if self._location is not None:
            return self._location

        async with self._lock:
            if self._location is not None:
                return self._location
            if self._pending is None:
                self._pending = asyncio.ensure_future(self._build())
            pending = self._pending

        # shield: one caller being cancelled must not abort the shared build
        return await asyncio.shield(pending)

    async def _build(self) -> str:
        self.build_count += 1
        logger.info("Bundling Remotion components...")
        try:
            location = await self._builder()
        except Exception as e:
            logger.error(f"Remotion bundling failed: {e}")
            raise
        finally:
            self._pending = None
        self._location = location
        logger.info(f"Remotion bundled successfully: {location}")
        return location

    def reset(self) -> None:
        """Forget a built bundle so the next call rebuilds it."""
        self._location = None

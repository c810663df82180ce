"""Rate limiter for outbound page fetches."""

import asyncio
import logging
from collections import deque
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import AsyncIterator
from urllib.parse import urlparse

logger = logging.getLogger(__name__)


class FetchRateLimiter:
    """
    Async limiter for fetches against arbitrary user-supplied sites.

    Features:
    - Sliding window requests-per-minute limit per domain
    - Global concurrent request limit
    """

    def __init__(self, requests_per_minute: int = 30, max_concurrent: int = 5):
        """
        Initialize rate limiter.

        Args:
            requests_per_minute: Requests allowed per domain per minute
            max_concurrent: Maximum fetches in flight across all domains
        """
        self.requests_per_minute = requests_per_minute
        self.max_concurrent = max_concurrent

        self._domain_requests: dict[str, deque[datetime]] = {}
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._lock = asyncio.Lock()

    @staticmethod
    def _extract_domain(url: str) -> str:
        parsed = urlparse(url)
        return parsed.netloc or url

    @staticmethod
    def _clean_old_requests(requests: deque[datetime], window_seconds: int = 60) -> None:
        """Remove requests outside the sliding window."""
        cutoff = datetime.utcnow() - timedelta(seconds=window_seconds)
        while requests and requests[0] < cutoff:
            requests.popleft()

    def _prune_idle_domains(self) -> None:
        """Forget domains with no requests left in the window."""
        for domain in list(self._domain_requests):
            requests = self._domain_requests[domain]
            self._clean_old_requests(requests)
            if not requests:
                del self._domain_requests[domain]

    async def acquire(self, url: str) -> None:
        """
        Wait until a fetch of url is allowed.

        Holds a concurrency slot until release() is called.
        """
        domain = self._extract_domain(url)
        await self._semaphore.acquire()

        try:
            async with self._lock:
                self._prune_idle_domains()
                requests = self._domain_requests.setdefault(domain, deque())
                self._clean_old_requests(requests)

                while len(requests) >= self.requests_per_minute:
                    wait_until = requests[0] + timedelta(seconds=60)
                    wait_seconds = (wait_until - datetime.utcnow()).total_seconds()
                    if wait_seconds > 0:
                        logger.debug(f"Rate limit ({domain}): waiting {wait_seconds:.1f}s")
                        await asyncio.sleep(wait_seconds)
                    self._clean_old_requests(requests)

                requests.append(datetime.utcnow())
        except BaseException:
            self._semaphore.release()
            raise

    def release(self) -> None:
        """Release the concurrent request slot."""
        self._semaphore.release()

    @asynccontextmanager
    async def slot(self, url: str) -> AsyncIterator[None]:
        """Hold a fetch slot for url for the duration of the block."""
        await self.acquire(url)
        try:
            yield
        finally:
            self.release()

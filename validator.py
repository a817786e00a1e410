#!/usr/bin/env python3
"""
Audio enclosure reachability checks.

``ReachabilityValidator`` probes one URL with header-only requests and a
bounded retry loop; ``BatchValidator`` fans probes out in fixed-size windows so
the number of simultaneous outbound connections never exceeds the window size.
"""

from asyncio import gather, TimeoutError
from typing import List, Optional, Sequence

from aiohttp import ClientError, ClientSession, ClientTimeout

from config import config, get_logger
from telemetry import trace_span
from utils import RetryHelper

logger = get_logger("validator")

# HTTP status codes
HTTP_OK = 200
HTTP_NOT_FOUND = 404

PROBE_HEADERS = {
    'User-Agent': 'Mozilla/5.0',
    'Accept': '*/*',
}


def format_client_error(error: ClientError) -> str:
    """Describe aiohttp client errors with any available status/errno."""
    parts: List[str] = [error.__class__.__name__]
    status = getattr(error, 'status', None)
    if status is not None:
        parts.append(f"status={status}")
    os_error = getattr(error, 'os_error', None)
    if os_error is not None:
        errno = getattr(os_error, 'errno', None)
        if errno is not None:
            parts.append(f"errno={errno}")
    message = str(error)
    if message:
        parts.append(message)
    return " ".join(parts)


class ReachabilityValidator:
    """Checks that an audio URL currently answers 200 to a HEAD request.

    A 404 is final. Any other status, a client error or a timeout is retried
    with linear backoff until the attempt cap is reached.
    """

    def __init__(
        self,
        session: ClientSession,
        max_attempts: Optional[int] = None,
        timeout: Optional[float] = None,
        backoff_base: Optional[float] = None,
        max_redirects: Optional[int] = None,
    ) -> None:
        self.session = session
        self.max_attempts = max_attempts or config.PROBE_MAX_ATTEMPTS
        self.timeout = timeout or config.PROBE_TIMEOUT
        self.max_redirects = config.MAX_REDIRECTS if max_redirects is None else max_redirects
        base_delay = config.PROBE_BACKOFF_BASE if backoff_base is None else backoff_base
        self.retry_helper = RetryHelper(max_attempts=self.max_attempts, base_delay=base_delay)

    async def validate(self, url: Optional[str], max_attempts: Optional[int] = None) -> bool:
        """Return True once a probe answers 200, False on 404 or when attempts run out."""
        if not url:
            return False

        attempts = self.max_attempts if max_attempts is None else max_attempts
        for attempt in range(1, attempts + 1):
            try:
                async with self.session.head(
                    url,
                    headers=PROBE_HEADERS,
                    allow_redirects=True,
                    max_redirects=self.max_redirects,
                    timeout=ClientTimeout(total=self.timeout),
                ) as response:
                    status = response.status
            except TimeoutError:
                logger.debug(f"Timeout probing {url} (attempt {attempt}/{attempts}, timeout={self.timeout}s)")
            except ClientError as e:
                logger.debug(f"Error probing {url} (attempt {attempt}/{attempts}): {format_client_error(e)}")
            else:
                if status == HTTP_OK:
                    return True
                if status == HTTP_NOT_FOUND:
                    logger.debug(f"Audio not found (404): {url}")
                    return False
                logger.debug(f"HTTP {status} probing {url} (attempt {attempt}/{attempts})")

            if self.retry_helper.should_retry(attempt, attempts):
                await self.retry_helper.sleep_for_attempt(attempt)

        logger.debug(f"Giving up on {url} after {attempts} attempts")
        return False


class BatchValidator:
    """Runs reachability probes in sequential windows of concurrent requests."""

    def __init__(self, validator: ReachabilityValidator, window_size: Optional[int] = None) -> None:
        self.validator = validator
        self.window_size = window_size or config.PROBE_WINDOW_SIZE

    async def _probe(self, url: str) -> bool:
        return await self.validator.validate(url)

    @trace_span(
        "validate_all",
        tracer_name="validator",
        attr_from_args=lambda self, urls: {
            "probe.count": len(urls),
            "probe.window_size": self.window_size,
        },
    )
    async def validate_all(self, urls: Sequence[str]) -> List[bool]:
        """Validate every URL and return results aligned index-for-index with the input.

        Windows are drained one at a time. A probe that raises counts as
        unreachable and does not affect its siblings.
        """
        results: List[bool] = []
        total = len(urls)
        if total == 0:
            return results

        for start in range(0, total, self.window_size):
            window = urls[start:start + self.window_size]
            outcomes = await gather(*(self._probe(url) for url in window), return_exceptions=True)
            for url, outcome in zip(window, outcomes):
                if isinstance(outcome, BaseException):
                    logger.warning(f"Probe for {url} failed unexpectedly: {outcome!r}")
                    results.append(False)
                else:
                    results.append(bool(outcome))
            logger.info(f"Validated {len(results)}/{total} audio URLs")

        return results

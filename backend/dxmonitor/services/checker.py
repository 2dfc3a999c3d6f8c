"""Checker service - probes a URL over HTTP(S) and classifies it up or down."""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Optional

import httpx

from ..config import settings
from ..models import MonitorState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of one probe."""
    status: MonitorState  # up or down, never checking
    response_time_ms: Optional[int] = None

    @property
    def is_up(self) -> bool:
        return self.status == MonitorState.UP


class CheckerService:
    """Lightweight reachability probe used by the scheduler.

    A HEAD request is tried first. Servers that answer HEAD with an error
    status (405 for HEAD-less endpoints included) get a single GET retry
    before the URL is declared down. Transport failures are never raised to
    the caller; they classify as down.
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        user_agent: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout if timeout is not None else settings.probe_timeout_seconds
        self.user_agent = user_agent or settings.user_agent
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            headers={"User-Agent": self.user_agent},
            transport=self._transport,
        )

    @staticmethod
    def _elapsed_ms(start: float) -> int:
        return int((time.monotonic() - start) * 1000)

    async def _status_of(self, client: httpx.AsyncClient, method: str, url: str) -> int:
        """Status code of one request; the body is never read.

        The whole attempt, redirects included, is bounded by ``self.timeout``.
        """

        async def headers_only() -> int:
            async with client.stream(method, url) as response:
                return response.status_code

        return await asyncio.wait_for(headers_only(), timeout=self.timeout)

    async def probe(self, url: str) -> ProbeResult:
        """Probe ``url`` once (with GET fallback) and classify it."""
        start = time.monotonic()

        try:
            async with self._client() as client:
                status_code = await self._status_of(client, "HEAD", url)
                if status_code < 400:
                    return ProbeResult(MonitorState.UP, self._elapsed_ms(start))

                logger.debug(f"HEAD {url} returned {status_code}, retrying with GET")

                # Fresh timeout budget for the retry; latency still counts from the first attempt
                status_code = await self._status_of(client, "GET", url)
                response_time = self._elapsed_ms(start)
                if status_code < 400:
                    return ProbeResult(MonitorState.UP, response_time)
                return ProbeResult(MonitorState.DOWN, response_time)

        except (httpx.TimeoutException, asyncio.TimeoutError):
            logger.debug(f"Probe timeout for {url}")
            return ProbeResult(MonitorState.DOWN, None)
        except httpx.HTTPError as e:
            logger.debug(f"Probe transport error for {url}: {e}")
            return self._failure(start)
        except Exception as e:
            logger.warning(f"Unexpected probe error for {url}: {e}")
            return self._failure(start)

    def _failure(self, start: float) -> ProbeResult:
        # A latency at or past the ceiling is the timeout firing, not a measurement
        response_time = self._elapsed_ms(start)
        if response_time >= self.timeout * 1000:
            return ProbeResult(MonitorState.DOWN, None)
        return ProbeResult(MonitorState.DOWN, response_time)


# Global instance
checker_service = CheckerService()

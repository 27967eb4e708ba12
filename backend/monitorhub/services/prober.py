"""Prober service - bounded-timeout HTTP checks for monitor URLs."""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Dict, Hashable, List, Optional, Sequence, Tuple

import httpx

from ..models.monitor import MonitorState

logger = logging.getLogger(__name__)

USER_AGENT = "MonitorHub/1.0 (+https://monitorhub.local)"


@dataclass
class ProbeResult:
    """Result of a single probe."""
    is_up: bool
    status: MonitorState
    response_time_ms: int
    status_code: Optional[int] = None
    error_message: Optional[str] = None


class ProberService:
    """Performs one GET per URL and classifies it as UP, SLOW or DOWN.

    Failures never escape as exceptions; every outcome is a ProbeResult so
    the sweep can keep going.
    """

    def __init__(
        self,
        timeout: float = 5.0,
        slow_threshold_ms: int = 3000,
        verify: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self.slow_threshold_ms = slow_threshold_ms
        self.verify = verify
        self._transport = transport

    def classify(self, is_up: bool, response_time_ms: int) -> MonitorState:
        """UP below the slow threshold, SLOW at or above it, DOWN on any failure."""
        if not is_up:
            return MonitorState.DOWN
        if response_time_ms >= self.slow_threshold_ms:
            return MonitorState.SLOW
        return MonitorState.UP

    async def probe(self, url: str) -> ProbeResult:
        """Probe a URL once. The whole request is bounded by self.timeout."""
        start = time.monotonic()

        try:
            scheme = httpx.URL(url).scheme
        except (httpx.InvalidURL, TypeError) as e:
            return self._failure(start, f"Invalid URL: {e}")
        if scheme not in ("http", "https"):
            return self._failure(start, "Invalid protocol. Must be http or https.")

        try:
            response = await asyncio.wait_for(self._get(url), timeout=self.timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException):
            return self._failure(start, f"Timeout after {int(self.timeout * 1000)}ms")
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as e:
            return self._failure(start, f"Invalid URL: {e}")
        except httpx.ConnectError as e:
            return self._failure(start, f"Connection error: {e}")
        except httpx.HTTPError as e:
            return self._failure(start, f"Network error: {type(e).__name__}: {e}")
        except Exception as e:
            logger.debug(f"Unexpected probe error for {url}: {type(e).__name__}: {e}")
            return self._failure(start, f"Unexpected error: {type(e).__name__}: {e}")

        response_time = self._elapsed_ms(start)
        is_up = response.is_success
        return ProbeResult(
            is_up=is_up,
            status=self.classify(is_up, response_time),
            response_time_ms=response_time,
            status_code=response.status_code,
            error_message=None if is_up else f"HTTP {response.status_code}",
        )

    async def probe_batch(
        self,
        targets: Sequence[Tuple[Hashable, str]],
        batch_size: int = 20,
    ) -> Dict[Hashable, ProbeResult]:
        """Probe (id, url) pairs in fixed-size chunks, each chunk concurrently.

        A probe that crashes is logged and left out of the returned map; its
        siblings are unaffected.
        """
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")

        results: Dict[Hashable, ProbeResult] = {}
        for i in range(0, len(targets), batch_size):
            chunk: List[Tuple[Hashable, str]] = list(targets[i:i + batch_size])
            outcomes = await asyncio.gather(
                *(self.probe(url) for _, url in chunk),
                return_exceptions=True,
            )
            for (target_id, url), outcome in zip(chunk, outcomes):
                if isinstance(outcome, BaseException):
                    logger.error(f"Probe failed unexpectedly for {target_id} ({url}): {outcome}")
                    continue
                results[target_id] = outcome
        return results

    async def _get(self, url: str) -> httpx.Response:
        async with httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            verify=self.verify,
            transport=self._transport,
            headers={"User-Agent": USER_AGENT},
        ) as client:
            return await client.get(url)

    def _failure(self, start: float, message: str) -> ProbeResult:
        return ProbeResult(
            is_up=False,
            status=MonitorState.DOWN,
            response_time_ms=self._elapsed_ms(start),
            error_message=message,
        )

    @staticmethod
    def _elapsed_ms(start: float) -> int:
        return int((time.monotonic() - start) * 1000)

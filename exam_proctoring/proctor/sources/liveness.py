"""
Liveness Check - latency and bandwidth measurement against a health endpoint
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LivenessResult:
    reachable: bool
    latency_ms: float
    bandwidth_mbps: float


class LivenessCheck:
    """
    Measures round-trip latency (HEAD) and a rough bandwidth estimate (GET).

    A failed request is reported as unreachable with latency 9999 ms and
    zero bandwidth.
    """

    FAILED_LATENCY_MS = 9999.0
    DEFAULT_RESPONSE_BYTES = 1000

    def __init__(
        self,
        url: str,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the check.

        Args:
            url: Health endpoint to measure
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (used to mount the app in tests)
        """
        self.url = url
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def failed(cls) -> LivenessResult:
        return LivenessResult(reachable=False, latency_ms=cls.FAILED_LATENCY_MS, bandwidth_mbps=0.0)

    async def measure(self) -> LivenessResult:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                start = time.perf_counter()
                head = await client.head(self.url, headers={"Cache-Control": "no-cache"})
                latency_ms = round((time.perf_counter() - start) * 1000)
                if head.status_code >= 400:
                    logger.warning(f"[LIVENESS] {self.url} answered {head.status_code}")
                    return self.failed()

                start = time.perf_counter()
                response = await client.get(self.url, headers={"Cache-Control": "no-cache"})
                duration = time.perf_counter() - start
                response.raise_for_status()

        except httpx.HTTPError as e:
            logger.warning(f"[LIVENESS] Liveness check failed: {e}")
            return self.failed()

        size = int(response.headers.get("content-length") or len(response.content) or self.DEFAULT_RESPONSE_BYTES)
        bandwidth = (size * 8) / (duration * 1024 * 1024) if duration > 0 else 0.0
        return LivenessResult(
            reachable=True,
            latency_ms=float(latency_ms),
            bandwidth_mbps=round(bandwidth, 2),
        )

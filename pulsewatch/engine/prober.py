"""
Prober

Runs one bounded HTTP probe against a URL and classifies the outcome.
"""

from __future__ import annotations

import asyncio
import time

import httpx
import structlog

from pulsewatch.engine.models import ProbeMethod, ProbeOutcome, StatusPolicy

logger = structlog.get_logger(__name__)


class HttpProber:
    """
    Issues HTTP probes through a shared async client.

    Only the response head is awaited: latency is measured from send to
    header receipt and the body is never downloaded. Every probe is bounded
    by its timeout as a whole, not just per connection phase. Failures are
    returned as DOWN outcomes, never raised.
    """

    def __init__(
        self,
        method: ProbeMethod = ProbeMethod.GET,
        policy: StatusPolicy = StatusPolicy.LENIENT,
        follow_redirects: bool = True,
        user_agent: str = "pulsewatch/0.1",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the prober.

        Args:
            method: HTTP method for every probe (fixed per deployment)
            policy: Status code classification policy
            follow_redirects: Whether redirects are followed before classifying
            user_agent: User-Agent header sent with probes
            transport: Optional httpx transport (used by tests)
        """
        self.method = method
        self.policy = policy
        self._follow_redirects = follow_redirects
        self._user_agent = user_agent
        self._transport = transport
        self._http_client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                follow_redirects=self._follow_redirects,
                headers={"User-Agent": self._user_agent},
                transport=self._transport,
            )
        return self._http_client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def probe(self, url: str, timeout: float) -> ProbeOutcome:
        """
        Probe a URL once.

        Args:
            url: Target URL
            timeout: Upper bound in seconds for the whole exchange

        Returns:
            UP/DOWN outcome with either an HTTP status or an error message
        """
        try:
            http_status, latency_ms = await asyncio.wait_for(
                self._request(url, timeout),
                timeout=timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            return ProbeOutcome.failure(f"timed out after {timeout:.1f}s")
        except httpx.ConnectError as e:
            return ProbeOutcome.failure(f"connection failed: {_describe(e)}")
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as e:
            return ProbeOutcome.failure(f"invalid url: {_describe(e)}")
        except httpx.HTTPError as e:
            return ProbeOutcome.failure(f"{type(e).__name__}: {_describe(e)}")

        status = self.policy.classify(http_status)
        logger.debug(
            "Probe completed",
            url=url,
            http_status=http_status,
            latency_ms=latency_ms,
            status=status.value,
        )
        return ProbeOutcome(
            status=status,
            http_status=http_status,
            latency_ms=latency_ms,
        )

    async def _request(self, url: str, timeout: float) -> tuple[int, int]:
        """Send the request and return (status code, latency in ms)."""
        client = await self._get_client()
        start = time.perf_counter()
        async with client.stream(self.method.value, url, timeout=timeout) as response:
            latency_ms = int((time.perf_counter() - start) * 1000)
            return response.status_code, latency_ms


def _describe(error: Exception) -> str:
    """Human-readable cause for an httpx error."""
    message = str(error).strip()
    return message or type(error).__name__

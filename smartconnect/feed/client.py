"""HTTP client for the candidate feed.

Fetches the raw CSV-like feed over HTTP(S). Any transport failure or non-2xx
status is raised as ``FeedFetchError``; recovering from it (by treating the
feed as empty) is the caller's decision.
"""

from __future__ import annotations

import logging
import time

import httpx

from smartconnect.errors import FeedFetchError

logger = logging.getLogger(__name__)


class FeedClient:
    """Fetches the raw candidate feed.

    Parameters
    ----------
    feed_url:
        URL of the CSV-like server list.
    timeout_seconds:
        Total request timeout.
    transport:
        Optional httpx transport, used by tests to serve canned responses.
    """

    def __init__(
        self,
        feed_url: str,
        timeout_seconds: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._feed_url = feed_url
        self._timeout_seconds = timeout_seconds
        self._transport = transport

    @property
    def feed_url(self) -> str:
        return self._feed_url

    async def fetch(self) -> bytes:
        """Download the feed body.

        Raises
        ------
        FeedFetchError
            On connection errors, timeouts and non-2xx responses.
        """
        started = time.monotonic()
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout_seconds),
                transport=self._transport,
                follow_redirects=True,
            ) as client:
                response = await client.get(self._feed_url)
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "Feed returned status %d",
                exc.response.status_code,
                extra={"error_reason": f"http_{exc.response.status_code}"},
            )
            raise FeedFetchError(http_status=exc.response.status_code) from exc
        except httpx.HTTPError as exc:
            logger.warning(
                "Feed unreachable: %s",
                exc,
                extra={"error_reason": type(exc).__name__},
            )
            raise FeedFetchError(reason=type(exc).__name__) from exc

        duration_ms = round((time.monotonic() - started) * 1000)
        logger.info(
            "Fetched feed (%d bytes)",
            len(response.content),
            extra={"duration_ms": duration_ms},
        )
        return response.content

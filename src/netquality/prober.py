from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Optional, Sequence, Tuple

import httpx

from netquality.models import ConnectivityResult


class ConnectivityProber:
    """Round-robin HTTP reachability probe over a pool of URLs.

    Any HTTP response counts as reachable; only transport failures count as
    failed attempts.
    """

    def __init__(self, timeout: float, client: Optional[httpx.AsyncClient] = None) -> None:
        self.timeout = timeout
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(follow_redirects=False)

    async def probe(self, urls: Sequence[str], cursor: int) -> Tuple[ConnectivityResult, int]:
        total = len(urls)
        if total == 0:
            raise ValueError("at least one URL is required")

        start = time.monotonic()
        outcome = "error"
        selected_url = urls[cursor % total]

        for attempt in range(total):
            index = (cursor + attempt) % total
            selected_url = urls[index]
            status = await self._attempt(selected_url)
            if status.isdigit():
                return self._result(selected_url, status, start, True), (index + 1) % total
            outcome = status

        return self._result(selected_url, outcome, start, False), (cursor + 1) % total

    async def _attempt(self, url: str) -> str:
        """Return the HTTP status code as text, or "timeout" / "error"."""
        logging.debug("Connectivity check against %s", url)
        try:
            async with self.client.stream("GET", url, timeout=self.timeout) as response:
                return str(response.status_code)
        except httpx.TimeoutException as exc:
            logging.debug("%s timed out: %s", url, exc)
            return "timeout"
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logging.debug("%s failed: %s", url, exc)
            return "error"

    def _result(self, url: str, outcome: str, start: float, success: bool) -> ConnectivityResult:
        return ConnectivityResult(
            timestamp=datetime.now(timezone.utc),
            url=url,
            result=outcome,
            elapsed_ms=int((time.monotonic() - start) * 1000),
            success=success,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

"""
http.py – Async HTTP client built on *aiohttp* with bounded retries,
          429 / 5xx back-off and per-instance default headers.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
import time
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Mapping, Optional

import aiohttp

logger = logging.getLogger(__name__)


class HttpClient:
    """
    Thin wrapper over *aiohttp.ClientSession* adding:

    * default headers merged into every request (API key lives here)
    * a total request timeout
    * optional exponential back-off **with jitter** for 429 / 5xx / network
      errors (``max_retries=1`` disables retrying entirely)
    * async context-manager support
    """

    def __init__(
        self,
        *,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 10.0,
        max_retries: int = 1,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        default_headers: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._external_session = session
        self._timeout = timeout
        self._max_retries = max(1, max_retries)
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._own_session: Optional[aiohttp.ClientSession] = None
        self._default_headers: Dict[str, str] = dict(default_headers or {})

    # ---------------------------------------------- #
    # Async context-manager
    async def __aenter__(self) -> "HttpClient":  # noqa: D401
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # noqa: D401
        await self.close()

    # ---------------------------------------------- #
    # Session management
    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._external_session:
            return self._external_session
        if self._own_session is None or self._own_session.closed:
            timeout = aiohttp.ClientTimeout(total=self._timeout)
            self._own_session = aiohttp.ClientSession(timeout=timeout)
        return self._own_session

    async def close(self) -> None:
        if self._own_session and not self._own_session.closed:
            await self._own_session.close()
            self._own_session = None

    # ---------------------------------------------- #
    # Internal helpers
    @staticmethod
    def _parse_retry_after(header_val: str | None) -> Optional[float]:
        """Return seconds given a Retry-After header value."""
        if not header_val:
            return None
        header_val = header_val.strip()
        if header_val.isdigit():
            return float(header_val)
        try:
            retry_at = parsedate_to_datetime(header_val).timestamp()
        except (TypeError, ValueError):
            return None
        return max(0.0, retry_at - time.time())

    def _merge_headers(self, extra: Mapping[str, str] | None) -> Dict[str, str]:
        merged: Dict[str, str] = {**self._default_headers}
        if extra:
            merged.update(extra)
        return merged

    def _backoff(self, attempt: int, retry_after: Optional[float]) -> float:
        if retry_after is not None:
            return min(retry_after, self._max_delay)
        exponential = min(self._base_delay * 2 ** (attempt - 1), self._max_delay)
        return exponential + random.uniform(0, self._base_delay)

    async def _request(
        self,
        method: str,
        url: str,
        *,
        retry_for_status: tuple[int, ...] = (429, 500, 502, 503, 504),
        **kwargs,
    ) -> Any:
        """Perform a request and return the decoded JSON body (or None).

        Non-2xx responses raise :class:`aiohttp.ClientResponseError`; network
        failures raise :class:`aiohttp.ClientError` / :class:`asyncio.TimeoutError`
        once the retry budget is spent.
        """
        session = await self._ensure_session()
        kwargs["headers"] = self._merge_headers(kwargs.pop("headers", None))

        for attempt in range(1, self._max_retries + 1):
            try:
                async with session.request(method, url, **kwargs) as resp:
                    resp.raise_for_status()
                    text = await resp.text()
                    return json.loads(text) if text.strip() else None
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                status = getattr(e, "status", None)
                retryable = status is None or status in retry_for_status
                if not retryable or attempt == self._max_retries:
                    logger.debug("HTTP %s %s failed after %d attempt(s): %s", method, url, attempt, e)
                    raise

                headers = getattr(e, "headers", None) or {}
                sleep_seconds = self._backoff(attempt, self._parse_retry_after(headers.get("Retry-After")))
                logger.warning(
                    "HTTP %s %s failed (attempt %d/%d – will retry in %.1fs): %s",
                    method,
                    url,
                    attempt,
                    self._max_retries,
                    sleep_seconds,
                    str(e).splitlines()[0] if str(e) else type(e).__name__,
                )
                await asyncio.sleep(sleep_seconds)

        # Should never hit here
        raise RuntimeError("Unreachable retry loop")

    # ---------------------------------------------- #
    # Public helpers
    async def post_json(self, url: str, data: Any, **kwargs) -> Any:
        kwargs["json"] = data
        return await self._request("POST", url, **kwargs)

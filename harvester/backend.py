"""
Client for the price-history ingestion API.

``send_price_snapshots`` is the primary data path and raises
:class:`DeliveryError` on any failure. The image and run-status calls are
side channels: they return a :class:`SideChannelResult` instead of raising.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple, TypeVar

import aiohttp

from .infra.http import HttpClient
from .models import (
    IngestSummary,
    NormalizedObservation,
    ScrapeRunStatus,
    SideChannelResult,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

BATCH_PATH = "/v1/price-history/batch"
IMAGE_PATH = "/v1/images/from-scrape"
RUN_STATUS_PATH = "/v1/admin/scrape-runs"


class DeliveryError(Exception):
    """A snapshot chunk could not be delivered; the whole batch must be retried."""


def chunked(items: Sequence[T], size: int) -> List[List[T]]:
    size = max(1, size)
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


def _count(data: Dict[str, Any], key: str, default: int) -> int:
    value = data.get(key)
    return value if isinstance(value, int) and not isinstance(value, bool) else default


def unique_image_pairs(observations: Iterable[NormalizedObservation]) -> List[Tuple[str, str]]:
    seen: Set[Tuple[str, str]] = set()
    pairs = []
    for obs in observations:
        pair = (obs.source.source_url, obs.image_url)
        if not pair[0] or not pair[1] or pair in seen:
            continue
        seen.add(pair)
        pairs.append(pair)
    return pairs


class BackendClient:
    def __init__(
        self,
        api_base_url: str,
        api_key: str,
        *,
        batch_size: int = 50,
        timeout: float = 10.0,
        http: Optional[HttpClient] = None,
    ) -> None:
        self.api_base_url = api_base_url.rstrip("/")
        self.batch_size = batch_size if batch_size > 0 else 50
        self._http = http or HttpClient(
            timeout=timeout,
            max_retries=1,
            default_headers={"Content-Type": "application/json", "x-api-key": api_key},
        )

    async def __aenter__(self) -> "BackendClient":
        return self

    async def __aexit__(self, *_) -> None:
        await self.close()

    async def close(self) -> None:
        if hasattr(self._http, "close"):
            await self._http.close()

    def _url(self, path: str) -> str:
        return f"{self.api_base_url}{path}"

    # ------------------------------------------------------------------ #
    async def send_price_snapshots(self, observations: Sequence[NormalizedObservation]) -> IngestSummary:
        """Deliver every observation, chunk by chunk, and sum the responses.

        The first failing chunk aborts the send; nothing is tracked per chunk.
        """
        summary = IngestSummary()
        if not observations:
            return summary

        url = self._url(BATCH_PATH)
        chunks = chunked([o.to_snapshot_payload() for o in observations], self.batch_size)

        for index, chunk in enumerate(chunks, start=1):
            try:
                data = await self._http.post_json(url, {"snapshots": chunk})
            except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
                raise DeliveryError(
                    f"Chunk {index}/{len(chunks)} ({len(chunk)} snapshots) failed: {str(e) or type(e).__name__}"
                ) from e

            data = data if isinstance(data, dict) else {}
            chunk_total = _count(data, "totalSnapshots", len(chunk))
            summary.total_snapshots += chunk_total
            summary.accepted += _count(data, "accepted", chunk_total)
            summary.failed += _count(data, "failed", 0)
            summary.new_products += _count(data, "newProducts", 0)
            summary.new_sources += _count(data, "newSources", 0)
            summary.updated_sources += _count(data, "updatedSources", 0)
            logger.debug("Delivered chunk %d/%d (%d snapshots)", index, len(chunks), len(chunk))

        return summary

    async def forward_images(self, observations: Sequence[NormalizedObservation]) -> SideChannelResult:
        result = SideChannelResult()
        url = self._url(IMAGE_PATH)
        for source_url, image_url in unique_image_pairs(observations):
            try:
                await self._http.post_json(url, {"sourceUrl": source_url, "remoteImageUrl": image_url})
                result.sent += 1
            except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
                result.errors.append(f"{source_url}: {str(e) or type(e).__name__}")
        return result

    async def report_run_status(self, status: ScrapeRunStatus) -> SideChannelResult:
        result = SideChannelResult()
        try:
            await self._http.post_json(
                self._url(RUN_STATUS_PATH),
                status.model_dump(mode="json", by_alias=True, exclude_none=True),
            )
            result.sent = 1
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            result.errors.append(str(e) or type(e).__name__)
        return result

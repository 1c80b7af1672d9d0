"""
Core data models for the price harvester.
"""

from __future__ import annotations

import json
import math
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def to_iso(value: datetime) -> str:
    """Render a datetime as a fixed-width UTC ISO-8601 string (``...000Z``).

    Every timestamp stored in SQLite goes through here so that plain string
    comparison in SQL orders the same way as the underlying instants.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def utc_now_iso() -> str:
    return to_iso(utc_now())


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# --------------------------------------------------------------------------- #
# Site descriptors


class SiteSelectors(_CamelModel):
    """CSS selectors used to pull product data off a list page."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    product_list: str = Field(alias="productList")
    product_name: str = Field(alias="productName")
    product_price: str = Field(alias="productPrice")
    product_rrp: str = Field(alias="productRrp")
    product_availability: str = Field(alias="productAvailability")
    product_sku: str = Field(alias="productSku")
    product_url: Optional[str] = Field(default=None, alias="productUrl")
    product_image_list: Optional[str] = Field(default=None, alias="productImageList")
    product_image_detail: Optional[str] = Field(default=None, alias="productImageDetail")

    product_id_attr: str = Field(default="data-product-id", alias="productIdAttr")
    price_attr: str = Field(default="data-now", alias="priceAttr")
    rrp_attr: str = Field(default="data-was", alias="rrpAttr")
    sku_attr: str = Field(default="data-sku", alias="skuAttr")

    @field_validator(
        "product_list",
        "product_name",
        "product_price",
        "product_rrp",
        "product_availability",
        "product_sku",
    )
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("selector must be a non-empty string")
        return value


class SiteDescriptor(_CamelModel):
    """Static per-site configuration, read-only for the whole run."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    site_id: str = Field(alias="siteId")
    site_name: str = Field(alias="siteName")
    base_url: str = Field(alias="baseUrl")
    list_page_url: str = Field(alias="listPageUrl")
    item_type: str = Field(alias="itemType")
    selectors: SiteSelectors
    rate_limit_ms: Optional[float] = Field(default=None, alias="rateLimitMs", ge=0)
    pagination_selector: Optional[str] = Field(default=None, alias="paginationSelector")
    is_active: bool = Field(default=False, alias="isActive")

    follow_product_page_for_image: bool = Field(default=False, alias="followProductPageForImage")
    total_count_selector: Optional[str] = Field(default=None, alias="totalCountSelector")
    total_count_pattern: str = Field(default=r"(\d[\d,]*)\s+products", alias="totalCountPattern")
    page_param: str = Field(default="page", alias="pageParam")

    @field_validator("site_id", "site_name", "base_url", "list_page_url", "item_type")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must be a non-empty string")
        return value

    @field_validator("rate_limit_ms")
    @classmethod
    def _finite(cls, value: Optional[float]) -> Optional[float]:
        if value is not None and not math.isfinite(value):
            raise ValueError("must be a finite number")
        return value


# --------------------------------------------------------------------------- #
# Scraped data


class ScrapedRow(_CamelModel):
    """One product as it appeared on a single list page."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    site_id: str = Field(alias="siteId")
    source_product_id: Optional[str] = Field(default=None, alias="sourceProductId")
    name: str
    url: str
    price: Optional[float] = None
    price_text: Optional[str] = Field(default=None, alias="priceText")
    rrp: Optional[float] = None
    rrp_text: Optional[str] = Field(default=None, alias="rrpText")
    availability_text: Optional[str] = Field(default=None, alias="availabilityText")
    sku: Optional[str] = None
    image_url: Optional[str] = Field(default=None, alias="imageUrl")


class StagedRow(ScrapedRow):
    """A ScrapedRow read back from the staging store."""

    id: int
    scraped_at: str = Field(alias="scrapedAt")


# --------------------------------------------------------------------------- #
# Normalized observations


class ProductIdentity(_CamelModel):
    name: str
    type: str


class SourceDescriptor(_CamelModel):
    source_name: str = Field(alias="sourceName")
    source_url: str = Field(alias="sourceUrl")
    sku: Optional[str] = None
    additional_data: Dict[str, Any] = Field(default_factory=dict, alias="additionalData")


class NormalizedObservation(_CamelModel):
    """Canonical price observation, ready to be shipped to the backend."""

    product: ProductIdentity
    source: SourceDescriptor
    price: float
    rrp: Optional[float] = None
    availability: Optional[bool] = None
    currency_code: Optional[str] = Field(default=None, alias="currencyCode")
    scraped_at: str = Field(alias="scrapedAt")

    @property
    def image_url(self) -> Optional[str]:
        return self.source.additional_data.get("imageUrl")

    def to_snapshot_payload(self) -> Dict[str, Any]:
        """Shape expected by ``POST /v1/price-history/batch``."""
        extra = self.source.additional_data
        return {
            "productName": self.product.name,
            "productType": self.product.type,
            "sourceName": self.source.source_name,
            "sourceUrl": self.source.source_url,
            "sku": self.source.sku,
            "price": self.price,
            "currencyCode": self.currency_code,
            "rrp": self.rrp,
            "availability": self.availability,
            "scrapedAt": self.scraped_at,
            "raw": {
                "siteId": str(extra.get("siteId") or ""),
                "sourceProductId": extra.get("sourceProductId"),
                "priceText": extra.get("priceText"),
                "rrpText": extra.get("rrpText"),
                "availabilityText": extra.get("availabilityText"),
            },
        }


def dump_queue_payload(observations: List[NormalizedObservation]) -> str:
    return json.dumps(
        {"normalized": [o.model_dump(mode="json", by_alias=True) for o in observations]}
    )


def load_queue_payload(payload_json: str) -> List[NormalizedObservation]:
    """Parse a queue payload; raises ``ValueError`` on malformed content."""
    data = json.loads(payload_json)
    if not isinstance(data, dict):
        raise ValueError("queue payload must be a JSON object")
    items = data.get("normalized") or []
    if not isinstance(items, list):
        raise ValueError("queue payload 'normalized' must be a list")
    return [NormalizedObservation.model_validate(item) for item in items]


# --------------------------------------------------------------------------- #
# Queue / backend


class QueueStatus(str, Enum):
    PENDING = "pending"
    SENDING = "sending"
    SENT = "sent"
    FAILED = "failed"


class QueueEntry(BaseModel):
    """Durable unit of delivery work."""

    id: int
    run_id: str
    site_id: str
    payload_json: str
    status: QueueStatus
    attempts: int = 0
    next_attempt_at: str
    last_error: Optional[str] = None
    target_env: Optional[str] = None
    created_at: str
    updated_at: str


class IngestSummary(_CamelModel):
    total_snapshots: int = Field(default=0, alias="totalSnapshots")
    accepted: int = 0
    failed: int = 0
    new_products: int = Field(default=0, alias="newProducts")
    new_sources: int = Field(default=0, alias="newSources")
    updated_sources: int = Field(default=0, alias="updatedSources")


class RunOutcome(str, Enum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"


class ScrapeRunStatus(_CamelModel):
    site_id: str = Field(alias="siteId")
    status: RunOutcome
    started_at: str = Field(alias="startedAt")
    finished_at: str = Field(alias="finishedAt")
    item_count: int = Field(alias="itemCount")
    error_message: Optional[str] = Field(default=None, alias="errorMessage")
    run_id: Optional[str] = Field(default=None, alias="runId")


class SideChannelResult(BaseModel):
    """Outcome of a best-effort call; errors are reported, never raised."""

    sent: int = 0
    errors: List[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

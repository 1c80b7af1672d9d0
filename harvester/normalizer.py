"""
Raw scraped rows → canonical price observations.

Everything here is pure: no I/O, no clock reads unless no timestamp is
available at all.
"""

from typing import List, Optional, Sequence

from .models import (
    NormalizedObservation,
    ProductIdentity,
    ScrapedRow,
    SiteDescriptor,
    SourceDescriptor,
    utc_now_iso,
)


def derive_availability(text: Optional[str]) -> Optional[bool]:
    if not text:
        return None
    text = text.lower()
    if "in stock" in text:
        return True
    if "out of stock" in text or "restock" in text:
        return False
    return None


def derive_currency(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    text = text.strip().lower()
    if "£" in text:
        return "GBP"
    if "€" in text:
        return "EUR"
    if "$" in text or "usd" in text:
        return "USD"
    if "gbp" in text:
        return "GBP"
    if "eur" in text:
        return "EUR"
    return None


def normalize_row(site: SiteDescriptor, row: ScrapedRow, scraped_at: str) -> Optional[NormalizedObservation]:
    if row.price is None or not row.url or not row.name or not row.name.strip():
        return None

    return NormalizedObservation(
        product=ProductIdentity(name=row.name.strip(), type=site.item_type),
        source=SourceDescriptor(
            source_name=site.site_name,
            source_url=row.url,
            sku=row.sku,
            additional_data={
                "siteId": row.site_id,
                "sourceProductId": row.source_product_id,
                "priceText": row.price_text,
                "rrpText": row.rrp_text,
                "availabilityText": row.availability_text,
                "imageUrl": row.image_url,
            },
        ),
        price=row.price,
        rrp=row.rrp,
        availability=derive_availability(row.availability_text),
        currency_code=derive_currency(row.price_text or row.rrp_text),
        scraped_at=getattr(row, "scraped_at", None) or scraped_at,
    )


def normalize_rows(
    site: SiteDescriptor,
    rows: Sequence[ScrapedRow],
    scraped_at: Optional[str] = None,
) -> List[NormalizedObservation]:
    """Drop unusable rows (no price, URL or name) and map the rest.

    Staged rows carry their own snapshot timestamp; plain rows use
    ``scraped_at``.
    """
    fallback = scraped_at or utc_now_iso()
    observations = []
    for row in rows:
        observation = normalize_row(site, row, fallback)
        if observation is not None:
            observations.append(observation)
    return observations

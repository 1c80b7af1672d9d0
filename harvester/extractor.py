"""
Selector-driven extraction of product rows from rendered list pages.

Markup is parsed with BeautifulSoup; selectors from the site descriptor are
evaluated as CSS (soupsieve) against each product node.
"""

from __future__ import annotations

import logging
import math
import re
from typing import List, NamedTuple, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup
from bs4.element import Tag

from .interfaces import PageLoader
from .models import ScrapedRow, SiteDescriptor


logger = logging.getLogger(__name__)

_NUMBER = re.compile(r"([0-9]+(?:\.[0-9]+)?)")
_NOISE = re.compile(r"Â£|[,£€$]")


def parse_price(value: Optional[str]) -> Optional[float]:
    """First decimal number in ``value``, ignoring currency symbols and
    thousands separators. Never raises; returns None when nothing parses."""
    if not value or not isinstance(value, str):
        return None
    match = _NUMBER.search(_NOISE.sub("", value))
    if not match:
        return None
    number = float(match.group(1))
    return number if math.isfinite(number) else None


def _attr_number(value: Optional[str]) -> Optional[float]:
    if value is None or not str(value).strip():
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def absolutize(href: Optional[str], base_url: str) -> Optional[str]:
    if not href:
        return None
    href = href.strip()
    if href.startswith("http://") or href.startswith("https://"):
        return href
    return urljoin(base_url, href)


def _attr(node: Optional[Tag], name: str) -> Optional[str]:
    if node is None:
        return None
    value = node.get(name)
    if isinstance(value, list):
        return " ".join(value)
    return value


def _text(node: Optional[Tag]) -> Optional[str]:
    if node is None:
        return None
    return node.get_text(" ", strip=True)


def _image_src(node: Optional[Tag], base_url: str) -> Optional[str]:
    return absolutize(_attr(node, "data-src") or _attr(node, "src"), base_url)


# --------------------------------------------------------------------------- #
# Row extraction


def _row_from_node(node: Tag, site: SiteDescriptor) -> ScrapedRow:
    sel = site.selectors

    name_el = node.select_one(sel.product_name)
    link_el = node.select_one(sel.product_url) if sel.product_url else name_el
    name = _text(name_el) or ""
    url = absolutize(_attr(link_el, "href"), site.base_url) or ""
    if not url:
        logger.warning("[%s] Product %r has no link; row will be dropped at normalization", site.site_id, name)

    price_el = node.select_one(sel.product_price)
    price_text = _text(price_el)
    price = _attr_number(_attr(price_el, sel.price_attr))
    if price is None:
        price = parse_price(price_text)

    rrp = rrp_text = None
    rrp_el = node.select_one(sel.product_rrp)
    if rrp_el is not None:
        rrp_text = _text(rrp_el)
        rrp = _attr_number(_attr(rrp_el, sel.rrp_attr))
        if rrp is None:
            rrp = parse_price(rrp_text)

    availability_el = node.select_one(sel.product_availability)
    sku_el = node.select_one(sel.product_sku)
    image_el = node.select_one(sel.product_image_list) if sel.product_image_list else None

    return ScrapedRow(
        site_id=site.site_id,
        source_product_id=_attr(node, sel.product_id_attr),
        name=name,
        url=url,
        price=price,
        price_text=price_text,
        rrp=rrp,
        rrp_text=rrp_text,
        availability_text=_text(availability_el),
        sku=_attr(sku_el, sel.sku_attr),
        image_url=_image_src(image_el, site.base_url),
    )


def parse_rows(html: str, site: SiteDescriptor) -> List[ScrapedRow]:
    """Every product node on the page, in document order (list images only)."""
    soup = BeautifulSoup(html, "html.parser")
    nodes = soup.select(site.selectors.product_list)
    if not nodes:
        logger.warning("[%s] No nodes matched list selector %r", site.site_id, site.selectors.product_list)
        return []
    return [_row_from_node(node, site) for node in nodes]


async def _detail_image(loader: PageLoader, row: ScrapedRow, site: SiteDescriptor) -> Optional[str]:
    html = await loader.fetch_detail(row.url)
    soup = BeautifulSoup(html, "html.parser")
    return _image_src(soup.select_one(site.selectors.product_image_detail), site.base_url)


async def extract_rows(
    html: str,
    site: SiteDescriptor,
    *,
    loader: Optional[PageLoader] = None,
    enable_detail_images: bool = False,
) -> List[ScrapedRow]:
    """Extract one page's rows, optionally following product pages for images.

    A failing product page only costs that product its detail image; the
    list image (if any) is kept and extraction carries on.
    """
    rows = parse_rows(html, site)

    follow = (
        enable_detail_images
        and loader is not None
        and site.follow_product_page_for_image
        and site.selectors.product_image_detail
    )
    if not follow:
        return rows

    enriched: List[ScrapedRow] = []
    for row in rows:
        if not row.url:
            enriched.append(row)
            continue
        try:
            image_url = await _detail_image(loader, row, site)
        except Exception as e:  # noqa: BLE001 - any page failure falls back to the list image
            logger.warning(
                "[%s] Detail image lookup failed for %s; using list image: %s",
                site.site_id,
                row.url,
                e,
            )
            image_url = None
        enriched.append(row.model_copy(update={"image_url": image_url}) if image_url else row)
    return enriched


# --------------------------------------------------------------------------- #
# Pagination helpers


class PaginationLink(NamedTuple):
    href: Optional[str]
    data_page: Optional[str]
    rel: str
    class_name: str
    text: str
    aria_label: str


def pagination_links(html: str, site: SiteDescriptor) -> List[PaginationLink]:
    if not site.pagination_selector:
        return []
    soup = BeautifulSoup(html, "html.parser")
    return [
        PaginationLink(
            href=_attr(el, "href"),
            data_page=_attr(el, "data-page"),
            rel=_attr(el, "rel") or "",
            class_name=_attr(el, "class") or "",
            text=_text(el) or "",
            aria_label=_attr(el, "aria-label") or "",
        )
        for el in soup.select(site.pagination_selector)
    ]


def read_total_count(html: str, site: SiteDescriptor) -> Optional[int]:
    """Total product count advertised on the page (e.g. "1,169 products")."""
    if not site.total_count_selector:
        return None
    soup = BeautifulSoup(html, "html.parser")
    text = _text(soup.select_one(site.total_count_selector))
    if not text:
        return None
    try:
        match = re.search(site.total_count_pattern, text, re.IGNORECASE)
    except re.error as e:
        logger.warning("[%s] Bad totalCountPattern: %s", site.site_id, e)
        return None
    if not match:
        return None
    try:
        total = int(match.group(1).replace(",", ""))
    except (IndexError, ValueError):
        return None
    return total if total > 0 else None

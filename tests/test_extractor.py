import pytest

from fakes import BASE_URL, FakeLoader, list_page, make_site, product_html, run
from harvester.extractor import (
    absolutize,
    extract_rows,
    pagination_links,
    parse_price,
    parse_rows,
    read_total_count,
)


@pytest.mark.parametrize(
    "text, expected",
    [
        ("£19.99", 19.99),
        ("Â£1,299.00", 1299.0),
        ("€ 12,50", 1250.0),
        ("$7", 7.0),
        ("Now only £3.50 (was £5)", 3.5),
        ("£24.99 £34.99", 24.99),
        ("  £ 1,234.56 ", 1234.56),
    ],
)
def test_parse_price_ignores_symbols_and_separators(text, expected):
    assert parse_price(text) == pytest.approx(expected)


@pytest.mark.parametrize("text", [None, "", "Free", "£", "call for price"])
def test_parse_price_returns_none_without_digits(text):
    assert parse_price(text) is None


def test_absolutize():
    assert absolutize("/products/a", BASE_URL) == f"{BASE_URL}/products/a"
    assert absolutize("https://cdn.example/x.jpg", BASE_URL) == "https://cdn.example/x.jpg"
    assert absolutize(None, BASE_URL) is None


def test_parse_rows_reads_every_node_in_order(site):
    html = list_page([product_html(1), product_html(2, data_now="15.00", price="£15"), product_html(3)])

    rows = parse_rows(html, site)

    assert [r.name for r in rows] == ["Game 1", "Game 2", "Game 3"]
    first = rows[0]
    assert first.site_id == "test-shop"
    assert first.source_product_id == "p1"
    assert first.url == f"{BASE_URL}/products/game-1"
    assert first.price == pytest.approx(19.99)
    assert first.price_text == "£19.99"
    assert first.rrp == pytest.approx(24.99)
    assert first.availability_text == "5 in stock"
    assert first.sku == "SKU-1"
    assert rows[1].price == pytest.approx(15.0)


def test_attribute_price_wins_over_text(site):
    html = list_page([product_html(1, data_now="9.5", price="£12.00")])
    assert parse_rows(html, site)[0].price == pytest.approx(9.5)


def test_sale_and_regular_spans_keep_the_first_amount(site):
    html = list_page([product_html(1, price="<span>£24.99</span> <span>£34.99</span>")])
    row = parse_rows(html, site)[0]
    assert row.price_text == "£24.99 £34.99"
    assert row.price == pytest.approx(24.99)


def test_non_numeric_attribute_falls_back_to_text(site):
    html = list_page([product_html(1, data_now="n/a", price="£12.00")])
    assert parse_rows(html, site)[0].price == pytest.approx(12.0)


def test_missing_rrp_element_leaves_rrp_empty(site):
    row = parse_rows(list_page([product_html(1, rrp=None)]), site)[0]
    assert row.rrp is None
    assert row.rrp_text is None


def test_node_without_link_gets_empty_url(site):
    row = parse_rows(list_page([product_html(1, href="")]), site)[0]
    assert row.name == "Game 1"
    assert row.url == ""


def test_no_matching_nodes_is_not_an_error(site):
    assert parse_rows("<html><body><p>Maintenance</p></body></html>", site) == []


def test_list_image_prefers_data_src(site):
    html = list_page([product_html(1, image="/img/1-small.jpg")])
    assert parse_rows(html, site)[0].image_url == f"{BASE_URL}/img/1-small.jpg"


def test_detail_images_replace_list_image_and_tolerate_failures():
    site = make_site(follow_product_page_for_image=True)
    html = list_page([product_html(1, image="/img/1-small.jpg"), product_html(2, image="/img/2-small.jpg")])
    loader = FakeLoader(
        {},
        detail_pages={f"{BASE_URL}/products/game-1": '<img class="hero" src="/img/1-large.jpg">'},
    )

    rows = run(extract_rows(html, site, loader=loader, enable_detail_images=True))

    assert rows[0].image_url == f"{BASE_URL}/img/1-large.jpg"
    # game-2's product page is unavailable: the list image survives
    assert rows[1].image_url == f"{BASE_URL}/img/2-small.jpg"
    assert len(loader.detail_calls) == 2


def test_detail_images_need_both_the_flag_and_the_site_hint(site):
    html = list_page([product_html(1, image="/img/1-small.jpg")])
    loader = FakeLoader({}, detail_pages={f"{BASE_URL}/products/game-1": '<img class="hero" src="/big.jpg">'})

    rows = run(extract_rows(html, site, loader=loader, enable_detail_images=True))

    assert rows[0].image_url == f"{BASE_URL}/img/1-small.jpg"
    assert loader.detail_calls == []


def test_pagination_links(site):
    html = list_page(
        [product_html(1)],
        pagination='<a href="?page=2" data-page="2">2</a><a href="?page=2" rel="next" aria-label="Next page">Next</a>',
    )

    links = pagination_links(html, site)

    assert [link.data_page for link in links] == ["2", None]
    assert links[1].rel == "next"
    assert links[1].text == "Next"
    assert links[1].aria_label == "Next page"


@pytest.mark.parametrize(
    "text, expected",
    [("1,169 products", 1169), ("Showing 15 Products", 15), ("no count here", None), ("0 products", None)],
)
def test_read_total_count(text, expected):
    site = make_site(total_count_selector="#ProductCount")
    assert read_total_count(list_page([], total=text), site) == expected


def test_read_total_count_without_selector(site):
    assert read_total_count(list_page([], total="20 products"), site) is None

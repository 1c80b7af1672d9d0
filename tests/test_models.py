from datetime import datetime, timedelta, timezone

import pytest

from harvester.models import (
    NormalizedObservation,
    ProductIdentity,
    SourceDescriptor,
    dump_queue_payload,
    load_queue_payload,
    to_iso,
)


def test_iso_timestamps_are_fixed_width_utc():
    stamp = datetime(2024, 5, 1, 10, 0, 0, 123456, tzinfo=timezone(timedelta(hours=2)))
    assert to_iso(stamp) == "2024-05-01T08:00:00.123Z"
    assert to_iso(datetime(2024, 5, 1)) == "2024-05-01T00:00:00.000Z"


def test_iso_order_matches_time_order():
    base = datetime(2024, 1, 1, tzinfo=timezone.utc)
    stamps = [base + timedelta(milliseconds=ms) for ms in (5, 999, 1000, 60_000, 86_400_000)]
    rendered = [to_iso(s) for s in stamps]
    assert rendered == sorted(rendered)


def test_queue_payload_uses_camel_case():
    obs = NormalizedObservation(
        product=ProductIdentity(name="Azul", type="BOARD_GAME"),
        source=SourceDescriptor(source_name="Shop", source_url="https://shop.example/azul"),
        price=30.0,
        currency_code="GBP",
        scraped_at="2024-05-01T10:00:00.000Z",
    )

    payload = dump_queue_payload([obs])

    assert '"currencyCode": "GBP"' in payload
    assert '"sourceUrl": "https://shop.example/azul"' in payload
    assert load_queue_payload(payload) == [obs]


@pytest.mark.parametrize("payload", ["[1, 2]", "{oops", '{"normalized": 5}', '{"normalized": [{"price": 1}]}'])
def test_malformed_queue_payload(payload):
    with pytest.raises(ValueError):
        load_queue_payload(payload)


def test_missing_normalized_key_is_empty():
    assert load_queue_payload("{}") == []

from datetime import datetime, timedelta, timezone

import aiohttp
import pytest

from fakes import FakeHttp, run
from harvester.backend import BackendClient
from harvester.infra.db import Database
from harvester.models import (
    NormalizedObservation,
    ProductIdentity,
    QueueStatus,
    SourceDescriptor,
    dump_queue_payload,
)
from harvester.sync_queue import SyncQueue
from harvester.worker import SyncWorker, backoff_delay, next_attempt_at


@pytest.mark.parametrize(
    "attempts, seconds",
    [(0, 30), (1, 30), (2, 60), (3, 120), (4, 240), (7, 1920), (8, 3600), (50, 3600)],
)
def test_backoff_doubles_and_caps_at_an_hour(attempts, seconds):
    assert backoff_delay(attempts) == timedelta(seconds=seconds)


def test_next_attempt_at_is_relative_to_now():
    now = datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)
    assert next_attempt_at(2, now) == now + timedelta(minutes=1)


def observation(n: int, image: str = None) -> NormalizedObservation:
    return NormalizedObservation(
        product=ProductIdentity(name=f"Game {n}", type="BOARD_GAME"),
        source=SourceDescriptor(
            source_name="Test Shop",
            source_url=f"https://shop.example/products/game-{n}",
            additional_data={"siteId": "test-shop", "imageUrl": image},
        ),
        price=10.0 + n,
        scraped_at="2024-05-01T10:00:00.000Z",
    )


async def _setup(db, http, payloads):
    queue = SyncQueue(db)
    await queue.init()
    ids = [await queue.enqueue(f"run-{i}", "test-shop", p) for i, p in enumerate(payloads)]
    worker = SyncWorker(queue, BackendClient("https://api.example/", "secret", http=http))
    return queue, worker, ids


def test_worker_delivers_and_forwards_images(db_path):
    http = FakeHttp()
    http.responses["/v1/price-history/batch"] = lambda body: {"accepted": len(body["snapshots"])}
    payload = dump_queue_payload([observation(1, image="https://cdn.example/1.jpg"), observation(2)])

    async def scenario():
        async with Database(db_path) as db:
            queue, worker, [entry_id] = await _setup(db, http, [payload])
            processed = await worker.process_batch(10)
            return processed, await queue.get(entry_id)

    processed, entry = run(scenario())

    assert processed == 1
    assert entry.status is QueueStatus.SENT
    [batch] = http.calls_to("/v1/price-history/batch")
    assert [s["productName"] for s in batch["data"]["snapshots"]] == ["Game 1", "Game 2"]
    [image] = http.calls_to("/v1/images/from-scrape")
    assert image["data"] == {
        "sourceUrl": "https://shop.example/products/game-1",
        "remoteImageUrl": "https://cdn.example/1.jpg",
    }


def test_worker_reschedules_failed_delivery(db_path):
    http = FakeHttp()
    http.fail_paths["/v1/price-history/batch"] = aiohttp.ClientError("503 Service Unavailable")

    async def scenario():
        async with Database(db_path) as db:
            queue, worker, [entry_id] = await _setup(db, http, [dump_queue_payload([observation(1)])])
            await worker.process_batch(10)
            first = await queue.get(entry_id)
            # not due yet: a second pass does nothing
            again = await worker.process_batch(10)
            return first, again

    entry, again = run(scenario())

    assert entry.status is QueueStatus.FAILED
    assert entry.attempts == 1
    assert "503" in entry.last_error
    assert entry.next_attempt_at > entry.updated_at
    assert again == 0
    assert http.calls_to("/v1/images/from-scrape") == []


def test_worker_handles_bad_and_empty_payloads(db_path):
    http = FakeHttp()

    async def scenario():
        async with Database(db_path) as db:
            queue, worker, ids = await _setup(db, http, ["{not json", '{"normalized": []}'])
            processed = await worker.process_batch(10)
            return processed, [await queue.get(i) for i in ids]

    processed, (bad, empty) = run(scenario())

    assert processed == 2
    assert bad.status is QueueStatus.FAILED
    assert bad.attempts == 1
    assert bad.last_error.startswith("Invalid payload")
    assert empty.status is QueueStatus.SENT
    assert http.calls == []


def test_worker_can_target_a_single_run(db_path):
    http = FakeHttp()
    payload = dump_queue_payload([observation(1)])

    async def scenario():
        async with Database(db_path) as db:
            queue, worker, ids = await _setup(db, http, [payload, payload])
            processed = await worker.process_batch(10, run_id="run-1")
            return processed, [(await queue.get(i)).status for i in ids]

    processed, statuses = run(scenario())

    assert processed == 1
    assert statuses == [QueueStatus.PENDING, QueueStatus.SENT]


def test_unexpected_error_fails_the_entry_and_batch_continues(db_path):
    http = FakeHttp()

    def batch(body):
        if body["snapshots"][0]["productName"] == "Game 1":
            raise RuntimeError("response shape changed")
        return {"accepted": len(body["snapshots"])}

    http.responses["/v1/price-history/batch"] = batch
    payloads = [dump_queue_payload([observation(1)]), dump_queue_payload([observation(2)])]

    async def scenario():
        async with Database(db_path) as db:
            queue, worker, ids = await _setup(db, http, payloads)
            processed = await worker.process_batch(10)
            return processed, [await queue.get(i) for i in ids]

    processed, (broken, delivered) = run(scenario())

    assert processed == 2
    assert broken.status is QueueStatus.FAILED
    assert broken.attempts == 1
    assert broken.last_error == "response shape changed"
    assert delivered.status is QueueStatus.SENT


def test_non_list_payload_is_rejected_not_stuck(db_path):
    http = FakeHttp()

    async def scenario():
        async with Database(db_path) as db:
            queue, worker, [entry_id] = await _setup(db, http, ['{"normalized": 5}'])
            await worker.process_batch(10)
            return await queue.get(entry_id)

    entry = run(scenario())

    assert entry.status is QueueStatus.FAILED
    assert entry.last_error.startswith("Invalid payload")


class BrokenQueue:
    async def fetch_eligible(self, now, limit, run_id=None):
        raise RuntimeError("database is locked")


def test_tick_logs_and_survives_a_failed_batch(caplog):
    worker = SyncWorker(BrokenQueue(), BackendClient("https://api.example", "secret", http=FakeHttp()))

    run(worker.tick(10))

    assert "Sync batch failed" in caplog.text

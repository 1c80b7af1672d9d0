from datetime import timedelta

from fakes import run
from harvester.infra.db import Database
from harvester.models import QueueStatus, utc_now
from harvester.sync_queue import SyncQueue
from harvester.worker import next_attempt_at


async def open_queue(db: Database) -> SyncQueue:
    queue = SyncQueue(db)
    await queue.init()
    return queue


def test_enqueue_creates_an_eligible_pending_entry(db_path):
    async def scenario():
        async with Database(db_path) as db:
            queue = await open_queue(db)
            entry_id = await queue.enqueue("shop-a-run", "shop-a", '{"normalized": []}', target_env="prod")
            return await queue.get(entry_id), await queue.fetch_eligible(utc_now(), 10)

    entry, eligible = run(scenario())

    assert entry.status is QueueStatus.PENDING
    assert entry.attempts == 0
    assert entry.target_env == "prod"
    assert entry.last_error is None
    assert [e.id for e in eligible] == [entry.id]


def test_fetch_eligible_orders_filters_and_limits(db_path):
    async def scenario():
        async with Database(db_path) as db:
            queue = await open_queue(db)
            ids = [await queue.enqueue(f"run-{i % 2}", "shop-a", "{}") for i in range(5)]
            later = utc_now() + timedelta(seconds=1)
            return (
                ids,
                await queue.fetch_eligible(later, 3),
                await queue.fetch_eligible(later, 10, run_id="run-1"),
                await queue.fetch_eligible(later, 0),
            )

    ids, limited, by_run, none = run(scenario())

    assert [e.id for e in limited] == ids[:3]
    assert [e.id for e in by_run] == [ids[1], ids[3]]
    assert none == []


def test_repeated_failures_push_the_next_attempt_forward(db_path):
    async def scenario():
        async with Database(db_path) as db:
            queue = await open_queue(db)
            entry_id = await queue.enqueue("run", "shop-a", "{}")
            retry_times = []
            for _ in range(3):
                entry = await queue.get(entry_id)
                await queue.mark_sending(entry_id)
                await queue.mark_failed(entry_id, "backend down", next_attempt_at(entry.attempts + 1))
                retry_times.append((await queue.get(entry_id)).next_attempt_at)
            return await queue.get(entry_id), retry_times, await queue.fetch_eligible(utc_now(), 10)

    entry, retry_times, eligible_now = run(scenario())

    assert entry.attempts == 3
    assert entry.status is QueueStatus.FAILED
    assert entry.last_error == "backend down"
    assert retry_times == sorted(retry_times)
    # the latest retry is two minutes out, so nothing is due yet
    assert eligible_now == []


def test_failed_entry_becomes_eligible_when_due(db_path):
    async def scenario():
        async with Database(db_path) as db:
            queue = await open_queue(db)
            entry_id = await queue.enqueue("run", "shop-a", "{}")
            await queue.mark_failed(entry_id, "timeout", next_attempt_at(1))
            return (
                await queue.fetch_eligible(utc_now(), 10),
                await queue.fetch_eligible(utc_now() + timedelta(seconds=31), 10),
            )

    before, after = run(scenario())

    assert before == []
    assert len(after) == 1


def test_sent_entries_are_never_eligible_again(db_path):
    async def scenario():
        async with Database(db_path) as db:
            queue = await open_queue(db)
            entry_id = await queue.enqueue("run", "shop-a", "{}")
            await queue.mark_sending(entry_id)
            sending = await queue.fetch_eligible(utc_now(), 10)
            await queue.mark_sent(entry_id)
            far_future = utc_now() + timedelta(days=365)
            return sending, await queue.fetch_eligible(far_future, 10), await queue.count_by_status()

    sending, eligible, counts = run(scenario())

    assert sending == []
    assert eligible == []
    assert counts == {"sent": 1}


def test_entry_left_sending_is_requeued_after_restart(db_path):
    async def crash_mid_send():
        async with Database(db_path) as db:
            queue = await open_queue(db)
            entry_id = await queue.enqueue("run", "shop-a", "{}")
            await queue.mark_sending(entry_id)
            return entry_id

    async def restart(entry_id):
        async with Database(db_path) as db:
            queue = await open_queue(db)
            stuck = await queue.fetch_eligible(utc_now() + timedelta(days=365), 10)
            requeued = await queue.requeue_stale_sending()
            return stuck, requeued, await queue.get(entry_id), await queue.fetch_eligible(utc_now(), 10)

    entry_id = run(crash_mid_send())
    stuck, requeued, entry, eligible = run(restart(entry_id))

    assert stuck == []
    assert requeued == 1
    assert entry.status is QueueStatus.FAILED
    assert entry.attempts == 0
    assert entry.last_error == "Interrupted while sending"
    assert [e.id for e in eligible] == [entry_id]


def test_requeue_leaves_recent_sends_and_other_states_alone(db_path):
    async def scenario():
        async with Database(db_path) as db:
            queue = await open_queue(db)
            sent, recent, pending = [await queue.enqueue("run", "shop-a", "{}") for _ in range(3)]
            await queue.mark_sent(sent)
            await queue.mark_sending(recent)
            requeued = await queue.requeue_stale_sending(before=utc_now() - timedelta(minutes=5))
            return requeued, [(await queue.get(i)).status for i in (sent, recent, pending)]

    requeued, statuses = run(scenario())

    assert requeued == 0
    assert statuses == [QueueStatus.SENT, QueueStatus.SENDING, QueueStatus.PENDING]

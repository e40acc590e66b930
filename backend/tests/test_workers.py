"""
Test: Push Event Pipeline
=========================

Job queue shape, the lockup event worker, the sync worker loop and the
SSE broadcaster, plus the process supervisor plan.
"""

import asyncio
import json

import pytest

from models.domain.content_entry import ContentState
from models.domain.lockup import LockupRecord, MalformedLockupError
from services.event_broadcaster import SUBSCRIBER_QUEUE_SIZE, EventBroadcaster
from services.external import ExternalServiceError
from services.job_queue import LOCKUP_EVENTS_QUEUE, JobQueue, dead_letter_queue
from utils.amounts import AmountUnit
from workers.lockup_event_worker import LockupEventWorker, UnlockEvent, parse_unlock_event
from workers.sync_worker import SyncWorker
from run_workers import RestartPolicy, plan_processes

from conftest import CASTER_WALLET, HASH_A, NOW, ONE_TOKEN


class FakeRedis:
    """Just enough of redis.asyncio for LPUSH/BRPOP"""

    def __init__(self):
        self.lists = {}

    async def lpush(self, name, value):
        self.lists.setdefault(name, []).insert(0, value)

    async def brpop(self, name, timeout=0):
        items = self.lists.get(name)
        if not items:
            return None
        return name, items.pop()

    async def llen(self, name):
        return len(self.lists.get(name, []))


@pytest.fixture
def job_queue():
    queue = JobQueue('redis://unused')
    queue.redis = FakeRedis()
    return queue


def created_job(lockup_id=7, **overrides):
    data = {
        'lockUpId': lockup_id,
        'receiver': CASTER_WALLET,
        'amount': ONE_TOKEN,
        'unlockTime': NOW + 3600,
        'title': HASH_A,
    }
    data.update(overrides)
    return {'event_type': 'LockUpCreated', 'data': data}


@pytest.mark.asyncio
class TestJobQueue:

    async def test_lockup_event_round_trip(self, job_queue):
        await job_queue.enqueue_lockup_event('Unlock', {'lockUpId': 3})
        assert await job_queue.queue_length(LOCKUP_EVENTS_QUEUE) == 1

        job = await job_queue.dequeue(LOCKUP_EVENTS_QUEUE)
        assert job['event_type'] == 'Unlock'
        assert job['data'] == {'lockUpId': 3}
        assert 'received_at' in job

    async def test_fifo_order(self, job_queue):
        await job_queue.enqueue(LOCKUP_EVENTS_QUEUE, {'n': 1})
        await job_queue.enqueue(LOCKUP_EVENTS_QUEUE, {'n': 2})
        assert (await job_queue.dequeue(LOCKUP_EVENTS_QUEUE))['n'] == 1
        assert json.loads(job_queue.redis.lists[LOCKUP_EVENTS_QUEUE][0]) == {'n': 2}

    async def test_undecodable_payload_dead_lettered(self, job_queue):
        await job_queue.redis.lpush(LOCKUP_EVENTS_QUEUE, '{not json')
        await job_queue.redis.lpush(LOCKUP_EVENTS_QUEUE, '[1, 2]')

        assert await job_queue.dequeue(LOCKUP_EVENTS_QUEUE) is None
        assert await job_queue.dequeue(LOCKUP_EVENTS_QUEUE) is None

        dead = [json.loads(raw) for raw in job_queue.redis.lists[dead_letter_queue(LOCKUP_EVENTS_QUEUE)]]
        assert [d['payload'] for d in dead] == ['[1, 2]', '{not json']
        assert dead[0]['reason'] == 'not an object'
        assert await job_queue.queue_length(LOCKUP_EVENTS_QUEUE) == 0


class TestParseJobs:

    def test_unlock_event(self):
        event = parse_unlock_event({'lockUpId': '9', 'castHash': HASH_A[2:]})
        assert event == UnlockEvent(lockup_id=9, content_hash=HASH_A)

    def test_unlock_without_id(self):
        with pytest.raises(MalformedLockupError):
            parse_unlock_event({'receiver': CASTER_WALLET})

    def test_created_event_uses_worker_unit(self, job_queue, orchestrator):
        worker = LockupEventWorker(job_queue, orchestrator, amount_unit=AmountUnit.TOKEN)
        parsed = worker.parse_job(created_job(amount='1.5'))
        assert isinstance(parsed, LockupRecord)
        assert parsed.amount_unit == AmountUnit.TOKEN
        assert parsed.sender is None

    def test_unknown_and_malformed_jobs_skipped(self, job_queue, orchestrator):
        worker = LockupEventWorker(job_queue, orchestrator)
        assert worker.parse_job({'event_type': 'Transfer', 'data': {}}) is None
        assert worker.parse_job({'event_type': 'LockUpCreated', 'data': {'lockUpId': 1}}) is None


@pytest.mark.asyncio
class TestLockupEventWorker:

    async def test_created_then_unlocked(self, job_queue, orchestrator, repository):
        worker = LockupEventWorker(job_queue, orchestrator, worker_id=2)
        assert worker.worker_name == 'lockup-events-2'

        await worker.handle_job(created_job(7))
        assert repository.rows[HASH_A].state == ContentState.ACTIVE

        await worker.handle_job({'event_type': 'Unlock', 'data': {'lockUpId': 7}})
        assert repository.rows[HASH_A].state == ContentState.EXPIRED

        assert worker.jobs_processed == 2
        assert worker.jobs_skipped == 0

    async def test_no_op_events_counted_as_skipped(self, job_queue, orchestrator):
        worker = LockupEventWorker(job_queue, orchestrator)
        await worker.handle_job({'event_type': 'Unlock', 'data': {'lockUpId': 404}})
        await worker.handle_job({'event_type': 'Bogus', 'data': {}})
        assert worker.jobs_skipped == 2

    async def test_processing_error_isolated(self, job_queue):
        class Exploding:
            async def apply_unlock(self, lockup_id, content_hash=None):
                raise RuntimeError("boom")

        worker = LockupEventWorker(job_queue, Exploding())
        await worker.handle_job({'event_type': 'Unlock', 'data': {'lockUpId': 1}})
        assert worker.jobs_failed == 1


@pytest.mark.asyncio
class TestSyncWorker:

    async def test_run_once_counts_passes(self, orchestrator, source):
        worker = SyncWorker(orchestrator, interval_seconds=60)
        assert (await worker.run_once()).success

        source.error = ExternalServiceError('dune', 'down')
        assert not (await worker.run_once()).success
        assert (worker.passes_ok, worker.passes_failed) == (1, 1)

    async def test_stop_ends_loop(self, orchestrator, monkeypatch):
        worker = SyncWorker(orchestrator, interval_seconds=60)
        monkeypatch.setattr(worker, '_setup_signal_handlers', lambda: None)

        task = asyncio.create_task(worker.start())
        await asyncio.sleep(0.05)
        worker.stop()
        await asyncio.wait_for(task, timeout=1)

        assert worker.passes_ok == 1


@pytest.mark.asyncio
class TestEventBroadcaster:

    async def test_publish_reaches_subscribers(self):
        events = EventBroadcaster()
        queue = events.subscribe()
        published = events.publish('unlock', {'lockUpId': 1})

        assert await queue.get() == published
        assert published['type'] == 'unlock'
        assert 'timestamp' in published

    async def test_history_replayed_to_new_subscribers(self):
        events = EventBroadcaster(history_size=2)
        for i in range(3):
            events.publish('lockup_created', {'lockUpId': i})

        queue = events.subscribe()
        assert [queue.get_nowait()['data']['lockUpId'] for _ in range(queue.qsize())] == [1, 2]
        assert events.subscribe(replay=False).empty()

    async def test_slow_subscriber_dropped(self):
        events = EventBroadcaster()
        events.subscribe(replay=False)
        for i in range(SUBSCRIBER_QUEUE_SIZE + 1):
            events.publish('transfer', {'n': i})
        assert events.subscriber_count == 0

    async def test_unsubscribe(self):
        events = EventBroadcaster()
        queue = events.subscribe()
        events.unsubscribe(queue)
        events.publish('unlock', {})
        assert queue.empty()


class TestProcessPlan:

    def test_default_plan(self):
        specs = plan_processes()
        assert [s.name for s in specs] == ['api', 'sync', 'lockups-1']
        assert specs[0].argv[-1] == '8000'

    def test_lockup_workers_get_ids(self):
        specs = plan_processes(only='lockups', lockup_workers=3)
        assert [s.env['WORKER_ID'] for s in specs] == ['1', '2', '3']

    def test_single_sync_process(self):
        specs = plan_processes(only='all', lockup_workers=4, include_api=False)
        assert [s.name for s in specs].count('sync') == 1
        assert 'api' not in [s.name for s in specs]


class TestRestartPolicy:

    def test_gives_up_after_repeated_crashes(self):
        policy = RestartPolicy(max_restarts=2, stable_after=60)
        assert policy.record_exit('sync', 1)
        assert policy.record_exit('sync', 1)
        assert not policy.record_exit('sync', 1)

    def test_stable_run_resets_count(self):
        policy = RestartPolicy(max_restarts=1, stable_after=60)
        assert policy.record_exit('api', 1)
        assert policy.record_exit('api', 120)
        assert policy.record_exit('api', 1)

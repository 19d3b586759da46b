import asyncio
import json
import unittest

from caresync.errors import RemoteBackendError
from caresync.models import Entity, OperationType, Priority
from caresync.offline_queue import OfflineQueue
from caresync.remote import InMemoryRemoteBackend
from caresync.scheduling import ManualClock
from caresync.storage import InMemoryLocalStore
from caresync.sync_processor import SyncProcessor

UNAVAILABLE = RemoteBackendError("Service unavailable", code="unavailable")
DENIED = RemoteBackendError("Missing or insufficient permissions", code="permission-denied")


class BlockingBackend(InMemoryRemoteBackend):
    """Holds every add_log call until `release` is set."""

    def __init__(self):
        super().__init__()
        self.release = asyncio.Event()
        self.entered = asyncio.Event()

    async def add_log(self, identity, profile_id, data):
        self.entered.set()
        await self.release.wait()
        return await super().add_log(identity, profile_id, data)


class OfflineQueueTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.clock = ManualClock()
        self.store = InMemoryLocalStore()
        self.backend = InMemoryRemoteBackend()

    def make_queue(self, backend=None, store=None):
        processor = SyncProcessor(backend or self.backend, max_attempts=3, clock=self.clock)
        return OfflineQueue(store or self.store, processor, max_attempts=3, clock=self.clock)

    def add_log(self, queue, log_id="log-1", priority=Priority.MEDIUM):
        return queue.enqueue(
            OperationType.ADD,
            Entity.LOG,
            {"id": log_id, "type": "feeding", "amount": 120},
            profile_id="baby-1",
            priority=priority,
        )

    async def test_drain_with_all_successes_empties_queue(self):
        queue = self.make_queue()
        self.add_log(queue, "log-1")
        queue.enqueue(OperationType.UPDATE, Entity.PROFILE, {"id": "baby-1", "name": "Ada"})
        queue.enqueue(
            OperationType.DELETE, Entity.REMINDER, {"id": "rem-1"}, profile_id="baby-1"
        )

        result = await queue.drain("user-1")

        self.assertEqual(result.success, 3)
        self.assertEqual(result.failed, 0)
        self.assertEqual(result.errors, [])
        status = queue.status()
        self.assertEqual(status["total"], 0)
        self.assertEqual(status["pending"], 0)
        self.assertEqual(status["failed"], 0)
        self.assertEqual(self.backend.call_count("add_log"), 1)
        self.assertEqual(self.backend.call_count("update_profile"), 1)
        self.assertEqual(self.backend.call_count("delete_reminder"), 1)
        self.assertEqual(json.loads(self.store.get("offline_queue")), [])

    async def test_retryable_failure_is_attempted_max_attempts_times_across_drains(self):
        self.backend.fail("add_log", UNAVAILABLE)
        queue = self.make_queue()
        op = self.add_log(queue)

        first = await queue.drain("user-1")
        self.assertEqual(first.failed, 0)
        self.assertEqual(queue.get(op.id).attempts, 1)
        self.assertEqual(queue.get(op.id).error, "Service unavailable")
        self.assertEqual(queue.get(op.id).last_attempt, int(self.clock.now() * 1000))

        await queue.drain("user-1")
        third = await queue.drain("user-1")
        await queue.drain("user-1")

        self.assertEqual(self.backend.call_count("add_log"), 3)
        self.assertEqual(third.failed, 1)
        self.assertEqual(third.errors, ["log add: Service unavailable"])
        failed = queue.get(op.id)
        self.assertIsNotNone(failed)
        self.assertEqual(failed.attempts, 3)
        self.assertEqual(queue.status()["failed"], 1)
        self.assertEqual(queue.status()["total"], 1)

    async def test_fatal_failure_is_flagged_after_one_attempt(self):
        self.backend.fail("add_log", DENIED)
        queue = self.make_queue()
        op = self.add_log(queue)

        result = await queue.drain("user-1")
        await queue.drain("user-1")

        self.assertEqual(self.backend.call_count("add_log"), 1)
        self.assertEqual(result.failed, 1)
        self.assertEqual(queue.get(op.id).attempts, 3)
        self.assertEqual(queue.status()["failed"], 1)

    async def test_missing_profile_id_is_fatal(self):
        queue = self.make_queue()
        op = queue.enqueue(OperationType.ADD, Entity.APPOINTMENT, {"title": "Checkup"})

        result = await queue.drain("user-1")

        self.assertEqual(result.failed, 1)
        self.assertEqual(self.backend.calls, [])
        self.assertIn("profile_id required", queue.get(op.id).error)

    async def test_clear_failed_removes_only_failed_entries(self):
        self.backend.fail("add_log", DENIED)
        self.backend.fail("add_reminder", UNAVAILABLE, times=1)
        queue = self.make_queue()
        failing = self.add_log(queue)
        pending = queue.enqueue(
            OperationType.ADD, Entity.REMINDER, {"title": "Vitamin D"}, profile_id="baby-1"
        )
        await queue.drain("user-1")
        self.assertEqual(queue.get(pending.id).attempts, 1)

        cleared = queue.clear_failed()

        self.assertEqual(cleared, 1)
        self.assertIsNone(queue.get(failing.id))
        self.assertEqual(queue.get(pending.id).attempts, 1)
        self.assertEqual(len(queue), 1)

    async def test_retry_failed_resets_only_failed_entries(self):
        self.backend.fail("add_log", DENIED)
        self.backend.fail("add_reminder", UNAVAILABLE, times=1)
        queue = self.make_queue()
        failing = self.add_log(queue)
        pending = queue.enqueue(
            OperationType.ADD, Entity.REMINDER, {"title": "Vitamin D"}, profile_id="baby-1"
        )
        await queue.drain("user-1")

        retried = queue.retry_failed()

        self.assertEqual(retried, 1)
        reset = queue.get(failing.id)
        self.assertEqual(reset.attempts, 0)
        self.assertIsNone(reset.error)
        self.assertIsNone(reset.last_attempt)
        self.assertEqual(queue.get(pending.id).attempts, 1)
        self.assertEqual(queue.get(pending.id).error, "Service unavailable")
        self.assertEqual(queue.status()["failed"], 0)

    async def test_drain_without_identity_does_not_contact_backend(self):
        queue = self.make_queue()
        op = self.add_log(queue)

        result = await queue.drain(None)

        self.assertEqual((result.success, result.failed, result.errors), (0, 0, []))
        self.assertEqual(self.backend.calls, [])
        self.assertEqual(queue.get(op.id).attempts, 0)

    async def test_reentrant_drain_is_a_noop(self):
        backend = BlockingBackend()
        queue = self.make_queue(backend=backend)
        self.add_log(queue)

        first = asyncio.create_task(queue.drain("user-1"))
        await backend.entered.wait()
        self.assertTrue(queue.status()["isProcessing"])

        second = await queue.drain("user-1")
        backend.release.set()
        result = await first

        self.assertEqual((second.success, second.failed), (0, 0))
        self.assertEqual(result.success, 1)
        self.assertEqual(backend.call_count("add_log"), 1)
        self.assertFalse(queue.is_processing)

    async def test_enqueue_during_drain_is_kept_for_next_pass(self):
        backend = BlockingBackend()
        queue = self.make_queue(backend=backend)
        self.add_log(queue, "log-1")

        drain = asyncio.create_task(queue.drain("user-1"))
        await backend.entered.wait()
        late = self.add_log(queue, "log-2")
        backend.release.set()
        await drain

        self.assertEqual([op.id for op in queue.operations], [late.id])

    def test_queue_survives_restart(self):
        queue = self.make_queue()
        op = self.add_log(queue, priority=Priority.HIGH)

        reloaded = self.make_queue()

        self.assertEqual(len(reloaded), 1)
        restored = reloaded.get(op.id)
        self.assertEqual(restored.data, op.data)
        self.assertEqual(restored.profile_id, "baby-1")
        self.assertEqual(restored.priority, Priority.HIGH)
        self.assertEqual(restored.entity, Entity.LOG)

    def test_corrupted_queue_loads_empty(self):
        for raw in ("{not json", '{"id": 1}', '[{"id": "x"}]'):
            with self.subTest(raw=raw):
                store = InMemoryLocalStore()
                store.set("offline_queue", raw)
                self.assertEqual(len(self.make_queue(store=store)), 0)

    def test_storage_failure_keeps_operation_in_memory(self):
        store = InMemoryLocalStore(max_bytes=10)
        queue = self.make_queue(store=store)

        op = self.add_log(queue)

        self.assertEqual(len(queue), 1)
        self.assertIsNotNone(queue.get(op.id))
        self.assertIsNone(store.get("offline_queue"))

    def test_identical_operations_are_not_deduplicated(self):
        queue = self.make_queue()
        first = self.add_log(queue, "log-1")
        second = self.add_log(queue, "log-1")

        self.assertEqual(len(queue), 2)
        self.assertNotEqual(first.id, second.id)

    def test_remove(self):
        queue = self.make_queue()
        op = self.add_log(queue)

        self.assertTrue(queue.remove(op.id))
        self.assertFalse(queue.remove(op.id))
        self.assertEqual(len(queue), 0)

    def test_cleanup_old_entries(self):
        queue = self.make_queue()
        old = self.add_log(queue, "log-old")
        self.clock.advance(8 * 24 * 60 * 60)
        fresh = self.add_log(queue, "log-new")

        removed = queue.cleanup_old_entries(7 * 24 * 60 * 60)

        self.assertEqual(removed, 1)
        self.assertIsNone(queue.get(old.id))
        self.assertIsNotNone(queue.get(fresh.id))

    def test_status_counts_priorities_and_oldest(self):
        queue = self.make_queue()
        first = self.add_log(queue, "a", priority=Priority.HIGH)
        self.clock.advance(5)
        self.add_log(queue, "b", priority=Priority.LOW)
        self.add_log(queue, "c", priority=Priority.LOW)

        status = queue.status()

        self.assertEqual(status["priorityCount"], {"high": 1, "medium": 0, "low": 2})
        self.assertEqual(status["oldestOperation"], first.timestamp)
        self.assertFalse(status["isProcessing"])

    def test_details_lists_operations(self):
        queue = self.make_queue()
        op = self.add_log(queue)

        details = queue.details()

        self.assertEqual(details["status"]["total"], 1)
        summary = details["operations"][0]
        self.assertEqual(summary["id"], op.id)
        self.assertEqual(summary["entity"], "log")
        self.assertTrue(summary["timestamp"].startswith("2023-11-14T"))


if __name__ == "__main__":
    unittest.main()

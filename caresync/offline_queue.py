"""
Durable queue of mutations waiting for the remote backend.

The whole queue is stored as one JSON array under a fixed key and rewritten
after every change. That read-modify-write is only safe because all queue
changes run on one event loop without preemption between them; a truly
concurrent runtime would need a lock or per-entry storage.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from caresync.models import (
    Entity,
    OperationType,
    Priority,
    QueuedOperation,
    SyncResult,
    epoch_ms,
    new_operation_id,
)
from caresync.scheduling import Clock, SystemClock
from caresync.storage import LocalStore
from caresync.sync_processor import SyncProcessor

logger = logging.getLogger(__name__)


def _iso_from_ms(value: Optional[int]) -> Optional[str]:
    if value is None:
        return None
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc).isoformat()


class OfflineQueue:
    """
    Owner of the persisted queue. Create one per storage key; two instances
    writing the same key would overwrite each other's changes.
    """

    def __init__(
        self,
        store: LocalStore,
        processor: SyncProcessor,
        *,
        storage_key: str = "offline_queue",
        max_attempts: int = 3,
        clock: Optional[Clock] = None,
    ):
        self.store = store
        self.processor = processor
        self.storage_key = storage_key
        self.max_attempts = max_attempts
        self.clock = clock or SystemClock()
        self.is_processing = False
        self._queue: list[QueuedOperation] = self._load()

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def operations(self) -> list[QueuedOperation]:
        return list(self._queue)

    @property
    def pending_count(self) -> int:
        return sum(1 for op in self._queue if not op.is_failed(self.max_attempts))

    def get(self, operation_id: str) -> Optional[QueuedOperation]:
        for op in self._queue:
            if op.id == operation_id:
                return op
        return None

    def _load(self) -> list[QueuedOperation]:
        try:
            raw = self.store.get(self.storage_key)
            if not raw:
                return []
            payload = json.loads(raw)
            if not isinstance(payload, list):
                raise ValueError("queue payload is not a list")
            return [QueuedOperation.from_dict(item) for item in payload]
        except Exception:
            logger.warning(
                "Failed to load offline queue from %s; starting empty",
                self.storage_key,
                exc_info=True,
            )
            return []

    def _save(self) -> None:
        try:
            body = json.dumps([op.as_dict() for op in self._queue], default=str)
            self.store.set(self.storage_key, body)
        except Exception:
            # The queue stays in memory and is retried on the next change.
            logger.exception("Failed to save offline queue (%d entries)", len(self._queue))

    def enqueue(
        self,
        op_type: OperationType,
        entity: Entity,
        data: Any,
        *,
        profile_id: Optional[str] = None,
        priority: Priority = Priority.MEDIUM,
    ) -> QueuedOperation:
        now_ms = epoch_ms(self.clock.now())
        operation = QueuedOperation(
            id=new_operation_id(now_ms),
            type=OperationType(op_type),
            entity=Entity(entity),
            data=data,
            timestamp=now_ms,
            priority=Priority(priority),
            profile_id=profile_id,
        )
        self._queue.append(operation)
        self._save()
        logger.info(
            "Queued %s %s (%s); %d in queue",
            operation.entity.value,
            operation.type.value,
            operation.id,
            len(self._queue),
        )
        return operation

    def remove(self, operation_id: str) -> bool:
        before = len(self._queue)
        self._queue = [op for op in self._queue if op.id != operation_id]
        if len(self._queue) == before:
            return False
        self._save()
        return True

    async def drain(self, identity: Optional[str] = None) -> SyncResult:
        """
        Send every non-failed entry to the backend, one after another.

        A call made while a drain is running, or without an identity, does
        nothing and returns an empty result.
        """
        if self.is_processing:
            logger.info("Drain already in progress; skipping")
            return SyncResult()
        if not identity:
            logger.warning("No identity provided for sync; skipping drain")
            return SyncResult()

        self.is_processing = True
        try:
            batch = [op for op in self._queue if not op.is_failed(self.max_attempts)]
            logger.info("Draining %d queued operations", len(batch))
            result = await self.processor.run_batch(
                batch,
                identity,
                on_success=lambda op: self.remove(op.id),
                on_failure=lambda op: self._save(),
            )
        finally:
            self.is_processing = False

        logger.info(
            "Drain finished: %d synced, %d failed, %d remaining",
            result.success,
            result.failed,
            len(self._queue),
        )
        return result

    def clear_failed(self) -> int:
        failed = [op for op in self._queue if op.is_failed(self.max_attempts)]
        if failed:
            self._queue = [op for op in self._queue if not op.is_failed(self.max_attempts)]
            self._save()
        return len(failed)

    def retry_failed(self) -> int:
        failed = [op for op in self._queue if op.is_failed(self.max_attempts)]
        for op in failed:
            op.attempts = 0
            op.error = None
            op.last_attempt = None
        if failed:
            self._save()
        return len(failed)

    def cleanup_old_entries(self, max_age_seconds: float = 7 * 24 * 60 * 60) -> int:
        cutoff = epoch_ms(self.clock.now() - max_age_seconds)
        old = [op for op in self._queue if op.timestamp < cutoff]
        if old:
            self._queue = [op for op in self._queue if op.timestamp >= cutoff]
            self._save()
            logger.info("Cleaned up %d old queue entries", len(old))
        return len(old)

    def status(self) -> dict:
        failed = sum(1 for op in self._queue if op.is_failed(self.max_attempts))
        priority_count = {p.value: 0 for p in Priority}
        for op in self._queue:
            priority_count[op.priority.value] += 1
        return {
            "total": len(self._queue),
            "pending": len(self._queue) - failed,
            "failed": failed,
            "isProcessing": self.is_processing,
            "priorityCount": priority_count,
            "oldestOperation": min((op.timestamp for op in self._queue), default=None),
        }

    def details(self) -> dict:
        return {
            "operations": [
                {
                    "id": op.id,
                    "type": op.type.value,
                    "entity": op.entity.value,
                    "profileId": op.profile_id,
                    "priority": op.priority.value,
                    "attempts": op.attempts,
                    "timestamp": _iso_from_ms(op.timestamp),
                    "lastAttempt": _iso_from_ms(op.last_attempt),
                    "error": op.error,
                }
                for op in self._queue
            ],
            "status": self.status(),
        }

"""
Coordinator for mutations, sync passes and backups.

A mutation goes straight to the remote backend while online; when that fails,
or while offline, it is queued. Queued work is drained when the network comes
back, on a periodic tick, or on request. Backups and checkpoints run on their
own timers, independent of the queue.
"""

from __future__ import annotations

import functools
import logging
from typing import Any, Awaitable, Callable, Optional

from caresync.backup import BackupService
from caresync.config import Settings, get_settings
from caresync.errors import IdentityRequiredError
from caresync.models import (
    CheckpointStatus,
    Entity,
    OperationType,
    Priority,
    Snapshot,
    SyncResult,
    epoch_ms,
)
from caresync.network import NetworkMonitor
from caresync.notifications import LoggingNotifier, Notifier
from caresync.offline_queue import OfflineQueue
from caresync.scheduling import Clock, ScheduledTask, Scheduler, SystemClock
from caresync.sync_processor import SyncProcessor

logger = logging.getLogger(__name__)

MANUAL_SYNC_KEY = "manual-sync"


class SyncService:
    def __init__(
        self,
        queue: OfflineQueue,
        backups: BackupService,
        network: NetworkMonitor,
        processor: SyncProcessor,
        *,
        scheduler: Scheduler,
        clock: Optional[Clock] = None,
        notifier: Optional[Notifier] = None,
        settings: Optional[Settings] = None,
        identity: Optional[str] = None,
    ):
        self.queue = queue
        self.backups = backups
        self.network = network
        self.processor = processor
        self.scheduler = scheduler
        self.clock = clock or SystemClock()
        self.notifier = notifier or LoggingNotifier()
        self.settings = settings or get_settings()
        self.identity = identity
        self.last_sync_time = 0
        self._tasks: list[ScheduledTask] = []
        self._unsubscribe: Optional[Callable[[], None]] = None

    # Lifecycle

    def set_identity(self, identity: Optional[str]) -> None:
        self.identity = identity or None

    def start(self) -> None:
        if self._unsubscribe is not None:
            return
        self._unsubscribe = self.network.subscribe(self._on_network_change)
        s = self.settings
        self._tasks = [
            self.scheduler.every(s.sync_interval_seconds, self._sync_tick, name="sync"),
            self.scheduler.every(s.backup_interval_seconds, self._backup_tick, name="backup"),
            self.scheduler.every(
                s.checkpoint_interval_seconds, self.backups.create_checkpoint, name="checkpoint"
            ),
            self.scheduler.every(24 * 60 * 60, self._cleanup_tick, name="queue-cleanup"),
        ]
        logger.info("Sync service started (%d timers)", len(self._tasks))

    def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        self._tasks = []
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        logger.info("Sync service stopped")

    async def _on_network_change(self, online: bool) -> None:
        if not online:
            self.notifier.error(
                "You are offline. Changes will be synced when back online.", key="network"
            )
            return
        self.notifier.success("Back online! Syncing data...", key="network")
        if self.queue.pending_count and self.identity:
            await self.drain(self.identity)

    async def _sync_tick(self) -> None:
        if (
            self.network.is_online
            and self.identity
            and self.queue.pending_count
            and not self.queue.is_processing
        ):
            logger.info("Auto-sync triggered with %d operations", self.queue.pending_count)
            await self.drain(self.identity)

    async def _backup_tick(self) -> None:
        await self.backups.create_backup(self.identity if self.network.is_online else None)

    def _cleanup_tick(self) -> None:
        self.queue.cleanup_old_entries(self.settings.queue_max_age_seconds)

    # Mutations

    async def mutate(
        self,
        op_type: OperationType,
        entity: Entity,
        data: Any,
        *,
        profile_id: Optional[str] = None,
        priority: Priority = Priority.MEDIUM,
    ) -> bool:
        """
        Write through to the backend when possible, otherwise queue.
        Returns True when the backend accepted the write directly.
        """
        op_type, entity = OperationType(op_type), Entity(entity)
        if self.network.is_online and self.identity:
            try:
                await self.processor.dispatch(self.identity, entity, op_type, data, profile_id)
                return True
            except Exception as e:
                logger.warning("Direct %s %s failed, queueing: %s", entity.value, op_type.value, e)

        self.queue.enqueue(op_type, entity, data, profile_id=profile_id, priority=priority)
        self.notifier.info("Operation queued for sync when back online")
        return False

    def with_offline_support(
        self,
        operation: Callable[..., Awaitable[Any]],
        *,
        entity: Entity,
        op_type: OperationType,
        get_data: Callable[..., Any],
        get_profile_id: Optional[Callable[..., Optional[str]]] = None,
        priority: Priority = Priority.MEDIUM,
    ) -> Callable[..., Awaitable[Any]]:
        """
        Wrap a remote call so that, when it fails or the device is offline,
        the equivalent queued operation is recorded instead.
        """

        @functools.wraps(operation)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            if self.network.is_online:
                try:
                    return await operation(*args, **kwargs)
                except Exception as e:
                    logger.warning("Operation failed, adding to offline queue: %s", e)

            self.queue.enqueue(
                op_type,
                entity,
                get_data(*args, **kwargs),
                profile_id=get_profile_id(*args, **kwargs) if get_profile_id else None,
                priority=priority,
            )
            self.notifier.info("Operation queued for sync when back online")
            return None

        return wrapper

    # Sync

    async def drain(self, identity: Optional[str]) -> SyncResult:
        """Drain the queue; while offline nothing is sent and the queue is left as is."""
        if not self.network.is_online:
            logger.info("Offline; leaving %d operations queued", len(self.queue))
            return SyncResult()
        result = await self.queue.drain(identity)
        if result.success:
            self.last_sync_time = epoch_ms(self.clock.now())
        if result.failed:
            self.backups.mark_pending_checkpoints(CheckpointStatus.FAILED)
        elif identity and len(self.queue) == 0 and not self.queue.is_processing:
            self.backups.mark_pending_checkpoints(CheckpointStatus.SYNCED)
        return result

    async def manual_sync(self, identity: Optional[str]) -> SyncResult:
        if not identity:
            raise IdentityRequiredError("User ID is required for manual sync")
        if not self.network.is_online:
            self.notifier.error(
                "You are offline. Changes will be synced when back online.",
                key=MANUAL_SYNC_KEY,
            )
            return SyncResult()

        self.notifier.info("Syncing data...", key=MANUAL_SYNC_KEY)
        try:
            result = await self.drain(identity)
        except Exception:
            self.notifier.error("Sync failed. Please try again.", key=MANUAL_SYNC_KEY)
            raise

        if result.success > 0:
            self.notifier.success(
                f"Successfully synced {result.success} operations", key=MANUAL_SYNC_KEY
            )
        if result.failed > 0:
            self.notifier.error(
                f"{result.failed} operations failed to sync", key=MANUAL_SYNC_KEY
            )
        if result.success == 0 and result.failed == 0:
            self.notifier.success("All data is up to date", key=MANUAL_SYNC_KEY)
        return result

    def clear_failed_operations(self) -> int:
        cleared = self.queue.clear_failed()
        if cleared:
            self.notifier.success(f"Cleared {cleared} failed operations")
        return cleared

    async def retry_failed_operations(self) -> int:
        retried = self.queue.retry_failed()
        if retried:
            self.notifier.success(f"Retrying {retried} failed operations")
            if self.network.is_online and self.identity:
                await self.drain(self.identity)
        return retried

    def cleanup_old_entries(self, max_age_seconds: Optional[float] = None) -> int:
        return self.queue.cleanup_old_entries(
            max_age_seconds if max_age_seconds is not None else self.settings.queue_max_age_seconds
        )

    # Backups

    async def create_backup(self, identity: Optional[str] = None) -> Snapshot:
        return await self.backups.create_backup(identity)

    async def create_safety_backup(self, identity: Optional[str] = None) -> Optional[Snapshot]:
        try:
            snapshot = await self.backups.create_backup(identity)
        except Exception:
            logger.exception("Failed to create safety backup")
            return None
        logger.info("Safety backup created at %s", snapshot.timestamp)
        return snapshot

    def restore_backup(self, timestamp: str) -> Snapshot:
        return self.backups.restore_by_timestamp(timestamp)

    def export_data(self) -> str:
        return self.backups.export_data()

    async def import_data(self, json_data: str) -> None:
        await self.backups.import_data(json_data)

    # Status

    def get_queue_status(self) -> dict:
        return self.queue.status()

    def get_queue_details(self) -> dict:
        return self.queue.details()

    def get_recovery_info(self) -> dict:
        return {
            "lastSyncTime": self.last_sync_time,
            "queuedItems": len(self.queue),
            "backupCount": self.backups.backup_count(),
            "isOnline": self.network.is_online,
        }

"""
Dependency wiring for the sync core and the FastAPI app.

Services are built explicitly by `build_services` and handed to the app;
there is no module-level singleton, so tests can build isolated instances.
"""

from __future__ import annotations

import importlib
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from caresync.backup import BackupService
from caresync.config import Settings, get_settings
from caresync.network import NetworkMonitor
from caresync.notifications import Notifier, RecordingNotifier
from caresync.offline_queue import OfflineQueue
from caresync.remote import InMemoryRemoteBackend, RemoteBackend
from caresync.scheduling import AsyncioScheduler, Clock, Scheduler, SystemClock
from caresync.service import SyncService
from caresync.state import InMemoryStateStore, StateStore
from caresync.storage import InMemoryLocalStore, LocalStore, RedisLocalStore, SqlLocalStore
from caresync.sync_processor import SyncProcessor

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    local_store: LocalStore
    state_store: StateStore
    backend: RemoteBackend
    network: NetworkMonitor
    processor: SyncProcessor
    queue: OfflineQueue
    backups: BackupService
    sync: SyncService
    notifier: Notifier


def get_local_store(settings: Settings) -> LocalStore:
    if settings.use_in_memory_backends:
        return InMemoryLocalStore()
    if settings.local_store_url:
        return SqlLocalStore(settings.local_store_url)
    if settings.redis_url:
        return RedisLocalStore(url=settings.redis_url, namespace=settings.redis_namespace)
    logger.warning("No local store configured; queue and backups will not survive restart")
    return InMemoryLocalStore()


def load_remote_backend(path: str) -> RemoteBackend:
    """Import `package.module:attribute` and call it to build the backend."""
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise ValueError(f"remote_backend must look like 'package.module:factory', got {path!r}")
    factory = getattr(importlib.import_module(module_name), attr)
    return factory()


def get_remote_backend(settings: Settings) -> RemoteBackend:
    if settings.remote_backend:
        return load_remote_backend(settings.remote_backend)
    if settings.use_in_memory_backends:
        logger.warning("Using in-memory remote backend; synced data is not kept")
        return InMemoryRemoteBackend()
    raise ValueError(
        "No remote backend configured; set CARESYNC_REMOTE_BACKEND "
        "or CARESYNC_USE_IN_MEMORY_BACKENDS=true"
    )


def build_services(
    settings: Optional[Settings] = None,
    *,
    backend: Optional[RemoteBackend] = None,
    local_store: Optional[LocalStore] = None,
    state_store: Optional[StateStore] = None,
    network: Optional[NetworkMonitor] = None,
    clock: Optional[Clock] = None,
    scheduler: Optional[Scheduler] = None,
    notifier: Optional[Notifier] = None,
    identity: Optional[str] = None,
) -> Services:
    settings = settings or get_settings()
    clock = clock or SystemClock()
    notifier = notifier or RecordingNotifier()
    local_store = local_store if local_store is not None else get_local_store(settings)
    state_store = state_store or InMemoryStateStore()
    network = network or NetworkMonitor(clock=clock)
    backend = backend if backend is not None else get_remote_backend(settings)

    processor = SyncProcessor(backend, max_attempts=settings.max_attempts, clock=clock)
    queue = OfflineQueue(
        local_store,
        processor,
        storage_key=settings.queue_storage_key,
        max_attempts=settings.max_attempts,
        clock=clock,
    )
    backups = BackupService(
        state_store,
        local_store,
        backend,
        clock=clock,
        settings=settings,
        notifier=notifier,
    )
    sync = SyncService(
        queue,
        backups,
        network,
        processor,
        scheduler=scheduler or AsyncioScheduler(),
        clock=clock,
        notifier=notifier,
        settings=settings,
        identity=identity,
    )
    return Services(
        settings=settings,
        local_store=local_store,
        state_store=state_store,
        backend=backend,
        network=network,
        processor=processor,
        queue=queue,
        backups=backups,
        sync=sync,
        notifier=notifier,
    )


def get_sync_service(request: Request) -> SyncService:
    return request.app.state.services.sync

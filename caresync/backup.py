"""
Local snapshots, checkpoints and export/import of the application state.

Snapshots are full copies of the state kept under `backup_<timestamp>` keys
(newest `max_backups` retained). Checkpoints only record a content hash and
collection sizes under `checkpoint_<ms>` keys (newest `max_checkpoints`
retained). Restore and import replace the live state wholesale; there is no
field-level merge.
"""

from __future__ import annotations

import hashlib
import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, ValidationError

from caresync.config import Settings, get_settings
from caresync.errors import BackupNotFoundError, ImportValidationError
from caresync.models import (
    Checkpoint,
    CheckpointStatus,
    Snapshot,
    epoch_ms,
    iso_timestamp,
)
from caresync.notifications import LoggingNotifier, Notifier
from caresync.remote import RemoteBackend
from caresync.scheduling import Clock, SystemClock
from caresync.state import COLLECTION_DEFAULTS, StateStore, build_state
from caresync.storage import LocalStore

logger = logging.getLogger(__name__)

BACKUP_PREFIX = "backup_"
CHECKPOINT_PREFIX = "checkpoint_"
LATEST_BACKUP_KEY = "latest_backup"


class ImportDocument(BaseModel):
    """Shape check for import documents; unknown top-level keys are kept."""

    model_config = ConfigDict(extra="allow")

    profiles: List[Any]
    logs: Dict[str, Any]
    inventories: Optional[Dict[str, Any]] = None
    reminders: Optional[Dict[str, Any]] = None
    appointments: Optional[Dict[str, Any]] = None
    customActivities: Optional[List[Any]] = None
    achievedMilestones: Optional[Dict[str, Any]] = None
    settings: Optional[Dict[str, Any]] = None


def state_hash(state: dict) -> str:
    canonical = json.dumps(state, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def change_counters(state: dict) -> Dict[str, int]:
    logs = state.get("logs") or {}
    return {
        "profiles": len(state.get("profiles") or []),
        "logs": sum(len(entries) for entries in logs.values() if isinstance(entries, list)),
        "other": len(state.get("reminders") or {}) + len(state.get("appointments") or {}),
    }


def _snapshot_sort_key(key: str) -> float:
    try:
        return datetime.fromisoformat(key[len(BACKUP_PREFIX):]).timestamp()
    except ValueError:
        return float("-inf")


def _checkpoint_sort_key(key: str) -> int:
    try:
        return int(key[len(CHECKPOINT_PREFIX):])
    except ValueError:
        return -1


class BackupService:
    """
    Owner of the snapshot and checkpoint entries in the local store.

    `backend` is optional; when present and an identity is supplied, new
    snapshots are also mirrored remotely on a best-effort basis.
    """

    def __init__(
        self,
        state_store: StateStore,
        local_store: LocalStore,
        backend: Optional[RemoteBackend] = None,
        *,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
        notifier: Optional[Notifier] = None,
    ):
        self.state_store = state_store
        self.local_store = local_store
        self.backend = backend
        self.clock = clock or SystemClock()
        self.settings = settings or get_settings()
        self.notifier = notifier or LoggingNotifier()

    # Snapshots

    async def create_backup(self, identity: Optional[str] = None) -> Snapshot:
        snapshot = Snapshot(
            timestamp=self._unused_timestamp(),
            version=self.settings.schema_version,
            data=self.state_store.get_state(),
        )
        self._save_locally(snapshot)

        if identity and self.backend is not None:
            try:
                await self.backend.save_backup(identity, snapshot.as_dict())
            except Exception as e:
                logger.warning("Failed to mirror backup %s remotely: %s", snapshot.timestamp, e)
        return snapshot

    def _unused_timestamp(self) -> str:
        # Two backups at the same clock reading would share a key; step 1 ms.
        now = self.clock.now()
        timestamp = iso_timestamp(now)
        try:
            while self.local_store.get(f"{BACKUP_PREFIX}{timestamp}") is not None:
                now += 0.001
                timestamp = iso_timestamp(now)
        except Exception:
            logger.warning("Could not check for existing backup keys", exc_info=True)
        return timestamp

    def _save_locally(self, snapshot: Snapshot) -> None:
        try:
            self.local_store.set(snapshot.storage_key, json.dumps(snapshot.as_dict(), default=str))
            self._rotate(BACKUP_PREFIX, self.settings.max_backups, _snapshot_sort_key)
            self.local_store.set(LATEST_BACKUP_KEY, snapshot.storage_key)
            logger.info("Created backup %s", snapshot.storage_key)
        except Exception:
            # The snapshot is still returned to the caller but will not
            # survive a restart.
            logger.exception("Failed to save backup %s locally", snapshot.storage_key)

    def _rotate(self, prefix: str, keep: int, sort_key) -> None:
        keys = sorted(self.local_store.keys(prefix), key=sort_key, reverse=True)
        for key in keys[keep:]:
            self.local_store.remove(key)
            logger.debug("Rotated out %s", key)

    def list_backups(self) -> list[Snapshot]:
        """Stored snapshots, newest first. Unreadable entries are skipped."""
        backups: list[Snapshot] = []
        try:
            keys = self.local_store.keys(BACKUP_PREFIX)
        except Exception:
            logger.exception("Failed to list local backups")
            return []
        for key in keys:
            try:
                raw = self.local_store.get(key)
                if raw:
                    backups.append(Snapshot.from_dict(json.loads(raw)))
            except Exception:
                logger.warning("Skipping unreadable backup %s", key, exc_info=True)
        backups.sort(key=lambda s: _snapshot_sort_key(s.storage_key), reverse=True)
        return backups

    def backup_count(self) -> int:
        return len(self.list_backups())

    def get_backup(self, timestamp: str) -> Optional[Snapshot]:
        for snapshot in self.list_backups():
            if snapshot.timestamp == timestamp:
                return snapshot
        return None

    def latest_backup(self) -> Optional[Snapshot]:
        backups = self.list_backups()
        return backups[0] if backups else None

    def restore(self, snapshot: Snapshot) -> None:
        try:
            self.state_store.replace_state(build_state(snapshot.data))
        except Exception:
            logger.exception("Failed to restore from backup %s", snapshot.timestamp)
            self.notifier.error("Failed to restore data. Please try again.")
            raise
        logger.info("Restored state from backup %s", snapshot.timestamp)
        self.notifier.success("Data restored successfully!")

    def restore_by_timestamp(self, timestamp: str) -> Snapshot:
        snapshot = self.get_backup(timestamp)
        if snapshot is None:
            raise BackupNotFoundError(f"No backup with timestamp {timestamp}")
        self.restore(snapshot)
        return snapshot

    # Export / import

    def export_data(self) -> str:
        state = self.state_store.get_state()
        document: Dict[str, Any] = {
            "exportedAt": iso_timestamp(self.clock.now()),
            "appVersion": self.settings.app_version,
        }
        for name in COLLECTION_DEFAULTS:
            document[name] = state[name]
        document["settings"] = state["settings"]
        return json.dumps(document, indent=2, default=str)

    async def import_data(self, json_data: str) -> None:
        try:
            document = self._parse_import(json_data)
        except ImportValidationError as e:
            logger.warning("Rejected import document: %s", e)
            self.notifier.error("Failed to import data. Please check the file format.")
            raise

        await self.create_backup()

        current_settings = self.state_store.get_state().get("settings") or {}
        self.state_store.replace_state(build_state(document, fallback_settings=current_settings))
        logger.info(
            "Imported %d profiles from document exported at %s",
            len(document["profiles"]),
            document.get("exportedAt"),
        )
        self.notifier.success("Data imported successfully!")

    @staticmethod
    def _parse_import(json_data: str) -> dict:
        try:
            payload = json.loads(json_data)
        except (TypeError, ValueError) as e:
            raise ImportValidationError(f"Import data is not valid JSON: {e}") from e
        if not isinstance(payload, dict):
            raise ImportValidationError("Invalid import data format")
        try:
            ImportDocument.model_validate(payload)
        except ValidationError as e:
            raise ImportValidationError(f"Invalid import data format: {e}") from e
        return payload

    # Checkpoints

    def create_checkpoint(self) -> Optional[Checkpoint]:
        try:
            state = self.state_store.get_state()
            now = self.clock.now()
            checkpoint = Checkpoint(
                id=f"{CHECKPOINT_PREFIX}{epoch_ms(now)}",
                timestamp=iso_timestamp(now),
                status=CheckpointStatus.PENDING,
                data_hash=state_hash(state),
                changes=change_counters(state),
            )
            self._save_checkpoint(checkpoint)
            self._rotate(CHECKPOINT_PREFIX, self.settings.max_checkpoints, _checkpoint_sort_key)
        except Exception:
            logger.exception("Failed to create checkpoint")
            return None
        return checkpoint

    def _save_checkpoint(self, checkpoint: Checkpoint) -> None:
        self.local_store.set(checkpoint.id, json.dumps(checkpoint.as_dict()))

    def list_checkpoints(self) -> list[Checkpoint]:
        """Stored checkpoints, newest first."""
        checkpoints: list[Checkpoint] = []
        for key in sorted(
            self.local_store.keys(CHECKPOINT_PREFIX), key=_checkpoint_sort_key, reverse=True
        ):
            try:
                raw = self.local_store.get(key)
                if raw:
                    checkpoints.append(Checkpoint.from_dict(json.loads(raw)))
            except Exception:
                logger.warning("Skipping unreadable checkpoint %s", key, exc_info=True)
        return checkpoints

    def mark_pending_checkpoints(self, status: CheckpointStatus) -> int:
        """Resolve every pending checkpoint to `status`; returns how many changed."""
        updated = 0
        for checkpoint in self.list_checkpoints():
            if checkpoint.status != CheckpointStatus.PENDING:
                continue
            checkpoint.status = status
            try:
                self._save_checkpoint(checkpoint)
                updated += 1
            except Exception:
                logger.exception("Failed to update checkpoint %s", checkpoint.id)
        return updated

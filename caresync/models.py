"""
Records owned by the sync core: queued mutations, snapshots and checkpoints.

Persisted forms use camelCase keys so queues and backups written by earlier
clients of the same store stay readable.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class OperationType(str, Enum):
    ADD = "add"
    UPDATE = "update"
    DELETE = "delete"


class Entity(str, Enum):
    LOG = "log"
    PROFILE = "profile"
    APPOINTMENT = "appointment"
    REMINDER = "reminder"
    INVENTORY = "inventory"


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class CheckpointStatus(str, Enum):
    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"


def epoch_ms(seconds: float) -> int:
    return int(seconds * 1000)


def iso_timestamp(seconds: float) -> str:
    return datetime.fromtimestamp(seconds, tz=timezone.utc).isoformat()


def new_operation_id(now_ms: int) -> str:
    return f"queue_{now_ms}_{uuid.uuid4().hex[:9]}"


@dataclass
class QueuedOperation:
    """A single create/update/delete intent waiting for the remote backend."""

    id: str
    type: OperationType
    entity: Entity
    data: Any
    timestamp: int
    priority: Priority = Priority.MEDIUM
    profile_id: Optional[str] = None
    attempts: int = 0
    last_attempt: Optional[int] = None
    error: Optional[str] = None

    def is_failed(self, max_attempts: int) -> bool:
        return self.attempts >= max_attempts

    def as_dict(self) -> dict:
        payload = {
            "id": self.id,
            "type": self.type.value,
            "entity": self.entity.value,
            "data": self.data,
            "timestamp": self.timestamp,
            "priority": self.priority.value,
            "attempts": self.attempts,
        }
        if self.profile_id is not None:
            payload["profileId"] = self.profile_id
        if self.last_attempt is not None:
            payload["lastAttempt"] = self.last_attempt
        if self.error is not None:
            payload["error"] = self.error
        return payload

    @classmethod
    def from_dict(cls, payload: dict) -> "QueuedOperation":
        attempts = int(payload.get("attempts", 0))
        if attempts < 0:
            raise ValueError(f"negative attempts on queued operation {payload.get('id')}")
        return cls(
            id=str(payload["id"]),
            type=OperationType(payload["type"]),
            entity=Entity(payload["entity"]),
            data=payload.get("data"),
            timestamp=int(payload["timestamp"]),
            priority=Priority(payload.get("priority", Priority.MEDIUM.value)),
            profile_id=payload.get("profileId"),
            attempts=attempts,
            last_attempt=payload.get("lastAttempt"),
            error=payload.get("error"),
        )


@dataclass
class SyncResult:
    success: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "success": self.success,
            "failed": self.failed,
            "errors": list(self.errors),
        }


@dataclass(frozen=True)
class Snapshot:
    """Complete copy of the application state at `timestamp`."""

    timestamp: str
    version: str
    data: Dict[str, Any]

    @property
    def storage_key(self) -> str:
        return f"backup_{self.timestamp}"

    def as_dict(self) -> dict:
        return {"timestamp": self.timestamp, "version": self.version, "data": self.data}

    @classmethod
    def from_dict(cls, payload: dict) -> "Snapshot":
        data = payload["data"]
        if not isinstance(data, dict):
            raise ValueError("snapshot data must be an object")
        return cls(
            timestamp=str(payload["timestamp"]),
            version=str(payload.get("version", "")),
            data=data,
        )


@dataclass
class Checkpoint:
    """Fingerprint of the application state, without payload."""

    id: str
    timestamp: str
    status: CheckpointStatus
    data_hash: str
    changes: Dict[str, int]

    @property
    def created_ms(self) -> int:
        return int(self.id.split("_", 1)[1])

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "status": self.status.value,
            "dataHash": self.data_hash,
            "changes": dict(self.changes),
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "Checkpoint":
        return cls(
            id=str(payload["id"]),
            timestamp=str(payload["timestamp"]),
            status=CheckpointStatus(payload["status"]),
            data_hash=str(payload["dataHash"]),
            changes={k: int(v) for k, v in (payload.get("changes") or {}).items()},
        )

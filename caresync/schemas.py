"""
Pydantic schemas for the local control API.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from caresync.models import Entity, OperationType, Priority


class PriorityCount(BaseModel):
    high: int = 0
    medium: int = 0
    low: int = 0


class QueueStatusResponse(BaseModel):
    total: int
    pending: int
    failed: int
    isProcessing: bool
    priorityCount: PriorityCount
    oldestOperation: Optional[int] = None


class QueuedOperationSummary(BaseModel):
    id: str
    type: str
    entity: str
    profileId: Optional[str] = None
    priority: str
    attempts: int
    timestamp: str
    lastAttempt: Optional[str] = None
    error: Optional[str] = None


class QueueDetailsResponse(BaseModel):
    operations: List[QueuedOperationSummary]
    status: QueueStatusResponse


class CountResponse(BaseModel):
    count: int


class CleanupRequest(BaseModel):
    max_age_seconds: Optional[float] = Field(default=None, gt=0)


class MutationRequest(BaseModel):
    type: OperationType
    entity: Entity
    data: Dict[str, Any]
    profile_id: Optional[str] = None
    priority: Priority = Priority.MEDIUM


class MutationResponse(BaseModel):
    synced: bool
    queued: bool


class SyncRequest(BaseModel):
    identity: Optional[str] = Field(default=None, max_length=256)


class SyncResultResponse(BaseModel):
    success: int
    failed: int
    errors: List[str]


class NetworkRequest(BaseModel):
    online: bool


class NetworkResponse(BaseModel):
    online: bool


class BackupRequest(BaseModel):
    identity: Optional[str] = Field(default=None, max_length=256)


class BackupSummary(BaseModel):
    timestamp: str
    version: str
    profiles: int
    logs: int


class BackupListResponse(BaseModel):
    backups: List[BackupSummary]


class RestoreRequest(BaseModel):
    timestamp: str


class CheckpointResponse(BaseModel):
    id: str
    timestamp: str
    status: str
    dataHash: str
    changes: Dict[str, int]


class CheckpointListResponse(BaseModel):
    checkpoints: List[CheckpointResponse]


class RecoveryInfoResponse(BaseModel):
    lastSyncTime: int
    queuedItems: int
    backupCount: int
    isOnline: bool


class StatusMessage(BaseModel):
    status: str

"""
HTTP routes for queue status, manual sync, backups and export/import.

Handlers are async so they run on the same event loop as queue drains.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Response

from caresync.dependencies import get_sync_service
from caresync.errors import BackupNotFoundError, IdentityRequiredError, ImportValidationError
from caresync.models import Snapshot
from caresync.schemas import (
    BackupListResponse,
    BackupRequest,
    BackupSummary,
    CheckpointListResponse,
    CheckpointResponse,
    CleanupRequest,
    CountResponse,
    MutationRequest,
    MutationResponse,
    NetworkRequest,
    NetworkResponse,
    QueueDetailsResponse,
    QueueStatusResponse,
    RecoveryInfoResponse,
    RestoreRequest,
    StatusMessage,
    SyncRequest,
    SyncResultResponse,
)
from caresync.service import SyncService

logger = logging.getLogger(__name__)

router = APIRouter()


def _backup_summary(snapshot: Snapshot) -> BackupSummary:
    logs = snapshot.data.get("logs") or {}
    return BackupSummary(
        timestamp=snapshot.timestamp,
        version=snapshot.version,
        profiles=len(snapshot.data.get("profiles") or []),
        logs=sum(len(v) for v in logs.values() if isinstance(v, list)),
    )


@router.get("/queue/status", response_model=QueueStatusResponse)
async def queue_status(sync: SyncService = Depends(get_sync_service)):
    return sync.get_queue_status()


@router.get("/queue/details", response_model=QueueDetailsResponse)
async def queue_details(sync: SyncService = Depends(get_sync_service)):
    return sync.get_queue_details()


@router.post("/queue/clear-failed", response_model=CountResponse)
async def clear_failed(sync: SyncService = Depends(get_sync_service)):
    return CountResponse(count=sync.clear_failed_operations())


@router.post("/queue/retry-failed", response_model=CountResponse)
async def retry_failed(sync: SyncService = Depends(get_sync_service)):
    return CountResponse(count=await sync.retry_failed_operations())


@router.post("/queue/cleanup", response_model=CountResponse)
async def cleanup_queue(
    payload: Optional[CleanupRequest] = None,
    sync: SyncService = Depends(get_sync_service),
):
    payload = payload or CleanupRequest()
    return CountResponse(count=sync.cleanup_old_entries(payload.max_age_seconds))


@router.post("/mutations", response_model=MutationResponse, status_code=202)
async def submit_mutation(
    payload: MutationRequest, sync: SyncService = Depends(get_sync_service)
):
    synced = await sync.mutate(
        payload.type,
        payload.entity,
        payload.data,
        profile_id=payload.profile_id,
        priority=payload.priority,
    )
    return MutationResponse(synced=synced, queued=not synced)


@router.post("/sync", response_model=SyncResultResponse)
async def manual_sync(payload: SyncRequest, sync: SyncService = Depends(get_sync_service)):
    try:
        result = await sync.manual_sync(payload.identity)
    except IdentityRequiredError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return result.as_dict()


@router.post("/network", response_model=NetworkResponse)
async def report_network(
    payload: NetworkRequest, sync: SyncService = Depends(get_sync_service)
):
    sync.network.set_online(payload.online)
    await sync.network.wait_for_listeners()
    return NetworkResponse(online=sync.network.is_online)


@router.get("/backups", response_model=BackupListResponse)
async def list_backups(sync: SyncService = Depends(get_sync_service)):
    return BackupListResponse(
        backups=[_backup_summary(s) for s in sync.backups.list_backups()]
    )


@router.post("/backups", response_model=BackupSummary, status_code=201)
async def create_backup(
    payload: Optional[BackupRequest] = None,
    sync: SyncService = Depends(get_sync_service),
):
    identity = payload.identity if payload else None
    snapshot = await sync.create_backup(identity)
    return _backup_summary(snapshot)


@router.post("/backups/restore", response_model=BackupSummary)
async def restore_backup(payload: RestoreRequest, sync: SyncService = Depends(get_sync_service)):
    try:
        snapshot = sync.restore_backup(payload.timestamp)
    except BackupNotFoundError:
        raise HTTPException(status_code=404, detail="Backup not found")
    return _backup_summary(snapshot)


@router.get("/checkpoints", response_model=CheckpointListResponse)
async def list_checkpoints(sync: SyncService = Depends(get_sync_service)):
    return CheckpointListResponse(
        checkpoints=[
            CheckpointResponse(**c.as_dict()) for c in sync.backups.list_checkpoints()
        ]
    )


@router.get("/export")
async def export_data(sync: SyncService = Depends(get_sync_service)):
    return Response(content=sync.export_data(), media_type="application/json")


@router.post("/import", response_model=StatusMessage)
async def import_data(
    document: Any = Body(...), sync: SyncService = Depends(get_sync_service)
):
    try:
        await sync.import_data(json.dumps(document))
    except ImportValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return StatusMessage(status="ok")


@router.get("/recovery", response_model=RecoveryInfoResponse)
async def recovery_info(sync: SyncService = Depends(get_sync_service)):
    return sync.get_recovery_info()

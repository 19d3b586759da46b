"""
Routes queued operations to the remote backend and records the outcome.

Each `(entity, type)` pair maps to one backend method through `ROUTES`; the
table is checked against the backend when the processor is built, so a
missing handler fails at startup rather than during a drain.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

from caresync.errors import InvalidOperationError
from caresync.models import (
    Entity,
    OperationType,
    QueuedOperation,
    SyncResult,
    epoch_ms,
)
from caresync.remote import RemoteBackend
from caresync.retry import is_retryable_error
from caresync.scheduling import Clock, SystemClock

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Route:
    """How one operation kind maps onto a backend call.

    Arguments are passed as (identity, [profile_id], [data["id"]], [data]).
    """

    method: str
    scoped: bool = True
    with_id: bool = False
    with_data: bool = True


ROUTES: Dict[Tuple[Entity, OperationType], Route] = {
    (Entity.LOG, OperationType.ADD): Route("add_log"),
    (Entity.LOG, OperationType.UPDATE): Route("update_log", with_id=True),
    (Entity.LOG, OperationType.DELETE): Route("delete_log", with_id=True, with_data=False),
    (Entity.PROFILE, OperationType.ADD): Route("create_profile", scoped=False),
    (Entity.PROFILE, OperationType.UPDATE): Route(
        "update_profile", scoped=False, with_id=True
    ),
    (Entity.PROFILE, OperationType.DELETE): Route(
        "delete_profile", scoped=False, with_id=True, with_data=False
    ),
    (Entity.APPOINTMENT, OperationType.ADD): Route("add_appointment"),
    (Entity.APPOINTMENT, OperationType.UPDATE): Route("update_appointment", with_id=True),
    (Entity.APPOINTMENT, OperationType.DELETE): Route(
        "delete_appointment", with_id=True, with_data=False
    ),
    (Entity.REMINDER, OperationType.ADD): Route("add_reminder"),
    (Entity.REMINDER, OperationType.UPDATE): Route("update_reminder", with_id=True),
    (Entity.REMINDER, OperationType.DELETE): Route(
        "delete_reminder", with_id=True, with_data=False
    ),
    # The backend stores a profile's inventory as one document.
    (Entity.INVENTORY, OperationType.ADD): Route("update_inventory"),
    (Entity.INVENTORY, OperationType.UPDATE): Route("update_inventory"),
    (Entity.INVENTORY, OperationType.DELETE): Route(
        "delete_inventory", with_id=True, with_data=False
    ),
}


def validate_routes(
    backend: RemoteBackend, routes: Dict[Tuple[Entity, OperationType], Route]
) -> None:
    missing = [
        f"{entity.value}/{op_type.value}"
        for entity in Entity
        for op_type in OperationType
        if (entity, op_type) not in routes
    ]
    if missing:
        raise ValueError(f"No sync route for: {', '.join(missing)}")
    unsupported = sorted(
        {r.method for r in routes.values() if not callable(getattr(backend, r.method, None))}
    )
    if unsupported:
        raise ValueError(f"Remote backend lacks methods: {', '.join(unsupported)}")


class SyncProcessor:
    """Sends queued operations to the backend one at a time."""

    def __init__(
        self,
        backend: RemoteBackend,
        *,
        max_attempts: int = 3,
        clock: Optional[Clock] = None,
        routes: Optional[Dict[Tuple[Entity, OperationType], Route]] = None,
    ):
        self.backend = backend
        self.max_attempts = max_attempts
        self.clock = clock or SystemClock()
        self.routes = dict(routes or ROUTES)
        validate_routes(backend, self.routes)

    async def dispatch(
        self,
        identity: str,
        entity: Entity,
        op_type: OperationType,
        data: Any,
        profile_id: Optional[str] = None,
    ) -> Any:
        """Perform one mutation against the backend; raises on failure."""
        route = self.routes[(entity, op_type)]
        args: list[Any] = [identity]
        if route.scoped:
            if not profile_id:
                raise InvalidOperationError(
                    f"profile_id required for {entity.value} {op_type.value}"
                )
            args.append(profile_id)
        if route.with_id:
            entity_id = data.get("id") if isinstance(data, dict) else None
            if not entity_id:
                raise InvalidOperationError(
                    f"data.id required for {entity.value} {op_type.value}"
                )
            args.append(entity_id)
        if route.with_data:
            if not isinstance(data, dict):
                raise InvalidOperationError(
                    f"data must be an object for {entity.value} {op_type.value}"
                )
            args.append(data)
        return await getattr(self.backend, route.method)(*args)

    def record_failure(self, operation: QueuedOperation, error: BaseException) -> None:
        """
        Count a failed attempt on `operation`. A fatal error uses up the
        remaining attempts so the entry is flagged failed after one try.
        """
        operation.attempts += 1
        operation.last_attempt = epoch_ms(self.clock.now())
        operation.error = str(error) or type(error).__name__
        if not is_retryable_error(error):
            operation.attempts = max(operation.attempts, self.max_attempts)

    async def run_batch(
        self,
        operations: Iterable[QueuedOperation],
        identity: str,
        *,
        on_success: Callable[[QueuedOperation], Any],
        on_failure: Callable[[QueuedOperation], Any],
    ) -> SyncResult:
        """
        Process `operations` sequentially. Per-item failures are recorded on
        the item and aggregated; nothing raises out of the batch.
        """
        result = SyncResult()
        for operation in operations:
            try:
                await self.dispatch(
                    identity,
                    operation.entity,
                    operation.type,
                    operation.data,
                    operation.profile_id,
                )
            except Exception as error:
                self.record_failure(operation, error)
                logger.warning(
                    "Sync of %s %s (%s) failed, attempt %d/%d: %s",
                    operation.entity.value,
                    operation.type.value,
                    operation.id,
                    operation.attempts,
                    self.max_attempts,
                    operation.error,
                )
                if operation.is_failed(self.max_attempts):
                    result.failed += 1
                    result.errors.append(
                        f"{operation.entity.value} {operation.type.value}: {operation.error}"
                    )
                await _maybe_await(on_failure(operation))
                continue

            result.success += 1
            await _maybe_await(on_success(operation))
        return result


async def _maybe_await(value: Any) -> None:
    if inspect.isawaitable(value):
        await value

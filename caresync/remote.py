"""
Remote backend adapter interface and an in-memory implementation.

Every call is keyed by the caller identity, the owning profile (for scoped
entities) and the entity id; calls resolve on success and raise on failure.
"""

from __future__ import annotations

import copy
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Tuple


class RemoteBackend(Protocol):
    async def add_log(self, identity: str, profile_id: str, data: dict) -> Any:
        ...

    async def update_log(
        self, identity: str, profile_id: str, log_id: str, data: dict
    ) -> Any:
        ...

    async def delete_log(self, identity: str, profile_id: str, log_id: str) -> Any:
        ...

    async def create_profile(self, identity: str, data: dict) -> Any:
        ...

    async def update_profile(self, identity: str, profile_id: str, data: dict) -> Any:
        ...

    async def delete_profile(self, identity: str, profile_id: str) -> Any:
        ...

    async def add_appointment(self, identity: str, profile_id: str, data: dict) -> Any:
        ...

    async def update_appointment(
        self, identity: str, profile_id: str, appointment_id: str, data: dict
    ) -> Any:
        ...

    async def delete_appointment(
        self, identity: str, profile_id: str, appointment_id: str
    ) -> Any:
        ...

    async def add_reminder(self, identity: str, profile_id: str, data: dict) -> Any:
        ...

    async def update_reminder(
        self, identity: str, profile_id: str, reminder_id: str, data: dict
    ) -> Any:
        ...

    async def delete_reminder(
        self, identity: str, profile_id: str, reminder_id: str
    ) -> Any:
        ...

    async def update_inventory(self, identity: str, profile_id: str, data: dict) -> Any:
        ...

    async def delete_inventory(
        self, identity: str, profile_id: str, item_id: str
    ) -> Any:
        ...

    async def save_backup(self, identity: str, snapshot: dict) -> Any:
        ...


@dataclass
class _FailurePlan:
    error: BaseException
    remaining: Optional[int]  # None means fail forever


@dataclass
class InMemoryRemoteBackend:
    """
    Test double for the remote backend.

    Records every call in `calls` as `(method, args)` and stores documents in
    `collections[(identity, collection, profile_id)]`. `fail(method, error,
    times)` makes a method raise `error` for its next `times` calls (or
    forever when `times` is None).
    """

    calls: List[Tuple[str, tuple]] = field(default_factory=list)
    collections: Dict[tuple, Dict[str, dict]] = field(
        default_factory=lambda: defaultdict(dict)
    )
    backups: Dict[str, List[dict]] = field(default_factory=lambda: defaultdict(list))
    _failures: Dict[str, _FailurePlan] = field(default_factory=dict)

    def fail(
        self, method: str, error: BaseException, times: Optional[int] = None
    ) -> None:
        self._failures[method] = _FailurePlan(error=error, remaining=times)

    def reset_failures(self) -> None:
        self._failures.clear()

    def call_count(self, method: str) -> int:
        return sum(1 for name, _ in self.calls if name == method)

    def _enter(self, method: str, *args: Any) -> None:
        self.calls.append((method, args))
        plan = self._failures.get(method)
        if plan is None:
            return
        if plan.remaining is not None:
            plan.remaining -= 1
            if plan.remaining <= 0:
                del self._failures[method]
        raise plan.error

    def _put(self, key: tuple, doc_id: Optional[str], data: dict) -> str:
        doc_id = doc_id or str(data.get("id") or uuid.uuid4().hex)
        self.collections[key][doc_id] = {**copy.deepcopy(data), "id": doc_id}
        return doc_id

    async def add_log(self, identity: str, profile_id: str, data: dict) -> str:
        self._enter("add_log", identity, profile_id, data)
        return self._put((identity, "logs", profile_id), None, data)

    async def update_log(
        self, identity: str, profile_id: str, log_id: str, data: dict
    ) -> None:
        self._enter("update_log", identity, profile_id, log_id, data)
        self._put((identity, "logs", profile_id), log_id, data)

    async def delete_log(self, identity: str, profile_id: str, log_id: str) -> None:
        self._enter("delete_log", identity, profile_id, log_id)
        self.collections[(identity, "logs", profile_id)].pop(log_id, None)

    async def create_profile(self, identity: str, data: dict) -> str:
        self._enter("create_profile", identity, data)
        return self._put((identity, "profiles", None), None, data)

    async def update_profile(self, identity: str, profile_id: str, data: dict) -> None:
        self._enter("update_profile", identity, profile_id, data)
        self._put((identity, "profiles", None), profile_id, data)

    async def delete_profile(self, identity: str, profile_id: str) -> None:
        self._enter("delete_profile", identity, profile_id)
        self.collections[(identity, "profiles", None)].pop(profile_id, None)

    async def add_appointment(self, identity: str, profile_id: str, data: dict) -> str:
        self._enter("add_appointment", identity, profile_id, data)
        return self._put((identity, "appointments", profile_id), None, data)

    async def update_appointment(
        self, identity: str, profile_id: str, appointment_id: str, data: dict
    ) -> None:
        self._enter("update_appointment", identity, profile_id, appointment_id, data)
        self._put((identity, "appointments", profile_id), appointment_id, data)

    async def delete_appointment(
        self, identity: str, profile_id: str, appointment_id: str
    ) -> None:
        self._enter("delete_appointment", identity, profile_id, appointment_id)
        self.collections[(identity, "appointments", profile_id)].pop(appointment_id, None)

    async def add_reminder(self, identity: str, profile_id: str, data: dict) -> str:
        self._enter("add_reminder", identity, profile_id, data)
        return self._put((identity, "reminders", profile_id), None, data)

    async def update_reminder(
        self, identity: str, profile_id: str, reminder_id: str, data: dict
    ) -> None:
        self._enter("update_reminder", identity, profile_id, reminder_id, data)
        self._put((identity, "reminders", profile_id), reminder_id, data)

    async def delete_reminder(
        self, identity: str, profile_id: str, reminder_id: str
    ) -> None:
        self._enter("delete_reminder", identity, profile_id, reminder_id)
        self.collections[(identity, "reminders", profile_id)].pop(reminder_id, None)

    async def update_inventory(self, identity: str, profile_id: str, data: dict) -> None:
        self._enter("update_inventory", identity, profile_id, data)
        self.collections[(identity, "inventories", profile_id)]["current"] = copy.deepcopy(data)

    async def delete_inventory(
        self, identity: str, profile_id: str, item_id: str
    ) -> None:
        self._enter("delete_inventory", identity, profile_id, item_id)
        inventory = self.collections[(identity, "inventories", profile_id)].get("current")
        if isinstance(inventory, dict):
            inventory.pop(item_id, None)

    async def save_backup(self, identity: str, snapshot: dict) -> None:
        self._enter("save_backup", identity, snapshot)
        self.backups[identity].append(copy.deepcopy(snapshot))

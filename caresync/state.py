"""
Live application state as seen by the sync core.

The core reads the state for snapshots, checkpoints and exports, and only
writes it during restore/import, where it replaces it wholesale.
"""

from __future__ import annotations

import copy
from typing import Any, Dict, Optional, Protocol

# Collections that make up the addressable application state, with the
# empty value used when a snapshot or import document lacks them.
COLLECTION_DEFAULTS: Dict[str, Any] = {
    "profiles": [],
    "logs": {},
    "inventories": {},
    "reminders": {},
    "appointments": {},
    "customActivities": [],
    "achievedMilestones": {},
}

SETTINGS_DEFAULTS: Dict[str, Any] = {
    "isDarkMode": False,
    "temperatureUnit": "F",
    "measurementUnit": "oz",
}


def empty_state() -> dict:
    state = copy.deepcopy(COLLECTION_DEFAULTS)
    state["settings"] = dict(SETTINGS_DEFAULTS)
    return state


def build_state(source: dict, fallback_settings: Optional[dict] = None) -> dict:
    """
    Build a complete state from `source`, filling absent collections with
    empty values and absent settings from `fallback_settings` (or defaults).
    """
    state: Dict[str, Any] = {}
    for name, default in COLLECTION_DEFAULTS.items():
        value = source.get(name)
        state[name] = copy.deepcopy(value) if value is not None else copy.deepcopy(default)

    base_settings = dict(SETTINGS_DEFAULTS)
    if fallback_settings:
        base_settings.update(fallback_settings)
    incoming = source.get("settings") or {}
    state["settings"] = {
        key: incoming.get(key) if incoming.get(key) is not None else fallback
        for key, fallback in base_settings.items()
    }
    return state


class StateStore(Protocol):
    """Owner of the live application state."""

    def get_state(self) -> dict:
        ...

    def replace_state(self, state: dict) -> None:
        ...


class InMemoryStateStore:
    """State holder used by the runner and tests; hands out copies only."""

    def __init__(self, initial: Optional[dict] = None):
        self._state = build_state(initial or {})

    def get_state(self) -> dict:
        return copy.deepcopy(self._state)

    def replace_state(self, state: dict) -> None:
        self._state = build_state(state)

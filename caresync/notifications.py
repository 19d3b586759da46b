"""
User-visible notices (sync outcomes, connectivity changes).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Protocol

notice_logger = logging.getLogger("caresync.notices")


class Notifier(Protocol):
    """`key` lets a later notice replace an earlier one with the same key."""

    def success(self, message: str, *, key: Optional[str] = None) -> None:
        ...

    def error(self, message: str, *, key: Optional[str] = None) -> None:
        ...

    def info(self, message: str, *, key: Optional[str] = None) -> None:
        ...


class LoggingNotifier:
    def success(self, message: str, *, key: Optional[str] = None) -> None:
        notice_logger.info("[%s] %s", key or "notice", message)

    def error(self, message: str, *, key: Optional[str] = None) -> None:
        notice_logger.warning("[%s] %s", key or "notice", message)

    def info(self, message: str, *, key: Optional[str] = None) -> None:
        notice_logger.info("[%s] %s", key or "notice", message)


@dataclass
class Notice:
    level: str
    message: str
    key: Optional[str] = None

    def as_dict(self) -> dict:
        return {"level": self.level, "message": self.message, "key": self.key}


@dataclass
class RecordingNotifier:
    """Keeps the most recent notices in memory."""

    limit: int = 100
    notices: list[Notice] = field(default_factory=list)

    def _record(self, level: str, message: str, key: Optional[str]) -> None:
        if key is not None:
            self.notices = [n for n in self.notices if n.key != key]
        self.notices.append(Notice(level=level, message=message, key=key))
        del self.notices[: -self.limit]

    def success(self, message: str, *, key: Optional[str] = None) -> None:
        self._record("success", message, key)

    def error(self, message: str, *, key: Optional[str] = None) -> None:
        self._record("error", message, key)

    def info(self, message: str, *, key: Optional[str] = None) -> None:
        self._record("info", message, key)

    def messages(self, level: Optional[str] = None) -> list[str]:
        return [n.message for n in self.notices if level is None or n.level == level]

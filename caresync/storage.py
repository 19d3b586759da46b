"""
Durable local key/value storage for the queue and the backup service.

Supports an in-memory fallback for tests/local runs, a SQLAlchemy-backed
implementation (SQLite on-device) and a Redis-backed implementation.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from typing import Dict, Optional, Protocol

import redis
from redis import exceptions as redis_exceptions
from sqlalchemy import Column, Float, String, Text, create_engine, delete, select
from sqlalchemy.orm import Session, declarative_base, sessionmaker


class StorageQuotaExceeded(OSError):
    """The local store refused a write because it is full."""


class LocalStore(Protocol):
    """String key/value store; each owner serialises its own values."""

    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def remove(self, key: str) -> None:
        ...

    def keys(self, prefix: str = "") -> list[str]:
        ...


@dataclass
class InMemoryLocalStore:
    """
    Test double for local storage.

    `max_bytes` caps the total size of stored values so storage-full
    failures can be reproduced.
    """

    items: Dict[str, str] = field(default_factory=dict)
    max_bytes: Optional[int] = None

    def get(self, key: str) -> Optional[str]:
        return self.items.get(key)

    def set(self, key: str, value: str) -> None:
        if self.max_bytes is not None:
            used = sum(len(v) for k, v in self.items.items() if k != key)
            if used + len(value) > self.max_bytes:
                raise StorageQuotaExceeded(f"quota exceeded writing {key}")
        self.items[key] = value

    def remove(self, key: str) -> None:
        self.items.pop(key, None)

    def keys(self, prefix: str = "") -> list[str]:
        return [key for key in self.items if key.startswith(prefix)]


Base = declarative_base()


class LocalKeyValueRow(Base):
    __tablename__ = "local_kv"

    key = Column(String, primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(Float, nullable=False)


class SqlLocalStore:
    """
    SQLAlchemy-backed store. Accepts any SQLAlchemy URL (SQLite file on-device,
    in-memory SQLite for tests).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("database_url is required for SqlLocalStore")
        self.engine = create_engine(database_url, future=True, pool_pre_ping=True)
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    def get(self, key: str) -> Optional[str]:
        with self.Session() as session:
            row = session.get(LocalKeyValueRow, key)
            return row.value if row else None

    def set(self, key: str, value: str) -> None:
        with self.Session() as session:
            row = session.get(LocalKeyValueRow, key)
            if row:
                row.value = value
                row.updated_at = time.time()
            else:
                session.add(
                    LocalKeyValueRow(key=key, value=value, updated_at=time.time())
                )
            session.commit()

    def remove(self, key: str) -> None:
        with self.Session() as session:
            session.execute(delete(LocalKeyValueRow).where(LocalKeyValueRow.key == key))
            session.commit()

    def keys(self, prefix: str = "") -> list[str]:
        with self.Session() as session:
            stmt = select(LocalKeyValueRow.key)
            if prefix:
                stmt = stmt.where(LocalKeyValueRow.key.startswith(prefix, autoescape=True))
            return list(session.execute(stmt).scalars())


def _escape_glob(value: str) -> str:
    return re.sub(r"([*?\[\]\\])", r"\\\1", value)


@dataclass
class RedisLocalStore:
    """Redis-backed store keeping every key under `namespace`."""

    url: str
    namespace: str = "caresync:"

    def __post_init__(self):
        self.client = redis.Redis.from_url(self.url, decode_responses=True)

    def _key(self, key: str) -> str:
        return f"{self.namespace}{key}"

    def _reconnect(self) -> None:
        # The failed call is not retried here.
        self.client = redis.Redis.from_url(self.url, decode_responses=True)

    def get(self, key: str) -> Optional[str]:
        try:
            return self.client.get(self._key(key))
        except redis_exceptions.ConnectionError:
            self._reconnect()
            raise

    def set(self, key: str, value: str) -> None:
        try:
            self.client.set(self._key(key), value)
        except redis_exceptions.ConnectionError:
            self._reconnect()
            raise

    def remove(self, key: str) -> None:
        try:
            self.client.delete(self._key(key))
        except redis_exceptions.ConnectionError:
            self._reconnect()
            raise

    def keys(self, prefix: str = "") -> list[str]:
        try:
            found = self.client.scan_iter(match=f"{_escape_glob(self._key(prefix))}*")
            return [key[len(self.namespace):] for key in found]
        except redis_exceptions.ConnectionError:
            self._reconnect()
            raise

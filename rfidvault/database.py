"""Card and access-log storage on top of a small persistent key-value store."""

from __future__ import annotations

import json
import logging
import os
import tempfile
import time
from dataclasses import asdict, dataclass
from enum import IntEnum
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

MAX_UID_LENGTH = 32
MAX_NAME_LENGTH = 64
MAX_ACTION_LENGTH = 16
LOG_CAPACITY = 50

CARD_COUNT_KEY = "card_count"
CARD_PREFIX = "card_"
LOG_COUNT_KEY = "log_count"
LOG_PREFIX = "log_"


class AccessLevel(IntEnum):
    """Access levels a card may carry."""

    USER = 1
    ADMIN = 2
    MASTER = 3


class DatabaseError(Exception):
    """Base error for database operations."""


class CardNotFoundError(DatabaseError):
    """No card with the requested UID is stored."""


class DuplicateCardError(DatabaseError):
    """A card with the given UID is already stored."""


@dataclass
class CardRecord:
    """A registered RFID card."""

    id: int
    uid: str
    name: str
    first_seen: int
    last_seen: int
    access_count: int
    access_level: int

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> "CardRecord":
        return cls(**data)


@dataclass
class AccessLog:
    """One entry of the access log."""

    id: int
    uid: str
    timestamp: int
    action: str

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> "AccessLog":
        return cls(**data)


class KeyValueStore:
    """A namespace of keyed values, persisted as JSON on commit.

    With ``path`` set to None the store lives in memory only.
    """

    def __init__(self, path: str | os.PathLike[str] | None = None) -> None:
        self._path = Path(path) if path is not None else None
        self._data: dict[str, Any] = {}
        if self._path is not None and self._path.exists():
            with self._path.open("r", encoding="utf-8") as fh:
                self._data = json.load(fh)

    def get(self, key: str, default: Any = None) -> Any:
        """Return the value under ``key``, or ``default`` when absent."""
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Store ``value`` under ``key``."""
        self._data[key] = value

    def erase(self, key: str) -> None:
        """Remove ``key``; raise KeyError if it is not present."""
        del self._data[key]

    def commit(self) -> None:
        """Write pending changes to disk (no-op for an in-memory store)."""
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, prefix=".kvstore-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(self._data, fh)
            os.replace(tmp_name, self._path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise


def _require(value: Any, name: str) -> None:
    if value is None:
        raise ValueError(f"{name} must not be None")


def _card_key(index: int) -> str:
    return f"{CARD_PREFIX}{index}"


def _log_key(index: int) -> str:
    return f"{LOG_PREFIX}{index}"


class CardDatabase:
    """Cards and a circular access log kept in a KeyValueStore."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store
        self._closed = False
        logger.info("Card database opened")

    def _check_open(self) -> None:
        if self._closed:
            raise DatabaseError("database is closed")

    def _card_count(self) -> int:
        return int(self._store.get(CARD_COUNT_KEY, 0))

    def _iter_slots(self):
        """Yield (key, record) for every stored card slot."""
        for index in range(self._card_count()):
            key = _card_key(index)
            data = self._store.get(key)
            if data is not None:
                yield key, CardRecord._from_dict(data)

    def _find_slot(self, uid: str) -> tuple[str, CardRecord] | None:
        for key, record in self._iter_slots():
            if record.uid == uid:
                return key, record
        return None

    def add_card(self, uid: str, name: str, access_level: int = AccessLevel.USER) -> CardRecord:
        """Register a new card; raise DuplicateCardError if the UID exists."""
        self._check_open()
        _require(uid, "uid")
        _require(name, "name")
        if self._find_slot(uid) is not None:
            logger.info("Card %s already exists", uid)
            raise DuplicateCardError(uid)

        card_count = self._card_count()
        now = int(time.time())
        record = CardRecord(
            id=card_count + 1,
            uid=uid[: MAX_UID_LENGTH - 1],
            name=name[: MAX_NAME_LENGTH - 1],
            first_seen=now,
            last_seen=now,
            access_count=0,
            access_level=int(access_level) & 0xFF,
        )
        self._store.set(_card_key(card_count), asdict(record))
        self._store.set(CARD_COUNT_KEY, card_count + 1)
        self._store.commit()
        logger.info("Card added: %s - %s", uid, name)
        return record

    def update_card_access(self, uid: str) -> CardRecord:
        """Record an access by the card: bump its count and last-seen time."""
        self._check_open()
        _require(uid, "uid")
        found = self._find_slot(uid)
        if found is None:
            raise CardNotFoundError(uid)
        key, record = found
        record.last_seen = int(time.time())
        record.access_count += 1
        self._store.set(key, asdict(record))
        self._store.commit()
        return record

    def get_card(self, uid: str) -> CardRecord:
        """Return the card with ``uid``; raise CardNotFoundError if absent."""
        self._check_open()
        _require(uid, "uid")
        found = self._find_slot(uid)
        if found is None:
            raise CardNotFoundError(uid)
        return found[1]

    def delete_card(self, uid: str) -> None:
        """Remove the card with ``uid``; a missing card is not an error."""
        self._check_open()
        _require(uid, "uid")
        found = self._find_slot(uid)
        if found is not None:
            self._store.erase(found[0])
        self._store.commit()
        logger.info("Card deleted: %s", uid)

    def get_all_cards(self) -> list[CardRecord]:
        """Return every stored card in slot order."""
        self._check_open()
        cards = [record for _, record in self._iter_slots()]
        logger.info("Retrieved %d cards", len(cards))
        return cards

    def add_access_log(self, uid: str, action: str) -> AccessLog:
        """Append a log entry; only the latest LOG_CAPACITY entries are kept."""
        self._check_open()
        _require(uid, "uid")
        _require(action, "action")
        log_count = int(self._store.get(LOG_COUNT_KEY, 0))
        entry = AccessLog(
            id=log_count + 1,
            uid=uid[: MAX_UID_LENGTH - 1],
            timestamp=int(time.time()),
            action=action[: MAX_ACTION_LENGTH - 1],
        )
        self._store.set(_log_key(log_count % LOG_CAPACITY), asdict(entry))
        self._store.set(LOG_COUNT_KEY, log_count + 1)
        self._store.commit()
        logger.info("Access log: %s - %s", uid, action)
        return entry

    def get_access_logs(self, limit: int = 0) -> list[AccessLog]:
        """Return stored log entries in slot order, at most ``limit`` if positive."""
        self._check_open()
        total = int(self._store.get(LOG_COUNT_KEY, 0))
        if total == 0:
            return []
        wanted = min(total, LOG_CAPACITY)
        if 0 < limit < wanted:
            wanted = limit
        logs = [
            AccessLog._from_dict(data)
            for data in (self._store.get(_log_key(i)) for i in range(wanted))
            if data is not None
        ]
        logger.info("Retrieved %d logs", len(logs))
        return logs

    def get_stats(self) -> tuple[int, int]:
        """Return (total cards ever added, total log entries ever written)."""
        self._check_open()
        return self._card_count(), int(self._store.get(LOG_COUNT_KEY, 0))

    def close(self) -> None:
        """Close the database; further operations raise DatabaseError."""
        self._closed = True
        logger.info("Card database closed")
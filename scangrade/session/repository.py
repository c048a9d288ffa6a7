"""Load and save scan sessions through a SessionStore."""

import asyncio
import json
import logging
import time
from typing import Callable, Optional

from ..config import SESSION_MAX_AGE_HOURS
from ..errors import InputError
from .state import ScanSession
from .store import SessionStore

logger = logging.getLogger("scangrade.session")


def _fingerprint(record: dict) -> str:
    """Serialization of a record minus its timestamp."""
    body = {k: v for k, v in record.items() if k != "timestamp"}
    return json.dumps(body, sort_keys=True)


class SessionRepository:
    """The session slot, keyed per user/device.

    `clock` returns seconds since the epoch; tests pass a fixed one.
    Storage failures surface as SessionStorageError.
    """

    def __init__(
        self,
        store: SessionStore,
        clock: Optional[Callable[[], float]] = None,
        max_age_hours: float = SESSION_MAX_AGE_HOURS,
    ):
        self.store = store
        self.clock = clock or time.time
        self.max_age_ms = int(max_age_hours * 60 * 60 * 1000)
        self._last_saved: dict[str, str] = {}

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    async def save(self, key: str, session: ScanSession) -> bool:
        """Write a snapshot. Returns False when nothing needed writing."""
        if not session.is_persistable:
            logger.debug("Not persisting session %s in state %s", key, session.state.value)
            return False

        record = session.to_record(timestamp=self._now_ms())
        fingerprint = _fingerprint(record)
        if self._last_saved.get(key) == fingerprint:
            logger.debug("Session %s unchanged, skipping write", key)
            return False

        await asyncio.to_thread(self.store.write, key, json.dumps(record))
        self._last_saved[key] = fingerprint
        logger.info("Saved session %s in state: %s", key, session.state.value)
        return True

    async def load(self, key: str) -> Optional[ScanSession]:
        """Read the snapshot for `key`, discarding it if it cannot be resumed."""
        stored = await asyncio.to_thread(self.store.read, key)
        if not stored:
            return None

        try:
            record = json.loads(stored)
        except ValueError as e:
            logger.warning("Discarding unreadable session %s: %s", key, e)
            await self.clear(key)
            return None

        if not isinstance(record, dict):
            logger.warning("Discarding malformed session %s", key)
            await self.clear(key)
            return None

        try:
            age = self._now_ms() - int(record.get("timestamp"))
        except (TypeError, ValueError):
            logger.warning("Discarding session %s without a timestamp", key)
            await self.clear(key)
            return None

        if age > self.max_age_ms:
            logger.info("Session %s expired, clearing", key)
            await self.clear(key)
            return None

        if not record.get("finalImage") and not record.get("result"):
            logger.info("Session %s has neither an image nor a result, clearing", key)
            await self.clear(key)
            return None

        try:
            session = ScanSession.from_record(key, record)
        except (KeyError, ValueError, TypeError, InputError) as e:
            logger.warning("Discarding invalid session %s: %s", key, e)
            await self.clear(key)
            return None

        if not session.is_persistable:
            logger.warning("Discarding session %s stored in state %s", key, session.state.value)
            await self.clear(key)
            return None

        self._last_saved[key] = _fingerprint(record)
        logger.info("Loaded session %s in state: %s", key, session.state.value)
        return session

    async def clear(self, key: str) -> None:
        self._last_saved.pop(key, None)
        await asyncio.to_thread(self.store.delete, key)
        logger.debug("Cleared session %s", key)

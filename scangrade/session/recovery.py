"""Checkpointing and resuming scan sessions.

Storage problems never fail a scan: the manager logs them, switches to
memory-only mode and the teacher simply loses the ability to resume.
"""

import logging
from typing import Optional

from ..errors import SessionStorageError
from .repository import SessionRepository
from .state import ScanSession

logger = logging.getLogger("scangrade.session")


class SessionRecoveryManager:
    def __init__(self, repository: SessionRepository):
        self.repository = repository
        self.degraded = False

    def _degrade(self, error: SessionStorageError) -> None:
        if not self.degraded:
            logger.error("Session storage failed, continuing without resume support: %s", error.message)
        self.degraded = True

    async def checkpoint(self, session: ScanSession) -> bool:
        """Persist the session if it is in a state worth resuming."""
        if self.degraded:
            return False
        try:
            return await self.repository.save(session.key, session)
        except SessionStorageError as e:
            self._degrade(e)
            return False

    async def recover(self, key: str) -> Optional[ScanSession]:
        """Return the resumable session for `key`, if any.

        Outcomes come back exactly as stored; no grading strategy is re-run.
        """
        if self.degraded:
            return None
        try:
            return await self.repository.load(key)
        except SessionStorageError as e:
            self._degrade(e)
            return None

    async def discard(self, key: str) -> None:
        if self.degraded:
            return
        try:
            await self.repository.clear(key)
        except SessionStorageError as e:
            self._degrade(e)

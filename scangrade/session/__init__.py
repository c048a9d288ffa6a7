"""Session state machine, durable slots and crash recovery."""

from .state import ScanSession, ScanState, PERSISTABLE_STATES, can_transition
from .store import SessionStore, FileSessionStore, MemorySessionStore
from .repository import SessionRepository
from .recovery import SessionRecoveryManager

__all__ = [
    "ScanSession",
    "ScanState",
    "PERSISTABLE_STATES",
    "can_transition",
    "SessionStore",
    "FileSessionStore",
    "MemorySessionStore",
    "SessionRepository",
    "SessionRecoveryManager",
]

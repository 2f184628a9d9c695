"""Case history storage (in-memory only)."""

from __future__ import annotations

from vetddx.storage.history import CaseHistoryStore, InMemoryHistoryStore

_store: CaseHistoryStore | None = None


def get_history_store() -> CaseHistoryStore:
    """Return the process-wide history store, creating it on first use."""
    global _store
    if _store is None:
        _store = InMemoryHistoryStore()
    return _store


def set_history_store(store: CaseHistoryStore) -> None:
    """Replace the process-wide history store."""
    global _store
    _store = store


__all__ = [
    "CaseHistoryStore",
    "InMemoryHistoryStore",
    "get_history_store",
    "set_history_store",
]

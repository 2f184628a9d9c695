"""Case history storage.

Saved cases live in process memory only and are lost on restart. Routes
talk to the ``CaseHistoryStore`` interface so another backend can be
swapped in without touching them.
"""

from __future__ import annotations

import copy
import itertools
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any


def _now() -> str:
    """Return current UTC time as ISO 8601 string."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class CaseHistoryStore(ABC):
    """Storage interface for saved case analyses."""

    @abstractmethod
    def save_history(
        self,
        summary: str,
        full_response: dict[str, Any],
        species: str | None = None,
        model: str | None = None,
    ) -> dict[str, Any]:
        ...

    @abstractmethod
    def list_history(
        self,
        offset: int = 0,
        limit: int = 20,
        search: str | None = None,
    ) -> tuple[list[dict[str, Any]], int]:
        ...

    @abstractmethod
    def get_history(self, history_id: int) -> dict[str, Any] | None:
        ...

    @abstractmethod
    def delete_history(self, history_id: int) -> bool:
        ...


class InMemoryHistoryStore(CaseHistoryStore):
    """Dict-backed store. Newest records are listed first."""

    def __init__(self) -> None:
        self._records: dict[int, dict[str, Any]] = {}
        self._ids = itertools.count(1)

    def save_history(
        self,
        summary: str,
        full_response: dict[str, Any],
        species: str | None = None,
        model: str | None = None,
    ) -> dict[str, Any]:
        record = {
            "id": next(self._ids),
            "created_at": _now(),
            "summary": summary,
            "species": species,
            "model": model,
            "full_response": copy.deepcopy(full_response),
        }
        self._records[record["id"]] = record
        return copy.deepcopy(record)

    def list_history(
        self,
        offset: int = 0,
        limit: int = 20,
        search: str | None = None,
    ) -> tuple[list[dict[str, Any]], int]:
        records = sorted(self._records.values(), key=lambda r: r["id"], reverse=True)
        if search:
            needle = search.lower()
            records = [
                r for r in records
                if needle in r["summary"].lower() or needle in (r["species"] or "").lower()
            ]
        total = len(records)
        page = records[offset:offset + limit]
        items = [
            {k: v for k, v in r.items() if k != "full_response"}
            for r in page
        ]
        return items, total

    def get_history(self, history_id: int) -> dict[str, Any] | None:
        record = self._records.get(history_id)
        return copy.deepcopy(record) if record is not None else None

    def delete_history(self, history_id: int) -> bool:
        return self._records.pop(history_id, None) is not None

    def clear(self) -> None:
        self._records.clear()

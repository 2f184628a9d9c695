"""Pydantic models for the saved-case history endpoints."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field


class HistoryCreateRequest(BaseModel):
    """Body for POST /api/history: a case analysis the clinician chose to keep."""

    summary: str = Field(..., min_length=1, max_length=200)
    species: Optional[str] = None
    model: Optional[str] = None
    full_response: dict[str, Any]


class HistoryListItem(BaseModel):
    id: int
    created_at: str
    summary: str
    species: Optional[str] = None
    model: Optional[str] = None


class HistoryDetailResponse(HistoryListItem):
    full_response: dict[str, Any]


class HistoryListResponse(BaseModel):
    """One page of saved cases, newest first. ``total`` counts every match."""

    items: list[HistoryListItem]
    total: int
    offset: int
    limit: int


class HistoryDeleteResponse(BaseModel):
    deleted: bool
    id: int

"""Pydantic models for the /api/generate-differentials proxy endpoint."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class GenerateRequest(BaseModel):
    """Request body for POST /api/generate-differentials.

    Both fields accept any JSON value and are validated by the route, so a
    wrong type gets the proxy's own error messages rather than pydantic's.
    """

    prompt: Any = None
    model: Any = None


class ContentBlock(BaseModel):
    type: str = "text"
    text: str
    model: str
    modelName: str


class GenerateResponse(BaseModel):
    content: list[ContentBlock] = Field(default_factory=list)
    multiModel: bool = False


class ErrorResponse(BaseModel):
    error: str

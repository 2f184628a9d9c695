"""Pydantic models for the /api/cases endpoint."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from vetddx.api.analysis_models import NormalizedAnalysis


class PatientCase(BaseModel):
    """One patient encounter: signalment, problem list and exclusions."""

    model_config = ConfigDict(frozen=True)

    species: str = Field(..., min_length=1)
    age: str = Field(..., min_length=1)
    sex: str = Field(..., min_length=1)
    weight: str = Field(..., min_length=1)
    breed: Optional[str] = None
    problems: list[str] = Field(default_factory=list)
    excluded: list[str] = Field(default_factory=list)

    @field_validator("species", "age", "sex", "weight", mode="before")
    @classmethod
    def _strip_required(cls, value):
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            value = str(value)
        if isinstance(value, str):
            value = value.strip()
        return value

    @field_validator("breed", mode="before")
    @classmethod
    def _blank_breed_is_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value.strip() if isinstance(value, str) else value

    @field_validator("problems", "excluded")
    @classmethod
    def _drop_blank_entries(cls, value: list[str]) -> list[str]:
        return [item.strip() for item in value if item and item.strip()]

    @field_validator("problems")
    @classmethod
    def _require_problem(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValueError("At least one problem is required")
        return value


class CaseAnalysisRequest(BaseModel):
    """Request body for POST /api/cases."""

    case: PatientCase
    model: Optional[str] = None


class ModelAnalysis(BaseModel):
    """One model's reply and, when it succeeded, its normalized form."""

    model_config = ConfigDict(protected_namespaces=())

    model: str
    model_name: str
    text: str
    error: Optional[str] = None
    analysis: Optional[NormalizedAnalysis] = None


class CaseAnalysisResponse(BaseModel):
    """Full response from POST /api/cases."""

    timestamp: str
    case: PatientCase
    problem_list: str
    excluded_list: str
    multi_model: bool = False
    results: list[ModelAnalysis] = Field(default_factory=list)

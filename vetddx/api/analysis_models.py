from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class AnalysisBuckets(BaseModel):
    """The four named slices of a model reply, plus the unclassified fallback."""

    model_config = ConfigDict(populate_by_name=True)

    differentials: str = ""
    diagnostics: str = ""
    red_flags: str = Field(default="", alias="redFlags")
    treatment: str = ""
    other: str = ""


class DifferentialRecord(BaseModel):
    percentage: int = Field(ge=0, le=100)
    name: str = Field(min_length=1)
    description: str = ""


class TreatmentCategory(BaseModel):
    title: str
    body: str


class NormalizedAnalysis(BaseModel):
    buckets: AnalysisBuckets
    differentials: list[DifferentialRecord] = Field(default_factory=list)
    treatment_categories: list[TreatmentCategory] = Field(default_factory=list)
    has_structure: bool = False


class AnalyzeRequest(BaseModel):
    """Request body for POST /api/analyze."""

    text: str = ""

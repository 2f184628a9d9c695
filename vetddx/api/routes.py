import logging
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse

from vetddx.api.analysis_models import AnalyzeRequest, NormalizedAnalysis
from vetddx.api.case_models import (
    CaseAnalysisRequest,
    CaseAnalysisResponse,
    ModelAnalysis,
)
from vetddx.api.history_models import (
    HistoryCreateRequest,
    HistoryDeleteResponse,
    HistoryDetailResponse,
    HistoryListItem,
    HistoryListResponse,
)
from vetddx.api.models import ContentBlock, ErrorResponse, GenerateRequest, GenerateResponse
from vetddx.api.rate_limit import generate_rate_limit, limiter
from vetddx.llm import gateway
from vetddx.llm.client import LLMError
from vetddx.llm.gateway import ModelSelector, parse_selector
from vetddx.llm.prompt_builder import build_prompt, excluded_list, problem_list
from vetddx.llm.response_parser import normalize_reply
from vetddx.storage import get_history_store

_logger = logging.getLogger(__name__)

router = APIRouter()

GENERATION_FAILED_MESSAGE = (
    "Error generating differentials. Please check your internet connection and try again."
)

_ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _selector_or_400(value: Any) -> ModelSelector:
    try:
        return parse_selector(value)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid model specified")


@router.get("/health")
async def health_check():
    return {"status": "ok"}


# --- Proxy ---


@router.options("/api/generate-differentials")
async def generate_differentials_preflight():
    return Response(status_code=200)


@router.post(
    "/api/generate-differentials",
    response_model=GenerateResponse,
    responses=_ERROR_RESPONSES,
)
@limiter.limit(generate_rate_limit)
async def generate_differentials(request: Request, body: Optional[GenerateRequest] = None):
    """Forward a ready-made prompt to the selected model(s)."""
    prompt = body.prompt if body else None
    if not isinstance(prompt, str) or not prompt:
        raise HTTPException(status_code=400, detail="Prompt is required")

    selector = _selector_or_400(body.model)

    try:
        replies = await gateway.generate(prompt, selector)
    except LLMError as e:
        _logger.error("Upstream generation failed (%s): %s", selector.value, e)
        return JSONResponse(
            status_code=500,
            content={"error": str(e) or "Internal server error"},
        )

    return GenerateResponse(
        content=[
            ContentBlock(text=r.text, model=r.model_id, modelName=r.model_name)
            for r in replies
        ],
        multiModel=selector == ModelSelector.BOTH,
    )


# --- Cases ---


@router.post("/api/cases", response_model=CaseAnalysisResponse, responses=_ERROR_RESPONSES)
@limiter.limit(generate_rate_limit)
async def analyze_case(request: Request, body: CaseAnalysisRequest):
    """Build the prompt for a case, run it and normalize every reply."""
    selector = _selector_or_400(body.model)
    prompt = build_prompt(body.case)

    try:
        replies = await gateway.generate(prompt, selector)
    except LLMError as e:
        _logger.error("Case analysis failed (%s): %s", selector.value, e)
        raise HTTPException(status_code=500, detail=GENERATION_FAILED_MESSAGE)

    results = [
        ModelAnalysis(
            model=r.model_id,
            model_name=r.model_name,
            text=r.text,
            error=r.error,
            analysis=normalize_reply(r.text) if r.ok else None,
        )
        for r in replies
    ]

    return CaseAnalysisResponse(
        timestamp=_now(),
        case=body.case,
        problem_list=problem_list(body.case),
        excluded_list=excluded_list(body.case),
        multi_model=selector == ModelSelector.BOTH,
        results=results,
    )


@router.post("/api/analyze", response_model=NormalizedAnalysis)
async def analyze_text(body: AnalyzeRequest):
    """Normalize reply text the client already has (re-render, no model call)."""
    return normalize_reply(body.text)


# --- History ---


@router.post("/api/history", response_model=HistoryDetailResponse)
async def save_history(body: HistoryCreateRequest):
    record = get_history_store().save_history(
        summary=body.summary,
        full_response=body.full_response,
        species=body.species,
        model=body.model,
    )
    return HistoryDetailResponse(**record)


@router.get("/api/history", response_model=HistoryListResponse)
async def list_history(
    offset: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = Query(None),
):
    items, total = get_history_store().list_history(offset=offset, limit=limit, search=search)
    return HistoryListResponse(
        items=[HistoryListItem(**item) for item in items],
        total=total,
        offset=offset,
        limit=limit,
    )


@router.get("/api/history/{history_id}", response_model=HistoryDetailResponse)
async def get_history(history_id: int):
    record = get_history_store().get_history(history_id)
    if record is None:
        raise HTTPException(status_code=404, detail="History record not found")
    return HistoryDetailResponse(**record)


@router.delete("/api/history/{history_id}", response_model=HistoryDeleteResponse)
async def delete_history(history_id: int):
    if not get_history_store().delete_history(history_id):
        raise HTTPException(status_code=404, detail="History record not found")
    return HistoryDeleteResponse(deleted=True, id=history_id)

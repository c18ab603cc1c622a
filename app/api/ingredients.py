import logging

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile
from sqlmodel import Session

from app.api.deps import get_current_user_id, get_orchestrator
from app.core.config import settings
from app.core.database import get_db
from app.core.errors import ValidationError
from app.core.rate_limit import limiter
from app.services.history import list_history
from app.services.orchestrator import AnalysisOrchestrator
from app.schemas.ingredients import (
    AnalysisDetail,
    AnalysisDetailResponse,
    AnalysisPayload,
    AnalyzeResponse,
    CommitRequest,
    CompressionStats,
    DeclineRequest,
    DispositionResponse,
    HistoryItem,
    HistoryResponse,
    Pagination,
)

log = logging.getLogger(__name__)

router = APIRouter(prefix="/ingredients", tags=["ingredients"])
_ANALYZE_RATE_LIMIT = f"{settings.rate_limit_per_minute}/minute"


def read_upload(file: UploadFile | None, max_bytes: int) -> bytes:
    """Reads at most max_bytes + 1 so an oversized part is rejected without buffering all of it."""
    if file is None or not file.filename:
        raise ValidationError("No file provided")
    content = file.file.read(max_bytes + 1)
    if len(content) > max_bytes:
        raise ValidationError(f"File too large. Maximum size is {max_bytes // (1024 * 1024)} MB")
    if not content:
        raise ValidationError("File is empty")
    return content


@router.post("/analyze", response_model=AnalyzeResponse)
@limiter.limit(_ANALYZE_RATE_LIMIT)
def analyze(
    request: Request,
    file: UploadFile | None = File(None),
    prompt: str | None = Form(None),
    user_id: str = Depends(get_current_user_id),
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
):
    """multipart/form-data: 'file' (image/*, required), 'prompt' (optional free text)."""
    content = read_upload(file, settings.upload_max_bytes)
    log.info("ingredients/analyze: user=%s filename=%s size=%d", user_id, file.filename, len(content))
    outcome = orchestrator.analyze(user_id, content, file.content_type, file.filename, prompt)
    result = outcome.result
    return AnalyzeResponse(
        analysis_id=outcome.analysis_id,
        provider=outcome.provider,
        processing_time_ms=outcome.processing_time_ms,
        compression_stats=CompressionStats(
            original_size=outcome.compression.original_size,
            compressed_size=outcome.compression.compressed_size,
            ratio=round(outcome.compression.ratio, 2),
        ),
        analysis=AnalysisPayload(
            meal_title=result.meal_title,
            meal_description=result.meal_description,
            ingredients=result.ingredients,
            nutrition_facts=result.nutrition_facts,
            allergens=result.allergens,
            health_flags=result.health_flags,
            confidence=result.confidence,
        ),
    )


@router.post("/commit", response_model=DispositionResponse)
def commit(
    body: CommitRequest,
    user_id: str = Depends(get_current_user_id),
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
):
    if not body.analysis_id:
        raise ValidationError("analysisId is required")
    overrides = body.overrides
    orchestrator.commit(
        body.analysis_id,
        user_id,
        meal_title=overrides.meal_title if overrides else None,
        meal_description=overrides.meal_description if overrides else None,
    )
    return DispositionResponse(analysis_id=body.analysis_id, message="Analysis committed successfully")


@router.post("/decline", response_model=DispositionResponse)
def decline(
    body: DeclineRequest,
    user_id: str = Depends(get_current_user_id),
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
):
    if not body.analysis_id:
        raise ValidationError("analysisId is required")
    orchestrator.decline(body.analysis_id, user_id, body.reason)
    return DispositionResponse(analysis_id=body.analysis_id, message="Analysis declined and temp files deleted")


@router.get("/history", response_model=HistoryResponse)
def history(
    filter_: str | None = Query(None, alias="filter"),
    cursor: str | None = Query(None),
    limit: str | None = Query(None),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """filter=today (default) | historical; cursor is the previous page's nextCursor."""
    page = list_history(db, user_id, filter_, cursor, limit)
    return HistoryResponse(
        data=[
            HistoryItem(
                id=rec.id,
                meal_title=rec.meal_title,
                total_calories=rec.total_calories,
                committed_at=rec.committed_at,
            )
            for rec in page.items
        ],
        pagination=Pagination(next_cursor=page.next_cursor, has_more=page.has_more),
    )


@router.get("/analysis/{analysis_id}", response_model=AnalysisDetailResponse)
def analysis_detail(
    analysis_id: str,
    user_id: str = Depends(get_current_user_id),
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
):
    rec = orchestrator.get(analysis_id, user_id)
    data = rec.model_dump()
    data["status"] = rec.status.value
    return AnalysisDetailResponse(analysis=AnalysisDetail(**data))

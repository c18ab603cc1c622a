from datetime import datetime, timezone
from typing import Any

from pydantic import Field, field_serializer

from app.schemas.inference import Allergen, CamelModel, HealthFlag, Ingredient, NutritionFacts


def _iso(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.isoformat(timespec="microseconds") + "Z"


class CompressionStats(CamelModel):
    original_size: int
    compressed_size: int
    ratio: float


class AnalysisPayload(CamelModel):
    meal_title: str | None = None
    meal_description: str | None = None
    ingredients: list[Ingredient] = Field(default_factory=list)
    nutrition_facts: NutritionFacts | None = None
    allergens: list[Allergen] = Field(default_factory=list)
    health_flags: list[HealthFlag] = Field(default_factory=list)
    confidence: float | None = None


class AnalyzeResponse(CamelModel):
    success: bool = True
    analysis_id: str
    provider: str
    processing_time_ms: int
    compression_stats: CompressionStats
    analysis: AnalysisPayload
    message: str = "Analysis complete. Review and commit or decline."


class CommitOverrides(CamelModel):
    meal_title: str | None = None
    meal_description: str | None = None


class CommitRequest(CamelModel):
    analysis_id: str | None = None  # missing -> 400 from the route, not 422
    overrides: CommitOverrides | None = None


class DeclineRequest(CamelModel):
    analysis_id: str | None = None
    reason: str | None = None


class DispositionResponse(CamelModel):
    success: bool = True
    analysis_id: str
    message: str


class HistoryItem(CamelModel):
    id: str
    meal_title: str | None = None
    total_calories: float | None = None
    committed_at: datetime | None = None

    @field_serializer("committed_at")
    def _committed_at(self, v: datetime | None) -> str | None:
        return _iso(v)


class Pagination(CamelModel):
    next_cursor: str | None = None
    has_more: bool = False


class HistoryResponse(CamelModel):
    success: bool = True
    data: list[HistoryItem]
    pagination: Pagination


class AnalysisDetail(CamelModel):
    id: str
    owner_id: str
    status: str
    raw_object_key: str | None = None
    compressed_object_key: str | None = None
    result_payload: dict[str, Any] | None = None
    meal_title: str | None = None
    meal_description: str | None = None
    total_calories: float | None = None
    total_sugar: float | None = None
    total_carbs: float | None = None
    total_protein: float | None = None
    error_message: str | None = None
    decline_reason: str | None = None
    created_at: datetime
    updated_at: datetime
    analyzed_at: datetime | None = None
    committed_at: datetime | None = None
    declined_at: datetime | None = None

    @field_serializer("created_at", "updated_at", "analyzed_at", "committed_at", "declined_at")
    def _timestamps(self, v: datetime | None) -> str | None:
        return _iso(v)


class AnalysisDetailResponse(CamelModel):
    success: bool = True
    analysis: AnalysisDetail


class StorageKeyRequest(CamelModel):
    file_key: str | None = None


class UploadData(CamelModel):
    file_key: str
    temp_key: str
    url: str


class UploadResponse(CamelModel):
    success: bool = True
    data: UploadData


class ExistsResponse(CamelModel):
    exists: bool
    location: str | None = None


class StorageCommitResponse(CamelModel):
    success: bool = True
    permanent_key: str
    message: str = "File committed successfully"


class StorageDeclineResponse(CamelModel):
    success: bool = True
    message: str = "File deleted from temporary storage"

"""Food analysis record: PENDING -> ANALYZING -> COMPLETED -> COMMITTED | DECLINED, ERROR on failure."""
import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import JSON, Column, DateTime, Index
from sqlalchemy.types import TypeDecorator
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware UTC in and out. SQLite keeps no offset, so values read back without
    tzinfo are tagged as UTC; naive values bound from callers are taken to be UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def utc_column(nullable: bool = True) -> Column:
    return Column(UTCDateTime(), nullable=nullable)


class AnalysisStatus(str, Enum):
    PENDING = "PENDING"
    ANALYZING = "ANALYZING"
    COMPLETED = "COMPLETED"
    COMMITTED = "COMMITTED"
    DECLINED = "DECLINED"
    ERROR = "ERROR"


DECLINABLE_STATUSES = (AnalysisStatus.PENDING, AnalysisStatus.ANALYZING, AnalysisStatus.COMPLETED)


class AnalysisRecord(SQLModel, table=True):
    __tablename__ = "analysis_records"
    __table_args__ = (Index("ix_analysis_records_owner_status_committed", "owner_id", "status", "committed_at"),)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    owner_id: str = Field(index=True)
    status: AnalysisStatus = Field(default=AnalysisStatus.PENDING, index=True)
    # Object store keys without the temp/ or uploads/ prefix; references only, the store owns the objects
    raw_object_key: str | None = None
    compressed_object_key: str | None = None
    result_payload: dict | None = Field(default=None, sa_column=Column(JSON))
    meal_title: str | None = None
    meal_description: str | None = None
    # Denormalized from result_payload.nutritionFacts for filtering
    total_calories: float | None = None
    total_sugar: float | None = None
    total_carbs: float | None = None
    total_protein: float | None = None
    error_message: str | None = None
    decline_reason: str | None = None  # audit only
    created_at: datetime = Field(default_factory=utcnow, sa_column=utc_column(nullable=False))
    updated_at: datetime = Field(default_factory=utcnow, sa_column=utc_column(nullable=False))
    analyzed_at: datetime | None = Field(default=None, sa_column=utc_column())
    committed_at: datetime | None = Field(default=None, sa_column=utc_column())
    declined_at: datetime | None = Field(default=None, sa_column=utc_column())

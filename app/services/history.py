"""Committed analyses, newest first, paged by committed_at keyset (not offset)."""
from dataclasses import dataclass
from datetime import datetime, time, timezone

from sqlmodel import Session, select

from app.core.errors import ValidationError
from app.models import AnalysisRecord, AnalysisStatus

DEFAULT_LIMIT = 10
MAX_LIMIT = 50
FILTER_TODAY = "today"
FILTER_HISTORICAL = "historical"


@dataclass(frozen=True)
class HistoryPage:
    items: list[AnalysisRecord]
    next_cursor: str | None
    has_more: bool


def normalize_filter(value: str | None) -> str:
    return FILTER_HISTORICAL if (value or "").strip().lower() == FILTER_HISTORICAL else FILTER_TODAY


def clamp_limit(value: int | str | None) -> int:
    try:
        limit = int(value) if value not in (None, "") else DEFAULT_LIMIT
    except (TypeError, ValueError):
        limit = DEFAULT_LIMIT
    return min(max(limit, 1), MAX_LIMIT)


def format_cursor(dt: datetime) -> str:
    """ISO-8601 UTC with microseconds so the cursor round-trips exactly."""
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc)
    return dt.replace(tzinfo=None).isoformat(timespec="microseconds") + "Z"


def parse_cursor(cursor: str) -> datetime:
    """Aware UTC; a cursor without an offset is read as UTC."""
    try:
        dt = datetime.fromisoformat(cursor.strip().replace("Z", "+00:00"))
    except ValueError as e:
        raise ValidationError("cursor must be an ISO-8601 timestamp") from e
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def start_of_local_day(now: datetime | None = None) -> datetime:
    """Server-local midnight in aware UTC. The offset is looked up for midnight itself, not for `now`."""
    local_now = (now or datetime.now(timezone.utc)).astimezone()
    local_midnight = datetime.combine(local_now.date(), time.min).astimezone()
    return local_midnight.astimezone(timezone.utc)


def list_history(
    db: Session,
    owner_id: str,
    filter_: str | None = FILTER_TODAY,
    cursor: str | None = None,
    limit: int | str | None = DEFAULT_LIMIT,
    now: datetime | None = None,
) -> HistoryPage:
    filter_ = normalize_filter(filter_)
    limit = clamp_limit(limit)

    stmt = select(AnalysisRecord).where(
        AnalysisRecord.owner_id == owner_id,
        AnalysisRecord.status == AnalysisStatus.COMMITTED,
        AnalysisRecord.committed_at.is_not(None),
    )
    if filter_ == FILTER_TODAY:
        stmt = stmt.where(AnalysisRecord.committed_at >= start_of_local_day(now))
    if cursor:
        stmt = stmt.where(AnalysisRecord.committed_at < parse_cursor(cursor))
    stmt = stmt.order_by(AnalysisRecord.committed_at.desc(), AnalysisRecord.id.desc()).limit(limit + 1)

    rows = list(db.exec(stmt).all())
    has_more = len(rows) > limit
    items = rows[:limit]
    next_cursor = format_cursor(items[-1].committed_at) if has_more else None
    return HistoryPage(items=items, next_cursor=next_cursor, has_more=has_more)

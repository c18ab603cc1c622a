"""Analysis record store. Status changes go through conditional UPDATEs so concurrent callers cannot both win."""
import logging
from collections.abc import Iterable

from sqlalchemy import update
from sqlmodel import Session, select

from app.models import AnalysisRecord, AnalysisStatus
from app.models.analysis import utcnow

logger = logging.getLogger(__name__)


class AnalysisRepository:
    def __init__(self, db: Session) -> None:
        self.db = db

    def create(self, owner_id: str, raw_object_key: str) -> AnalysisRecord:
        rec = AnalysisRecord(owner_id=owner_id, raw_object_key=raw_object_key, status=AnalysisStatus.PENDING)
        self.db.add(rec)
        self.db.commit()
        self.db.refresh(rec)
        return rec

    def get(self, analysis_id: str) -> AnalysisRecord | None:
        return self.db.get(AnalysisRecord, analysis_id)

    def get_owned(self, analysis_id: str, owner_id: str) -> AnalysisRecord | None:
        """Another user's record is reported the same way as a missing one."""
        stmt = select(AnalysisRecord).where(AnalysisRecord.id == analysis_id, AnalysisRecord.owner_id == owner_id)
        return self.db.exec(stmt).first()

    def transition(
        self,
        analysis_id: str,
        from_statuses: Iterable[AnalysisStatus],
        to_status: AnalysisStatus,
        **fields,
    ) -> bool:
        """
        UPDATE ... SET status = to_status, **fields WHERE id = ? AND status IN from_statuses.
        True when this call performed the transition; False when the precondition no longer held.
        """
        allowed = list(from_statuses)
        stmt = (
            update(AnalysisRecord)
            .where(AnalysisRecord.id == analysis_id, AnalysisRecord.status.in_(allowed))
            .values(status=to_status, updated_at=utcnow(), **fields)
            .execution_options(synchronize_session=False)
        )
        result = self.db.exec(stmt)
        self.db.commit()
        changed = (result.rowcount or 0) == 1
        if not changed:
            logger.info(
                "Transition %s -> %s rejected for analysis %s",
                "|".join(s.value for s in allowed),
                to_status.value,
                analysis_id,
            )
        return changed

    def mark_error(self, analysis_id: str, message: str | None) -> bool:
        """Only in-flight records can fall into ERROR; terminal ones are left untouched."""
        return self.transition(
            analysis_id,
            (AnalysisStatus.PENDING, AnalysisStatus.ANALYZING),
            AnalysisStatus.ERROR,
            error_message=(message or "")[:500] or None,
        )

"""
Analysis orchestration: drives object store, transcoder, inference provider and record store.

    PENDING -> ANALYZING -> COMPLETED -> COMMITTED | DECLINED
    PENDING | ANALYZING -> ERROR

Failures before the record exists are raised as-is and leave no record. Once the record
exists every failure moves it to ERROR and surfaces as a typed error carrying the analysis id.
"""
import logging
import time
from dataclasses import dataclass

from app.core.errors import (
    AnalysisFailedError,
    InvalidStateError,
    NonFoodImageError,
    NotFoundError,
    TummyError,
    ValidationError,
)
from app.models import AnalysisRecord, AnalysisStatus
from app.models.analysis import DECLINABLE_STATUSES, utcnow
from app.schemas.inference import AnalysisResult
from app.services.image_compression import OUTPUT_MIME_TYPE, CompressionResult, ImageTranscoder
from app.services.inference.base import InferenceProvider
from app.services.prompt import sanitize_user_prompt
from app.services.records import AnalysisRepository
from app.services.storage import ObjectStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AnalysisOutcome:
    analysis_id: str
    provider: str
    processing_time_ms: int
    compression: CompressionResult
    result: AnalysisResult


class AnalysisOrchestrator:
    """Per-request object; the store client, transcoder and provider handles are shared and stateless."""

    def __init__(
        self,
        object_store: ObjectStore,
        transcoder: ImageTranscoder,
        provider: InferenceProvider,
        records: AnalysisRepository,
    ) -> None:
        self.object_store = object_store
        self.transcoder = transcoder
        self.provider = provider
        self.records = records

    def analyze(
        self,
        owner_id: str,
        data: bytes | None,
        mimetype: str | None,
        filename: str | None,
        prompt: str | None = None,
    ) -> AnalysisOutcome:
        started = time.perf_counter()
        if not data or not mimetype or not filename:
            raise ValidationError("No file provided")
        if not mimetype.lower().startswith("image/"):
            raise ValidationError("Invalid file type. Only images are accepted")
        clean_prompt = sanitize_user_prompt(prompt)

        # StorageError here is fatal to the request and no record is created
        upload = self.object_store.upload_temp(data, mimetype, filename)
        try:
            record = self.records.create(owner_id, upload.file_key)
        except Exception:
            logger.exception("Record insert failed after raw upload %s", upload.temp_key)
            self.object_store.delete_temp(upload.file_key)
            raise
        analysis_id = record.id

        try:
            compression, result = self._run_pipeline(analysis_id, data, filename, clean_prompt)
        except TummyError as e:
            self._fail(analysis_id, e)
            e.analysis_id = analysis_id
            raise
        except Exception as e:
            logger.exception("Analysis %s failed: %s", analysis_id, e)
            self._fail(analysis_id, e)
            raise AnalysisFailedError(str(e)[:200] or type(e).__name__, analysis_id=analysis_id) from e

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        logger.info("Analysis %s completed in %d ms by %s", analysis_id, elapsed_ms, self.provider.name)
        return AnalysisOutcome(
            analysis_id=analysis_id,
            provider=self.provider.name,
            processing_time_ms=elapsed_ms,
            compression=compression,
            result=result,
        )

    def _run_pipeline(
        self,
        analysis_id: str,
        data: bytes,
        filename: str,
        prompt: str | None,
    ) -> tuple[CompressionResult, AnalysisResult]:
        compression = self.transcoder.compress(data)
        compressed_upload = self.object_store.upload_temp(compression.buffer, OUTPUT_MIME_TYPE, f"compressed-{filename}")
        moved = self.records.transition(
            analysis_id,
            (AnalysisStatus.PENDING,),
            AnalysisStatus.ANALYZING,
            compressed_object_key=compressed_upload.file_key,
            analyzed_at=utcnow(),
        )
        if not moved:
            raise InvalidStateError("Analysis is no longer pending", analysis_id=analysis_id)
        logger.info(
            "Image compressed: %d -> %d bytes (%.2fx reduction, q=%d)",
            compression.original_size,
            compression.compressed_size,
            compression.ratio,
            compression.quality,
        )

        result = self.provider.analyze(compression.buffer, OUTPUT_MIME_TYPE, prompt)
        if not result.is_food:
            raise NonFoodImageError(result.detected_content, analysis_id=analysis_id)

        completed = self.records.transition(
            analysis_id,
            (AnalysisStatus.ANALYZING,),
            AnalysisStatus.COMPLETED,
            result_payload=result.model_dump(mode="json", by_alias=True),
            meal_title=result.meal_title,
            meal_description=result.meal_description,
            **result.derived_metrics(),
        )
        if not completed:
            raise InvalidStateError("Analysis is no longer in progress", analysis_id=analysis_id)
        return compression, result

    def _fail(self, analysis_id: str, exc: Exception) -> None:
        message = f"{type(exc).__name__}: {exc}"
        if isinstance(exc, NonFoodImageError):
            message = f"Not a food image: {exc.detected_content or 'unknown content'}"
        try:
            self.records.mark_error(analysis_id, message)
        except Exception as e:
            # The original failure is what the caller needs to see
            logger.exception("Could not mark analysis %s as ERROR: %s", analysis_id, e)

    def get(self, analysis_id: str, owner_id: str) -> AnalysisRecord:
        rec = self.records.get_owned(analysis_id, owner_id)
        if rec is None:
            raise NotFoundError("Analysis not found")
        return rec

    def commit(
        self,
        analysis_id: str,
        owner_id: str,
        meal_title: str | None = None,
        meal_description: str | None = None,
    ) -> AnalysisRecord:
        rec = self.get(analysis_id, owner_id)
        committed = self.records.transition(
            analysis_id,
            (AnalysisStatus.COMPLETED,),
            AnalysisStatus.COMMITTED,
            committed_at=utcnow(),
            meal_title=meal_title or rec.meal_title,
            meal_description=meal_description or rec.meal_description,
        )
        if not committed:
            current = self.records.get(analysis_id)
            status = current.status.value if current else "UNKNOWN"
            raise InvalidStateError(f"Cannot commit analysis with status: {status}", analysis_id=analysis_id, status=status)
        rec = self.get(analysis_id, owner_id)
        self._cleanup_temp(rec)
        logger.info("Analysis %s committed", analysis_id)
        return rec

    def decline(self, analysis_id: str, owner_id: str, reason: str | None = None) -> AnalysisRecord:
        self.get(analysis_id, owner_id)
        reason = (reason or "").strip()[:500] or None
        declined = self.records.transition(
            analysis_id,
            DECLINABLE_STATUSES,
            AnalysisStatus.DECLINED,
            declined_at=utcnow(),
            decline_reason=reason,
        )
        if not declined:
            current = self.records.get(analysis_id)
            status = current.status.value if current else "UNKNOWN"
            raise InvalidStateError(f"Cannot decline analysis with status: {status}", analysis_id=analysis_id, status=status)
        if reason:
            logger.info("Analysis %s declined. Reason: %s", analysis_id, reason)
        rec = self.get(analysis_id, owner_id)
        self._cleanup_temp(rec)
        return rec

    def _cleanup_temp(self, rec: AnalysisRecord) -> None:
        """Best-effort: a failed delete is logged by the store and never reverts the transition."""
        for key in (rec.raw_object_key, rec.compressed_object_key):
            if not key:
                continue
            try:
                self.object_store.delete_temp(key)
            except Exception as e:
                logger.warning("Failed to delete temp file %s for analysis %s: %s", key, rec.id, e)

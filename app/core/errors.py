"""Domain errors. Each one knows the HTTP status it maps to; the handler in app/main.py renders them."""


class TummyError(Exception):
    status_code: int = 500
    default_detail: str = "Unexpected server error."

    def __init__(self, detail: str | None = None, *, analysis_id: str | None = None) -> None:
        self.detail = detail or self.default_detail
        self.analysis_id = analysis_id
        super().__init__(self.detail)

    def extras(self) -> dict:
        """Additional response fields beyond error/status_code."""
        if self.analysis_id:
            return {"analysisId": self.analysis_id}
        return {}


class ValidationError(TummyError):
    """Bad or missing input. Raised before any record exists."""

    status_code = 400
    default_detail = "Invalid request."


class NotFoundError(TummyError):
    status_code = 404
    default_detail = "Not found."


class InvalidStateError(TummyError):
    """The record exists but its status does not allow the requested transition."""

    status_code = 400
    default_detail = "Invalid analysis state."

    def __init__(self, detail: str | None = None, *, analysis_id: str | None = None, status: str | None = None) -> None:
        super().__init__(detail, analysis_id=analysis_id)
        self.status = status

    def extras(self) -> dict:
        body = super().extras()
        if self.status:
            body["status"] = self.status
        return body


class NonFoodImageError(TummyError):
    status_code = 400
    default_detail = "Not a food image"

    def __init__(self, detected_content: str | None = None, *, analysis_id: str | None = None) -> None:
        super().__init__(analysis_id=analysis_id)
        self.detected_content = detected_content

    def extras(self) -> dict:
        body = super().extras()
        body["message"] = "The uploaded image does not appear to contain food."
        body["detectedContent"] = self.detected_content
        return body


class ProviderError(TummyError):
    """Inference call failed or returned output that could not be parsed."""

    status_code = 500
    default_detail = "Inference provider error."


class StorageError(TummyError):
    status_code = 500
    default_detail = "Object storage error."


class ImageProcessingError(TummyError):
    status_code = 400
    default_detail = "Image could not be processed."


class AnalysisFailedError(TummyError):
    """Unexpected failure after the record was created; the record is already in ERROR."""

    status_code = 500
    default_detail = "Analysis failed"

    def __init__(self, message: str | None = None, *, analysis_id: str | None = None) -> None:
        super().__init__(analysis_id=analysis_id)
        self.message = message

    def extras(self) -> dict:
        body = super().extras()
        if self.message:
            body["message"] = self.message
        return body

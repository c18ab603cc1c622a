from .analysis import AnalysisRecord, AnalysisStatus
from .error_log import ErrorLog

__all__ = [
    "AnalysisRecord",
    "AnalysisStatus",
    "ErrorLog",
]

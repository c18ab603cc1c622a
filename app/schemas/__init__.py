from .inference import AnalysisResult, NutritionFacts
from .ingredients import (
    AnalysisDetailResponse,
    AnalyzeResponse,
    CommitRequest,
    DeclineRequest,
    DispositionResponse,
    HistoryResponse,
)

__all__ = [
    "AnalysisDetailResponse",
    "AnalysisResult",
    "AnalyzeResponse",
    "CommitRequest",
    "DeclineRequest",
    "DispositionResponse",
    "HistoryResponse",
    "NutritionFacts",
]

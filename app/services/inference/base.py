"""InferenceProvider: abstract base for food image analysis backends."""
from abc import ABC, abstractmethod

from app.schemas.inference import AnalysisResult


class InferenceProvider(ABC):
    name: str = "base"

    @abstractmethod
    def analyze(self, image_bytes: bytes, mime_type: str, prompt: str | None = None) -> AnalysisResult:
        """
        Analyze one image. `prompt` is already sanitized.
        A non-food image is a normal result (is_food=False), not an exception.
        Raises ProviderError when the call fails or the output cannot be parsed.
        """
        ...

    def is_available(self) -> bool:
        return True

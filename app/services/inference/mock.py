"""MockInferenceProvider: fixture-driven backend for development and tests."""
import hashlib
import logging
from typing import Any

from app.schemas.inference import AnalysisResult
from app.services.inference.base import InferenceProvider

logger = logging.getLogger(__name__)

MOCK_FIXTURES: list[dict[str, Any]] = [
    {
        "isFood": True,
        "mealTitle": "Greek Yogurt Bowl",
        "mealDescription": "Plain greek yogurt topped with berries and a drizzle of honey.",
        "ingredients": [
            {"name": "Greek yogurt", "order": 1, "quantity": "150g"},
            {"name": "Blueberries", "order": 2, "quantity": "50g"},
            {"name": "Honey", "order": 3, "quantity": "1 tsp", "isHighlighted": True},
        ],
        "nutritionFacts": {
            "servingSize": "1 bowl (215g)",
            "calories": 190,
            "totalFat": 0.5,
            "saturatedFat": 0,
            "cholesterol": 10,
            "sodium": 65,
            "totalCarbs": 24,
            "dietaryFiber": 1.2,
            "totalSugars": 20,
            "addedSugars": 6,
            "protein": 18,
            "calcium": 200,
            "potassium": 300,
        },
        "allergens": [{"name": "Milk", "severity": "Contains"}],
        "healthFlags": [
            {"name": "High Protein", "type": "POSITIVE", "confidence": 0.98},
            {"name": "Probiotics", "type": "POSITIVE", "confidence": 0.85},
        ],
        "confidence": 0.92,
    },
    {
        "isFood": True,
        "mealTitle": "Peanut Butter Toast",
        "mealDescription": "Two slices of whole wheat toast with crunchy peanut butter.",
        "ingredients": [
            {"name": "Whole wheat bread", "order": 1, "quantity": "2 slices"},
            {"name": "Peanut butter", "order": 2, "quantity": "2 tbsp"},
        ],
        "nutritionFacts": {
            "servingSize": "2 slices",
            "calories": 380,
            "totalFat": 17,
            "saturatedFat": 3.5,
            "sodium": 420,
            "totalCarbs": 40,
            "dietaryFiber": 6,
            "totalSugars": 7,
            "protein": 15,
            "iron": 2.4,
        },
        "allergens": [
            {"name": "Peanuts", "severity": "Contains"},
            {"name": "Wheat", "severity": "Contains"},
        ],
        "healthFlags": [
            {"name": "High Fiber", "type": "POSITIVE", "confidence": 0.9},
            {"name": "High Fat", "type": "NEUTRAL", "confidence": 0.88},
        ],
        "confidence": 0.88,
    },
    {
        "isFood": True,
        "mealTitle": "Chocolate Chip Cookies",
        "mealDescription": "Two homemade chocolate chip cookies.",
        "ingredients": [
            {"name": "Enriched flour", "order": 1},
            {"name": "Sugar", "order": 2, "isHighlighted": True},
            {"name": "Chocolate chips", "order": 3},
            {"name": "Butter", "order": 4},
            {"name": "Eggs", "order": 5},
        ],
        "nutritionFacts": {
            "servingSize": "2 cookies (34g)",
            "calories": 160,
            "totalFat": 8,
            "saturatedFat": 4.5,
            "cholesterol": 15,
            "sodium": 115,
            "totalCarbs": 22,
            "dietaryFiber": 1,
            "totalSugars": 12,
            "addedSugars": 11,
            "protein": 2,
        },
        "allergens": [
            {"name": "Wheat", "severity": "Contains"},
            {"name": "Milk", "severity": "Contains"},
            {"name": "Eggs", "severity": "Contains"},
        ],
        "healthFlags": [
            {"name": "High Sugar", "type": "NEGATIVE", "confidence": 0.96},
            {"name": "Processed Food", "type": "NEGATIVE", "confidence": 0.88},
        ],
        "confidence": 0.9,
    },
]


class MockInferenceProvider(InferenceProvider):
    """Same image -> same fixture. Pass `fixtures` to script a specific answer (e.g. a non-food result)."""

    name = "MockProvider"

    def __init__(self, fixtures: list[dict[str, Any]] | None = None) -> None:
        self._fixtures = fixtures or MOCK_FIXTURES

    def analyze(self, image_bytes: bytes, mime_type: str, prompt: str | None = None) -> AnalysisResult:
        digest = hashlib.sha256(image_bytes).digest()
        selected = self._fixtures[digest[0] % len(self._fixtures)]
        result = AnalysisResult.model_validate(selected)
        logger.debug("Mock analysis for %d bytes -> %s", len(image_bytes), result.meal_title)
        return result.model_copy(
            update={
                "raw_response": {
                    "provider": "mock",
                    "imageSize": len(image_bytes),
                    "mimeType": mime_type,
                    "promptProvided": bool(prompt),
                }
            }
        )

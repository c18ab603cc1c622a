"""Structured output of an inference provider. Wire names are camelCase (mealTitle, nutritionFacts, ...)."""
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _text_or_none(v: Any) -> Any:
    # Models answer "150" and 150 alike
    if v is None or isinstance(v, str):
        return v
    if isinstance(v, (int, float)) and not isinstance(v, bool):
        return str(v)
    return v


class Ingredient(CamelModel):
    name: str
    order: int
    quantity: str | None = None
    is_highlighted: bool | None = None
    notes: str | None = None

    @field_validator("quantity", mode="before")
    @classmethod
    def quantity_as_text(cls, v: Any) -> Any:
        return _text_or_none(v)


class Allergen(CamelModel):
    name: str
    severity: str | None = None  # "Contains" | "May Contain"
    notes: str | None = None


class HealthFlag(CamelModel):
    name: str
    type: Literal["POSITIVE", "NEGATIVE", "NEUTRAL"] = "NEUTRAL"
    confidence: float | None = Field(default=None, ge=0, le=1)
    notes: str | None = None

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, v: Any) -> Any:
        if v is None:
            return "NEUTRAL"
        return v.strip().upper() if isinstance(v, str) else v


class NutritionFacts(CamelModel):
    serving_size: str | None = None
    servings_per_container: str | None = None
    calories: float | None = None
    total_fat: float | None = None
    saturated_fat: float | None = None
    trans_fat: float | None = None
    cholesterol: float | None = None
    sodium: float | None = None
    total_carbs: float | None = None
    dietary_fiber: float | None = None
    total_sugars: float | None = None
    added_sugars: float | None = None
    protein: float | None = None
    vitamin_d: float | None = None
    calcium: float | None = None
    iron: float | None = None
    potassium: float | None = None
    additional_notes: str | None = None

    @field_validator("serving_size", "servings_per_container", mode="before")
    @classmethod
    def servings_as_text(cls, v: Any) -> Any:
        return _text_or_none(v)


class AnalysisResult(CamelModel):
    is_food: bool = True
    detected_content: str | None = None  # what the image shows when is_food is false
    meal_title: str | None = None
    meal_description: str | None = None
    ingredients: list[Ingredient] = Field(default_factory=list)
    nutrition_facts: NutritionFacts | None = None
    allergens: list[Allergen] = Field(default_factory=list)
    health_flags: list[HealthFlag] = Field(default_factory=list)
    confidence: float | None = Field(default=None, ge=0, le=1)
    raw_response: dict[str, Any] | None = None

    @field_validator("is_food", mode="before")
    @classmethod
    def food_unless_denied(cls, v: Any) -> Any:
        return True if v is None else v

    @field_validator("ingredients", "allergens", "health_flags", mode="before")
    @classmethod
    def null_list_is_empty(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator("ingredients")
    @classmethod
    def sort_ingredients(cls, v: list[Ingredient]) -> list[Ingredient]:
        return sorted(v, key=lambda i: i.order)

    def derived_metrics(self) -> dict[str, float | None]:
        """Numeric columns copied onto the record for filtering."""
        facts = self.nutrition_facts or NutritionFacts()
        return {
            "total_calories": facts.calories,
            "total_sugar": facts.total_sugars,
            "total_carbs": facts.total_carbs,
            "total_protein": facts.protein,
        }

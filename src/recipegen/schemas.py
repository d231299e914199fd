"""Pydantic schemas for recipe concepts and generated recipe content."""

from typing import Any
from uuid import uuid4

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from recipegen.config import get_settings

NUTRITION_FIELDS = ("calories", "protein_grams", "carbs_grams", "fat_grams")


class NutritionValues(BaseModel):
    """Calories and macronutrients for one serving."""

    model_config = ConfigDict(populate_by_name=True)

    calories: float
    protein_grams: float = Field(
        validation_alias=AliasChoices("protein_grams", "proteinGrams", "protein")
    )
    carbs_grams: float = Field(
        validation_alias=AliasChoices("carbs_grams", "carbsGrams", "carbs")
    )
    fat_grams: float = Field(validation_alias=AliasChoices("fat_grams", "fatGrams", "fat"))

    @field_validator("calories", "protein_grams", "carbs_grams", "fat_grams", mode="before")
    @classmethod
    def coerce_number(cls, v: Any) -> float:
        """Accept numeric strings such as '450' or '32g'."""
        if v is None:
            raise ValueError("nutrition value is required")
        if isinstance(v, str):
            v = v.lower().replace("kcal", "").replace("g", "").strip()
        return float(v)


class RecipeConcept(BaseModel):
    """Abstract seed for one recipe: tags plus target macros."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    name: str
    description: str = ""
    meal_types: tuple[str, ...] = ()
    dietary_tags: tuple[str, ...] = ()
    main_ingredient_tags: tuple[str, ...] = ()
    estimated_difficulty: str = "medium"
    target_nutrition: NutritionValues


class RecipeIngredient(BaseModel):
    """One line of a recipe's ingredient list."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = ""
    amount: float = 0.0
    unit: str = ""

    @field_validator("name", "unit", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> str:
        """Ensure text fields are never None."""
        if v is None:
            return ""
        return str(v).strip()

    @field_validator("amount", mode="before")
    @classmethod
    def coerce_amount(cls, v: Any) -> float:
        """Handle amounts given as strings or simple fractions."""
        if v is None or v == "":
            return 0.0
        if isinstance(v, str):
            v = v.strip()
            if "/" in v:
                numerator, _, denominator = v.partition("/")
                try:
                    return float(numerator) / float(denominator)
                except (ValueError, ZeroDivisionError):
                    return 0.0
        try:
            return float(v)
        except (ValueError, TypeError):
            return 0.0


class GeneratedRecipe(BaseModel):
    """Full recipe content produced by the text generation service.

    Instances are updated in place by later pipeline stages (validation fixes,
    final image URL) so ``recipe_id`` identifies the same recipe throughout.
    """

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    recipe_id: str = Field(default_factory=lambda: uuid4().hex)
    name: str = ""
    description: str = ""
    meal_types: list[str] = Field(default_factory=list)
    dietary_tags: list[str] = Field(default_factory=list)
    main_ingredient_tags: list[str] = Field(default_factory=list)
    ingredients: list[RecipeIngredient] = Field(default_factory=list)
    instructions: str = ""
    prep_time_minutes: int = 0
    cook_time_minutes: int = 0
    servings: int = 1
    estimated_nutrition: NutritionValues | None = None
    image_url: str = Field(default_factory=lambda: get_settings().placeholder_image_url)

    @field_validator("name", "description", mode="before")
    @classmethod
    def strip_text(cls, v: Any) -> str:
        """Normalize missing or padded text."""
        if v is None:
            return ""
        return str(v).strip()

    @field_validator("instructions", mode="before")
    @classmethod
    def join_instructions(cls, v: Any) -> str:
        """Instructions may arrive as a list of steps."""
        if v is None:
            return ""
        if isinstance(v, list):
            return "\n".join(str(step).strip() for step in v if str(step).strip())
        return str(v)

    @field_validator("estimated_nutrition", mode="before")
    @classmethod
    def empty_nutrition_is_missing(cls, v: Any) -> Any:
        """Treat an empty nutrition object the same as a missing one."""
        if not v:
            return None
        return v

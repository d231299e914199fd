"""Nutritional validation and tolerance-based auto-correction of generated recipes."""

from typing import Any

from recipegen.config import get_settings
from recipegen.generate.agents.base import AgentResponse, AgentType, BaseAgent
from recipegen.generate.types import (
    Severity,
    ValidatedRecipe,
    ValidationBatchResult,
    ValidationIssue,
    ValidationStats,
)
from recipegen.logging_config import LoggingContext, get_logger
from recipegen.schemas import NUTRITION_FIELDS, GeneratedRecipe, RecipeConcept

logger = get_logger(__name__)


class NutritionalValidatorAgent(BaseAgent):
    """Checks each recipe's estimated nutrition against its concept's targets.

    Recipes are matched to concepts by position. Values close to the target
    are snapped to it; values too far off are logged as critical issues and
    fail the recipe. Tolerance corrections are applied to a working copy and
    only written back to the recipe when it passes, so failed recipes keep
    their original numbers. Clamping negative values to zero is a sanity fix
    and is always written back.
    """

    agent_type = AgentType.VALIDATOR

    def __init__(
        self,
        calorie_tolerance_ratio: float | None = None,
        macro_tolerance_grams: float | None = None,
    ):
        super().__init__()
        settings = get_settings()
        self.calorie_tolerance_ratio = (
            calorie_tolerance_ratio
            if calorie_tolerance_ratio is not None
            else settings.calorie_tolerance_ratio
        )
        self.macro_tolerance_grams = (
            macro_tolerance_grams
            if macro_tolerance_grams is not None
            else settings.macro_tolerance_grams
        )

    async def process(self, request: dict[str, Any]) -> AgentResponse[ValidationBatchResult]:
        """Generic agent entry point taking ``recipes``, ``concepts`` and ``batch_id``."""
        return await self.validate_batch(
            request.get("recipes", []),
            request.get("concepts", []),
            request.get("batch_id", ""),
        )

    async def validate_batch(
        self,
        recipes: list[GeneratedRecipe],
        concepts: list[RecipeConcept],
        batch_id: str,
        correlation_id: str | None = None,
        item_correlation_ids: list[str] | None = None,
    ) -> AgentResponse[ValidationBatchResult]:
        """
        Validate a batch of recipes against their concepts.

        Args:
            recipes: Generated recipes, in concept order.
            concepts: Concepts the recipes were generated from.
            batch_id: Batch the recipes belong to.
            correlation_id: Optional id carried into the response.
            item_correlation_ids: Optional per-recipe ids set as the logging
                correlation id while that recipe is validated.

        Returns:
            AgentResponse wrapping a ValidationBatchResult with one
            ValidatedRecipe per input recipe, in input order.
        """

        async def _validate() -> ValidationBatchResult:
            return self._validate_all(recipes, concepts, batch_id, item_correlation_ids)

        return await self.execute_with_metrics(_validate, correlation_id)

    def _validate_all(
        self,
        recipes: list[GeneratedRecipe],
        concepts: list[RecipeConcept],
        batch_id: str,
        item_correlation_ids: list[str] | None = None,
    ) -> ValidationBatchResult:
        result = ValidationBatchResult(batch_id=batch_id)

        for index, recipe in enumerate(recipes):
            concept = concepts[index] if index < len(concepts) else None
            item_correlation_id = item_correlation_ids[index] if item_correlation_ids else None
            with LoggingContext(correlation_id=item_correlation_id):
                validated, issues = self._validate_one(index, recipe, concept)

            result.total_validated += 1
            if validated.validation_passed:
                result.passed += 1
            else:
                result.failed += 1
            if validated.auto_fixes_applied:
                result.auto_fixed += 1
            result.issues.extend(issues)
            result.validated_recipes.append(validated)

        logger.info(
            f"Validated {result.total_validated} recipes for batch {batch_id}: "
            f"{result.passed} passed, {result.failed} failed, {result.auto_fixed} auto-fixed"
        )
        return result

    def _validate_one(
        self,
        index: int,
        recipe: GeneratedRecipe,
        concept: RecipeConcept | None,
    ) -> tuple[ValidatedRecipe, list[ValidationIssue]]:
        try:
            validated, issues = self.validate_recipe(index, recipe, concept)
        except Exception as e:
            logger.exception(f"Unexpected error validating recipe {index}: {e}")
            issues = [
                ValidationIssue(
                    recipe_index=index,
                    recipe_name=recipe.name,
                    field="recipe",
                    expected_value="valid recipe",
                    actual_value=str(e),
                    severity=Severity.CRITICAL,
                )
            ]
            validated = ValidatedRecipe(
                recipe=recipe,
                concept=concept,
                validation_passed=False,
                nutrition_accurate=False,
                usable=False,
            )
            return validated, issues

        logger.debug(
            f"Validated recipe {recipe.recipe_id}: passed={validated.validation_passed}, "
            f"{len(issues)} issues"
        )
        return validated, issues

    def validate_recipe(
        self,
        index: int,
        recipe: GeneratedRecipe,
        concept: RecipeConcept | None,
    ) -> tuple[ValidatedRecipe, list[ValidationIssue]]:
        """Validate one recipe and return it with the issues found."""
        issues: list[ValidationIssue] = []

        def issue(field: str, expected: Any, actual: Any, severity: Severity, fixed: bool) -> None:
            issues.append(
                ValidationIssue(
                    recipe_index=index,
                    recipe_name=recipe.name,
                    field=field,
                    expected_value=expected,
                    actual_value=actual,
                    severity=severity,
                    fixed=fixed,
                )
            )

        if concept is None:
            issue("concept", "matching concept", None, Severity.CRITICAL, False)
            return self._rejected(recipe, None), issues

        missing = self._missing_required_fields(recipe)
        if missing:
            for field, actual in missing:
                issue(field, "present", actual, Severity.CRITICAL, False)
            return self._rejected(recipe, concept), issues

        nutrition = recipe.estimated_nutrition
        target = concept.target_nutrition
        sanity_fixes: list[str] = []
        tolerance_fixes: list[str] = []

        # Sanity pass: negative values are never meaningful
        clamped = nutrition.model_copy()
        for field in NUTRITION_FIELDS:
            value = getattr(clamped, field)
            if value < 0:
                setattr(clamped, field, 0.0)
                sanity_fixes.append(f"{field}: clamped {value:g} to 0")
                issue(field, 0.0, value, Severity.WARNING, True)

        working = clamped.model_copy()
        nutrition_accurate = True
        for field in NUTRITION_FIELDS:
            actual = getattr(working, field)
            expected = getattr(target, field)
            if actual == expected:
                continue
            if self._within_tolerance(field, actual, expected):
                setattr(working, field, expected)
                tolerance_fixes.append(f"{field}: {actual:g} -> {expected:g}")
                issue(field, expected, actual, Severity.INFO, True)
            else:
                nutrition_accurate = False
                issue(field, expected, actual, Severity.CRITICAL, False)

        if nutrition_accurate:
            recipe.estimated_nutrition = working
            applied = sanity_fixes + tolerance_fixes
        else:
            recipe.estimated_nutrition = clamped
            applied = sanity_fixes

        validated = ValidatedRecipe(
            recipe=recipe,
            concept=concept,
            validation_passed=nutrition_accurate,
            nutrition_accurate=nutrition_accurate,
            auto_fixes_applied=applied,
        )
        return validated, issues

    def _within_tolerance(self, field: str, actual: float, expected: float) -> bool:
        deviation = abs(actual - expected)
        if field == "calories":
            return deviation <= self.calorie_tolerance_ratio * expected
        return deviation <= self.macro_tolerance_grams

    @staticmethod
    def _missing_required_fields(recipe: GeneratedRecipe) -> list[tuple[str, Any]]:
        missing: list[tuple[str, Any]] = []
        if not recipe.name:
            missing.append(("name", recipe.name))
        if recipe.estimated_nutrition is None:
            missing.append(("estimated_nutrition", None))
        if not recipe.ingredients:
            missing.append(("ingredients", []))
        for position, ingredient in enumerate(recipe.ingredients):
            if not ingredient.name:
                missing.append((f"ingredients[{position}].name", ingredient.name))
        return missing

    @staticmethod
    def _rejected(recipe: GeneratedRecipe, concept: RecipeConcept | None) -> ValidatedRecipe:
        return ValidatedRecipe(
            recipe=recipe,
            concept=concept,
            validation_passed=False,
            nutrition_accurate=False,
            usable=False,
        )

    @staticmethod
    def get_validation_stats(issues: list[ValidationIssue]) -> ValidationStats:
        """Count issues by severity and how many were fixed."""
        stats = ValidationStats(total=len(issues))
        for item in issues:
            if item.severity == Severity.CRITICAL:
                stats.critical += 1
            elif item.severity == Severity.WARNING:
                stats.warnings += 1
            else:
                stats.info += 1
            if item.fixed:
                stats.fixed += 1
        return stats


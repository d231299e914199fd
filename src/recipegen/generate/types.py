"""Result types passed between the content-generation pipeline stages."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from recipegen.schemas import GeneratedRecipe, RecipeConcept


class Severity(str, Enum):
    """Severity of a validation issue."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True)
class ValidationIssue:
    """One entry of the validation log. Never mutated after creation."""

    recipe_index: int
    recipe_name: str
    field: str
    expected_value: Any
    actual_value: Any
    severity: Severity
    fixed: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "recipe_index": self.recipe_index,
            "recipe_name": self.recipe_name,
            "field": self.field,
            "expected_value": self.expected_value,
            "actual_value": self.actual_value,
            "severity": self.severity.value,
            "fixed": self.fixed,
        }


@dataclass
class ValidatedRecipe:
    """A generated recipe together with its validation outcome.

    ``usable`` is False only for input errors (missing required fields or no
    matching concept). Recipes that merely failed nutrition tolerance remain
    usable and continue downstream with their original values.
    """

    recipe: GeneratedRecipe
    concept: RecipeConcept | None
    validation_passed: bool
    nutrition_accurate: bool
    auto_fixes_applied: list[str] = field(default_factory=list)
    usable: bool = True

    @property
    def recipe_id(self) -> str:
        return self.recipe.recipe_id


@dataclass
class ValidationStats:
    """Issue counts by severity."""

    total: int = 0
    critical: int = 0
    warnings: int = 0
    info: int = 0
    fixed: int = 0


@dataclass
class ValidationBatchResult:
    """Output of the nutritional validator for one batch."""

    batch_id: str
    total_validated: int = 0
    passed: int = 0
    failed: int = 0
    auto_fixed: int = 0
    issues: list[ValidationIssue] = field(default_factory=list)
    validated_recipes: list[ValidatedRecipe] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "total_validated": self.total_validated,
            "passed": self.passed,
            "failed": self.failed,
            "auto_fixed": self.auto_fixed,
            "issues": [issue.to_dict() for issue in self.issues],
        }


@dataclass
class ImageGenerationRequest:
    """Recipe details needed to generate one image."""

    recipe_id: str
    recipe_name: str
    recipe_description: str
    meal_types: list[str]
    batch_id: str
    correlation_id: str | None = None
    skip: bool = False


@dataclass
class ImageMetadata:
    """Outcome of image generation for one recipe."""

    image_url: str
    prompt: str
    similarity_hash: str | None
    generation_timestamp: datetime
    quality_score: int
    is_placeholder: bool
    retry_count: int = 0
    error: str | None = None


@dataclass
class ImageUploadRequest:
    """A temporary image waiting to be copied to durable storage."""

    recipe_id: str
    recipe_name: str
    temporary_image_url: str
    batch_id: str
    correlation_id: str | None = None


@dataclass
class GeneratedImage:
    """Image record for one recipe, ready for the storage stage."""

    recipe_id: str
    recipe_name: str
    batch_id: str
    metadata: ImageMetadata
    correlation_id: str | None = None

    def to_upload_request(self) -> ImageUploadRequest:
        return ImageUploadRequest(
            recipe_id=self.recipe_id,
            recipe_name=self.recipe_name,
            temporary_image_url=self.metadata.image_url,
            batch_id=self.batch_id,
            correlation_id=self.correlation_id,
        )


@dataclass
class ImageBatchResult:
    """Output of the image generation agent for one batch."""

    batch_id: str
    images: list[GeneratedImage] = field(default_factory=list)
    total_generated: int = 0
    total_failed: int = 0
    placeholder_count: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "total_generated": self.total_generated,
            "total_failed": self.total_failed,
            "placeholder_count": self.placeholder_count,
            "errors": self.errors,
        }


@dataclass
class ImageUploadResult:
    """Outcome of copying one image to durable storage.

    ``was_uploaded=False`` means the temporary URL is used as the permanent
    value. This is a fallback, not an error state.
    """

    recipe_id: str
    recipe_name: str
    batch_id: str
    temporary_image_url: str
    permanent_image_url: str
    was_uploaded: bool
    upload_duration_ms: float
    error: str | None = None
    correlation_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "recipe_id": self.recipe_id,
            "recipe_name": self.recipe_name,
            "batch_id": self.batch_id,
            "temporary_image_url": self.temporary_image_url,
            "permanent_image_url": self.permanent_image_url,
            "was_uploaded": self.was_uploaded,
            "upload_duration_ms": self.upload_duration_ms,
            "error": self.error,
            "correlation_id": self.correlation_id,
        }


@dataclass
class StorageBatchResult:
    """Output of the image storage agent for one batch."""

    batch_id: str
    uploads: list[ImageUploadResult] = field(default_factory=list)
    total_uploaded: int = 0
    total_failed: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "total_uploaded": self.total_uploaded,
            "total_failed": self.total_failed,
            "errors": self.errors,
        }


class ItemStatus(str, Enum):
    """Terminal state of one batch item."""

    COMPLETED = "completed"
    DEGRADED = "degraded"
    GENERATION_FAILED = "generation_failed"
    VALIDATION_FAILED = "validation_failed"


class Degradation(str, Enum):
    """How a pipeline stage degraded for one item."""

    GENERATION_FAILED = "generation_failed"
    VALIDATION_FAILED = "validation_failed"
    NUTRITION_AUTO_FIXED = "nutrition_auto_fixed"
    NUTRITION_INACCURATE = "nutrition_inaccurate"
    IMAGE_SKIPPED = "image_skipped"
    PLACEHOLDER_IMAGE = "placeholder_image"
    FALLBACK_STORAGE_URL = "fallback_storage_url"


@dataclass
class BatchItem:
    """Everything known about one concept as it moves through the pipeline."""

    index: int
    correlation_id: str
    concept: RecipeConcept
    recipe: GeneratedRecipe | None = None
    generation_error: str | None = None
    validation: ValidatedRecipe | None = None
    issues: list[ValidationIssue] = field(default_factory=list)
    image: GeneratedImage | None = None
    upload: ImageUploadResult | None = None
    degradations: list[Degradation] = field(default_factory=list)

    @property
    def recipe_id(self) -> str | None:
        return self.recipe.recipe_id if self.recipe else None

    @property
    def final_image_url(self) -> str | None:
        if self.upload is not None:
            return self.upload.permanent_image_url
        if self.image is not None:
            return self.image.metadata.image_url
        return self.recipe.image_url if self.recipe else None

    @property
    def status(self) -> ItemStatus:
        if self.recipe is None:
            return ItemStatus.GENERATION_FAILED
        if self.validation is not None and not self.validation.usable:
            return ItemStatus.VALIDATION_FAILED
        if self.degradations:
            return ItemStatus.DEGRADED
        return ItemStatus.COMPLETED

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "correlation_id": self.correlation_id,
            "recipe_id": self.recipe_id,
            "concept_name": self.concept.name,
            "status": self.status.value,
            "degradations": [d.value for d in self.degradations],
            "recipe": self.recipe.model_dump(mode="json") if self.recipe else None,
            "generation_error": self.generation_error,
            "validation_passed": self.validation.validation_passed if self.validation else False,
            "nutrition_accurate": self.validation.nutrition_accurate if self.validation else False,
            "auto_fixes_applied": self.validation.auto_fixes_applied if self.validation else [],
            "issues": [issue.to_dict() for issue in self.issues],
            "is_placeholder_image": self.image.metadata.is_placeholder if self.image else None,
            "was_uploaded": self.upload.was_uploaded if self.upload else None,
            "final_image_url": self.final_image_url,
        }


@dataclass
class BatchResult:
    """Result of one orchestrated batch run, returned to callers."""

    batch_id: str
    status: str
    items: list[BatchItem] = field(default_factory=list)
    validation: ValidationBatchResult | None = None
    images: ImageBatchResult | None = None
    storage: StorageBatchResult | None = None
    error: str | None = None
    started_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: datetime | None = None
    duration_ms: float = 0.0

    @property
    def total_input(self) -> int:
        return len(self.items)

    @property
    def total_recipes_generated(self) -> int:
        return sum(1 for item in self.items if item.recipe is not None)

    @property
    def total_validated(self) -> int:
        return self.validation.total_validated if self.validation else 0

    @property
    def passed(self) -> int:
        return self.validation.passed if self.validation else 0

    @property
    def failed(self) -> int:
        return self.validation.failed if self.validation else 0

    @property
    def auto_fixed(self) -> int:
        return self.validation.auto_fixed if self.validation else 0

    @property
    def total_generated(self) -> int:
        return self.images.total_generated if self.images else 0

    @property
    def placeholder_count(self) -> int:
        return self.images.placeholder_count if self.images else 0

    @property
    def total_uploaded(self) -> int:
        return self.storage.total_uploaded if self.storage else 0

    @property
    def total_failed(self) -> int:
        return self.storage.total_failed if self.storage else 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "batch_id": self.batch_id,
            "status": self.status,
            "error": self.error,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": self.duration_ms,
            "total_input": self.total_input,
            "total_recipes_generated": self.total_recipes_generated,
            "total_validated": self.total_validated,
            "passed": self.passed,
            "failed": self.failed,
            "auto_fixed": self.auto_fixed,
            "total_generated": self.total_generated,
            "placeholder_count": self.placeholder_count,
            "total_uploaded": self.total_uploaded,
            "total_failed": self.total_failed,
            "items": [item.to_dict() for item in self.items],
        }

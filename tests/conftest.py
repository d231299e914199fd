"""Pytest configuration and shared fixtures."""

import asyncio
import hashlib

import pytest
from sqlalchemy import create_engine

from recipegen.celery_app import celery_app
from recipegen.database import Base
from recipegen.generate.connectors.base import (
    ImageGenerationClient,
    ImageHasher,
    ObjectStoreClient,
    TextGenerationClient,
)
from recipegen.generate.hash_store import InMemoryHashStore
from recipegen.models import RecipeImageHash
from recipegen.schemas import GeneratedRecipe, RecipeConcept

# =============================================================================
# Pytest Configuration
# =============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (require external services)"
    )
    config.addinivalue_line("markers", "slow: marks tests as slow running")


@pytest.fixture(scope="session", autouse=True)
def in_memory_result_backend():
    """Keep eagerly applied tasks off the PostgreSQL result backend."""
    celery_app.conf.update(result_backend="cache+memory://")
    yield


# =============================================================================
# Fake Collaborators
# =============================================================================


def url_hash(url: str) -> str:
    """Deterministic 64-bit hex hash for a URL, far apart for different URLs."""
    return hashlib.sha256(url.encode()).hexdigest()[:16]


class FakeTextClient(TextGenerationClient):
    """Returns recipes built from the concept, or raises for configured names."""

    def __init__(self, nutrition_overrides=None, failing=(), delay: float = 0.0):
        self.nutrition_overrides = nutrition_overrides or {}
        self.failing = set(failing)
        self.delay = delay
        self.calls: list[str] = []

    async def generate(self, concept: RecipeConcept) -> GeneratedRecipe:
        self.calls.append(concept.name)
        if self.delay:
            await asyncio.sleep(self.delay)
        if concept.name in self.failing:
            raise RuntimeError(f"text service rejected {concept.name}")

        nutrition = concept.target_nutrition.model_dump()
        nutrition.update(self.nutrition_overrides.get(concept.name, {}))
        return GeneratedRecipe(
            name=concept.name,
            description=concept.description,
            meal_types=list(concept.meal_types),
            ingredients=[{"name": "Chicken breast", "amount": 200, "unit": "g"}],
            instructions="Cook it.",
            estimated_nutrition=nutrition,
        )


class FakeImageClient(ImageGenerationClient):
    """Returns queued URLs in order, then a unique URL per call."""

    def __init__(self, urls=None, error: Exception | None = None, delay: float = 0.0):
        self.urls = list(urls or [])
        self.error = error
        self.delay = delay
        self.prompts: list[str] = []

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        number = len(self.prompts)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if self.urls:
            return self.urls.pop(0)
        return f"https://images.example.com/generated-{number}.png"


class FakeHasher(ImageHasher):
    """Hashes URLs, with explicit overrides to simulate identical image content."""

    def __init__(self, hashes=None):
        self.hashes = dict(hashes or {})
        self.calls: list[str] = []

    async def hash(self, image_url: str) -> str:
        self.calls.append(image_url)
        return self.hashes.get(image_url, url_hash(image_url))


class FakeObjectStore(ObjectStoreClient):
    """Records uploads and tracks how many run at the same time."""

    def __init__(self, failing_urls=(), delay: float = 0.0):
        self.failing_urls = set(failing_urls)
        self.delay = delay
        self.calls: list[tuple[str, str]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def upload(self, temporary_url: str, label: str) -> str:
        self.calls.append((temporary_url, label))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if temporary_url in self.failing_urls:
                raise RuntimeError("storage service unavailable")
            return temporary_url.replace("images.example.com", "cdn.example.com/recipes")
        finally:
            self.in_flight -= 1


# =============================================================================
# Domain Fixtures
# =============================================================================


@pytest.fixture
def make_concept():
    """Factory for recipe concepts with a 500 kcal / 40 / 30 / 20 target."""

    def _make(name: str = "Grilled Chicken Breast", **overrides) -> RecipeConcept:
        data = {
            "name": name,
            "description": "High protein meal",
            "meal_types": ["Lunch"],
            "main_ingredient_tags": ["Chicken"],
            "estimated_difficulty": "easy",
            "target_nutrition": {
                "calories": 500,
                "protein_grams": 40,
                "carbs_grams": 30,
                "fat_grams": 20,
            },
        }
        data.update(overrides)
        return RecipeConcept.model_validate(data)

    return _make


@pytest.fixture
def concept(make_concept):
    return make_concept()


@pytest.fixture
def make_recipe():
    """Factory for generated recipes matching the default concept."""

    def _make(name: str = "Grilled Chicken Breast", **overrides) -> GeneratedRecipe:
        data = {
            "name": name,
            "description": "Lean protein with vegetables",
            "meal_types": ["Lunch"],
            "main_ingredient_tags": ["Chicken"],
            "ingredients": [
                {"name": "Chicken breast", "amount": 200, "unit": "g"},
                {"name": "Olive oil", "amount": 1, "unit": "tbsp"},
            ],
            "instructions": "Grill chicken until cooked",
            "prep_time_minutes": 10,
            "cook_time_minutes": 15,
            "servings": 1,
            "estimated_nutrition": {
                "calories": 500,
                "protein_grams": 40,
                "carbs_grams": 30,
                "fat_grams": 20,
            },
        }
        data.update(overrides)
        return GeneratedRecipe.model_validate(data)

    return _make


@pytest.fixture
def hash_store():
    """Exact-match in-memory hash store."""
    return InMemoryHashStore(distance_threshold=0)


@pytest.fixture
def image_client():
    return FakeImageClient()


@pytest.fixture
def hasher():
    return FakeHasher()


@pytest.fixture
def object_store():
    return FakeObjectStore()


# =============================================================================
# SQLite Test Database Fixtures
# =============================================================================


@pytest.fixture(scope="function")
def sqlite_engine():
    """In-memory SQLite engine with the hash table created."""
    engine = create_engine("sqlite://", echo=False)
    Base.metadata.create_all(engine, tables=[RecipeImageHash.__table__])

    yield engine

    engine.dispose()

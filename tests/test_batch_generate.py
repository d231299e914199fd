"""Tests for the batch orchestrator."""

import asyncio
import json
import logging
import re
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from conftest import FakeImageClient, FakeObjectStore, FakeTextClient

from recipegen.config import get_settings
from recipegen.generate.agents.base import AgentResponse, AgentType
from recipegen.generate.agents.image_generation import ImageGenerationAgent
from recipegen.generate.agents.image_storage import ImageStorageAgent
from recipegen.generate.agents.validator import NutritionalValidatorAgent
from recipegen.generate.batch_generate import BatchOrchestrator, run_recipe_batch
from recipegen.generate.connectors.base import GenerationError, TextGenerationClient
from recipegen.generate.hash_store import HashStoreUnavailableError
from recipegen.generate.types import Degradation, ItemStatus

PLACEHOLDER = "https://placehold.example.com/recipe.png"


@pytest.fixture
def make_orchestrator(image_client, hasher, hash_store, object_store):
    """Factory for orchestrators wired to fake services."""

    def _make(
        text_client=None,
        image_client=image_client,
        hasher=hasher,
        hash_store=hash_store,
        object_store=object_store,
        progress=None,
        **kwargs,
    ) -> BatchOrchestrator:
        return BatchOrchestrator(
            text_client=text_client or FakeTextClient(),
            validator=NutritionalValidatorAgent(),
            image_agent=ImageGenerationAgent(
                image_client=image_client,
                hasher=hasher,
                hash_store=hash_store,
                max_duplicate_retries=3,
                generation_timeout=5.0,
                placeholder_url=PLACEHOLDER,
            ),
            storage_agent=ImageStorageAgent(object_store=object_store, chunk_size=5),
            progress=progress,
            **kwargs,
        )

    return _make


@pytest.fixture
def concepts(make_concept):
    return [make_concept(name=name) for name in ("Recipe A", "Recipe B", "Recipe C")]


class TestEndToEnd:
    """Tests for fully successful batches."""

    @pytest.mark.asyncio
    async def test_all_items_complete(self, make_orchestrator, concepts, object_store):
        """Test every concept becomes a validated recipe with a stored image."""
        orchestrator = make_orchestrator()

        result = await orchestrator.run_batch(concepts, batch_id="batch-e2e")

        assert result.status == "completed"
        assert result.batch_id == "batch-e2e"
        assert result.error is None
        assert result.total_input == 3
        assert result.total_recipes_generated == 3
        assert result.total_validated == 3
        assert result.passed == 3
        assert result.total_generated == 3
        assert result.placeholder_count == 0
        assert result.total_uploaded == 3
        assert result.total_failed == 0
        assert len(object_store.calls) == 3
        assert result.completed_at is not None
        assert result.duration_ms >= 0

    @pytest.mark.asyncio
    async def test_items_keep_input_order_and_identity(self, make_orchestrator, concepts):
        """Test one item per concept, in order, with a stable recipe id across stages."""
        result = await make_orchestrator().run_batch(concepts)

        assert [item.concept.name for item in result.items] == ["Recipe A", "Recipe B", "Recipe C"]
        assert [item.index for item in result.items] == [0, 1, 2]
        for item in result.items:
            assert item.status == ItemStatus.COMPLETED
            assert item.degradations == []
            assert item.validation.recipe_id == item.recipe_id
            assert item.image.recipe_id == item.recipe_id
            assert item.upload.recipe_id == item.recipe_id

    @pytest.mark.asyncio
    async def test_recipe_image_url_is_permanent_url(self, make_orchestrator, concepts):
        """Test each recipe ends up pointing at its stored image."""
        result = await make_orchestrator().run_batch(concepts)

        for item in result.items:
            assert item.upload.was_uploaded is True
            assert item.recipe.image_url == item.upload.permanent_image_url
            assert item.recipe.image_url.startswith("https://cdn.example.com/recipes/")
            assert item.final_image_url == item.recipe.image_url

    @pytest.mark.asyncio
    async def test_batch_id_is_generated(self, make_orchestrator, concepts):
        result = await make_orchestrator().run_batch(concepts)

        assert re.fullmatch(r"batch-[0-9a-f]{12}", result.batch_id)

    @pytest.mark.asyncio
    async def test_result_serializes_to_json(self, make_orchestrator, concepts):
        """Test the batch result can be stored as a task result."""
        result = await make_orchestrator().run_batch(concepts)

        data = json.loads(json.dumps(result.to_dict()))

        assert data["status"] == "completed"
        assert len(data["items"]) == 3
        assert data["items"][0]["status"] == "completed"
        assert data["items"][0]["recipe"]["name"] == "Recipe A"

    @pytest.mark.asyncio
    async def test_orchestrator_metrics(self, make_orchestrator, concepts):
        orchestrator = make_orchestrator()

        await orchestrator.run_batch(concepts)

        metrics = orchestrator.get_metrics()
        assert metrics.agent_type == AgentType.COORDINATOR
        assert metrics.operation_count == 1
        assert metrics.success_count == 1


class RepeatingIdTextClient(FakeTextClient):
    """Returns every recipe under the same id, as a model echoing one object would."""

    async def generate(self, concept):
        recipe = await super().generate(concept)
        recipe.recipe_id = "r1"
        return recipe


class TestItemIdentity:
    """Tests that items keep their own data and trace ids through every stage."""

    @pytest.mark.asyncio
    async def test_repeated_recipe_ids_do_not_mix_items(
        self, make_orchestrator, make_concept, hash_store, object_store
    ):
        """Test two recipes returned with one id still keep their own images."""
        concepts = [make_concept(name="Recipe A"), make_concept(name="Recipe B")]
        orchestrator = make_orchestrator(text_client=RepeatingIdTextClient())

        result = await orchestrator.run_batch(concepts)

        first, second = result.items
        assert result.status == "completed"
        assert first.recipe_id != second.recipe_id
        assert "r1" not in {first.recipe_id, second.recipe_id}
        assert first.image.metadata.image_url != second.image.metadata.image_url
        for item in result.items:
            assert item.image.recipe_id == item.recipe_id
            assert item.upload.recipe_id == item.recipe_id
            assert item.upload.temporary_image_url == item.image.metadata.image_url
            assert item.recipe.image_url == item.upload.permanent_image_url
        assert sorted(label for _, label in object_store.calls) == ["Recipe A", "Recipe B"]
        assert len({url for url, _ in object_store.calls}) == 2
        assert {record.recipe_id for record in hash_store.records} == {
            first.recipe_id,
            second.recipe_id,
        }

    @pytest.mark.asyncio
    async def test_correlation_id_traced_through_stages(self, make_orchestrator, concepts, caplog):
        """Test each item's correlation id tags its validation, image and upload logs."""
        orchestrator = make_orchestrator()
        for stage in ("validator", "image_generation", "image_storage"):
            caplog.set_level(logging.DEBUG, logger=f"recipegen.generate.agents.{stage}")

        result = await orchestrator.run_batch(concepts)

        stage_prefixes = ("Validated recipe", "Accepted image for recipe", "Uploaded image for recipe")
        for item in result.items:
            assert item.image.correlation_id == item.correlation_id
            assert item.upload.correlation_id == item.correlation_id
            traced = [
                record
                for record in caplog.records
                if record.getMessage().startswith(stage_prefixes)
                and item.recipe_id in record.getMessage()
            ]
            assert len(traced) == 3
            assert {record.correlation_id for record in traced} == {item.correlation_id}


class TestItemDegradation:
    """Tests for per-item failures that do not stop the batch."""

    @pytest.mark.asyncio
    async def test_generation_failure(self, make_orchestrator, concepts):
        """Test a failed recipe stays in the batch and skips later stages."""
        text_client = FakeTextClient(failing=["Recipe B"])

        result = await make_orchestrator(text_client=text_client).run_batch(concepts)

        assert result.status == "partial"
        assert result.total_input == 3
        assert result.total_recipes_generated == 2
        assert result.total_validated == 2
        failed = result.items[1]
        assert failed.status == ItemStatus.GENERATION_FAILED
        assert failed.recipe is None
        assert "rejected Recipe B" in failed.generation_error
        assert failed.degradations == [Degradation.GENERATION_FAILED]
        assert failed.image is None
        assert failed.upload is None
        assert result.items[2].status == ItemStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_generation_timeout(self, make_orchestrator, concepts):
        """Test slow text generation is abandoned per item."""
        orchestrator = make_orchestrator(
            text_client=FakeTextClient(delay=1.0), text_generation_timeout=0.01
        )

        result = await orchestrator.run_batch(concepts)

        assert result.status == "partial"
        assert result.total_recipes_generated == 0
        assert all(item.generation_error == "recipe generation timed out" for item in result.items)

    @pytest.mark.asyncio
    async def test_validation_failure_skips_image(
        self, make_orchestrator, concepts, make_recipe, image_client
    ):
        """Test a recipe missing required fields gets no image."""
        recipes = {
            "Recipe A": make_recipe(name="Recipe A"),
            "Recipe B": make_recipe(name="Recipe B", ingredients=[]),
            "Recipe C": make_recipe(name="Recipe C"),
        }
        text_client = AsyncMock(spec=TextGenerationClient)
        text_client.generate.side_effect = lambda concept: recipes[concept.name]

        result = await make_orchestrator(text_client=text_client).run_batch(concepts)

        assert result.status == "partial"
        rejected = result.items[1]
        assert rejected.status == ItemStatus.VALIDATION_FAILED
        assert rejected.degradations == [
            Degradation.VALIDATION_FAILED,
            Degradation.IMAGE_SKIPPED,
        ]
        assert rejected.image is None
        assert rejected.final_image_url == get_settings().placeholder_image_url
        assert len(image_client.prompts) == 2
        assert result.failed == 1

    @pytest.mark.asyncio
    async def test_issue_index_refers_to_batch_position(self, make_orchestrator, concepts):
        """Test issue indexes point at the batch item even when earlier items failed."""
        text_client = FakeTextClient(
            failing=["Recipe A"], nutrition_overrides={"Recipe B": {"calories": 900}}
        )

        result = await make_orchestrator(text_client=text_client).run_batch(concepts)

        calorie_issues = [i for i in result.validation.issues if i.field == "calories"]
        assert len(calorie_issues) == 1
        assert calorie_issues[0].recipe_index == 1
        assert result.items[1].issues == calorie_issues

    @pytest.mark.asyncio
    async def test_inaccurate_nutrition_still_gets_image(self, make_orchestrator, concepts):
        """Test a recipe outside tolerance is degraded but continues downstream."""
        text_client = FakeTextClient(nutrition_overrides={"Recipe A": {"calories": 900}})

        result = await make_orchestrator(text_client=text_client).run_batch(concepts)

        item = result.items[0]
        assert result.status == "completed"
        assert item.status == ItemStatus.DEGRADED
        assert item.degradations == [Degradation.NUTRITION_INACCURATE]
        assert item.recipe.estimated_nutrition.calories == 900
        assert item.upload.was_uploaded is True
        assert result.failed == 1

    @pytest.mark.asyncio
    async def test_auto_fixed_nutrition(self, make_orchestrator, concepts):
        """Test a recipe within tolerance is corrected and flagged."""
        text_client = FakeTextClient(nutrition_overrides={"Recipe C": {"calories": 560}})

        result = await make_orchestrator(text_client=text_client).run_batch(concepts)

        item = result.items[2]
        assert item.degradations == [Degradation.NUTRITION_AUTO_FIXED]
        assert item.recipe.estimated_nutrition.calories == 500
        assert result.auto_fixed == 1
        assert result.status == "completed"

    @pytest.mark.asyncio
    async def test_placeholder_images_are_not_uploaded(
        self, make_orchestrator, concepts, object_store
    ):
        """Test placeholders skip storage and become the recipe image."""
        image_client = FakeImageClient(error=GenerationError("image service down"))

        result = await make_orchestrator(image_client=image_client).run_batch(concepts)

        assert result.status == "completed"
        assert result.placeholder_count == 3
        assert object_store.calls == []
        assert result.total_uploaded == 0
        assert result.total_failed == 0
        for item in result.items:
            assert item.degradations == [Degradation.PLACEHOLDER_IMAGE]
            assert item.upload is None
            assert item.recipe.image_url == PLACEHOLDER

    @pytest.mark.asyncio
    async def test_storage_failure_uses_temporary_url(self, make_orchestrator, concepts):
        """Test a failed upload keeps the temporary URL and flags the item."""
        object_store = FakeObjectStore(
            failing_urls=["https://images.example.com/generated-1.png"]
        )

        result = await make_orchestrator(object_store=object_store).run_batch(concepts)

        assert result.status == "completed"
        assert result.total_uploaded == 2
        assert result.total_failed == 1
        fallback = [i for i in result.items if Degradation.FALLBACK_STORAGE_URL in i.degradations]
        assert len(fallback) == 1
        assert fallback[0].recipe.image_url == "https://images.example.com/generated-1.png"
        assert fallback[0].status == ItemStatus.DEGRADED


class TestBatchFailure:
    """Tests for errors that stop the whole batch."""

    @pytest.mark.asyncio
    async def test_hash_store_unavailable_fails_batch(
        self, make_orchestrator, concepts, hash_store, object_store
    ):
        """Test an unreachable hash store is reported as a failed batch."""
        progress = MagicMock()
        orchestrator = make_orchestrator(progress=progress)

        with patch.object(
            hash_store, "exists", side_effect=HashStoreUnavailableError("database down")
        ):
            result = await orchestrator.run_batch(concepts)

        assert result.status == "failed"
        assert "database down" in result.error
        assert object_store.calls == []
        assert len(result.items) == 3
        assert progress.call_args.args[0] == "failed"
        assert orchestrator.get_metrics().error_count == 1

    @pytest.mark.asyncio
    async def test_hash_store_failure_stops_image_calls(
        self, make_orchestrator, make_concept, hash_store
    ):
        """Test no image is requested or recorded once the batch has failed."""
        image_client = FakeImageClient(delay=0.01)
        orchestrator = make_orchestrator(image_client=image_client)
        orchestrator.image_agent.concurrency = 1
        concepts = [make_concept(name=f"Recipe {i}") for i in range(4)]

        with patch.object(
            hash_store, "exists", side_effect=HashStoreUnavailableError("database down")
        ):
            result = await orchestrator.run_batch(concepts)
            calls_at_return = len(image_client.prompts)
            await asyncio.sleep(0.1)

        assert result.status == "failed"
        assert calls_at_return < 4
        assert len(image_client.prompts) == calls_at_return
        assert hash_store.records == []

    @pytest.mark.asyncio
    async def test_unsuccessful_stage_fails_batch(self, make_orchestrator, concepts):
        """Test a stage returning an unsuccessful response stops the batch."""
        orchestrator = make_orchestrator()

        with patch.object(
            orchestrator.storage_agent,
            "upload_batch_images",
            new=AsyncMock(return_value=AgentResponse(success=False, error="bucket missing")),
        ):
            result = await orchestrator.run_batch(concepts)

        assert result.status == "failed"
        assert result.error == "storage stage failed: bucket missing"

    @pytest.mark.asyncio
    async def test_run_recipe_batch_without_hash_store(self, concepts):
        """Test the production entry point fails fast when the database is down."""
        store = MagicMock()
        store.create_tables.side_effect = HashStoreUnavailableError("connection refused")

        with patch("recipegen.generate.batch_generate.SqlHashStore", return_value=store):
            result = await run_recipe_batch(concepts, batch_id="batch-down")

        assert result.status == "failed"
        assert result.batch_id == "batch-down"
        assert result.total_input == 3
        assert "connection refused" in result.error


class TestEmptyBatchAndProgress:
    """Tests for empty input and progress reporting."""

    @pytest.mark.asyncio
    async def test_empty_batch(self, make_orchestrator, image_client, object_store):
        """Test an empty batch completes with zero counts and no external calls."""
        text_client = FakeTextClient()

        result = await make_orchestrator(text_client=text_client).run_batch([])

        assert result.status == "completed"
        assert result.items == []
        assert result.total_validated == 0
        assert result.total_generated == 0
        assert result.total_uploaded == 0
        assert result.validation is not None
        assert result.images is not None
        assert result.storage is not None
        assert text_client.calls == []
        assert image_client.prompts == []
        assert object_store.calls == []

    @pytest.mark.asyncio
    async def test_progress_reports_every_stage(self, make_orchestrator, concepts):
        """Test the callback sees each stage in order with running counts."""
        updates = []
        orchestrator = make_orchestrator(progress=lambda stage, data: updates.append((stage, data)))

        await orchestrator.run_batch(concepts, batch_id="batch-progress")

        assert [stage for stage, _ in updates] == [
            "started",
            "recipes_generated",
            "validated",
            "images_generated",
            "images_stored",
            "completed",
        ]
        assert updates[1][1]["total_recipes_generated"] == 3
        assert updates[-1][1]["total_uploaded"] == 3
        assert all(data["batch_id"] == "batch-progress" for _, data in updates)

    @pytest.mark.asyncio
    async def test_failing_progress_callback_is_ignored(self, make_orchestrator, concepts):
        """Test a broken progress callback never affects the batch."""
        progress = MagicMock(side_effect=RuntimeError("redis down"))

        result = await make_orchestrator(progress=progress).run_batch(concepts)

        assert result.status == "completed"
        assert progress.call_count == 6

"""Recipe content-generation pipeline."""

from recipegen.generate.batch_generate import BatchOrchestrator, run_recipe_batch
from recipegen.generate.hash_store import (
    HashStore,
    HashStoreUnavailableError,
    InMemoryHashStore,
    SqlHashStore,
)
from recipegen.generate.types import BatchItem, BatchResult, Degradation, ItemStatus

__all__ = [
    "BatchItem",
    "BatchOrchestrator",
    "BatchResult",
    "Degradation",
    "HashStore",
    "HashStoreUnavailableError",
    "InMemoryHashStore",
    "ItemStatus",
    "SqlHashStore",
    "run_recipe_batch",
]

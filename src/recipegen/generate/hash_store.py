"""Persistent store of perceptual hashes for accepted recipe images."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import Engine, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from recipegen.config import get_settings
from recipegen.database import Base, sync_engine
from recipegen.generate.hashing import hamming_distance
from recipegen.logging_config import get_logger
from recipegen.models import RecipeImageHash

logger = get_logger(__name__)


class HashStoreUnavailableError(Exception):
    """Raised when the hash store cannot be read or written.

    This is the one condition that is fatal for a whole batch: without the
    store no image can be verified as unique.
    """


@dataclass
class PerceptualHashRecord:
    """A stored image fingerprint."""

    hash: str
    recipe_id: str
    batch_id: str
    created_at: datetime = field(default_factory=datetime.utcnow)


def is_near_duplicate(candidate: str, existing: str, threshold: int) -> bool:
    """Check whether two hashes are within ``threshold`` differing bits."""
    if threshold <= 0 or len(candidate) != len(existing):
        return candidate == existing
    return hamming_distance(candidate, existing) <= threshold


def hash_bands(length: int, threshold: int) -> list[tuple[int, int]]:
    """
    Split a hex hash into ``threshold + 1`` contiguous bands.

    Two hashes within ``threshold`` differing bits differ in at most
    ``threshold`` hex characters, so at least one band is identical. Only
    rows sharing a band with the candidate can be near duplicates.

    Returns:
        ``(start, size)`` pairs with 1-based starts for SQL ``substr``, or an
        empty list when the hash is too short to band.
    """
    count = threshold + 1
    if threshold <= 0 or count > length:
        return []
    size, extra = divmod(length, count)
    bands = []
    start = 1
    for position in range(count):
        band_size = size + (1 if position < extra else 0)
        bands.append((start, band_size))
        start += band_size
    return bands


class HashStore(ABC):
    """Known image hashes, queried by perceptual similarity.

    Near-duplicate comparison is a property of the store: ``exists`` reports
    True when any stored hash is within ``distance_threshold`` bits
    (Hamming distance) of the candidate. A threshold of 0 means exact match.
    """

    def __init__(self, distance_threshold: int | None = None):
        if distance_threshold is None:
            distance_threshold = get_settings().hash_distance_threshold
        self.distance_threshold = distance_threshold

    @abstractmethod
    async def exists(self, image_hash: str) -> bool:
        """Return True if ``image_hash`` matches a stored hash."""
        pass

    @abstractmethod
    async def record(self, image_hash: str, recipe_id: str, batch_id: str) -> None:
        """Persist a newly accepted hash."""
        pass

    @abstractmethod
    async def count(self) -> int:
        """Return the number of stored hashes."""
        pass


class InMemoryHashStore(HashStore):
    """Process-local hash store, used in tests and single-worker runs."""

    def __init__(self, distance_threshold: int | None = None):
        super().__init__(distance_threshold)
        self.records: list[PerceptualHashRecord] = []

    async def exists(self, image_hash: str) -> bool:
        return any(
            is_near_duplicate(image_hash, record.hash, self.distance_threshold)
            for record in self.records
        )

    async def record(self, image_hash: str, recipe_id: str, batch_id: str) -> None:
        self.records.append(
            PerceptualHashRecord(hash=image_hash, recipe_id=recipe_id, batch_id=batch_id)
        )

    async def count(self) -> int:
        return len(self.records)


class SqlHashStore(HashStore):
    """Hash store backed by the ``recipe_image_hashes`` table."""

    def __init__(self, engine: Engine | None = None, distance_threshold: int | None = None):
        super().__init__(distance_threshold)
        self.engine = engine or sync_engine

    def create_tables(self) -> None:
        """Create the hash table if it does not exist."""
        try:
            Base.metadata.create_all(self.engine, tables=[RecipeImageHash.__table__])
        except SQLAlchemyError as e:
            raise HashStoreUnavailableError(f"Could not create hash table: {e}") from e

    async def exists(self, image_hash: str) -> bool:
        """
        Check for an exact or near-duplicate stored hash.

        Near-duplicate lookups only fetch rows sharing at least one band with
        the candidate (see ``hash_bands``). A hash too short to band for the
        threshold falls back to comparing against every distinct stored hash,
        which grows linearly with the table.
        """
        try:
            with Session(self.engine) as session:
                exact = session.execute(
                    select(RecipeImageHash.id).where(RecipeImageHash.hash == image_hash).limit(1)
                ).first()
                if exact is not None:
                    return True
                if self.distance_threshold <= 0:
                    return False

                query = select(RecipeImageHash.hash).distinct()
                bands = hash_bands(len(image_hash), self.distance_threshold)
                if bands:
                    query = query.where(
                        or_(
                            *(
                                func.substr(RecipeImageHash.hash, start, size)
                                == image_hash[start - 1 : start - 1 + size]
                                for start, size in bands
                            )
                        )
                    )

                stored = session.execute(query).scalars()
                return any(
                    is_near_duplicate(image_hash, existing, self.distance_threshold)
                    for existing in stored
                )
        except SQLAlchemyError as e:
            logger.error(f"Hash store lookup failed: {e}")
            raise HashStoreUnavailableError(f"Hash store lookup failed: {e}") from e

    async def record(self, image_hash: str, recipe_id: str, batch_id: str) -> None:
        try:
            with Session(self.engine) as session:
                session.add(
                    RecipeImageHash(
                        hash=image_hash,
                        recipe_id=recipe_id,
                        batch_id=batch_id,
                        created_at=datetime.utcnow(),
                    )
                )
                session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Hash store write failed for recipe {recipe_id}: {e}")
            raise HashStoreUnavailableError(f"Hash store write failed: {e}") from e

    async def count(self) -> int:
        try:
            with Session(self.engine) as session:
                return session.execute(select(func.count(RecipeImageHash.id))).scalar() or 0
        except SQLAlchemyError as e:
            raise HashStoreUnavailableError(f"Hash store count failed: {e}") from e

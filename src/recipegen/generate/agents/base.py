"""Common lifecycle, metrics and response envelope for pipeline agents."""

import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

from recipegen.generate.hash_store import HashStoreUnavailableError
from recipegen.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

# Errors that must abort the whole batch instead of becoming a failed response
BATCH_FATAL_ERRORS: tuple[type[Exception], ...] = (HashStoreUnavailableError,)


class AgentType(str, Enum):
    VALIDATOR = "validator"
    ARTIST = "artist"
    STORAGE = "storage"
    COORDINATOR = "coordinator"


class AgentStatus(str, Enum):
    IDLE = "idle"
    WORKING = "working"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass
class AgentMetrics:
    """Snapshot of an agent's lifetime counters."""

    agent_type: AgentType
    operation_count: int = 0
    success_count: int = 0
    error_count: int = 0
    total_duration_ms: float = 0.0

    @property
    def average_duration_ms(self) -> float:
        if self.operation_count == 0:
            return 0.0
        return self.total_duration_ms / self.operation_count

    def to_dict(self) -> dict[str, Any]:
        return {
            "agent_type": self.agent_type.value,
            "operation_count": self.operation_count,
            "success_count": self.success_count,
            "error_count": self.error_count,
            "average_duration_ms": round(self.average_duration_ms, 2),
        }


@dataclass
class AgentResponse(Generic[T]):
    """Outcome of one top-level agent call."""

    success: bool
    data: T | None = None
    error: str | None = None
    duration_ms: float = 0.0
    correlation_id: str | None = None


class BaseAgent:
    """Base class for the pipeline agents.

    Subclasses set ``agent_type`` and wrap their public entry points in
    ``execute_with_metrics`` so every call is timed and counted the same way.
    """

    agent_type: AgentType = AgentType.COORDINATOR

    def __init__(self) -> None:
        self.status = AgentStatus.IDLE
        self._metrics = AgentMetrics(agent_type=self.agent_type)

    async def initialize(self) -> None:
        """Prepare the agent for work."""
        self.status = AgentStatus.IDLE
        logger.debug(f"{self.agent_type.value} agent initialized")

    async def shutdown(self) -> None:
        """Release resources held by the agent."""
        self.status = AgentStatus.IDLE
        logger.debug(f"{self.agent_type.value} agent shut down")

    async def execute_with_metrics(
        self,
        operation: Callable[[], Awaitable[T]],
        correlation_id: str | None = None,
    ) -> AgentResponse[T]:
        """
        Run one agent operation and record its outcome.

        Args:
            operation: Zero-argument coroutine function doing the work.
            correlation_id: Identifier carried into the response for tracing.

        Returns:
            AgentResponse with the operation's result or its error message.

        Raises:
            HashStoreUnavailableError: Batch-fatal errors are recorded and re-raised.
        """
        self.status = AgentStatus.WORKING
        start = time.perf_counter()

        try:
            data = await operation()
        except BATCH_FATAL_ERRORS:
            self._record(start, success=False)
            self.status = AgentStatus.ERROR
            raise
        except Exception as e:
            duration_ms = self._record(start, success=False)
            self.status = AgentStatus.ERROR
            logger.exception(f"{self.agent_type.value} agent operation failed: {e}")
            return AgentResponse(
                success=False,
                error=str(e),
                duration_ms=duration_ms,
                correlation_id=correlation_id,
            )

        duration_ms = self._record(start, success=True)
        self.status = AgentStatus.COMPLETE
        return AgentResponse(
            success=True,
            data=data,
            duration_ms=duration_ms,
            correlation_id=correlation_id,
        )

    def _record(self, start: float, success: bool) -> float:
        duration_ms = (time.perf_counter() - start) * 1000
        self._metrics.operation_count += 1
        self._metrics.total_duration_ms += duration_ms
        if success:
            self._metrics.success_count += 1
        else:
            self._metrics.error_count += 1
        return duration_ms

    def get_metrics(self) -> AgentMetrics:
        """Return a copy of the agent's lifetime metrics."""
        return AgentMetrics(
            agent_type=self._metrics.agent_type,
            operation_count=self._metrics.operation_count,
            success_count=self._metrics.success_count,
            error_count=self._metrics.error_count,
            total_duration_ms=self._metrics.total_duration_ms,
        )

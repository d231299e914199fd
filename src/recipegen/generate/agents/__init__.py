"""Pipeline agents: validation, image generation and image storage."""

from recipegen.generate.agents.base import (
    AgentMetrics,
    AgentResponse,
    AgentStatus,
    AgentType,
    BaseAgent,
)
from recipegen.generate.agents.image_generation import ImageGenerationAgent, build_image_prompt
from recipegen.generate.agents.image_storage import ImageStorageAgent
from recipegen.generate.agents.validator import NutritionalValidatorAgent

__all__ = [
    "AgentMetrics",
    "AgentResponse",
    "AgentStatus",
    "AgentType",
    "BaseAgent",
    "ImageGenerationAgent",
    "ImageStorageAgent",
    "NutritionalValidatorAgent",
    "build_image_prompt",
]

"""API routers for the recipegen application."""

from recipegen.routers.generation import router as generation_router

__all__ = [
    "generation_router",
]

"""Router modules for the agent bridge."""

from .messages import router as messages_router
from .models import router as models_router

__all__ = [
    "messages_router",
    "models_router",
]

"""HTTP and WebSocket routers."""

from .agent import router as agent_router

__all__ = ["agent_router"]

"""API routes package."""

from gateway.routes.file_routes import router as file_router
from gateway.routes.manage_routes import router as manage_router
from gateway.routes.upload_routes import router as upload_router

__all__ = ["file_router", "manage_router", "upload_router"]

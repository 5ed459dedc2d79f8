"""Routers package."""

from services.enrollment_service.routers.admin import router as admin_router

__all__ = ["admin_router"]

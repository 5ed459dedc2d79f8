"""Routers package."""

from services.settlement_service.routers.admin import router as admin_router

__all__ = ["admin_router"]

"""FastAPI application for the Enrollment Service."""

from fastapi import FastAPI
from libs.common.errors import register_error_handlers
from libs.common.middleware import add_observability_middleware
from services.enrollment_service.routers import admin_router


def create_app() -> FastAPI:
    """Create and configure the Enrollment Service FastAPI app."""
    app = FastAPI(
        title="Enrollment Service",
        version="0.1.0",
        description="Enrollment risk classification and completion.",
    )

    add_observability_middleware(app)
    register_error_handlers(app)

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "service": "enrollment"}

    app.include_router(admin_router)

    return app


app = create_app()

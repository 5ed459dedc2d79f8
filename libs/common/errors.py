"""Engine error taxonomy and the FastAPI handlers that surface it.

Every error carries the attempted ``action`` and the ids it concerns so the
caller can act on it without re-reading its own request.
"""

from typing import Any, Iterable, Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from libs.common.logging import get_logger, get_request_id

logger = get_logger(__name__)


class EngineError(Exception):
    """Base class for enrollment and settlement engine failures."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        *,
        action: Optional[str] = None,
        ids: Optional[Iterable[Any]] = None,
        context: Optional[dict] = None,
    ):
        super().__init__(message)
        self.message = message
        self.action = action
        self.ids = [str(i) for i in (ids or [])]
        self.context = context or {}

    def to_dict(self) -> dict:
        body = {
            "error": self.__class__.__name__,
            "message": self.message,
            "action": self.action,
            "ids": self.ids,
        }
        body.update(self.context)
        return body


class ValidationError(EngineError):
    """Malformed input, e.g. an end date before the start date or an unknown action."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(EngineError):
    status_code = status.HTTP_404_NOT_FOUND


class InvalidStateError(EngineError):
    """Targets are missing or not in a status the action can start from."""

    status_code = status.HTTP_409_CONFLICT


class InsufficientSessionsError(EngineError):
    """Completion attempted below the session threshold without ``force``."""

    status_code = status.HTTP_409_CONFLICT

    def __init__(
        self,
        enrollment_id: Any,
        sessions_completed: int,
        total_sessions: int,
    ):
        super().__init__(
            f"Enrollment {enrollment_id} has {sessions_completed}/{total_sessions} "
            "sessions; retry with force=true to complete anyway",
            action="complete",
            ids=[enrollment_id],
            context={
                "sessions_completed": sessions_completed,
                "total_sessions": total_sessions,
            },
        )
        self.sessions_completed = sessions_completed
        self.total_sessions = total_sessions


class PersistenceError(EngineError):
    """The underlying write failed."""

    def __init__(self, message: str, *, phase: Optional[str] = None, **kwargs):
        context = kwargs.pop("context", None) or {}
        if phase:
            context["phase"] = phase
        super().__init__(message, context=context, **kwargs)
        self.phase = phase


async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        f"{exc.__class__.__name__}: {exc.message}",
        extra={"extra_fields": {"action": exc.action, "ids": exc.ids}},
    )
    body = exc.to_dict()
    request_id = get_request_id()
    if request_id:
        body["request_id"] = request_id
    return JSONResponse(status_code=exc.status_code, content=body)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(EngineError, engine_error_handler)

"""Error taxonomy shared by the API layer, the suggestion engine and the agent tools.

Each error carries a stable ``code`` (rendered as ``error`` in JSON responses)
and the HTTP status the API layer answers with.
"""

from fastapi import Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError


class CanvasError(Exception):
    """Base class for domain errors surfaced to API callers."""

    code = "internal"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.code, "detail": self.message}


class UnauthorizedError(CanvasError):
    code = "unauthorized"
    status_code = 401


class NotFoundError(CanvasError):
    code = "not_found"
    status_code = 404


class BadRequestError(CanvasError):
    code = "bad_request"
    status_code = 400


class ConflictError(CanvasError):
    code = "conflict"
    status_code = 409


class FrameworkWeightsError(ConflictError):
    """Dimension weight table misconfiguration. Raised at import, never per request."""

    code = "framework_weights_invalid"


class InternalError(CanvasError):
    code = "internal"
    status_code = 500


async def canvas_error_handler(request: Request, exc: CanvasError) -> JSONResponse:
    """FastAPI exception handler rendering CanvasError as a typed JSON body."""
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def describe_error(e: Exception) -> str:
    """Reason string for the agent's recoverable error channel."""
    if isinstance(e, CanvasError):
        return e.message
    return str(e) or e.__class__.__name__


def format_validation_error(e: ValidationError) -> str:
    """Flatten pydantic errors into one ``field: message`` line."""
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or 'input'}: {err['msg']}" for err in e.errors()
    )

"""Error taxonomy for the replicated write path and its HTTP mapping."""
import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class PropertyServiceError(Exception):
    """Base class for errors surfaced to the client with a stable code."""

    error_code = "internal_error"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_detail(self) -> Dict[str, Any]:
        return {"error": self.error_code, "message": self.message, **self.details}


class MissingIdempotencyKey(PropertyServiceError):
    error_code = "missing_idempotency_key"
    status_code = 400

    def __init__(self):
        super().__init__("X-Request-ID header is required")


class PropertyNotFound(PropertyServiceError):
    error_code = "not_found"
    status_code = 404

    def __init__(self, property_id: int):
        super().__init__(f"Property {property_id} not found", {"property_id": property_id})


class VersionConflict(PropertyServiceError):
    error_code = "version_conflict"
    status_code = 409

    def __init__(self, current_version: int, provided_version: int):
        super().__init__(
            f"Version conflict: expected {current_version}, got {provided_version}. "
            "Re-fetch the property and retry with the latest version.",
            {"current_version": current_version, "provided_version": provided_version},
        )


class DuplicateRequest(PropertyServiceError):
    error_code = "duplicate_request"
    status_code = 422

    def __init__(self, request_id: str):
        super().__init__(f"Request ID '{request_id}' has already been processed.")


class ReplicationPublishError(Exception):
    """The replication event for a committed write could not be appended to the log."""


async def handle_service_error(request: Request, exc: PropertyServiceError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_detail()})


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"detail": {"error": "internal_error", "message": "Internal Server Error"}},
    )


def register_exception_handlers(app: FastAPI):
    app.add_exception_handler(PropertyServiceError, handle_service_error)
    app.add_exception_handler(Exception, handle_unexpected_error)

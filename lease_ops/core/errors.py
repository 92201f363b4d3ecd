from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


class LeaseOpsError(Exception):
    """Base class for domain failures surfaced by the financial operations core."""

    status_code = 500
    code = "lease_ops_error"

    def __init__(self, detail: str, *, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(detail)
        self.detail = detail
        self.context = context or {}


class NotFoundError(LeaseOpsError):
    status_code = 404
    code = "not_found"


class ValidationError(LeaseOpsError):
    status_code = 422
    code = "validation_error"


class StorageError(LeaseOpsError):
    status_code = 503
    code = "storage_error"


class AuthorizationError(LeaseOpsError):
    status_code = 403
    code = "authorization_error"


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(LeaseOpsError)
    async def domain_exception_handler(request: Request, exc: LeaseOpsError) -> JSONResponse:  # type: ignore[override]
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "detail": exc.detail,
                "error": exc.code,
                "path": str(request.url),
            },
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:  # type: ignore[override]
        return JSONResponse(
            status_code=422,
            content={
                "detail": "Validation failed.",
                "errors": exc.errors(),
                "path": str(request.url),
            },
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:  # type: ignore[override]
        return JSONResponse(
            status_code=500,
            content={
                "detail": "Internal server error.",
                "path": str(request.url),
            },
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:  # type: ignore[override]
        payload: Dict[str, Any] = {"detail": exc.detail or "HTTP error.", "path": str(request.url)}
        if exc.headers:
            payload["headers"] = exc.headers
        return JSONResponse(status_code=exc.status_code, content=payload)

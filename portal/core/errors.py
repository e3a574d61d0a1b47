from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class PortalError(HTTPException):
    status_code = 400

    def __init__(self, detail: str, headers: dict[str, str] | None = None):
        super().__init__(status_code=self.status_code, detail=detail, headers=headers)


class ValidationError(PortalError):
    status_code = 400


class PermissionDeniedError(PortalError):
    status_code = 403


class NotFoundError(PortalError):
    status_code = 404


class ConflictError(PortalError):
    status_code = 409


class StorageError(PortalError):
    status_code = 502


def _error_body(exc: StarletteHTTPException) -> dict:
    detail = exc.detail
    if isinstance(detail, str):
        return {"error": detail}
    return {"error": "Request failed", "details": jsonable_encoder(detail)}


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def _http_exception_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
        return JSONResponse(status_code=exc.status_code, content=_error_body(exc), headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request data", "details": jsonable_encoder(exc.errors())},
        )

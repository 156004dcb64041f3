"""Translate pipeline failures into HTTP responses.

Every error body is ``{"error": "<message>"}``, optionally with ``details``.
Authorization failures always say "Not authorized" and nothing else.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException
from starlette.responses import JSONResponse

from .errors import NotFoundError, UnauthorizedError, UpstreamError, ValidationError


logger = logging.getLogger(__name__)

NOT_AUTHORIZED = "Not authorized"


def error_body(message: str, details: object = None) -> dict:
    body: dict = {"error": message}
    if details is not None:
        body["details"] = jsonable_encoder(details)
    return body


async def unauthorized_handler(request: Request, exc: UnauthorizedError) -> JSONResponse:
    return JSONResponse(status_code=401, content=error_body(NOT_AUTHORIZED))


async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=400, content=error_body(str(exc)))


async def validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content=error_body(exc.message, exc.detail))


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content=error_body("Invalid request", exc.errors()))


async def upstream_handler(request: Request, exc: UpstreamError) -> JSONResponse:
    logger.warning("unhandled upstream failure on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=502, content=error_body(exc.message))


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return JSONResponse(status_code=exc.status_code, content=error_body(message), headers=exc.headers)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(UnauthorizedError, unauthorized_handler)
    app.add_exception_handler(NotFoundError, not_found_handler)
    app.add_exception_handler(ValidationError, validation_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(UpstreamError, upstream_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)

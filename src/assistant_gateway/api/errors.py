from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger

from assistant_gateway.errors import GatewayError


def error_body(code: str, message: str, details: Any = None) -> dict[str, Any]:
    """Unified error payload: {"success": false, "error": {"code", "message"[, "details"]}}."""
    error: dict[str, Any] = {"code": code, "message": message}
    if details:
        error["details"] = details
    return {"success": False, "error": error}


async def _handle_gateway_error(request: Request, ex: GatewayError) -> JSONResponse:
    if ex.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {ex.message}")
    return JSONResponse(status_code=ex.status_code, content=error_body(ex.code, ex.message))


async def _handle_validation_error(request: Request, ex: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content=error_body("ERR_BAD_REQUEST", "Validation error", {"errors": jsonable_encoder(ex.errors())}),
    )


async def _handle_unexpected_error(request: Request, ex: Exception) -> JSONResponse:
    logger.opt(exception=ex).error(f"Unhandled exception in {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content=error_body("ERR_INTERNAL", str(ex) or type(ex).__name__, {"type": type(ex).__name__}),
    )


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(GatewayError, _handle_gateway_error)
    app.add_exception_handler(RequestValidationError, _handle_validation_error)
    app.add_exception_handler(Exception, _handle_unexpected_error)

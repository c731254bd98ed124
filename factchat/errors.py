"""Domain error codes and their translation to HTTP responses."""

import logging
from enum import Enum
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    """Error codes surfaced at the API boundary."""

    INVALID_REQUEST = "INVALID_REQUEST"
    INVALID_MESSAGES = "INVALID_MESSAGES"
    THREAD_NOT_FOUND = "THREAD_NOT_FOUND"
    AUTH_UNAUTHORIZED = "AUTH_UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    FILE_NOT_FOUND = "FILE_NOT_FOUND"
    FILE_TOO_LARGE = "FILE_TOO_LARGE"
    UNSUPPORTED_CONTENT_TYPE = "UNSUPPORTED_CONTENT_TYPE"
    INTERNAL_ERROR = "INTERNAL_ERROR"


ERROR_MESSAGES = {
    ErrorCode.INVALID_REQUEST: "Invalid request",
    ErrorCode.INVALID_MESSAGES: "Invalid chat message payload",
    ErrorCode.THREAD_NOT_FOUND: "Chat thread not found",
    ErrorCode.AUTH_UNAUTHORIZED: "You must be signed in to do this",
    ErrorCode.FORBIDDEN: "You do not have permission to access this resource",
    ErrorCode.FILE_NOT_FOUND: "File not found",
    ErrorCode.FILE_TOO_LARGE: "File is too large. Maximum size is 5 MB",
    ErrorCode.UNSUPPORTED_CONTENT_TYPE: "Unsupported file type. Upload a PDF or image",
    ErrorCode.INTERNAL_ERROR: "Something went wrong",
}

ERROR_STATUS = {
    ErrorCode.INVALID_REQUEST: 400,
    ErrorCode.INVALID_MESSAGES: 400,
    ErrorCode.THREAD_NOT_FOUND: 404,
    ErrorCode.AUTH_UNAUTHORIZED: 401,
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.FILE_NOT_FOUND: 404,
    ErrorCode.FILE_TOO_LARGE: 413,
    ErrorCode.UNSUPPORTED_CONTENT_TYPE: 415,
    ErrorCode.INTERNAL_ERROR: 500,
}

AUTH_CODES = (ErrorCode.AUTH_UNAUTHORIZED, ErrorCode.FORBIDDEN)


class AppError(Exception):
    """Domain error carrying an error code."""

    def __init__(self, code: ErrorCode, message: Optional[str] = None):
        self.code = code
        self.message = message or ERROR_MESSAGES[code]
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return ERROR_STATUS[self.code]


class ModelOutputError(AppError):
    """Structured model output did not match the expected schema."""

    def __init__(self, message: str):
        super().__init__(ErrorCode.INTERNAL_ERROR, message)


def error_response(code: ErrorCode) -> JSONResponse:
    """Build the wire-level error body for a code."""
    return JSONResponse(status_code=ERROR_STATUS[code], content={"error": code.value})


def register_error_handlers(app: FastAPI) -> None:
    """Install the single translation layer from domain errors to HTTP."""

    @app.exception_handler(AppError)
    async def handle_app_error(request: Request, exc: AppError):
        if exc.code in AUTH_CODES:
            logger.warning(f"{request.method} {request.url.path} rejected: {exc.code.value}")
        elif exc.code == ErrorCode.INTERNAL_ERROR:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        else:
            logger.info(f"{request.method} {request.url.path} rejected: {exc.code.value}")
        return error_response(exc.code)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        logger.info(f"{request.method} {request.url.path} invalid payload: {exc.errors()}")
        return error_response(ErrorCode.INVALID_REQUEST)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error(f"{request.method} {request.url.path} failed unexpectedly: {exc}", exc_info=exc)
        return error_response(ErrorCode.INTERNAL_ERROR)

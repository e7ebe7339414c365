import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pymongo.errors import AutoReconnect, ExecutionTimeout, ServerSelectionTimeoutError
from starlette.exceptions import HTTPException

logger = logging.getLogger(__name__)


class ChatError(Exception):
    status_code = 500

    def __init__(self, message: str = "Internal server error"):
        super().__init__(message)
        self.message = message


class BadRequest(ChatError):
    status_code = 400


class Unauthorized(ChatError):
    status_code = 401


class Forbidden(ChatError):
    status_code = 403


class NotFound(ChatError):
    status_code = 404


class Conflict(ChatError):
    status_code = 409


class Internal(ChatError):
    status_code = 500


class Unavailable(ChatError):
    status_code = 503


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


def register_error_handlers(app: FastAPI) -> None:
    """Map every failure to ``{success: false, error}`` with its status code."""

    @app.exception_handler(ChatError)
    async def _chat_error(request: Request, exc: ChatError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return error_response(exc.status_code, exc.message)

    @app.exception_handler(HTTPException)
    async def _http_error(request: Request, exc: HTTPException):
        return error_response(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = errors[0].get("msg", "invalid payload") if errors else "invalid payload"
        return error_response(400, message)

    @app.exception_handler(ServerSelectionTimeoutError)
    @app.exception_handler(AutoReconnect)
    @app.exception_handler(ExecutionTimeout)
    async def _store_unavailable(request: Request, exc: Exception):
        logger.error("%s %s: document store unavailable: %s", request.method, request.url.path, exc)
        return error_response(503, "Document store unavailable")

    @app.exception_handler(Exception)
    async def _internal_error(request: Request, exc: Exception):
        logger.exception("%s %s: unhandled error", request.method, request.url.path)
        return error_response(500, "Internal server error")

"""Error types and the JSON response envelope shared by every endpoint."""

import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Base error carrying an HTTP status and a user-facing message."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Something went wrong"

    def __init__(self, message: Optional[str] = None, errors: Optional[List[Dict]] = None,
                 status_code: Optional[int] = None):
        self.message = message or self.default_message
        self.errors = errors or []
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class BadRequestError(ApiError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Bad request"


class UnauthorizedError(ApiError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Unauthorized request"


class NotFoundError(ApiError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "User not found"


class InsufficientCreditError(ApiError):
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    default_message = "Insufficient credits"


class InternalError(ApiError):
    pass


class UpstreamError(ApiError):
    """The image API or the asset host failed."""
    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "Image service request failed"


def api_response(data: Any, message: str = "success", status_code: int = status.HTTP_200_OK) -> Dict:
    """Success envelope."""
    return {
        "statusCode": status_code,
        "data": data,
        "message": message,
        "success": True,
    }


def error_response(status_code: int, message: str, errors: Optional[List[Dict]] = None) -> JSONResponse:
    """Failure envelope as a ready JSONResponse."""
    return JSONResponse(
        status_code=status_code,
        content={
            "statusCode": status_code,
            "data": None,
            "message": message,
            "success": False,
            "errors": errors or [],
        },
    )


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return error_response(exc.status_code, exc.message, exc.errors)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return error_response(exc.status_code, str(exc.detail))


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = []
    for err in exc.errors():
        # 'body' / 'query' prefixes are not useful to the client
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "form")]
        errors.append({"field": ".".join(loc), "message": err.get("msg", "Invalid value")})
    logger.warning(f"Validation failed on {request.url.path}: {errors}")
    message = errors[0]["message"] if len(errors) == 1 else "Invalid request data"
    return error_response(status.HTTP_400_BAD_REQUEST, message, errors)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)

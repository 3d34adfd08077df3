"""Exception handlers rendering {"error": {"code", "message"}} bodies."""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from invitehub.core.error_tracking import report_error
from invitehub.middleware.error_codes import ErrorCode
from invitehub.services.exceptions import InvitationError

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "An internal error occurred. Please try again later."


def _error_response(status_code: int, code: str, message: str, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": code, "message": message, **extra}},
    )


async def invitation_error_handler(request: Request, exc: InvitationError) -> JSONResponse:
    if exc.status_code >= 500:
        # Already reported where it was raised; never leak internals
        return _error_response(exc.status_code, exc.code.value, GENERIC_ERROR_MESSAGE)
    response = _error_response(exc.status_code, exc.code.value, exc.message)
    retry_after = getattr(exc, "retry_after", None)
    if retry_after:
        response.headers["Retry-After"] = str(retry_after)
    return response


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        {"field": ".".join(str(part) for part in err["loc"][1:]), "message": err["msg"]}
        for err in exc.errors()
    ]
    return _error_response(422, ErrorCode.VALIDATION_ERROR.value, "Invalid request", details=details)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    report_error(exc, path=request.url.path, method=request.method)
    return _error_response(500, ErrorCode.INTERNAL_ERROR.value, GENERIC_ERROR_MESSAGE)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(InvitationError, invitation_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

from fastapi import FastAPI, Request,status
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException
from inbola_auth.auth.errors import AuthError
from inbola_auth.common.logging_setup import get_logger
from inbola_auth.common.utils import build_error, json_error
from inbola_auth.common.constants import request_id_ctx

logger = get_logger("inbola.errors")


async def fallback_handler(request: Request, exc: Exception):

    rid = request_id_ctx.get(None)

    logger.error(
        "unexpected.exception",
        extra={
            "path": request.url.path,
            "method": request.method,
        },
        exc_info=exc,
    )

    payload = build_error(kind="ServerError", message="Internal Server Error", request_id=rid)
    return json_error(payload, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    rid = request_id_ctx.get(None)
    logger.warning(
        "request.validation_failed",
        extra={
            "errors": [{"loc": list(e.get("loc", ())), "type": e.get("type")} for e in exc.errors()],
            "path": request.url.path,
        },
    )

    payload = build_error(kind="InvalidRequest", message="invalid request", request_id=rid)
    return json_error(payload, status_code=status.HTTP_422_UNPROCESSABLE_ENTITY)


async def http_exception_handler(request: Request, exc: HTTPException):

    rid = request_id_ctx.get(None)

    payload = build_error(kind=f"HTTP_{exc.status_code}", message=str(exc.detail), request_id=rid)
    return json_error(payload, status_code=exc.status_code, headers=getattr(exc, "headers", None))


async def auth_exception_handler(request: Request, exc: AuthError):

    rid = request_id_ctx.get(None)

    headers = None
    if exc.retry_after is not None:
        headers = {"Retry-After": str(exc.retry_after)}

    payload = build_error(kind=exc.kind, message=exc.message, request_id=rid,
                          retry_after=exc.retry_after, remaining_attempts=exc.remaining_attempts,
                          retryable=exc.retryable)
    return json_error(payload, status_code=exc.status_code, headers=headers)


def register_all_exceptions(app: FastAPI):

    app.add_exception_handler(
        Exception, # catch all unidentified/unhandled exceptions
        fallback_handler
    )

    app.add_exception_handler(
        RequestValidationError,
        validation_exception_handler
    )

    app.add_exception_handler(
        HTTPException,
        http_exception_handler
    )

    app.add_exception_handler(
        AuthError,
        auth_exception_handler
    )

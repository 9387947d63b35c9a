import logging
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from app.domain.exceptions import (AppError, NotFound, Conflict, Unprocessable, Unauthorized, InvalidInput, Forbidden,
                                   CapacityExceeded, TicketTypeInUse, RefundNotEligible, GatewayError)
from app.core.ctx import REQUEST_ID_CTX

logger = logging.getLogger("app.api")

MEDIA_TYPE = "application/problem+json"

_STATUS_BY_CLASS: dict[type[AppError], int] = {
    NotFound: status.HTTP_404_NOT_FOUND,
    Unauthorized: status.HTTP_401_UNAUTHORIZED,
    Forbidden: status.HTTP_403_FORBIDDEN,
    Conflict: status.HTTP_409_CONFLICT,
    InvalidInput: status.HTTP_400_BAD_REQUEST,
    Unprocessable: status.HTTP_422_UNPROCESSABLE_ENTITY,
    GatewayError: status.HTTP_502_BAD_GATEWAY,
    AppError: status.HTTP_400_BAD_REQUEST,
}

_TITLES: dict[type[AppError], str] = {
    CapacityExceeded: "Capacity Exceeded",
    TicketTypeInUse: "Ticket Type In Use",
    RefundNotEligible: "Refund Not Eligible",
    GatewayError: "Payment Gateway Error",
    NotFound: "Not Found",
    Unauthorized: "Unauthorized",
    Forbidden: "Forbidden",
    Conflict: "Conflict",
    InvalidInput: "Bad Request",
    Unprocessable: "Unprocessable Entity",
    AppError: "Application Error",
}


def _lookup(exc: AppError, table: dict, default):
    for cls in type(exc).mro():
        if cls in table:
            return table[cls]
    return default


def _status_for(exc: AppError) -> int:
    return _lookup(exc, _STATUS_BY_CLASS, status.HTTP_400_BAD_REQUEST)


def _title_for(exc: AppError) -> str:
    return _lookup(exc, _TITLES, "Application Error")


def _problem(
    request: Request,
    *,
    http_status: int,
    title: str,
    detail: str | None = None,
    extra: dict | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    body = {
        "status": http_status,
        "title": title,
        "detail": detail,
        "instance": str(request.url),
    }
    req_id = REQUEST_ID_CTX.get()
    if req_id:
        body["trace_id"] = req_id
    if extra:
        body.update({k: v for k, v in extra.items() if v is not None})
    return JSONResponse(status_code=http_status, content=body, media_type=MEDIA_TYPE, headers=headers or {})


def register_error_handler(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def _app_error_handler(request: Request, exc: AppError):
        status_code = _status_for(exc)
        detail = str(exc) or None
        extra = {"context": exc.ctx} if exc.ctx else None

        headers: dict[str, str] | None = None
        if isinstance(exc, Unauthorized):
            headers = {"WWW-Authenticate": f'Bearer realm="api", error="invalid_token", error_description="{detail}"'}
        if isinstance(exc, GatewayError):
            logger.warning("Gateway error on %s: %s ctx=%s", request.url.path, detail, exc.ctx)
            extra = {**(extra or {}), "retryable": exc.retryable}
            if exc.retryable:
                headers = {"Retry-After": "5"}

        return _problem(
            request,
            http_status=status_code,
            title=_title_for(exc),
            detail=detail,
            extra=extra,
            headers=headers
        )

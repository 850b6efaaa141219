from __future__ import annotations

from fastapi import FastAPI, status
from fastapi.requests import Request
from fastapi.responses import JSONResponse

from spend_fx.core.logging import get_logger, log_event
from spend_fx.modules.fx.errors import (
    FallbackChainTooDeepError,
    FallbackCycleDetectedError,
    FxError,
    InvalidCurrencyCodeError,
    ProviderUnavailableError,
    RateUnavailableForPeriodError,
    RuleNotFoundError,
    RuleValidationError,
)

logger = get_logger(__name__)

_STATUS_BY_ERROR: dict[type[FxError], int] = {
    InvalidCurrencyCodeError: status.HTTP_400_BAD_REQUEST,
    RuleValidationError: status.HTTP_400_BAD_REQUEST,
    RuleNotFoundError: status.HTTP_404_NOT_FOUND,
    RateUnavailableForPeriodError: status.HTTP_404_NOT_FOUND,
    FallbackCycleDetectedError: status.HTTP_409_CONFLICT,
    FallbackChainTooDeepError: status.HTTP_409_CONFLICT,
    ProviderUnavailableError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def status_for(error: FxError) -> int:
    for cls in type(error).__mro__:
        if cls in _STATUS_BY_ERROR:
            return _STATUS_BY_ERROR[cls]
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def fx_error_handler(request: Request, exc: FxError) -> JSONResponse:
    status_code = status_for(exc)
    log_event(
        logger,
        "http.request.fx_error",
        method=request.method,
        path=request.url.path,
        error_code=exc.code,
        status_code=status_code,
    )
    return JSONResponse(status_code=status_code, content=exc.to_dict())


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(FxError, fx_error_handler)

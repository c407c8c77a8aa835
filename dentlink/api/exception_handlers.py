# FILE: dentlink/api/exception_handlers.py
from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from dentlink.api.response import err, err_from
from dentlink.core.errors import DentlinkError, LedgerInconsistency

logger = logging.getLogger(__name__)


def register_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(DentlinkError)
    async def dentlink_error_handler(request: Request,
                                     exc: DentlinkError) -> JSONResponse:
        if isinstance(exc, LedgerInconsistency):
            logger.critical("%s %s -> %s", request.method, request.url.path,
                            exc)
        return err_from(exc)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
            request: Request, exc: StarletteHTTPException) -> JSONResponse:
        # exc.detail can be str/dict/list
        msg = exc.detail if isinstance(exc.detail, str) else "Request failed"
        return err(msg=msg, status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
            request: Request, exc: RequestValidationError) -> JSONResponse:
        return err(msg="Validation error",
                   status_code=422,
                   code="request_validation",
                   details=exc.errors())

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request,
                                          exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method,
                         request.url.path)
        return err(msg="Internal server error", status_code=500)

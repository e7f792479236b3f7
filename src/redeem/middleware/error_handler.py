"""Global error handlers: every failure is a JSON body with a stable code."""

import structlog
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from redeem.errors import CommitmentError

logger = structlog.get_logger()


def _error_body(code: str, detail: object) -> dict[str, object]:
    return {"success": False, "error": code, "detail": detail}


def setup_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers."""

    @app.exception_handler(CommitmentError)
    async def commitment_error_handler(request: Request, exc: CommitmentError) -> JSONResponse:
        """Map the domain taxonomy onto 400/403/404/409/502."""
        logger.info(
            "request_rejected",
            path=request.url.path,
            error=exc.code,
            status=exc.status_code,
        )
        return JSONResponse(status_code=exc.status_code, content=_error_body(exc.code, exc.message))

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body("http_error", exc.detail),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        body = _error_body("validation_error", "Validation error")
        body["errors"] = jsonable_encoder(exc.errors())
        return JSONResponse(status_code=422, content=body)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unhandled exceptions: always return JSON."""
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=exc,
        )
        return JSONResponse(status_code=500, content=_error_body("internal_error", "Internal server error"))

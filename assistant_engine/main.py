"""FastAPI application entry point."""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from assistant_engine import __version__
from assistant_engine.api import router as api_router
from assistant_engine.api.errors import STATUS_CODES, error_response
from assistant_engine.core.analytics import capture_exception
from assistant_engine.core.logging import get_logger

logger = get_logger(__name__)

app = FastAPI(
    title="Assistant Engine",
    description="Grounded question answering over marketplace research data",
    version=__version__,
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Invalid body or parameters → 422 envelope with the first problem."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    if location:
        message = f"{location}: {message}"
    return error_response(422, "validation_error", message)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = STATUS_CODES.get(exc.status_code, "internal_error" if exc.status_code >= 500 else "error")
    return error_response(
        exc.status_code,
        code,
        str(exc.detail),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last resort: log, report, and hide internals from the client."""
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    capture_exception(exc, properties={"path": request.url.path})
    return error_response(500, "internal_error", "Internal server error", retryable=True)


@app.get("/health")
async def health_check() -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse(content={"status": "ok"}, status_code=200)


# Include v1 API router
app.include_router(api_router, prefix="/v1", tags=["v1"])

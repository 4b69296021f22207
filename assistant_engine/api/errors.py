"""Error envelope shared by route handlers and app-level exception handlers."""

from fastapi.responses import JSONResponse

from assistant_engine.core.schemas_assistant import ErrorBody, ErrorEnvelope

# Status code → envelope code for HTTPExceptions raised by routes and dependencies
STATUS_CODES: dict[int, str] = {
    400: "validation_error",
    401: "authentication_required",
    403: "forbidden",
    404: "not_found",
    422: "validation_error",
    500: "internal_error",
}


def error_response(
    status_code: int,
    code: str,
    message: str,
    retryable: bool | None = None,
    used: int | None = None,
    limit: int | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    envelope = ErrorEnvelope(
        error=ErrorBody(code=code, message=message, retryable=retryable, used=used, limit=limit)
    )
    return JSONResponse(
        status_code=status_code,
        content=envelope.model_dump(exclude_none=True),
        headers=headers,
    )

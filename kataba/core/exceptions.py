from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


class KatabaError(Exception):
    """Base exception for Kataba API errors."""

    def __init__(
        self,
        code: str,
        message: str,
        status: int = 500,
        details: dict | None = None,
    ):
        self.code = code
        self.message = message
        self.status = status
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        result = {"error": self.code, "message": self.message}
        if self.details:
            result["details"] = self.details
        return result


class ValidationError(KatabaError):
    def __init__(self, message: str = "Invalid request body.", details: dict | None = None):
        super().__init__(code="validation_error", message=message, status=400, details=details)


class AuthenticationError(KatabaError):
    def __init__(self, message: str = "Authentication required.", details: dict | None = None):
        super().__init__(code="authentication_required", message=message, status=401, details=details)


class AuthorizationError(KatabaError):
    def __init__(self, message: str = "Not allowed to act on behalf of this user.", details: dict | None = None):
        super().__init__(code="not_authorized", message=message, status=403, details=details)


class NotFoundError(KatabaError):
    def __init__(self, message: str = "Resource not found.", details: dict | None = None):
        super().__init__(code="not_found", message=message, status=404, details=details)


class ConflictError(KatabaError):
    def __init__(self, message: str = "Resource already exists.", details: dict | None = None):
        super().__init__(code="conflict", message=message, status=409, details=details)


class SessionBusyError(KatabaError):
    def __init__(self, message: str = "A message is already being processed for this conversation."):
        super().__init__(code="request_in_flight", message=message, status=409)


class UpstreamCompletionError(KatabaError):
    def __init__(self, message: str = "Failed to get response from AI.", details: dict | None = None):
        super().__init__(code="upstream_completion_failure", message=message, status=500, details=details)


class CompletionNotConfiguredError(KatabaError):
    def __init__(self, message: str = "Completion provider API key is not configured."):
        super().__init__(code="completion_not_configured", message=message, status=500)


class PersistenceError(KatabaError):
    def __init__(self, message: str = "Conversation storage is unavailable.", details: dict | None = None):
        super().__init__(
            code="persistence_unavailable",
            message=message,
            status=503,
            details=details or {"suggestion": "The database may be restarting. Try again shortly."},
        )


class CompletionProviderError(Exception):
    """Raised by completion providers; the chat session turns it into an apology."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


async def kataba_error_handler(request: Request, exc: KatabaError) -> JSONResponse:
    """Global exception handler for KatabaError and subclasses."""
    return JSONResponse(status_code=exc.status, content=exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Reshape FastAPI body validation failures into the 400 error body."""
    errors = [
        {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg", "")}
        for err in exc.errors()
    ]
    error = ValidationError(details={"errors": errors})
    return JSONResponse(status_code=error.status, content=error.to_dict())

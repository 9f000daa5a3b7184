"""
Error taxonomy and user-friendly error handling
Maps technical errors to friendly SMS-sized messages
"""
from typing import Dict, Any, Optional
from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError
import logging

logger = logging.getLogger("listing_sms")


class ListingFlowError(Exception):
    """Base class for every error the conversation flow knows how to recover from."""

    code = "server_error"


class AuthError(ListingFlowError):
    code = "auth_failed"


class InvalidEmailError(AuthError):
    code = "invalid_email"


class EmailMismatchError(AuthError):
    """Email didn't match; carries the attempt number shown to the user."""

    code = "email_mismatch"

    def __init__(self, attempt: int, message: str = "email does not match"):
        super().__init__(message)
        self.attempt = attempt


class TooManyAttemptsError(AuthError):
    code = "too_many_attempts"


class RateLimitedError(AuthError):
    code = "rate_limit_exceeded"


class ExtractionError(ListingFlowError):
    code = "extraction_failed"


class TranscriptionError(ListingFlowError):
    code = "transcription_failed"


class PhotoError(ListingFlowError):
    """A single photo could not be stored. ``retryable`` photos can simply be re-sent."""

    code = "upload_failed"

    def __init__(self, message: str, photo_ref: Optional[str] = None, retryable: bool = True):
        super().__init__(message)
        self.photo_ref = photo_ref
        self.retryable = retryable


class FieldValidationError(ListingFlowError):
    code = "invalid_input"

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field


class SubmissionError(ListingFlowError):
    code = "submission_failed"


class DraftIncompleteError(ListingFlowError):
    code = "missing_required_field"


class FlowStateError(ListingFlowError):
    """A handler ran without the conversation data it needs (no seller, wrong context shape)."""

    code = "server_error"


class ConcurrentUpdateError(ListingFlowError):
    """Conversation row changed underneath us (optimistic version check failed)."""

    code = "concurrent_update"


class ErrorResponse:
    """Standard error response format"""

    def __init__(
        self,
        code: str,
        message: str,
        user_message: str,
        details: Optional[Dict[str, Any]] = None
    ):
        self.code = code
        self.message = message
        self.user_message = user_message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "user_message": self.user_message,
                "details": self.details
            }
        }


ERROR_MESSAGES = {
    # Authentication
    "auth_failed": "We couldn't verify you. Text MENU to try again.",
    "invalid_email": "That doesn't look like an email. Example: you@gmail.com",
    "email_mismatch": "That doesn't match our records. Please try again.",
    "too_many_attempts": "No worries, let's start over. Text MENU to try again.",

    # Rate limiting
    "rate_limit_exceeded": "Too many attempts. Please try again in an hour.",

    # Validation
    "invalid_input": "Something in that message didn't look right. Please check and try again.",
    "missing_required_field": "Your listing is missing a few details.",
    "invalid_price": "That doesn't look like a price. Just enter a number like 85 or $85",

    # Collaborators
    "extraction_failed": "I didn't catch that! Tell me a bit more about your item.",
    "transcription_failed": "Couldn't catch that voice note. Please type instead.",
    "upload_failed": "One photo didn't upload. Please send it again.",
    "submission_failed": "Oops, we couldn't submit your listing just now. Reply 1 to try again.",
    "concurrent_update": "Got two messages at once! Please resend your last message.",

    # General
    "server_error": "Oops, something went wrong! Text MENU to start fresh.",
    "service_unavailable": "Service is temporarily unavailable. Please try again shortly.",
    "timeout": "That took too long. Please try again.",
}


def get_user_friendly_message(error_code: str, default: Optional[str] = None) -> str:
    """Get user-friendly message for error code"""
    return ERROR_MESSAGES.get(
        error_code,
        default or ERROR_MESSAGES["server_error"]
    )


def create_error_response(
    error_code: str,
    technical_message: str,
    details: Optional[Dict[str, Any]] = None,
    status_code: int = status.HTTP_400_BAD_REQUEST
) -> JSONResponse:
    """
    Create standardized error response

    Args:
        error_code: Machine-readable error code
        technical_message: Technical error message (logged)
        details: Additional error details
        status_code: HTTP status code

    Returns:
        JSONResponse with user-friendly error
    """
    user_message = get_user_friendly_message(error_code)

    error_response = ErrorResponse(
        code=error_code,
        message=technical_message,
        user_message=user_message,
        details=details
    )

    logger.error(f"Error [{error_code}]: {technical_message}", extra={"details": details or {}})

    return JSONResponse(
        status_code=status_code,
        content=error_response.to_dict()
    )


async def validation_exception_handler(request: Request, exc: Exception):
    """Handle Pydantic validation errors with friendly messages"""
    errors: list[Dict[str, Any]] = []
    raw_errors = exc.errors() if isinstance(exc, (RequestValidationError, ValidationError)) else []
    for error in raw_errors:
        field = ".".join(str(x) for x in error["loc"])
        errors.append({
            "field": field,
            "message": error["msg"],
            "type": error["type"]
        })

    return create_error_response(
        error_code="invalid_input",
        technical_message=f"Validation failed: {errors}",
        details={"validation_errors": errors},
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY
    )


async def flow_exception_handler(request: Request, exc: Exception):
    """Known flow errors that escaped the state machine (should be rare)."""
    code = getattr(exc, "code", "server_error")
    return create_error_response(
        error_code=code,
        technical_message=str(exc),
        status_code=status.HTTP_409_CONFLICT if isinstance(exc, ConcurrentUpdateError) else status.HTTP_400_BAD_REQUEST
    )


async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions with safe error messages"""
    logger.exception("Unhandled exception", exc_info=exc)

    return create_error_response(
        error_code="server_error",
        technical_message=str(exc),
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR
    )


def register_error_handlers(app: Any) -> None:
    """Register all error handlers with FastAPI app"""
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ValidationError, validation_exception_handler)
    app.add_exception_handler(ListingFlowError, flow_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

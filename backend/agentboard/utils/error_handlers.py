"""
Centralized error handling and user-friendly error messages.
"""
import logging
from typing import Any
from fastapi import HTTPException
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base application error."""
    code = "server_error"

    def __init__(self, message: str, status_code: int = 500, details: dict | None = None):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(AppError):
    """Validation error."""
    code = "validation_error"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message, status_code=400, details=details)


class NotFoundError(AppError):
    """Resource not found error."""
    code = "not_found"

    def __init__(self, message: str = "Resource not found", details: dict | None = None):
        super().__init__(message, status_code=404, details=details)


class ForbiddenError(AppError):
    """Wrong actor or role for the requested operation."""
    code = "forbidden"

    def __init__(self, message: str = "Access forbidden", details: dict | None = None):
        super().__init__(message, status_code=403, details=details)


class ProviderError(AppError):
    """Transient embedding provider failure (network, timeout, 429/5xx). Retryable."""
    code = "provider_error"

    def __init__(self, message: str = "Embedding provider temporarily unavailable", details: dict | None = None):
        super().__init__(message, status_code=503, details=details)


class ProviderAuthError(AppError):
    """Fatal provider configuration failure (missing/invalid credential). Not retried."""
    code = "provider_auth_error"

    def __init__(self, message: str = "Embedding provider is misconfigured", details: dict | None = None):
        super().__init__(message, status_code=500, details=details)


class MatchingUnavailable(AppError):
    """Ranking could not be computed; callers degrade to an unscored listing."""
    code = "matching_unavailable"

    def __init__(self, message: str = "Matching is temporarily unavailable", details: dict | None = None):
        super().__init__(message, status_code=503, details=details)


class RateLimitExceeded(AppError):
    code = "rate_limit_exceeded"

    def __init__(self, message: str = "Rate limit exceeded", *, remaining: int = 0, details: dict | None = None):
        self.remaining = int(remaining)
        super().__init__(message, status_code=429, details={**(details or {}), "remaining": self.remaining})


class DuplicateApplication(AppError):
    code = "already_applied"

    def __init__(self, message: str = "You have already applied to this job", *, application_id: int | None = None):
        self.application_id = application_id
        details = {"application_id": application_id} if application_id is not None else {}
        super().__init__(message, status_code=409, details=details)


class InvalidTransition(AppError):
    code = "invalid_transition"

    def __init__(self, current: str | None, requested: str | None, message: str | None = None):
        self.current = current
        self.requested = requested
        super().__init__(
            message or f"Cannot move application from '{current}' to '{requested}'",
            status_code=400,
            details={"from": current, "to": requested},
        )


# User-friendly error messages
ERROR_MESSAGES = {
    # Profiles
    "profile_exists": "A profile already exists for this account.",
    "profile_not_found": "Profile not found.",
    "candidate_only": "Only candidate profiles can apply to jobs.",
    "company_only": "Only company profiles can post jobs.",

    # Matching
    "matching_unavailable": "Match scores are temporarily unavailable. Showing the most recent listings instead.",

    # Jobs
    "job_not_found": "Job posting not found or has been removed.",
    "job_closed": "This job posting is no longer accepting applications.",
    "already_applied": "You have already applied to this job.",
    "invalid_job_data": "Job information is incomplete. Please fill in all required fields.",
    "job_rate_limited": "Maximum 10 job posts per hour.",

    # Applications
    "application_not_found": "Application not found. It may have been withdrawn.",
    "application_rate_limited": "Maximum 50 applications per day.",

    # General
    "unauthorized": "Please login to access this feature.",
    "forbidden": "You don't have permission to access this resource.",
    "not_found": "The requested resource was not found.",
    "server_error": "Something went wrong on our end. Please try again later.",
    "database_error": "Database connection issue. Please try again later.",
    "validation_error": "Please check your input and try again.",
}


def get_error_message(error_key: str, default: str | None = None) -> str:
    """Get a user-friendly error message."""
    return ERROR_MESSAGES.get(error_key, default or ERROR_MESSAGES["server_error"])


def handle_database_error(error: Exception, operation: str = "") -> HTTPException:
    """Handle database errors with user-friendly messages."""
    logger.error("Database error during %s: %s", operation, error)

    error_str = str(error).lower()

    if "duplicate" in error_str or "unique" in error_str:
        return HTTPException(
            status_code=409,
            detail="This record already exists. Please check your input."
        )

    if "foreign key" in error_str:
        return HTTPException(
            status_code=400,
            detail="Invalid reference. The related record may have been deleted."
        )

    if "connection" in error_str or "operational" in error_str:
        return HTTPException(
            status_code=503,
            detail=get_error_message("database_error")
        )

    return HTTPException(
        status_code=500,
        detail=get_error_message("server_error")
    )


def create_error_response(
    status_code: int,
    message: str,
    details: dict | None = None,
    code: str | None = None,
) -> JSONResponse:
    """Create a standardized error response."""
    content: dict[str, Any] = {
        "success": False,
        "error": message,
    }

    if code:
        content["code"] = code

    if details:
        content["details"] = details

    return JSONResponse(
        status_code=status_code,
        content=content
    )


def app_error_response(error: AppError) -> JSONResponse:
    if error.status_code >= 500:
        logger.error("%s: %s", type(error).__name__, error.message)
    else:
        logger.info("%s: %s", type(error).__name__, error.message)
    return create_error_response(error.status_code, error.message, error.details, code=error.code)

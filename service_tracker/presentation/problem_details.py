"""RFC 7807 Problem Details for HTTP APIs."""

from typing import Any, Final

from pydantic import BaseModel, Field

from ..domain.exceptions import ValidationError

PROBLEM_TYPE_BASE: Final = "https://service-tracker.local/problems"


class ErrorCodes:
    """Stable machine-readable error codes."""

    VALIDATION_FAILED: Final = "validation_failed"
    FIELD_REQUIRED: Final = ValidationError.REQUIRED
    FIELD_INVALID_FORMAT: Final = ValidationError.INVALID_FORMAT
    FIELD_INVALID_VALUE: Final = ValidationError.INVALID_VALUE
    UNAUTHENTICATED: Final = "unauthenticated"
    ACCESS_DENIED: Final = "access_denied"
    RESOURCE_NOT_FOUND: Final = "resource_not_found"
    INTERNAL_ERROR: Final = "internal_error"


class ProblemDetail(BaseModel):
    type: str = Field(description="URI identifying the problem type")
    title: str = Field(description="Short human-readable summary")
    status: int = Field(description="HTTP status code")
    detail: str | None = Field(default=None, description="Occurrence explanation")
    instance: str | None = Field(default=None, description="Request path")
    code: str | None = Field(default=None, description="Machine-readable code")


class ValidationProblemDetail(ProblemDetail):
    errors: list[dict[str, Any]] | None = Field(
        default=None, description="Field-level validation errors"
    )


class ProblemDetailFactory:
    @staticmethod
    def validation_failed(
        detail: str,
        instance: str | None = None,
        field_errors: list[dict[str, Any]] | None = None,
    ) -> ValidationProblemDetail:
        return ValidationProblemDetail(
            type=f"{PROBLEM_TYPE_BASE}/validation-failed",
            title="Validation Failed",
            status=400,
            detail=detail,
            instance=instance,
            code=ErrorCodes.VALIDATION_FAILED,
            errors=field_errors or None,
        )

    @staticmethod
    def unauthenticated(detail: str, instance: str | None = None) -> ProblemDetail:
        return ProblemDetail(
            type=f"{PROBLEM_TYPE_BASE}/unauthenticated",
            title="Authentication Required",
            status=401,
            detail=detail,
            instance=instance,
            code=ErrorCodes.UNAUTHENTICATED,
        )

    @staticmethod
    def access_denied(detail: str, instance: str | None = None) -> ProblemDetail:
        return ProblemDetail(
            type=f"{PROBLEM_TYPE_BASE}/access-denied",
            title="Access Denied",
            status=403,
            detail=detail,
            instance=instance,
            code=ErrorCodes.ACCESS_DENIED,
        )

    @staticmethod
    def resource_not_found(detail: str, instance: str | None = None) -> ProblemDetail:
        return ProblemDetail(
            type=f"{PROBLEM_TYPE_BASE}/resource-not-found",
            title="Resource Not Found",
            status=404,
            detail=detail,
            instance=instance,
            code=ErrorCodes.RESOURCE_NOT_FOUND,
        )

    @staticmethod
    def internal_server_error(
        detail: str, instance: str | None = None
    ) -> ProblemDetail:
        return ProblemDetail(
            type=f"{PROBLEM_TYPE_BASE}/internal-error",
            title="Internal Server Error",
            status=500,
            detail=detail,
            instance=instance,
            code=ErrorCodes.INTERNAL_ERROR,
        )

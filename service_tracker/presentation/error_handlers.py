"""Centralized error handling for the presentation layer."""

from collections.abc import Awaitable, Callable
from typing import Any, Final

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from ..domain.exceptions import (
    AccessDeniedError,
    DomainError,
    NotFoundError,
    UnauthenticatedError,
    ValidationError,
)
from ..logging_config import get_logger
from .problem_details import (
    ProblemDetail,
    ProblemDetailFactory,
    ValidationProblemDetail,
)

logger = get_logger(__name__)


def _problem_response(problem: ProblemDetail) -> JSONResponse:
    return JSONResponse(
        status_code=problem.status,
        content=problem.model_dump(exclude_none=True),
        media_type="application/problem+json",
    )


def _field_errors(error: ValidationError) -> list[dict[str, str]]:
    if not error.field:
        return []
    return [{"field": error.field, "code": error.code, "message": str(error)}]


def problem_for_domain_error(error: DomainError, instance: str) -> ProblemDetail:
    problem: ProblemDetail | ValidationProblemDetail
    if isinstance(error, ValidationError):
        problem = ProblemDetailFactory.validation_failed(
            detail=str(error),
            instance=instance,
            field_errors=_field_errors(error),
        )
    elif isinstance(error, UnauthenticatedError):
        problem = ProblemDetailFactory.unauthenticated(str(error), instance)
    elif isinstance(error, AccessDeniedError):
        problem = ProblemDetailFactory.access_denied(str(error), instance)
    elif isinstance(error, NotFoundError):
        problem = ProblemDetailFactory.resource_not_found(str(error), instance)
    else:
        problem = ProblemDetailFactory.internal_server_error(
            detail="An unexpected error occurred. Please try again.",
            instance=instance,
        )
    return problem


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    """Global handler for domain-specific errors."""
    logger.warning(
        "Domain error occurred",
        error_type=type(exc).__name__,
        error_message=str(exc),
        path=request.url.path,
        method=request.method,
    )
    return _problem_response(problem_for_domain_error(exc, str(request.url.path)))


async def request_validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Global handler for Pydantic validation errors."""
    logger.warning(
        "Request validation error occurred",
        errors=exc.errors(),
        path=request.url.path,
        method=request.method,
    )

    field_errors = []
    for error in exc.errors():
        field_name = ".".join(
            str(loc) for loc in error["loc"] if loc not in ("body", "path", "query")
        )
        field_errors.append(
            {
                "field": field_name or "unknown",
                "code": error["type"],
                "message": error["msg"],
            }
        )

    problem = ProblemDetailFactory.validation_failed(
        detail="Request validation failed",
        instance=str(request.url.path),
        field_errors=field_errors,
    )
    return _problem_response(problem)


async def database_error_handler(
    request: Request, exc: SQLAlchemyError
) -> JSONResponse:
    """Global handler for database errors."""
    logger.error(
        "Database error occurred",
        error_type=type(exc).__name__,
        error_message=str(exc),
        path=request.url.path,
        method=request.method,
        exc_info=True,
    )
    problem = ProblemDetailFactory.internal_server_error(
        detail="A database error occurred. Please try again.",
        instance=str(request.url.path),
    )
    return _problem_response(problem)


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global handler for unexpected errors."""
    logger.error(
        "Unexpected error occurred",
        error_type=type(exc).__name__,
        error_message=str(exc),
        path=request.url.path,
        method=request.method,
        exc_info=True,
    )
    problem = ProblemDetailFactory.internal_server_error(
        detail="An unexpected error occurred. Please try again.",
        instance=str(request.url.path),
    )
    return _problem_response(problem)


EXCEPTION_HANDLERS: Final[
    dict[type[Exception], Callable[[Request, Any], Awaitable[JSONResponse]]]
] = {
    DomainError: domain_error_handler,
    RequestValidationError: request_validation_error_handler,
    SQLAlchemyError: database_error_handler,
    Exception: general_exception_handler,
}

"""Application-level exception types.

This module defines domain errors used across adapters and the HTTP layer,
enabling consistent error handling, logging, and API responses.

A rate limit denial is not an error: it is a normal decision value. Only
configuration and infrastructure problems are represented here.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional to keep shapes flexible while encouraging
    consistent keys across the codebase.
    """

    limit_type: str
    known_limit_types: list[str]
    error_type: str
    status_code: int


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when request input is invalid (empty identifier, bad cost)."""


class ConfigAppError(AppError):
    """Raised when a limit type is not present in the configured table."""


class InfraAppError(AppError):
    """Raised when the shared store is unreachable or cannot run the script."""

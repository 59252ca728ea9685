"""Typed failures raised by the permille core and its store adapter.

All of them derive from ValueError so callers that already catch
(TypeError, ValueError) around input parsing keep working.
"""

from typing import Any, Optional


class PermilleError(ValueError):
    """Base error carrying which field failed and what bound it broke."""

    def __init__(self, message: str, field: Optional[str] = None, bound: Optional[str] = None, value: Any = None):
        super().__init__(message)
        self.field = field
        self.bound = bound
        self.value = value

    def to_dict(self) -> dict:
        return {
            "error": str(self),
            "kind": type(self).__name__,
            "field": self.field,
            "bound": self.bound,
        }


class InvalidDrinkSpecification(PermilleError):
    """Volume or percentage outside its allowed range."""


class InvalidBiometricProfile(PermilleError):
    """Weight missing or non-positive, or sex category not recognised."""


class InvalidTimeSpan(PermilleError):
    """Back-fill span outside (0, 24] hours."""


class UpstreamUnavailable(PermilleError):
    """A read from or write to the drink store failed."""

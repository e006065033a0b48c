"""
Error types raised by the membership status processor.
"""

from typing import Any, Iterable, Optional


class MembershipStatusError(Exception):
    """Base class for membership status processor errors."""


class InvalidParameterError(MembershipStatusError, ValueError):
    """Raised when a recalculation request carries an unusable parameter."""

    def __init__(
        self,
        message: str,
        parameter: Optional[str] = None,
        values: Optional[Iterable[Any]] = None,
    ):
        super().__init__(message)
        self.parameter = parameter
        self.values = list(values) if values is not None else []


class ConfigurationError(MembershipStatusError):
    """Raised when the configuration file cannot be used."""


class StoreOperationError(MembershipStatusError):
    """Raised when a membership store read or write fails."""


class StoreConnectionError(StoreOperationError):
    """Raised when a membership store backend cannot be reached."""

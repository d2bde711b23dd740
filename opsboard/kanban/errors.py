"""Errors raised by the board core."""
from typing import Optional


class ValidationError(Exception):
    """Raised when user input fails client-side validation (before any request)."""
    pass


class RequestFailed(Exception):
    """Raised when a repository call fails: network error, 4xx/5xx, bad payload."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ConfigError(Exception):
    """Raised when configuration is invalid or incomplete."""
    pass

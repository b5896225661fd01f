"""
Custom Exceptions

This module defines the error taxonomy of the short link engine.
Every failure the registry or the access gate can report has its own type,
so the HTTP layer can map it to a status code without inspecting messages.

Error kinds:
- ValidationError: bad or missing input (caller's fault, do not retry)
- ConflictError: short code already held by a live link
- NotFoundError: code absent, soft-deleted, or owned by another caller
- GoneError: link exists but has expired
- StoreUnavailable: transient store failure or timeout (safe to retry)
- CodeSpaceExhaustedError: no free code found within the retry budget
- AuthenticationError / InsufficientTierError: access gate failures
"""

from typing import Optional


class ShortenerException(Exception):
    """Base exception for the URL shortener service."""
    pass


class ValidationError(ShortenerException):
    """Raised when caller input is missing or malformed."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)


class ConflictError(ShortenerException):
    """Raised when a short code is already held by a live link."""

    def __init__(self, short_code: str):
        self.short_code = short_code
        super().__init__(f"Short code '{short_code}' is already in use")


class NotFoundError(ShortenerException):
    """
    Raised when a short code cannot be resolved.

    Covers absent codes, soft-deleted links and links owned by another
    caller. The message is the same in all three cases.
    """

    def __init__(self, short_code: str):
        self.short_code = short_code
        super().__init__("Short code does not exist.")


class GoneError(ShortenerException):
    """Raised when a link exists but its expiry date has passed."""

    def __init__(self, short_code: str):
        self.short_code = short_code
        super().__init__(f"Short code '{short_code}' has expired")


class StoreUnavailable(ShortenerException):
    """Raised when the record store fails or times out."""

    def __init__(
        self,
        operation: str,
        short_code: Optional[str] = None,
        original_error: Exception = None
    ):
        self.operation = operation
        self.short_code = short_code
        self.original_error = original_error
        target = f" for '{short_code}'" if short_code else ""
        super().__init__(f"Record store unavailable during {operation}{target}")


class CodeSpaceExhaustedError(ShortenerException):
    """Raised when no unused short code is found within the attempt budget."""

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"Could not allocate a unique short code after {attempts} attempts")


class AuthenticationError(ShortenerException):
    """Raised when an API key is missing where required, or unknown."""

    def __init__(self, message: str = "User does not exist."):
        super().__init__(message)


class InsufficientTierError(ShortenerException):
    """Raised when a caller's tier does not allow an operation."""

    def __init__(self, required_tier: str, actual_tier: str):
        self.required_tier = required_tier
        self.actual_tier = actual_tier
        super().__init__(
            f"This operation requires the '{required_tier}' tier (current tier: '{actual_tier}')"
        )

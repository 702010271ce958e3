"""Exception types and user-facing error messages for Mailboard."""

from typing import Optional

import httpx


class MailboardError(Exception):
    """Base class for all Mailboard errors."""


class ConfigError(MailboardError):
    """Configuration file could not be loaded or validated."""


class CacheUnavailable(MailboardError):
    """Persistent cache backend is missing, locked or failing.

    Never fatal: the store logs it and degrades to network-only operation.
    """


class NetworkFailure(MailboardError):
    """Remote call was rejected or could not be completed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class MutationFailed(MailboardError):
    """Optimistic mutation was rolled back after the remote call failed."""

    def __init__(self, user_message: str, cause: Optional[BaseException] = None):
        super().__init__(user_message)
        self.user_message = user_message
        self.cause = cause


def create_user_friendly_error(error: BaseException) -> str:
    """Convert an exception into a short message suitable for the terminal.

    Args:
        error: Exception raised by a command

    Returns:
        Human readable message
    """
    if isinstance(error, MutationFailed):
        return error.user_message
    if isinstance(error, NetworkFailure):
        if error.status_code == 401:
            return "Not signed in or session expired"
        if error.status_code == 404:
            return "The requested item no longer exists"
        if error.status_code:
            return f"Server returned HTTP {error.status_code}"
        return "Could not reach the mail server"
    if isinstance(error, CacheUnavailable):
        return "Local cache is unavailable; continuing without it"
    if isinstance(error, ConfigError):
        return str(error)
    if isinstance(error, httpx.HTTPError):
        return "Could not reach the mail server"
    if isinstance(error, FileNotFoundError):
        return f"File not found: {error.filename}"
    if isinstance(error, PermissionError):
        return f"Permission denied: {error.filename}"
    return str(error) or error.__class__.__name__

"""Remote API boundary for Mailboard."""

from .client import MailApiClient, TokenProvider

__all__ = ["MailApiClient", "TokenProvider"]

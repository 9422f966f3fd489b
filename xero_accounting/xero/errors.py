"""Errors raised by the Xero layer."""

from typing import Optional


class XeroError(Exception):
    """Base class for Xero client errors."""


class XeroConfigError(XeroError):
    """Client credentials are missing or unreadable."""


class XeroAuthError(XeroError):
    """The token endpoint refused or returned an unusable response."""


class XeroNotFoundError(XeroError):
    """A lookup the operation depends on found nothing."""


class XeroAPIError(XeroError):
    """Non-success response from the Xero API."""

    def __init__(self, status_code: int, body: str, url: Optional[str] = None):
        self.status_code = status_code
        self.body = body
        self.url = url
        super().__init__(f"Xero API error ({status_code}): {body}")

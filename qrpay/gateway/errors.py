"""
Exceptions raised by gateway adapters.

Only transport-level problems are exceptions: a gateway that answers with a
non-approved response code is a business decline and comes back as a normal
response object. Engine components convert these exceptions into result
values, so nothing here ever reaches the presentation layer.
"""

from typing import Optional


class GatewayError(Exception):
    """Base exception for payment gateway errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class GatewayTransportError(GatewayError):
    """Network failure, HTTP error status, timeout or malformed response body."""

    def describe(self) -> str:
        """User-facing description in the gateway console's format."""
        status = self.status_code if self.status_code is not None else "N/A"
        return f"API Error: {status} - {self.message}"

"""Exceptions raised across the relay."""

from __future__ import annotations


class NimbridgeError(Exception):
    """Base class for relay errors that map onto an HTTP status."""

    status_code: int = 500
    error_type: str = "invalid_request_error"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_payload(self) -> dict:
        return {
            "error": {
                "message": self.message,
                "type": self.error_type,
                "code": self.status_code,
            }
        }


class UpstreamError(NimbridgeError):
    """The completion endpoint failed at the transport or HTTP level."""


class IdentityRequiredError(NimbridgeError):
    """No explicit conversation identifier was supplied where one is mandatory."""

    status_code = 400


class InvalidRequestError(NimbridgeError):
    status_code = 400

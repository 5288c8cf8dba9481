"""Errors raised by session commands and message dispatch."""

from __future__ import annotations


class GatewayError(Exception):
    """Base class for errors rendered as an error envelope by the API."""

    status_code = 500

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InvalidRequestError(GatewayError):
    """Raised when required request fields are missing or malformed."""

    status_code = 400


class NotReadyError(GatewayError):
    """Raised when a send is attempted while the session is not ready."""

    status_code = 400

    def __init__(self, message: str = "WhatsApp is not ready") -> None:
        super().__init__(message)


class UnregisteredDestinationError(GatewayError):
    """Raised when the destination is not an account on the platform."""

    status_code = 400

    def __init__(self, chat_id: str) -> None:
        self.chat_id = chat_id
        super().__init__("Phone number is not registered on WhatsApp")


class TransportError(GatewayError):
    """Raised when the protocol client fails to deliver a message."""


class MediaFetchError(GatewayError):
    """Raised when remote media cannot be downloaded or identified."""

"""Fetch error taxonomy.

Gateway failures are one of three kinds (network, HTTP status, decode) and
always reach callers wrapped in a FetchError that names the resource.
"""

from __future__ import annotations


class GatewayError(Exception):
    """Base class for a single failed remote call."""


class NetworkError(GatewayError):
    """Transport-level failure: DNS, refused connection, timeout."""


class HttpError(GatewayError):
    """The remote API answered with a non-2xx status."""

    def __init__(self, status: int, body: str = "") -> None:
        self.status = status
        self.body = body
        detail = f" - {body}" if body else ""
        super().__init__(f"HTTP {status}{detail}")


class DecodeError(GatewayError):
    """Malformed JSON, or a payload that does not match the entity schema."""


class FetchError(Exception):
    """A failed fetch of one remote resource."""

    def __init__(self, resource: str, cause: GatewayError) -> None:
        self.resource = resource
        self.cause = cause
        super().__init__(f"{resource}: {cause}")

    @property
    def kind(self) -> str:
        if isinstance(self.cause, NetworkError):
            return "network"
        if isinstance(self.cause, HttpError):
            return "http"
        return "decode"

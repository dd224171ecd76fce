from typing import Mapping, Optional

import httpx


class BridgeError(Exception):
    """Base error for the bridge."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidInputError(BridgeError):
    """Malformed identifier, template or payload. Never retried."""


class AuthenticationError(BridgeError):
    """Signature mismatch or bad token. Never retried."""


class ConfigurationError(BridgeError):
    """Integration disabled or missing required settings."""


class UpstreamHTTPError(BridgeError):
    """Non-2xx response from a downstream API."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        body: str = "",
        headers: Optional[Mapping[str, str]] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.headers = dict(headers or {})

    @classmethod
    def from_response(cls, service: str, response: httpx.Response) -> "UpstreamHTTPError":
        body = response.text[:500]
        return cls(
            f"{service} {response.request.method} {response.request.url.path} -> {response.status_code}: {body}",
            status_code=response.status_code,
            body=body,
            headers={k.lower(): v for k, v in response.headers.items()},
        )

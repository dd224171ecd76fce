import asyncio
import hmac
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status

from channel_bridge.services.container import BridgeServices
from channel_bridge.services.errors import InvalidInputError


def get_services(request: Request) -> BridgeServices:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Services not initialised")
    return services


async def read_limited_body(request: Request, max_bytes: int, timeout_seconds: float) -> bytes:
    """Read the raw body with a size cap and a hard deadline.

    Raises InvalidInputError when the body is too large and
    asyncio.TimeoutError when the sender is too slow.
    """

    async def _read() -> bytes:
        chunks: list[bytes] = []
        total = 0
        async for chunk in request.stream():
            total += len(chunk)
            if total > max_bytes:
                raise InvalidInputError(f"Body exceeds {max_bytes} bytes")
            chunks.append(chunk)
        return b"".join(chunks)

    return await asyncio.wait_for(_read(), timeout=timeout_seconds)


def extract_bearer_token(authorization: Optional[str], fallback: Optional[str] = None) -> Optional[str]:
    value = (authorization or "").strip()
    if value.lower().startswith("bearer "):
        return value[7:].strip() or None
    return fallback or None


def _check_token(provided: Optional[str], expected: Optional[str], setting_name: str) -> None:
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"{setting_name} not configured",
        )
    if not provided or not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or missing token")


def require_hooks_token(
    services: BridgeServices = Depends(get_services),
    authorization: Optional[str] = Header(default=None),
    x_hooks_token: Optional[str] = Header(default=None, alias="X-Hooks-Token"),
) -> None:
    provided = extract_bearer_token(authorization, x_hooks_token)
    _check_token(provided, services.settings.hooks_token, "HOOKS_TOKEN")


def require_admin_token(
    services: BridgeServices = Depends(get_services),
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
) -> None:
    _check_token(x_admin_token, services.settings.admin_token, "ADMIN_TOKEN")

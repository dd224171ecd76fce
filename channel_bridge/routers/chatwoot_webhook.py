"""Chatwoot event webhook: conversation status drives the handoff store."""

import asyncio

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import ValidationError
from starlette.requests import ClientDisconnect

from channel_bridge.dependencies import get_services, read_limited_body
from channel_bridge.logging_config import get_logger
from channel_bridge.schemas.chatwoot import ChatwootEvent, ChatwootEventResponse
from channel_bridge.services.container import BridgeServices
from channel_bridge.services.errors import InvalidInputError
from channel_bridge.services.signature import verify_signature

logger = get_logger("chatwoot_webhook")

router = APIRouter()

SIGNATURE_HEADERS = ("X-Hub-Signature-256", "X-Chatwoot-Signature")


@router.post("/webhooks/chatwoot", response_model=ChatwootEventResponse)
async def receive_chatwoot_event(request: Request, services: BridgeServices = Depends(get_services)):
    secret = services.settings.hooks_token
    if not secret:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="HOOKS_TOKEN not configured")

    try:
        raw_body = await read_limited_body(
            request,
            max_bytes=services.settings.webhook_max_body_bytes,
            timeout_seconds=services.settings.webhook_body_timeout_seconds,
        )
    except (asyncio.TimeoutError, InvalidInputError, ClientDisconnect):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unreadable body")

    signature = next((request.headers[h] for h in SIGNATURE_HEADERS if h in request.headers), None)
    if not verify_signature(raw_body, signature, secret):
        logger.warning("Invalid HMAC signature on Chatwoot webhook")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid signature")

    try:
        event = ChatwootEvent.model_validate_json(raw_body)
    except ValidationError as exc:
        logger.warning("Chatwoot webhook payload invalid", extra={"context": {"error": str(exc)[:500]}})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid payload")

    result = services.handoff.handle_chatwoot_event(event)
    if not result.ok:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.error)
    return result

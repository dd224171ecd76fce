"""Meta Cloud API webhook: subscription handshake and message deliveries."""

import asyncio

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status
from fastapi.responses import PlainTextResponse
from starlette.requests import ClientDisconnect

from channel_bridge.dependencies import get_services, read_limited_body
from channel_bridge.logging_config import get_logger
from channel_bridge.services.container import BridgeServices
from channel_bridge.services.errors import AuthenticationError, InvalidInputError
from channel_bridge.services.meta_cloud_api import verify_subscription
from channel_bridge.services.signature import verify_signature

logger = get_logger("meta_webhook")

router = APIRouter()


def _require_meta_configured(services: BridgeServices) -> None:
    settings = services.settings
    if not settings.meta_enabled:
        logger.warning("Meta webhook called but integration is disabled")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Meta Cloud API integration not configured",
        )
    missing = settings.missing_meta_fields()
    if missing:
        logger.warning("Meta configuration incomplete", extra={"context": {"missing": missing}})
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Meta Cloud API integration not configured",
        )


@router.get("/webhooks/meta", response_class=PlainTextResponse)
async def verify_meta_webhook(request: Request, services: BridgeServices = Depends(get_services)):
    _require_meta_configured(services)
    params = request.query_params
    try:
        challenge = verify_subscription(
            params.get("hub.mode"),
            params.get("hub.verify_token"),
            params.get("hub.challenge"),
            services.settings.meta_verify_token,
        )
    except InvalidInputError as exc:
        logger.warning("Meta webhook verification rejected", extra={"context": {"error": exc.message}})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message)
    except AuthenticationError as exc:
        logger.warning("Meta webhook verification rejected", extra={"context": {"error": exc.message}})
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=exc.message)

    logger.info("Meta webhook verified")
    return PlainTextResponse(challenge)


@router.post("/webhooks/meta", response_class=PlainTextResponse)
async def receive_meta_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    services: BridgeServices = Depends(get_services),
):
    """Authenticate the raw body, answer 200 and process after the response."""
    _require_meta_configured(services)
    settings = services.settings

    try:
        raw_body = await read_limited_body(
            request,
            max_bytes=settings.webhook_max_body_bytes,
            timeout_seconds=settings.webhook_body_timeout_seconds,
        )
    except asyncio.TimeoutError:
        logger.warning("Meta webhook body read timed out")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Body read timed out")
    except InvalidInputError as exc:
        logger.warning("Meta webhook body rejected", extra={"context": {"error": exc.message}})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message)
    except ClientDisconnect:
        logger.info("Meta webhook client disconnected during body read")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Client disconnected")

    if not raw_body:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty body")

    signature = request.headers.get("X-Hub-Signature-256")
    if not verify_signature(raw_body, signature, settings.meta_app_secret):
        logger.warning("Invalid HMAC signature on Meta webhook")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    background_tasks.add_task(services.inbound.handle_delivery, raw_body)
    return PlainTextResponse("OK")

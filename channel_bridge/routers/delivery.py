"""Direct delivery endpoints for campaign workflows (template and free-form sends)."""

import asyncio
from typing import Type, TypeVar

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError
from starlette.requests import ClientDisconnect

from channel_bridge.dependencies import get_services, read_limited_body, require_hooks_token
from channel_bridge.logging_config import get_logger
from channel_bridge.schemas.delivery import DeliveryResponse, SendRequest, TemplateSendRequest
from channel_bridge.services.container import BridgeServices
from channel_bridge.services.delivery_service import DeliveryRequest
from channel_bridge.services.errors import ConfigurationError, InvalidInputError
from channel_bridge.services.identity import mask_phone, normalize_phone

logger = get_logger("delivery_router")

router = APIRouter(prefix="/hooks/api-meta", dependencies=[Depends(require_hooks_token)])

MAX_BODY_BYTES = 64 * 1024

ModelT = TypeVar("ModelT", bound=BaseModel)


async def _parse_body(request: Request, model: Type[ModelT], timeout_seconds: float) -> ModelT:
    try:
        raw = await read_limited_body(request, MAX_BODY_BYTES, timeout_seconds)
    except InvalidInputError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message)
    except (asyncio.TimeoutError, ClientDisconnect):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Body read failed")

    try:
        return model.model_validate_json(raw)
    except ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid body: {location} {first.get('msg', '')}".strip(),
        )


async def _deliver(services: BridgeServices, request: DeliveryRequest) -> JSONResponse:
    if not services.settings.meta_enabled:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Meta Cloud API disabled")

    try:
        result = await services.delivery.deliver(request)
    except InvalidInputError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message)
    except ConfigurationError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=exc.message)
    except Exception as exc:
        logger.error(
            "Delivery failed",
            extra={"context": {"to": mask_phone(normalize_phone(request.to)), "error": str(exc)}},
        )
        body = DeliveryResponse(ok=False, error=str(exc))
        return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content=body.model_dump(exclude_none=True))

    body = DeliveryResponse(
        ok=True,
        channel=result.channel,
        messageId=result.message_id,
        deduplicated=result.deduplicated,
    )
    return JSONResponse(status_code=status.HTTP_200_OK, content=body.model_dump(exclude_none=True))


@router.post("/template", response_model=DeliveryResponse)
async def send_template(request: Request, services: BridgeServices = Depends(get_services)):
    payload = await _parse_body(request, TemplateSendRequest, services.settings.webhook_body_timeout_seconds)
    return await _deliver(
        services,
        DeliveryRequest(to=payload.to, template=payload.template, idempotency_key=payload.idempotency_key),
    )


@router.post("/send", response_model=DeliveryResponse)
async def send_message(request: Request, services: BridgeServices = Depends(get_services)):
    payload = await _parse_body(request, SendRequest, services.settings.webhook_body_timeout_seconds)
    return await _deliver(
        services,
        DeliveryRequest(
            to=payload.to,
            text=payload.text,
            media_url=payload.media_url,
            template=payload.template,
            idempotency_key=payload.idempotency_key,
        ),
    )

from fastapi import APIRouter, Depends, HTTPException, status

from channel_bridge.dependencies import get_services, require_admin_token
from channel_bridge.schemas.handoff import (
    HandoffActivateRequest,
    HandoffDeactivateResponse,
    HandoffEntryResponse,
    HandoffListResponse,
)
from channel_bridge.services.container import BridgeServices
from channel_bridge.services.errors import InvalidInputError
from channel_bridge.services.handoff_store import HandoffEntry
from channel_bridge.services.identity import normalize_phone, to_e164

router = APIRouter(prefix="/handoffs", dependencies=[Depends(require_admin_token)])


def _to_response(entry: HandoffEntry, now_ms: int) -> HandoffEntryResponse:
    return HandoffEntryResponse(
        number=entry.number,
        activatedBy=entry.activated_by,
        activatedAt=entry.activated_at,
        expiresAt=entry.expires_at,
        remainingMinutes=entry.remaining_minutes(now_ms),
    )


@router.get("", response_model=HandoffListResponse)
def list_handoffs(services: BridgeServices = Depends(get_services)):
    entries = services.handoff_store.list_active()
    now_ms = services.handoff_store.now_ms()
    return HandoffListResponse(entries=[_to_response(e, now_ms) for e in entries])


@router.post("", response_model=HandoffEntryResponse)
def activate_handoff(payload: HandoffActivateRequest, services: BridgeServices = Depends(get_services)):
    minutes = payload.minutes or services.settings.handoff_default_minutes
    try:
        entry = services.handoff_store.activate(payload.number, payload.activated_by, minutes)
    except InvalidInputError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message)
    return _to_response(entry, services.handoff_store.now_ms())


@router.delete("/{number}", response_model=HandoffDeactivateResponse)
def deactivate_handoff(number: str, services: BridgeServices = Depends(get_services)):
    removed = services.handoff_store.deactivate(number)
    return HandoffDeactivateResponse(number=to_e164(normalize_phone(number)), removed=removed)

"""Mirroring of channel traffic into a Chatwoot monitoring inbox.

Mirroring is best effort: it runs as tracked background work and every
failure ends in a log line. Contact and conversation ids are cached per
canonical phone and concurrent lookups for the same phone share one request,
so two simultaneous messages never create two contacts.
"""

import asyncio
from typing import Any, Optional
from urllib.parse import quote

import httpx

from channel_bridge.logging_config import get_logger
from channel_bridge.services.background import BackgroundWork
from channel_bridge.services.errors import InvalidInputError, UpstreamHTTPError
from channel_bridge.services.identity import (
    is_valid_phone,
    mask_phone,
    normalize_phone,
    sanitize_name,
    sanitize_text,
    to_e164,
)
from channel_bridge.services.inflight import InflightCoalescer
from channel_bridge.services.ttl_cache import TTLCache

logger = get_logger("chatwoot")

RESOLVED_STATUS = "resolved"


class ChatwootClient:
    """Thin async wrapper over the Chatwoot v1 account API."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str,
        api_token: str,
        account_id: int,
        inbox_id: int,
        timeout_seconds: float = 5.0,
    ):
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.api_token = api_token
        self.account_id = account_id
        self.inbox_id = inbox_id
        self.timeout_seconds = timeout_seconds

    def _url(self, path: str) -> str:
        return f"{self.base_url}/api/v1/accounts/{self.account_id}{path}"

    async def _request(self, method: str, path: str, body: Optional[dict] = None) -> Any:
        response = await self.client.request(
            method,
            self._url(path),
            json=body,
            headers={"api_access_token": self.api_token},
            timeout=self.timeout_seconds,
        )
        if response.status_code >= 400:
            raise UpstreamHTTPError.from_response("Chatwoot", response)
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    async def search_contacts(self, query: str) -> list[dict]:
        data = await self._request("GET", f"/contacts/search?q={quote(query)}&include_contacts=true")
        payload = data.get("payload") if isinstance(data, dict) else None
        return payload if isinstance(payload, list) else []

    async def update_contact_name(self, contact_id: int, name: str) -> None:
        await self._request("PUT", f"/contacts/{contact_id}", {"name": name})

    async def create_contact(self, canonical: str, name: Optional[str]) -> int:
        data = await self._request(
            "POST",
            "/contacts",
            {
                "inbox_id": self.inbox_id,
                "name": name or to_e164(canonical),
                "phone_number": to_e164(canonical),
                "identifier": f"wa:{canonical}",
            },
        )
        contact_id = (((data or {}).get("payload") or {}).get("contact") or {}).get("id")
        if not isinstance(contact_id, int):
            raise UpstreamHTTPError("Chatwoot contact creation returned no id")
        return contact_id

    async def list_conversations(self, contact_id: int) -> list[dict]:
        data = await self._request("GET", f"/contacts/{contact_id}/conversations")
        payload = data.get("payload") if isinstance(data, dict) else None
        return payload if isinstance(payload, list) else []

    async def create_conversation(self, contact_id: int) -> int:
        data = await self._request(
            "POST",
            "/conversations",
            {"contact_id": contact_id, "inbox_id": self.inbox_id, "status": "open"},
        )
        conversation_id = (data or {}).get("id")
        if not isinstance(conversation_id, int):
            raise UpstreamHTTPError("Chatwoot conversation creation returned no id")
        return conversation_id

    async def post_message(self, conversation_id: int, content: str, message_type: str) -> None:
        await self._request(
            "POST",
            f"/conversations/{conversation_id}/messages",
            {"content": content, "message_type": message_type, "content_type": "text"},
        )


class ChatwootMirror:
    def __init__(
        self,
        client: Optional[ChatwootClient],
        background: BackgroundWork,
        cache_ttl_seconds: float = 24 * 60 * 60,
        cache_max_entries: int = 10_000,
    ):
        self.client = client
        self.background = background
        self.contact_cache: TTLCache[int] = TTLCache(cache_ttl_seconds, cache_max_entries)
        self.conversation_cache: TTLCache[int] = TTLCache(cache_ttl_seconds, cache_max_entries)
        self._contact_inflight: InflightCoalescer[int] = InflightCoalescer()
        self._conversation_inflight: InflightCoalescer[int] = InflightCoalescer()

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def mirror_incoming(self, phone: str, text: str, name: Optional[str] = None) -> Optional[asyncio.Task]:
        if not self.enabled or not text:
            return None
        return self.background.spawn(
            self._mirror(phone, sanitize_text(text), "incoming", sanitize_name(name)),
            name="chatwoot.mirror_incoming",
        )

    def mirror_outgoing(self, phone: str, text: str) -> Optional[asyncio.Task]:
        if not self.enabled or not text:
            return None
        return self.background.spawn(
            self._mirror(phone, sanitize_text(text), "outgoing", None),
            name="chatwoot.mirror_outgoing",
        )

    def invalidate_conversation(self, phone: str) -> None:
        self.conversation_cache.delete(normalize_phone(phone))

    def sweep(self) -> int:
        return self.contact_cache.sweep() + self.conversation_cache.sweep()

    async def _mirror(self, phone: str, content: str, message_type: str, name: Optional[str]) -> None:
        canonical = normalize_phone(phone)
        try:
            contact_id = await self.resolve_contact_id(canonical, name)
            conversation_id = await self.resolve_conversation_id(canonical, contact_id)
            await self.client.post_message(conversation_id, content, message_type)
        except Exception as exc:
            logger.warning(
                f"Chatwoot {message_type} mirror failed",
                extra={"context": {"phone": mask_phone(canonical), "error": str(exc)}},
            )

    async def resolve_contact_id(self, canonical: str, name: Optional[str] = None) -> int:
        if not is_valid_phone(canonical):
            raise InvalidInputError(f"Invalid phone after normalization: {mask_phone(canonical)} (len={len(canonical)})")

        cached = self.contact_cache.get(canonical)
        if isinstance(cached, int):
            return cached
        return await self._contact_inflight.coalesce(canonical, lambda: self._find_or_create_contact(canonical, name))

    async def _find_or_create_contact(self, canonical: str, name: Optional[str]) -> int:
        for query in (canonical, to_e164(canonical)):
            try:
                candidates = await self.client.search_contacts(query)
            except Exception as exc:
                logger.debug(
                    "Chatwoot contact search failed",
                    extra={"context": {"phone": mask_phone(canonical), "error": str(exc)}},
                )
                continue

            match = next(
                (c for c in candidates if normalize_digits(c.get("phone_number")) == canonical and isinstance(c.get("id"), int)),
                None,
            )
            if match is None:
                continue

            contact_id = match["id"]
            self.contact_cache.set(canonical, contact_id)
            await self._repair_name(contact_id, match.get("name"), canonical, name)
            return contact_id

        contact_id = await self.client.create_contact(canonical, name)
        self.contact_cache.set(canonical, contact_id)
        logger.info("Chatwoot contact created", extra={"context": {"phone": mask_phone(canonical), "contact_id": contact_id}})
        return contact_id

    async def _repair_name(self, contact_id: int, current: Optional[str], canonical: str, name: Optional[str]) -> None:
        """Replace an empty or phone-number name with the sender's profile name."""
        if not name:
            return
        current = (current or "").strip()
        if current and normalize_digits(current) != canonical:
            return
        try:
            await self.client.update_contact_name(contact_id, name)
        except Exception as exc:
            logger.debug(
                "Chatwoot contact name update failed",
                extra={"context": {"contact_id": contact_id, "error": str(exc)}},
            )

    async def resolve_conversation_id(self, canonical: str, contact_id: int) -> int:
        cached = self.conversation_cache.get(canonical)
        if isinstance(cached, int):
            return cached
        return await self._conversation_inflight.coalesce(
            canonical, lambda: self._find_or_create_conversation(canonical, contact_id)
        )

    async def _find_or_create_conversation(self, canonical: str, contact_id: int) -> int:
        try:
            conversations = await self.client.list_conversations(contact_id)
        except Exception as exc:
            logger.debug(
                "Chatwoot conversation listing failed",
                extra={"context": {"contact_id": contact_id, "error": str(exc)}},
            )
            conversations = []

        for conversation in conversations:
            if (
                conversation.get("inbox_id") == self.client.inbox_id
                and conversation.get("status") != RESOLVED_STATUS
                and isinstance(conversation.get("id"), int)
            ):
                self.conversation_cache.set(canonical, conversation["id"])
                return conversation["id"]

        conversation_id = await self.client.create_conversation(contact_id)
        self.conversation_cache.set(canonical, conversation_id)
        return conversation_id


def normalize_digits(value: Any) -> str:
    # Chatwoot may hand back numbers or null for phone_number
    return "".join(ch for ch in str(value or "") if ch.isdigit())

"""WhatsApp Business (Meta Cloud API) channel.

Sending goes through the Graph API ``/{phone_number_id}/messages`` endpoint.
Every send is a single attempt that raises ``UpstreamHTTPError`` on non-2xx
so the retry executor can classify it.
"""

import mimetypes
from typing import Optional
from urllib.parse import urlparse

import httpx

from channel_bridge.logging_config import get_logger
from channel_bridge.schemas.delivery import TemplateParams
from channel_bridge.schemas.meta_webhook import InboundMessage, MetaWebhookPayload
from channel_bridge.services.errors import AuthenticationError, ConfigurationError, InvalidInputError, UpstreamHTTPError
from channel_bridge.services.identity import mask_phone, normalize_phone

logger = get_logger("meta_cloud_api")

CHANNEL = "api-meta"
META_TEXT_LIMIT = 4096
SUBSCRIBE_MODE = "subscribe"
UNKNOWN_MESSAGE_ID = "unknown"

_CAPTIONED_MEDIA = {"image", "video", "document"}


def verify_subscription(
    mode: Optional[str],
    token: Optional[str],
    challenge: Optional[str],
    verify_token: str,
) -> str:
    """Validate the GET subscription handshake and return the challenge to echo."""
    if mode != SUBSCRIBE_MODE:
        raise InvalidInputError(f"hub.mode must be '{SUBSCRIBE_MODE}'")
    if not token or token != verify_token:
        raise AuthenticationError("hub.verify_token mismatch")
    if not challenge:
        raise InvalidInputError("hub.challenge missing")
    return challenge


def extract_inbound_messages(payload: MetaWebhookPayload, self_number: Optional[str] = None) -> list[InboundMessage]:
    """Flatten entry[].changes[].value.messages[] into relayable messages.

    Status updates, echoes of our own number and message kinds without text
    are skipped.
    """
    self_digits = normalize_phone(self_number) if self_number else None
    messages: list[InboundMessage] = []

    for entry in payload.entry:
        for change in entry.changes:
            value = change.value
            if value is None:
                continue

            names = {
                contact.wa_id: contact.profile.name
                for contact in value.contacts
                if contact.wa_id and contact.profile and contact.profile.name
            }

            for message in value.messages:
                wa_id = message.from_.strip()
                if not wa_id:
                    continue
                sender = normalize_phone(wa_id)
                if self_digits and sender == self_digits:
                    logger.debug("Ignoring echo of own number")
                    continue

                text = message.extract_text()
                if not text:
                    logger.debug(
                        "Ignoring message without text",
                        extra={"context": {"type": message.type, "sender": mask_phone(sender)}},
                    )
                    continue

                messages.append(
                    InboundMessage(
                        sender=sender,
                        wa_id=wa_id,
                        text=text,
                        name=names.get(wa_id),
                        message_id=message.id,
                        timestamp_ms=message.timestamp_ms,
                    )
                )

    return messages


def split_text(text: str, limit: int = META_TEXT_LIMIT) -> list[str]:
    """Split at the last newline or space before ``limit`` when possible."""
    chunks: list[str] = []
    remaining = text
    while len(remaining) > limit:
        cut = remaining.rfind("\n", 0, limit)
        if cut <= 0:
            cut = remaining.rfind(" ", 0, limit)
        if cut <= 0:
            cut = limit
        chunk = remaining[:cut].rstrip()
        if chunk:
            chunks.append(chunk)
        remaining = remaining[cut:].lstrip()
    if remaining:
        chunks.append(remaining)
    return chunks


def media_kind_for_url(url: str) -> str:
    guessed, _ = mimetypes.guess_type(urlparse(url).path)
    if guessed:
        major = guessed.split("/", 1)[0]
        if major in {"image", "video", "audio"}:
            return major
    return "document"


class MetaCloudClient:
    def __init__(
        self,
        client: httpx.AsyncClient,
        phone_number_id: Optional[str],
        access_token: Optional[str],
        api_base: str = "https://graph.facebook.com/v21.0",
        timeout_seconds: float = 10.0,
    ):
        self.client = client
        self.phone_number_id = phone_number_id
        self.access_token = access_token
        self.api_base = api_base.rstrip("/")
        self.timeout_seconds = timeout_seconds

    @property
    def messages_url(self) -> str:
        return f"{self.api_base}/{self.phone_number_id}/messages"

    async def _post_message(self, to: str, body: dict) -> str:
        if not self.phone_number_id or not self.access_token:
            raise ConfigurationError("Meta Cloud API phone_number_id or access_token not configured")

        # Graph API expects digits only
        recipient = "".join(ch for ch in to if ch.isdigit())
        payload = {"messaging_product": "whatsapp", "to": recipient, **body}
        response = await self.client.post(
            self.messages_url,
            json=payload,
            headers={"Authorization": f"Bearer {self.access_token}"},
            timeout=self.timeout_seconds,
        )
        if response.status_code >= 400:
            raise UpstreamHTTPError.from_response("Graph API", response)

        try:
            data = response.json()
        except ValueError:
            logger.warning("Graph API returned 2xx with invalid JSON", extra={"context": {"to": mask_phone(recipient)}})
            return UNKNOWN_MESSAGE_ID

        messages = data.get("messages") if isinstance(data, dict) else None
        if messages and isinstance(messages[0], dict) and messages[0].get("id"):
            return str(messages[0]["id"])
        return UNKNOWN_MESSAGE_ID

    async def send_text(self, to: str, text: str) -> str:
        if not text.strip():
            raise InvalidInputError("Text message is empty")
        if len(text) > META_TEXT_LIMIT:
            raise InvalidInputError(f"Text exceeds {META_TEXT_LIMIT} characters, split it first")
        return await self._post_message(to, {"type": "text", "text": {"body": text}})

    async def send_media(self, to: str, media_url: str, caption: Optional[str] = None) -> str:
        kind = media_kind_for_url(media_url)
        media: dict = {"link": media_url}
        if caption and kind in _CAPTIONED_MEDIA:
            media["caption"] = caption
        if kind == "document":
            filename = urlparse(media_url).path.rsplit("/", 1)[-1]
            if filename:
                media["filename"] = filename
        return await self._post_message(to, {"type": kind, kind: media})

    async def send_template(self, to: str, template: TemplateParams) -> str:
        if not template.variables:
            logger.warning(
                "Template sent without variables",
                extra={"context": {"template": template.name}},
            )

        components = []
        if template.header_image_url:
            components.append(
                {"type": "header", "parameters": [{"type": "image", "image": {"link": template.header_image_url}}]}
            )
        if template.variables:
            components.append(
                {"type": "body", "parameters": [{"type": "text", "text": value} for value in template.variables]}
            )

        body: dict = {"name": template.name, "language": {"code": template.language}}
        if components:
            body["components"] = components
        return await self._post_message(to, {"type": "template", "template": body})

"""Outbound delivery to the WhatsApp channel.

Order of a delivery: idempotency lookup, retrying send, idempotency record,
then a best-effort mirror to the monitoring inbox. Send failures propagate to
the caller once retries are exhausted; mirror failures never do.

Concurrent deliveries under one idempotency key share a single send. Text
split into several messages records each chunk under ``<key>#<n>``, so a
replay after a partial failure resumes at the first chunk not yet sent.
"""

from dataclasses import dataclass
from typing import Optional

from channel_bridge.logging_config import get_logger
from channel_bridge.schemas.delivery import TemplateParams
from channel_bridge.services.chatwoot_service import ChatwootMirror
from channel_bridge.services.errors import InvalidInputError
from channel_bridge.services.identity import is_valid_phone, mask_phone, normalize_phone
from channel_bridge.services.idempotency import IdempotencyLedger
from channel_bridge.services.inflight import InflightCoalescer
from channel_bridge.services.meta_cloud_api import CHANNEL, MetaCloudClient, split_text
from channel_bridge.services.retry import RetryExecutor

logger = get_logger("delivery")


@dataclass
class DeliveryRequest:
    to: str
    text: Optional[str] = None
    media_url: Optional[str] = None
    template: Optional[TemplateParams] = None
    idempotency_key: Optional[str] = None


@dataclass
class DeliveryResult:
    channel: str
    message_id: str
    deduplicated: bool = False


def chunk_key(key: str, index: int) -> str:
    return f"{key}#{index}"


class DeliveryService:
    def __init__(
        self,
        meta: MetaCloudClient,
        ledger: IdempotencyLedger,
        retry: RetryExecutor,
        mirror: Optional[ChatwootMirror] = None,
    ):
        self.meta = meta
        self.ledger = ledger
        self.retry = retry
        self.mirror = mirror
        self._inflight: InflightCoalescer[DeliveryResult] = InflightCoalescer()

    async def deliver(self, request: DeliveryRequest) -> DeliveryResult:
        canonical = normalize_phone(request.to)
        if not is_valid_phone(canonical):
            raise InvalidInputError(f"Invalid recipient: {mask_phone(canonical)}")

        key = request.idempotency_key or None
        if key is None:
            return await self._deliver(canonical, request, None)
        return await self._inflight.coalesce(key, lambda: self._deliver(canonical, request, key))

    async def _deliver(self, canonical: str, request: DeliveryRequest, key: Optional[str]) -> DeliveryResult:
        masked = mask_phone(canonical)

        if key:
            previous = self.ledger.lookup(key)
            if previous is not None:
                logger.info(
                    "Delivery already done for idempotency key",
                    extra={"context": {"to": masked, "key": key, "message_id": previous.result_id}},
                )
                return DeliveryResult(channel=previous.channel, message_id=previous.result_id, deduplicated=True)

        text = (request.text or "").strip()

        if request.template is not None:
            template = request.template
            if text:
                logger.info("Reply text dropped in favour of template", extra={"context": {"to": masked}})
            message_id = await self.retry.execute(
                lambda: self.meta.send_template(canonical, template),
                f"send template '{template.name}' to {masked}",
            )
            mirror_text = template.mirror_text()
        elif request.media_url:
            media_url = request.media_url
            message_id = await self.retry.execute(
                lambda: self.meta.send_media(canonical, media_url, text or None),
                f"send media to {masked}",
            )
            mirror_text = text or f"[Media: {media_url}]"
        else:
            if not text:
                raise InvalidInputError("Nothing to send: no template, media or text")
            message_id = await self._send_text(canonical, text, masked, key)
            mirror_text = text

        if key:
            self.ledger.record(key, CHANNEL, message_id)

        if self.mirror is not None:
            self.mirror.mirror_outgoing(canonical, mirror_text)

        logger.info("Message delivered", extra={"context": {"to": masked, "message_id": message_id}})
        return DeliveryResult(channel=CHANNEL, message_id=message_id)

    async def _send_text(self, canonical: str, text: str, masked: str, key: Optional[str]) -> str:
        chunks = split_text(text)
        track_chunks = key is not None and len(chunks) > 1
        message_ids = []
        for index, chunk in enumerate(chunks, start=1):
            if track_chunks:
                sent = self.ledger.lookup(chunk_key(key, index))
                if sent is not None:
                    logger.info(
                        "Text chunk already sent, skipping",
                        extra={"context": {"to": masked, "chunk": index, "message_id": sent.result_id}},
                    )
                    message_ids.append(sent.result_id)
                    continue

            message_id = await self.retry.execute(
                lambda chunk=chunk: self.meta.send_text(canonical, chunk),
                f"send text {index}/{len(chunks)} to {masked}",
            )
            if track_chunks:
                self.ledger.record(chunk_key(key, index), CHANNEL, message_id)
            message_ids.append(message_id)
        return message_ids[0]

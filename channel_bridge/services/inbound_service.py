"""Inbound flow for one verified Meta webhook delivery.

A delivery may carry many messages. Each one is deduplicated by provider
message id, then processed in its own task: mirror to the monitoring inbox,
admin ``/handoff`` command, handoff pause, profile lookup, agent, reply.
"""

import asyncio
from typing import Optional

from pydantic import ValidationError

from channel_bridge.logging_config import ContextAdapter, bind_context, get_logger
from channel_bridge.schemas.meta_webhook import InboundMessage, MetaWebhookPayload
from channel_bridge.services.agent.base import AgentPort, AgentReply
from channel_bridge.services.background import BackgroundWork
from channel_bridge.services.chatwoot_service import ChatwootMirror
from channel_bridge.services.contact_profile import ContactProfileLookup
from channel_bridge.services.dedup import WebhookDedupTracker
from channel_bridge.services.delivery_service import DeliveryRequest, DeliveryService
from channel_bridge.services.handoff_service import HandoffService
from channel_bridge.services.identity import is_valid_phone, mask_phone
from channel_bridge.services.meta_cloud_api import extract_inbound_messages
from channel_bridge.services.template_directive import parse_template_directive

logger = get_logger("inbound")


class InboundProcessor:
    def __init__(
        self,
        dedup: WebhookDedupTracker,
        handoff: HandoffService,
        delivery: DeliveryService,
        agent: AgentPort,
        background: BackgroundWork,
        mirror: Optional[ChatwootMirror] = None,
        profile_lookup: Optional[ContactProfileLookup] = None,
        self_number: Optional[str] = None,
        pause_message: Optional[str] = None,
        template_language: str = "pt_BR",
    ):
        self.dedup = dedup
        self.handoff = handoff
        self.delivery = delivery
        self.agent = agent
        self.background = background
        self.mirror = mirror
        self.profile_lookup = profile_lookup
        self.self_number = self_number
        self.pause_message = pause_message
        self.template_language = template_language

    async def handle_delivery(self, raw_body: bytes) -> int:
        """Process a raw webhook body. Returns how many messages were dispatched."""
        try:
            payload = MetaWebhookPayload.model_validate_json(raw_body)
        except ValidationError as exc:
            logger.warning(
                "Meta webhook body is not a valid payload",
                extra={"context": {"error": str(exc)[:500]}},
            )
            return 0

        messages = extract_inbound_messages(payload, self.self_number)
        if not messages:
            logger.debug("Meta webhook without relayable messages")
            return 0

        tasks = []
        # Only mirroring started for this delivery is awaited below
        with self.background.scope() as spawned:
            for message in messages:
                if not self.dedup.check_and_mark(message.message_id):
                    logger.info(
                        "Duplicate message ignored",
                        extra={"context": {"message_id": message.message_id, "sender": mask_phone(message.sender)}},
                    )
                    continue
                tasks.append(asyncio.ensure_future(self.process(message)))

        logger.info(
            "Meta webhook received",
            extra={"context": {"messages": len(messages), "dispatched": len(tasks)}},
        )
        if tasks:
            await asyncio.gather(*tasks)
        await self.background.wait_for(spawned)
        return len(tasks)

    async def process(self, message: InboundMessage) -> None:
        log = bind_context(logger, sender=mask_phone(message.sender), message_id=message.message_id)
        try:
            await self._process(message, log)
        except Exception as exc:
            log.error("Inbound message processing failed", context={"error": str(exc)}, exc_info=True)

    async def _process(self, message: InboundMessage, log: ContextAdapter) -> None:
        sender = message.sender
        if not is_valid_phone(sender):
            log.warning("Inbound sender is not a valid phone", context={"length": len(sender)})
            return

        if self.mirror is not None:
            self.mirror.mirror_incoming(sender, message.text, message.name)

        outcome = self.handoff.handle_command(sender, message.text)
        if outcome.handled:
            log.info("Handoff command handled")
            if outcome.reply:
                await self.delivery.deliver(DeliveryRequest(to=sender, text=outcome.reply))
            return

        if self.handoff.store.is_active(sender):
            log.info("Handoff active, bot paused for sender")
            if self.pause_message:
                await self.delivery.deliver(DeliveryRequest(to=sender, text=self.pause_message))
            return

        profile = None
        if self.profile_lookup is not None:
            profile = await self.profile_lookup.lookup(sender)

        reply = await self.agent.reply(message, profile)
        if reply is None or reply.is_empty:
            log.info("Agent produced no reply")
            return

        await self._send_reply(sender, reply, log)

    async def _send_reply(self, sender: str, reply: AgentReply, log: ContextAdapter) -> None:
        reply = parse_template_directive(reply, self.template_language)
        result = await self.delivery.deliver(
            DeliveryRequest(
                to=sender,
                text=reply.text,
                media_url=reply.media_url,
                template=reply.template,
                idempotency_key=reply.idempotency_key,
            )
        )
        log.info("Reply delivered", context={"result_id": result.message_id, "deduplicated": result.deduplicated})

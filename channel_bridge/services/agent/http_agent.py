from typing import Optional

import httpx
from pydantic import BaseModel, ValidationError

from channel_bridge.logging_config import get_logger
from channel_bridge.schemas.delivery import TemplateParams
from channel_bridge.schemas.meta_webhook import InboundMessage
from channel_bridge.services.agent.base import AgentPort, AgentReply
from channel_bridge.services.errors import UpstreamHTTPError
from channel_bridge.services.identity import mask_phone

logger = get_logger("agent.http")


class _AgentReplyPayload(BaseModel):
    text: Optional[str] = None
    mediaUrl: Optional[str] = None
    template: Optional[TemplateParams] = None
    idempotencyKey: Optional[str] = None


class HttpAgent(AgentPort):
    """Agent reached over HTTP.

    POSTs ``{from, name, text, messageId, timestamp, profile}`` and expects
    ``{text?, mediaUrl?, template?, idempotencyKey?}`` back. An empty body or
    204 means no reply.
    """

    def __init__(self, client: httpx.AsyncClient, url: str, timeout_seconds: float = 60.0):
        self.client = client
        self.url = url
        self.timeout_seconds = timeout_seconds

    async def reply(self, message: InboundMessage, profile: Optional[str] = None) -> Optional[AgentReply]:
        payload = {
            "from": message.sender,
            "name": message.name,
            "text": message.text,
            "messageId": message.message_id,
            "timestamp": message.timestamp_ms,
            "profile": profile,
        }
        response = await self.client.post(self.url, json=payload, timeout=self.timeout_seconds)
        if response.status_code >= 400:
            raise UpstreamHTTPError.from_response("agent", response)
        if response.status_code == 204 or not response.content.strip():
            return None

        try:
            data = _AgentReplyPayload.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            logger.warning(
                "Agent returned an unusable reply",
                extra={"context": {"sender": mask_phone(message.sender), "error": str(exc)}},
            )
            return None

        return AgentReply(
            text=data.text,
            media_url=data.mediaUrl,
            template=data.template,
            idempotency_key=data.idempotencyKey,
        )

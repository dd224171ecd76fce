from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from channel_bridge.schemas.delivery import TemplateParams
from channel_bridge.schemas.meta_webhook import InboundMessage


@dataclass
class AgentReply:
    text: Optional[str] = None
    media_url: Optional[str] = None
    template: Optional[TemplateParams] = None
    idempotency_key: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not ((self.text or "").strip() or self.media_url or self.template)


class AgentPort(ABC):
    """Conversational agent seen from the bridge: message in, reply out."""

    @abstractmethod
    async def reply(self, message: InboundMessage, profile: Optional[str] = None) -> Optional[AgentReply]:
        """Return the reply to send back, or None to stay silent."""
        pass


class NullAgent(AgentPort):
    """Agent that never answers. Used when no agent endpoint is configured."""

    async def reply(self, message: InboundMessage, profile: Optional[str] = None) -> Optional[AgentReply]:
        return None

from channel_bridge.schemas.chatwoot import ChatwootEvent, ChatwootEventResponse
from channel_bridge.schemas.delivery import DeliveryResponse, SendRequest, TemplateParams, TemplateSendRequest
from channel_bridge.schemas.meta_webhook import InboundMessage, MetaWebhookPayload

__all__ = [
    "ChatwootEvent",
    "ChatwootEventResponse",
    "DeliveryResponse",
    "InboundMessage",
    "MetaWebhookPayload",
    "SendRequest",
    "TemplateParams",
    "TemplateSendRequest",
]

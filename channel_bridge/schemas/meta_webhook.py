from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag

KNOWN_MESSAGE_TYPES = {"text", "button", "interactive"}


class MetaProfile(BaseModel):
    name: Optional[str] = None


class MetaContact(BaseModel):
    wa_id: Optional[str] = None
    profile: Optional[MetaProfile] = None


class _MetaMessageBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    from_: str = Field(default="", alias="from")
    timestamp: Optional[Union[str, int]] = None

    def extract_text(self) -> str:
        return ""

    @property
    def timestamp_ms(self) -> Optional[int]:
        try:
            seconds = int(self.timestamp) if self.timestamp is not None else 0
        except (TypeError, ValueError):
            return None
        return seconds * 1000 if seconds > 0 else None


class MetaTextBody(BaseModel):
    body: str = ""


class MetaTextMessage(_MetaMessageBase):
    type: Literal["text"] = "text"
    text: MetaTextBody = MetaTextBody()

    def extract_text(self) -> str:
        return self.text.body


class MetaButtonBody(BaseModel):
    text: str = ""
    payload: Optional[str] = None


class MetaButtonMessage(_MetaMessageBase):
    """Quick-reply button press on a template."""

    type: Literal["button"] = "button"
    button: MetaButtonBody = MetaButtonBody()

    def extract_text(self) -> str:
        return self.button.text


class MetaInteractiveReply(BaseModel):
    id: Optional[str] = None
    title: str = ""


class MetaInteractiveBody(BaseModel):
    type: str = ""
    button_reply: Optional[MetaInteractiveReply] = None
    list_reply: Optional[MetaInteractiveReply] = None


class MetaInteractiveMessage(_MetaMessageBase):
    type: Literal["interactive"] = "interactive"
    interactive: MetaInteractiveBody = MetaInteractiveBody()

    def extract_text(self) -> str:
        if self.interactive.type == "button_reply" and self.interactive.button_reply:
            return self.interactive.button_reply.title
        if self.interactive.type == "list_reply" and self.interactive.list_reply:
            return self.interactive.list_reply.title
        return ""


class MetaUnsupportedMessage(_MetaMessageBase):
    """Image, audio, location and other kinds the bridge does not relay."""

    type: str = "unsupported"


def _message_kind(value: Any) -> str:
    kind = value.get("type") if isinstance(value, dict) else getattr(value, "type", None)
    return kind if kind in KNOWN_MESSAGE_TYPES else "unsupported"


MetaMessage = Annotated[
    Union[
        Annotated[MetaTextMessage, Tag("text")],
        Annotated[MetaButtonMessage, Tag("button")],
        Annotated[MetaInteractiveMessage, Tag("interactive")],
        Annotated[MetaUnsupportedMessage, Tag("unsupported")],
    ],
    Discriminator(_message_kind),
]


class MetaChangeValue(BaseModel):
    messaging_product: Optional[str] = None
    contacts: list[MetaContact] = []
    messages: list[MetaMessage] = []
    statuses: list[dict[str, Any]] = []


class MetaChange(BaseModel):
    field: Optional[str] = None
    value: Optional[MetaChangeValue] = None


class MetaEntry(BaseModel):
    id: Optional[str] = None
    changes: list[MetaChange] = []


class MetaWebhookPayload(BaseModel):
    object: Optional[str] = None
    entry: list[MetaEntry] = []


class InboundMessage(BaseModel):
    """One validated inbound message, keyed by the canonical sender id."""

    model_config = ConfigDict(frozen=True)

    sender: str
    wa_id: str
    text: str
    name: Optional[str] = None
    message_id: Optional[str] = None
    timestamp_ms: Optional[int] = None

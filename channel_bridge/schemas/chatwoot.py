from typing import Optional

from pydantic import BaseModel, StrictInt

STATUS_CHANGED_EVENT = "conversation_status_changed"


class ChatwootConversationRef(BaseModel):
    id: Optional[StrictInt] = None
    status: Optional[str] = None


class ChatwootContactRef(BaseModel):
    id: Optional[int] = None
    phone_number: Optional[str] = None


class ChatwootEvent(BaseModel):
    event: str
    status: Optional[str] = None
    conversation: Optional[ChatwootConversationRef] = None
    contact: Optional[ChatwootContactRef] = None


class ChatwootEventResponse(BaseModel):
    ok: bool
    action: Optional[str] = None
    error: Optional[str] = None

from datetime import datetime
from typing import Literal

from pydantic import Field

from kataba.schemas.common import CamelModel


class ChatMessage(CamelModel):
    role: Literal["user", "assistant"]
    content: str
    # When the client finalized the message; kept on every save
    timestamp: datetime | None = None


class ChatRequest(CamelModel):
    messages: list[ChatMessage]
    conversation_id: str | None = None
    # Only sent by guests; ignored for signed-in users
    guest_message_count: int | None = Field(default=None, ge=0)
    privacy_mode: bool | None = None
    language: str | None = Field(default=None, description="ISO 639-1 reply language; detected when omitted")


class ChatResponse(CamelModel):
    content: str
    is_guest_mode: bool
    reached_limit: bool
    remaining_messages: int | None
    conversation_id: str | None = None
    detected_language: str | None = None


class ChatErrorResponse(ChatResponse):
    error: str
    message: str

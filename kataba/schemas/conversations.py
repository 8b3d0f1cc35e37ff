from datetime import datetime
from typing import Literal

from pydantic import Field

from kataba.schemas.common import CamelModel


class MessageIn(CamelModel):
    role: Literal["user", "assistant"]
    content: str
    timestamp: datetime | None = None


class MessageResponse(CamelModel):
    id: str
    role: str
    content: str
    timestamp: float  # Unix epoch ms for frontend compatibility


class ConversationCreate(CamelModel):
    title: str | None = Field(default=None, max_length=500)
    messages: list[MessageIn] = Field(min_length=1)
    privacy_mode: bool = False


class ConversationReplace(CamelModel):
    title: str | None = Field(default=None, max_length=500)
    messages: list[MessageIn]
    privacy_mode: bool | None = None


class ConversationSummary(CamelModel):
    id: str
    title: str
    created_at: float
    updated_at: float
    message_count: int = 0
    privacy_mode: bool = False


class ConversationResponse(CamelModel):
    id: str
    title: str
    privacy_mode: bool
    messages: list[MessageResponse]
    created_at: float
    updated_at: float

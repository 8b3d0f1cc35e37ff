import uuid
from abc import ABC, abstractmethod
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Protocol

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

import kataba.core.database as db_module
from kataba.core.database import Conversation, Message, to_epoch_ms
from kataba.core.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    PersistenceError,
)
from kataba.schemas.conversations import (
    ConversationResponse,
    ConversationSummary,
    MessageResponse,
)

logger = structlog.get_logger()

DEFAULT_TITLE = "New Conversation"
TITLE_MAX_CHARS = 50

PRIVACY_PLACEHOLDERS = {
    "user": "[Content hidden for privacy]",
    "assistant": "[Assistant response hidden for privacy]",
}


class StoredMessage(Protocol):
    role: str
    content: str
    timestamp: datetime | None


def derive_title(messages: Sequence[StoredMessage]) -> str:
    """Title from the first user message, shortened for the sidebar."""
    first = next((m.content for m in messages if m.role == "user"), "")
    text = " ".join(first.split())
    if not text:
        return DEFAULT_TITLE
    if len(text) > TITLE_MAX_CHARS:
        return text[: TITLE_MAX_CHARS - 3].rstrip() + "..."
    return text


def redact(role: str, content: str, privacy_mode: bool) -> str:
    if not privacy_mode:
        return content
    return PRIVACY_PLACEHOLDERS.get(role, PRIVACY_PLACEHOLDERS["assistant"])


def _message_to_response(msg: Message) -> MessageResponse:
    return MessageResponse(
        id=msg.id,
        role=msg.role,
        content=msg.content,
        timestamp=to_epoch_ms(msg.timestamp),
    )


class ConversationStore(ABC):
    """Owner-scoped persistence for conversations.

    Every operation takes the owner's id and behaves as if conversations
    belonging to anyone else do not exist.
    """

    @abstractmethod
    async def create(
        self,
        owner_id: str,
        title: str | None,
        messages: Sequence[StoredMessage],
        privacy_mode: bool = False,
        acting_user_id: str | None = None,
    ) -> str:
        ...

    @abstractmethod
    async def replace(
        self,
        conversation_id: str,
        owner_id: str,
        title: str | None,
        messages: Sequence[StoredMessage],
        privacy_mode: bool | None = None,
    ) -> ConversationResponse:
        ...

    @abstractmethod
    async def get(self, conversation_id: str, owner_id: str) -> ConversationResponse:
        ...

    @abstractmethod
    async def list_conversations(self, owner_id: str, limit: int = 50, offset: int = 0) -> list[ConversationSummary]:
        ...

    @abstractmethod
    async def delete(self, conversation_id: str, owner_id: str) -> None:
        ...


class SQLConversationStore(ConversationStore):
    def __init__(self, session_factory: async_sessionmaker | None = None):
        self._session_factory_override = session_factory

    @property
    def _session_factory(self) -> async_sessionmaker:
        return self._session_factory_override or db_module.async_session

    async def create(
        self,
        owner_id: str,
        title: str | None,
        messages: Sequence[StoredMessage],
        privacy_mode: bool = False,
        acting_user_id: str | None = None,
    ) -> str:
        if acting_user_id is not None and acting_user_id != owner_id:
            raise AuthorizationError("Cannot create a conversation for another user.")

        now = datetime.now(timezone.utc)
        conv = Conversation(
            id=str(uuid.uuid4()),
            title=title or derive_title(messages),
            user_id=owner_id,
            privacy_mode=privacy_mode,
            created_at=now,
            updated_at=now,
        )
        try:
            async with self._session_factory() as session:
                session.add(conv)
                await session.flush()
                session.add_all(self._build_messages(conv.id, messages, privacy_mode))
                await session.commit()
        except IntegrityError as e:
            logger.error("conversation_id_collision", conversation_id=conv.id, error=str(e))
            raise ConflictError(f"Conversation {conv.id} already exists.")
        except SQLAlchemyError as e:
            raise self._persistence_error("create", e)

        logger.info("conversation_created", conversation_id=conv.id, owner_id=owner_id, messages=len(messages))
        return conv.id

    async def replace(
        self,
        conversation_id: str,
        owner_id: str,
        title: str | None,
        messages: Sequence[StoredMessage],
        privacy_mode: bool | None = None,
    ) -> ConversationResponse:
        try:
            async with self._session_factory() as session:
                conv = await self._get_owned(session, conversation_id, owner_id)

                effective_privacy = conv.privacy_mode if privacy_mode is None else privacy_mode
                update_values = {
                    "privacy_mode": effective_privacy,
                    "updated_at": datetime.now(timezone.utc),
                }
                if title is not None:
                    update_values["title"] = title

                # Full overwrite: the caller always supplies the complete list
                await session.execute(
                    delete(Message).where(Message.conversation_id == conversation_id)
                )
                await session.execute(
                    update(Conversation)
                    .where(Conversation.id == conversation_id)
                    .values(**update_values)
                )
                session.add_all(self._build_messages(conversation_id, messages, effective_privacy))
                await session.commit()
        except SQLAlchemyError as e:
            raise self._persistence_error("replace", e)

        logger.info("conversation_replaced", conversation_id=conversation_id, messages=len(messages))
        return await self.get(conversation_id, owner_id)

    async def get(self, conversation_id: str, owner_id: str) -> ConversationResponse:
        try:
            async with self._session_factory() as session:
                conv = await self._get_owned(session, conversation_id, owner_id)

                msg_result = await session.execute(
                    select(Message)
                    .where(Message.conversation_id == conversation_id)
                    .order_by(Message.position.asc())
                )
                messages = list(msg_result.scalars().all())
        except SQLAlchemyError as e:
            raise self._persistence_error("get", e)

        return ConversationResponse(
            id=conv.id,
            title=conv.title,
            privacy_mode=conv.privacy_mode,
            messages=[_message_to_response(m) for m in messages],
            created_at=to_epoch_ms(conv.created_at),
            updated_at=to_epoch_ms(conv.updated_at),
        )

    async def list_conversations(self, owner_id: str, limit: int = 50, offset: int = 0) -> list[ConversationSummary]:
        count_subq = (
            select(Message.conversation_id, func.count().label("message_count"))
            .group_by(Message.conversation_id)
            .subquery()
        )
        stmt = (
            select(Conversation, func.coalesce(count_subq.c.message_count, 0))
            .outerjoin(count_subq, count_subq.c.conversation_id == Conversation.id)
            .where(Conversation.user_id == owner_id)
            .order_by(Conversation.updated_at.desc())
            .limit(limit)
            .offset(offset)
        )
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(stmt)).all()
        except SQLAlchemyError as e:
            raise self._persistence_error("list", e)

        return [
            ConversationSummary(
                id=conv.id,
                title=conv.title,
                created_at=to_epoch_ms(conv.created_at),
                updated_at=to_epoch_ms(conv.updated_at),
                message_count=message_count,
                privacy_mode=conv.privacy_mode,
            )
            for conv, message_count in rows
        ]

    async def delete(self, conversation_id: str, owner_id: str) -> None:
        try:
            async with self._session_factory() as session:
                await self._get_owned(session, conversation_id, owner_id)

                # SQLite does not enforce ON DELETE CASCADE without a pragma
                await session.execute(
                    delete(Message).where(Message.conversation_id == conversation_id)
                )
                await session.execute(
                    delete(Conversation).where(Conversation.id == conversation_id)
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise self._persistence_error("delete", e)

        logger.info("conversation_deleted", conversation_id=conversation_id)

    # ── Helpers ──────────────────────────────────────────────────────────────

    @staticmethod
    async def _get_owned(session, conversation_id: str, owner_id: str) -> Conversation:
        result = await session.execute(
            select(Conversation).where(
                Conversation.id == conversation_id,
                Conversation.user_id == owner_id,
            )
        )
        conv = result.scalar_one_or_none()
        if conv is None:
            raise NotFoundError(f"Conversation {conversation_id} not found.")
        return conv

    @staticmethod
    def _build_messages(
        conversation_id: str, messages: Sequence[StoredMessage], privacy_mode: bool
    ) -> list[Message]:
        now = datetime.now(timezone.utc)
        return [
            Message(
                id=str(uuid.uuid4()),
                conversation_id=conversation_id,
                position=position,
                role=m.role,
                content=redact(m.role, m.content, privacy_mode),
                timestamp=m.timestamp or now,
            )
            for position, m in enumerate(messages)
        ]

    @staticmethod
    def _persistence_error(operation: str, exc: SQLAlchemyError) -> PersistenceError:
        logger.error("conversation_store_failed", operation=operation, error=str(exc))
        return PersistenceError()

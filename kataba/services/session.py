"""One conversation's send/receive cycle.

A session keeps the ordered, append-only message history of the active
conversation, applies the guest allowance before anything reaches the
completion provider, and hands finished exchanges to the conversation
store without making the caller wait for the write.
"""

import asyncio
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone

import structlog

from kataba.config import settings
from kataba.core.exceptions import (
    AuthenticationError,
    CompletionProviderError,
    SessionBusyError,
    ValidationError,
)
from kataba.core.principal import Authenticated, Guest, Principal
from kataba.services.completion.base import CompletionProvider, RoleContent
from kataba.services.conversations import ConversationStore
from kataba.services.guest_quota import (
    AUTHENTICATED_STATUS,
    GUEST_LIMIT_MESSAGE,
    GUEST_UPSELL_SUFFIX,
    GuestQuotaTracker,
    QuotaStatus,
)
from kataba.services.persistence import BackgroundSaver

logger = structlog.get_logger()

COMPLETION_APOLOGY = "I apologize, but I encountered an error. Please try again."


@dataclass(frozen=True)
class SessionMessage:
    role: str
    content: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def _from_history(message: RoleContent) -> SessionMessage:
    # Earlier turns keep the time they were first finalized
    timestamp = getattr(message, "timestamp", None)
    if timestamp is None:
        return SessionMessage(role=message.role, content=message.content)
    return SessionMessage(role=message.role, content=message.content, timestamp=timestamp)


@dataclass(frozen=True)
class SubmitResult:
    content: str
    status: QuotaStatus
    failed: bool = False
    error: str | None = None
    detected_language: str | None = None
    conversation_id: str | None = None


class ConversationSession:
    def __init__(
        self,
        provider: CompletionProvider,
        principal: Principal,
        store: ConversationStore | None = None,
        saver: BackgroundSaver | None = None,
        history: Iterable[RoleContent] = (),
        conversation_id: str | None = None,
        title: str | None = None,
        privacy_mode: bool | None = None,
        language: str | None = None,
        quota: GuestQuotaTracker | None = None,
        completion_timeout: float | None = None,
    ):
        self.principal = principal
        self.conversation_id = conversation_id
        self.title = title
        self.privacy_mode = privacy_mode
        self.language = language
        self._provider = provider
        self._store = store
        self._saver = saver or BackgroundSaver()
        self._completion_timeout = (
            completion_timeout if completion_timeout is not None else settings.kataba_completion_timeout
        )
        self._messages: list[SessionMessage] = [_from_history(m) for m in history]
        self._lock = asyncio.Lock()
        self._last_save: asyncio.Task | None = None

        if isinstance(principal, Guest):
            self.quota = quota or GuestQuotaTracker(message_count=principal.message_count)
        else:
            self.quota = None

    @property
    def messages(self) -> tuple[SessionMessage, ...]:
        return tuple(self._messages)

    @property
    def is_guest(self) -> bool:
        return isinstance(self.principal, Guest)

    @property
    def is_sending(self) -> bool:
        return self._lock.locked()

    def quota_status(self) -> QuotaStatus:
        return self.quota.status() if self.quota is not None else AUTHENTICATED_STATUS

    async def submit(self, user_text: str) -> SubmitResult:
        """Send one user message and return the assistant's reply.

        Completion failures come back as an apology with ``failed=True``;
        persistence failures never reach the caller.
        """
        if not user_text or not user_text.strip():
            raise ValidationError("Message must not be empty.")
        # Single-flight: a second send must not interleave with the first
        if self._lock.locked():
            raise SessionBusyError()

        async with self._lock:
            return await self._submit(user_text)

    async def _submit(self, user_text: str) -> SubmitResult:
        if self.quota is not None and self.quota.has_reached_limit():
            logger.info("guest_limit_reached", message_count=self.quota.message_count)
            return SubmitResult(content=GUEST_LIMIT_MESSAGE, status=self.quota_status())

        last_free_message = self.quota is not None and self.quota.is_last_free_message()

        self._append("user", user_text)
        if self.quota is not None:
            self.quota.increment()

        try:
            result = await asyncio.wait_for(
                self._provider.complete(self.messages, language=self.language),
                timeout=self._completion_timeout,
            )
        except (CompletionProviderError, asyncio.TimeoutError) as e:
            error = str(e) or "Completion request timed out."
            logger.warning(
                "chat_completion_failed",
                error=error,
                conversation_id=self.conversation_id,
                guest=self.is_guest,
            )
            self._append("assistant", COMPLETION_APOLOGY)
            return SubmitResult(
                content=COMPLETION_APOLOGY,
                status=self.quota_status(),
                failed=True,
                error=error,
                conversation_id=self.conversation_id,
            )

        content = result.content
        if last_free_message:
            content += GUEST_UPSELL_SUFFIX
        self._append("assistant", content)

        if not self.is_guest and self.conversation_id is not None and self._store is not None:
            self._schedule_save()

        return SubmitResult(
            content=content,
            status=self.quota_status(),
            detected_language=result.detected_language,
            conversation_id=self.conversation_id,
        )

    async def save(self) -> str:
        """Create the conversation on first save, replace it afterwards.

        Returns the conversation id, which never changes once assigned.
        """
        if not isinstance(self.principal, Authenticated):
            raise AuthenticationError("Guest conversations are not saved.")
        if self._store is None:
            raise RuntimeError("ConversationSession has no conversation store.")
        return await self._write(self.messages)

    async def wait_for_save(self) -> None:
        """Wait for the most recently scheduled background save, if any."""
        if self._last_save is not None:
            await asyncio.gather(self._last_save, return_exceptions=True)

    def _append(self, role: str, content: str) -> SessionMessage:
        message = SessionMessage(role=role, content=content)
        self._messages.append(message)
        return message

    def _schedule_save(self) -> None:
        snapshot = self.messages
        previous = self._last_save
        self._last_save = self._saver.schedule(
            self._write_after(previous, snapshot),
            conversation_id=self.conversation_id,
            user_id=self.principal.user_id,
            messages=len(snapshot),
        )

    async def _write_after(self, previous: asyncio.Task | None, snapshot: tuple[SessionMessage, ...]) -> str:
        # Saves from one session land in submission order
        if previous is not None:
            await asyncio.gather(previous, return_exceptions=True)
        return await self._write(snapshot)

    async def _write(self, snapshot: tuple[SessionMessage, ...]) -> str:
        owner_id = self.principal.user_id
        if self.conversation_id is None:
            self.conversation_id = await self._store.create(
                owner_id,
                self.title,
                snapshot,
                privacy_mode=bool(self.privacy_mode),
                acting_user_id=owner_id,
            )
        else:
            await self._store.replace(
                self.conversation_id,
                owner_id,
                self.title,
                snapshot,
                privacy_mode=self.privacy_mode,
            )
        return self.conversation_id

"""Message allowance for visitors who have not signed in.

Two thresholds apply. With one free message left the send still goes
through and the reply carries ``GUEST_UPSELL_SUFFIX``; once the allowance
is used up the send is refused before the completion provider is called
and ``GUEST_LIMIT_MESSAGE`` is returned instead.
"""

import time
from dataclasses import dataclass

from kataba.config import settings

GUEST_LIMIT_MESSAGE = (
    "You've reached the limit of free messages for guests. "
    "Please sign up or sign in to continue our conversation. "
    "Creating an account is free and lets me keep your conversations safe for you."
)

GUEST_UPSELL_SUFFIX = (
    "\n\n---\n"
    "This is your last free message as a guest. "
    "Sign up to keep talking and to save your conversation history."
)


@dataclass(frozen=True)
class QuotaStatus:
    is_guest_mode: bool
    reached_limit: bool
    remaining_messages: int | None


class GuestQuotaTracker:
    def __init__(
        self,
        message_count: int = 0,
        max_guest_messages: int | None = None,
    ):
        if message_count < 0:
            raise ValueError("message_count must be non-negative")
        self.message_count = message_count
        self.max_guest_messages = (
            max_guest_messages if max_guest_messages is not None else settings.kataba_guest_max_messages
        )
        self.session_start_time = time.time()
        self.last_message_time: float | None = None

    def increment(self) -> None:
        self.message_count += 1
        self.last_message_time = time.time()

    def remaining(self) -> int:
        return max(0, self.max_guest_messages - self.message_count)

    def has_reached_limit(self) -> bool:
        return self.message_count >= self.max_guest_messages

    def is_last_free_message(self) -> bool:
        """True when exactly one free message is left before this send."""
        return self.message_count == self.max_guest_messages - 1

    def reset(self) -> None:
        self.message_count = 0
        self.session_start_time = time.time()
        self.last_message_time = None

    def time_since_last_message(self) -> float:
        """Seconds since the last counted message, 0 if none was sent yet."""
        if self.last_message_time is None:
            return 0.0
        return time.time() - self.last_message_time

    def status(self) -> QuotaStatus:
        return QuotaStatus(
            is_guest_mode=True,
            reached_limit=self.has_reached_limit(),
            remaining_messages=self.remaining(),
        )


# Signed-in users have no allowance; None means unlimited
AUTHENTICATED_STATUS = QuotaStatus(is_guest_mode=False, reached_limit=False, remaining_messages=None)

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol


class RoleContent(Protocol):
    role: str
    content: str


@dataclass(frozen=True)
class CompletionResult:
    content: str
    detected_language: str | None = None


class CompletionProvider(ABC):
    @abstractmethod
    async def complete(
        self, messages: Sequence[RoleContent], language: str | None = None
    ) -> CompletionResult:
        """Return the assistant reply for an ordered, role-tagged history.

        Raises CompletionProviderError on any upstream failure.
        """
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if the provider is configured and reachable."""
        ...

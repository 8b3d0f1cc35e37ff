from fastapi import Request

from kataba.core.exceptions import AuthenticationError, CompletionNotConfiguredError
from kataba.core.principal import Authenticated
from kataba.services.completion.base import CompletionProvider
from kataba.services.conversations import ConversationStore
from kataba.services.persistence import BackgroundSaver
from kataba.services.users import UserService


def get_completion_provider(request: Request) -> CompletionProvider:
    """Return the completion provider stored on app state, refusing if it has no credential."""
    provider = request.app.state.completion_provider
    if not getattr(provider, "is_configured", True):
        raise CompletionNotConfiguredError()
    return provider


def get_conversation_store(request: Request) -> ConversationStore:
    return request.app.state.conversation_store


def get_background_saver(request: Request) -> BackgroundSaver:
    return request.app.state.background_saver


def get_user_service(request: Request) -> UserService:
    return request.app.state.user_service


def get_optional_user(request: Request) -> Authenticated | None:
    """The verified caller, or None for guests."""
    return getattr(request.state, "user", None)


async def require_user(request: Request) -> Authenticated:
    """Dependency that enforces a verified identity and provisions the local user row."""
    user = get_optional_user(request)
    if user is None:
        raise AuthenticationError("Sign in to access conversations.")
    await request.app.state.user_service.ensure_user(user)
    return user

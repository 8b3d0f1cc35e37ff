from fastapi import APIRouter, Depends, Query

from kataba.core.principal import Authenticated
from kataba.dependencies import get_conversation_store, require_user
from kataba.schemas.conversations import (
    ConversationCreate,
    ConversationReplace,
    ConversationResponse,
    ConversationSummary,
)
from kataba.services.conversations import ConversationStore

router = APIRouter()


@router.get("/conversations")
async def list_conversations(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user: Authenticated = Depends(require_user),
    store: ConversationStore = Depends(get_conversation_store),
) -> list[ConversationSummary]:
    """List the caller's conversations, most recently updated first."""
    return await store.list_conversations(user.user_id, limit=limit, offset=offset)


@router.post("/conversations", status_code=201)
async def create_conversation(
    body: ConversationCreate,
    user: Authenticated = Depends(require_user),
    store: ConversationStore = Depends(get_conversation_store),
) -> ConversationResponse:
    """Save a new conversation and return it with its assigned id."""
    conversation_id = await store.create(
        user.user_id,
        body.title,
        body.messages,
        privacy_mode=body.privacy_mode,
        acting_user_id=user.user_id,
    )
    return await store.get(conversation_id, user.user_id)


@router.get("/conversations/{conversation_id}")
async def get_conversation(
    conversation_id: str,
    user: Authenticated = Depends(require_user),
    store: ConversationStore = Depends(get_conversation_store),
) -> ConversationResponse:
    """Get a conversation with all its messages."""
    return await store.get(conversation_id, user.user_id)


@router.put("/conversations/{conversation_id}")
async def replace_conversation(
    conversation_id: str,
    body: ConversationReplace,
    user: Authenticated = Depends(require_user),
    store: ConversationStore = Depends(get_conversation_store),
) -> ConversationResponse:
    """Overwrite the conversation's title and full message list."""
    return await store.replace(
        conversation_id,
        user.user_id,
        body.title,
        body.messages,
        privacy_mode=body.privacy_mode,
    )


@router.delete("/conversations/{conversation_id}", status_code=204)
async def delete_conversation(
    conversation_id: str,
    user: Authenticated = Depends(require_user),
    store: ConversationStore = Depends(get_conversation_store),
) -> None:
    """Delete a conversation and all its messages."""
    await store.delete(conversation_id, user.user_id)

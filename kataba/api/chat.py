import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from kataba.core.exceptions import PersistenceError, UpstreamCompletionError, ValidationError
from kataba.core.principal import Authenticated, Guest
from kataba.dependencies import (
    get_background_saver,
    get_completion_provider,
    get_conversation_store,
    get_optional_user,
)
from kataba.schemas.chat import ChatErrorResponse, ChatRequest, ChatResponse
from kataba.services.completion.base import CompletionProvider
from kataba.services.conversations import ConversationStore
from kataba.services.persistence import BackgroundSaver
from kataba.services.session import ConversationSession

logger = structlog.get_logger()
router = APIRouter()


@router.post("/chat", responses={500: {"model": ChatErrorResponse}})
async def chat(
    body: ChatRequest,
    request: Request,
    provider: CompletionProvider = Depends(get_completion_provider),
    store: ConversationStore = Depends(get_conversation_store),
    saver: BackgroundSaver = Depends(get_background_saver),
    user: Authenticated | None = Depends(get_optional_user),
) -> ChatResponse:
    """Send the latest user message and return the assistant's reply.

    Guests are limited by the message count they report; signed-in users
    with a selected conversation get it saved in the background.
    """
    if not body.messages or body.messages[-1].role != "user":
        raise ValidationError("The last message must be a user message.")

    if user is not None:
        principal = user
        try:
            await request.app.state.user_service.ensure_user(user)
        except PersistenceError:
            # The reply must not depend on the database being reachable
            logger.warning("chat_user_provision_skipped", user_id=user.user_id)
    else:
        principal = Guest(message_count=body.guest_message_count or 0)

    session = ConversationSession(
        provider,
        principal,
        store=store,
        saver=saver,
        history=body.messages[:-1],
        conversation_id=body.conversation_id if user is not None else None,
        privacy_mode=body.privacy_mode,
        language=body.language,
    )
    result = await session.submit(body.messages[-1].content)

    response = ChatResponse(
        content=result.content,
        is_guest_mode=result.status.is_guest_mode,
        reached_limit=result.status.reached_limit,
        remaining_messages=result.status.remaining_messages,
        conversation_id=result.conversation_id,
        detected_language=result.detected_language,
    )
    if result.failed:
        error = UpstreamCompletionError(details={"reason": result.error})
        return JSONResponse(
            status_code=error.status,
            content={**response.model_dump(by_alias=True), **error.to_dict()},
        )
    return response

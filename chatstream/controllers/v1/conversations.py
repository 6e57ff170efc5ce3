from typing import List

from fastapi import APIRouter, Depends, HTTPException, Response, status
from fastapi.responses import StreamingResponse

from ...views.conversation import (
    ConversationCreate,
    ConversationResponse,
    ConversationSummary,
    ConversationUpdate,
)
from ...views.message import EditRequest, ExchangeRequest
from ...services.conversation_service import ConversationService
from ...services.relay_service import Exchange, ExchangeRelay
from ...core.dependencies import get_conversation_service, get_current_owner, get_exchange_relay
from ...utils.stream import detach_events, encode_events


router = APIRouter()

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _event_stream(relay: ExchangeRelay, exchange: Exchange) -> StreamingResponse:
    # The relay runs detached so a client that goes away does not stop the commit
    return StreamingResponse(
        encode_events(detach_events(relay.run(exchange))),
        media_type="text/event-stream",
        headers={**STREAM_HEADERS, "X-Conversation-Id": str(exchange.conversation.id)},
    )


@router.get("/", response_model=List[ConversationSummary])
async def list_conversations(
    owner_id: str = Depends(get_current_owner),
    service: ConversationService = Depends(get_conversation_service),
):
    return await service.list_conversations(owner_id)

@router.post("/", response_model=ConversationSummary, status_code=status.HTTP_201_CREATED)
async def create_conversation(
    conversation: ConversationCreate,
    owner_id: str = Depends(get_current_owner),
    service: ConversationService = Depends(get_conversation_service),
):
    return await service.create_conversation(owner_id=owner_id, title=conversation.title)

@router.post("/exchange")
async def start_conversation(
    request: ExchangeRequest,
    owner_id: str = Depends(get_current_owner),
    relay: ExchangeRelay = Depends(get_exchange_relay),
):
    """First message sent without a conversation: creates one, then streams the exchange."""
    exchange = await relay.prepare_new(owner_id, request.text, request.attachments)
    return _event_stream(relay, exchange)

@router.get("/{conversation_id}", response_model=ConversationResponse, response_model_exclude_none=True)
async def get_conversation(
    conversation_id: str,
    owner_id: str = Depends(get_current_owner),
    service: ConversationService = Depends(get_conversation_service),
):
    conversation = await service.get_conversation(conversation_id, owner_id)
    if not conversation:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return conversation

@router.patch("/{conversation_id}", response_model=ConversationSummary)
async def rename_conversation(
    conversation_id: str,
    conversation_update: ConversationUpdate,
    owner_id: str = Depends(get_current_owner),
    service: ConversationService = Depends(get_conversation_service),
):
    conversation = await service.rename_conversation(conversation_id, owner_id, conversation_update.title)
    if not conversation:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return conversation

@router.delete("/{conversation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_conversation(
    conversation_id: str,
    owner_id: str = Depends(get_current_owner),
    service: ConversationService = Depends(get_conversation_service),
):
    if not await service.delete_conversation(conversation_id, owner_id):
        raise HTTPException(status_code=404, detail="Conversation not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)

@router.post("/{conversation_id}/exchange")
async def stream_exchange(
    conversation_id: str,
    request: ExchangeRequest,
    owner_id: str = Depends(get_current_owner),
    relay: ExchangeRelay = Depends(get_exchange_relay),
):
    """
    Records the user's message and streams the assistant reply as
    server-sent events. With `regenerate`, the trailing reply is replaced
    instead and no user message is recorded.
    """
    exchange = await relay.prepare(
        conversation_id,
        owner_id,
        request.text,
        request.attachments,
        is_regenerate=request.regenerate,
    )
    return _event_stream(relay, exchange)

@router.post("/{conversation_id}/messages/{index}/edit")
async def edit_message(
    conversation_id: str,
    index: int,
    request: EditRequest,
    owner_id: str = Depends(get_current_owner),
    service: ConversationService = Depends(get_conversation_service),
    relay: ExchangeRelay = Depends(get_exchange_relay),
):
    """Rewrites a user message, drops everything after it and streams a fresh reply."""
    await service.edit_message(conversation_id, owner_id, index, request.text)
    exchange = await relay.prepare(conversation_id, owner_id, request.text, is_regenerate=True)
    return _event_stream(relay, exchange)

@router.post("/{conversation_id}/messages")
async def send_message(
    conversation_id: str,
    request: ExchangeRequest,
    owner_id: str = Depends(get_current_owner),
    relay: ExchangeRelay = Depends(get_exchange_relay),
):
    """Non-streaming variant of the exchange: waits for the reply and returns it whole."""
    exchange = await relay.prepare(conversation_id, owner_id, request.text, request.attachments)
    return await relay.run_to_completion(exchange)

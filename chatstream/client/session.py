from typing import AsyncIterable, List, Optional, Sequence

import httpx
from loguru import logger

from ..core.exceptions import ExchangeInFlight, ValidationError
from ..views.conversation import ConversationSummary
from ..views.events import CompleteEvent
from ..models.base import utcnow
from ..models.conversation import DEFAULT_TITLE
from ..views.message import Attachment, ChatMessage
from .event_bus import ConversationCreated, EventBus, TitleChanged
from .http_client import ChatClient
from .reducer import (
    Action,
    ConversationLoaded,
    ConversationStarted,
    ConversationState,
    EditStarted,
    SendStarted,
    TransportFailed,
    reduce,
)


class ChatSession:
    """
    Owns the state of one open conversation and feeds it through the reducer.

    Only one exchange may be in flight at a time; the relay offers no
    per-conversation locking, so the session is where sends get serialized.
    """

    def __init__(self, client: ChatClient, bus: Optional[EventBus] = None, state: Optional[ConversationState] = None):
        self.client = client
        self.bus = bus or EventBus()
        self._state = state or ConversationState()

    @property
    def state(self) -> ConversationState:
        return self._state

    def dispatch(self, action: Action) -> ConversationState:
        previous = self._state
        self._state = reduce(previous, action)
        if isinstance(action, ConversationStarted):
            self.bus.publish(ConversationCreated(
                conversation_id=action.conversation_id, title=self._state.title or DEFAULT_TITLE
            ))
        elif isinstance(action, CompleteEvent) and self._state.title != previous.title:
            self.bus.publish(TitleChanged(conversation_id=self._state.conversation_id, title=self._state.title))
        return self._state

    async def load(self, conversation_id: str) -> ConversationState:
        data = await self.client.get_conversation(conversation_id)
        messages = tuple(ChatMessage.model_validate(m) for m in data.get("messages", []))
        return self.dispatch(ConversationLoaded(conversation_id=data["id"], title=data["title"], messages=messages))

    async def send(self, text: str, attachments: Optional[Sequence[Attachment]] = None, is_regenerate: bool = False) -> bool:
        """Returns True when the exchange committed, False when it ended in an error."""
        self._ensure_idle()
        if not is_regenerate and not text.strip() and not attachments:
            raise ValidationError("Message is required")

        self.dispatch(SendStarted(
            text=text, attachments=tuple(attachments) if attachments else None, is_regenerate=is_regenerate
        ))
        if self._state.conversation_id is None:
            events = self.client.start_conversation(text, attachments)
        else:
            events = self.client.exchange(self._state.conversation_id, text, attachments, regenerate=is_regenerate)
        return await self._drive(events)

    async def regenerate(self) -> bool:
        return await self.send("", is_regenerate=True)

    async def edit(self, index: int, content: str) -> bool:
        self._ensure_idle()
        if not content.strip():
            raise ValidationError("Message is required")
        self.dispatch(EditStarted(index=index, content=content))
        return await self._drive(self.client.edit(self._state.conversation_id, index, content))

    def _ensure_idle(self) -> None:
        if self._state.sending:
            raise ExchangeInFlight("An exchange is already in flight for this conversation")

    async def _drive(self, events: AsyncIterable) -> bool:
        try:
            async for event in events:
                self.dispatch(event)
        except httpx.HTTPError as e:
            logger.warning(f"Exchange transport failed: {e}")
            self.dispatch(TransportFailed(reason=str(e) or type(e).__name__))
            return False
        if self._state.sending:
            self.dispatch(TransportFailed(reason="Stream ended before the exchange finished"))
            return False
        return self._state.error is None


class ConversationList:
    """Sidebar view of the owner's conversations, kept current through the event bus."""

    def __init__(self, bus: EventBus):
        self.items: List[ConversationSummary] = []
        self._unsubscribe = [
            bus.subscribe(TitleChanged, self._on_title_changed),
            bus.subscribe(ConversationCreated, self._on_created),
        ]

    async def refresh(self, client: ChatClient) -> None:
        self.items = await client.list_conversations()

    def close(self) -> None:
        for unsubscribe in self._unsubscribe:
            unsubscribe()

    def _on_title_changed(self, event: TitleChanged) -> None:
        self.items = [
            item.model_copy(update={"title": event.title}) if item.id == event.conversation_id else item
            for item in self.items
        ]

    def _on_created(self, event: ConversationCreated) -> None:
        if any(item.id == event.conversation_id for item in self.items):
            return
        now = utcnow()
        self.items = [
            ConversationSummary(id=event.conversation_id, title=event.title, created_at=now, updated_at=now)
        ] + self.items

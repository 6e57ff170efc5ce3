"""
Client-side state for one conversation, driven by the relay's event stream.

Confirmed history lives in `messages`; the optimistic user message sits in
`pending` and the reply being streamed in `streaming`, so neither is mixed
into confirmed history until the server says so. `snapshot` holds the
messages as they were before the send, for rollback.
"""
from dataclasses import dataclass, replace
from typing import List, Optional, Tuple, Union

from ..core.exceptions import ValidationError
from ..models.message import MessageRole
from ..views.events import ChunkEvent, CompleteEvent, ErrorEvent, UserMessageEvent
from ..views.message import Attachment, ChatMessage


@dataclass(frozen=True)
class ConversationState:
    conversation_id: Optional[str] = None
    title: str = ""
    messages: Tuple[ChatMessage, ...] = ()
    pending: Optional[ChatMessage] = None
    streaming: Optional[ChatMessage] = None
    snapshot: Optional[Tuple[ChatMessage, ...]] = None
    sending: bool = False
    is_regenerate: bool = False
    # True once the server has acknowledged the current send with any event
    acknowledged: bool = False
    error: Optional[str] = None

    @property
    def visible_messages(self) -> List[ChatMessage]:
        visible = list(self.messages)
        if self.pending is not None:
            visible.append(self.pending)
        if self.streaming is not None:
            visible.append(self.streaming)
        return visible


@dataclass(frozen=True)
class ConversationLoaded:
    conversation_id: str
    title: str
    messages: Tuple[ChatMessage, ...]


@dataclass(frozen=True)
class ConversationStarted:
    """The server created a conversation for a first message; carries its id."""

    conversation_id: str


@dataclass(frozen=True)
class SendStarted:
    text: str
    attachments: Optional[Tuple[Attachment, ...]] = None
    is_regenerate: bool = False


@dataclass(frozen=True)
class EditStarted:
    index: int
    content: str


@dataclass(frozen=True)
class TransportFailed:
    reason: str


Action = Union[
    ConversationLoaded,
    ConversationStarted,
    SendStarted,
    EditStarted,
    TransportFailed,
    UserMessageEvent,
    ChunkEvent,
    CompleteEvent,
    ErrorEvent,
]


def _begin(state: ConversationState, messages: Tuple[ChatMessage, ...], **changes) -> ConversationState:
    return replace(
        state,
        messages=messages,
        streaming=None,
        snapshot=state.messages,
        sending=True,
        acknowledged=False,
        error=None,
        **changes,
    )


def reduce(state: ConversationState, action: Action) -> ConversationState:
    if isinstance(action, ConversationLoaded):
        return ConversationState(
            conversation_id=action.conversation_id,
            title=action.title,
            messages=tuple(action.messages),
        )

    if isinstance(action, ConversationStarted):
        return replace(state, conversation_id=action.conversation_id)

    if isinstance(action, SendStarted):
        messages = state.messages
        pending = None
        if action.is_regenerate:
            if messages and messages[-1].role == MessageRole.ASSISTANT:
                messages = messages[:-1]
        else:
            pending = ChatMessage(
                role=MessageRole.USER,
                content=action.text.strip(),
                attachments=list(action.attachments) if action.attachments else None,
            )
        return _begin(state, messages, pending=pending, is_regenerate=action.is_regenerate)

    if isinstance(action, EditStarted):
        if not 0 <= action.index < len(state.messages):
            raise ValidationError(f"No message at index {action.index}")
        edited = state.messages[action.index]
        if edited.role != MessageRole.USER:
            raise ValidationError("Only user messages can be edited")
        messages = state.messages[:action.index] + (edited.model_copy(update={"content": action.content.strip()}),)
        return _begin(state, messages, pending=None, is_regenerate=True)

    if isinstance(action, UserMessageEvent):
        return replace(state, messages=state.messages + (action.message,), pending=None, acknowledged=True)

    if isinstance(action, ChunkEvent):
        if state.streaming is not None:
            streaming = state.streaming.model_copy(update={"content": state.streaming.content + action.content})
        else:
            streaming = ChatMessage(role=MessageRole.ASSISTANT, content=action.content)
        return replace(state, streaming=streaming, acknowledged=True)

    if isinstance(action, CompleteEvent):
        return replace(
            state,
            messages=state.messages + (action.assistant_message,),
            title=action.chat_title or state.title,
            pending=None,
            streaming=None,
            snapshot=None,
            sending=False,
            acknowledged=True,
        )

    if isinstance(action, ErrorEvent):
        return replace(
            state,
            messages=state.messages + (action.message,),
            pending=None,
            streaming=None,
            snapshot=None,
            sending=False,
            acknowledged=True,
            error=action.error,
        )

    if isinstance(action, TransportFailed):
        if not state.sending:
            return replace(state, error=action.reason)
        if not state.acknowledged:
            # Nothing was confirmed: back to exactly what was shown before the send
            messages = state.snapshot if state.snapshot is not None else state.messages
        else:
            messages = state.messages
        return replace(
            state,
            messages=messages,
            pending=None,
            streaming=None,
            snapshot=None,
            sending=False,
            error=action.reason,
        )

    raise TypeError(f"Unknown action {type(action).__name__}")

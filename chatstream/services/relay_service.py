import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncGenerator, Dict, List, Optional, Sequence

from loguru import logger

from ..core.config import settings
from ..core.exceptions import ChatServiceError, NotFound, PersistenceFailure, ValidationError
from ..core.langfuse_client import langfuse
from ..models.conversation import DEFAULT_TITLE, Conversation
from ..models.message import MessageRole
from ..repositories.conversation_repository import ConversationRepository
from ..views.events import ChunkEvent, CompleteEvent, ErrorEvent, ExchangeEvent, UserMessageEvent
from ..views.message import Attachment, ChatMessage
from .completion_client import CompletionClient
from .conversation_service import derive_title, dump_messages, load_messages

FALLBACK_REPLY = (
    "I received your message but there was an issue with the streaming response. Please try again."
)
ERROR_REPLY = "Sorry, I encountered an error while processing your message. Please try again."


class RelayState(str, Enum):
    IDLE = "idle"
    USER_MESSAGE_RECORDED = "user_message_recorded"
    UPSTREAM_REQUESTED = "upstream_requested"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    COMMITTED = "committed"
    ERROR_RECOVERING = "error_recovering"


@dataclass
class Exchange:
    """One user-message-in, assistant-message-out cycle against a working copy of a conversation."""

    conversation: Conversation
    messages: List[ChatMessage]
    text: str
    attachments: Optional[List[Attachment]] = None
    is_regenerate: bool = False
    state: RelayState = RelayState.IDLE
    transitions: List[RelayState] = field(default_factory=list)

    def advance(self, state: RelayState) -> None:
        logger.debug(f"Exchange on {self.conversation.id}: {self.state.value} -> {state.value}")
        self.transitions.append(state)
        self.state = state


class ExchangeRelay:
    def __init__(
        self,
        conversation_repo: ConversationRepository,
        completion_client: CompletionClient,
        mode: Optional[str] = None,
        word_delay: Optional[float] = None,
    ):
        self.conversation_repo = conversation_repo
        self.completion_client = completion_client
        self.mode = mode or settings.RELAY_MODE
        self.word_delay = settings.SIMULATED_STREAM_DELAY_MS / 1000.0 if word_delay is None else word_delay

    async def prepare(
        self,
        conversation_id: str,
        owner_id: str,
        text: Optional[str],
        attachments: Optional[Sequence[Attachment]] = None,
        is_regenerate: bool = False,
    ) -> Exchange:
        """
        Rejection phase. Raises ValidationError or NotFound before anything is
        written; a returned Exchange always runs to a terminal event.
        """
        text = (text or "").strip()
        attachments = list(attachments) if attachments else None
        if not is_regenerate and not text and not attachments:
            raise ValidationError("Message is required")

        conversation = await self.conversation_repo.find_owned(conversation_id, owner_id)
        if conversation is None:
            raise NotFound("Conversation not found")

        messages = load_messages(conversation)
        if is_regenerate:
            if messages and messages[-1].role == MessageRole.ASSISTANT:
                messages.pop()
            if not messages or messages[-1].role != MessageRole.USER:
                raise ValidationError("There is no user message to regenerate a reply for")
            text = messages[-1].content
            attachments = None

        return Exchange(
            conversation=conversation,
            messages=messages,
            text=text,
            attachments=attachments,
            is_regenerate=is_regenerate,
        )

    async def prepare_new(
        self,
        owner_id: str,
        text: Optional[str],
        attachments: Optional[Sequence[Attachment]] = None,
    ) -> Exchange:
        """Same as prepare, for a first message sent before any conversation exists."""
        if not (text or "").strip() and not attachments:
            raise ValidationError("Message is required")
        conversation = await self.conversation_repo.create(owner_id=owner_id, title=DEFAULT_TITLE)
        logger.info(f"Created conversation {conversation.id} for {owner_id} from a first message")
        return await self.prepare(conversation.id, owner_id, text, attachments)

    async def run(self, exchange: Exchange) -> AsyncGenerator[ExchangeEvent, None]:
        """
        Emits `userMessage` (unless regenerating), then `chunk`* in arrival
        order, then exactly one of `complete` or `error`. Never raises: every
        failure after the user message is recorded becomes a persisted error
        reply.
        """
        conversation = exchange.conversation
        if not exchange.is_regenerate:
            user_message = ChatMessage(
                role=MessageRole.USER, content=exchange.text, attachments=exchange.attachments
            )
            exchange.messages.append(user_message)
            exchange.advance(RelayState.USER_MESSAGE_RECORDED)
            yield UserMessageEvent(message=user_message)

        settled = len(exchange.messages)
        try:
            # Failures inside the span (tracing included) end up in _recover
            with langfuse.start_as_current_span(
                name="chat-exchange",
                input={"text": exchange.text, "regenerate": exchange.is_regenerate},
            ) as span:
                span.update_trace(user_id=conversation.owner_id, session_id=str(conversation.id))
                exchange.advance(RelayState.UPSTREAM_REQUESTED)
                history = self.completion_client.build_history(exchange.messages)

                accumulator = []
                async for increment in self._increments(history):
                    if exchange.state is RelayState.UPSTREAM_REQUESTED:
                        exchange.advance(RelayState.STREAMING)
                    accumulator.append(increment)
                    yield ChunkEvent(content=increment)

                reply = "".join(accumulator)
                if not reply:
                    logger.warning(f"Upstream produced no content for conversation {conversation.id}")
                    reply = FALLBACK_REPLY
                    yield ChunkEvent(content=reply)

                exchange.advance(RelayState.FINALIZING)
                assistant_message = ChatMessage(role=MessageRole.ASSISTANT, content=reply)
                await self._commit(exchange, assistant_message)
                exchange.advance(RelayState.COMMITTED)
                span.update(output=reply)
                terminal = CompleteEvent(assistant_message=assistant_message, chat_title=conversation.title)
        except Exception as e:
            terminal = await self._recover(exchange, e, settled)

        yield terminal

    async def run_to_completion(self, exchange: Exchange) -> Dict[str, object]:
        """Drives an exchange without streaming and returns the non-streaming response body."""
        outcome: Dict[str, object] = {}
        async for event in self.run(exchange):
            if isinstance(event, UserMessageEvent):
                outcome["userMessage"] = event.message.to_document()
            elif isinstance(event, CompleteEvent):
                outcome["assistantMessage"] = event.assistant_message.to_document()
                outcome["chatTitle"] = event.chat_title
            elif isinstance(event, ErrorEvent):
                outcome["assistantMessage"] = event.message.to_document()
                outcome["error"] = event.error
        return outcome

    async def _increments(self, history: List[Dict[str, str]]) -> AsyncGenerator[str, None]:
        if self.mode == "simulate":
            # Single-shot reply replayed word by word
            reply = await self.completion_client.complete(history)
            words = reply.split(" ")
            for i, word in enumerate(words):
                piece = word + (" " if i < len(words) - 1 else "")
                if not piece:
                    continue
                yield piece
                if self.word_delay:
                    await asyncio.sleep(self.word_delay)
            return

        async for increment in self.completion_client.stream_completion(history):
            yield increment

    async def _commit(self, exchange: Exchange, assistant_message: ChatMessage) -> None:
        exchange.messages.append(assistant_message)
        conversation = exchange.conversation
        # Only a new user message makes the count two; regenerate and edit keep the title
        if not exchange.is_regenerate and len(exchange.messages) == 2:
            title = derive_title(exchange.messages[0].content)
            if title:
                conversation.title = title
        conversation.messages = dump_messages(exchange.messages)
        await self.conversation_repo.save(conversation)

    async def _recover(self, exchange: Exchange, error: Exception, settled: int) -> ErrorEvent:
        exchange.advance(RelayState.ERROR_RECOVERING)
        conversation = exchange.conversation
        if isinstance(error, ChatServiceError):
            classification = error.classification
            logger.error(f"Exchange on {conversation.id} failed ({classification}): {error}")
        else:
            classification = "internal_error"
            logger.opt(exception=error).error(f"Exchange on {conversation.id} failed unexpectedly")

        # Whatever was appended after the last settled message never got committed
        del exchange.messages[settled:]
        error_message = ChatMessage(role=MessageRole.ASSISTANT, content=ERROR_REPLY)
        try:
            await self._commit(exchange, error_message)
        except Exception as e:
            logger.opt(exception=e).error(f"Could not record the error reply for {conversation.id}")
            classification = PersistenceFailure.classification
        return ErrorEvent(message=error_message, error=classification)

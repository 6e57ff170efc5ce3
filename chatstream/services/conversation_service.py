from typing import List, Optional

from loguru import logger

from ..core.exceptions import NotFound, ValidationError
from ..models.conversation import Conversation
from ..models.message import MessageRole
from ..repositories.conversation_repository import ConversationRepository
from ..views.conversation import ConversationSummary
from ..views.message import ChatMessage

TITLE_WORDS = 6
TITLE_MAX_LENGTH = 50
TITLE_COLUMN_LENGTH = 100


def derive_title(text: str) -> str:
    """First six words of `text`; past 50 characters, cut to 47 plus an ellipsis."""
    first_words = " ".join(text.split()[:TITLE_WORDS])
    if len(first_words) > TITLE_MAX_LENGTH:
        return first_words[:TITLE_MAX_LENGTH - 3] + "..."
    return first_words


def load_messages(conversation: Conversation) -> List[ChatMessage]:
    return [ChatMessage.model_validate(document) for document in conversation.messages or []]


def dump_messages(messages: List[ChatMessage]) -> List[dict]:
    return [message.to_document() for message in messages]


def _clean_title(title: Optional[str]) -> str:
    title = (title or "").strip()
    if not title:
        raise ValidationError("Title is required")
    if len(title) > TITLE_COLUMN_LENGTH:
        raise ValidationError(f"Title must be at most {TITLE_COLUMN_LENGTH} characters")
    return title


class ConversationService:
    def __init__(self, conversation_repo: ConversationRepository, list_limit: int = 50):
        self.conversation_repo = conversation_repo
        self.list_limit = list_limit

    async def create_conversation(self, owner_id: str, title: str) -> Conversation:
        conversation = await self.conversation_repo.create(owner_id=owner_id, title=_clean_title(title))
        logger.info(f"Created conversation {conversation.id} for {owner_id}")
        return conversation

    async def get_conversation(self, conversation_id: str, owner_id: str) -> Optional[Conversation]:
        return await self.conversation_repo.find_owned(conversation_id, owner_id)

    async def list_conversations(self, owner_id: str) -> List[ConversationSummary]:
        return await self.conversation_repo.list_owned(owner_id, limit=self.list_limit)

    async def delete_conversation(self, conversation_id: str, owner_id: str) -> bool:
        deleted = await self.conversation_repo.delete_owned(conversation_id, owner_id)
        if deleted:
            logger.info(f"Deleted conversation {conversation_id} for {owner_id}")
        return deleted

    async def rename_conversation(self, conversation_id: str, owner_id: str, title: str) -> Optional[Conversation]:
        return await self.conversation_repo.update_title(conversation_id, owner_id, _clean_title(title))

    async def edit_message(self, conversation_id: str, owner_id: str, index: int, content: str) -> Conversation:
        """
        Replaces the content of the user message at `index` and drops everything
        after it, including the reply it had. The caller then regenerates.
        """
        content = (content or "").strip()
        if not content:
            raise ValidationError("Message is required")

        conversation = await self.conversation_repo.find_owned(conversation_id, owner_id)
        if conversation is None:
            raise NotFound("Conversation not found")

        messages = load_messages(conversation)
        if index < 0 or index >= len(messages):
            raise ValidationError(f"No message at index {index}")
        if messages[index].role != MessageRole.USER:
            raise ValidationError("Only user messages can be edited")

        messages = messages[:index + 1]
        messages[index] = messages[index].model_copy(update={"content": content})
        conversation.messages = dump_messages(messages)
        return await self.conversation_repo.save(conversation)

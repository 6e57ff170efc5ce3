from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header

from .config import settings
from .exceptions import Unauthorized
from ..database.session import AsyncSessionLocal
from ..repositories.conversation_repository import ConversationRepository
from ..services.completion_client import CompletionClient
from ..services.conversation_service import ConversationService
from ..services.relay_service import ExchangeRelay

# Identity
def get_current_owner(x_user_id: Optional[str] = Header(None)) -> str:
    # Authentication happens upstream of this service; it forwards the principal's id.
    if not x_user_id or not x_user_id.strip():
        raise Unauthorized("Unauthorized")
    return x_user_id.strip()

# Repositories
def get_conversation_repository() -> ConversationRepository:
    return ConversationRepository(AsyncSessionLocal)

# Services (singletons or request-scoped)
@lru_cache(maxsize=1)
def get_completion_client() -> CompletionClient:
    return CompletionClient()

def get_conversation_service(
    conversation_repo: ConversationRepository = Depends(get_conversation_repository),
) -> ConversationService:
    return ConversationService(conversation_repo, list_limit=settings.CONVERSATION_LIST_LIMIT)

def get_exchange_relay(
    conversation_repo: ConversationRepository = Depends(get_conversation_repository),
    completion_client: CompletionClient = Depends(get_completion_client),
) -> ExchangeRelay:
    return ExchangeRelay(conversation_repo, completion_client)

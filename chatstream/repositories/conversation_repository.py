from typing import Callable, List, Optional
from loguru import logger
from sqlalchemy import delete, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from ..core.exceptions import PersistenceFailure
from ..models.base import new_id, utcnow
from ..models.conversation import Conversation
from ..views.conversation import ConversationSummary
from .base_repository import BaseRepository

class ConversationRepository(BaseRepository[Conversation]):
    def __init__(self, session_factory: Callable[[], AsyncSession]):
        super().__init__(session_factory)

    async def create(self, owner_id: str, title: str) -> Conversation:
        now = utcnow()
        conversation = Conversation(
            id=new_id(), owner_id=owner_id, title=title, messages=[], created_at=now, updated_at=now
        )
        try:
            async with self.session_factory() as session:
                session.add(conversation)
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to create conversation for {owner_id}: {e}")
            raise PersistenceFailure("Could not create conversation") from e
        return conversation

    async def find_owned(self, id: str, owner_id: str) -> Optional[Conversation]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Conversation).filter(Conversation.id == id, Conversation.owner_id == owner_id)
            )
            return result.scalars().first()

    async def save(self, conversation: Conversation) -> Conversation:
        """
        Rewrites title and the whole message list in a single UPDATE scoped to
        id and owner. There is no field-level patching: the last writer wins.
        """
        updated_at = utcnow()
        stmt = (
            update(Conversation)
            .where(Conversation.id == conversation.id, Conversation.owner_id == conversation.owner_id)
            .values(title=conversation.title, messages=list(conversation.messages), updated_at=updated_at)
        )
        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to save conversation {conversation.id}: {e}")
            raise PersistenceFailure("Could not save conversation") from e
        if result.rowcount == 0:
            raise PersistenceFailure(f"Conversation {conversation.id} no longer exists")
        conversation.updated_at = updated_at
        return conversation

    async def update_title(self, id: str, owner_id: str, title: str) -> Optional[Conversation]:
        stmt = (
            update(Conversation)
            .where(Conversation.id == id, Conversation.owner_id == owner_id)
            .values(title=title, updated_at=utcnow())
        )
        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to rename conversation {id}: {e}")
            raise PersistenceFailure("Could not rename conversation") from e
        if result.rowcount == 0:
            return None
        return await self.find_owned(id, owner_id)

    async def delete_owned(self, id: str, owner_id: str) -> bool:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    delete(Conversation).where(Conversation.id == id, Conversation.owner_id == owner_id)
                )
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to delete conversation {id}: {e}")
            raise PersistenceFailure("Could not delete conversation") from e
        return result.rowcount > 0

    async def list_owned(self, owner_id: str, limit: int = 50) -> List[ConversationSummary]:
        # Summary columns only, message bodies stay in the database
        async with self.session_factory() as session:
            result = await session.execute(
                select(Conversation.id, Conversation.title, Conversation.created_at, Conversation.updated_at)
                .filter(Conversation.owner_id == owner_id)
                .order_by(Conversation.updated_at.desc())
                .limit(limit)
            )
            return [ConversationSummary.model_validate(dict(row)) for row in result.mappings().all()]

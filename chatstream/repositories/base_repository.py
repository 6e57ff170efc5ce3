from abc import ABC, abstractmethod
from typing import Callable, Generic, TypeVar
from sqlalchemy.ext.asyncio import AsyncSession

ModelType = TypeVar("ModelType")

class BaseRepository(ABC, Generic[ModelType]):
    # Each operation opens its own short-lived session, so callers that outlive
    # a request (a detached exchange) never hold on to a request-scoped one.
    def __init__(self, session_factory: Callable[[], AsyncSession]):
        self.session_factory = session_factory

    @abstractmethod
    async def create(self, **kwargs) -> ModelType:
        pass

    @abstractmethod
    async def find_owned(self, id: str, owner_id: str) -> ModelType | None:
        pass

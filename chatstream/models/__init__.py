from .base import Base, BaseModel
from .conversation import Conversation, DEFAULT_TITLE
from .message import MessageRole

__all__ = [
    "Base",
    "BaseModel",
    "Conversation",
    "DEFAULT_TITLE",
    "MessageRole",
]

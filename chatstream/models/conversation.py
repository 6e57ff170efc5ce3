from sqlalchemy import Column, String, JSON, Index
from .base import BaseModel

DEFAULT_TITLE = "New Chat"


class Conversation(BaseModel):
    __tablename__ = "conversations"
    
    owner_id = Column(String(255), nullable=False, index=True)
    title = Column(String(100), nullable=False, default=DEFAULT_TITLE)
    # The whole ordered message list lives in one document column and is always rewritten whole
    messages = Column(JSON, nullable=False, default=list)

    __table_args__ = (
        Index("ix_conversations_owner_updated", "owner_id", "updated_at"),
    )

    def __repr__(self):
        return f"<Conversation(id={self.id}, owner_id='{self.owner_id}', title='{self.title}')>"

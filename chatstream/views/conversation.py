from datetime import datetime
from typing import List

from pydantic import BaseModel, Field

from .message import ChatMessage


class ConversationCreate(BaseModel):
    title: str


class ConversationUpdate(BaseModel):
    title: str


class ConversationSummary(BaseModel):
    id: str
    title: str
    created_at: datetime = Field(serialization_alias="createdAt")
    updated_at: datetime = Field(serialization_alias="updatedAt")

    class Config:
        from_attributes = True


class ConversationResponse(ConversationSummary):
    owner_id: str = Field(serialization_alias="ownerId")
    messages: List[ChatMessage] = []

    class Config:
        from_attributes = True

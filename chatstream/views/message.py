from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from ..models.base import utcnow
from ..models.message import MessageRole


class Attachment(BaseModel):
    """File descriptor produced by the upload collaborator. Only its description reaches the model."""

    name: str
    mime_type: str = Field("application/octet-stream", alias="mimeType")
    size: Optional[int] = None
    url: Optional[str] = None
    text_content: Optional[str] = Field(None, alias="textContent")

    class Config:
        populate_by_name = True


class ChatMessage(BaseModel):
    role: MessageRole
    content: str
    timestamp: datetime = Field(default_factory=utcnow)
    attachments: Optional[List[Attachment]] = None

    class Config:
        populate_by_name = True

    def to_document(self) -> dict:
        """The persisted (and wire) shape: camelCase keys, absent fields omitted."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ExchangeRequest(BaseModel):
    text: str = ""
    attachments: Optional[List[Attachment]] = None
    regenerate: bool = False


class EditRequest(BaseModel):
    text: str

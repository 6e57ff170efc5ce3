from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from .message import ChatMessage


class UserMessageEvent(BaseModel):
    type: Literal["userMessage"] = "userMessage"
    message: ChatMessage


class ChunkEvent(BaseModel):
    type: Literal["chunk"] = "chunk"
    content: str


class CompleteEvent(BaseModel):
    type: Literal["complete"] = "complete"
    assistant_message: ChatMessage = Field(alias="assistantMessage")
    chat_title: str = Field(alias="chatTitle")

    class Config:
        populate_by_name = True


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    message: ChatMessage
    error: str


ExchangeEvent = Annotated[
    Union[UserMessageEvent, ChunkEvent, CompleteEvent, ErrorEvent],
    Field(discriminator="type"),
]

_event_adapter = TypeAdapter(ExchangeEvent)


def event_to_dict(event: BaseModel) -> dict:
    return event.model_dump(mode="json", by_alias=True, exclude_none=True)


def parse_event(payload: Union[str, bytes, dict]) -> ExchangeEvent:
    """Parses one event record from its JSON text or already-decoded dict."""
    if isinstance(payload, dict):
        return _event_adapter.validate_python(payload)
    return _event_adapter.validate_json(payload)

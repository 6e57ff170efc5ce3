from enum import Enum as PyEnum


class MessageRole(PyEnum):
    USER = "user"
    ASSISTANT = "assistant"

from typing import AsyncGenerator, List, Optional, Sequence

import httpx
from loguru import logger
from pydantic import ValidationError as SchemaError

from ..utils.stream import SSEFrameParser
from ..views.conversation import ConversationSummary
from ..views.events import parse_event
from ..views.message import Attachment
from .reducer import ConversationStarted

API_PREFIX = "/api/v1/conversations"


class ChatClient:
    """Async HTTP client for the conversation API, decoding exchange event streams."""

    def __init__(
        self,
        base_url: str,
        owner_id: str,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        # Reads on an exchange stream can stall for as long as the model thinks
        self.http = http_client or httpx.AsyncClient(
            base_url=base_url, timeout=httpx.Timeout(timeout, read=None)
        )
        self.headers = {"X-User-Id": owner_id}

    async def aclose(self) -> None:
        await self.http.aclose()

    async def list_conversations(self) -> List[ConversationSummary]:
        response = await self.http.get(f"{API_PREFIX}/", headers=self.headers)
        response.raise_for_status()
        return [
            ConversationSummary(
                id=item["id"], title=item["title"], created_at=item["createdAt"], updated_at=item["updatedAt"]
            )
            for item in response.json()
        ]

    async def create_conversation(self, title: str) -> dict:
        response = await self.http.post(f"{API_PREFIX}/", json={"title": title}, headers=self.headers)
        response.raise_for_status()
        return response.json()

    async def get_conversation(self, conversation_id: str) -> dict:
        response = await self.http.get(f"{API_PREFIX}/{conversation_id}", headers=self.headers)
        response.raise_for_status()
        return response.json()

    async def delete_conversation(self, conversation_id: str) -> None:
        response = await self.http.delete(f"{API_PREFIX}/{conversation_id}", headers=self.headers)
        response.raise_for_status()

    def exchange(
        self,
        conversation_id: str,
        text: str,
        attachments: Optional[Sequence[Attachment]] = None,
        regenerate: bool = False,
    ) -> AsyncGenerator:
        body = {"text": text, "regenerate": regenerate}
        if attachments:
            body["attachments"] = [a.model_dump(by_alias=True, exclude_none=True) for a in attachments]
        return self._stream_events(f"{API_PREFIX}/{conversation_id}/exchange", body)

    def start_conversation(self, text: str, attachments: Optional[Sequence[Attachment]] = None) -> AsyncGenerator:
        """Exchange without a conversation; the first item yielded is a ConversationStarted."""
        body = {"text": text}
        if attachments:
            body["attachments"] = [a.model_dump(by_alias=True, exclude_none=True) for a in attachments]
        return self._stream_events(f"{API_PREFIX}/exchange", body, announce_conversation=True)

    def edit(self, conversation_id: str, index: int, text: str) -> AsyncGenerator:
        return self._stream_events(f"{API_PREFIX}/{conversation_id}/messages/{index}/edit", {"text": text})

    async def _stream_events(self, path: str, body: dict, announce_conversation: bool = False) -> AsyncGenerator:
        async with self.http.stream("POST", path, json=body, headers=self.headers) as response:
            response.raise_for_status()
            if announce_conversation:
                yield ConversationStarted(conversation_id=response.headers["X-Conversation-Id"])

            parser = SSEFrameParser()
            async for data in response.aiter_bytes():
                for payload in parser.feed(data):
                    event = self._parse(payload)
                    if event is not None:
                        yield event
            for payload in parser.flush():
                event = self._parse(payload)
                if event is not None:
                    yield event

    @staticmethod
    def _parse(payload: str):
        if not payload.strip():
            return None
        try:
            return parse_event(payload)
        except SchemaError:
            logger.warning(f"Skipping unrecognised event: {payload[:100]}")
            return None

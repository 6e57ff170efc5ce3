import asyncio
import codecs
import json
from typing import AsyncGenerator, AsyncIterable, AsyncIterator, List, Optional, Set, Union

from loguru import logger
from pydantic import BaseModel

from ..views.events import event_to_dict

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


class SSEFrameParser:
    """
    Incremental parser for the `data:` lines of a text/event-stream body.

    Bytes may arrive split anywhere, including inside a UTF-8 sequence or
    between `\\r` and `\\n`; incomplete lines stay buffered until their
    terminator shows up. Blank separator lines, comments and non-data fields
    are dropped.
    """

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, data: Union[bytes, str]) -> List[str]:
        if isinstance(data, bytes):
            data = self._decoder.decode(data)
        self._buffer += data

        payloads = []
        while True:
            end = self._buffer.find("\n")
            if end < 0:
                break
            line, self._buffer = self._buffer[:end], self._buffer[end + 1:]
            payload = self._parse_line(line)
            if payload is not None:
                payloads.append(payload)
        return payloads

    def flush(self) -> List[str]:
        """Returns the payload of a trailing line that never got its terminator."""
        line = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        payload = self._parse_line(line)
        return [payload] if payload is not None else []

    @staticmethod
    def _parse_line(line: str) -> Optional[str]:
        line = line.rstrip("\r")
        if not line.startswith(DATA_PREFIX):
            return None
        payload = line[len(DATA_PREFIX):]
        if payload.startswith(" "):
            payload = payload[1:]
        return payload


def extract_delta_content(payload: str) -> Optional[str]:
    """
    Pulls `choices[0].delta.content` out of one upstream record.

    Returns None for anything that is not a content increment: invalid JSON,
    role announcements, keep-alives, usage records, unexpected shapes.
    """
    try:
        record = json.loads(payload)
    except ValueError:
        logger.debug(f"Skipping malformed upstream frame: {payload[:100]}")
        return None

    if not isinstance(record, dict):
        return None
    choices = record.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return None
    delta = choices[0].get("delta")
    if not isinstance(delta, dict):
        return None
    content = delta.get("content")
    if not isinstance(content, str) or not content:
        return None
    return content


class ChunkDecoder:
    """Turns raw upstream completion bytes into content increments, stopping at `[DONE]`."""

    def __init__(self):
        self._frames = SSEFrameParser()
        self.done = False

    def feed(self, data: Union[bytes, str]) -> List[str]:
        if self.done:
            return []
        return self._extract(self._frames.feed(data))

    def close(self) -> List[str]:
        if self.done:
            return []
        return self._extract(self._frames.flush())

    def _extract(self, payloads: List[str]) -> List[str]:
        increments = []
        for payload in payloads:
            payload = payload.strip()
            if not payload:
                continue
            if payload == DONE_SENTINEL:
                self.done = True
                break
            content = extract_delta_content(payload)
            if content is not None:
                increments.append(content)
        return increments


async def decode_chunks(source: AsyncIterable[bytes]) -> AsyncGenerator[str, None]:
    """Lazily decodes an upstream byte stream. Errors raised by `source` propagate unchanged."""
    decoder = ChunkDecoder()
    async for data in source:
        for increment in decoder.feed(data):
            yield increment
        if decoder.done:
            return
    for increment in decoder.close():
        yield increment


def format_event(event: BaseModel) -> str:
    """Proper SSE format: data: {json}\\n\\n"""
    return f"{DATA_PREFIX} {json.dumps(event_to_dict(event))}\n\n"


async def encode_events(events: AsyncIterable[BaseModel]) -> AsyncGenerator[str, None]:
    async for event in events:
        yield format_event(event)


_END = object()
_background_tasks: Set[asyncio.Task] = set()


async def detach_events(events: AsyncIterator) -> AsyncGenerator:
    """
    Drives `events` in its own task and relays what it produces.

    If the consumer goes away (client disconnect cancels the response), the
    task keeps running to the end and its remaining output is dropped, so an
    exchange still reaches its commit.
    """
    queue: asyncio.Queue = asyncio.Queue()

    async def pump():
        try:
            async for event in events:
                queue.put_nowait(event)
        except Exception as e:
            logger.exception("Detached event producer failed")
            queue.put_nowait(e)
        finally:
            queue.put_nowait(_END)

    task = asyncio.create_task(pump())
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)

    while True:
        item = await queue.get()
        if item is _END:
            break
        if isinstance(item, Exception):
            raise item
        yield item

import base64
import json
from typing import AsyncGenerator, Dict, List, Optional, Sequence
from urllib.parse import unquote

import httpx
import openai
from loguru import logger
from openai import AsyncOpenAI

from ..core.config import settings
from ..core.exceptions import UpstreamError, UpstreamMalformed, UpstreamUnavailable
from ..core.langfuse_client import langfuse
from ..models.message import MessageRole
from ..utils.stream import decode_chunks
from ..views.message import Attachment, ChatMessage


def _is_text_type(mime_type: str) -> bool:
    mime_type = mime_type.lower()
    return mime_type.startswith("text/") or "json" in mime_type


def attachment_text(attachment: Attachment) -> Optional[str]:
    """Decoded body of a plain-text attachment, or None when it has no readable text."""
    if not _is_text_type(attachment.mime_type):
        return None
    if attachment.text_content is not None:
        return attachment.text_content
    if attachment.url and attachment.url.startswith("data:"):
        header, _, data = attachment.url.partition(",")
        if header.endswith(";base64"):
            try:
                return base64.b64decode(data).decode("utf-8")
            except (ValueError, UnicodeDecodeError):
                logger.warning(f"Could not decode text attachment {attachment.name}")
                return None
        return unquote(data)
    return None


def describe_attachment(attachment: Attachment) -> str:
    body = attachment_text(attachment)
    if body is not None:
        return f"File: {attachment.name}\nContent: {body}"
    return f"File: {attachment.name} ({attachment.mime_type})"


def augment_content(text: str, attachments: Optional[Sequence[Attachment]]) -> str:
    if not attachments:
        return text
    descriptions = "\n\n".join(describe_attachment(a) for a in attachments)
    return f"{text}\n\n[User has attached the following files:\n{descriptions}]"


def build_history(messages: Sequence[ChatMessage], system_prompt: str) -> List[Dict[str, str]]:
    """
    Maps stored messages to the upstream `{role, content}` shape behind one system
    instruction. Only the driving (last) user message gets its attachments
    described; everything else is sent exactly as stored.
    """
    driving_index = None
    for index in range(len(messages) - 1, -1, -1):
        if messages[index].role == MessageRole.USER:
            driving_index = index
            break

    history = [{"role": "system", "content": system_prompt}]
    for index, message in enumerate(messages):
        content = message.content
        if index == driving_index:
            content = augment_content(content, message.attachments)
        history.append({"role": message.role.value, "content": content})
    return history


def parse_completion_body(body: str) -> str:
    try:
        payload = json.loads(body)
    except ValueError:
        raise UpstreamMalformed("Completion body is not JSON")
    try:
        content = payload["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        raise UpstreamMalformed("Completion body has no choices[0].message.content")
    if not isinstance(content, str):
        raise UpstreamMalformed("Completion content is not a string")
    return content


def _error_body(error: openai.APIStatusError) -> str:
    try:
        return error.response.text
    except httpx.ResponseNotRead:
        return str(error.body)


def _translate(error: Exception) -> UpstreamError:
    if isinstance(error, openai.APIStatusError):
        body = _error_body(error)
        logger.error(f"Upstream returned {error.status_code}: {body}")
        return UpstreamUnavailable(
            f"Upstream returned {error.status_code}", status_code=error.status_code, body=body
        )
    if isinstance(error, openai.APIResponseValidationError):
        logger.error(f"Upstream response failed validation: {error}")
        return UpstreamMalformed(str(error))
    logger.error(f"Upstream connection failed: {type(error).__name__}: {error}")
    return UpstreamUnavailable(str(error))


UPSTREAM_FAILURES = (openai.APIError, httpx.HTTPError)


class CompletionClient:
    """Request/response wrapper around an OpenAI-compatible chat completions API."""

    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        system_prompt: Optional[str] = None,
    ):
        self.client = client or AsyncOpenAI(
            api_key=settings.UPSTREAM_API_KEY,
            base_url=settings.UPSTREAM_BASE_URL,
            timeout=settings.UPSTREAM_TIMEOUT,
            max_retries=settings.UPSTREAM_MAX_RETRIES,
        )
        self.model = model or settings.UPSTREAM_MODEL
        self.max_tokens = max_tokens or settings.UPSTREAM_MAX_TOKENS
        self.temperature = settings.UPSTREAM_TEMPERATURE if temperature is None else temperature
        self.system_prompt = system_prompt or settings.SYSTEM_PROMPT

    def build_history(self, messages: Sequence[ChatMessage]) -> List[Dict[str, str]]:
        return build_history(messages, self.system_prompt)

    def _request_params(self, history: List[Dict[str, str]], stream: bool) -> dict:
        return dict(
            model=self.model,
            messages=history,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            stream=stream,
        )

    async def stream_completion(self, history: List[Dict[str, str]]) -> AsyncGenerator[str, None]:
        """Streams content increments; raises UpstreamUnavailable before or during the read."""
        with langfuse.start_as_current_generation(
            name="upstream-stream-completion",
            input=history,
            model=self.model,
        ) as generation:
            final_content = ""
            try:
                async with self.client.chat.completions.with_streaming_response.create(
                    **self._request_params(history, stream=True)
                ) as response:
                    async for increment in decode_chunks(response.iter_bytes()):
                        final_content += increment
                        yield increment
            except UPSTREAM_FAILURES as e:
                error = _translate(e)
                generation.update(level="ERROR", status_message=str(error))
                raise error from e
            generation.update(output=final_content)

    async def complete(self, history: List[Dict[str, str]]) -> str:
        """Single-shot completion returning the whole reply."""
        with langfuse.start_as_current_generation(
            name="upstream-completion",
            input=history,
            model=self.model,
        ) as generation:
            try:
                raw = await self.client.chat.completions.with_raw_response.create(
                    **self._request_params(history, stream=False)
                )
                content = parse_completion_body(raw.http_response.text)
            except UPSTREAM_FAILURES as e:
                error = _translate(e)
                generation.update(level="ERROR", status_message=str(error))
                raise error from e
            except UpstreamMalformed as e:
                logger.error(f"Upstream completion was malformed: {e}")
                generation.update(level="ERROR", status_message=str(e))
                raise
            generation.update(output=content)
            return content

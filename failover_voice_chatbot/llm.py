#!/usr/bin/env python3
"""
Chat collaborators and conversation management for the Failover Voice Chatbot.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional, Sequence, Tuple

import httpx
import ollama

from .config import default_config
from .errors import ChatTransportError
from .trace import TraceBuffer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Message:
    role: Literal["user", "assistant"]
    content: str

    def as_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


def build_messages(system_prompt: str, message: str, history: Sequence[Message]) -> List[Dict[str, Any]]:
    """System prompt, then the forwarded history oldest-first, then the new message."""
    messages = [{"role": "system", "content": system_prompt.strip()}]
    messages.extend(m.as_dict() for m in history)
    messages.append({"role": "user", "content": message})
    return messages


class ChatClient:
    """Remote chat collaborator: ``(message, history) -> reply text``."""

    async def reply(self, message: str, history: Sequence[Message]) -> str:  # pragma: no cover - interface
        raise NotImplementedError

    async def close(self):
        pass


class NIMChatClient(ChatClient):
    """OpenAI-compatible chat completions on NVIDIA NIM."""

    def __init__(self, config=None, client: Optional[httpx.AsyncClient] = None):
        self.config = config or default_config
        self._client = client or httpx.AsyncClient(timeout=self.config.chat_timeout_sec)

    async def reply(self, message: str, history: Sequence[Message]) -> str:
        if not self.config.nvidia_api_key:
            raise ChatTransportError("no NVIDIA API key configured")
        payload = {
            "model": self.config.nim_chat_model,
            "messages": build_messages(self.config.system_prompt, message, history),
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
            "top_p": self.config.top_p,
        }
        try:
            response = await self._client.post(
                f"{self.config.nim_base_url.rstrip('/')}/chat/completions",
                headers={"Authorization": f"Bearer {self.config.nvidia_api_key}"},
                json=payload,
            )
        except httpx.HTTPError as exc:
            raise ChatTransportError(f"{type(exc).__name__}: {exc}") from exc
        if response.status_code != 200:
            raise ChatTransportError("chat completion failed", status_code=response.status_code)
        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise ChatTransportError("malformed chat completion response") from exc
        if not content or not content.strip():
            raise ChatTransportError("empty reply")
        return content.strip()

    async def close(self):
        await self._client.aclose()


class OllamaChatClient(ChatClient):
    """Local Ollama model as the chat collaborator."""

    def __init__(self, config=None, client: Optional[ollama.AsyncClient] = None):
        self.config = config or default_config
        self._client = client or ollama.AsyncClient(host=self.config.ollama_host, timeout=self.config.chat_timeout_sec)

    async def reply(self, message: str, history: Sequence[Message]) -> str:
        try:
            response = await self._client.chat(
                model=self.config.ollama_model,
                messages=build_messages(self.config.system_prompt, message, history),
                options={
                    "num_predict": self.config.max_tokens,
                    "temperature": self.config.temperature,
                    "top_p": self.config.top_p,
                },
            )
        except ollama.ResponseError as exc:
            raise ChatTransportError(exc.error, status_code=exc.status_code) from exc
        except (httpx.HTTPError, ConnectionError) as exc:
            raise ChatTransportError(f"{type(exc).__name__}: {exc}") from exc
        content = response["message"]["content"] or ""
        if not content.strip():
            raise ChatTransportError("empty reply")
        return content.strip()


def create_chat_client(config=None) -> ChatClient:
    """Factory function to create the chat collaborator based on configuration."""
    config = config or default_config
    if config.chat_backend == 'ollama':
        return OllamaChatClient(config)
    return NIMChatClient(config)


class Conversation:
    """Ordered message history and the request/response cycle with the chat service.

    Every message stays in the session; only the most recent ``history_limit``
    ones are forwarded with each request.
    """

    def __init__(self, client: ChatClient, config=None, trace: Optional[TraceBuffer] = None, synthesis=None):
        self.client = client
        self.config = config or default_config
        self.trace = trace or TraceBuffer()
        self.synthesis = synthesis
        self._messages: List[Message] = []

    @property
    def messages(self) -> Tuple[Message, ...]:
        return tuple(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def history(self) -> List[Message]:
        """Messages forwarded with the next request, oldest first."""
        limit = self.config.history_limit
        return self._messages[-limit:] if limit else []

    def add_user(self, text: str) -> Message:
        message = Message("user", text)
        self._messages.append(message)
        return message

    def add_assistant(self, text: str) -> Message:
        message = Message("assistant", text)
        self._messages.append(message)
        return message

    async def submit(self, text: str, token=None) -> Optional[Message]:
        """Send a user message and store the reply.

        A failed request stores ``config.chat_error_reply`` as the assistant
        reply. If ``token`` was cancelled while the request was outstanding,
        the reply is discarded and None is returned.
        """
        text = text.strip()
        if not text:
            raise ValueError("cannot submit an empty message")
        history = self.history()
        self.add_user(text)
        self.trace.info(f"chat: sending message with {len(history)} history message(s)")
        try:
            reply_text = await self.client.reply(text, history)
        except ChatTransportError as exc:
            self.trace.error(f"chat: {exc}")
            reply_text = self.config.chat_error_reply
        else:
            self.trace.success(f"chat: reply received ({len(reply_text)} chars)")
        if token is not None and token.cancelled:
            self.trace.info("chat: reply discarded, turn was cancelled")
            return None
        return self.add_assistant(reply_text)

    def clear(self):
        """Forget the conversation and silence any reply still being spoken."""
        self._messages.clear()
        if self.synthesis is not None:
            self.synthesis.cancel()
        self.trace.info("chat: conversation cleared")

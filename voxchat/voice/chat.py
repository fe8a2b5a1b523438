"""Gemini chat client and conversation session."""

from __future__ import annotations

import base64
import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Literal

import httpx

from .config import ChatConfig

LOGGER = logging.getLogger(__name__)


class ChatErrorKind(enum.Enum):
    RATE_LIMITED = "rate-limited"
    SAFETY_BLOCKED = "safety-blocked"
    NETWORK = "network"
    SERVER = "server"
    AUTH = "auth"
    UNKNOWN = "unknown"


USER_MESSAGES: dict[ChatErrorKind, str] = {
    ChatErrorKind.RATE_LIMITED: "Too many requests right now. Please wait a moment and try again.",
    ChatErrorKind.SAFETY_BLOCKED: "That request was blocked by the safety filter. Please rephrase it.",
    ChatErrorKind.NETWORK: "I couldn't reach the AI service. Please check your connection.",
    ChatErrorKind.SERVER: "The AI service is having trouble. Please try again later.",
    ChatErrorKind.AUTH: "The AI service rejected the API key. Please check your configuration.",
    ChatErrorKind.UNKNOWN: "Oops! Something went wrong. Please try again.",
}

GREETING_FAILURE_MESSAGE = "Sorry, I'm having trouble connecting. Please try again later."


class ChatRequestError(RuntimeError):
    """Classified failure of a chat request."""

    def __init__(self, kind: ChatErrorKind, detail: str = "") -> None:
        super().__init__(detail or kind.value)
        self.kind = kind
        self.detail = detail

    @property
    def user_message(self) -> str:
        return USER_MESSAGES[self.kind]


@dataclass(frozen=True)
class Citation:
    uri: str
    title: str | None = None


@dataclass(frozen=True)
class InlineFile:
    mime_type: str
    data: bytes


@dataclass(frozen=True)
class ChatTurn:
    role: Literal["user", "model"]
    text: str


@dataclass
class ChatReply:
    text: str
    citations: list[Citation] = field(default_factory=list)


def classify_http_status(status_code: int, body: str = "") -> ChatErrorKind:
    if status_code == 429:
        return ChatErrorKind.RATE_LIMITED
    if status_code in (401, 403):
        return ChatErrorKind.AUTH
    if status_code == 400 and "api key" in body.lower():
        return ChatErrorKind.AUTH
    if status_code >= 500:
        return ChatErrorKind.SERVER
    return ChatErrorKind.UNKNOWN


def _parse_reply(payload: dict[str, Any]) -> ChatReply:
    prompt_feedback = payload.get("promptFeedback")
    if isinstance(prompt_feedback, dict) and prompt_feedback.get("blockReason"):
        raise ChatRequestError(ChatErrorKind.SAFETY_BLOCKED, f"Prompt blocked: {prompt_feedback['blockReason']}")

    candidates = payload.get("candidates") or []
    for candidate in candidates:
        if not isinstance(candidate, dict):
            continue
        content = candidate.get("content") or {}
        parts = content.get("parts") if isinstance(content, dict) else None
        texts: list[str] = []
        if isinstance(parts, list):
            for part in parts:
                if isinstance(part, dict) and isinstance(part.get("text"), str):
                    texts.append(part["text"])
        text = "".join(texts).strip()
        if text:
            return ChatReply(text=text, citations=_parse_citations(candidate))
        if candidate.get("finishReason") == "SAFETY":
            raise ChatRequestError(ChatErrorKind.SAFETY_BLOCKED, "Response blocked by safety filter")
    raise ChatRequestError(ChatErrorKind.UNKNOWN, "Response missing content")


def _parse_citations(candidate: dict[str, Any]) -> list[Citation]:
    metadata = candidate.get("groundingMetadata")
    if not isinstance(metadata, dict):
        return []
    citations: list[Citation] = []
    seen: set[str] = set()
    for chunk in metadata.get("groundingChunks") or []:
        web = chunk.get("web") if isinstance(chunk, dict) else None
        if not isinstance(web, dict):
            continue
        uri = web.get("uri")
        if not isinstance(uri, str) or not uri or uri in seen:
            continue
        seen.add(uri)
        title = web.get("title")
        citations.append(Citation(uri=uri, title=title if isinstance(title, str) else None))
    return citations


class GeminiChatClient:
    """Call Google Gemini ``generateContent`` with the running conversation."""

    def __init__(
        self,
        config: ChatConfig,
        client: httpx.AsyncClient | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self._logger = logger or LOGGER
        self._client = client or httpx.AsyncClient(timeout=config.gemini_timeout)

    async def close(self) -> None:
        await self._client.aclose()

    async def generate(
        self,
        history: list[ChatTurn],
        message: str,
        inline_file: InlineFile | None = None,
    ) -> ChatReply:
        if not self.config.gemini_api_key:
            raise ChatRequestError(ChatErrorKind.AUTH, "GEMINI_API_KEY is not set")
        model = (self.config.gemini_model or "").strip()
        if not model:
            raise ChatRequestError(ChatErrorKind.UNKNOWN, "GEMINI_MODEL is not set")

        url = f"{self.config.gemini_base_url.rstrip('/')}/models/{model}:generateContent"
        payload = self._build_payload(history, message, inline_file)
        try:
            response = await self._client.post(
                url,
                json=payload,
                headers={"x-goog-api-key": self.config.gemini_api_key},
            )
        except httpx.TransportError as exc:
            raise ChatRequestError(ChatErrorKind.NETWORK, str(exc)) from exc

        if response.status_code >= 400:
            kind = classify_http_status(response.status_code, response.text)
            raise ChatRequestError(kind, f"Gemini HTTP error: {response.status_code}")
        try:
            body = response.json()
        except ValueError as exc:
            raise ChatRequestError(ChatErrorKind.UNKNOWN, "Gemini returned invalid JSON") from exc
        if not isinstance(body, dict):
            raise ChatRequestError(ChatErrorKind.UNKNOWN, "Gemini returned an unexpected payload")
        return _parse_reply(body)

    def _build_payload(
        self,
        history: list[ChatTurn],
        message: str,
        inline_file: InlineFile | None,
    ) -> dict[str, Any]:
        contents: list[dict[str, Any]] = [{"role": turn.role, "parts": [{"text": turn.text}]} for turn in history]
        parts: list[dict[str, Any]] = [{"text": message.strip()}]
        if inline_file is not None:
            parts.append(
                {
                    "inlineData": {
                        "mimeType": inline_file.mime_type,
                        "data": base64.b64encode(inline_file.data).decode("ascii"),
                    }
                }
            )
        contents.append({"role": "user", "parts": parts})

        payload: dict[str, Any] = {"contents": contents}
        if self.config.system_prompt:
            payload["system_instruction"] = {"parts": [{"text": self.config.system_prompt}]}
        if self.config.search_grounding:
            payload["tools"] = [{"google_search": {}}]
        return payload


class ChatSession:
    """Keeps the conversation history and sends turns through the client."""

    def __init__(
        self,
        client: GeminiChatClient,
        config: ChatConfig,
        *,
        log_turns: bool = True,
        logger: logging.Logger | None = None,
    ) -> None:
        self.client = client
        self.config = config
        self.log_turns = log_turns
        self.logger = logger or LOGGER
        self.history: list[ChatTurn] = []

    async def send(self, message: str, inline_file: InlineFile | None = None) -> ChatReply:
        """Send a user message; history only grows when the request succeeds."""
        text = message.strip()
        if not text:
            raise ValueError("Cannot send an empty message")
        if self.log_turns:
            self.logger.info("[chat] user: %s", text)
        try:
            reply = await self.client.generate(list(self.history), text, inline_file)
        except ChatRequestError as exc:
            self.logger.warning("[chat] Request failed (%s): %s", exc.kind.value, exc.detail)
            raise
        self.history.append(ChatTurn(role="user", text=text))
        self.history.append(ChatTurn(role="model", text=reply.text))
        if self.log_turns:
            self.logger.info("[chat] model: %s", reply.text)
        return reply

    async def greet(self) -> ChatReply:
        return await self.send(self.config.greeting_prompt)

    async def continue_monologue(self) -> ChatReply:
        return await self.send(self.config.monologue_prompt)

    def reset(self) -> None:
        self.history.clear()

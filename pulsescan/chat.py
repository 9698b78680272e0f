import logging
from typing import List, Optional

from pydantic import BaseModel, ValidationError

from pulseutils.errors import MalformedResponse, PulseScanError, ServerError

from .upload import decode_json, post

_logger = logging.getLogger(__name__)

CHAT_TIMEOUT_S = 50.0
NO_REPLY = "No reply from server."
CONNECT_FAILED = "Failed to connect to the bot."


class ChatMessage(BaseModel):
    role: str
    content: str


class ChatReply(BaseModel):
    reply: Optional[str] = None


class ChatSession:
    """Conversation with the assistant backend. The whole history is sent on every turn."""

    def __init__(self, http, url, timeout_s=CHAT_TIMEOUT_S) -> None:
        self.http = http
        self.url = url
        self.timeout_s = timeout_s
        self.messages: List[ChatMessage] = []
        self.loading = False

    async def send(self, text) -> Optional[ChatMessage]:
        if not text.strip() or self.loading:
            return None

        self.messages.append(ChatMessage(role="user", content=text))
        self.loading = True
        try:
            content = await self._ask() or NO_REPLY
        except PulseScanError as e:
            _logger.warning("Chat error: %s", e)
            content = CONNECT_FAILED
        finally:
            self.loading = False

        answer = ChatMessage(role="assistant", content=content)
        self.messages.append(answer)
        return answer

    async def _ask(self) -> Optional[str]:
        payload = {"messages": [m.model_dump() for m in self.messages]}
        status, text = await post(self.http, self.url, self.timeout_s, json=payload)
        if not 200 <= status < 300:
            raise ServerError(status, f"HTTP {status}")

        try:
            return ChatReply.model_validate(decode_json(text)).reply
        except ValidationError as e:
            raise MalformedResponse(text, "Unexpected response shape from server") from e

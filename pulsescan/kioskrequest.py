from typing import List, Literal

from pydantic import BaseModel, Field

from .chat import ChatMessage


class ChatRequest(BaseModel):
    messages: List[ChatMessage] = Field(min_length=1)

    def last_user_text(self):
        last = self.messages[-1]
        return last.content if last.role == "user" else None


class PermissionRequest(BaseModel):
    answer: Literal["allow", "deny", "never"]

"""Request schema for the chat relay endpoint."""

from __future__ import annotations

from typing import Any, Dict, List, Literal

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_SYSTEM_PROMPT = "You are a helpful, secure assistant."


class ChatMessage(BaseModel):
    """One message of the conversation; immutable once validated."""

    model_config = ConfigDict(frozen=True)

    role: Literal["system", "user", "assistant"]
    content: str = Field(min_length=1)

    def to_upstream(self) -> Dict[str, Any]:
        return {"role": self.role, "content": self.content}


class GenerationSettings(BaseModel):
    """Per-request generation knobs, keyed the way the browser client sends them."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    system_prompt: str = Field(default=DEFAULT_SYSTEM_PROMPT, alias="system")
    temperature: float = Field(default=0.7, ge=0, le=2, strict=True)
    max_tokens: int = Field(default=1024, ge=64, le=4096, alias="maxTokens")


class ChatRequest(BaseModel):
    """Body of POST /api/chat."""

    messages: List[ChatMessage] = Field(min_length=1)
    settings: GenerationSettings = Field(default_factory=GenerationSettings)

    def last_user_content(self) -> str:
        """Content of the most recent user message, or "" when there is none."""
        for message in reversed(self.messages):
            if message.role == "user":
                return message.content
        return ""

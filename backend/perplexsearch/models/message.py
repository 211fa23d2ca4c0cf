"""
Message model definitions.
Represents individual turns in a conversation.
"""

from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator


class Usage(BaseModel):
    """Token counters reported by a provider, normalized to one triple."""
    model_config = ConfigDict(frozen=True)

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class Attachment(BaseModel):
    """A file attached to a user turn.

    Attributes:
        name: Original filename for display.
        mime_type: MIME type (image/png, text/csv, ...).
        data: Base64 without a data-URL prefix for images, raw text otherwise.
    """
    name: str = ""
    mime_type: str = "application/octet-stream"
    data: str

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")


# Fields only an assistant turn may carry
_ASSISTANT_ONLY = ("citations", "model", "usage", "suggestions", "response_time")


class Message(BaseModel):
    """
    One conversational turn.

    ``timestamp`` (epoch milliseconds) doubles as the causal ordering key
    and as the identity of the turn inside its conversation.
    ``response_time`` is the wall-clock latency of the turn in milliseconds.
    """
    role: Literal["user", "assistant", "system"]
    content: str = ""
    timestamp: int
    citations: Optional[List[str]] = None
    model: Optional[str] = None
    response_time: Optional[int] = None
    usage: Optional[Usage] = None
    suggestions: Optional[List[str]] = None
    attachments: List[Attachment] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(protected_namespaces=())

    @model_validator(mode="after")
    def _assistant_fields_only_on_assistant(self) -> "Message":
        if self.role != "assistant":
            carried = [f for f in _ASSISTANT_ONLY if getattr(self, f) is not None]
            if carried:
                raise ValueError(
                    f"{self.role} messages cannot carry {', '.join(carried)}"
                )
        return self

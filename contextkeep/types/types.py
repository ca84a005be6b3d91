"""Type definitions for conversation messages and model stream chunks."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class ApiMessage(BaseModel):
    """One turn of the stored conversation log.

    ``ts`` is the only stable identity of a message. Summary and truncation
    bookkeeping lives in the marker fields; content is never interpreted.
    """

    model_config = ConfigDict(extra="ignore")

    role: Literal["user", "assistant"]
    content: Any = ""
    ts: int | float | None = None

    # Set only on a summary message
    is_summary: bool = False
    condense_id: str | None = None
    # Set on a message that was condensed away
    condense_parent: str | None = None

    # Sliding-window truncation counterparts
    is_truncation_marker: bool = False
    truncation_id: str | None = None
    truncation_parent: str | None = None

    def to_api_dict(self) -> dict[str, Any]:
        """Strip bookkeeping fields, leaving the provider-facing message."""
        return {"role": self.role, "content": self.content}


class ApiStreamTextChunk(BaseModel):
    """A piece of generated text."""

    type: Literal["text"] = "text"
    text: str = ""


class ApiStreamUsageChunk(BaseModel):
    """Usage reported by the model, usually once near the end of a stream."""

    type: Literal["usage"] = "usage"
    input_tokens: int = 0
    output_tokens: int = 0
    total_cost: float | None = None


ApiStreamChunk = ApiStreamTextChunk | ApiStreamUsageChunk


class ModelInfo(BaseModel):
    """Static facts about the model behind a handle."""

    id: str
    context_window: int = 200_000
    max_tokens: int | None = None
    input_price: float | None = Field(default=None, description="USD per million input tokens")
    output_price: float | None = Field(default=None, description="USD per million output tokens")

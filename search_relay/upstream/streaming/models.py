"""
Streaming dataclasses and upstream record schemas.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict


class DecoderStatus(Enum):
    """Decoder lifecycle states."""
    OPEN = "open"
    CLOSED = "closed"


class ChunkDelta(BaseModel):
    """Incremental fields of one streamed choice. Unknown keys are kept."""
    model_config = ConfigDict(extra="allow")

    content: str | None = None
    reasoning_content: str | None = None


class ChunkChoice(BaseModel):
    model_config = ConfigDict(extra="allow")

    index: int | None = None
    delta: ChunkDelta | None = None
    finish_reason: str | None = None


class ChatCompletionChunk(BaseModel):
    """One `data:` record of an OpenAI-compatible chat completion stream."""
    model_config = ConfigDict(extra="allow")

    id: str | None = None
    model: str | None = None
    choices: list[ChunkChoice] | None = None

    @property
    def first_delta(self) -> ChunkDelta | None:
        if not self.choices:
            return None
        return self.choices[0].delta


@dataclass(frozen=True)
class StreamEvent:
    """One emitted unit of incremental content."""
    content: str | None
    reasoning_content: str | None
    record: dict[str, Any]

    @classmethod
    def from_chunk(
        cls, chunk: ChatCompletionChunk, record: dict[str, Any]
    ) -> StreamEvent | None:
        """Build an event, or None when the chunk carries no content."""
        delta = chunk.first_delta
        if delta is None or not (delta.content or delta.reasoning_content):
            return None
        return cls(
            content=delta.content or None,
            reasoning_content=delta.reasoning_content or None,
            record=record,
        )


@dataclass
class DecoderState:
    """Partial-line remainder carried across chunk boundaries."""
    remainder: str = ""

    def clear(self) -> None:
        self.remainder = ""


@dataclass
class DecoderStats:
    """Counters for one decoding session."""
    chunks: int = 0
    lines: int = 0
    events: int = 0
    malformed: int = 0
    dropped_empty: int = 0
    discarded_remainder: bool = False
    errors: list[str] = field(default_factory=list)

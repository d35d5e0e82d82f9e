from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Optional

from pydantic import BaseModel, Field

from arena_pilot.config import CONFIG


class AcquisitionPhase(str, enum.Enum):
    IDLE = "idle"
    ARMED = "armed"
    STREAMING = "streaming"
    STALLED = "stalled"
    COMPLETE = "complete"


class AcquisitionOutcome(str, enum.Enum):
    COMPLETE = "complete"
    STALLED = "stalled"
    PARTIAL = "partial"
    RATE_LIMITED = "rate_limited"


class ChannelKind(str, enum.Enum):
    NETWORK = "network"
    CONTENT = "content"


class SourceLink(BaseModel):
    title: str
    url: str


class SourceSnapshot(BaseModel):
    """What one response source currently sees for the in-flight answer."""
    channel: ChannelKind
    text: str = ""
    active: bool = False
    done: bool = False
    image_url: Optional[str] = None
    chat_id: Optional[str] = None
    sources: list[SourceLink] = Field(default_factory=list)
    rate_limited: bool = False


@dataclass
class TokenEvent:
    """Incremental update delivered to consumers while an answer streams."""
    full_text: str
    delta: str
    image_url: Optional[str] = None
    chat_id: Optional[str] = None
    sources: list[SourceLink] = field(default_factory=list)
    # Everything delivered before this event belongs to an abandoned attempt.
    restart: bool = False


@dataclass
class StreamState:
    """Accumulated answer for the current outbound message.

    `text` only ever grows between two `reset()` calls; a shorter snapshot is ignored.
    """
    text: str = ""
    cursor: int = 0
    done: bool = False
    active: bool = False

    def reset(self) -> None:
        self.text = ""
        self.cursor = 0
        self.done = False
        self.active = False

    def advance(self, snapshot: str) -> str:
        """Accept a longer snapshot and return the unseen suffix."""
        if len(snapshot) <= len(self.text):
            return ""
        self.text = snapshot
        delta = self.text[self.cursor:]
        self.cursor = len(self.text)
        return delta


class PollResult(BaseModel):
    phase: AcquisitionPhase
    active: bool
    delta: str = ""
    event: Optional[TokenEvent] = None
    result: Optional["AcquisitionResult"] = None

    model_config = {"arbitrary_types_allowed": True}


class AcquisitionResult(BaseModel):
    text: str
    image_url: Optional[str] = None
    sources: list[SourceLink] = Field(default_factory=list)
    chat_id: Optional[str] = None
    outcome: AcquisitionOutcome = AcquisitionOutcome.COMPLETE
    channel: Optional[ChannelKind] = None
    cancelled: bool = False

    @property
    def response(self) -> str:
        """The answer text with the image reference and numbered source list appended."""
        final = self.text
        if self.image_url:
            final += f"\n\n![Generated Image]({self.image_url})"
        if self.sources:
            final += "\n\n---\n\n**Sources:**\n"
            for i, src in enumerate(self.sources, start=1):
                final += f"{i}. [{src.title}]({src.url})\n"
        return final

    @property
    def is_partial(self) -> bool:
        return self.outcome in (AcquisitionOutcome.STALLED, AcquisitionOutcome.PARTIAL)


PollResult.model_rebuild()


class AcquisitionSettings(BaseModel):
    poll_interval: float = Field(0.05, gt=0, description="Seconds between two polls of the response sources")
    stall_ticks: int = Field(20, ge=1, description="Unchanged content-channel ticks that mark an answer complete")
    stream_stall_ticks: int = Field(300, ge=1, description="Unchanged ticks while the network stream is active before returning the partial")
    initial_grace_seconds: float = Field(30.0, ge=0, description="Silence allowed before the one-off fallback read of the answer region")
    message_timeout_seconds: float = Field(300.0, gt=0, description="Hard ceiling for one message")
    challenge_timeout_seconds: float = Field(600.0, gt=0, description="Ceiling for a wait that included challenge recovery")
    min_fallback_chars: int = Field(10, ge=0)

    @classmethod
    def from_config(cls) -> "AcquisitionSettings":
        return cls(
            poll_interval=CONFIG.ARENA_POLL_INTERVAL,
            stall_ticks=CONFIG.ARENA_STALL_TICKS,
            stream_stall_ticks=CONFIG.ARENA_STREAM_STALL_TICKS,
            initial_grace_seconds=CONFIG.ARENA_INITIAL_GRACE_SECONDS,
            message_timeout_seconds=CONFIG.ARENA_MESSAGE_TIMEOUT_SECONDS,
            challenge_timeout_seconds=CONFIG.ARENA_CHALLENGE_TIMEOUT_SECONDS,
        )

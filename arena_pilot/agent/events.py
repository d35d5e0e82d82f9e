from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from arena_pilot.agent.views import StepResult


@dataclass
class Event:
    """Base event for plan progress reporting."""
    step_token: int
    plan_id: str = "root"
    timestamp: float = field(default_factory=time.monotonic)


@dataclass
class StatusUpdate(Event):
    status: str = field(default="")
    message: str = field(default="")


@dataclass
class StepStarted(Event):
    action: str = field(default="")
    model: Optional[str] = field(default=None)
    attempt: int = field(default=1)


@dataclass
class StepCompleted(Event):
    result: Optional[StepResult] = field(default=None)


@dataclass
class StepFailed(Event):
    error: str = field(default="")
    attempts: int = field(default=0)
    final: bool = field(default=False)  # False while retries remain


@dataclass
class ToolResult(Event):
    tool: str = field(default="")
    target: str = field(default="")
    outcome: dict[str, Any] = field(default_factory=dict)


@dataclass
class TokenDelta(Event):
    delta: str = field(default="")
    full_length: int = field(default=0)
    restart: bool = field(default=False)


@dataclass
class PlanCompleted(Event):
    status: str = field(default="completed")
    succeeded: int = field(default=0)
    failed: int = field(default=0)

from __future__ import annotations

import enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from uuid_extensions import uuid7str

from arena_pilot.stream.views import AcquisitionOutcome, SourceLink


class PlanStatus(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_PLAN_STATES = {PlanStatus.COMPLETED, PlanStatus.FAILED}


class ToolKind(str, enum.Enum):
    CREATE_FILE = "create_file"
    WRITE_FILE = "write_file"
    EDIT_FILE = "edit_file"
    READ_FILE = "read_file"
    RUN_COMMAND = "run_command"
    GREP = "grep"

    @property
    def writes(self) -> bool:
        return self in (ToolKind.CREATE_FILE, ToolKind.WRITE_FILE, ToolKind.EDIT_FILE)


class ToolInvocation(BaseModel):
    """A structured action request parsed out of a model answer."""
    kind: ToolKind
    path: Optional[str] = None
    content: Optional[str] = None
    command: Optional[str] = None
    query: Optional[str] = None
    outcome: Optional[dict[str, Any]] = None

    @property
    def target(self) -> str:
        return self.path or self.command or self.query or ""


class Step(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    step: int = Field(..., ge=1, description="1-based position in the plan")
    action: str
    type: str = "coding"
    model: Optional[str] = Field(None, description="Pinned model id; overrides orchestrator selection")
    verification: Optional[str] = None


class StepResult(BaseModel):
    step: int
    action: str
    model: Optional[str] = None
    success: bool
    output: Optional[str] = None
    error: Optional[str] = None
    tool_results: list[ToolInvocation] = Field(default_factory=list)
    attempts: int = 1


class Plan(BaseModel):
    id: str = Field(default_factory=uuid7str)
    goal: str
    steps: list[Step]
    status: PlanStatus = PlanStatus.PENDING
    cursor: int = Field(-1, description="Index of the step currently (or last) executed; -1 before the first")

    @property
    def total_steps(self) -> int:
        return len(self.steps)


class SendResult(BaseModel):
    """What a presentation layer receives for one message."""
    response: str
    text: str
    sources: list[SourceLink] = Field(default_factory=list)
    chat_id: Optional[str] = None
    image_url: Optional[str] = None
    outcome: AcquisitionOutcome = AcquisitionOutcome.COMPLETE
    attempts: int = 1

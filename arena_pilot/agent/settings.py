from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field

from arena_pilot.config import CONFIG
from arena_pilot.stream.views import AcquisitionSettings

__all__ = ['AcquisitionSettings', 'SupervisorSettings', 'ExecutorSettings']


class SupervisorSettings(BaseModel):
    max_attempts: int = Field(3, ge=1, description="Send attempts per message before a terminal failure.")
    transient_retry_delay: float = Field(2.0, ge=0, description="Pause before retrying after a lost connection or detached context.")
    challenge_check_every: int = Field(10, ge=1, description="Check for an anti-bot challenge every K polls.")
    challenge_settle_seconds: float = Field(3.0, ge=0)
    navigation_settle_seconds: float = Field(1.5, ge=0, description="Pause after a challenge check hit a page that was mid-navigation.")
    input_wait_seconds: float = Field(10.0, ge=0, description="How long to wait for the input to reappear after a challenge.")
    lease_timeout: float | None = Field(None, description="Max wait for the session's send lease; None waits forever.")

    @classmethod
    def from_config(cls) -> "SupervisorSettings":
        return cls(
            max_attempts=CONFIG.ARENA_MAX_ATTEMPTS,
            transient_retry_delay=CONFIG.ARENA_TRANSIENT_RETRY_DELAY,
            challenge_check_every=CONFIG.ARENA_CHALLENGE_CHECK_EVERY,
            challenge_settle_seconds=CONFIG.ARENA_CHALLENGE_SETTLE_SECONDS,
            navigation_settle_seconds=CONFIG.ARENA_NAVIGATION_SETTLE_SECONDS,
        )


class ExecutorSettings(BaseModel):
    max_step_retries: int = Field(3, ge=1)
    backoff_base: float = Field(2.0, ge=0, description="Backoff before retry n is backoff_base ** n seconds; 0 disables it.")
    context_window: int = Field(3, ge=0, description="How many previous step results feed the next step prompt.")
    workspace_dir: Path = Field(default_factory=lambda: Path('.'))

    @classmethod
    def from_config(cls) -> "ExecutorSettings":
        return cls(
            max_step_retries=CONFIG.ARENA_STEP_MAX_RETRIES,
            backoff_base=CONFIG.ARENA_STEP_BACKOFF_BASE,
            workspace_dir=Path(CONFIG.ARENA_WORKSPACE_DIR).expanduser(),
        )

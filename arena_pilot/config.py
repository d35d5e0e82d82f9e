"""Environment-driven configuration for arena_pilot.

Every tunable threshold lives here so the polling, stall and challenge timings can be
adjusted without code changes. Values are re-read from the environment (and `.env`) on each
attribute access of `CONFIG`, which keeps tests able to monkeypatch variables.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class FlatEnvConfig(BaseSettings):
	"""All environment variables in a flat namespace."""

	model_config = SettingsConfigDict(env_file='.env', env_file_encoding='utf-8', case_sensitive=True, extra='allow')

	# Logging
	ARENA_LOGGING_LEVEL: str = Field(default='info')
	ARENA_SETUP_LOGGING: bool = Field(default=True)

	# Upstream target
	ARENA_BASE_URL: str = Field(default='https://lmarena.ai')
	ARENA_DEFAULT_MODEL: str = Field(default='gemini-3-pro')

	# Browser / identity
	ARENA_PROFILE_DIR: str = Field(default='~/.config/arena_pilot/profiles/default')
	ARENA_TEMPLATE_PROFILE_DIR: str | None = Field(default=None)
	ARENA_HEADLESS: bool = Field(default=False)
	ARENA_STEALTH: bool = Field(default=True)
	ARENA_EXECUTABLE_PATH: str | None = Field(default=None)
	ARENA_BLOCK_RESOURCES: bool = Field(default=False)
	ARENA_THIN_DOM: bool = Field(default=True)
	ARENA_PRESENCE_MIN_SECONDS: float = Field(default=15.0)
	ARENA_PRESENCE_MAX_SECONDS: float = Field(default=25.0)

	# Response acquisition
	ARENA_POLL_INTERVAL: float = Field(default=0.05)
	ARENA_STALL_TICKS: int = Field(default=20)
	ARENA_STREAM_STALL_TICKS: int = Field(default=300)
	ARENA_INITIAL_GRACE_SECONDS: float = Field(default=30.0)
	ARENA_MESSAGE_TIMEOUT_SECONDS: float = Field(default=300.0)

	# Retry / challenge recovery
	ARENA_MAX_ATTEMPTS: int = Field(default=3)
	ARENA_TRANSIENT_RETRY_DELAY: float = Field(default=2.0)
	ARENA_CHALLENGE_CHECK_EVERY: int = Field(default=10)
	ARENA_CHALLENGE_SETTLE_SECONDS: float = Field(default=3.0)
	ARENA_NAVIGATION_SETTLE_SECONDS: float = Field(default=1.5)
	ARENA_CHALLENGE_TIMEOUT_SECONDS: float = Field(default=600.0)

	# Autonomy
	ARENA_STEP_MAX_RETRIES: int = Field(default=3)
	ARENA_STEP_BACKOFF_BASE: float = Field(default=2.0)
	ARENA_WORKSPACE_DIR: str = Field(default='.')


class Config:
	"""Lazy view over FlatEnvConfig, re-reading the environment on each access."""

	def __getattr__(self, name: str):
		env_config = FlatEnvConfig()
		if name in FlatEnvConfig.model_fields or hasattr(env_config, name):
			return getattr(env_config, name)
		raise AttributeError(f"'Config' object has no attribute '{name}'")

	@property
	def profile_dir(self) -> Path:
		return Path(FlatEnvConfig().ARENA_PROFILE_DIR).expanduser().resolve()

	@property
	def template_profile_dir(self) -> Path | None:
		raw = FlatEnvConfig().ARENA_TEMPLATE_PROFILE_DIR
		return Path(raw).expanduser().resolve() if raw else None


CONFIG = Config()

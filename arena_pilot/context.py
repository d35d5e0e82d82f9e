"""Explicit wiring of one session and every component that shares it."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Optional

from arena_pilot.agent.executor import AutonomyStepExecutor
from arena_pilot.agent.orchestrator import ModelOrchestrator
from arena_pilot.agent.prompts import SystemPrompt
from arena_pilot.agent.service import ArenaClient
from arena_pilot.agent.settings import ExecutorSettings, SupervisorSettings
from arena_pilot.agent.supervisor import RetrySupervisor
from arena_pilot.agent.tools import ToolExecutor, WorkspaceToolExecutor
from arena_pilot.browser.composer import MessageComposer
from arena_pilot.browser.profile import SessionProfile
from arena_pilot.browser.router import ModelRouter
from arena_pilot.browser.session import SessionController
from arena_pilot.stream.engine import ResponseAcquisitionEngine
from arena_pilot.stream.views import AcquisitionSettings
from arena_pilot.timing import Clock

logger = logging.getLogger(__name__)


class SessionContext:
	"""
	Owns the session controller and the components built on it.

	Pass the context (or the component you need from it) explicitly; nothing in arena_pilot
	reaches for module-level state.
	"""

	def __init__(
		self,
		profile: Optional[SessionProfile] = None,
		acquisition: Optional[AcquisitionSettings] = None,
		supervisor: Optional[SupervisorSettings] = None,
		executor: Optional[ExecutorSettings] = None,
		tools: Optional[ToolExecutor] = None,
		event_bus: Optional[asyncio.Queue] = None,
		default_model: Optional[str] = None,
		clock: Optional[Clock] = None,
		session: Optional[SessionController] = None,
		system_prompt: Optional[SystemPrompt] = None,
	):
		self.session = session or SessionController(profile=profile or SessionProfile())
		self.router = ModelRouter(self.session)
		self.engine = ResponseAcquisitionEngine(self.session, settings=acquisition)
		self.supervisor = RetrySupervisor(self.session, self.engine, MessageComposer(), settings=supervisor)
		self.client = ArenaClient(self.session, self.router, self.supervisor, default_model=default_model)
		self.orchestrator = ModelOrchestrator(clock=clock) if clock is not None else ModelOrchestrator()
		executor_settings = executor or ExecutorSettings.from_config()
		workspace = Path(executor_settings.workspace_dir)
		self.executor = AutonomyStepExecutor(
			self.client,
			self.orchestrator,
			tools=tools or WorkspaceToolExecutor(workspace),
			settings=executor_settings,
			event_bus=event_bus,
			system_prompt=system_prompt or SystemPrompt(str(workspace.expanduser().resolve())),
		)

	def __repr__(self) -> str:
		return f'SessionContext(session={self.session!r}, model={self.router.current_model})'

	async def start(self, model_id: Optional[str] = None) -> dict[str, Any]:
		return await self.client.initialize(model_id)

	async def close(self) -> None:
		if self.executor.is_running:
			self.executor.halt()
		await self.client.close()

	async def __aenter__(self) -> SessionContext:
		return self

	async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
		await self.close()

"""
Autonomy step executor.

Plan states: pending -> running -> completed | failed | paused.

Steps run strictly in order. A step that exhausts its retries is recorded as failed and the
plan moves on; only an explicit `halt()` (or an unexpected error escaping the loop) marks the
plan failed. `pause()` is honoured between steps, never in the middle of one.
"""
from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Optional

from arena_pilot.agent.events import (
    Event,
    PlanCompleted,
    StatusUpdate,
    StepCompleted,
    StepFailed,
    StepStarted,
    TokenDelta,
    ToolResult,
)
from arena_pilot.agent.planner import Planner
from arena_pilot.agent.prompts import SystemPrompt, step_prompt, with_system_prompt
from arena_pilot.agent.settings import ExecutorSettings
from arena_pilot.agent.tools import ToolExecutor, WorkspaceToolExecutor, parse_tool_calls
from arena_pilot.agent.views import TERMINAL_PLAN_STATES, Plan, PlanStatus, Step, StepResult, ToolInvocation
from arena_pilot.exceptions import PlanStateError

if TYPE_CHECKING:
    from arena_pilot.agent.orchestrator import ModelOrchestrator
    from arena_pilot.agent.service import ArenaClient
    from arena_pilot.stream.views import TokenEvent

logger = logging.getLogger(__name__)


class AutonomyStepExecutor:
    def __init__(
        self,
        client: ArenaClient,
        orchestrator: ModelOrchestrator,
        tools: Optional[ToolExecutor] = None,
        settings: Optional[ExecutorSettings] = None,
        event_bus: Optional[asyncio.Queue] = None,
        system_prompt: Optional[SystemPrompt] = None,
    ):
        self.client = client
        self.orchestrator = orchestrator
        self.settings = settings or ExecutorSettings.from_config()
        self.tools: ToolExecutor = tools or WorkspaceToolExecutor(self.settings.workspace_dir)
        self.event_bus = event_bus
        self.planner = Planner(client, orchestrator)
        self.system_prompt = system_prompt.render() if system_prompt is not None else None

        self.plan: Optional[Plan] = None
        self.step_results: list[StepResult] = []
        self.is_running = False
        self._pause_requested = False
        self._halt_requested = False

    @property
    def current_step(self) -> int:
        return self.plan.cursor if self.plan else -1

    # --- events ------------------------------------------------------------------------

    def _emit(self, event: Event) -> None:
        if self.event_bus is None:
            return
        try:
            self.event_bus.put_nowait(event)
        except asyncio.QueueFull:
            logger.debug(f"Event bus full, dropped {type(event).__name__}")

    def _status(self, message: str, step_token: int = 0) -> None:
        logger.info(f"🤖 {message}")
        self._emit(StatusUpdate(
            step_token=step_token,
            plan_id=self.plan.id if self.plan else "root",
            status=self.plan.status.value if self.plan else "",
            message=message,
        ))

    def _token_forwarder(self, step_token: int):
        plan_id = self.plan.id if self.plan else "root"

        def forward(event: TokenEvent) -> None:
            if event.delta or event.restart:
                self._emit(TokenDelta(
                    step_token=step_token,
                    plan_id=plan_id,
                    delta=event.delta,
                    full_length=len(event.full_text),
                    restart=event.restart,
                ))

        return forward

    # --- planning ----------------------------------------------------------------------

    async def generate_plan(self, goal: str, context: Any = None) -> Plan:
        if self.is_running:
            raise PlanStateError("Cannot replace the plan while it is executing")
        self._status("Generating execution plan...")
        plan = await self.planner.generate(goal, context, on_token=self._token_forwarder(0))
        self.plan = plan
        self.step_results = []
        return plan

    def load_plan(self, plan: Plan) -> None:
        if self.is_running:
            raise PlanStateError("Cannot replace the plan while it is executing")
        self.plan = plan
        self.step_results = []

    # --- execution ---------------------------------------------------------------------

    async def execute_plan(self, start_from_step: int = 0, stop_after_step: Optional[int] = None) -> Plan:
        if self.plan is None:
            raise PlanStateError("No plan to execute. Generate a plan first.")
        if self.is_running:
            raise PlanStateError("Already executing a plan.")

        plan = self.plan
        self.is_running = True
        self._pause_requested = False
        self._halt_requested = False
        if start_from_step == 0:
            self.step_results = []
        plan.status = PlanStatus.RUNNING

        try:
            for index in range(start_from_step, plan.total_steps):
                if self._halt_requested:
                    plan.status = PlanStatus.FAILED
                    self._status("Execution halted by caller.", index)
                    break
                if self._pause_requested:
                    plan.status = PlanStatus.PAUSED
                    self._status("Execution paused by user.", index)
                    break
                if stop_after_step is not None and index > stop_after_step:
                    plan.status = PlanStatus.PAUSED
                    self._status(f"Stopped after step {stop_after_step + 1}.", index)
                    break

                plan.cursor = index
                await self.execute_step(plan.steps[index], index)

            if plan.status is PlanStatus.RUNNING:
                if self._halt_requested:
                    plan.status = PlanStatus.FAILED
                elif self._pause_requested and plan.cursor < plan.total_steps - 1:
                    plan.status = PlanStatus.PAUSED
                else:
                    plan.status = PlanStatus.COMPLETED
            if plan.status is PlanStatus.COMPLETED:
                succeeded = sum(1 for r in self.step_results if r.success)
                self._emit(PlanCompleted(
                    step_token=plan.cursor + 1,
                    plan_id=plan.id,
                    status=plan.status.value,
                    succeeded=succeeded,
                    failed=len(self.step_results) - succeeded,
                ))
                logger.info(f"🏁 Plan completed: {succeeded}/{len(self.step_results)} steps succeeded")
        except BaseException as e:
            plan.status = PlanStatus.FAILED
            logger.error(f"❌ Plan execution aborted: {type(e).__name__}: {e}")
            raise
        finally:
            self.is_running = False
        return plan

    async def execute_step(self, step: Step, index: int) -> StepResult:
        step_num = index + 1
        total = self.plan.total_steps if self.plan else step_num
        plan_id = self.plan.id if self.plan else "root"
        max_retries = self.settings.max_step_retries

        task_type = self.orchestrator.infer_task_type(step.action)
        model_id = self.orchestrator.select(task_type, forced_model=step.model)
        self._status(f"[{step_num}/{total}] Using {model_id} for: {step.action[:50]}", step_num)

        last_error: Optional[BaseException] = None
        for attempt in range(1, max_retries + 1):
            self._emit(StepStarted(step_token=step_num, plan_id=plan_id, action=step.action, model=model_id, attempt=attempt))
            try:
                await self.client.select_model(model_id)
                prompt = with_system_prompt(
                    self.system_prompt,
                    step_prompt(step, self.step_results, window=self.settings.context_window),
                )
                answer = await self.client.send_message(prompt, on_token=self._token_forwarder(step_num))
                tool_results = await self.execute_tool_calls(parse_tool_calls(answer.response), step_num)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                last_error = e
                self.orchestrator.report_failure(model_id)
                logger.warning(f"⚠️ Step {step_num} failed (attempt {attempt}/{max_retries}): {type(e).__name__}: {e}")
                self._emit(StepFailed(step_token=step_num, plan_id=plan_id, error=str(e), attempts=attempt, final=False))
                if attempt < max_retries:
                    wait = self.settings.backoff_base ** attempt if self.settings.backoff_base else 0.0
                    if wait:
                        self._status(f"Retrying in {wait:g}s...", step_num)
                        await asyncio.sleep(wait)
                continue

            result = StepResult(
                step=step_num,
                action=step.action,
                model=model_id,
                success=True,
                output=answer.response,
                tool_results=tool_results,
                attempts=attempt,
            )
            self.step_results.append(result)
            self.orchestrator.report_success(model_id)
            self._emit(StepCompleted(step_token=step_num, plan_id=plan_id, result=result))
            logger.info(f"✅ Step {step_num}/{total} done with {len(tool_results)} tool call(s)")
            return result

        result = StepResult(
            step=step_num,
            action=step.action,
            model=model_id,
            success=False,
            error=str(last_error) if last_error else "unknown error",
            attempts=max_retries,
        )
        self.step_results.append(result)
        self._emit(StepFailed(step_token=step_num, plan_id=plan_id, error=result.error or "", attempts=max_retries, final=True))
        self._status(f"Step {step_num} failed after {max_retries} attempts. Continuing...", step_num)
        return result

    async def execute_tool_calls(self, invocations: list[ToolInvocation], step_token: int = 0) -> list[ToolInvocation]:
        plan_id = self.plan.id if self.plan else "root"
        for invocation in invocations:
            try:
                outcome = await self.tools.execute(invocation)
            except Exception as e:
                outcome = {"success": False, "error": str(e)}
                logger.warning(f"⚠️ Tool {invocation.kind.value} failed: {e}")
            invocation.outcome = outcome
            self._emit(ToolResult(step_token=step_token, plan_id=plan_id, tool=invocation.kind.value, target=invocation.target, outcome=outcome))
        return invocations

    # --- control -----------------------------------------------------------------------

    def pause(self) -> None:
        """Stop after the step currently executing."""
        if self.is_running:
            self._pause_requested = True
            self._status("Execution pausing after current step...")
        elif self.plan is not None and self.plan.status is PlanStatus.PENDING:
            self.plan.status = PlanStatus.PAUSED

    async def resume(self) -> Optional[Plan]:
        if self.plan is None or self.is_running or self.plan.status in TERMINAL_PLAN_STATES:
            return None
        return await self.execute_plan(start_from_step=self.plan.cursor + 1)

    def halt(self) -> None:
        """Abort the plan; it ends in `failed` once the current step finishes."""
        if self.is_running:
            self._halt_requested = True
            self._status("Execution halting after current step...")
        elif self.plan is not None and self.plan.status not in TERMINAL_PLAN_STATES:
            self.plan.status = PlanStatus.FAILED

    def get_status(self) -> dict[str, Any]:
        return {
            "is_running": self.is_running,
            "current_step": self.current_step,
            "total_steps": self.plan.total_steps if self.plan else 0,
            "step_results": [r.model_dump() for r in self.step_results],
            "plan": self.plan.model_dump() if self.plan else None,
        }

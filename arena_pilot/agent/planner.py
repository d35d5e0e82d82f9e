from __future__ import annotations

import json
import logging
import re
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

from pydantic import ValidationError

from arena_pilot.agent.prompts import planner_prompt
from arena_pilot.agent.views import Plan, Step
from arena_pilot.exceptions import PlanParseError

if TYPE_CHECKING:
    from arena_pilot.agent.orchestrator import ModelOrchestrator
    from arena_pilot.agent.service import ArenaClient
    from arena_pilot.stream.views import TokenEvent

logger = logging.getLogger(__name__)

JSON_ARRAY_PATTERN = re.compile(r"\[[\s\S]*\]")


def parse_plan(goal: str, answer: str) -> Plan:
    """Extract the JSON step array from a planning answer.

    Raises PlanParseError when there is no array, it is not valid JSON, or it holds no
    well-formed steps. Missing step numbers are filled from the position in the list.
    """
    match = JSON_ARRAY_PATTERN.search(answer)
    if not match:
        raise PlanParseError("No valid plan JSON found in response")
    try:
        raw = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise PlanParseError(f"Failed to parse plan: {e}") from e
    if not isinstance(raw, list) or not raw:
        raise PlanParseError("Plan must be a non-empty JSON array")

    steps: list[Step] = []
    for index, item in enumerate(raw, start=1):
        if not isinstance(item, dict):
            raise PlanParseError(f"Plan step {index} is not an object")
        # steps run in list order, so the position wins over any model-supplied number
        item = {**{k: v for k, v in item.items() if v is not None}, "step": index}
        try:
            steps.append(Step.model_validate(item))
        except ValidationError as e:
            raise PlanParseError(f"Plan step {index} is malformed: {e.errors()[0]['msg']}") from e
    return Plan(goal=goal, steps=steps)


class Planner:
    """Sends a planning request through the client using a planning-biased model."""

    def __init__(self, client: ArenaClient, orchestrator: ModelOrchestrator):
        self.client = client
        self.orchestrator = orchestrator

    async def generate(
        self,
        goal: str,
        context: Any = None,
        on_token: Optional[Callable[[TokenEvent], Optional[Awaitable[None]]]] = None,
    ) -> Plan:
        model_id = self.orchestrator.select("planning")
        logger.info(f"🗺️ Generating plan with {model_id}")
        await self.client.select_model(model_id)
        result = await self.client.send_message(planner_prompt(goal, context), on_token=on_token)
        plan = parse_plan(goal, result.response)
        self.orchestrator.report_success(model_id)
        logger.info(f"🗺️ Plan ready: {plan.total_steps} steps")
        return plan

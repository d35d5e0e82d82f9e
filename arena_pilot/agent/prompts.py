import importlib.resources
import json
from typing import TYPE_CHECKING, Any, Iterable, Sequence

if TYPE_CHECKING:
	from arena_pilot.agent.views import Step, StepResult

AUTONOMOUS_BEHAVIOR = """
- **Continue Without Prompting:** After completing a step, immediately proceed to the next.
- **Self-Verify:** Run build/lint/test commands after changes. Fix errors before moving on.
- **Report Progress:** Output brief status updates: "✓ Created auth.js" or "✗ Build failed, fixing..."
- **Handle Failures:** If something fails 3 times, document the issue and move to the next step.
"""

INTERACTIVE_BEHAVIOR = """
- **Explain First:** Before major changes, briefly explain your plan.
- **Seek Clarification:** If requirements are ambiguous, ask ONE targeted question.
"""

FIRST_STEP_CONTEXT = 'This is the first step.'
DEFAULT_VERIFICATION = 'Verify the action completed successfully.'


def _load_template(filename: str) -> str:
	try:
		with importlib.resources.files('arena_pilot.agent').joinpath(filename).open('r', encoding='utf-8') as f:
			return f.read()
	except Exception as e:
		raise RuntimeError(f'Failed to load prompt template {filename}: {e}')


class SystemPrompt:
	"""System message for the coding agent, rendered from `system_prompt.md`."""

	def __init__(
		self,
		project_dir: str,
		working_dir: str | None = None,
		autonomous_mode: bool = True,
		active_contexts: Sequence[dict[str, str]] = (),
	):
		self.project_dir = project_dir
		self.working_dir = working_dir or project_dir
		self.autonomous_mode = autonomous_mode
		self.active_contexts = list(active_contexts)
		self.prompt_template = _load_template('system_prompt.md')

	def render(self) -> str:
		project_context = ''
		if self.active_contexts:
			sections = '\n\n'.join(f'## {ctx["name"]}\n{ctx["content"]}' for ctx in self.active_contexts)
			project_context = f'\n# Project Context\n{sections}\n'
		return self.prompt_template.format(
			project_dir=self.project_dir,
			working_dir=self.working_dir,
			mode='AUTONOMOUS (continue until complete)' if self.autonomous_mode else 'INTERACTIVE (confirm major steps)',
			behavior=AUTONOMOUS_BEHAVIOR if self.autonomous_mode else INTERACTIVE_BEHAVIOR,
			project_context=project_context,
		)


def planner_prompt(goal: str, project_context: Any = None) -> str:
	if project_context and not isinstance(project_context, str):
		project_context = json.dumps(project_context, indent=2, default=str)
	return _load_template('planner_prompt.md').format(
		goal=goal,
		project_context=project_context or 'No specific context provided.',
	)


def with_system_prompt(system: str | None, message: str) -> str:
	"""Prefix a user message with the rendered system prompt, the way chat front ends send it."""
	if not system:
		return message
	return f'{system}\n\n---\n\nUser: {message}'


def step_prompt(step: 'Step', previous_results: Iterable['StepResult'], window: int = 3) -> str:
	"""Prompt for one plan step, carrying only the last `window` results as context."""
	recent = list(previous_results)[-window:] if window else []
	context = '\n'.join(
		f'[Step {r.step}] {"✓" if r.success else "✗"} {r.action}: {"Completed" if r.success else r.error}' for r in recent
	)
	return f"""CURRENT TASK: {step.action}

CONTEXT FROM PREVIOUS STEPS:
{context or FIRST_STEP_CONTEXT}

VERIFICATION: {step.verification or DEFAULT_VERIFICATION}

Execute this step now. Use tool calls for file operations and commands.
After completion, briefly confirm what was done."""

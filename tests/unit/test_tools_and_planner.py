import json

import pytest

from arena_pilot.agent.orchestrator import ModelOrchestrator
from arena_pilot.agent.planner import Planner, parse_plan
from arena_pilot.agent.prompts import SystemPrompt, planner_prompt, step_prompt, with_system_prompt
from arena_pilot.agent.tools import WorkspaceToolExecutor, parse_tool_call, parse_tool_calls
from arena_pilot.agent.views import SendResult, Step, StepResult, ToolInvocation, ToolKind
from arena_pilot.exceptions import PlanParseError, UnparseableToolOutput
from arena_pilot.timing import ManualClock


# --- tool parsing -------------------------------------------------------------------------


def test_parse_tool_call_fields():
    invocation = parse_tool_call("<tool>edit_file</tool><path> src/a.py </path><content>\nx = 1\ny = 2\n</content>")
    assert invocation.kind is ToolKind.EDIT_FILE
    assert invocation.path == "src/a.py"
    assert invocation.content == "x = 1\ny = 2"
    assert invocation.kind.writes


def test_parse_tool_call_keeps_inner_blank_lines():
    invocation = parse_tool_call("<tool>write_file</tool><path>a</path><content>\n\nbody\n\n</content>")
    assert invocation.content == "\nbody\n"


def test_parse_tool_call_rejects_missing_or_unknown_tool():
    with pytest.raises(UnparseableToolOutput):
        parse_tool_call("<path>a.py</path>")
    with pytest.raises(UnparseableToolOutput) as exc_info:
        parse_tool_call("<tool>format_disk</tool>")
    assert "format_disk" in exc_info.value.raw


def test_parse_tool_calls_skips_bad_blocks():
    answer = (
        "<tool_call><tool>read_file</tool><path>a.txt</path></tool_call>"
        "<tool_call><tool>launch_rockets</tool></tool_call>"
        "<tool_call><tool>grep</tool><query>TODO</query></tool_call>"
    )
    kinds = [i.kind for i in parse_tool_calls(answer)]
    assert kinds == [ToolKind.READ_FILE, ToolKind.GREP]
    assert parse_tool_calls("no tools here") == []


# --- workspace executor ---------------------------------------------------------------------


async def test_write_then_read_file(tmp_path):
    tools = WorkspaceToolExecutor(tmp_path)
    created = await tools.execute(ToolInvocation(kind=ToolKind.CREATE_FILE, path="a/b.txt", content="one\ntwo"))
    assert created == {"success": True, "action": "created", "path": "a/b.txt", "lines": 2}
    updated = await tools.execute(ToolInvocation(kind=ToolKind.WRITE_FILE, path="a/b.txt", content="three"))
    assert updated["action"] == "updated"

    invocation = ToolInvocation(kind=ToolKind.READ_FILE, path="a/b.txt")
    outcome = await tools.execute(invocation)
    assert outcome["content"] == "three"
    assert invocation.outcome is outcome


async def test_paths_cannot_escape_workspace(tmp_path):
    tools = WorkspaceToolExecutor(tmp_path / "ws")
    outcome = await tools.execute(ToolInvocation(kind=ToolKind.CREATE_FILE, path="../evil.txt", content="x"))
    assert outcome["success"] is False
    assert "escapes" in outcome["error"]
    assert not (tmp_path / "evil.txt").exists()


async def test_missing_file_is_a_failed_outcome(tmp_path):
    outcome = await WorkspaceToolExecutor(tmp_path).execute(ToolInvocation(kind=ToolKind.READ_FILE, path="nope.txt"))
    assert outcome["success"] is False


async def test_commands_are_logged_not_run(tmp_path):
    tools = WorkspaceToolExecutor(tmp_path)
    outcome = await tools.execute(ToolInvocation(kind=ToolKind.RUN_COMMAND, command="rm -rf /"))
    assert outcome["success"] is True
    assert outcome["note"] == "Command logged for manual execution"
    assert tools.commands == ["rm -rf /"]


async def test_grep_finds_literal_matches(tmp_path):
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "a.py").write_text("x = 1\n# TODO(x): fix\n")
    (tmp_path / "node_modules").mkdir()
    (tmp_path / "node_modules" / "b.js").write_text("TODO(x)")
    outcome = await WorkspaceToolExecutor(tmp_path).execute(ToolInvocation(kind=ToolKind.GREP, query="TODO(x)"))
    assert outcome["count"] == 1
    assert outcome["matches"][0]["line"] == 2
    assert outcome["matches"][0]["path"].replace("\\", "/") == "src/a.py"


# --- planning -------------------------------------------------------------------------------


def test_parse_plan_from_fenced_answer():
    answer = "Here is the plan:\n```json\n" + json.dumps([
        {"step": 1, "action": "Init project", "type": "config", "model": "gemini-3-flash"},
        {"action": "Write tests", "verification": "pytest passes", "model": None},
    ]) + "\n```"
    plan = parse_plan("ship it", answer)
    assert plan.goal == "ship it"
    assert plan.total_steps == 2
    assert plan.steps[1].step == 2
    assert plan.steps[1].model is None
    assert plan.status.value == "pending"
    assert plan.cursor == -1


@pytest.mark.parametrize(
    "answer",
    [
        "I cannot plan this.",
        "[not json at all]",
        "[]",
        '["just a string"]',
        '[{"step": 1}]',
    ],
)
def test_parse_plan_errors(answer):
    with pytest.raises(PlanParseError):
        parse_plan("goal", answer)


class DummyClient:
    def __init__(self, answer):
        self.answer = answer
        self.selected = []
        self.prompts = []

    async def select_model(self, model_id):
        self.selected.append(model_id)

    async def send_message(self, text, on_token=None):
        self.prompts.append(text)
        return SendResult(response=self.answer, text=self.answer)


async def test_planner_uses_planning_model():
    client = DummyClient('[{"step": 1, "action": "Do it"}]')
    planner = Planner(client, ModelOrchestrator(clock=ManualClock()))
    plan = await planner.generate("goal text", {"language": "python"})
    assert plan.steps[0].action == "Do it"
    assert client.selected == ["gemini-3-pro"]
    assert "GOAL: goal text" in client.prompts[0]
    assert '"language": "python"' in client.prompts[0]


# --- prompts --------------------------------------------------------------------------------


def test_planner_prompt_defaults_context():
    prompt = planner_prompt("make a CLI")
    assert "GOAL: make a CLI" in prompt
    assert "No specific context provided." in prompt
    assert '"step": 1' in prompt


def test_step_prompt_window():
    results = [
        StepResult(step=i, action=f"action {i}", success=i != 4, error=None if i != 4 else "boom")
        for i in range(1, 6)
    ]
    prompt = step_prompt(Step(step=6, action="Next thing"), results, window=2)
    assert "CURRENT TASK: Next thing" in prompt
    assert "[Step 4] ✗ action 4: boom" in prompt
    assert "[Step 5] ✓ action 5: Completed" in prompt
    assert "action 3" not in prompt
    assert "This is the first step." in step_prompt(Step(step=1, action="First"), [])


def test_system_prompt_render():
    prompt = SystemPrompt(
        "/work/project",
        autonomous_mode=False,
        active_contexts=[{"name": "README", "content": "Read me"}],
    ).render()
    assert "/work/project" in prompt
    assert "INTERACTIVE" in prompt
    assert "## README\nRead me" in prompt


def test_with_system_prompt():
    assert with_system_prompt(None, "hi") == "hi"
    assert with_system_prompt("SYS", "hi") == "SYS\n\n---\n\nUser: hi"


def test_parse_plan_numbers_steps_by_position():
    answer = json.dumps([
        {"step": 0, "action": "Scaffold"},
        {"step": "two", "action": "Implement"},
        {"step": 7, "action": "Document"},
    ])
    plan = parse_plan("goal", answer)
    assert [s.step for s in plan.steps] == [1, 2, 3]
    assert [s.action for s in plan.steps] == ["Scaffold", "Implement", "Document"]

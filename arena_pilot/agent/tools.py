"""
Tool calls embedded in model answers, and the executor that realizes them.

Answers carry `<tool_call>` blocks:

    <tool_call>
    <tool>create_file</tool>
    <path>src/app.py</path>
    <content>
    print("hi")
    </content>
    </tool_call>

Blocks without a recognizable `<tool>` are skipped and logged. Execution is sequential and a
failing tool never aborts the step; its outcome records the error instead.
"""
from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Optional, Protocol, runtime_checkable

import anyio

from arena_pilot.agent.views import ToolInvocation, ToolKind
from arena_pilot.exceptions import UnparseableToolOutput

logger = logging.getLogger(__name__)

TOOL_CALL_PATTERN = re.compile(r"<tool_call>([\s\S]*?)</tool_call>")
_TOOL = re.compile(r"<tool>\s*(.*?)\s*</tool>", re.DOTALL)
_PATH = re.compile(r"<path>\s*(.*?)\s*</path>", re.DOTALL)
_CONTENT = re.compile(r"<content>([\s\S]*?)</content>")
_COMMAND = re.compile(r"<command>\s*(.*?)\s*</command>", re.DOTALL)
_QUERY = re.compile(r"<query>\s*(.*?)\s*</query>", re.DOTALL)

GREP_MAX_MATCHES = 50
GREP_SKIP_DIRS = {".git", "node_modules", "__pycache__", ".venv", "venv"}


def _group(pattern: re.Pattern[str], body: str) -> Optional[str]:
    match = pattern.search(body)
    return match.group(1).strip() if match else None


def parse_tool_call(body: str) -> ToolInvocation:
    """Parse the inside of one `<tool_call>` block."""
    tool = _group(_TOOL, body)
    if not tool:
        raise UnparseableToolOutput("tool_call block has no <tool> element", raw=body)
    try:
        kind = ToolKind(tool)
    except ValueError:
        raise UnparseableToolOutput(f"Unknown tool: {tool}", raw=body) from None
    content_match = _CONTENT.search(body)
    content = None
    if content_match:
        # One leading and one trailing newline belong to the markup, not the file.
        content = content_match.group(1)
        content = content[1:] if content.startswith("\n") else content
        content = content[:-1] if content.endswith("\n") else content
    return ToolInvocation(
        kind=kind,
        path=_group(_PATH, body),
        content=content,
        command=_group(_COMMAND, body),
        query=_group(_QUERY, body),
    )


def parse_tool_calls(answer: str) -> list[ToolInvocation]:
    invocations = []
    for match in TOOL_CALL_PATTERN.finditer(answer):
        try:
            invocations.append(parse_tool_call(match.group(1)))
        except UnparseableToolOutput as e:
            logger.warning(f"⚠️ Skipping tool call: {e}")
    return invocations


@runtime_checkable
class ToolExecutor(Protocol):
    async def execute(self, invocation: ToolInvocation) -> dict[str, Any]:
        ...


class WorkspaceToolExecutor:
    """Executes file tools inside `root`. Commands are logged for manual execution, never run."""

    def __init__(self, root: Path | str = "."):
        self.root = Path(root).expanduser().resolve()
        self.commands: list[str] = []

    def _resolve(self, relative: str) -> Path:
        target = (self.root / relative).resolve()
        if target != self.root and self.root not in target.parents:
            raise PermissionError(f"Path escapes workspace: {relative}")
        return target

    async def execute(self, invocation: ToolInvocation) -> dict[str, Any]:
        try:
            if invocation.kind.writes:
                outcome = await self.write_file(invocation.path, invocation.content)
            elif invocation.kind is ToolKind.READ_FILE:
                outcome = await self.read_file(invocation.path)
            elif invocation.kind is ToolKind.RUN_COMMAND:
                outcome = await self.run_command(invocation.command)
            else:
                outcome = await self.grep(invocation.query, invocation.path)
        except Exception as e:
            outcome = {"success": False, "error": str(e)}
        invocation.outcome = outcome
        return outcome

    async def write_file(self, path: Optional[str], content: Optional[str]) -> dict[str, Any]:
        if not path or content is None:
            return {"success": False, "error": "Missing path or content"}
        target = anyio.Path(self._resolve(path))
        await target.parent.mkdir(parents=True, exist_ok=True)
        existed = await target.exists()
        await target.write_text(content, encoding="utf-8")
        logger.info(f"📝 {'Updated' if existed else 'Created'} {path}")
        return {
            "success": True,
            "action": "updated" if existed else "created",
            "path": path,
            "lines": len(content.split("\n")),
        }

    async def read_file(self, path: Optional[str]) -> dict[str, Any]:
        if not path:
            return {"success": False, "error": "Missing path"}
        content = await anyio.Path(self._resolve(path)).read_text(encoding="utf-8")
        return {"success": True, "content": content, "lines": len(content.split("\n"))}

    async def run_command(self, command: Optional[str]) -> dict[str, Any]:
        if not command:
            return {"success": False, "error": "Missing command"}
        self.commands.append(command)
        logger.info(f"🖥️ Command logged for manual execution: {command}")
        return {"success": True, "note": "Command logged for manual execution", "command": command}

    async def grep(self, query: Optional[str], path: Optional[str] = None) -> dict[str, Any]:
        if not query:
            return {"success": False, "error": "Missing query"}
        base = anyio.Path(self._resolve(path or "."))
        files = [base] if await base.is_file() else [p async for p in base.rglob("*")]
        matches: list[dict[str, Any]] = []
        for file in files:
            if len(matches) >= GREP_MAX_MATCHES:
                break
            if GREP_SKIP_DIRS.intersection(file.parts) or not await file.is_file():
                continue
            try:
                text = await file.read_text(encoding="utf-8")
            except (UnicodeDecodeError, OSError):
                continue
            for lineno, line in enumerate(text.splitlines(), start=1):
                if query in line:
                    matches.append({
                        "path": str(Path(file).relative_to(self.root)),
                        "line": lineno,
                        "text": line.strip(),
                    })
                    if len(matches) >= GREP_MAX_MATCHES:
                        break
        return {"success": True, "query": query, "matches": matches, "count": len(matches)}

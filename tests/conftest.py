from __future__ import annotations

import json
import subprocess
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from remedy.models.executor import AgentRequest, AgentTurn, Conversation  # noqa: E402
from remedy.session import ActiveSession, SessionState, reusable_session  # noqa: E402
from remedy.tools.commands import CommandResult  # noqa: E402


class ScriptedExecutor:
    """Agent executor answering each phase from a queue of canned payloads.

    Queue entries may be payloads, exceptions to raise, or callables taking
    the :class:`AgentRequest` and returning a payload.
    """

    def __init__(self, **responses: list[Any]) -> None:
        self.responses: dict[str, list[Any]] = {phase: list(items) for phase, items in responses.items()}
        self.calls: list[AgentRequest] = []
        self.sessions: list[SessionState | None] = []

    def queue(self, phase: str, *payloads: Any) -> None:
        self.responses.setdefault(phase, []).extend(payloads)

    def count(self, phase: str) -> int:
        return sum(1 for call in self.calls if call.metadata.get("phase") == phase)

    def prompts(self, phase: str) -> list[str]:
        return [call.prompt for call in self.calls if call.metadata.get("phase") == phase]

    async def run(self, request: AgentRequest, session: SessionState | None = None) -> AgentTurn:
        self.calls.append(request)
        self.sessions.append(session)
        phase = str(request.metadata.get("phase"))
        pending = self.responses.get(phase) or []
        if not pending:
            raise AssertionError(f"unexpected {phase} turn")
        payload = pending.pop(0)
        if isinstance(payload, BaseException):
            raise payload
        if callable(payload):
            payload = payload(request)
        state = reusable_session(session, request.fingerprint)
        handle = state.handle if isinstance(state, ActiveSession) else Conversation()
        return AgentTurn(
            structured=payload,
            raw_text=json.dumps(payload),
            session=ActiveSession(handle=handle, fingerprint=request.fingerprint),
        )


@dataclass(slots=True)
class ScriptedStageRunner:
    """Stage command runner returning queued results per command."""

    results: dict[str, list[CommandResult]] = field(default_factory=dict)
    calls: list[str] = field(default_factory=list)

    def script(self, command: str, *results: CommandResult) -> None:
        self.results.setdefault(command, []).extend(results)

    async def __call__(self, command: str, cwd: Path) -> CommandResult:
        self.calls.append(command)
        pending = self.results.get(command) or []
        if not pending:
            return CommandResult(ok=True, stdout="", stderr="", exit_code=0)
        if len(pending) == 1:
            return pending[0]
        return pending.pop(0)


def passed(stdout: str = "") -> CommandResult:
    return CommandResult(ok=True, stdout=stdout, stderr="", exit_code=0)


def failed(stdout: str = "", stderr: str = "boom", code: int = 1) -> CommandResult:
    return CommandResult(ok=False, stdout=stdout, stderr=stderr, exit_code=code)


@pytest.fixture()
def executor_factory() -> Callable[..., ScriptedExecutor]:
    return ScriptedExecutor


@pytest.fixture()
def stage_runner() -> ScriptedStageRunner:
    return ScriptedStageRunner()


@pytest.fixture()
def command_results() -> tuple[Callable[..., CommandResult], Callable[..., CommandResult]]:
    return passed, failed


@pytest.fixture()
def git_repo(tmp_path: Path) -> Path:
    """Create a small git repository with one committed source file."""

    repo_root = tmp_path / "repo"
    repo_root.mkdir()

    def run_git(*cmd: str) -> None:
        subprocess.run(
            ["git", *cmd],
            cwd=repo_root,
            check=True,
            capture_output=True,
            text=True,
        )

    run_git("init")
    run_git("config", "user.email", "remedy@example.com")
    run_git("config", "user.name", "Remedy Tests")
    (repo_root / "app.py").write_text("VALUE = 1\n", encoding="utf-8")
    run_git("add", ".")
    run_git("commit", "-m", "Initial state")
    return repo_root

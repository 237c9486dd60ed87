from __future__ import annotations

from pathlib import Path

import pytest

from remedy.tools.commands import run_command


@pytest.mark.asyncio
async def test_run_command_captures_both_streams(tmp_path: Path) -> None:
    lines: list[tuple[str, str]] = []

    result = await run_command(
        "echo out && echo err 1>&2",
        tmp_path,
        on_line=lambda stream, line: lines.append((stream, line)),
    )

    assert result.ok
    assert result.exit_code == 0
    assert result.stdout == "out\n"
    assert result.stderr == "err\n"
    assert ("stdout", "out") in lines
    assert ("stderr", "err") in lines


@pytest.mark.asyncio
async def test_run_command_reports_exit_code_and_env(tmp_path: Path) -> None:
    result = await run_command('echo "$REMEDY_PROBE"; exit 3', tmp_path, env={"REMEDY_PROBE": "set"})

    assert not result.ok
    assert result.exit_code == 3
    assert result.stdout.strip() == "set"


@pytest.mark.asyncio
async def test_run_command_runs_in_cwd(tmp_path: Path) -> None:
    (tmp_path / "marker.txt").write_text("x", encoding="utf-8")
    result = await run_command("ls", tmp_path)
    assert "marker.txt" in result.stdout

"""CLI commands for running remedy audits and scaffolding configuration."""

from __future__ import annotations

import asyncio
import json
import logging
import signal
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer

from .config import DEFAULT_CONFIG_NAME, RemedyConfig, load_config, write_default_config
from .errors import ConfigError, RemedyError
from .models import LLMClient, ResponsesClient
from .orchestrator import AuditRunResult, Orchestrator, PullRequestSummary
from .phases import PhaseName
from .signals import EXIT_SIGNAL, install_sigint_handler
from .tools.vcs import GitError, GitRepository

APP_HELP = "Auditor-driven code remediation with validated plans and quality gates."

app = typer.Typer(help=APP_HELP)


class _OfflineLLMClient(LLMClient):
    """Local stub that answers every phase deterministically without network access."""

    def __init__(self) -> None:
        super().__init__("offline", max_attempts=1)

    def _raw_invoke(self, payload: Dict[str, Any], *, timeout: Optional[float] = None) -> str:
        metadata = payload.get("metadata") or {}
        phase = str(metadata.get("phase", "unknown"))
        return json.dumps(self._build_response(phase))

    def _build_response(self, phase: str) -> Dict[str, Any]:
        if phase == PhaseName.PLAN.value:
            return {"plan": [], "noop": True, "reason": "Offline stub client performs no audits."}
        if phase in {PhaseName.VALIDATE_PLAN.value, PhaseName.VALIDATE_STEP.value}:
            return {"valid": True, "reason": "offline stub"}
        if phase == PhaseName.EXECUTE_STEP.value:
            return {
                "success": False,
                "summary": "Offline stub client: nothing to change.",
                "filesTouched": [],
                "filesWritten": [],
                "mode": "apply",
            }
        if phase == PhaseName.CONDENSE.value:
            return {"summary": "Offline stub client cannot summarise test output."}
        if phase == PhaseName.PULL_REQUEST.value:
            return {"title": "Offline remedy run", "body": "Generated by the offline stub client."}
        return {}


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load(config: Optional[str]) -> RemedyConfig:
    try:
        return load_config(config)
    except ConfigError as error:
        typer.echo(f"Failed to load config: {error}")
        raise typer.Exit(code=1) from error


def _build_client(config: RemedyConfig, *, offline: bool) -> LLMClient:
    """Select the Responses API client or the offline stub."""
    if offline or (config.model or "").lower().endswith("offline"):
        typer.echo("Using offline stub client.")
        return _OfflineLLMClient()
    timeout = config.turn_timeout if config.turn_timeout and config.turn_timeout > 0 else 600.0
    try:
        client = ResponsesClient(model=config.model or "gpt-5", timeout=timeout)
    except ValueError as error:
        typer.echo("No API key given. Set REMEDY_API_KEY or OPENAI_API_KEY, or re-run with --offline.")
        raise typer.Exit(code=1) from error
    typer.echo(f"Using Responses API client ({client.model}).")
    return client


def _select_auditors(config: RemedyConfig, auditors: Optional[str]) -> List[str]:
    if auditors and auditors.strip():
        selected = [name.strip() for name in auditors.split(",") if name.strip()]
    else:
        selected = config.enabled_auditors()
    for name in selected:
        if name not in config.auditors:
            typer.echo(f"Unknown auditor: {name}")
            raise typer.Exit(code=1)
    return selected


def _prepare_repository(root: Path, *, branch: bool) -> tuple[GitRepository | None, str | None]:
    """Return the repository (if any) and the branch to restore afterwards."""
    try:
        repo = GitRepository.discover(root)
    except GitError:
        typer.echo("Git not available; skipping branch management, commits, and rollback.")
        return None, None
    try:
        repo.ensure_clean()
    except GitError as error:
        typer.echo(str(error))
        raise typer.Exit(code=1) from error
    original = repo.current_branch()
    if not branch or original is None:
        return repo, None
    try:
        created = repo.create_branch()
    except GitError as error:
        typer.echo(f"Failed to create work branch; continuing on {original}: {error}")
        return repo, None
    typer.echo(f"Switched to branch {created}.")
    return repo, original


def _pull_request_summary(
    orchestrator: Orchestrator,
    result: AuditRunResult,
    repository: GitRepository | None,
    base_branch: str | None,
) -> PullRequestSummary | None:
    if not result.committed_plans:
        return None
    try:
        branch = repository.current_branch() if repository is not None else None
        return asyncio.run(
            orchestrator.summarize_pull_request(result, branch=branch, base_branch=base_branch)
        )
    except (RemedyError, GitError) as error:
        typer.echo(f"Pull request summary unavailable: {error}")
        return None


def _render_result(result: AuditRunResult, pull_request: PullRequestSummary | None = None) -> None:
    typer.echo("Audit summary:")
    typer.echo(f"- Exit reason: {result.exit_reason}")
    typer.echo(f"- Auditor turns: {result.turns}")
    if result.baseline_failure:
        typer.echo("- Baseline failure:")
        typer.echo(result.baseline_failure)
    counts: Dict[str, int] = {}
    for outcome in result.outcomes:
        counts[outcome.status] = counts.get(outcome.status, 0) + 1
    if counts:
        typer.echo("- Outcomes: " + ", ".join(f"{key}={value}" for key, value in sorted(counts.items())))
    if result.committed_plans:
        typer.echo("Committed plans:")
        for committed in result.committed_plans:
            typer.echo(f"  - {committed.describe()}")
        if pull_request is not None:
            typer.echo("Pull request summary:")
            typer.echo(pull_request.render())
    else:
        typer.echo("No plans committed.")


@app.command()
def audit(
    auditors: Optional[str] = typer.Argument(
        None,
        help="Comma-separated auditor names (defaults to every enabled auditor).",
    ),
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help=f"Path to the configuration file (defaults to ./{DEFAULT_CONFIG_NAME}).",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
    offline: bool = typer.Option(False, "--offline", help="Use the offline stub client instead of the API."),
    branch: bool = typer.Option(
        True,
        "--branch/--no-branch",
        help="Run on a new timestamped git branch.",
    ),
) -> None:
    """Run the audit loop until every auditor reports no work or Ctrl+C is pressed."""
    configure_logging(verbose)
    cfg = _load(config)
    selected = _select_auditors(cfg, auditors)
    if not selected:
        typer.echo("No auditors selected or enabled to run.")
        return

    client = _build_client(cfg, offline=offline)
    repository, original_branch = _prepare_repository(cfg.root, branch=branch)
    orchestrator = Orchestrator.from_client(cfg, client, repository=repository, exit_signal=EXIT_SIGNAL)

    typer.echo(f"Running remedy audit for: {', '.join(selected)}")
    EXIT_SIGNAL.reset()
    previous = install_sigint_handler(EXIT_SIGNAL)
    try:
        result = asyncio.run(orchestrator.run(selected))
    except ConfigError as error:
        typer.echo(f"Configuration error: {error}")
        raise typer.Exit(code=1) from error
    finally:
        signal.signal(signal.SIGINT, previous)

    _render_result(result, _pull_request_summary(orchestrator, result, repository, original_branch))
    if repository is not None and original_branch and not result.committed_plans:
        try:
            repository.checkout(original_branch)
            typer.echo(f"Restored branch {original_branch}.")
        except GitError as error:
            typer.echo(f"Failed to restore branch {original_branch}: {error}")
    if result.exit_reason == "baseline_failed":
        raise typer.Exit(code=1)


@app.command()
def init(
    config: str = typer.Option(
        DEFAULT_CONFIG_NAME,
        "--config",
        "-c",
        help="Path of the configuration file to write.",
    ),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing configuration."),
) -> None:
    """Write a default configuration file."""
    config_path = Path(config)
    if config_path.exists() and not force:
        typer.echo(f"Config already exists at {config_path}; use --force to overwrite.")
        raise typer.Exit(code=1)
    write_default_config(config_path)
    typer.echo(f"Wrote default configuration to {config_path}.")


if __name__ == "__main__":
    app()

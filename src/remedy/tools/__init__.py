"""Tool integrations used by the pipelines: commands, gates, snapshots, git."""

from .commands import CommandResult, run_command
from .gates import QualityGateRunner, QualityStage, TestFailureCondenser, stages_from_config
from .snapshots import FileSnapshotProvider, GitWorktreeProbe, NullWorktreeProbe, WorktreeSnapshot
from .vcs import GitCheckpoint, GitError, GitRepository, apply_patch

__all__ = [
    "CommandResult",
    "FileSnapshotProvider",
    "GitCheckpoint",
    "GitError",
    "GitRepository",
    "GitWorktreeProbe",
    "NullWorktreeProbe",
    "QualityGateRunner",
    "QualityStage",
    "TestFailureCondenser",
    "WorktreeSnapshot",
    "apply_patch",
    "run_command",
    "stages_from_config",
]

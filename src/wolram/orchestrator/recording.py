"""Version-control recording of job results via the git CLI."""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from wolram.orchestrator.models import Job

logger = logging.getLogger(__name__)

FALLBACK_AUTHOR_NAME = "WOLRAM"
FALLBACK_AUTHOR_EMAIL = "wolram@localhost"
EXCLUDED_PATHSPECS = (
    ":(exclude,glob)**/wolram.toml",
    ":(exclude,glob)**/.env",
    ":(exclude,glob)**/.env.local",
    ":(exclude,glob)**/*.key",
)
GIT_TIMEOUT_SECONDS = 60


class RecordingError(RuntimeError):
    """Recording the job result in version control failed."""


@dataclass(slots=True)
class JobSummary:
    """What the recorder needs to know about a job."""

    job_id: str
    description: str
    skill: str | None
    status: str

    @classmethod
    def from_job(cls, job: Job) -> JobSummary:
        capability = job.assigned_capability
        return cls(
            job_id=job.identifier,
            description=job.description,
            skill=capability.skill if capability else None,
            status=job.status.value,
        )

    def commit_message(self) -> str:
        return f"wolram: [{self.skill or 'unknown'}] {self.description} ({self.status})"


class ResultRecorder(Protocol):
    """Protocol implemented by result recorders."""

    def record(self, summary: JobSummary) -> str:
        """Record the result and return a commit reference."""


class GitRecorder:
    """Commits the working tree of a git repository, skipping secret files."""

    def __init__(self, root: Path) -> None:
        self.root = root

    @classmethod
    def open(cls, path: Path) -> GitRecorder:
        """Open the repository containing ``path``."""

        if not path.is_dir():
            raise RecordingError(f"failed to open git repository at {path}: not a directory")
        try:
            top_level = _run_git(["rev-parse", "--show-toplevel"], cwd=path)
        except RecordingError as error:
            raise RecordingError(f"failed to open git repository at {path}: {error}") from error
        return cls(Path(top_level))

    def record(self, summary: JobSummary) -> str:
        return self.commit(summary.commit_message())

    def commit(self, message: str) -> str:
        """Stage every change except secrets, commit, and return the short hash."""

        _run_git(["add", "--all", "--", ".", *EXCLUDED_PATHSPECS], cwd=self.root)
        _run_git(
            ["commit", "--allow-empty", "--no-verify", "-m", message],
            cwd=self.root,
            env=self._identity_env(),
        )
        return _run_git(["rev-parse", "--short=7", "HEAD"], cwd=self.root)

    def current_branch(self) -> str:
        return _run_git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=self.root)

    def _identity_env(self) -> dict[str, str] | None:
        try:
            _run_git(["config", "user.email"], cwd=self.root)
        except RecordingError:
            logger.debug("No git identity configured, committing as %s", FALLBACK_AUTHOR_NAME)
            env = os.environ.copy()
            env.update(
                {
                    "GIT_AUTHOR_NAME": FALLBACK_AUTHOR_NAME,
                    "GIT_AUTHOR_EMAIL": FALLBACK_AUTHOR_EMAIL,
                    "GIT_COMMITTER_NAME": FALLBACK_AUTHOR_NAME,
                    "GIT_COMMITTER_EMAIL": FALLBACK_AUTHOR_EMAIL,
                },
            )
            return env
        return None


def _run_git(args: list[str], *, cwd: Path, env: dict[str, str] | None = None) -> str:
    try:
        completed = subprocess.run(  # noqa: S603
            ["git", *args],  # noqa: S607
            cwd=cwd,
            env=env,
            capture_output=True,
            text=True,
            timeout=GIT_TIMEOUT_SECONDS,
            check=False,
        )
    except FileNotFoundError as error:
        raise RecordingError("git executable not found") from error
    except (OSError, subprocess.TimeoutExpired) as error:
        raise RecordingError(f"git {args[0]} failed to run: {error}") from error
    if completed.returncode != 0:
        detail = (completed.stderr or completed.stdout).strip()
        raise RecordingError(f"git {args[0]} exited with {completed.returncode}: {detail}")
    return completed.stdout.strip()

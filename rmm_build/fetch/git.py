"""Git transport that checks out a dependency's pinned revision"""

from __future__ import annotations

import os
import re
import shutil
import subprocess
import time
from pathlib import Path
from typing import Callable, Optional

from ..errors import DependencyFetchError
from ..models import DependencySpec
from ..utils import Logger

COMMIT_PATTERN = re.compile(r"^[0-9a-f]{40}$")


class GitCommandError(RuntimeError):
    """A single git invocation exited with a non-zero status"""

    def __init__(self, argv: list[str], returncode: int, stderr: str):
        super().__init__(f"git {' '.join(argv)} exited with {returncode}")
        self.argv = argv
        self.returncode = returncode
        self.stderr = stderr


class GitFetcher:
    """Clones dependencies at their pinned revision.

    Only the clone is retried; a revision that cannot be checked out or that
    resolves to a different commit fails immediately.
    """

    def __init__(self,
                 logger: Optional[Logger] = None,
                 retries: int = 3,
                 retry_delay: float = 2.0,
                 git: str = "git",
                 sleep: Callable[[float], None] = time.sleep):
        self.logger = logger
        self.retries = max(1, retries)
        self.retry_delay = retry_delay
        self.git = git
        self.sleep = sleep
        self.env = os.environ.copy()
        self.env["GIT_TERMINAL_PROMPT"] = "0"

    def fetch(self, spec: DependencySpec, destination: Path) -> str:
        """
        Clone ``spec`` into ``destination`` and check out its revision

        Args:
            spec: Dependency to fetch
            destination: Directory to clone into; must not exist yet

        Returns:
            The commit checked out

        Raises:
            DependencyFetchError: When the repository or revision is unreachable
        """
        destination = Path(destination)
        is_commit = bool(COMMIT_PATTERN.fullmatch(spec.revision.lower()))

        if spec.shallow and not is_commit:
            clone = ["clone", "--quiet", "--depth", "1", "--branch", spec.revision,
                     spec.repository, str(destination)]
        else:
            if spec.shallow:
                self._debug(f"{spec.name}: shallow clones cannot address a commit, fetching full history")
            clone = ["clone", "--quiet", "--no-checkout", spec.repository, str(destination)]

        self._clone_with_retries(spec, clone, destination)

        if not (spec.shallow and not is_commit):
            try:
                self._run(["checkout", "--quiet", spec.revision], cwd=destination)
            except GitCommandError as exc:
                raise DependencyFetchError(
                    f"Revision {spec.revision} of {spec.name} not found",
                    hint="Check the pinned revision in dependencies.yaml.",
                    context={"repository": spec.repository, "stderr": exc.stderr},
                ) from exc

        try:
            head = self._run(["rev-parse", "HEAD"], cwd=destination)
            expected = self._run(["rev-parse", f"{spec.revision}^{{commit}}"], cwd=destination)
        except GitCommandError as exc:
            raise DependencyFetchError(
                f"Unable to verify the checked out revision of {spec.name}",
                context={"repository": spec.repository, "stderr": exc.stderr},
            ) from exc
        if head != expected:
            raise DependencyFetchError(
                f"{spec.name} resolved to {head} instead of {spec.revision}",
                context={"repository": spec.repository, "expected": expected, "actual": head},
            )
        return head

    def _clone_with_retries(self, spec: DependencySpec, argv: list[str], destination: Path) -> None:
        last_error: Optional[GitCommandError] = None
        for attempt in range(1, self.retries + 1):
            try:
                self._run(argv)
                return
            except GitCommandError as exc:
                last_error = exc
                shutil.rmtree(destination, ignore_errors=True)
                if attempt < self.retries:
                    if self.logger:
                        self.logger.warning(
                            f"Fetching {spec.name} failed (attempt {attempt}/{self.retries}), retrying..."
                        )
                    self.sleep(self.retry_delay * attempt)

        raise DependencyFetchError(
            f"Failed to fetch {spec.name} at {spec.revision}",
            hint="Check network access and that the pinned revision exists.",
            context={
                "repository": spec.repository,
                "attempts": str(self.retries),
                "stderr": last_error.stderr if last_error else "",
            },
        ) from last_error

    def _run(self, argv: list[str], cwd: Optional[Path] = None) -> str:
        command = [self.git, *argv]
        self._debug(f"Running: {' '.join(command)}")
        try:
            completed = subprocess.run(
                command,
                cwd=cwd,
                env=self.env,
                check=False,
                text=True,
                capture_output=True,
            )
        except FileNotFoundError as exc:
            raise DependencyFetchError(
                "git executable not found",
                hint="Install git to fetch third-party dependencies.",
            ) from exc
        if completed.returncode != 0:
            raise GitCommandError(argv, completed.returncode, completed.stderr.strip())
        return completed.stdout.strip()

    def _debug(self, msg: str) -> None:
        if self.logger:
            self.logger.debug(msg)


__all__ = ["COMMIT_PATTERN", "GitCommandError", "GitFetcher"]

"""
Workspace management for submission checkouts.

Each grading run gets its own directory under the workspace root, named after
the submitter plus a timestamp and a random token, so concurrent runs for the
same student and branch never share a path.
"""
import asyncio
import logging
import os
import re
import shutil
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator, Optional, Union

from app.core.errors import AcquisitionError

logger = logging.getLogger(__name__)

GITHUB_URL_PATTERN = re.compile(
    r"^https?://(www\.)?github\.com/[A-Za-z0-9](?:[A-Za-z0-9-]{0,38})/[A-Za-z0-9._-]+?(\.git)?/?$"
)
_UNSAFE_LABEL_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def is_valid_repository_reference(value) -> bool:
    """True when ``value`` looks like a GitHub repository URL."""
    if not isinstance(value, str):
        return False
    return bool(GITHUB_URL_PATTERN.match(value))


def sanitize_label(label: Optional[str], fallback: str = "submission") -> str:
    cleaned = _UNSAFE_LABEL_CHARS.sub("-", label or "").strip("-.")
    return cleaned[:64] or fallback


class WorkspaceManager:
    """Clones one branch of a repository into a private directory and removes it again."""

    def __init__(self, root: Union[str, Path], git_executable: str = "git",
                 clone_timeout: float = 120.0):
        self.root = Path(root)
        self.git_executable = git_executable
        self.clone_timeout = clone_timeout

    def new_workspace_path(self, submitter_label: Optional[str]) -> Path:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S%f")[:-3]
        token = uuid.uuid4().hex[:8]
        return self.root / f"{sanitize_label(submitter_label)}-{stamp}-{token}"

    async def acquire(self, repo_ref: str, submitter_label: Optional[str], branch: str) -> Path:
        if not is_valid_repository_reference(repo_ref):
            raise AcquisitionError(f"Refusing to clone invalid repository URL: {repo_ref!r}")

        destination = self.new_workspace_path(submitter_label)
        self.root.mkdir(parents=True, exist_ok=True)
        logger.info("Cloning %s (branch %s) into %s", repo_ref, branch, destination)
        try:
            await self._fetch(repo_ref, branch, destination)
        except BaseException:
            # Covers clone errors and task cancellation alike
            await self.discard(destination)
            raise
        return destination

    async def _fetch(self, repo_ref: str, branch: str, destination: Path) -> None:
        """Shallow, single-branch clone of ``branch`` into ``destination``."""
        command = [
            self.git_executable, "clone",
            "--depth", "1",
            "--single-branch",
            "--branch", branch,
            repo_ref,
            str(destination),
        ]
        env = dict(os.environ, GIT_TERMINAL_PROMPT="0")
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except FileNotFoundError as e:
            raise AcquisitionError(f"git executable not found: {self.git_executable}") from e

        try:
            _, stderr = await asyncio.wait_for(process.communicate(), timeout=self.clone_timeout)
        except asyncio.TimeoutError as e:
            process.kill()
            await process.wait()
            raise AcquisitionError(
                f"Cloning {repo_ref} timed out after {self.clone_timeout:g}s"
            ) from e
        except asyncio.CancelledError:
            process.kill()
            await process.wait()
            raise

        if process.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip() or f"git exited with code {process.returncode}"
            raise AcquisitionError(f"Failed to clone branch '{branch}' of {repo_ref}: {detail}")

    def release(self, path: Optional[Union[str, Path]]) -> None:
        """Remove a workspace. Removing a missing workspace is a no-op."""
        if path is None:
            return
        target = Path(path)
        if not target.exists():
            return
        shutil.rmtree(target)
        logger.info("Removed workspace %s", target)

    def release_quietly(self, path: Path) -> None:
        try:
            self.release(path)
        except OSError:
            logger.warning("Cleanup of workspace %s failed", path, exc_info=True)

    async def discard(self, path: Optional[Path]) -> None:
        """
        Remove a workspace from a worker thread.

        The removal is shielded: if the awaiting task is cancelled, the
        workspace is still gone before the cancellation propagates.
        """
        removal = asyncio.ensure_future(asyncio.to_thread(self.release_quietly, path))
        try:
            await asyncio.shield(removal)
        except asyncio.CancelledError:
            await removal
            raise

    @asynccontextmanager
    async def checkout(self, repo_ref: str, submitter_label: Optional[str],
                       branch: str) -> AsyncIterator[Path]:
        """Acquire a workspace and release it on every exit path."""
        path = await self.acquire(repo_ref, submitter_label, branch)
        try:
            yield path
        finally:
            await self.discard(path)

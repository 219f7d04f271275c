import asyncio
import shutil
from pathlib import Path
from typing import List, Optional

import pytest

from app.agents.grading_agent import ScoringResult
from app.core.errors import PersistenceError
from app.services.grading_service import GradingService
from app.services.result_store import InMemoryResultStore
from app.services.workspace_manager import WorkspaceManager

REPO_URL = "https://github.com/org/repo"


def write_tree(root: Path, files: dict) -> Path:
    for relative, content in files.items():
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    return root


@pytest.fixture
def submission_tree(tmp_path):
    return write_tree(tmp_path / "source", {
        "README.md": "# Module 2\n",
        "src/app.py": "print('hello')\n",
        "src/util.js": "export const add = (a, b) => a + b;\n",
        "node_modules/left-pad/index.js": "module.exports = 1;\n",
    })


@pytest.fixture
def docs_only_tree(tmp_path):
    return write_tree(tmp_path / "docs-only", {"README.md": "nothing to grade\n"})


class CopyingWorkspaceManager(WorkspaceManager):
    """Workspace manager that copies a local tree instead of running git clone."""

    def __init__(self, root: Path, source: Path, fail_with: Optional[BaseException] = None):
        super().__init__(root)
        self.source = source
        self.fail_with = fail_with
        self.acquired: List[Path] = []

    async def _fetch(self, repo_ref, branch, destination):
        shutil.copytree(self.source, destination)
        self.acquired.append(destination)
        if self.fail_with is not None:
            raise self.fail_with


class ScriptedScorer:
    def __init__(self, score=85, feedback="Solid work", passed=None, errors=None,
                 error: Optional[BaseException] = None, delay: float = 0.0):
        self.result = ScoringResult(score=score, feedback=feedback,
                                    passed=passed or ["Runs without errors"],
                                    errors=errors or [])
        self.error = error
        self.delay = delay
        self.calls = []

    async def score(self, corpus, instructions, branch_label):
        self.calls.append({"corpus": corpus, "instructions": instructions, "branch": branch_label})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


class FailingInsertStore(InMemoryResultStore):
    def insert(self, record):
        raise PersistenceError("database is read-only")


@pytest.fixture
def workspaces(tmp_path, submission_tree):
    return CopyingWorkspaceManager(tmp_path / "workspaces", submission_tree)


@pytest.fixture
def scorer():
    return ScriptedScorer()


@pytest.fixture
def store():
    return InMemoryResultStore()


@pytest.fixture
def service(store, workspaces, scorer):
    return GradingService(store=store, workspaces=workspaces, scorer=scorer)

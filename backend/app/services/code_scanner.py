"""
Source file discovery for a checked-out submission.
"""
import logging
import os
from pathlib import Path
from typing import Iterable, List, Union

from app.models.records import FileRecord

logger = logging.getLogger(__name__)

CODE_EXTENSIONS = frozenset({".js", ".jsx", ".ts", ".tsx", ".py", ".java", ".sol", ".rs", ".go"})
IGNORED_DIRECTORIES = frozenset({"node_modules", ".git", "dist", "build", "__pycache__", "target"})


def _sorted_entries(directory: str) -> List[os.DirEntry]:
    with os.scandir(directory) as it:
        return sorted(it, key=lambda entry: entry.name)


def scan_workspace(workspace: Union[str, Path]) -> List[FileRecord]:
    """
    Collect gradable source files below ``workspace``.

    Walks depth-first in name order using an explicit stack of directory
    iterators, never entering ignored directories and skipping symlinks.
    """
    root = Path(workspace)
    records: List[FileRecord] = []
    stack = [iter(_sorted_entries(str(root)))]

    while stack:
        entry = next(stack[-1], None)
        if entry is None:
            stack.pop()
            continue

        if entry.is_symlink():
            continue
        if entry.is_dir():
            if entry.name not in IGNORED_DIRECTORIES:
                stack.append(iter(_sorted_entries(entry.path)))
            continue
        if not entry.is_file():
            continue
        if os.path.splitext(entry.name)[1] not in CODE_EXTENSIONS:
            continue

        path = Path(entry.path)
        content = path.read_text(encoding="utf-8", errors="replace")
        records.append(FileRecord(relative_path=path.relative_to(root).as_posix(), content=content))

    logger.info("Found %d code files in %s", len(records), root)
    return records


def build_corpus(records: Iterable[FileRecord]) -> str:
    """Concatenate file contents, each preceded by a ``// File:`` marker line."""
    return "".join(f"\n\n// File: {record.relative_path}\n{record.content}" for record in records)

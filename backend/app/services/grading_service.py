"""
Grading pipeline: cache lookup, checkout, scan, AI scoring, persistence.

A stored review is returned as-is for a known (repository, branch, student)
key; only a miss pays for a clone and an AI call. The grading instructions
are not part of the key, so changing them does not invalidate a review.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Callable, Dict, Hashable, List, Optional

from app.agents.grading_agent import CodeReviewAgent, build_grading_results
from app.core.errors import EmptyCorpusError, PersistenceError, ValidationError
from app.models.records import (
    FileRecord,
    GradingOutcome,
    GradingRecord,
    GradingRequest,
    Provenance,
    RecordStatus,
)
from app.services.code_scanner import build_corpus, scan_workspace
from app.services.result_store import ResultStore
from app.services.workspace_manager import WorkspaceManager, is_valid_repository_reference

logger = logging.getLogger(__name__)

DEFAULT_SUBMITTER_LABEL = "submission"


def grading_status(score: float, max_score: float) -> str:
    """Map a score to its qualitative band."""
    percentage = round(score / max_score * 100, 2)

    if percentage >= 90:
        return "Excellent"
    if percentage >= 80:
        return "Good"
    if percentage >= 70:
        return "Satisfactory"
    if percentage >= 60:
        return "Needs Improvement"
    return "Unsatisfactory"


def build_summary(total_score: float, max_score: float) -> Dict[str, Any]:
    return {
        "totalScore": total_score,
        "maxScore": max_score,
        "percentage": round(total_score / max_score * 100, 2),
        "status": grading_status(total_score, max_score),
    }


def _format_number(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def format_score(total_score: float, max_score: float) -> str:
    """``score/max`` string with the same digits as the stored summary."""
    return f"{_format_number(total_score)}/{_format_number(max_score)}"


class KeyedLocks:
    """One asyncio lock per key, dropped once nobody holds or waits for it."""

    def __init__(self):
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._users: Dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class GradingService:
    def __init__(self, store: ResultStore, workspaces: WorkspaceManager,
                 scorer: CodeReviewAgent,
                 scanner: Callable[[Any], List[FileRecord]] = scan_workspace):
        self.store = store
        self.workspaces = workspaces
        self.scorer = scorer
        self.scanner = scanner
        self._inflight = KeyedLocks()

    async def grade(self, request: GradingRequest) -> GradingOutcome:
        self._validate_reference(request)
        key = request.key
        logger.info("Grading request: repository=%s branch=%s student=%s",
                    key.repository_reference, key.branch_name, key.student_identifier or "N/A")

        cached = await self._find_cached(request)
        if cached:
            return cached

        logger.info("Cache miss for %s@%s; running AI grading", key.repository_reference, key.branch_name)
        self._validate_for_new_grading(request)

        async with self._inflight.hold(key):
            # A concurrent first request for this key may have finished meanwhile
            cached = await self._find_cached(request)
            if cached:
                return cached
            record = await self._grade_fresh(request)

        return GradingOutcome(record=record, provenance=Provenance.NEW)

    @staticmethod
    def _validate_reference(request: GradingRequest) -> None:
        if not request.repository_reference or not isinstance(request.repository_reference, str):
            raise ValidationError("Invalid or missing repoName")
        if not request.branch_name or not isinstance(request.branch_name, str):
            raise ValidationError("Invalid or missing branchName (Module)")

    @staticmethod
    def _validate_for_new_grading(request: GradingRequest) -> None:
        instructions = request.instructions
        if not instructions or not isinstance(instructions, str) or not instructions.strip():
            raise ValidationError("customInstructions required for new grading")
        if not is_valid_repository_reference(request.repository_reference):
            raise ValidationError("Invalid GitHub URL format")

    async def _find_cached(self, request: GradingRequest) -> Optional[GradingOutcome]:
        existing = await asyncio.to_thread(self.store.find_latest, request.key)
        if existing is None:
            return None
        logger.info("Cache hit: review %s (no AI call)", existing.id)
        return GradingOutcome(record=existing, provenance=Provenance.CACHE)

    async def _grade_fresh(self, request: GradingRequest) -> GradingRecord:
        submitter = request.student_identifier or DEFAULT_SUBMITTER_LABEL

        async with self.workspaces.checkout(request.repository_reference, submitter,
                                            request.branch_name) as workspace:
            files = await asyncio.to_thread(self.scanner, workspace)
            if not files:
                raise EmptyCorpusError("No code files found in the repository")

            scoring = await self.scorer.score(build_corpus(files), request.instructions,
                                              request.branch_name)

            results = build_grading_results(scoring, request.branch_name, request.instructions,
                                            len(files))
            summary = build_summary(results["totalScore"], results["maxTotalScore"])
            record = GradingRecord(
                repository_reference=request.repository_reference,
                branch_name=request.branch_name,
                student_identifier=request.student_identifier,
                score=format_score(summary["totalScore"], summary["maxScore"]),
                status=RecordStatus.COMPLETED,
                content={
                    "feedback": scoring.feedback or "No feedback available",
                    "results": results,
                    "summary": summary,
                },
            )

            try:
                saved = await asyncio.to_thread(self.store.insert, record)
            except PersistenceError:
                logger.error("Scored %s@%s but could not store the review",
                             request.repository_reference, request.branch_name)
                raise

        logger.info("Review %s saved: %s (%s%%, %s)", saved.id, saved.score,
                    summary["percentage"], summary["status"])
        return saved

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from app.core.dependencies import get_grading_service, get_result_store
from app.core.errors import GradingError
from app.models.grading import GradeSubmissionRequest, GradeSubmissionResponse, ReviewListResponse
from app.models.records import GradingOutcome, Provenance
from app.services.grading_service import GradingService
from app.services.result_store import ResultStore

logger = logging.getLogger(__name__)

router = APIRouter()

# Response "source" values the dashboard expects
SOURCE_LABELS = {
    Provenance.CACHE: "database",
    Provenance.NEW: "openai",
}


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def build_grading_response(outcome: GradingOutcome) -> dict:
    record = outcome.record
    created_at = record.created_at.isoformat() if record.created_at else utc_timestamp()
    return {
        "success": True,
        "source": SOURCE_LABELS[outcome.provenance],
        "student": record.student_identifier or "Unknown",
        "branch": record.branch_name,
        "repository": record.repository_reference,
        "results": record.content.get("results", {}),
        "summary": record.content.get("summary", {}),
        "reviewId": record.id,
        "createdAt": created_at,
        "timestamp": created_at if outcome.provenance is Provenance.CACHE else utc_timestamp(),
    }


@router.post("", response_model=GradeSubmissionResponse)
async def grade_submission(request: GradeSubmissionRequest,
                           service: GradingService = Depends(get_grading_service)):
    """
    Grade a repository branch, or return the stored review for it.
    """
    try:
        outcome = await service.grade(request.to_grading_request())
    except GradingError:
        raise
    except Exception as e:
        logger.exception("Unexpected error during grading")
        raise GradingError(str(e)) from e
    return build_grading_response(outcome)


@router.get("/health")
async def health_check():
    return {
        "success": True,
        "service": "Automated Grading Assistant",
        "status": "operational",
        "mode": "Dynamic Rule-Based Engine",
        "features": ["Branch-based grading", "Custom instructions", "AI-powered analysis"],
        "timestamp": utc_timestamp(),
    }


@router.get("/reviews", response_model=ReviewListResponse)
def list_reviews(limit: int = Query(50, ge=1, le=500),
                 repo_name: Optional[str] = Query(None, alias="repoName"),
                 branch_name: Optional[str] = Query(None, alias="branchName"),
                 store: ResultStore = Depends(get_result_store)):
    """Stored reviews, newest first."""
    records = store.list_recent(limit=limit, repository_reference=repo_name, branch_name=branch_name)
    return {"success": True, "data": [record.to_row() for record in records]}


@router.get("/reviews/{review_id}")
def get_review(review_id: str, store: ResultStore = Depends(get_result_store)):
    record = store.get(review_id)
    if record is None:
        return JSONResponse(
            status_code=404,
            content={"success": False, "error": "Review not found", "timestamp": utc_timestamp()},
        )
    return {"success": True, "data": record.to_row()}

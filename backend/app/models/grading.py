from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional

from .records import GradingRequest


class GradeSubmissionRequest(BaseModel):
    """Body of POST /grade. Presence checks happen in the grading service."""

    model_config = ConfigDict(populate_by_name=True)

    repo_name: Optional[str] = Field(None, alias="repoName")
    branch_name: Optional[str] = Field(None, alias="branchName")
    student_name: Optional[str] = Field(None, alias="studentName")
    custom_instructions: Optional[str] = Field(None, alias="customInstructions")

    def to_grading_request(self) -> GradingRequest:
        return GradingRequest(
            repository_reference=self.repo_name,
            branch_name=self.branch_name,
            student_identifier=self.student_name,
            instructions=self.custom_instructions,
        )


class GradingSummary(BaseModel):
    totalScore: float
    maxScore: float
    percentage: float
    status: str


class GradeSubmissionResponse(BaseModel):
    success: bool = True
    source: str  # "database" or "openai"
    student: str
    branch: str
    repository: str
    results: Dict[str, Any]
    summary: GradingSummary
    reviewId: str
    createdAt: str
    timestamp: str


class ReviewListResponse(BaseModel):
    success: bool = True
    data: List[Dict[str, Any]]


class WebhookAck(BaseModel):
    success: bool = True
    status: str
    message: Optional[str] = None
    repository: Optional[str] = None
    branch: Optional[str] = None
    student: Optional[str] = None

"""
Domain records passed between the grading pipeline stages.
"""
import json
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, NamedTuple, Optional


class RecordStatus(str, Enum):
    COMPLETED = "COMPLETED"


class Provenance(str, Enum):
    CACHE = "cache"
    NEW = "new"


class GradingKey(NamedTuple):
    repository_reference: str
    branch_name: str
    student_identifier: Optional[str]


@dataclass
class GradingRequest:
    repository_reference: Optional[str]
    branch_name: Optional[str]
    student_identifier: Optional[str] = None
    instructions: Optional[str] = None

    def __post_init__(self):
        # The key and the clone URL must be the same string
        if isinstance(self.repository_reference, str):
            self.repository_reference = self.repository_reference.strip()
        if isinstance(self.branch_name, str):
            self.branch_name = self.branch_name.strip()
        # An empty student name is the anonymous key, same as None
        if not self.student_identifier:
            self.student_identifier = None

    @property
    def key(self) -> GradingKey:
        return GradingKey(self.repository_reference, self.branch_name, self.student_identifier)


@dataclass
class GradingRecord:
    repository_reference: str
    branch_name: str
    student_identifier: Optional[str]
    score: str
    content: Dict[str, Any] = field(default_factory=dict)
    status: RecordStatus = RecordStatus.COMPLETED
    id: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def key(self) -> GradingKey:
        return GradingKey(self.repository_reference, self.branch_name, self.student_identifier)

    def with_identity(self, record_id: str, created_at: datetime) -> "GradingRecord":
        return replace(self, id=self.id or record_id, created_at=self.created_at or created_at)

    def to_row(self) -> Dict[str, Any]:
        """Row shape consumed by the dashboard read API."""
        return {
            "id": self.id,
            "repoName": self.repository_reference,
            "branchName": self.branch_name,
            "studentName": self.student_identifier,
            "reviewContent": json.dumps(self.content),
            "score": self.score,
            "status": self.status.value,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass
class GradingOutcome:
    record: GradingRecord
    provenance: Provenance


@dataclass(frozen=True)
class FileRecord:
    relative_path: str
    content: str

from .base import Base
from .review import Review
from .records import (
    FileRecord,
    GradingKey,
    GradingOutcome,
    GradingRecord,
    GradingRequest,
    Provenance,
    RecordStatus,
)

__all__ = [
    "Base",
    "Review",
    "FileRecord",
    "GradingKey",
    "GradingOutcome",
    "GradingRecord",
    "GradingRequest",
    "Provenance",
    "RecordStatus",
]

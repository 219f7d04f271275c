"""
Error taxonomy for the grading pipeline.

Each error carries the HTTP status the ingress layer answers with and a short
``error`` label for the response body.
"""
from typing import Optional


class GradingError(Exception):
    status_code = 500
    error = "Grading failed"

    def __init__(self, message: str, *, error: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if error is not None:
            self.error = error


class ValidationError(GradingError):
    """Missing or malformed request fields. Never retried."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message, error=message)


class UpstreamError(GradingError):
    """An external collaborator (git host, AI service, Notion) failed."""


class AcquisitionError(UpstreamError):
    """The repository or branch could not be fetched."""


class ScoringError(UpstreamError):
    """The AI service failed or returned an unusable response."""


class EmptyCorpusError(GradingError):
    """The submission holds no gradable source files."""


class PersistenceError(GradingError):
    """The result store could not be read or written."""

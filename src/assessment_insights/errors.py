from __future__ import annotations


class AssessmentInsightsError(Exception):
    """Base class for errors raised by the report engine."""


class DataAccessError(AssessmentInsightsError):
    """Raised when source collections cannot be read. Fatal for the request."""


class SynthesisError(AssessmentInsightsError):
    """Recoverable failure of the qualitative synthesis phase.

    The orchestrator catches these and degrades the report to metrics-only.
    """

    reason = "unexpected"


class EmptyEvidenceError(SynthesisError):
    """No usable transcript excerpts were available for synthesis."""

    reason = "empty_evidence"


class ModelCallError(SynthesisError):
    """The completion interface itself failed (transport, quota, timeout, empty reply)."""

    reason = "model_call"


class SchemaValidationError(SynthesisError):
    """Model output could not be parsed or did not satisfy the insight contract."""

    reason = "schema_validation"

    def __init__(self, message: str, issues: list[str] | None = None) -> None:
        super().__init__(message)
        self.issues: list[str] = list(issues or [])


class ReportVersionConflict(AssessmentInsightsError):
    """Raised by a store when (assessment_id, report_version) already exists."""

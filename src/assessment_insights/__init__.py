"""Assessment analytics and evidence-grounded insight synthesis.

Entry point for request handlers:

    from assessment_insights import generate_assessment_report

Quantitative metrics are always produced; AI synthesis runs only when the
data passes quality gating, and its claims are filtered down to ones that
cite real sampled excerpts.
"""

from .errors import (
    AssessmentInsightsError,
    DataAccessError,
    EmptyEvidenceError,
    ModelCallError,
    ReportVersionConflict,
    SchemaValidationError,
    SynthesisError,
)
from .metrics import build_assessment_metrics
from .pipeline import ReportOutcome, generate_assessment_report

__all__ = [
    "AssessmentInsightsError",
    "DataAccessError",
    "EmptyEvidenceError",
    "ModelCallError",
    "ReportOutcome",
    "ReportVersionConflict",
    "SchemaValidationError",
    "SynthesisError",
    "build_assessment_metrics",
    "generate_assessment_report",
]

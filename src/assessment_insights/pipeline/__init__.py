from .context import RunContext
from .orchestrator import ReportOutcome, build_evidence_refs, generate_assessment_report

__all__ = ["ReportOutcome", "RunContext", "build_evidence_refs", "generate_assessment_report"]

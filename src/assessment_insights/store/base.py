from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

from ..errors import DataAccessError
from ..models import AnalysisReport, AssessmentPointer, AssessmentRecords, EvidenceExcerpt, EvidenceRef
from ..synth.usage import ApiCallRecord


@dataclass(frozen=True)
class ReportHead:
    """Identity of the newest stored report for an assessment."""

    report_id: str
    report_version: int


class RecordSource(Protocol):
    def load_records(self, assessment_id: str) -> AssessmentRecords:  # pragma: no cover - interface
        """Snapshot every source collection for one assessment; raise DataAccessError on failure."""
        ...


class ReportStore(Protocol):
    def latest_report(self, assessment_id: str) -> Optional[ReportHead]:  # pragma: no cover - interface
        ...

    def insert_report(self, report: AnalysisReport) -> None:  # pragma: no cover - interface
        """Persist a new report. Raise ReportVersionConflict if the version is taken."""
        ...

    def insert_excerpts(self, report_id: str, excerpts: list[EvidenceExcerpt]) -> None:  # pragma: no cover
        ...

    def insert_evidence_refs(self, refs: list[EvidenceRef]) -> None:  # pragma: no cover - interface
        ...

    def update_assessment_pointer(self, pointer: AssessmentPointer) -> None:  # pragma: no cover - interface
        ...

    def record_api_call(self, record: ApiCallRecord) -> None:  # pragma: no cover - interface
        ...

    def get_report(self, report_id: str) -> Optional[AnalysisReport]:  # pragma: no cover - interface
        ...

    def list_evidence_refs(self, report_id: str) -> list[EvidenceRef]:  # pragma: no cover - interface
        ...


class StaticRecordSource:
    """RecordSource over records already in memory (request handlers, tests)."""

    def __init__(self, *records: AssessmentRecords) -> None:
        self._by_id = {r.assessment.id: r for r in records}

    def load_records(self, assessment_id: str) -> AssessmentRecords:
        try:
            return self._by_id[assessment_id]
        except KeyError as e:
            raise DataAccessError(f"Assessment not found: {assessment_id}") from e

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from ..errors import (
    DataAccessError,
    EmptyEvidenceError,
    ModelCallError,
    ReportVersionConflict,
    SchemaValidationError,
    SynthesisError,
)
from ..evidence import build_evidence_index, sample_evidence, sanitize_insights
from ..metrics import build_assessment_metrics, downgrade_to_metrics_only
from ..metrics.quality import WARN_NO_EXCERPTS, WARN_SYNTHESIS_FAILED
from ..models import (
    AnalysisReport,
    AssessmentMetrics,
    AssessmentPointer,
    AssessmentRecords,
    DataQuality,
    EvidenceExcerpt,
    EvidenceRef,
)
from ..store.base import RecordSource, ReportStore
from ..synth import CompletionClient, InsightPayload, OpenAICompletionClient, SynthesisInputs, synthesize_insights
from ..utils import new_id, utc_now
from .context import RunContext

logger = logging.getLogger(__name__)

MAX_VERSION_ATTEMPTS = 3


@dataclass(frozen=True)
class ReportOutcome:
    """Everything one generation request produced and persisted."""

    report: AnalysisReport
    metrics: AssessmentMetrics
    pointer: AssessmentPointer
    excerpts: list[EvidenceExcerpt] = field(default_factory=list)
    evidence_refs: list[EvidenceRef] = field(default_factory=list)
    synthesis_calls: int = 0


@dataclass
class _SynthesisPhase:
    data_quality: DataQuality
    excerpts: list[EvidenceExcerpt] = field(default_factory=list)
    insights: Optional[InsightPayload] = None
    raw_text: Optional[str] = None
    model: Optional[str] = None
    calls: int = 0


def _load(source: RecordSource, assessment_id: str) -> AssessmentRecords:
    try:
        return source.load_records(assessment_id)
    except DataAccessError:
        raise
    except Exception as e:  # noqa: BLE001
        raise DataAccessError(f"Failed to read source records for {assessment_id}: {e}") from e


def _run_synthesis(
    *,
    records: AssessmentRecords,
    metrics: AssessmentMetrics,
    client: CompletionClient | None,
    store: ReportStore,
) -> _SynthesisPhase:
    """Sample -> synthesize -> sanitize. Never raises; failures degrade to metrics_only."""
    dq = metrics.data_quality
    phase = _SynthesisPhase(data_quality=dq)
    try:
        phase.excerpts = sample_evidence(records)
        if not phase.excerpts:
            raise EmptyEvidenceError("No usable transcripts among submitted responses.")
        result = synthesize_insights(
            SynthesisInputs(
                assessment=records.assessment,
                rubrics=records.rubrics,
                metrics=metrics,
                excerpts=phase.excerpts,
            ),
            client or OpenAICompletionClient(),
            low_confidence=dq.llm_mode == "low_confidence",
            usage_sink=store.record_api_call,
        )
        phase.calls = result.calls
        sanitized = sanitize_insights(result.payload, phase.excerpts)
        phase.insights = sanitized.payload
        phase.raw_text = result.raw_text
        phase.model = result.model
        phase.data_quality = dq.model_copy(update={"sanitization": sanitized.stats})
    except EmptyEvidenceError as e:
        logger.info("Skipping synthesis for %s: %s", records.assessment.id, e)
        phase.data_quality = downgrade_to_metrics_only(dq, warning=WARN_NO_EXCERPTS, reason=e.reason)
    except ModelCallError as e:
        logger.error("Model call failed for %s; degrading to metrics only: %s", records.assessment.id, e)
        phase.data_quality = downgrade_to_metrics_only(dq, warning=WARN_SYNTHESIS_FAILED, reason=e.reason)
    except SchemaValidationError as e:
        logger.warning(
            "Insight output invalid after repair for %s; degrading to metrics only: %s", records.assessment.id, e
        )
        phase.data_quality = downgrade_to_metrics_only(dq, warning=WARN_SYNTHESIS_FAILED, reason=e.reason)
    except SynthesisError as e:
        logger.warning("Synthesis failed for %s: %s", records.assessment.id, e)
        phase.data_quality = downgrade_to_metrics_only(dq, warning=WARN_SYNTHESIS_FAILED, reason=e.reason)
    except Exception:  # noqa: BLE001
        logger.exception("Unexpected synthesis failure for %s; degrading to metrics only", records.assessment.id)
        phase.data_quality = downgrade_to_metrics_only(dq, warning=WARN_SYNTHESIS_FAILED, reason="unexpected")
    if phase.insights is None:
        phase.raw_text = None
        phase.model = None
    return phase


def build_evidence_refs(
    report_id: str, insights: InsightPayload | None, excerpts: list[EvidenceExcerpt]
) -> list[EvidenceRef]:
    """One audit row per surviving (claim, excerpt) pair."""
    if insights is None:
        return []
    by_id = {e.excerpt_id: e for e in excerpts}
    refs: list[EvidenceRef] = []
    for claim in insights.misconceptions:
        for ref in claim.evidence_refs:
            excerpt = by_id.get(ref)
            if excerpt is None:
                continue
            refs.append(
                EvidenceRef(
                    report_id=report_id,
                    claim_id=claim.claim_id,
                    excerpt_id=ref,
                    submission_id=excerpt.submission_id,
                    question_id=excerpt.question_id,
                )
            )
    return refs


def _build_report(
    *,
    report_id: str,
    version: int,
    supersedes: Optional[str],
    records: AssessmentRecords,
    metrics: AssessmentMetrics,
    phase: _SynthesisPhase,
    processing_seconds: float,
) -> AnalysisReport:
    insights = phase.insights
    question_effectiveness = metrics.question_effectiveness.model_dump(mode="json")
    question_effectiveness["narrative"] = (
        insights.question_effectiveness.model_dump(mode="json") if insights is not None else None
    )
    return AnalysisReport(
        id=report_id,
        assessment_id=records.assessment.id,
        class_id=records.assessment.class_id,
        report_version=version,
        supersedes_report_id=supersedes,
        generated_at=utc_now(),
        student_count=metrics.student_count,
        completion_rate=metrics.completion_rate,
        avg_reasoning_score=metrics.avg_reasoning_score,
        avg_evidence_score=metrics.avg_evidence_score,
        avg_response_length_words=metrics.avg_response_length_words,
        data_quality=phase.data_quality.model_dump(mode="json"),
        rubric_distributions={k: v.model_dump(mode="json") for k, v in metrics.rubric_distributions.items()},
        question_effectiveness=question_effectiveness,
        misconceptions=[m.model_dump(mode="json") for m in insights.misconceptions] if insights else [],
        reasoning_patterns=insights.reasoning_patterns.model_dump(mode="json") if insights else None,
        evidence_patterns=insights.evidence_patterns.model_dump(mode="json") if insights else None,
        engagement_indicators=insights.engagement_indicators.model_dump(mode="json") if insights else None,
        suggested_actions=[a.model_dump(mode="json") for a in insights.suggested_actions] if insights else [],
        evidence_index=build_evidence_index(phase.excerpts) if phase.excerpts else None,
        processing_time_seconds=processing_seconds,
        ai_model_version=phase.model,
        raw_ai_analysis=phase.raw_text,
    )


def _insert_next_version(
    store: ReportStore,
    assessment_id: str,
    *,
    max_attempts: int,
    make_report: Callable[[int, Optional[str]], AnalysisReport],
) -> AnalysisReport:
    """Insert max+1; on a uniqueness conflict re-read the head and try again."""
    for attempt in range(1, max_attempts + 1):
        head = store.latest_report(assessment_id)
        candidate = make_report(
            (head.report_version + 1) if head else 1,
            head.report_id if head else None,
        )
        try:
            store.insert_report(candidate)
        except ReportVersionConflict:
            if attempt >= max_attempts:
                raise
            logger.warning(
                "Report version %d for %s was taken concurrently; retrying (%d/%d)",
                candidate.report_version,
                assessment_id,
                attempt,
                max_attempts,
            )
            continue
        return candidate
    raise ReportVersionConflict(f"No report version allocated for {assessment_id} (max_attempts={max_attempts})")


def generate_assessment_report(
    assessment_id: str,
    *,
    source: RecordSource,
    store: ReportStore,
    client: CompletionClient | None = None,
    max_version_attempts: int = MAX_VERSION_ATTEMPTS,
    id_factory: Callable[[], str] = new_id,
) -> ReportOutcome:
    """Generate, version and persist a new analysis report for one assessment.

    - Source read failures raise DataAccessError (fatal).
    - Every synthesis-phase failure degrades the report to metrics_only with a
      warning; a report is always written once metrics succeed.
    - Version allocation reads the current max and inserts max+1; on a
      uniqueness conflict it re-reads and retries up to max_version_attempts.

    The caller owns timeouts and cancellation.
    """
    ctx = RunContext.create(assessment_id=assessment_id)
    records = _load(source, assessment_id)

    metrics = build_assessment_metrics(records)
    if metrics.data_quality.llm_mode == "metrics_only":
        phase = _SynthesisPhase(data_quality=metrics.data_quality)
    else:
        phase = _run_synthesis(records=records, metrics=metrics, client=client, store=store)

    report = _insert_next_version(
        store,
        assessment_id,
        max_attempts=max_version_attempts,
        make_report=lambda version, supersedes: _build_report(
            report_id=id_factory(),
            version=version,
            supersedes=supersedes,
            records=records,
            metrics=metrics,
            phase=phase,
            processing_seconds=ctx.elapsed_seconds(),
        ),
    )

    if phase.excerpts:
        store.insert_excerpts(report.id, phase.excerpts)
    refs = build_evidence_refs(report.id, phase.insights, phase.excerpts)
    if refs:
        store.insert_evidence_refs(refs)

    pointer = AssessmentPointer(
        assessment_id=assessment_id,
        latest_report_id=report.id,
        has_report=True,
        scores_last_modified_at=metrics.max_scored_at or report.generated_at,
    )
    store.update_assessment_pointer(pointer)

    logger.info(
        "Report v%d for %s written (run=%s, llm_mode=%s, claims=%d, refs=%d, %.2fs)",
        report.report_version,
        assessment_id,
        ctx.run_id,
        phase.data_quality.llm_mode,
        len(report.misconceptions),
        len(refs),
        report.processing_time_seconds,
    )
    return ReportOutcome(
        report=report,
        metrics=metrics,
        pointer=pointer,
        excerpts=phase.excerpts,
        evidence_refs=refs,
        synthesis_calls=phase.calls,
    )

from __future__ import annotations

from ..models import DataQuality, LlmMode, QualityLevel

# Gating thresholds on submitted volume and transcript completeness.
METRICS_ONLY_BELOW = 8
LOW_CONFIDENCE_BELOW = 15
MAX_TRANSCRIPT_MISSING_RATE = 0.30

WARN_LOW_COUNT = "Low response count (metrics only)."
WARN_LIMITED_COUNT = "Limited response count (low confidence)."
WARN_MISSING_TRANSCRIPTS = "High transcript missing rate."
WARN_NO_EXCERPTS = "Insufficient transcripts for LLM insights."
WARN_SYNTHESIS_FAILED = "LLM synthesis failed."


def assess_data_quality(
    *,
    submitted_count: int,
    student_count: int,
    completion_rate: float,
    response_count: int,
    transcript_missing_rate: float,
) -> DataQuality:
    """Decide quality level and whether synthesis may run.

    - fewer than 8 submissions: limited, metrics only
    - 8 to 14 submissions: synthesis runs in low-confidence mode
    - transcript missing rate strictly above 0.30: limited, regardless of count
    """
    warnings: list[str] = []
    quality_level: QualityLevel = "good"
    llm_mode: LlmMode = "full"

    if submitted_count < METRICS_ONLY_BELOW:
        warnings.append(WARN_LOW_COUNT)
        quality_level = "limited"
        llm_mode = "metrics_only"
    elif submitted_count < LOW_CONFIDENCE_BELOW:
        warnings.append(WARN_LIMITED_COUNT)
        llm_mode = "low_confidence"

    if transcript_missing_rate > MAX_TRANSCRIPT_MISSING_RATE:
        warnings.append(WARN_MISSING_TRANSCRIPTS)
        quality_level = "limited"

    return DataQuality(
        quality_level=quality_level,
        submission_count=submitted_count,
        student_count=student_count,
        completion_rate=completion_rate,
        response_count=response_count,
        transcript_missing_rate=transcript_missing_rate,
        llm_mode=llm_mode,
        warnings=warnings,
    )


def downgrade_to_metrics_only(dq: DataQuality, *, warning: str, reason: str | None = None) -> DataQuality:
    """Return a copy of dq forced to metrics_only with an extra warning."""
    return dq.model_copy(
        update={
            "llm_mode": "metrics_only",
            "warnings": [*dq.warnings, warning],
            "llm_failure": reason if reason is not None else dq.llm_failure,
        }
    )

from __future__ import annotations

import math
from typing import Iterable

import pandas as pd

from ..models import (
    AssessmentMetrics,
    AssessmentRecords,
    QuestionDefinition,
    QuestionEffectiveness,
    QuestionEffectivenessItem,
    QuestionFlags,
    RubricDefinition,
    RubricDistribution,
    ScoreRecord,
    SubmissionStatus,
)
from ._util import count_words, has_transcript, mean_or_none, median_or_none, pearson
from .quality import assess_data_quality

DEFAULT_MAX_SCALE = 5
WATCHLIST_RATE = 0.30
TOO_EASY_ABOVE = 0.9
TOO_HARD_BELOW = 0.3
LOW_DISCRIMINATION_BELOW = 0.2

_SCORE_COLUMNS = ["submission_id", "question_id", "scorer_type", "score"]


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def _scores_frame(scores: Iterable[ScoreRecord], submitted_ids: set[str]) -> pd.DataFrame:
    rows = [
        (s.submission_id, s.question_id, s.scorer_type, float(s.score))
        for s in scores
        if s.submission_id in submitted_ids and s.score is not None
    ]
    return pd.DataFrame.from_records(rows, columns=_SCORE_COLUMNS)


def _rubric_distribution(rubric: RubricDefinition, scores: pd.DataFrame) -> RubricDistribution:
    values = scores.loc[scores["scorer_type"] == rubric.rubric_type, "score"]
    distribution = {
        str(bucket): int((values == bucket).sum())
        for bucket in range(rubric.scale_min, rubric.scale_max + 1)
    }
    threshold = _round_half_up((rubric.scale_min + rubric.scale_max) / 2)
    below_rate = float((values < threshold).sum()) / len(values) if len(values) else 0.0
    return RubricDistribution(
        scale_min=rubric.scale_min,
        scale_max=rubric.scale_max,
        mean=mean_or_none(values),
        median=median_or_none(values),
        distribution=distribution,
        threshold=threshold,
        below_threshold_rate=below_rate,
        watchlist=below_rate >= WATCHLIST_RATE,
    )


def _item_scores(scores: pd.DataFrame) -> tuple[dict[tuple[str, str], float], dict[str, float]]:
    """Per (submission, question) mean across scorer types, and per-submission overall mean."""
    if scores.empty:
        return {}, {}
    item = scores.groupby(["submission_id", "question_id"], sort=True)["score"].mean()
    overall = item.groupby(level="submission_id").mean()
    item_map = {(str(k[0]), str(k[1])): float(v) for k, v in item.items()}
    overall_map = {str(k): float(v) for k, v in overall.items()}
    return item_map, overall_map


def _question_item(
    question: QuestionDefinition,
    *,
    submitted_ids: list[str],
    item_scores: dict[tuple[str, str], float],
    overall: dict[str, float],
    max_scale: int,
) -> QuestionEffectivenessItem:
    per_submission: list[float] = []
    xs: list[float] = []
    ys: list[float] = []
    for sid in submitted_ids:
        q_score = item_scores.get((sid, question.id))
        if q_score is None:
            continue
        per_submission.append(q_score)
        total = overall.get(sid)
        if total is not None:
            # overall includes this same question (not a corrected item-total)
            xs.append(q_score)
            ys.append(total)

    mean_score = mean_or_none(per_submission)
    difficulty = mean_score / max_scale if mean_score is not None and max_scale else None
    discrimination = pearson(xs, ys)
    return QuestionEffectivenessItem(
        question_id=question.id,
        order_index=question.order_index,
        question_text=question.question_text,
        mean_score=mean_score,
        difficulty=difficulty,
        discrimination=discrimination,
        flags=QuestionFlags(
            too_easy=difficulty is not None and difficulty > TOO_EASY_ABOVE,
            too_hard=difficulty is not None and difficulty < TOO_HARD_BELOW,
            low_discrimination=discrimination is not None and discrimination < LOW_DISCRIMINATION_BELOW,
        ),
    )


def build_assessment_metrics(records: AssessmentRecords) -> AssessmentMetrics:
    """Compute deterministic quantitative metrics from a record snapshot.

    Pure: no I/O, and identical input yields identical output. Only
    submissions with status "submitted" feed completion, transcript and
    score statistics; max_scored_at looks at every submission.
    """
    student_count = len(records.students)
    submitted = [s for s in records.submissions if s.status == SubmissionStatus.SUBMITTED]
    submitted_ids = list(dict.fromkeys(s.id for s in submitted))
    submitted_set = set(submitted_ids)
    submitted_count = len(submitted)

    if student_count:
        completion_rate = submitted_count / student_count
    else:
        completion_rate = 1.0 if submitted_count else 0.0

    responses = [r for r in records.responses if r.submission_id in submitted_set]
    word_counts = [count_words(r.transcript) for r in responses if has_transcript(r.transcript)]
    missing = len(responses) - len(word_counts)
    transcript_missing_rate = missing / len(responses) if responses else 0.0

    scores = _scores_frame(records.scores, submitted_set)
    avg_reasoning = mean_or_none(scores.loc[scores["scorer_type"] == "reasoning", "score"])
    avg_evidence = mean_or_none(scores.loc[scores["scorer_type"] == "evidence", "score"])

    rubric_distributions = {r.rubric_type: _rubric_distribution(r, scores) for r in records.rubrics}

    max_scale = max((r.scale_max for r in records.rubrics), default=DEFAULT_MAX_SCALE)
    item_scores, overall = _item_scores(scores)
    items = [
        _question_item(
            q,
            submitted_ids=submitted_ids,
            item_scores=item_scores,
            overall=overall,
            max_scale=max_scale,
        )
        for q in records.questions
    ]
    items.sort(key=lambda it: it.order_index)

    data_quality = assess_data_quality(
        submitted_count=submitted_count,
        student_count=student_count,
        completion_rate=completion_rate,
        response_count=len(responses),
        transcript_missing_rate=transcript_missing_rate,
    )

    scored = [s.scored_at for s in records.submissions if s.scored_at is not None]

    return AssessmentMetrics(
        student_count=student_count,
        submitted_count=submitted_count,
        completion_rate=completion_rate,
        avg_reasoning_score=avg_reasoning,
        avg_evidence_score=avg_evidence,
        avg_response_length_words=mean_or_none(word_counts),
        data_quality=data_quality,
        rubric_distributions=rubric_distributions,
        question_effectiveness=QuestionEffectiveness(max_scale=max_scale, items=items),
        max_scored_at=max(scored) if scored else None,
    )

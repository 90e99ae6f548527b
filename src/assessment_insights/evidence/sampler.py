from __future__ import annotations

import logging
import string

from ..models import AssessmentRecords, EvidenceExcerpt, ResponseRecord, SubmissionStatus

logger = logging.getLogger(__name__)

MAX_EXCERPTS_PER_QUESTION = 10
MAX_TRANSCRIPT_CHARS = 1200
MAX_SNIPPET_CHARS = 240

_LETTERS = string.ascii_uppercase


def student_label(index: int) -> str:
    """Bijective base-26 label for the index-th distinct student (0 -> A, 26 -> AA)."""
    if index < 0:
        raise ValueError("index must be non-negative")
    n = index
    label = ""
    while True:
        label = _LETTERS[n % 26] + label
        n = n // 26 - 1
        if n < 0:
            break
    return f"Student {label}"


def truncate_text(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return text[: max(0, max_chars - 3)] + "..."


def sample_evidence(
    records: AssessmentRecords,
    *,
    max_per_question: int = MAX_EXCERPTS_PER_QUESTION,
    max_chars: int = MAX_TRANSCRIPT_CHARS,
    snippet_chars: int = MAX_SNIPPET_CHARS,
) -> list[EvidenceExcerpt]:
    """Select pseudonymized transcript excerpts for synthesis.

    Submitted responses with a non-blank transcript are grouped by question in
    arrival order and capped per question. No randomization: the same snapshot
    always yields the same excerpts, ids and labels.
    """
    submitted = [s for s in records.submissions if s.status == SubmissionStatus.SUBMITTED]
    student_by_submission = {s.id: s.student_id for s in submitted}

    labels: dict[str, str] = {}
    for s in submitted:
        if s.student_id not in labels:
            labels[s.student_id] = student_label(len(labels))

    by_question: dict[str, list[ResponseRecord]] = {}
    for row in records.responses:
        if row.submission_id not in student_by_submission:
            continue
        if not row.transcript or not row.transcript.strip():
            continue
        by_question.setdefault(row.question_id, []).append(row)

    questions = {q.id: q for q in records.questions}
    excerpts: list[EvidenceExcerpt] = []
    for question_id, rows in by_question.items():
        question = questions.get(question_id)
        for row in rows[:max_per_question]:
            text = truncate_text((row.transcript or "").strip(), max_chars)
            excerpts.append(
                EvidenceExcerpt(
                    excerpt_id=f"E{len(excerpts) + 1}",
                    submission_id=row.submission_id,
                    question_id=question_id,
                    question_order=question.order_index if question else 0,
                    question_text=question.question_text if question else "",
                    student_label=labels.get(student_by_submission[row.submission_id], "Student"),
                    transcript_text=text,
                    transcript_snippet=truncate_text(text, snippet_chars),
                )
            )

    logger.debug("Sampled %d excerpt(s) across %d question(s)", len(excerpts), len(by_question))
    return excerpts


def build_evidence_index(excerpts: list[EvidenceExcerpt]) -> dict[str, object]:
    """excerpt_id -> excerpt lookup persisted on the report for the UI."""
    return {
        "excerpts": [e.index_view() for e in excerpts],
        "by_id": {e.excerpt_id: e.index_view() for e in excerpts},
    }

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable

import pytest

from assessment_insights.models import (
    AssessmentInfo,
    AssessmentRecords,
    QuestionDefinition,
    ResponseRecord,
    RubricDefinition,
    ScoreRecord,
    StudentRecord,
    SubmissionRecord,
    SubmissionStatus,
)
from assessment_insights.synth.completion import CompletionResult

BASE_TIME = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def build_records(
    *,
    submitted: int = 10,
    questions: int = 2,
    reasoning: float | None = 4.0,
    evidence: float | None = 3.0,
    student_count: int | None = None,
    missing_transcripts: int = 0,
    transcript: str = "The plant grows toward light because of phototropism and auxin.",
    extra_started: int = 0,
    assessment_id: str = "asmt-1",
) -> AssessmentRecords:
    """Uniform class: every submitted student answers every question."""
    n_students = student_count if student_count is not None else submitted + extra_started
    question_defs = [
        QuestionDefinition(id=f"q{i}", order_index=i, question_text=f"Question {i}?") for i in range(1, questions + 1)
    ]
    submissions: list[SubmissionRecord] = []
    responses: list[ResponseRecord] = []
    scores: list[ScoreRecord] = []
    for i in range(submitted):
        sid = f"sub-{i:02d}"
        submissions.append(
            SubmissionRecord(
                id=sid,
                student_id=f"stu-{i:02d}",
                status=SubmissionStatus.SUBMITTED,
                scored_at=BASE_TIME + timedelta(minutes=i),
            )
        )
        for q in question_defs:
            responses.append(ResponseRecord(submission_id=sid, question_id=q.id, transcript=transcript))
            if reasoning is not None:
                scores.append(ScoreRecord(submission_id=sid, question_id=q.id, scorer_type="reasoning", score=reasoning))
            if evidence is not None:
                scores.append(ScoreRecord(submission_id=sid, question_id=q.id, scorer_type="evidence", score=evidence))
    for i in range(missing_transcripts):
        responses[i] = responses[i].model_copy(update={"transcript": None})
    for j in range(extra_started):
        sid = f"sub-started-{j:02d}"
        submissions.append(
            SubmissionRecord(id=sid, student_id=f"stu-started-{j:02d}", status=SubmissionStatus.STARTED)
        )
        responses.append(ResponseRecord(submission_id=sid, question_id="q1", transcript="draft answer"))
        scores.append(ScoreRecord(submission_id=sid, question_id="q1", scorer_type="reasoning", score=1.0))
    return AssessmentRecords(
        assessment=AssessmentInfo(id=assessment_id, class_id="class-1", title="Plants and light", subject="Biology"),
        students=[StudentRecord(id=f"stu-{i:02d}") for i in range(n_students)],
        submissions=submissions,
        responses=responses,
        scores=scores,
        questions=question_defs,
        rubrics=[
            RubricDefinition(rubric_type="reasoning", scale_min=1, scale_max=5),
            RubricDefinition(rubric_type="evidence", scale_min=1, scale_max=5),
        ],
    )


def valid_insights(refs: Iterable[str] = ("E1",), question_id: str = "q1") -> dict[str, Any]:
    return {
        "misconceptions": [
            {
                "claim_id": "m1",
                "claim": "Several responses describe light as pulling the plant upward.",
                "prevalence": 0.4,
                "confidence": "medium",
                "root_cause": "Force language borrowed from everyday speech.",
                "teacher_explanation": "Contrast growth response with physical pulling.",
                "evidence_refs": list(refs),
            }
        ],
        "reasoning_patterns": {"summary": "Most responses state a cause.", "strengths": ["Clear claims"], "gaps": []},
        "evidence_patterns": {"summary": "Evidence is mostly anecdotal.", "strengths": [], "gaps": ["Few data points"]},
        "engagement_indicators": {
            "summary": "Responses are complete.",
            "indicators": ["All questions answered"],
            "note": "Based on transcript length only.",
        },
        "question_effectiveness": {
            "summary": "Question 1 separates responses well.",
            "revisions": [{"question_id": question_id, "suggestion": "Ask for a measured observation."}],
        },
        "suggested_actions": [
            {
                "action_id": "a1",
                "category": "whole_class",
                "action": "Run a short demo comparing growth with and without light.",
                "estimated_minutes": 15,
                "confidence": "high",
            }
        ],
    }


class ScriptedClient:
    """Completion client that replays scripted replies (str) or raises scripted exceptions."""

    provider = "fake"

    def __init__(self, replies: Iterable[str | Exception] = (), model: str = "gpt-4o-mini") -> None:
        self.replies = list(replies)
        self.model = model
        self.calls: list[dict[str, str]] = []

    def complete(self, *, system: str, user: str) -> CompletionResult:
        self.calls.append({"system": system, "user": user})
        if not self.replies:
            raise AssertionError("unexpected completion call")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return CompletionResult(text=reply, model=self.model, prompt_tokens=1200, completion_tokens=300, total_tokens=1500)


@pytest.fixture
def records_factory() -> Callable[..., AssessmentRecords]:
    return build_records


@pytest.fixture
def insights_factory() -> Callable[..., dict[str, Any]]:
    return valid_insights


@pytest.fixture
def scripted_client() -> Callable[..., ScriptedClient]:
    return ScriptedClient

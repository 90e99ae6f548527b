from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SubmissionStatus(str, Enum):
    """
    Lifecycle of a student's submission.

    Only SUBMITTED counts toward completion metrics and evidence sampling.
    """
    ASSIGNED = "assigned"
    STARTED = "started"
    SUBMITTED = "submitted"
    REVIEWED = "reviewed"


LlmMode = Literal["full", "low_confidence", "metrics_only"]
QualityLevel = Literal["good", "limited"]


class AssessmentInfo(BaseModel):
    """
    Assessment metadata handed to the synthesizer.

    class_id scopes the student roster; tenant isolation is the caller's job.
    """
    id: str
    class_id: Optional[str] = None
    title: str = ""
    subject: Optional[str] = None
    target_language: Optional[str] = None
    instructions: Optional[str] = None


class StudentRecord(BaseModel):
    id: str


class SubmissionRecord(BaseModel):
    id: str
    student_id: str
    status: SubmissionStatus
    scored_at: Optional[datetime] = None

    @field_validator("scored_at")
    @classmethod
    def _naive_as_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        # sources mix offset-aware and naive timestamps; naive ones are UTC
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


class ResponseRecord(BaseModel):
    submission_id: str
    question_id: str
    transcript: Optional[str] = None


class ScoreRecord(BaseModel):
    """
    One scorer's score for one response.

    scorer_type is open-ended ("reasoning", "evidence", ...); score may be null
    when a scorer has not produced a value yet.
    """
    submission_id: str
    question_id: str
    scorer_type: str
    score: Optional[float] = None


class RubricDefinition(BaseModel):
    rubric_type: str
    scale_min: int
    scale_max: int
    instructions: Optional[str] = None


class QuestionDefinition(BaseModel):
    id: str
    order_index: int
    question_text: str = ""


class AssessmentRecords(BaseModel):
    """
    Snapshot of every source collection needed for one report run.

    Collections keep the order the source returned them in; sampling and
    labelling rely on that arrival order.
    """
    assessment: AssessmentInfo
    students: list[StudentRecord] = Field(default_factory=list)
    submissions: list[SubmissionRecord] = Field(default_factory=list)
    responses: list[ResponseRecord] = Field(default_factory=list)
    scores: list[ScoreRecord] = Field(default_factory=list)
    questions: list[QuestionDefinition] = Field(default_factory=list)
    rubrics: list[RubricDefinition] = Field(default_factory=list)


# ---- Derived metrics ----


class SanitizationStats(BaseModel):
    dropped_refs: int = 0
    dropped_claims: int = 0
    dropped_revisions: int = 0


class DataQuality(BaseModel):
    quality_level: QualityLevel = "good"
    submission_count: int = 0
    student_count: int = 0
    completion_rate: float = 0.0
    response_count: int = 0
    transcript_missing_rate: float = 0.0
    llm_mode: LlmMode = "full"
    warnings: list[str] = Field(default_factory=list)
    llm_failure: Optional[str] = None
    sanitization: Optional[SanitizationStats] = None


class RubricDistribution(BaseModel):
    scale_min: int
    scale_max: int
    mean: Optional[float] = None
    median: Optional[float] = None
    distribution: dict[str, int] = Field(default_factory=dict)
    threshold: int
    below_threshold_rate: float = 0.0
    watchlist: bool = False


class QuestionFlags(BaseModel):
    too_easy: bool = False
    too_hard: bool = False
    low_discrimination: bool = False


class QuestionEffectivenessItem(BaseModel):
    question_id: str
    order_index: int
    question_text: str
    mean_score: Optional[float] = None
    difficulty: Optional[float] = None
    discrimination: Optional[float] = None
    flags: QuestionFlags = Field(default_factory=QuestionFlags)


class QuestionEffectiveness(BaseModel):
    max_scale: int
    items: list[QuestionEffectivenessItem] = Field(default_factory=list)


class AssessmentMetrics(BaseModel):
    student_count: int
    submitted_count: int
    completion_rate: float
    avg_reasoning_score: Optional[float] = None
    avg_evidence_score: Optional[float] = None
    avg_response_length_words: Optional[float] = None
    data_quality: DataQuality
    rubric_distributions: dict[str, RubricDistribution] = Field(default_factory=dict)
    question_effectiveness: QuestionEffectiveness
    max_scored_at: Optional[datetime] = None


# ---- Evidence ----


class EvidenceExcerpt(BaseModel):
    """
    A pseudonymized transcript excerpt, regenerated on every run.

    transcript_text: transcript truncated for the model prompt and audit store
    transcript_snippet: shorter cut shown next to claims in the UI
    """
    model_config = ConfigDict(frozen=True)

    excerpt_id: str
    submission_id: str
    question_id: str
    question_order: int
    question_text: str = ""
    student_label: str
    transcript_text: str
    transcript_snippet: str

    def prompt_view(self) -> dict[str, Any]:
        # submission_id stays out of the prompt; the label is the only handle
        return {
            "excerpt_id": self.excerpt_id,
            "question_id": self.question_id,
            "question_order": self.question_order,
            "question_text": self.question_text,
            "student_label": self.student_label,
            "transcript_snippet": self.transcript_text,
        }

    def index_view(self) -> dict[str, Any]:
        return {
            "excerpt_id": self.excerpt_id,
            "question_id": self.question_id,
            "question_order": self.question_order,
            "student_label": self.student_label,
            "transcript_snippet": self.transcript_snippet,
        }


# ---- Persisted artifacts ----


class AnalysisReport(BaseModel):
    """
    Immutable analysis snapshot. A new generation request creates a new
    version; prior versions are never mutated.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    assessment_id: str
    class_id: Optional[str] = None
    status: str = "complete"
    report_version: int
    supersedes_report_id: Optional[str] = None
    generated_at: datetime
    student_count: int
    completion_rate: float
    avg_reasoning_score: Optional[float] = None
    avg_evidence_score: Optional[float] = None
    avg_response_length_words: Optional[float] = None
    data_quality: dict[str, Any]
    rubric_distributions: dict[str, Any]
    question_effectiveness: dict[str, Any]
    misconceptions: list[dict[str, Any]] = Field(default_factory=list)
    reasoning_patterns: Optional[dict[str, Any]] = None
    evidence_patterns: Optional[dict[str, Any]] = None
    engagement_indicators: Optional[dict[str, Any]] = None
    suggested_actions: list[dict[str, Any]] = Field(default_factory=list)
    evidence_index: Optional[dict[str, Any]] = None
    processing_time_seconds: float = 0.0
    ai_model_version: Optional[str] = None
    raw_ai_analysis: Optional[str] = None


class EvidenceRef(BaseModel):
    """Audit row proving a surviving claim cites a real sampled excerpt."""
    model_config = ConfigDict(frozen=True)

    report_id: str
    claim_id: str
    excerpt_id: str
    submission_id: str
    question_id: str


class AssessmentPointer(BaseModel):
    assessment_id: str
    latest_report_id: str
    has_report: bool = True
    scores_last_modified_at: datetime

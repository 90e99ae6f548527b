from __future__ import annotations

from typing import Annotated, Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, ValidationError, model_validator

from ..errors import SchemaValidationError
from .normalize import normalize_insight_shape

Confidence = Literal["high", "medium", "low"]
ActionCategory = Literal["whole_class", "small_group", "extension", "follow_up"]

ListItem = Annotated[str, StringConstraints(min_length=1, max_length=200)]
ExcerptId = Annotated[str, StringConstraints(min_length=1)]

MAX_ISSUES = 6


class _Contract(BaseModel):
    model_config = ConfigDict(extra="ignore")


class Misconception(_Contract):
    claim_id: str = Field(min_length=1, max_length=64)
    claim: str = Field(min_length=1, max_length=280)
    prevalence: float = Field(ge=0.0, le=1.0)
    confidence: Confidence
    root_cause: Optional[str] = Field(default=None, max_length=400)
    teacher_explanation: str = Field(min_length=1, max_length=400)
    evidence_refs: list[ExcerptId] = Field(min_length=1, max_length=6)


class PatternSummary(_Contract):
    summary: str = Field(min_length=1, max_length=600)
    strengths: list[ListItem] = Field(default_factory=list, max_length=6)
    gaps: list[ListItem] = Field(default_factory=list, max_length=6)


class EngagementIndicators(_Contract):
    summary: str = Field(min_length=1, max_length=400)
    indicators: list[ListItem] = Field(default_factory=list, max_length=6)
    note: str = Field(min_length=1, max_length=300)


class QuestionRevision(_Contract):
    question_id: str = Field(min_length=1)
    suggestion: str = Field(min_length=1, max_length=300)


class QuestionEffectivenessNarrative(_Contract):
    summary: str = Field(min_length=1, max_length=600)
    revisions: list[QuestionRevision] = Field(default_factory=list, max_length=10)


class SuggestedAction(_Contract):
    action_id: str = Field(min_length=1, max_length=64)
    category: ActionCategory
    action: str = Field(min_length=1, max_length=280)
    estimated_minutes: Optional[int] = Field(default=None, ge=0, le=120)
    confidence: Confidence


class InsightPayload(_Contract):
    """Canonical AI insight contract. Any violation rejects the whole payload."""

    misconceptions: list[Misconception] = Field(default_factory=list, max_length=5)
    reasoning_patterns: PatternSummary
    evidence_patterns: PatternSummary
    engagement_indicators: EngagementIndicators
    question_effectiveness: QuestionEffectivenessNarrative
    suggested_actions: list[SuggestedAction] = Field(default_factory=list, max_length=6)

    @model_validator(mode="after")
    def _unique_claim_ids(self) -> "InsightPayload":
        # evidence ref rows are keyed by claim_id
        seen: set[str] = set()
        for m in self.misconceptions:
            if m.claim_id in seen:
                raise ValueError(f"duplicate claim_id: {m.claim_id}")
            seen.add(m.claim_id)
        return self


def format_issues(err: ValidationError, *, limit: int = MAX_ISSUES) -> list[str]:
    issues: list[str] = []
    for e in err.errors()[:limit]:
        path = ".".join(str(p) for p in e.get("loc", ())) or "(root)"
        issues.append(f"{path}: {e.get('msg', 'invalid')}")
    return issues


def validate_insights(obj: Any) -> InsightPayload:
    """Normalize then strictly validate a parsed model object.

    Raises SchemaValidationError carrying the first few issues.
    """
    if not isinstance(obj, dict):
        raise SchemaValidationError("AI output must be a JSON object.", ["(root): expected object"])
    try:
        return InsightPayload.model_validate(normalize_insight_shape(obj))
    except ValidationError as e:
        issues = format_issues(e)
        raise SchemaValidationError(
            "AI output was not in the expected format. " + " | ".join(issues), issues
        ) from e


SCHEMA_TEMPLATE = """{
  "misconceptions": [{
    "claim_id": "string",
    "claim": "string (<=280 chars)",
    "prevalence": 0.0,
    "confidence": "high|medium|low",
    "root_cause": "string|null (<=400 chars)",
    "teacher_explanation": "string (<=400 chars)",
    "evidence_refs": ["excerpt_id"]
  }],
  "reasoning_patterns": { "summary": "string", "strengths": ["string"], "gaps": ["string"] },
  "evidence_patterns": { "summary": "string", "strengths": ["string"], "gaps": ["string"] },
  "engagement_indicators": { "summary": "string", "indicators": ["string"], "note": "string" },
  "question_effectiveness": {
    "summary": "string",
    "revisions": [{ "question_id": "string", "suggestion": "string" }]
  },
  "suggested_actions": [{
    "action_id": "string",
    "category": "whole_class|small_group|extension|follow_up",
    "action": "string",
    "estimated_minutes": 0,
    "confidence": "high|medium|low"
  }]
}"""

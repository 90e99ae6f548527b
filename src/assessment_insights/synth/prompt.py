from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from ..models import AssessmentInfo, AssessmentMetrics, EvidenceExcerpt, RubricDefinition
from .schema import SCHEMA_TEMPLATE


@dataclass(frozen=True)
class SynthesisInputs:
    """The only material the model is allowed to see.

    Metrics are aggregates; excerpts are pseudonymized and carry no
    submission or student ids.
    """

    assessment: AssessmentInfo
    rubrics: list[RubricDefinition]
    metrics: AssessmentMetrics
    excerpts: list[EvidenceExcerpt]

    @property
    def excerpt_ids(self) -> list[str]:
        return [e.excerpt_id for e in self.excerpts]


def build_system_prompt(*, low_confidence: bool = False) -> str:
    parts = [
        "You are an instructional analysis assistant.",
        "Return ONLY a JSON object (no markdown) matching the schema.",
        "Every misconception must cite evidence_refs chosen only from the excerpt_id values provided; "
        "never cite an id that is not in the supplied excerpts.",
        "Question revisions may only reference question_id values that appear in the supplied excerpts.",
        "Do not name students. Refer to students only by the provided student labels, and only when necessary.",
        "Do not infer emotion, affect, motivation, or attitude.",
        "Do not use first-person pronouns (I, me, my, we, us, our) in any text field. "
        "Use objective, professional language.",
    ]
    if low_confidence:
        parts.append(
            "The number of responses is limited: prefer 'low' or 'medium' confidence and keep prevalence estimates conservative."
        )
    return " ".join(parts)


def build_payload(inputs: SynthesisInputs) -> dict[str, Any]:
    m = inputs.metrics
    return {
        "assessment": {
            "title": inputs.assessment.title,
            "subject": inputs.assessment.subject,
            "target_language": inputs.assessment.target_language,
            "instructions": inputs.assessment.instructions,
        },
        "rubrics": [r.model_dump(mode="json") for r in inputs.rubrics],
        "metrics": {
            "data_quality": m.data_quality.model_dump(mode="json", exclude={"llm_failure", "sanitization"}),
            "rubric_distributions": {k: v.model_dump(mode="json") for k, v in m.rubric_distributions.items()},
            "question_effectiveness": m.question_effectiveness.model_dump(mode="json"),
        },
        "excerpts": [e.prompt_view() for e in inputs.excerpts],
        "allowed_excerpt_ids": inputs.excerpt_ids,
    }


def build_user_prompt(inputs: SynthesisInputs) -> str:
    return (
        "Use the following data to produce assessment-level insights.\n"
        "Return JSON ONLY. Schema:\n"
        f"{SCHEMA_TEMPLATE}\n\n"
        "Data:\n"
        f"{json.dumps(build_payload(inputs), sort_keys=True, ensure_ascii=False)}"
    )


def build_repair_prompt(original_text: str, issues: list[str]) -> str:
    issue_lines = "\n".join(f"- {i}" for i in issues) if issues else "- (unparseable JSON)"
    return (
        "Fix the JSON to match the schema exactly. Preserve the original intent and content; "
        "change only what is needed to satisfy the schema. Return JSON only.\n"
        "Schema:\n"
        f"{SCHEMA_TEMPLATE}\n\n"
        "Problems found:\n"
        f"{issue_lines}\n\n"
        "Original:\n"
        f"{original_text}"
    )

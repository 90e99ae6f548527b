"""Shape normalization for loosely-structured model JSON.

Models return plausible-but-wrong shapes: arrays emitted as objects keyed by
index, camelCase or synonym field names, a single string where a list is
expected. These helpers map such shapes onto the canonical layout *before*
strict validation. They never invent content and never fix values; anything
they cannot map is passed through so validation can reject it.

The generic helpers (`pick`, `coerce_list`, `coerce_str_list`) are meant to be
reused by any AI-generation path; `normalize_insight_shape` applies them to the
assessment insight contract.
"""

from __future__ import annotations

import re
from typing import Any, Mapping

_INDEX_KEY_RE = re.compile(r"^\d+$")

_MISSING = object()


def pick(obj: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    """First present (non-None) value among keys."""
    for k in keys:
        v = obj.get(k, _MISSING)
        if v is not _MISSING and v is not None:
            return v
    return default


def coerce_list(value: Any) -> Any:
    """Turn index-keyed or id-keyed objects into lists; leave anything else alone."""
    if isinstance(value, list) or not isinstance(value, Mapping):
        return value
    if not value:
        return []
    keys = [str(k) for k in value.keys()]
    if all(_INDEX_KEY_RE.match(k) for k in keys):
        ordered = sorted(value.items(), key=lambda kv: int(str(kv[0])))
        return [v for _, v in ordered]
    if all(isinstance(v, Mapping) for v in value.values()):
        return [value[k] for k in sorted(value.keys(), key=str)]
    return value


def coerce_str_list(value: Any) -> Any:
    value = coerce_list(value)
    if isinstance(value, str):
        return [value] if value.strip() else []
    return value


def _rename(item: Any, aliases: Mapping[str, tuple[str, ...]]) -> Any:
    if not isinstance(item, Mapping):
        return item
    out = dict(item)
    for canonical, names in aliases.items():
        if out.get(canonical) is None:
            v = pick(item, *names)
            if v is not None:
                out[canonical] = v
    return out


_TOP_LEVEL_ALIASES: dict[str, tuple[str, ...]] = {
    "misconceptions": ("misconception", "common_misconceptions", "commonMisconceptions"),
    "reasoning_patterns": ("reasoningPatterns", "reasoning"),
    "evidence_patterns": ("evidencePatterns", "evidence"),
    "engagement_indicators": ("engagementIndicators", "engagement"),
    "question_effectiveness": ("questionEffectiveness", "question_analysis", "questionAnalysis"),
    "suggested_actions": ("suggestedActions", "actions", "next_steps", "nextSteps"),
}

_MISCONCEPTION_ALIASES: dict[str, tuple[str, ...]] = {
    "claim_id": ("claimId", "id"),
    "claim": ("statement", "text", "description"),
    "root_cause": ("rootCause",),
    "teacher_explanation": ("teacherExplanation", "explanation"),
    "evidence_refs": ("evidenceRefs", "evidence", "excerpt_ids", "excerptIds"),
}

_REVISION_ALIASES: dict[str, tuple[str, ...]] = {
    "question_id": ("questionId", "id"),
    "suggestion": ("revision", "text"),
}

_ACTION_ALIASES: dict[str, tuple[str, ...]] = {
    "action_id": ("actionId", "id"),
    "action": ("text", "description"),
    "estimated_minutes": ("estimatedMinutes", "minutes"),
}

_QE_ALIASES: dict[str, tuple[str, ...]] = {
    "revisions": ("questions", "question_revisions", "questionRevisions", "suggestions"),
}


def _normalize_refs(value: Any) -> Any:
    value = coerce_str_list(value)
    if not isinstance(value, list):
        return value
    out: list[Any] = []
    for ref in value:
        if isinstance(ref, Mapping):
            ref = pick(ref, "excerpt_id", "excerptId", "id", default=ref)
        out.append(ref)
    return out


def _normalize_pattern_block(block: Any, *list_fields: str) -> Any:
    if not isinstance(block, Mapping):
        return block
    out = dict(block)
    for f in list_fields:
        if f in out:
            out[f] = coerce_str_list(out[f])
    return out


def normalize_insight_shape(obj: Any) -> Any:
    """Map plausible alternate insight shapes onto the canonical schema."""
    if not isinstance(obj, Mapping):
        return obj
    out = _rename(obj, _TOP_LEVEL_ALIASES)

    misconceptions = coerce_list(out.get("misconceptions"))
    if isinstance(misconceptions, list):
        items = []
        for m in misconceptions:
            m = _rename(m, _MISCONCEPTION_ALIASES)
            if isinstance(m, dict) and "evidence_refs" in m:
                m["evidence_refs"] = _normalize_refs(m["evidence_refs"])
            items.append(m)
        out["misconceptions"] = items

    for key in ("reasoning_patterns", "evidence_patterns"):
        if key in out:
            out[key] = _normalize_pattern_block(out[key], "strengths", "gaps")
    if "engagement_indicators" in out:
        out["engagement_indicators"] = _normalize_pattern_block(out["engagement_indicators"], "indicators")

    qe = out.get("question_effectiveness")
    if isinstance(qe, Mapping):
        qe = _rename(qe, _QE_ALIASES)
        revisions = coerce_list(qe.get("revisions"))
        if isinstance(revisions, list):
            qe["revisions"] = [_rename(r, _REVISION_ALIASES) for r in revisions]
        out["question_effectiveness"] = qe

    actions = coerce_list(out.get("suggested_actions"))
    if isinstance(actions, list):
        out["suggested_actions"] = [_rename(a, _ACTION_ALIASES) for a in actions]

    return out

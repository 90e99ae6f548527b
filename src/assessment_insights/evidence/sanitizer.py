from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from ..models import EvidenceExcerpt, SanitizationStats
from ..synth.schema import InsightPayload

logger = logging.getLogger(__name__)

MAX_REFS_PER_CLAIM = 6
MAX_REVISIONS = 10


@dataclass(frozen=True)
class SanitizedInsights:
    payload: InsightPayload
    stats: SanitizationStats


def sanitize_insights(payload: InsightPayload, excerpts: Iterable[EvidenceExcerpt]) -> SanitizedInsights:
    """Drop every reference that does not point at a supplied excerpt.

    Valid ids are taken from exactly the excerpts given to the synthesizer.
    Misconceptions left with no valid reference are dropped whole; revisions
    naming an unknown question are dropped. Runs on every synthesis result,
    whatever the model was told.
    """
    excerpts = list(excerpts)
    valid_excerpt_ids = {e.excerpt_id for e in excerpts}
    valid_question_ids = {e.question_id for e in excerpts}

    dropped_refs = 0
    dropped_claims = 0
    kept_misconceptions = []
    for m in payload.misconceptions:
        refs = list(dict.fromkeys(r for r in m.evidence_refs if r in valid_excerpt_ids))
        dropped_refs += len(m.evidence_refs) - len(refs)
        if not refs:
            dropped_claims += 1
            continue
        kept_misconceptions.append(m.model_copy(update={"evidence_refs": refs[:MAX_REFS_PER_CLAIM]}))

    revisions = [r for r in payload.question_effectiveness.revisions if r.question_id in valid_question_ids]
    dropped_revisions = len(payload.question_effectiveness.revisions) - len(revisions)

    sanitized = payload.model_copy(
        update={
            "misconceptions": kept_misconceptions,
            "question_effectiveness": payload.question_effectiveness.model_copy(
                update={"revisions": revisions[:MAX_REVISIONS]}
            ),
        }
    )
    stats = SanitizationStats(
        dropped_refs=dropped_refs,
        dropped_claims=dropped_claims,
        dropped_revisions=dropped_revisions,
    )
    if dropped_refs or dropped_claims or dropped_revisions:
        logger.warning(
            "Sanitizer dropped unsupported AI references: refs=%d claims=%d revisions=%d",
            dropped_refs,
            dropped_claims,
            dropped_revisions,
        )
    return SanitizedInsights(payload=sanitized, stats=stats)

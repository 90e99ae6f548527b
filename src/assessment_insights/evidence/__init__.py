from .sampler import (
    MAX_EXCERPTS_PER_QUESTION,
    MAX_SNIPPET_CHARS,
    MAX_TRANSCRIPT_CHARS,
    build_evidence_index,
    sample_evidence,
    student_label,
    truncate_text,
)
from .sanitizer import SanitizedInsights, sanitize_insights

__all__ = [
    "MAX_EXCERPTS_PER_QUESTION",
    "MAX_SNIPPET_CHARS",
    "MAX_TRANSCRIPT_CHARS",
    "SanitizedInsights",
    "build_evidence_index",
    "sample_evidence",
    "sanitize_insights",
    "student_label",
    "truncate_text",
]

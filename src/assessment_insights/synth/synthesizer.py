from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Optional

from ..errors import EmptyEvidenceError, ModelCallError, SchemaValidationError
from .completion import CompletionClient, CompletionResult
from .json_extract import parse_model_text
from .prompt import SynthesisInputs, build_repair_prompt, build_system_prompt, build_user_prompt
from .schema import InsightPayload, validate_insights
from .usage import ApiCallRecord, Phase, UsageSink, emit_usage, estimate_cost_cents

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SynthesisResult:
    """Validated (not yet sanitized) insights plus the audit trail."""

    payload: InsightPayload
    raw_text: str
    model: str
    repaired: bool
    calls: int


def parse_and_validate(text: str) -> InsightPayload:
    return validate_insights(parse_model_text(text))


def _call(
    client: CompletionClient,
    *,
    phase: Phase,
    system: str,
    user: str,
    usage_sink: Optional[UsageSink],
    assessment_id: Optional[str],
) -> CompletionResult:
    started = time.monotonic()
    model = getattr(client, "model", "") or ""
    provider = getattr(client, "provider", "unknown")
    try:
        result = client.complete(system=system, user=user)
    except ModelCallError as e:
        emit_usage(
            usage_sink,
            ApiCallRecord(
                provider=provider,
                model=model,
                phase=phase,
                status="error",
                latency_ms=int((time.monotonic() - started) * 1000),
                error=str(e),
                assessment_id=assessment_id,
            ),
        )
        raise
    emit_usage(
        usage_sink,
        ApiCallRecord(
            provider=provider,
            model=result.model or model,
            phase=phase,
            status="success",
            latency_ms=int((time.monotonic() - started) * 1000),
            prompt_tokens=result.prompt_tokens,
            completion_tokens=result.completion_tokens,
            total_tokens=result.total_tokens,
            cost_cents=estimate_cost_cents(
                result.model or model, result.prompt_tokens, result.completion_tokens, result.total_tokens
            ),
            assessment_id=assessment_id,
        ),
    )
    return result


def synthesize_insights(
    inputs: SynthesisInputs,
    client: CompletionClient,
    *,
    low_confidence: bool = False,
    usage_sink: Optional[UsageSink] = None,
) -> SynthesisResult:
    """One generation call, plus exactly one repair call if validation fails.

    Raises:
        EmptyEvidenceError: no excerpts to ground claims in (no call is made)
        ModelCallError: the completion interface failed on either call
        SchemaValidationError: the repaired output still violates the contract
    """
    if not inputs.excerpts:
        raise EmptyEvidenceError("No evidence excerpts available for synthesis.")

    assessment_id = inputs.assessment.id
    system = build_system_prompt(low_confidence=low_confidence)

    first = _call(
        client,
        phase="generation",
        system=system,
        user=build_user_prompt(inputs),
        usage_sink=usage_sink,
        assessment_id=assessment_id,
    )
    try:
        payload = parse_and_validate(first.text)
        return SynthesisResult(payload=payload, raw_text=first.text, model=first.model, repaired=False, calls=1)
    except SchemaValidationError as e:
        logger.info("Insight output failed validation; attempting repair: %s", "; ".join(e.issues))
        issues = e.issues

    second = _call(
        client,
        phase="repair",
        system=system,
        user=build_repair_prompt(first.text, issues),
        usage_sink=usage_sink,
        assessment_id=assessment_id,
    )
    try:
        payload = parse_and_validate(second.text)
    except SchemaValidationError as e:
        logger.warning("Repaired insight output still invalid: %s", "; ".join(e.issues))
        raise
    return SynthesisResult(payload=payload, raw_text=second.text, model=second.model, repaired=True, calls=2)

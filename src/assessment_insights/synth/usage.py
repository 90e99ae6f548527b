from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Callable, Literal, Optional

logger = logging.getLogger(__name__)

Phase = Literal["generation", "repair"]

ESTIMATED_USD_PER_TOKEN = 0.000001
MODEL_COSTS_PER_MILLION: dict[str, dict[str, float]] = {
    "gpt-4o-mini-2024-07-18": {"input": 0.15, "output": 0.6},
    "gpt-4o-mini": {"input": 0.15, "output": 0.6},
}


@dataclass(frozen=True)
class ApiCallRecord:
    """One completion round-trip, successful or not."""

    provider: str
    model: str
    phase: Phase
    status: Literal["success", "error"]
    latency_ms: int
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None
    cost_cents: Optional[int] = None
    error: Optional[str] = None
    assessment_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


UsageSink = Callable[[ApiCallRecord], None]


def estimate_cost_cents(
    model: str | None,
    prompt_tokens: int | None,
    completion_tokens: int | None,
    total_tokens: int | None = None,
) -> int | None:
    prompt = prompt_tokens or 0
    completion = completion_tokens or 0
    total = total_tokens if total_tokens is not None else prompt + completion
    if total <= 0:
        return None
    pricing = MODEL_COSTS_PER_MILLION.get((model or "").lower())
    if pricing:
        usd = (prompt / 1_000_000) * pricing["input"] + (completion / 1_000_000) * pricing["output"]
    else:
        usd = total * ESTIMATED_USD_PER_TOKEN
    return round(usd * 100)


def emit_usage(sink: UsageSink | None, record: ApiCallRecord) -> None:
    """Hand a record to the sink; sink failures never reach the caller."""
    if sink is None:
        return
    try:
        sink(record)
    except Exception:  # noqa: BLE001
        logger.warning("Failed to record API call usage (phase=%s)", record.phase, exc_info=True)

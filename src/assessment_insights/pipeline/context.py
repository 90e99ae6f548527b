from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime

from ..utils import utc_now


@dataclass(frozen=True)
class RunContext:
    """Identifiers and timing for one report-generation request."""

    assessment_id: str
    run_id: str
    started_at: datetime
    _started_monotonic: float = field(repr=False, compare=False)

    @classmethod
    def create(cls, *, assessment_id: str, run_id: str | None = None) -> "RunContext":
        return cls(
            assessment_id=assessment_id,
            run_id=run_id or str(uuid.uuid4()),
            started_at=utc_now(),
            _started_monotonic=time.monotonic(),
        )

    def elapsed_seconds(self) -> float:
        return max(0.0, time.monotonic() - self._started_monotonic)

from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_MODEL = "gpt-4o-mini-2024-07-18"


@dataclass(frozen=True)
class AnalysisSettings:
    """Settings for the external completion interface.

    Read from the environment; nothing here is required unless the OpenAI
    client is actually built.
    """

    api_key: str | None
    base_url: str | None
    model: str
    temperature: float

    @classmethod
    def from_env(cls) -> "AnalysisSettings":
        raw_temp = os.getenv("ANALYSIS_TEMPERATURE", "")
        try:
            temperature = float(raw_temp) if raw_temp.strip() else 0.2
        except ValueError:
            temperature = 0.2
        return cls(
            api_key=os.getenv("OPENAI_API_KEY") or None,
            base_url=os.getenv("OPENAI_BASE_URL") or None,
            model=os.getenv("ANALYSIS_MODEL") or DEFAULT_MODEL,
            temperature=temperature,
        )

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from ..config import AnalysisSettings
from ..errors import ModelCallError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompletionResult:
    text: str
    model: str
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None


class CompletionClient(Protocol):
    """Structured-output text completion: system instruction + user payload -> JSON text.

    Implementations raise ModelCallError for transport, quota, timeout or
    empty-response failures.
    """

    provider: str
    model: str

    def complete(self, *, system: str, user: str) -> CompletionResult:  # pragma: no cover - interface
        ...


class OpenAICompletionClient:
    """Chat-completions client in JSON-object mode.

    The SDK's own retries are disabled: a run makes one generation call and at
    most one repair call. Timeouts are the caller's to impose.
    """

    provider = "openai"

    def __init__(self, settings: AnalysisSettings | None = None, *, client: object | None = None) -> None:
        self.settings = settings or AnalysisSettings.from_env()
        self.model = self.settings.model
        self._client = client

    def _get_client(self):
        if self._client is not None:
            return self._client
        if not self.settings.api_key:
            raise ModelCallError("Missing OPENAI_API_KEY.")
        # Lazy import keeps metrics-only use free of the SDK import cost.
        from openai import OpenAI

        logging.getLogger("httpx").setLevel(logging.WARNING)
        self._client = OpenAI(
            api_key=self.settings.api_key,
            base_url=self.settings.base_url,
            max_retries=0,
        )
        return self._client

    def complete(self, *, system: str, user: str) -> CompletionResult:
        client = self._get_client()
        try:
            resp = client.chat.completions.create(  # type: ignore[attr-defined]
                model=self.model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
                temperature=self.settings.temperature,
                response_format={"type": "json_object"},
            )
        except Exception as e:  # noqa: BLE001
            raise ModelCallError(f"{type(e).__name__}: {e}") from e

        text = ""
        if resp.choices:
            text = resp.choices[0].message.content or ""
        if not text.strip():
            raise ModelCallError("Model returned an empty response.")

        usage = getattr(resp, "usage", None)
        return CompletionResult(
            text=text,
            model=getattr(resp, "model", None) or self.model,
            prompt_tokens=getattr(usage, "prompt_tokens", None),
            completion_tokens=getattr(usage, "completion_tokens", None),
            total_tokens=getattr(usage, "total_tokens", None),
        )

"""AI insight synthesis.

The model sees only aggregate metrics and pseudonymized excerpts. Its output
is parsed in two stages, normalized, strictly validated and repaired at most
once; grounding is enforced afterwards by the evidence sanitizer.
"""

from .completion import CompletionClient, CompletionResult, OpenAICompletionClient
from .json_extract import extract_first_json_object, parse_json_direct, parse_model_text
from .normalize import coerce_list, normalize_insight_shape, pick
from .prompt import SynthesisInputs
from .schema import InsightPayload, validate_insights
from .synthesizer import SynthesisResult, synthesize_insights
from .usage import ApiCallRecord, estimate_cost_cents

__all__ = [
    "ApiCallRecord",
    "CompletionClient",
    "CompletionResult",
    "InsightPayload",
    "OpenAICompletionClient",
    "SynthesisInputs",
    "SynthesisResult",
    "coerce_list",
    "estimate_cost_cents",
    "extract_first_json_object",
    "normalize_insight_shape",
    "parse_json_direct",
    "parse_model_text",
    "pick",
    "synthesize_insights",
    "validate_insights",
]

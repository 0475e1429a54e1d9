import json
import logging
from dataclasses import dataclass
from typing import Optional, Union

import httpx
from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as SchemaValidationError

from asr_optimizer.config import resolve_anthropic_runtime
from asr_optimizer.errors import ParseError, UpstreamError
from asr_optimizer.transcripts.segmenter import ProcessedData

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a JSON-only response bot. You must respond with valid JSON "
    "that matches the schema specified in the prompt."
)

DEFAULT_SETTINGS_MS = {
    "silence_wait": 500,
    "utterance_end": 1500,
    "punctuation_wait": 1000,
    "no_punctuation_wait": 5000,
}

PROMPT_TEMPLATE = """Your goal is to analyze previous phone conversation with ASR debug traces to find the optimal settings to set the followings options:

- (ASR) Silence Wait: How much audio silence to wait before resolving, not effective in noisy environments.
- (ASR) Utterance End: Looks for a sufficiently long gap in transcribed word timing.
- (ASR) Punctuation Wait: How long to wait after a full sentence with punctuation is transcribed.
- (ASR) No Punctuation Wait: How long to wait if there is transcription, but no final punctuation.

All values for these settings are in MS and the default config is:

- (ASR) Silence Wait: {silence_wait} MS
- (ASR) Utterance End: {utterance_end} MS
- (ASR) Punctuation Wait: {punctuation_wait} MS
- (ASR) No Punctuation Wait: {no_punctuation_wait} MS

Now, based on the following logs, please provide the optimal settings with a summary to justify your choices:

<logs>
{logs}
</logs>


IMPORTANT: Your response must be a valid JSON object with exactly these fields:
{{
    "analysis": "your analysis here",
    "silence_wait": number,
    "utterance_end": number,
    "punctuation_wait": number,
    "no_punctuation_wait": number
}}"""


class OptimizationRecommendation(BaseModel):
    # Strict: "500" or true are not numbers, and neither are NaN or inf.
    model_config = ConfigDict(strict=True, allow_inf_nan=False)

    analysis: str
    silence_wait: Union[int, float]
    utterance_end: Union[int, float]
    punctuation_wait: Union[int, float]
    no_punctuation_wait: Union[int, float]


@dataclass
class ParseResult:
    ok: bool
    recommendation: Optional[OptimizationRecommendation] = None
    error: str = ""
    raw_output: str = ""


def build_prompt(data: ProcessedData) -> str:
    logs = json.dumps(data.model_dump(), indent=2, ensure_ascii=False)
    return PROMPT_TEMPLATE.format(logs=logs, **DEFAULT_SETTINGS_MS)


def extract_json_fragment(text: str) -> Optional[str]:
    if not text:
        return None
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end <= start:
        return None
    return text[start : end + 1].strip()


def _describe_schema_error(exc: SchemaValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if isinstance(p, str)) or "<root>"
        parts.append(f"{loc}: {err.get('msg')}")
    return "; ".join(parts)


def _reject_constant(name: str):
    raise ValueError(f"{name} is not a valid JSON value")


def parse_recommendation(text: str) -> ParseResult:
    raw = text or ""
    fragment = extract_json_fragment(raw)
    if fragment is None:
        return ParseResult(ok=False, error="no JSON object found in model output", raw_output=raw)
    try:
        # NaN and Infinity are not JSON; 1e400 overflows to inf and fails validation.
        parsed = json.loads(fragment, parse_constant=_reject_constant)
    except ValueError as e:
        return ParseResult(ok=False, error=f"invalid JSON: {e}", raw_output=raw)
    if not isinstance(parsed, dict):
        return ParseResult(ok=False, error="model output is not a JSON object", raw_output=raw)
    try:
        recommendation = OptimizationRecommendation.model_validate(parsed)
    except SchemaValidationError as e:
        return ParseResult(ok=False, error=_describe_schema_error(e), raw_output=raw)
    return ParseResult(ok=True, recommendation=recommendation, raw_output=raw)


async def call_anthropic(
    prompt: str,
    runtime: dict,
    *,
    client: Optional[httpx.AsyncClient] = None,
) -> str:
    headers = {
        "x-api-key": runtime.get("api_key") or "",
        "anthropic-version": runtime.get("api_version") or "2023-06-01",
        "Content-Type": "application/json",
    }
    body = {
        "model": runtime.get("model"),
        "max_tokens": int(runtime.get("max_tokens") or 1024),
        "temperature": float(runtime.get("temperature", 0.5)),
        "system": SYSTEM_PROMPT,
        "messages": [{"role": "user", "content": prompt}],
    }
    owns_client = client is None
    http = client or httpx.AsyncClient(timeout=float(runtime.get("timeout_seconds") or 60.0))
    try:
        res = await http.post(f"{runtime.get('api_base_url')}/messages", headers=headers, json=body)
        if res.status_code >= 400:
            detail = (res.text or "").strip()
            raise UpstreamError(
                f"Anthropic request failed ({res.status_code}): {detail[:300]}",
                upstream_status=res.status_code,
                body=detail,
            )
        try:
            data = res.json()
        except ValueError as e:
            raise UpstreamError(
                f"Anthropic response is not JSON: {e}",
                upstream_status=res.status_code,
                body=(res.text or "")[:500],
            )
    finally:
        if owns_client:
            await http.aclose()

    content = data.get("content", []) if isinstance(data, dict) else []
    parts = []
    if isinstance(content, list):
        for block in content:
            if not isinstance(block, dict):
                continue
            if block.get("type") == "text":
                parts.append(str(block.get("text") or ""))
            else:
                parts.append(json.dumps(block))
    return "\n".join(parts)


async def recommend(
    data: ProcessedData,
    runtime: Optional[dict] = None,
    *,
    client: Optional[httpx.AsyncClient] = None,
) -> OptimizationRecommendation:
    rt = runtime or resolve_anthropic_runtime()
    logger.info(
        f"Requesting ASR recommendation: model={rt.get('model')} conversations={len(data.conversations)}"
    )
    text = await call_anthropic(build_prompt(data), rt, client=client)
    result = parse_recommendation(text)
    if not result.ok:
        logger.debug(f"Unparseable model output: {result.raw_output!r}")
        raise ParseError(
            f"Failed to parse model response: {result.error}",
            raw_output=result.raw_output,
            reason=result.error,
        )
    return result.recommendation

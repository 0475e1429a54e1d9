import logging
from typing import Any, Optional
from urllib.parse import quote

import httpx

from asr_optimizer.config import resolve_voiceflow_runtime
from asr_optimizer.errors import NotFoundError, UpstreamError

logger = logging.getLogger(__name__)


def _headers(api_key: str) -> dict:
    # The caller's Voiceflow key is forwarded as-is.
    return {
        "Authorization": api_key,
        "Content-Type": "application/json",
    }


def _raise_for_upstream(res: httpx.Response, what: str):
    if res.status_code < 400:
        return
    body = (res.text or "").strip()
    raise UpstreamError(
        f"Failed to fetch {what} ({res.status_code}): {body[:500]}",
        upstream_status=res.status_code,
        body=body,
    )


def _json_body(res: httpx.Response, what: str) -> Any:
    try:
        return res.json()
    except ValueError as e:
        raise UpstreamError(
            f"Failed to fetch {what}: response is not JSON ({e})",
            upstream_status=res.status_code,
            body=(res.text or "")[:500],
        )


def find_transcript_id(transcripts: Any, user_id: str) -> Optional[str]:
    if not isinstance(transcripts, list):
        return None
    for item in transcripts:
        if isinstance(item, dict) and item.get("sessionID") == user_id:
            transcript_id = item.get("_id")
            return str(transcript_id) if transcript_id is not None else None
    return None


async def fetch_transcript(
    project_id: str,
    user_id: str,
    api_key: str,
    *,
    runtime: Optional[dict] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> list:
    """
    Download the most recent transcript of ``user_id`` within the configured
    lookback window. Two sequential calls: list transcripts for the project,
    then fetch the one whose ``sessionID`` matches.
    """
    rt = runtime or resolve_voiceflow_runtime()
    base = rt["api_base_url"]
    list_url = f"{base}/transcripts/{quote(project_id, safe='')}?range={quote(rt['transcript_range'])}"

    owns_client = client is None
    http = client or httpx.AsyncClient(timeout=rt["timeout_seconds"])
    try:
        logger.info(f"Fetching transcripts list from: {list_url}")
        res = await http.get(list_url, headers=_headers(api_key))
        _raise_for_upstream(res, "transcripts list")
        transcripts = _json_body(res, "transcripts list")
        if not isinstance(transcripts, list):
            raise UpstreamError(
                "Failed to fetch transcripts list: expected a JSON array",
                upstream_status=res.status_code,
                body=(res.text or "")[:500],
            )

        transcript_id = find_transcript_id(transcripts, user_id)
        if not transcript_id:
            raise NotFoundError(f"No transcript found for userID: {user_id}")

        transcript_url = f"{base}/transcripts/{quote(project_id, safe='')}/{quote(transcript_id, safe='')}"
        res = await http.get(transcript_url, headers=_headers(api_key))
        _raise_for_upstream(res, "transcripts")
        entries = _json_body(res, "transcripts")
        if not isinstance(entries, list):
            raise UpstreamError(
                "Failed to fetch transcripts: expected a JSON array of events",
                upstream_status=res.status_code,
                body=(res.text or "")[:500],
            )
    finally:
        if owns_client:
            await http.aclose()

    logger.info(f"Fetched transcript {transcript_id} with {len(entries)} events")
    return entries

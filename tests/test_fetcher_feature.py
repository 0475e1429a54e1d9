import asyncio

import httpx
import pytest

from asr_optimizer.errors import NotFoundError, UpstreamError
from asr_optimizer.transcripts import fetcher

RUNTIME = {
    "api_base_url": "https://voiceflow.test/v2",
    "transcript_range": "Last 7 Days",
    "timeout_seconds": 5.0,
}

EVENTS = [
    {"type": "launch"},
    {"type": "request", "payload": {"payload": {"query": "hi"}}},
]


def _run(handler, user_id="+15551234567"):
    async def _inner():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await fetcher.fetch_transcript(
                "proj-1",
                user_id,
                "VF.DM.secret",
                runtime=RUNTIME,
                client=client,
            )

    return asyncio.run(_inner())


def test_fetch_transcript_resolves_session_then_downloads():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if request.url.path == "/v2/transcripts/proj-1":
            return httpx.Response(
                200,
                json=[
                    {"_id": "t-other", "sessionID": "+19998887777"},
                    {"_id": "t-1", "sessionID": "+15551234567"},
                    {"_id": "t-older", "sessionID": "+15551234567"},
                ],
            )
        if request.url.path == "/v2/transcripts/proj-1/t-1":
            return httpx.Response(200, json=EVENTS)
        return httpx.Response(404, text="unexpected")

    entries = _run(handler)

    assert entries == EVENTS
    assert len(calls) == 2
    assert "range=Last%207%20Days" in str(calls[0].url)
    assert all(c.headers["Authorization"] == "VF.DM.secret" for c in calls)


def test_fetch_transcript_not_found_when_no_session_matches():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[{"_id": "t-other", "sessionID": "+19998887777"}])

    with pytest.raises(NotFoundError) as excinfo:
        _run(handler)

    assert "+15551234567" in str(excinfo.value)


def test_fetch_transcript_list_failure_is_upstream_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, text="invalid api key")

    with pytest.raises(UpstreamError) as excinfo:
        _run(handler)

    assert excinfo.value.upstream_status == 401
    assert excinfo.value.body == "invalid api key"


def test_fetch_transcript_download_failure_is_upstream_error():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/t-1"):
            return httpx.Response(500, text="boom")
        return httpx.Response(200, json=[{"_id": "t-1", "sessionID": "+15551234567"}])

    with pytest.raises(UpstreamError) as excinfo:
        _run(handler)

    assert excinfo.value.upstream_status == 500


def test_find_transcript_id_ignores_malformed_items():
    items = [None, "x", {"sessionID": "u"}, {"sessionID": "u", "_id": 42}]
    assert fetcher.find_transcript_id(items, "u") is None
    assert fetcher.find_transcript_id(items[3:], "u") == "42"
    assert fetcher.find_transcript_id({"sessionID": "u"}, "u") is None

import json

import httpx
import pytest

from gemini_auth.error_handler import UpstreamRejectedError, UpstreamTransportError
from gemini_auth.stream_relay import FRAMING_JSON, StreamSession, StreamState
from gemini_auth.transformer import UpstreamRequest

STREAM_URL = "https://cloudcode-pa.googleapis.com/v1internal:streamGenerateContent"


class TrackingStream(httpx.AsyncByteStream):
    """Upstream body that records how far it was read and whether it was closed."""

    def __init__(self, chunks, fail_after=None):
        self.chunks = list(chunks)
        self.fail_after = fail_after
        self.pulled = 0
        self.closed = False

    async def __aiter__(self):
        for chunk in self.chunks:
            if self.fail_after is not None and self.pulled >= self.fail_after:
                raise httpx.ReadError("connection reset")
            self.pulled += 1
            yield chunk

    async def aclose(self):
        self.closed = True


def _event(text: str) -> bytes:
    payload = {"response": {"candidates": [{"content": {"parts": [{"text": text}]}}]}}
    return f"data: {json.dumps(payload)}\n\n".encode()


def _upstream_request() -> UpstreamRequest:
    return UpstreamRequest(
        method="POST",
        url=STREAM_URL,
        params={"alt": "sse"},
        headers={"Authorization": "Bearer ya29.stream-token"},
        json={"model": "gemini-2.5-pro", "project": "p", "request": {"contents": []}},
    )


def _client_for(stream: httpx.AsyncByteStream = None, response: httpx.Response = None):
    def handler(request: httpx.Request) -> httpx.Response:
        if response is not None:
            return response
        return httpx.Response(200, headers={"content-type": "text/event-stream"}, stream=stream)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _text_of(unit: str) -> str:
    payload = json.loads(unit[len("data: "):])
    return payload["candidates"][0]["content"]["parts"][0]["text"]


@pytest.mark.asyncio
async def test_relays_every_chunk_in_order_as_sse():
    stream = TrackingStream([_event(str(i)) for i in range(5)])

    async with _client_for(stream) as client:
        session = await StreamSession(client, _upstream_request()).open()
        units = [unit async for unit in session.relay()]

    assert [_text_of(u) for u in units] == ["0", "1", "2", "3", "4"]
    assert all(u.endswith("\n\n") for u in units)
    assert session.state == StreamState.COMPLETED
    assert session.units_relayed == 5
    assert stream.closed is True


@pytest.mark.asyncio
async def test_upstream_is_pulled_only_as_fast_as_the_client_reads():
    stream = TrackingStream([_event(str(i)) for i in range(10)])

    async with _client_for(stream) as client:
        session = await StreamSession(client, _upstream_request()).open()
        relay = session.relay()
        first = await relay.__anext__()
        assert _text_of(first) == "0"
        assert stream.pulled == 1

        await relay.__anext__()
        assert stream.pulled == 2
        await relay.aclose()


@pytest.mark.asyncio
async def test_client_disconnect_closes_upstream_early():
    stream = TrackingStream([_event(str(i)) for i in range(10)])

    async with _client_for(stream) as client:
        session = await StreamSession(client, _upstream_request()).open()
        relay = session.relay()
        received = []
        async for unit in relay:
            received.append(unit)
            if len(received) == 3:
                break
        await relay.aclose()

    assert len(received) == 3
    assert stream.pulled == 3
    assert stream.closed is True
    assert session.state == StreamState.ABORTED


@pytest.mark.asyncio
async def test_cancel_stops_after_current_unit():
    stream = TrackingStream([_event(str(i)) for i in range(10)])

    async with _client_for(stream) as client:
        session = await StreamSession(client, _upstream_request()).open()
        received = []
        async for unit in session.relay():
            received.append(unit)
            if len(received) == 2:
                session.cancel()

    assert len(received) == 2
    assert stream.pulled == 2
    assert stream.closed is True
    assert session.cancelled is True
    assert session.state == StreamState.ABORTED


@pytest.mark.asyncio
async def test_mid_stream_error_event_becomes_final_error_unit():
    error_event = b'data: {"error": {"code": 429, "message": "Quota exceeded", "status": "RESOURCE_EXHAUSTED"}}\n\n'
    stream = TrackingStream([_event("a"), _event("b"), error_event, _event("never")])

    async with _client_for(stream) as client:
        session = await StreamSession(client, _upstream_request()).open()
        units = [unit async for unit in session.relay()]

    assert [_text_of(u) for u in units[:2]] == ["a", "b"]
    final = json.loads(units[2][len("data: "):])
    assert final["error"]["code"] == 429
    assert final["error"]["status"] == "RESOURCE_EXHAUSTED"
    assert len(units) == 3
    assert session.state == StreamState.ABORTED
    assert stream.closed is True


@pytest.mark.asyncio
async def test_error_event_sharing_a_chunk_with_good_events():
    error_event = b'data: {"error": {"code": 500, "message": "Internal"}}\n\n'
    stream = TrackingStream([_event("a") + _event("b") + error_event])

    async with _client_for(stream) as client:
        session = await StreamSession(client, _upstream_request()).open()
        units = [unit async for unit in session.relay()]

    assert [_text_of(u) for u in units[:2]] == ["a", "b"]
    assert json.loads(units[2][len("data: "):])["error"]["code"] == 500


@pytest.mark.asyncio
async def test_upstream_read_failure_mid_stream_ends_with_transport_error():
    stream = TrackingStream([_event("a"), _event("b"), _event("c")], fail_after=2)

    async with _client_for(stream) as client:
        session = await StreamSession(client, _upstream_request()).open()
        units = [unit async for unit in session.relay()]

    assert [_text_of(u) for u in units[:2]] == ["a", "b"]
    final = json.loads(units[2][len("data: "):])
    assert final["error"]["code"] == 502
    assert session.state == StreamState.ABORTED


@pytest.mark.asyncio
async def test_open_surfaces_upstream_rejection_before_any_output():
    rejection = httpx.Response(
        429,
        json={"error": {"code": 429, "message": "Too many requests", "status": "RESOURCE_EXHAUSTED"}},
    )

    async with _client_for(response=rejection) as client:
        session = StreamSession(client, _upstream_request())
        with pytest.raises(UpstreamRejectedError) as exc_info:
            await session.open()

    assert exc_info.value.status_code == 429
    assert session.state == StreamState.ABORTED


@pytest.mark.asyncio
async def test_open_network_failure_raises_transport_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("unreachable", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        session = StreamSession(client, _upstream_request())
        with pytest.raises(UpstreamTransportError):
            await session.open()


@pytest.mark.asyncio
async def test_sends_sse_request_to_upstream():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = request.url
        seen["auth"] = request.headers["authorization"]
        return httpx.Response(200, stream=TrackingStream([]))

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        session = await StreamSession(client, _upstream_request()).open()
        units = [unit async for unit in session.relay()]

    assert units == []
    assert seen["url"].params["alt"] == "sse"
    assert seen["auth"] == "Bearer ya29.stream-token"
    assert session.state == StreamState.COMPLETED


@pytest.mark.asyncio
async def test_json_framing_produces_a_valid_array():
    stream = TrackingStream([_event("x"), _event("y"), _event("z")])

    async with _client_for(stream) as client:
        session = await StreamSession(client, _upstream_request(), framing=FRAMING_JSON).open()
        body = "".join([unit async for unit in session.relay()])

    assert session.media_type == "application/json"
    parsed = json.loads(body)
    assert [p["candidates"][0]["content"]["parts"][0]["text"] for p in parsed] == ["x", "y", "z"]


@pytest.mark.asyncio
async def test_json_framing_error_is_last_array_element():
    error_event = b'data: {"error": {"code": 503, "message": "Overloaded"}}\n\n'
    stream = TrackingStream([_event("x"), error_event])

    async with _client_for(stream) as client:
        session = await StreamSession(client, _upstream_request(), framing=FRAMING_JSON).open()
        body = "".join([unit async for unit in session.relay()])

    parsed = json.loads(body)
    assert len(parsed) == 2
    assert parsed[-1]["error"]["code"] == 503


def test_frame_error_closes_json_array_that_was_never_opened():
    from gemini_auth.error_handler import GeminiAuthProxyError

    session = StreamSession(httpx.AsyncClient(), _upstream_request(), framing=FRAMING_JSON)
    unit = session.frame_error(GeminiAuthProxyError("boom"))

    parsed = json.loads(unit)
    assert parsed[0]["error"]["message"] == "boom"


class DisconnectingRequest:
    """Reports the client as gone once `connected_checks` checks have passed."""

    def __init__(self, connected_checks):
        self.connected_checks = connected_checks
        self.checks = 0

    async def is_disconnected(self):
        self.checks += 1
        return self.checks > self.connected_checks


@pytest.mark.asyncio
async def test_front_door_disconnect_cancels_session_and_closes_upstream():
    from gemini_auth_proxy.streaming import streaming_response_wrapper

    stream = TrackingStream([_event(str(i)) for i in range(10)])

    async with _client_for(stream) as client:
        session = await StreamSession(client, _upstream_request()).open()
        delivered = [
            unit async for unit in streaming_response_wrapper(DisconnectingRequest(3), session)
        ]

    assert [_text_of(u) for u in delivered] == ["0", "1", "2"]
    # The fourth unit was read but never written; nothing further was pulled
    assert stream.pulled == 4
    assert stream.closed is True
    assert session.cancelled is True
    assert session.state == StreamState.ABORTED

# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/gemini_auth/stream_relay.py

import enum
import json
import logging
from typing import Any, AsyncGenerator, Dict, Optional

import httpx

from .error_handler import (
    GeminiAuthProxyError,
    TransformUnsupportedError,
    UpstreamError,
    UpstreamTransportError,
)
from .transformer import SSEChunkParser, UpstreamRequest, map_upstream_error

lib_logger = logging.getLogger("gemini_auth")

FRAMING_SSE = "sse"
FRAMING_JSON = "json"


class StreamState(str, enum.Enum):
    OPENING = "opening"
    RELAYING = "relaying"
    COMPLETED = "completed"
    ABORTED = "aborted"


class StreamSession:
    """
    One streamed upstream call, relayed to one client.

    `open()` issues the request and surfaces upstream rejections before any
    byte reaches the client. `relay()` then pulls upstream bytes one chunk at
    a time, reshapes every complete event and yields it immediately; nothing
    is read from upstream until the consumer asks for the next unit.

    Closing the relay generator early (client disconnected) or calling
    `aclose()` releases the upstream connection.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        upstream_request: UpstreamRequest,
        framing: str = FRAMING_SSE,
        timeout: Optional[httpx.Timeout] = None,
    ):
        if framing not in (FRAMING_SSE, FRAMING_JSON):
            raise ValueError(f"Unknown stream framing: {framing!r}")
        self.framing = framing
        self.state = StreamState.OPENING
        self.units_relayed = 0
        self._http_client = http_client
        self._upstream_request = upstream_request
        self._timeout = timeout
        self._parser = SSEChunkParser()
        self._response: Optional[httpx.Response] = None
        self._cancelled = False
        self._array_open = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def media_type(self) -> str:
        return "text/event-stream" if self.framing == FRAMING_SSE else "application/json"

    async def open(self) -> "StreamSession":
        req = self._upstream_request
        request = self._http_client.build_request(
            req.method,
            req.url,
            params=req.params,
            headers=req.headers,
            json=req.json,
            timeout=self._timeout,
        )
        try:
            response = await self._http_client.send(request, stream=True)
        except httpx.HTTPError as e:
            self.state = StreamState.ABORTED
            raise UpstreamTransportError(
                f"Could not open upstream stream: {type(e).__name__}"
            ) from e

        if response.status_code >= 400:
            self.state = StreamState.ABORTED
            try:
                body = await response.aread()
            except httpx.HTTPError:
                body = b""
            finally:
                await response.aclose()
            raise map_upstream_error(response.status_code, body)

        self._response = response
        return self

    def cancel(self) -> None:
        """Stop relaying after the current unit; the generator then closes upstream."""
        self._cancelled = True

    async def aclose(self) -> None:
        if self.state not in (StreamState.COMPLETED, StreamState.ABORTED):
            self.state = StreamState.ABORTED
        response, self._response = self._response, None
        if response is not None:
            await response.aclose()

    async def relay(self) -> AsyncGenerator[str, None]:
        if self._response is None:
            raise RuntimeError("StreamSession.open() must succeed before relay()")

        self.state = StreamState.RELAYING
        response = self._response
        terminal_unit: Optional[str] = None

        try:
            if self.framing == FRAMING_JSON:
                self._array_open = True
                yield "["
            async for chunk in response.aiter_bytes():
                for payload in self._parser.feed(chunk):
                    yield self._frame(payload)
                if self._cancelled:
                    lib_logger.debug("Stream cancelled by client; closing upstream")
                    break
            if not self._cancelled:
                for payload in self._parser.finish():
                    yield self._frame(payload)
                self._parser.raise_pending()
        except (httpx.HTTPError, UpstreamError, TransformUnsupportedError) as e:
            self.state = StreamState.ABORTED
            if isinstance(e, httpx.HTTPError):
                e = UpstreamTransportError(f"Upstream stream failed: {type(e).__name__}")
            lib_logger.warning(f"Aborting stream after {self.units_relayed} chunk(s): {e.message}")
            terminal_unit = self._frame(e.to_error_body())
        else:
            self.state = StreamState.ABORTED if self._cancelled else StreamState.COMPLETED
        finally:
            await self.aclose()

        if terminal_unit is not None:
            yield terminal_unit
        if self.framing == FRAMING_JSON and not self._cancelled:
            yield "]"

    def _frame(self, payload: Dict[str, Any]) -> str:
        data = json.dumps(payload)
        first = self.units_relayed == 0
        self.units_relayed += 1
        if self.framing == FRAMING_SSE:
            return f"data: {data}\n\n"
        return data if first else f",\r\n{data}"

    def frame_error(self, error: GeminiAuthProxyError) -> str:
        """Final unit reporting `error` to a client whose stream breaks outside the relay."""
        unit = self._frame(error.to_error_body())
        if self.framing == FRAMING_JSON:
            unit = unit if self._array_open else f"[{unit}"
            unit += "]"
        return unit

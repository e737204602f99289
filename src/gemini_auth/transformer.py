# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/gemini_auth/transformer.py
"""
Reshaping between the public Gemini generate-content API and Cloud Code Assist.

Outbound, a public request body is wrapped in the Code Assist envelope
`{"model", "project", "request"}` and sent with the client-identification
headers the Gemini CLI uses. Inbound, the `"response"` envelope is removed
from unary bodies and from every streamed SSE event, and upstream errors are
re-expressed in the public Google error shape with their HTTP status kept.
"""

import enum
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .config import ProxySettings
from .error_handler import (
    TransformUnsupportedError,
    UpstreamRejectedError,
    rpc_status_for,
)

lib_logger = logging.getLogger("gemini_auth")

# Client identification expected by the Code Assist API
USER_AGENT = "google-api-nodejs-client/9.15.1"
X_GOOG_API_CLIENT = "gl-node/22.17.0"
CLIENT_METADATA = {
    "ideType": "IDE_UNSPECIFIED",
    "platform": "PLATFORM_UNSPECIFIED",
    "pluginType": "GEMINI",
}
CLIENT_METADATA_HEADER = ",".join(f"{k}={v}" for k, v in CLIENT_METADATA.items())

# Top-level keys of a public streamed GenerateContentResponse
PUBLIC_STREAM_KEYS = (
    "candidates",
    "promptFeedback",
    "usageMetadata",
    "modelVersion",
    "responseId",
)


class EndpointKind(str, enum.Enum):
    UNARY = "generateContent"
    STREAM = "streamGenerateContent"
    COUNT_TOKENS = "countTokens"


@dataclass(frozen=True)
class TransformContext:
    """Per-request context; built fresh for every request and never shared."""

    model: str
    kind: EndpointKind
    project_id: str
    authorization: str = field(repr=False)


@dataclass
class UpstreamRequest:
    method: str
    url: str
    params: Dict[str, str]
    headers: Dict[str, str] = field(repr=False)
    json: Dict[str, Any]


# =============================================================================
# Public request shapes
# =============================================================================


class GenerateContentRequest(BaseModel):
    """Public generate-content request. Unknown keys pass through untouched."""

    contents: List[Dict[str, Any]]
    systemInstruction: Optional[Dict[str, Any]] = None
    tools: Optional[List[Dict[str, Any]]] = None
    toolConfig: Optional[Dict[str, Any]] = None
    generationConfig: Optional[Dict[str, Any]] = None
    safetySettings: Optional[List[Dict[str, Any]]] = None
    cachedContent: Optional[str] = None
    labels: Optional[Dict[str, str]] = None

    model_config = ConfigDict(extra="allow")


class CountTokensRequest(BaseModel):
    """Public countTokens request: bare `contents` or a full `generateContentRequest`."""

    contents: Optional[List[Dict[str, Any]]] = None
    generate_content_request: Optional[Dict[str, Any]] = Field(
        default=None, alias="generateContentRequest"
    )

    model_config = ConfigDict(extra="allow", populate_by_name=True)


def _validation_message(e: ValidationError) -> str:
    first = e.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ())) or "body"
    return f"Invalid request field '{location}': {first.get('msg', 'invalid value')}"


def parse_generate_request(body: Any) -> Dict[str, Any]:
    """Validate a public generate-content body and return it as a plain dict."""
    if not isinstance(body, dict):
        raise TransformUnsupportedError("Request body must be a JSON object")
    try:
        GenerateContentRequest.model_validate(body)
    except ValidationError as e:
        raise TransformUnsupportedError(_validation_message(e))
    # The validated model is only a gate; the original dict is forwarded so
    # fields keep their exact shape and order.
    return body


def parse_count_tokens_request(body: Any) -> List[Dict[str, Any]]:
    if not isinstance(body, dict):
        raise TransformUnsupportedError("Request body must be a JSON object")
    try:
        request = CountTokensRequest.model_validate(body)
    except ValidationError as e:
        raise TransformUnsupportedError(_validation_message(e))
    if request.contents is not None:
        return request.contents
    nested = request.generate_content_request or {}
    contents = nested.get("contents")
    if not isinstance(contents, list):
        raise TransformUnsupportedError(
            "countTokens requires 'contents' or 'generateContentRequest.contents'"
        )
    return contents


# =============================================================================
# Outbound
# =============================================================================


def normalize_model(model: str) -> str:
    """Strip a `models/` prefix; the name itself is passed through unchecked."""
    return model[len("models/"):] if model.startswith("models/") else model


def _base_headers(stream: bool) -> Dict[str, str]:
    return {
        "Content-Type": "application/json",
        "Accept": "text/event-stream" if stream else "application/json",
        "User-Agent": USER_AGENT,
        "X-Goog-Api-Client": X_GOOG_API_CLIENT,
        "Client-Metadata": CLIENT_METADATA_HEADER,
    }


def build_headers(access_token: str, stream: bool = False) -> Dict[str, str]:
    headers = _base_headers(stream)
    headers["Authorization"] = f"Bearer {access_token}"
    return headers


def build_upstream_request(
    context: TransformContext, body: Dict[str, Any], settings: ProxySettings
) -> UpstreamRequest:
    """Wrap a public request body into the Code Assist envelope."""
    model = normalize_model(context.model)
    url = f"{settings.code_assist_endpoint}:{context.kind.value}"
    params: Dict[str, str] = {}

    if context.kind == EndpointKind.COUNT_TOKENS:
        payload = {
            "request": {
                "model": f"models/{model}",
                "contents": parse_count_tokens_request(body),
            }
        }
    else:
        payload = {
            "model": model,
            "project": context.project_id,
            "request": parse_generate_request(body),
        }

    stream = context.kind == EndpointKind.STREAM
    if stream:
        params["alt"] = "sse"

    headers = _base_headers(stream)
    headers["Authorization"] = context.authorization
    return UpstreamRequest(method="POST", url=url, params=params, headers=headers, json=payload)


# =============================================================================
# Inbound
# =============================================================================


def unwrap_response(payload: Any) -> Dict[str, Any]:
    """Return the public response inside a Code Assist `response` envelope."""
    if not isinstance(payload, dict):
        raise TransformUnsupportedError(
            f"Unexpected upstream payload type: {type(payload).__name__}",
        )
    inner = payload.get("response")
    if isinstance(inner, dict):
        return inner
    return payload


def map_upstream_error(status_code: int, raw_body: Union[bytes, str, None]) -> UpstreamRejectedError:
    """Re-express an upstream error body in the public error shape, keeping its status."""
    if isinstance(raw_body, bytes):
        raw_body = raw_body.decode("utf-8", errors="replace")
    raw_body = raw_body or ""

    error: Dict[str, Any] = {}
    try:
        parsed = json.loads(raw_body) if raw_body.strip() else None
    except json.JSONDecodeError:
        parsed = None
    # Google occasionally answers with a one-element array of error objects
    if isinstance(parsed, list) and parsed and isinstance(parsed[0], dict):
        parsed = parsed[0]
    if isinstance(parsed, dict) and isinstance(parsed.get("error"), dict):
        error = parsed["error"]

    message = error.get("message") or raw_body.strip()[:500] or f"Upstream returned HTTP {status_code}"
    body = {
        "error": {
            "code": status_code,
            "message": message,
            "status": error.get("status") or rpc_status_for(status_code),
        }
    }
    if error.get("details"):
        body["error"]["details"] = error["details"]

    return UpstreamRejectedError(message, status_code=status_code, body=body)


def _error_from_payload(payload: Dict[str, Any]) -> UpstreamRejectedError:
    error = payload["error"]
    code = error.get("code") if isinstance(error, dict) else None
    status_code = code if isinstance(code, int) and code >= 400 else 500
    return map_upstream_error(status_code, json.dumps(payload))


class SSEChunkParser:
    """
    Incremental parser for the upstream `text/event-stream` body.

    `feed` accepts raw bytes as they arrive and returns the unwrapped payloads
    of every event completed so far. Partial lines, partial events and split
    multi-byte UTF-8 sequences stay buffered until the rest arrives.

    A mid-stream error event raises UpstreamRejectedError. When the error
    shares a feed with earlier good events, those are returned first and the
    error is raised on the next `feed` or `finish` call, or by
    `raise_pending` once the stream has ended.
    """

    def __init__(self):
        self._buffer = b""
        self._data_lines: List[str] = []
        self._pending_error: Optional[Exception] = None

    def feed(self, chunk: bytes) -> List[Dict[str, Any]]:
        self.raise_pending()
        self._buffer += chunk
        payloads: List[Dict[str, Any]] = []
        while True:
            line = self._next_line(final=False)
            if line is None:
                break
            if not self._handle_line(line, payloads):
                break
        return payloads

    def finish(self) -> List[Dict[str, Any]]:
        """Flush a trailing event that was not terminated by a blank line."""
        self.raise_pending()
        payloads: List[Dict[str, Any]] = []
        while self._buffer:
            line = self._next_line(final=True)
            if line is None or not self._handle_line(line, payloads):
                break
        if self._data_lines and self._pending_error is None:
            self._dispatch(payloads)
        return payloads

    def raise_pending(self) -> None:
        """Raise an error event held back so earlier payloads could be delivered."""
        if self._pending_error is not None:
            error, self._pending_error = self._pending_error, None
            raise error

    def _next_line(self, final: bool) -> Optional[str]:
        buf = self._buffer
        cr = buf.find(b"\r")
        lf = buf.find(b"\n")
        if cr == -1 and lf == -1:
            if final and buf:
                self._buffer = b""
                return buf.decode("utf-8", errors="replace")
            return None
        if cr != -1 and (lf == -1 or cr < lf):
            # A lone trailing \r may be the first half of \r\n
            if cr + 1 == len(buf) and not final:
                return None
            end, skip = cr, 2 if buf[cr + 1:cr + 2] == b"\n" else 1
        else:
            end, skip = lf, 1
        self._buffer = buf[end + skip:]
        return buf[:end].decode("utf-8", errors="replace")

    def _handle_line(self, line: str, payloads: List[Dict[str, Any]]) -> bool:
        """Process one line; returns False once an error event stopped parsing."""
        if line == "":
            return self._dispatch(payloads)
        if line.startswith(":"):
            return True
        name, _, value = line.partition(":")
        if name == "data":
            self._data_lines.append(value[1:] if value.startswith(" ") else value)
        # event:, id: and retry: carry nothing the public stream needs
        return True

    def _dispatch(self, payloads: List[Dict[str, Any]]) -> bool:
        data = "\n".join(self._data_lines)
        self._data_lines = []
        if not data.strip() or data.strip() == "[DONE]":
            return True

        try:
            payload = json.loads(data)
        except json.JSONDecodeError:
            lib_logger.warning(f"Dropping malformed upstream SSE event: {data[:100]!r}")
            return True

        if not isinstance(payload, dict):
            return self._fail(
                TransformUnsupportedError(
                    f"Unexpected upstream stream payload type: {type(payload).__name__}"
                ),
                payloads,
            )
        if payload.get("error"):
            return self._fail(_error_from_payload(payload), payloads)

        if not isinstance(payload.get("response"), dict) and not any(
            key in payload for key in PUBLIC_STREAM_KEYS
        ):
            # Structural event (trace ids, metadata only)
            lib_logger.debug(f"Skipping upstream SSE event without content: {sorted(payload)}")
            return True

        payloads.append(unwrap_response(payload))
        return True

    def _fail(self, error: Exception, payloads: List[Dict[str, Any]]) -> bool:
        if payloads:
            self._pending_error = error
            return False
        raise error

# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Mirrowel

"""
Streaming response handling for the proxy application.

This module provides the streaming_response_wrapper function that ties a
StreamSession to the lifetime of the client connection.
"""

import logging
from typing import AsyncGenerator

from fastapi import Request

from gemini_auth import GeminiAuthProxyError, StreamSession

logger = logging.getLogger(__name__)


async def streaming_response_wrapper(
    request: Request,
    session: StreamSession,
) -> AsyncGenerator[str, None]:
    """
    Relay a stream session to the client and release it however the stream ends.

    The disconnect check runs before each unit is written; on disconnect the
    session is cancelled and the upstream connection closed rather than
    drained.
    """
    relay = session.relay()
    try:
        async for unit in relay:
            if await request.is_disconnected():
                logger.warning("Client disconnected, stopping stream.")
                session.cancel()
                break
            yield unit
    except Exception as e:
        logger.error(f"An error occurred during the response stream: {e}")
        # Yield a final error message to the client
        yield session.frame_error(
            GeminiAuthProxyError("An unexpected error occurred during the stream")
        )
    finally:
        await relay.aclose()
        await session.aclose()

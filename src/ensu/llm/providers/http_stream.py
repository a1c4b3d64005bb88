"""Streaming HTTP plumbing shared by the remote providers.

Hides how a streamed response body is opened, read under a cancellation
token, decoded into frames and normalized into StreamChunk.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx

from ...errors import BackendError, ProviderTransportError
from ...streaming.cancellation import CancellationToken
from ...streaming.decoder import ChunkDecoder, Frame
from ..models import StreamChunk, StreamingResponse
from ..normalize import Normalizer

logger = logging.getLogger(__name__)


async def open_stream(
    client: httpx.AsyncClient,
    url: str,
    body: dict[str, Any],
    headers: dict[str, str] | None = None,
    provider: str = "remote",
) -> httpx.Response:
    """POST ``body`` and return the response with its body still unread.

    Raises:
        BackendError: Non-success status (the body is read for the message)
        ProviderTransportError: The request could not be sent
    """
    try:
        request = client.build_request("POST", url, json=body, headers=headers)
        response = await client.send(request, stream=True)
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        raise ProviderTransportError(f"{provider} request to {url} failed: {e}") from e

    if response.is_error:
        try:
            raw = await response.aread()
        finally:
            await response.aclose()
        raise BackendError(response.status_code, raw.decode("utf-8", errors="replace"), provider)

    return response


async def _anext_or_none(byte_iter: AsyncIterator[bytes]) -> bytes | None:
    try:
        return await byte_iter.__anext__()
    except StopAsyncIteration:
        return None


async def _read_next(
    byte_iter: AsyncIterator[bytes],
    cancel_token: CancellationToken | None,
) -> bytes | None:
    """Read the next body piece, abandoning the read if cancellation wins.

    Returns None at end of body or when the read was aborted.
    """
    if cancel_token is None:
        return await _anext_or_none(byte_iter)

    read = asyncio.ensure_future(_anext_or_none(byte_iter))
    waiter = asyncio.ensure_future(cancel_token.wait())
    try:
        await asyncio.wait({read, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
        if not read.done():
            read.cancel()
            try:
                await read
            except (asyncio.CancelledError, httpx.HTTPError):
                pass

    if read.cancelled():
        return None
    return read.result()


def stream_chunks(
    response: httpx.Response,
    decoder: ChunkDecoder,
    normalizer: Normalizer,
    cancel_token: CancellationToken | None = None,
    provider: str = "remote",
) -> StreamingResponse:
    """Wrap an open streamed response as a StreamingResponse."""
    stream_response: StreamingResponse

    def handle(frame: Frame) -> list[StreamChunk]:
        if frame.terminal:
            return [StreamChunk.terminal()]
        chunks, usage = normalizer(frame.payload or {})
        if usage is not None:
            stream_response.set_usage(usage)
        return chunks

    def is_cancelled() -> bool:
        return cancel_token is not None and cancel_token.cancelled

    async def generate() -> AsyncIterator[StreamChunk]:
        byte_iter = response.aiter_bytes()
        try:
            while not is_cancelled():
                data = await _read_next(byte_iter, cancel_token)
                if data is None:
                    break
                for frame in decoder.feed(data):
                    for chunk in handle(frame):
                        if is_cancelled():
                            return
                        yield chunk
                        if chunk.done:
                            return

            if is_cancelled():
                logger.debug("%s stream cancelled by caller", provider)
                return

            for frame in decoder.flush():
                for chunk in handle(frame):
                    yield chunk
                    if chunk.done:
                        return
            # Body ended without an explicit terminal frame
            yield StreamChunk.terminal()
        except httpx.HTTPError as e:
            if is_cancelled():
                logger.debug("%s transport closed after cancellation: %s", provider, e)
                return
            logger.warning("%s stream failed mid-response: %s", provider, e)
            yield StreamChunk.terminal(f"Transport error: {e}")
        finally:
            await response.aclose()

    stream_response = StreamingResponse(generate())
    return stream_response

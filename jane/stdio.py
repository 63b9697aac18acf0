"""
Line-delimited JSON-RPC over stdin/stdout.

One request (or batch) per line in, one response per line out. Logs go to
stderr so stdout carries nothing but protocol messages.
"""

import asyncio
import sys
from collections.abc import Callable

import structlog

from .protocol import PARSE_ERROR, ProtocolDispatcher, RpcError, encode_message, error_response

logger = structlog.get_logger(__name__)

# Documents may be up to 1 MiB of content, JSON-escaped inside one line
STREAM_LIMIT = 16 * 1024 * 1024


async def serve_stream(
    dispatcher: ProtocolDispatcher,
    reader: asyncio.StreamReader,
    write: Callable[[str], None],
) -> int:
    """Serve requests from `reader` until EOF. Returns the number handled."""
    handled = 0
    while True:
        try:
            line = await reader.readline()
        except ValueError:
            # Line longer than the stream limit; the rest of it was discarded
            logger.warning("stdio_line_too_long", limit=STREAM_LIMIT)
            write(encode_message(error_response(None, RpcError(PARSE_ERROR, "Parse error: message too large"))) + "\n")
            continue
        if not line:
            break
        if not line.strip():
            continue

        response = await dispatcher.handle(line)
        handled += 1
        if response is not None:
            write(encode_message(response) + "\n")

    logger.info("stdio_closed", requests=handled)
    return handled


async def _stdin_reader() -> asyncio.StreamReader:
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader(limit=STREAM_LIMIT)
    await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)
    return reader


def _write_stdout(text: str) -> None:
    sys.stdout.write(text)
    sys.stdout.flush()


async def serve_stdio(dispatcher: ProtocolDispatcher) -> None:
    """Serve the process's stdin/stdout until stdin closes."""
    logger.info("stdio_started")
    reader = await _stdin_reader()
    await serve_stream(dispatcher, reader, _write_stdout)

"""
Main entry point for the Jane MCP Server.

This module provides the main() function: argument parsing, logging setup,
and running the selected transports around one shared knowledge base.
"""

import argparse
import asyncio
import contextlib
from pathlib import Path

import uvicorn

from . import __version__
from .config import Settings
from .http import create_app
from .logging import configure_logging, get_logger
from .server import JaneServer, create_server
from .stdio import serve_stdio

TRANSPORTS = ("stdio", "http", "both")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="jane",
        description="Knowledge management MCP server for stdlib and spec documents",
    )
    parser.add_argument("--transport", choices=TRANSPORTS, default="stdio", help="Transport(s) to serve (default: stdio)")
    parser.add_argument("--docs-root", type=Path, help="Directory holding the stdlib/ and specs/ trees")
    parser.add_argument("--host", help="HTTP bind host")
    parser.add_argument("--port", type=int, help="HTTP bind port")
    parser.add_argument("--lazy-index", action="store_true", help="Build the search index on first read instead of at startup")
    parser.add_argument("--seed", action="store_true", help="Create the sample documents if missing")
    parser.add_argument("--log-level", help="Minimum log level (DEBUG, INFO, WARNING, ...)")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def settings_from_args(args: argparse.Namespace) -> Settings:
    """Environment settings with any command-line flags layered on top."""
    overrides = {}
    if args.docs_root is not None:
        overrides["docs_root"] = args.docs_root
    if args.host is not None:
        overrides["http_host"] = args.host
    if args.port is not None:
        overrides["http_port"] = args.port
    if args.lazy_index:
        overrides["eager_index"] = False
    if args.seed:
        overrides["seed_examples"] = True
    if args.log_level is not None:
        overrides["log_level"] = args.log_level
    return Settings(**overrides)


def _http_server(jane: JaneServer, quiet_access_log: bool) -> uvicorn.Server:
    config = uvicorn.Config(
        create_app(jane.dispatcher, jane.kb),
        host=jane.settings.http_host,
        port=jane.settings.http_port,
        log_level=jane.settings.log_level.lower(),
        # uvicorn's access log prints to stdout, which stdio owns
        access_log=not quiet_access_log,
    )
    return uvicorn.Server(config)


async def run(jane: JaneServer, transport: str) -> None:
    logger = get_logger(__name__)
    await jane.start()
    logger.info("server_started", transport=transport, docs_root=str(jane.settings.docs_root))
    try:
        if transport == "stdio":
            await serve_stdio(jane.dispatcher)
        elif transport == "http":
            await _http_server(jane, quiet_access_log=False).serve()
        else:
            stdio_task = asyncio.create_task(serve_stdio(jane.dispatcher))
            try:
                await _http_server(jane, quiet_access_log=True).serve()
            finally:
                stdio_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await stdio_task
    finally:
        await jane.stop()
        logger.info("server_stopped")


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    settings = settings_from_args(args)
    configure_logging(settings.log_level)
    jane = create_server(settings)

    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(run(jane, args.transport))


if __name__ == "__main__":
    main()

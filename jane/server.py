"""
Jane MCP Server

Knowledge management server for standard-library and specification
documents. Wires one KnowledgeBase into a ProtocolDispatcher with every
tool and resource registered; transports share the result.
"""

from dataclasses import dataclass

from . import __version__
from .config import Settings
from .knowledge import KnowledgeBase
from .protocol import ProtocolDispatcher
from .tools import register_resources, register_tools

SERVER_NAME = "jane"

INSTRUCTIONS = (
    "Jane stores markdown documents in two families: standard-library notes "
    "per language (stdlib://{language}/{path}) and project specifications "
    "(spec://{project}/{path}). Use search to find documents, the get_* tools "
    "or resources to read them, and create_document/update_document to write."
)


@dataclass
class JaneServer:
    """A configured dispatcher and the knowledge base behind it."""

    settings: Settings
    kb: KnowledgeBase
    dispatcher: ProtocolDispatcher

    async def start(self) -> None:
        await self.kb.init()

    async def stop(self) -> None:
        await self.kb.shutdown()


def create_server(settings: Settings) -> JaneServer:
    """Build the server. Call `start()` before serving any transport."""
    kb = KnowledgeBase.from_settings(settings)
    dispatcher = ProtocolDispatcher(SERVER_NAME, __version__, instructions=INSTRUCTIONS)
    register_tools(dispatcher, kb)
    register_resources(dispatcher, kb)
    dispatcher.freeze()
    return JaneServer(settings=settings, kb=kb, dispatcher=dispatcher)

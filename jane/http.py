"""HTTP transport: JSON-RPC over `POST /mcp` plus a health check."""

import structlog
from fastapi import FastAPI, Request, Response, status

from .knowledge import KnowledgeBase
from .protocol import ProtocolDispatcher, encode_message

logger = structlog.get_logger(__name__)

JSON_MEDIA_TYPE = "application/json"


def create_app(dispatcher: ProtocolDispatcher, kb: KnowledgeBase) -> FastAPI:
    """Build the FastAPI app around an already-initialized knowledge base."""
    app = FastAPI(
        title=dispatcher.server_info.name,
        version=dispatcher.server_info.version,
        docs_url=None,
        redoc_url=None,
    )

    @app.post("/mcp")
    async def mcp_endpoint(request: Request) -> Response:
        """One JSON-RPC message or batch per request body."""
        body = await request.body()
        response = await dispatcher.handle(body)
        if response is None:
            return Response(status_code=status.HTTP_202_ACCEPTED)
        return Response(content=encode_message(response), media_type=JSON_MEDIA_TYPE)

    @app.get("/health")
    async def health() -> dict:
        return {
            "status": "healthy",
            "name": dispatcher.server_info.name,
            "version": dispatcher.server_info.version,
            "documents": len(kb.index),
        }

    logger.debug("http_app_created")
    return app

"""
JSON-RPC 2.0 dispatcher for the Jane document server.

Transport-agnostic: a transport hands raw request text to `handle()` and
writes back whatever `encode_message()` makes of the reply. Tools and
resources are registered at startup, then the registries are frozen.

Request pipeline: parse -> validate envelope -> look up method -> validate
params against the tool's pydantic model -> invoke -> map errors -> reply.
"""

import json
import re
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any
from urllib.parse import unquote

import structlog
from mcp.types import (
    LATEST_PROTOCOL_VERSION,
    CallToolResult,
    Implementation,
    ResourceTemplate,
    TextContent,
    Tool,
)
from pydantic import BaseModel, ValidationError

from .errors import (
    AlreadyExistsError,
    InvalidParamsError,
    MalformedDocumentError,
    NotFoundError,
    PathSecurityError,
)

logger = structlog.get_logger(__name__)

JSONRPC_VERSION = "2.0"

# Standard JSON-RPC error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

# Application error codes (-32000..-32099)
NOT_FOUND = -32000
ALREADY_EXISTS = -32001
MALFORMED_DOCUMENT = -32002

MAX_COMPLETIONS = 100

_TEMPLATE_VAR_PATTERN = re.compile(r"\{(\w+)\}")

ToolHandler = Callable[[Any], Awaitable[Any]]
ResourceHandler = Callable[[Any], Awaitable[str]]
Completer = Callable[[str, dict[str, str]], Awaitable[list[str]]]
ResourceLister = Callable[[], Awaitable[list[dict[str, Any]]]]


class RpcError(Exception):
    """A failure that becomes the `error` member of a response."""

    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data

    def to_dict(self) -> dict[str, Any]:
        error: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            error["data"] = self.data
        return error


@dataclass(frozen=True)
class ToolSpec:
    """A registered tool: its parameter model doubles as its JSON Schema."""

    name: str
    description: str
    params: type[BaseModel]
    handler: ToolHandler
    title: str | None = None

    def definition(self) -> Tool:
        return Tool(
            name=self.name,
            title=self.title,
            description=self.description,
            inputSchema=self.params.model_json_schema(by_alias=True),
        )


@dataclass(frozen=True)
class ResourceSpec:
    """A registered URI template such as `stdlib://{language}/{path}`.

    Every variable matches a single segment except the last, which takes
    the rest of the URI so nested document paths work.
    """

    name: str
    uri_template: str
    description: str
    params: type[BaseModel]
    handler: ResourceHandler
    mime_type: str = "text/markdown"
    title: str | None = None
    completers: dict[str, Completer] = field(default_factory=dict)
    lister: ResourceLister | None = None
    pattern: re.Pattern = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "pattern", compile_uri_template(self.uri_template))

    def match(self, uri: str) -> dict[str, str] | None:
        found = self.pattern.match(uri)
        if not found:
            return None
        return {name: unquote(value) for name, value in found.groupdict().items()}

    def definition(self) -> ResourceTemplate:
        return ResourceTemplate(
            name=self.name,
            title=self.title,
            uriTemplate=self.uri_template,
            description=self.description,
            mimeType=self.mime_type,
        )


def compile_uri_template(template: str) -> re.Pattern:
    """Turn `scheme://{a}/{b}` into an anchored regex with named groups."""
    matches = list(_TEMPLATE_VAR_PATTERN.finditer(template))
    regex = ""
    pos = 0
    for i, var in enumerate(matches):
        regex += re.escape(template[pos:var.start()])
        greedy = i == len(matches) - 1
        regex += f"(?P<{var.group(1)}>.+)" if greedy else f"(?P<{var.group(1)}>[^/]+)"
        pos = var.end()
    regex += re.escape(template[pos:])
    return re.compile(f"^{regex}$")


def to_jsonable(value: Any) -> Any:
    """Convert handler results (pydantic models, nested containers) to JSON data."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True, exclude_none=True)
    if isinstance(value, dict):
        return {key: to_jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(item) for item in value]
    return value


def encode_message(message: Any) -> str:
    """Serialize a response (or batch). Every transport writes exactly this text."""
    return json.dumps(message, ensure_ascii=False, separators=(",", ":"))


def error_response(request_id: Any, error: RpcError) -> dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "error": error.to_dict(), "id": request_id}


def _violations(exc: ValidationError) -> list[dict[str, str]]:
    return [
        {
            "loc": ".".join(str(part) for part in err["loc"]) or "params",
            "msg": err["msg"],
            "type": err["type"],
        }
        for err in exc.errors(include_url=False)
    ]


def _validate(model: type[BaseModel], params: Any) -> Any:
    try:
        return model.model_validate(params)
    except ValidationError as e:
        raise RpcError(INVALID_PARAMS, "Invalid params", data=_violations(e)) from e


def _valid_id(value: Any) -> bool:
    return value is None or (isinstance(value, (str, int, float)) and not isinstance(value, bool))


# ============== Built-in method parameters ==============

class CallToolParams(BaseModel):
    name: str
    arguments: dict[str, Any] = {}


class ReadResourceParams(BaseModel):
    uri: str


class CompletionRef(BaseModel):
    type: str
    uri: str | None = None
    name: str | None = None


class CompletionArgument(BaseModel):
    name: str
    value: str = ""


class CompletionContext(BaseModel):
    arguments: dict[str, str] = {}


class CompleteParams(BaseModel):
    ref: CompletionRef
    argument: CompletionArgument
    context: CompletionContext | None = None


class ProtocolDispatcher:
    """Registry of tools and resources plus the JSON-RPC request pipeline."""

    def __init__(self, name: str, version: str, instructions: str | None = None):
        self.server_info = Implementation(name=name, version=version)
        self.instructions = instructions
        self._tools: dict[str, ToolSpec] = {}
        self._resources: dict[str, ResourceSpec] = {}
        self._frozen = False
        self._builtins: dict[str, Callable[[dict[str, Any]], Awaitable[Any]]] = {
            "initialize": self._initialize,
            "ping": self._ping,
            "tools/list": self._list_tools,
            "tools/call": self._call_tool,
            "resources/list": self._list_resources,
            "resources/templates/list": self._list_resource_templates,
            "resources/read": self._read_resource,
            "completion/complete": self._complete,
        }

    # ============== Registration ==============

    @property
    def tools(self) -> MappingProxyType:
        return MappingProxyType(self._tools)

    @property
    def resources(self) -> MappingProxyType:
        return MappingProxyType(self._resources)

    def _check_open(self, name: str) -> None:
        if self._frozen:
            raise RuntimeError(f"Cannot register {name!r}: dispatcher registries are frozen")

    def register_tool(self, spec: ToolSpec) -> None:
        self._check_open(spec.name)
        if spec.name in self._tools or spec.name in self._builtins:
            raise ValueError(f"Tool already registered: {spec.name}")
        self._tools[spec.name] = spec

    def register_resource(self, spec: ResourceSpec) -> None:
        self._check_open(spec.name)
        if spec.uri_template in self._resources:
            raise ValueError(f"Resource template already registered: {spec.uri_template}")
        self._resources[spec.uri_template] = spec

    def tool(self, name: str, params: type[BaseModel], description: str, title: str | None = None):
        """Decorator registering an async handler that receives validated params."""
        def decorator(handler: ToolHandler) -> ToolHandler:
            self.register_tool(ToolSpec(name, description, params, handler, title))
            return handler
        return decorator

    def resource(
        self,
        name: str,
        uri_template: str,
        params: type[BaseModel],
        description: str,
        title: str | None = None,
        completers: dict[str, Completer] | None = None,
        lister: ResourceLister | None = None,
    ):
        """Decorator registering an async handler returning the resource text."""
        def decorator(handler: ResourceHandler) -> ResourceHandler:
            self.register_resource(ResourceSpec(
                name=name,
                uri_template=uri_template,
                description=description,
                params=params,
                handler=handler,
                title=title,
                completers=completers or {},
                lister=lister,
            ))
            return handler
        return decorator

    def freeze(self) -> None:
        """Make the registries immutable; called once startup registration is done."""
        self._frozen = True

    # ============== Request pipeline ==============

    async def handle(self, raw: str | bytes) -> dict[str, Any] | list[dict[str, Any]] | None:
        """Handle one raw JSON-RPC message or batch.

        Returns the response object(s), or None when nothing should be sent
        back (notifications, all-notification batches).
        """
        try:
            message = json.loads(raw)
        except (ValueError, RecursionError) as e:
            # Oversized integers raise ValueError, deep nesting RecursionError
            logger.info("request_unparseable", error=str(e))
            return error_response(None, RpcError(PARSE_ERROR, "Parse error"))

        if isinstance(message, list):
            if not message:
                return error_response(None, RpcError(INVALID_REQUEST, "Invalid Request: empty batch"))
            responses = [await self.handle_message(item) for item in message]
            return [r for r in responses if r is not None] or None

        return await self.handle_message(message)

    async def handle_message(self, message: Any) -> dict[str, Any] | None:
        """Handle one already-decoded message."""
        if not isinstance(message, dict):
            return error_response(None, RpcError(INVALID_REQUEST, "Invalid Request: expected an object"))

        is_notification = "id" not in message
        request_id = message.get("id")
        if not _valid_id(request_id):
            return error_response(None, RpcError(INVALID_REQUEST, "Invalid Request: id must be a string, number or null"))

        if message.get("jsonrpc") != JSONRPC_VERSION:
            return error_response(request_id, RpcError(INVALID_REQUEST, "Invalid Request: jsonrpc must be \"2.0\""))

        method = message.get("method")
        if not isinstance(method, str) or not method:
            return error_response(request_id, RpcError(INVALID_REQUEST, "Invalid Request: method is required"))

        start_time = time.time()
        try:
            result = await self._dispatch(method, message.get("params"))
        except RpcError as e:
            if is_notification:
                return None
            return error_response(request_id, e)
        except Exception:
            logger.exception("request_failed", method=method)
            if is_notification:
                return None
            return error_response(request_id, RpcError(INTERNAL_ERROR, "Internal error"))

        logger.debug("request_handled", method=method, duration_ms=round((time.time() - start_time) * 1000, 2))
        if is_notification:
            return None
        return {"jsonrpc": JSONRPC_VERSION, "result": result, "id": request_id}

    async def _dispatch(self, method: str, params: Any) -> Any:
        if params is None:
            params = {}
        if not isinstance(params, dict):
            raise RpcError(INVALID_PARAMS, "Invalid params: expected an object of named parameters")

        builtin = self._builtins.get(method)
        if builtin is not None:
            return await builtin(params)
        if method.startswith("notifications/"):
            return None

        spec = self._tools.get(method)
        if spec is None:
            raise RpcError(METHOD_NOT_FOUND, f"Method not found: {method}")
        return await self._invoke_tool(spec, params)

    async def _invoke_tool(self, spec: ToolSpec, arguments: dict[str, Any]) -> Any:
        parsed = _validate(spec.params, arguments)
        return to_jsonable(await self._guarded(spec.name, spec.handler, parsed))

    async def _guarded(self, operation: str, handler: Callable[[Any], Awaitable[Any]], parsed: Any) -> Any:
        """Run a handler, translating domain errors into protocol errors."""
        try:
            return await handler(parsed)
        except RpcError:
            raise
        except PathSecurityError as e:
            logger.warning("path_rejected", operation=operation, reason=str(e))
            raise RpcError(INVALID_PARAMS, str(e)) from e
        except InvalidParamsError as e:
            logger.info("request_rejected", operation=operation, reason=str(e))
            raise RpcError(INVALID_PARAMS, str(e)) from e
        except NotFoundError as e:
            logger.info("document_not_found", operation=operation, reason=str(e))
            raise RpcError(NOT_FOUND, str(e)) from e
        except AlreadyExistsError as e:
            logger.info("document_exists", operation=operation, reason=str(e))
            raise RpcError(ALREADY_EXISTS, str(e)) from e
        except MalformedDocumentError as e:
            logger.warning("document_malformed", operation=operation, reason=str(e))
            raise RpcError(MALFORMED_DOCUMENT, str(e)) from e
        except Exception:
            logger.exception("request_failed", operation=operation)
            raise RpcError(INTERNAL_ERROR, "Internal error") from None

    # ============== Built-in methods ==============

    async def _initialize(self, params: dict[str, Any]) -> dict[str, Any]:
        client = params.get("clientInfo") or {}
        requested = params.get("protocolVersion")
        logger.info("session_initialized", client=client.get("name", "unknown") if isinstance(client, dict) else "unknown")
        result: dict[str, Any] = {
            "protocolVersion": requested if isinstance(requested, str) else LATEST_PROTOCOL_VERSION,
            "capabilities": {
                "tools": {"listChanged": False},
                "resources": {"subscribe": False, "listChanged": False},
                "completions": {},
            },
            "serverInfo": self.server_info.model_dump(mode="json", exclude_none=True),
        }
        if self.instructions:
            result["instructions"] = self.instructions
        return result

    async def _ping(self, params: dict[str, Any]) -> dict[str, Any]:
        return {}

    async def _list_tools(self, params: dict[str, Any]) -> dict[str, Any]:
        return {"tools": [to_jsonable(spec.definition()) for spec in self._tools.values()]}

    async def _call_tool(self, params: dict[str, Any]) -> dict[str, Any]:
        call = _validate(CallToolParams, params)
        spec = self._tools.get(call.name)
        if spec is None:
            raise RpcError(METHOD_NOT_FOUND, f"Unknown tool: {call.name}")

        result = await self._invoke_tool(spec, call.arguments)
        text = json.dumps(result, ensure_ascii=False, indent=2)
        wrapped = to_jsonable(CallToolResult(content=[TextContent(type="text", text=text)], isError=False))
        wrapped["structuredContent"] = result
        return wrapped

    async def _list_resource_templates(self, params: dict[str, Any]) -> dict[str, Any]:
        return {"resourceTemplates": [to_jsonable(spec.definition()) for spec in self._resources.values()]}

    async def _list_resources(self, params: dict[str, Any]) -> dict[str, Any]:
        resources: list[dict[str, Any]] = []
        for spec in self._resources.values():
            if spec.lister is not None:
                resources.extend(await self._guarded(spec.name, lambda _: spec.lister(), None))
        return {"resources": resources}

    async def _read_resource(self, params: dict[str, Any]) -> dict[str, Any]:
        request = _validate(ReadResourceParams, params)
        for spec in self._resources.values():
            variables = spec.match(request.uri)
            if variables is None:
                continue
            parsed = _validate(spec.params, variables)
            text = await self._guarded(spec.name, spec.handler, parsed)
            return {"contents": [{"uri": request.uri, "mimeType": spec.mime_type, "text": text}]}
        raise RpcError(INVALID_PARAMS, f"No resource matches URI: {request.uri}")

    async def _complete(self, params: dict[str, Any]) -> dict[str, Any]:
        request = _validate(CompleteParams, params)
        values: list[str] = []
        spec = self._resources.get(request.ref.uri or "")
        if request.ref.type == "ref/resource" and spec is not None:
            completer = spec.completers.get(request.argument.name)
            if completer is not None:
                context = request.context.arguments if request.context else {}
                values = await self._guarded(
                    spec.name, lambda value: completer(value, context), request.argument.value
                )
        return {
            "completion": {
                "values": values[:MAX_COMPLETIONS],
                "total": len(values),
                "hasMore": len(values) > MAX_COMPLETIONS,
            }
        }

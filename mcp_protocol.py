"""
MCP JSON-RPC protocol handling

Decodes JSON-RPC 2.0 messages into typed requests, dispatches them by method
and builds the response envelopes. Shared by the stdio and HTTP transports.
The router keeps no state between calls: everything it needs comes in with
the request and the configuration passed alongside it.
"""

import json
import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Union

from mcp.types import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    CallToolResult,
    Implementation,
    InitializeResult,
    ServerCapabilities,
    TextContent,
    ToolsCapability,
)
from pydantic import BaseModel, ConfigDict, StrictFloat, StrictInt, StrictStr, ValidationError

from graphql_config import ConfigError
from graphql_executor import execute_graphql
from graphql_operations import OperationLoadError
from tools import Executor, ToolNotFoundError, invoke_tool, load_tool, tools_from_config
from version import SERVER_NAME, SUPPORTED_PROTOCOL_VERSIONS, __version__

logger = logging.getLogger(__name__)

JSONRPC_VERSION = "2.0"

RequestId = Union[StrictInt, StrictFloat, StrictStr]


class InvalidParamsError(ValueError):
    """Request params do not have the shape a method expects"""


class InvalidRequestError(ValueError):
    """A message is not a usable JSON-RPC request object"""


# ============================================================================
# Envelopes
# ============================================================================

class JSONRPCRequest(BaseModel):
    """An incoming JSON-RPC request or notification"""
    model_config = ConfigDict(extra="allow")

    jsonrpc: Optional[str] = None
    id: Optional[RequestId] = None
    method: StrictStr = ""
    params: Any = None

    @property
    def is_notification(self) -> bool:
        return "id" not in self.model_fields_set


class JSONRPCErrorObject(BaseModel):
    code: int
    message: str
    data: Any = None


class JSONRPCResponse(BaseModel):
    """Exactly one of ``result`` or ``error`` is sent"""
    id: Optional[RequestId] = None
    result: Any = None
    error: Optional[JSONRPCErrorObject] = None

    def to_dict(self) -> dict:
        message: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "id": self.id}
        if self.error is not None:
            message["error"] = self.error.model_dump(exclude_none=True)
        else:
            message["result"] = self.result
        return message

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


def create_jsonrpc_response(id: Any, result: Any) -> JSONRPCResponse:
    """Create a JSON-RPC 2.0 response"""
    return JSONRPCResponse(id=id, result=result)


def create_jsonrpc_error(id: Any, code: int, message: str, data: Any = None) -> JSONRPCResponse:
    """Create a JSON-RPC 2.0 error response"""
    return JSONRPCResponse(id=id, error=JSONRPCErrorObject(code=code, message=message, data=data))


def parse_error_response() -> JSONRPCResponse:
    return create_jsonrpc_error(None, PARSE_ERROR, "Failed to parse JSON")


def decode_request(data: Any) -> JSONRPCRequest:
    """Validate a decoded JSON value as a JSON-RPC request"""
    if not isinstance(data, dict):
        raise InvalidRequestError("Request must be a JSON object")
    try:
        return JSONRPCRequest.model_validate(data)
    except ValidationError as e:
        fields = ", ".join(str(err["loc"][0]) for err in e.errors() if err["loc"])
        raise InvalidRequestError(f"Invalid request: {fields or 'malformed'}") from e


def _echo_id(data: Any) -> Any:
    """Best-effort request id for error responses to undecodable requests"""
    if isinstance(data, dict):
        value = data.get("id")
        if isinstance(value, (int, float, str)) and not isinstance(value, bool):
            return value
    return None


# ============================================================================
# Typed params
# ============================================================================

class InitializeParams(BaseModel):
    model_config = ConfigDict(extra="allow")

    protocolVersion: Optional[StrictStr]
    capabilities: Optional[dict[str, Any]] = None
    clientInfo: Optional[dict[str, Any]] = None


class CallToolParams(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: StrictStr
    arguments: Optional[dict[str, Any]] = None


def _error_fields(error: ValidationError) -> set[str]:
    return {str(err["loc"][0]) for err in error.errors() if err["loc"]}


def decode_initialize_params(params: Any) -> InitializeParams:
    if params is None:
        raise InvalidParamsError("Invalid parameters")
    if not isinstance(params, dict):
        raise InvalidParamsError("Invalid parameters format")
    if "protocolVersion" not in params:
        raise InvalidParamsError("Missing protocolVersion")
    try:
        return InitializeParams.model_validate(params)
    except ValidationError as e:
        raise InvalidParamsError(f"Invalid parameters: {', '.join(sorted(_error_fields(e)))}") from e


def decode_call_tool_params(params: Any) -> CallToolParams:
    if params is None:
        raise InvalidParamsError("Params must include tool name")
    if not isinstance(params, dict):
        raise InvalidParamsError("Invalid parameters format")
    try:
        return CallToolParams.model_validate(params)
    except ValidationError as e:
        if "name" in _error_fields(e):
            raise InvalidParamsError("Tool name is required") from e
        raise InvalidParamsError("Tool arguments must be an object") from e


# ============================================================================
# Version negotiation
# ============================================================================

def negotiate_protocol_version(client_version: Optional[str]) -> str:
    """
    Pick the protocol version for a session.

    The client's version is echoed back when supported, otherwise the newest
    version this server speaks is offered instead.
    """
    if client_version in SUPPORTED_PROTOCOL_VERSIONS:
        return client_version
    return SUPPORTED_PROTOCOL_VERSIONS[-1]


# ============================================================================
# Method handlers
# ============================================================================

Handler = Callable[[JSONRPCRequest, Any, Executor], Awaitable[Optional[JSONRPCResponse]]]


async def handle_initialize(request: JSONRPCRequest, config, executor) -> JSONRPCResponse:
    params = decode_initialize_params(request.params)
    client_info = params.clientInfo or {}
    logger.info(
        f"Client connecting: {client_info.get('name', 'unknown')} "
        f"v{client_info.get('version', 'unknown')}"
    )

    protocol_version = negotiate_protocol_version(params.protocolVersion)
    if protocol_version != params.protocolVersion:
        logger.info(f"Client requested protocol {params.protocolVersion}, offering {protocol_version}")

    result = InitializeResult(
        protocolVersion=protocol_version,
        capabilities=ServerCapabilities(tools=ToolsCapability()),
        serverInfo=Implementation(name=SERVER_NAME, version=__version__),
    )
    return create_jsonrpc_response(request.id, result.model_dump(by_alias=True, exclude_none=True))


async def handle_initialized(request: JSONRPCRequest, config, executor) -> None:
    # This is a notification, no response needed
    logger.info("Client initialization complete - session ready")
    return None


async def handle_tools_list(request: JSONRPCRequest, config, executor) -> JSONRPCResponse:
    try:
        tools = await asyncio.to_thread(tools_from_config, config)
    except (OperationLoadError, ConfigError) as e:
        logger.error(f"Error loading tools: {e}")
        return create_jsonrpc_error(request.id, INTERNAL_ERROR, f"Error loading tools: {e}")

    logger.debug(f"Returning {len(tools)} tools")
    return create_jsonrpc_response(request.id, {"tools": [tool.to_dict() for tool in tools]})


async def handle_tools_call(request: JSONRPCRequest, config, executor) -> JSONRPCResponse:
    params = decode_call_tool_params(request.params)
    tool_name = params.name
    logger.info(f"Tool call requested: {tool_name}")
    logger.debug(f"Tool call arguments: {json.dumps(params.arguments)[:300]}")

    try:
        tool = await asyncio.to_thread(load_tool, config, tool_name)
    except (ToolNotFoundError, OperationLoadError, ConfigError) as e:
        logger.warning(f"Could not load tool {tool_name}: {e}")
        return create_jsonrpc_error(request.id, INTERNAL_ERROR, str(e))

    try:
        result = await invoke_tool(tool, params.arguments, executor)
    except Exception as e:
        logger.error(f"Error executing tool {tool_name}: {e}", exc_info=True)
        return create_jsonrpc_error(
            request.id, INTERNAL_ERROR, f"Error executing tool {tool_name}: {e}"
        )

    if result is None:
        result = {}
    if not isinstance(result, dict):
        return create_jsonrpc_error(
            request.id, INTERNAL_ERROR, f"Tool {tool_name} returned an invalid response"
        )

    content = CallToolResult(content=[TextContent(type="text", text=json.dumps(result))])
    logger.debug(f"Tool call completed: {tool_name}")
    return create_jsonrpc_response(request.id, content.model_dump(by_alias=True, exclude_none=True))


def _empty_list(key: str) -> Handler:
    async def handler(request: JSONRPCRequest, config, executor) -> JSONRPCResponse:
        return create_jsonrpc_response(request.id, {key: []})
    return handler


async def handle_ping(request: JSONRPCRequest, config, executor) -> JSONRPCResponse:
    logger.debug("Received ping, sending pong")
    return create_jsonrpc_response(request.id, {})


METHOD_HANDLERS: dict[str, Handler] = {
    "initialize": handle_initialize,
    "notifications/initialized": handle_initialized,
    "initialized": handle_initialized,
    "tools/list": handle_tools_list,
    "tools/call": handle_tools_call,
    "prompts/list": _empty_list("prompts"),
    "resources/list": _empty_list("resources"),
    "ping": handle_ping,
}


# ============================================================================
# Routing
# ============================================================================

async def route_request(
    request: JSONRPCRequest,
    config,
    executor: Executor = execute_graphql,
) -> Optional[JSONRPCResponse]:
    """
    Dispatch one request to its method handler.

    Returns None when no response must be sent (notifications). Failures are
    always returned as JSON-RPC errors, never raised.
    """
    method = request.method
    logger.info(f"MCP request: method={method}, id={request.id}")
    logger.debug(f"MCP message params: {json.dumps(request.params)[:500] if request.params else 'None'}")

    handler = METHOD_HANDLERS.get(method)
    if handler is None:
        if method.startswith("notifications/"):
            logger.debug(f"Ignoring notification: {method}")
            return None
        logger.warning(f"Unknown MCP method: {method}")
        response = create_jsonrpc_error(request.id, METHOD_NOT_FOUND, f"Method '{method}' not found")
    else:
        try:
            response = await handler(request, config, executor)
        except InvalidParamsError as e:
            logger.warning(f"Invalid params for {method}: {e}")
            response = create_jsonrpc_error(request.id, INVALID_PARAMS, str(e))
        except Exception as e:
            logger.error(f"Error handling MCP method {method}: {e}", exc_info=True)
            response = create_jsonrpc_error(request.id, INTERNAL_ERROR, str(e))

    if response is not None and request.is_notification:
        # Notifications never get a reply, even an error
        logger.debug(f"Dropping response to notification {method}")
        return None
    return response


async def handle_message(
    data: Any,
    config,
    executor: Executor = execute_graphql,
) -> Optional[JSONRPCResponse]:
    """Validate a decoded JSON message and route it"""
    try:
        request = decode_request(data)
    except InvalidRequestError as e:
        logger.warning(str(e))
        return create_jsonrpc_error(_echo_id(data), INVALID_REQUEST, str(e))

    if request.jsonrpc != JSONRPC_VERSION:
        logger.warning(f"Rejecting request with jsonrpc={request.jsonrpc!r}")
        return create_jsonrpc_error(request.id, INVALID_REQUEST, "Only JSON-RPC 2.0 is supported")

    return await route_request(request, config, executor)

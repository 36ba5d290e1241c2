"""
GraphQL Operations MCP Server with HTTP Transports

Endpoints:
- POST /mcp without a session header: plain request/response JSON-RPC
- GET /mcp opens a streamable HTTP session (first event carries the token)
- POST /mcp with Mcp-Session-Id queues the response on that session (202)
- DELETE /mcp with Mcp-Session-Id ends the session (204)
- GET /sse + POST /message?sessionId=...: legacy SSE transport
- /health, /tools, /execute convenience endpoints
"""

import os
import json
import asyncio
import logging
import contextlib
from collections.abc import AsyncIterator
from typing import Any, Optional

import uvicorn
from starlette.applications import Starlette
from starlette.background import BackgroundTask
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route
from sse_starlette.sse import EventSourceResponse

from graphql_config import ConfigError, GraphQLConfig
from graphql_executor import execute_graphql
from graphql_operations import OperationLoadError
from mcp_protocol import (
    JSONRPCRequest,
    handle_message,
    parse_error_response,
    route_request,
)
from mcp_session import Session, SessionClosedError, SessionNotFoundError, SessionRegistry
from tools import Executor, tools_from_config
from version import MCP_PROTOCOL_VERSION, SERVER_DESCRIPTION, SERVER_NAME, __version__

logger = logging.getLogger(__name__)

SESSION_HEADER = "Mcp-Session-Id"
SESSION_QUEUE_SIZE = int(os.getenv("MCP_SESSION_QUEUE_SIZE", "10"))
KEEPALIVE_SECONDS = float(os.getenv("MCP_KEEPALIVE_SECONDS", "30"))


def get_client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


async def read_json_body(request: Request) -> Any:
    """Decode the request body; raises json.JSONDecodeError on malformed input"""
    body = await request.body()
    return json.loads(body)


class MCPHTTPServer:
    """HTTP bindings for the MCP router, sharing one session registry"""

    def __init__(
        self,
        config: GraphQLConfig,
        executor: Executor = execute_graphql,
        queue_size: int = SESSION_QUEUE_SIZE,
        keepalive: float = KEEPALIVE_SECONDS,
    ):
        self.config = config
        self.executor = executor
        self.keepalive = keepalive
        self.sessions = SessionRegistry(queue_size=queue_size)

    # ------------------------------------------------------------------------
    # Session plumbing
    # ------------------------------------------------------------------------

    async def event_stream(self, session: Session, first_event: dict) -> AsyncIterator[dict]:
        """Push queued responses for ``session`` until it is closed or the client goes away"""
        try:
            yield first_event

            while True:
                try:
                    message = await session.next_message(timeout=self.keepalive)
                except SessionClosedError:
                    break

                if message is None:
                    yield {"event": "ping", "data": json.dumps({"type": "ping"})}
                    continue

                yield {"event": "message", "data": json.dumps(message)}
        except asyncio.CancelledError:
            logger.info(f"Client disconnected: {session.session_id}")
            raise
        finally:
            await self.sessions.remove(session.session_id)

    def session_cleanup(self, session: Session) -> BackgroundTask:
        """Remove ``session`` once its response ends, even if the stream never started"""
        return BackgroundTask(self.sessions.remove, session.session_id)

    async def dispatch_to_session(self, session_id: str, data: Any) -> None:
        """Route one request and queue its response on the session"""
        response = await handle_message(data, self.config, self.executor)
        if response is None:
            return
        try:
            await self.sessions.deliver(session_id, response.to_dict())
        except SessionNotFoundError:
            logger.warning(f"Session {session_id} ended before its response was ready, dropping it")

    async def send_to_session(self, request: Request, session_id: Optional[str]) -> Response:
        if not session_id:
            return JSONResponse({"error": f"Missing {SESSION_HEADER} header"}, status_code=400)

        session = await self.sessions.get(session_id)
        if session is None:
            logger.warning(f"Message for unknown session {session_id} from {get_client_ip(request)}")
            return JSONResponse({"error": "Invalid or expired session"}, status_code=404)

        try:
            data = await read_json_body(request)
        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON: {e}")
            return JSONResponse(parse_error_response().to_dict(), status_code=400)

        logger.info(f"Received message for session {session_id}: {json.dumps(data)[:200]}")
        # One request at a time per session, in arrival order, so responses
        # are queued in the order they were sent
        async with session.lock:
            await self.dispatch_to_session(session_id, data)

        # The result arrives on the event stream; this request only acknowledges it
        return Response(status_code=202)

    # ------------------------------------------------------------------------
    # Streamable HTTP: /mcp
    # ------------------------------------------------------------------------

    async def mcp_get_endpoint(self, request: Request) -> EventSourceResponse:
        """Open a session and stream its responses"""
        session = await self.sessions.create("http")
        logger.info(f"Streamable HTTP session established: {session.session_id}, client={get_client_ip(request)}")
        first_event = {"event": "session", "data": session.session_id}
        return EventSourceResponse(
            self.event_stream(session, first_event),
            headers={SESSION_HEADER: session.session_id, "Cache-Control": "no-cache"},
            background=self.session_cleanup(session),
        )

    async def mcp_post_endpoint(self, request: Request) -> Response:
        """
        Send a JSON-RPC request.

        With a session header the response is delivered on that session's
        stream; without one it is returned directly in the HTTP response.
        """
        session_id = request.headers.get(SESSION_HEADER)
        if session_id is not None:
            return await self.send_to_session(request, session_id)

        try:
            data = await read_json_body(request)
        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON: {e}")
            return JSONResponse(parse_error_response().to_dict(), status_code=400)

        logger.info(f"MCP POST received from {get_client_ip(request)}: {json.dumps(data)[:200]}")
        response = await handle_message(data, self.config, self.executor)
        if response is None:
            return Response(status_code=202)
        return JSONResponse(response.to_dict())

    async def mcp_delete_endpoint(self, request: Request) -> Response:
        """End a session. Unknown sessions are not an error."""
        session_id = request.headers.get(SESSION_HEADER)
        if not session_id:
            return JSONResponse({"error": f"Missing {SESSION_HEADER} header"}, status_code=400)

        await self.sessions.remove(session_id)
        return Response(status_code=204)

    # ------------------------------------------------------------------------
    # Legacy SSE: /sse + /message
    # ------------------------------------------------------------------------

    async def sse_endpoint(self, request: Request) -> EventSourceResponse:
        session = await self.sessions.create("sse")
        logger.info(f"SSE connection established: session={session.session_id}, client={get_client_ip(request)}")
        # Tell the client where to POST its messages
        first_event = {"event": "endpoint", "data": f"/message?sessionId={session.session_id}"}
        return EventSourceResponse(
            self.event_stream(session, first_event),
            background=self.session_cleanup(session),
        )

    async def messages_endpoint(self, request: Request) -> Response:
        return await self.send_to_session(request, request.query_params.get("sessionId"))

    # ------------------------------------------------------------------------
    # Convenience endpoints
    # ------------------------------------------------------------------------

    async def health_check(self, request: Request) -> JSONResponse:
        return JSONResponse({
            "status": "healthy",
            "server": SERVER_NAME,
            "description": SERVER_DESCRIPTION,
            "version": __version__,
            "sessions": len(self.sessions),
        })

    async def list_tools_endpoint(self, request: Request) -> JSONResponse:
        """List available tools"""
        try:
            tools = await asyncio.to_thread(tools_from_config, self.config)
        except (OperationLoadError, ConfigError) as e:
            logger.error(f"Error listing tools: {e}")
            return JSONResponse({"error": str(e)}, status_code=500)
        return JSONResponse({"tools": [tool.to_dict() for tool in tools]})

    async def execute_tool_endpoint(self, request: Request) -> JSONResponse:
        """Execute a tool directly, without a JSON-RPC envelope"""
        try:
            body = await read_json_body(request)
        except json.JSONDecodeError as e:
            return JSONResponse({"error": f"Invalid JSON: {e}"}, status_code=400)

        if not isinstance(body, dict) or not body.get("tool"):
            return JSONResponse({"error": "tool parameter is required"}, status_code=400)

        tool_name = body["tool"]
        rpc_request = JSONRPCRequest(
            jsonrpc="2.0",
            id=0,
            method="tools/call",
            params={"name": tool_name, "arguments": body.get("arguments", {})},
        )
        response = await route_request(rpc_request, self.config, self.executor)
        if response.error is not None:
            return JSONResponse({"error": response.error.message}, status_code=500)

        return JSONResponse({"tool": tool_name, "result": response.result})

    # ------------------------------------------------------------------------
    # Application
    # ------------------------------------------------------------------------

    def routes(self) -> list[Route]:
        return [
            # MCP protocol endpoints
            Route("/mcp", self.mcp_get_endpoint, methods=["GET"]),
            Route("/mcp", self.mcp_post_endpoint, methods=["POST"]),
            Route("/mcp", self.mcp_delete_endpoint, methods=["DELETE"]),
            Route("/sse", self.sse_endpoint, methods=["GET"]),
            Route("/message", self.messages_endpoint, methods=["POST"]),

            # Convenience endpoints
            Route("/health", self.health_check, methods=["GET"]),
            Route("/tools", self.list_tools_endpoint, methods=["GET"]),
            Route("/execute", self.execute_tool_endpoint, methods=["POST"]),
        ]


def create_app(
    config: GraphQLConfig,
    executor: Executor = execute_graphql,
    queue_size: int = SESSION_QUEUE_SIZE,
    keepalive: float = KEEPALIVE_SECONDS,
) -> Starlette:
    """Build the Starlette application for ``config``"""
    server = MCPHTTPServer(config, executor=executor, queue_size=queue_size, keepalive=keepalive)

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        logger.info("MCP HTTP server started")
        try:
            yield
        finally:
            logger.info("MCP HTTP server shutting down")
            await server.sessions.close_all()

    # CORS middleware for browser-based clients
    middleware = [
        Middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["*"],
            allow_headers=["*"],
            expose_headers=[SESSION_HEADER],
        )
    ]

    app = Starlette(routes=server.routes(), middleware=middleware, lifespan=lifespan)
    app.state.mcp_server = server
    return app


def run_server(config: GraphQLConfig, host: str, port: int, transport: str = "http", log_level: str = "INFO"):
    """Run the HTTP server with uvicorn"""
    if transport not in ("http", "sse"):
        raise ValueError(f"Invalid transport '{transport}'. Use 'sse' or 'http'")

    app = create_app(config)
    try:
        endpoint = config.first_endpoint.url
    except ConfigError:
        endpoint = "Not configured"

    logger.info("=" * 60)
    logger.info(f"{SERVER_NAME} v{__version__}")
    logger.info("=" * 60)
    logger.info(f"Host: {host}")
    logger.info(f"Port: {port}")
    logger.info(f"GraphQL Endpoint: {endpoint}")
    logger.info(f"Documents: {', '.join(config.documents) or 'None'}")
    logger.info(f"MCP Protocol Version: {MCP_PROTOCOL_VERSION}")
    logger.info(f"Transport: {transport}")
    logger.info("=" * 60)
    if transport == "sse":
        logger.info(f"SSE endpoint:     http://{host}:{port}/sse")
        logger.info(f"Message endpoint: http://{host}:{port}/message")
    else:
        logger.info(f"Streamable HTTP endpoint: http://{host}:{port}/mcp")
    logger.info("  GET  /health    - Health check")
    logger.info("  GET  /tools     - List tools")
    logger.info("  POST /execute   - Execute tool directly")
    logger.info("=" * 60)

    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level="debug" if log_level.upper() == "DEBUG" else "info",
    )

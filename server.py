"""
GraphQL Operations MCP Server (stdio)

Reads newline-delimited JSON-RPC requests from stdin and writes responses to
stdout. Logs go to stderr.
"""

import os
import sys
import json
import asyncio
import logging
from typing import Optional, TextIO

from dotenv import load_dotenv

from graphql_config import DEFAULT_CONFIG_PATH, GraphQLConfig, load_config
from graphql_executor import execute_graphql
from mcp_protocol import JSONRPCResponse, handle_message, parse_error_response
from tools import Executor
from version import SERVER_NAME, __version__

logger = logging.getLogger(__name__)


def configure_logging(level: Optional[str] = None):
    """Log to stderr at LOG_LEVEL; stdout belongs to the protocol"""
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )
    # Reduce noise from third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("aiohttp").setLevel(logging.WARNING)


def send_response(stdout: TextIO, response: JSONRPCResponse):
    try:
        stdout.write(response.to_json() + "\n")
        stdout.flush()
    except (OSError, ValueError) as e:
        logger.error(f"Error sending response: {e}")


async def run_stdio(
    config: GraphQLConfig,
    stdin: Optional[TextIO] = None,
    stdout: Optional[TextIO] = None,
    executor: Executor = execute_graphql,
):
    """
    Serve MCP over stdin/stdout until input ends.

    A line that is not valid JSON gets a parse error response and stops the
    loop; every other problem is answered and the loop carries on.
    """
    stdin = stdin or sys.stdin
    stdout = stdout or sys.stdout

    logger.info(f"Starting {SERVER_NAME} v{__version__} on stdio")

    while True:
        line = await asyncio.to_thread(stdin.readline)
        if not line:
            logger.info("stdin closed, shutting down")
            break
        if not line.strip():
            continue

        try:
            data = json.loads(line)
        except json.JSONDecodeError as e:
            logger.error(f"Error decoding request: {e}")
            send_response(stdout, parse_error_response())
            break

        logger.debug(f"Received request: {line.strip()[:500]}")
        response = await handle_message(data, config, executor)

        if response is not None:
            logger.debug(f"Sending response: {response.to_json()[:500]}")
            send_response(stdout, response)


async def main():
    """Run the MCP server using stdio transport"""
    load_dotenv()
    configure_logging()
    config = load_config(os.getenv("GRAPHQL_CONFIG", DEFAULT_CONFIG_PATH))
    await run_stdio(config)


if __name__ == "__main__":
    asyncio.run(main())

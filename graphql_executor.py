"""
GraphQL HTTP executor

Sends one operation to a GraphQL endpoint as a JSON POST and returns the
decoded response body. GraphQL-level ``errors`` in a 200 response are part of
the result, not a failure; the caller decides what to do with them.
"""

import os
import asyncio
import json
import logging
from typing import Any, Optional

import aiohttp

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = float(os.getenv("GRAPHQL_TIMEOUT", "30"))


class GraphQLExecutionError(Exception):
    """The GraphQL endpoint could not be reached or returned an unusable response"""

    def __init__(self, message: str, status: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.body = body


async def execute_graphql(
    endpoint: str,
    headers: dict[str, str],
    query: str,
    variables: Optional[dict[str, Any]] = None,
    timeout: Optional[float] = None,
) -> Any:
    """POST ``{query, variables}`` to ``endpoint`` and return the parsed JSON body"""
    request_headers = {"Content-Type": "application/json"}
    request_headers.update(headers or {})
    payload = {"query": query, "variables": variables}

    logger.debug(f"POST {endpoint}: {query[:200]}{'...' if len(query) > 200 else ''}")
    if variables:
        logger.debug(f"Variables: {json.dumps(variables)[:200]}")

    client_timeout = aiohttp.ClientTimeout(total=timeout or DEFAULT_TIMEOUT)
    try:
        async with aiohttp.ClientSession(timeout=client_timeout) as session:
            async with session.post(endpoint, json=payload, headers=request_headers) as resp:
                body = await resp.text()
                status = resp.status
    except aiohttp.ClientError as e:
        raise GraphQLExecutionError(f"GraphQL request failed: {e}") from e
    except asyncio.TimeoutError as e:
        raise GraphQLExecutionError(f"GraphQL request to {endpoint} timed out") from e

    if status != 200:
        logger.warning(f"GraphQL endpoint {endpoint} returned HTTP {status}")
        raise GraphQLExecutionError(f"GraphQL error ({status}): {body}", status=status, body=body)

    try:
        result = json.loads(body)
    except json.JSONDecodeError as e:
        raise GraphQLExecutionError(
            f"Failed to parse GraphQL response: {e}", status=status, body=body
        ) from e

    logger.debug(f"GraphQL response: {body[:200]}{'...' if len(body) > 200 else ''}")
    return result

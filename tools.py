"""
MCP tools built from GraphQL operations

Every named operation becomes one tool. Tools are plain values; calling one
goes through ``invoke_tool`` which sends the tool's own operation to the
endpoint it was bound to.
"""

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from mcp.types import Tool, ToolAnnotations

from graphql_config import GraphQLConfig, SchemaEndpoint
from graphql_executor import execute_graphql
from graphql_operations import Operation, load_operations
from tool_schema import schema_from_variables

logger = logging.getLogger(__name__)

# (endpoint, headers, query, variables) -> JSON result
Executor = Callable[[str, dict[str, str], str, Optional[dict[str, Any]]], Awaitable[Any]]


class ToolNotFoundError(LookupError):
    """No operation with the requested name exists in the loaded documents"""

    def __init__(self, name: str):
        super().__init__(f"tool {name} not found")
        self.name = name


@dataclass(frozen=True)
class GraphQLTool:
    """A GraphQL operation bound to the endpoint it is executed against"""
    name: str
    kind: str
    query: str
    input_schema: dict[str, Any]
    endpoint: SchemaEndpoint

    @property
    def description(self) -> str:
        return f"Execute GraphQL {self.kind} operation: {self.name}"

    @property
    def annotations(self) -> ToolAnnotations:
        is_query = self.kind == "query"
        return ToolAnnotations(
            title=self.name,
            readOnlyHint=is_query,
            destructiveHint=self.kind == "mutation",
            idempotentHint=is_query,
            openWorldHint=True,
        )

    def to_mcp_tool(self) -> Tool:
        return Tool(
            name=self.name,
            description=self.description,
            inputSchema=self.input_schema,
            annotations=self.annotations,
        )

    def to_dict(self) -> dict[str, Any]:
        """The tool as it appears in a tools/list response"""
        return self.to_mcp_tool().model_dump(by_alias=True, exclude_none=True)


def tool_from_operation(operation: Operation, endpoint: SchemaEndpoint) -> GraphQLTool:
    return GraphQLTool(
        name=operation.name,
        kind=operation.kind,
        query=operation.raw,
        input_schema=schema_from_variables(operation.variables),
        endpoint=endpoint,
    )


def tools_from_config(config: GraphQLConfig) -> list[GraphQLTool]:
    """Load all operations and build one tool per operation"""
    operations = load_operations(config)
    if not operations:
        return []

    endpoint = config.first_endpoint
    tools = [tool_from_operation(op, endpoint) for op in operations.values()]
    logger.debug(f"Built {len(tools)} tool(s) for {endpoint.url}")
    return tools


def load_tool(config: GraphQLConfig, name: str) -> GraphQLTool:
    """Load the documents again and build the tool called ``name``"""
    operations = load_operations(config)
    operation = operations.get(name)
    if operation is None:
        if operations:
            logger.debug(f"Available operations: {', '.join(sorted(operations))}")
        else:
            logger.debug(f"No operations found in {', '.join(config.documents) or 'configured documents'}")
        raise ToolNotFoundError(name)
    return tool_from_operation(operation, config.first_endpoint)


async def invoke_tool(
    tool: GraphQLTool,
    arguments: Optional[dict[str, Any]] = None,
    executor: Executor = execute_graphql,
) -> Any:
    """
    Execute a tool's operation with ``arguments`` as the GraphQL variables.

    Arguments are passed through as given; executor errors propagate.
    """
    variables = arguments if arguments is not None else {}
    return await executor(tool.endpoint.url, tool.endpoint.headers, tool.query, variables)

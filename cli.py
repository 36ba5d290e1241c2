"""graphql-ops-mcp command line interface."""

import json
import asyncio
import logging

import click
from dotenv import load_dotenv

from graphql_config import DEFAULT_CONFIG_PATH, ConfigError, GraphQLConfig, load_config
from graphql_executor import execute_graphql
from graphql_operations import OperationLoadError
from mcp_protocol import JSONRPCRequest, route_request
from server import configure_logging, run_stdio
from server_mcp_http import run_server
from tools import tools_from_config
from version import SERVER_NAME, __version__

logger = logging.getLogger(__name__)


def _load_config(ctx: click.Context) -> GraphQLConfig:
    try:
        return load_config(ctx.obj["config_path"], project=ctx.obj["project"])
    except ConfigError as e:
        raise click.ClickException(str(e)) from e


def _print_json(value) -> None:
    click.echo(json.dumps(value, indent=2))


@click.group()
@click.version_option(version=__version__, prog_name=SERVER_NAME)
@click.option(
    "--config", "-c", "config_path",
    envvar="GRAPHQL_CONFIG",
    default=DEFAULT_CONFIG_PATH,
    show_default=True,
    help="Path to .graphqlrc.yml",
)
@click.option("--project", default=None, help="Project to use when the config declares several.")
@click.option("--log-level", envvar="LOG_LEVEL", default="INFO", show_default=True)
@click.pass_context
def cli(ctx: click.Context, config_path: str, project: str, log_level: str) -> None:
    """Expose GraphQL operations as MCP tools."""
    configure_logging(log_level)
    ctx.ensure_object(dict)
    ctx.obj.update(config_path=config_path, project=project, log_level=log_level)


@cli.command()
@click.pass_context
def run(ctx: click.Context) -> None:
    """Run as an MCP server over stdin/stdout."""
    config = _load_config(ctx)
    asyncio.run(run_stdio(config))


@cli.group()
def tools() -> None:
    """List and call tools."""


@tools.command("list")
@click.pass_context
def list_tools(ctx: click.Context) -> None:
    """List available tools."""
    config = _load_config(ctx)
    try:
        loaded = tools_from_config(config)
    except (OperationLoadError, ConfigError) as e:
        raise click.ClickException(f"Error loading tools: {e}") from e
    _print_json([tool.to_dict() for tool in loaded])


@tools.command("call")
@click.argument("name")
@click.argument("json_input", required=False)
@click.pass_context
def call_tool(ctx: click.Context, name: str, json_input: str) -> None:
    """Call the GraphQL operation NAME with optional JSON_INPUT variables."""
    arguments = {}
    if json_input:
        try:
            arguments = json.loads(json_input)
        except json.JSONDecodeError as e:
            raise click.ClickException(f"Invalid JSON input: {e}") from e

    config = _load_config(ctx)
    request = JSONRPCRequest(
        jsonrpc="2.0",
        id=1,
        method="tools/call",
        params={"name": name, "arguments": arguments},
    )
    response = asyncio.run(route_request(request, config, execute_graphql))
    if response.error is not None:
        raise click.ClickException(response.error.message)
    _print_json(response.result)


@cli.command()
@click.argument("name")
@click.pass_context
def describe(ctx: click.Context, name: str) -> None:
    """Describe the tool NAME and show its full schema."""
    config = _load_config(ctx)
    try:
        loaded = tools_from_config(config)
    except (OperationLoadError, ConfigError) as e:
        raise click.ClickException(f"Error loading tools: {e}") from e

    for tool in loaded:
        if tool.name == name:
            _print_json(tool.to_dict())
            return
    raise click.ClickException(f"Tool {name} not found")


@cli.command()
@click.option("--host", "-H", envvar="MCP_HOST", default="localhost", show_default=True)
@click.option("--port", "-p", envvar="MCP_PORT", default=8080, type=int, show_default=True)
@click.option(
    "--transport", "-t",
    envvar="MCP_TRANSPORT",
    type=click.Choice(["http", "sse"]),
    default="http",
    show_default=True,
)
@click.pass_context
def serve(ctx: click.Context, host: str, port: int, transport: str) -> None:
    """Serve MCP over HTTP."""
    config = _load_config(ctx)
    run_server(config, host=host, port=port, transport=transport, log_level=ctx.obj["log_level"])


def main() -> None:
    load_dotenv()
    cli()


if __name__ == "__main__":
    main()

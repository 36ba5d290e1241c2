"""
GraphQL Operations MCP Server Version Information

Changelog:
- v0.3.0: Streamable HTTP sessions (GET/POST/DELETE on /mcp) and legacy SSE
          endpoint pair share one session registry
          Bounded per-session push queues, keepalive pings
- v0.2.0: Multi-operation documents, fragment-aware operation text
          include/exclude filters and named projects in .graphqlrc.yml
- v0.1.0: Initial release: .graphql documents exposed as MCP tools over stdio
"""

__version__ = "0.3.0"

# MCP protocol versions supported, oldest first
SUPPORTED_PROTOCOL_VERSIONS = [
    "2024-11-05",
    "2025-03-26",
    "2025-06-18",
]

# Newest supported version, used when the client asks for one we don't know
MCP_PROTOCOL_VERSION = SUPPORTED_PROTOCOL_VERSIONS[-1]

# Server identification
SERVER_NAME = "graphql-ops-mcp"
SERVER_DESCRIPTION = "MCP server exposing GraphQL operation documents as tools"

"""
GraphQL project configuration (.graphqlrc.yml)

Reads the schema endpoint(s), request headers and document locations for a
project. Supports the single-project form as well as a ``projects`` map, and
expands ${VAR}, ${VAR:-default} and $VAR references from the environment.
"""

import os
import re
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = ".graphqlrc.yml"

_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z0-9_]+)(:-([^}]*))?\}|\$([A-Za-z0-9_]+)")

# RFC 7230 token characters; header names containing anything else are kept verbatim
_TOKEN_CHARS = frozenset(
    "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789!#$%&'*+-.^_`|~"
)


class ConfigError(Exception):
    """Raised when the configuration file cannot be read or has an invalid shape"""


@dataclass(frozen=True)
class SchemaEndpoint:
    """A GraphQL endpoint URL and the headers sent with every request to it"""
    url: str
    headers: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class GraphQLConfig:
    """Resolved project configuration. Read-only once loaded."""
    endpoints: tuple[SchemaEndpoint, ...] = ()
    documents: tuple[str, ...] = ()
    include: tuple[str, ...] = ()
    exclude: tuple[str, ...] = ()
    base_dir: str = "."

    @property
    def first_endpoint(self) -> SchemaEndpoint:
        """The endpoint tools are bound to. Only the first schema entry is used."""
        if not self.endpoints:
            raise ConfigError("No schema endpoint configured")
        return self.endpoints[0]


def expand_env_vars(value: str) -> str:
    """
    Replace ${VAR}, ${VAR:-default} and $VAR with values from the environment.

    Variables that are not set and have no default are left as they are.
    """
    def replace(match: re.Match) -> str:
        braced_name, has_default, default, bare_name = match.groups()
        name = braced_name or bare_name
        if name in os.environ:
            return os.environ[name]
        if has_default is not None:
            return default
        return match.group(0)

    return _ENV_VAR_PATTERN.sub(replace, value)


def normalize_header(key: str) -> str:
    """Return the canonical form of an HTTP header name (``x-api-key`` -> ``X-Api-Key``)"""
    if not key or any(c not in _TOKEN_CHARS for c in key):
        return key
    return "-".join(part[:1].upper() + part[1:].lower() for part in key.split("-"))


def _string_list(value: Any, key: str) -> list[str]:
    """Accept a single string or a list of strings; non-string list items are skipped"""
    if value is None:
        return []
    if isinstance(value, str):
        return [expand_env_vars(value)]
    if not isinstance(value, list):
        raise ConfigError(f"{key} must be a string or an array")
    return [expand_env_vars(item) for item in value if isinstance(item, str)]


def _parse_schema(value: Any) -> list[SchemaEndpoint]:
    if value is None:
        return []
    if isinstance(value, str):
        return [SchemaEndpoint(url=expand_env_vars(value))]
    if not isinstance(value, list):
        raise ConfigError("schema must be a string URL or an array")

    endpoints = []
    for item in value:
        if isinstance(item, str):
            endpoints.append(SchemaEndpoint(url=expand_env_vars(item)))
            continue
        if not isinstance(item, dict) or not item:
            logger.warning(f"Skipping invalid schema entry: {item!r}")
            continue

        # URL-as-key form: only the first key of the map is considered
        url, options = next(iter(item.items()))
        headers = {}
        if isinstance(options, dict) and isinstance(options.get("headers"), dict):
            for name, header_value in options["headers"].items():
                if isinstance(header_value, str):
                    headers[normalize_header(str(name))] = expand_env_vars(header_value)
        endpoints.append(SchemaEndpoint(url=expand_env_vars(str(url)), headers=headers))

    return endpoints


def _select_project(data: dict, project: Optional[str]) -> dict:
    projects = data.get("projects")
    if projects is None:
        if project:
            raise ConfigError(f"Project '{project}' requested but config has no projects")
        return data
    if not isinstance(projects, dict) or not projects:
        raise ConfigError("projects must be a non-empty map")
    if project is None:
        project = next(iter(projects))
    if project not in projects:
        raise ConfigError(f"Project '{project}' not found in config")
    logger.debug(f"Using project: {project}")
    body = projects[project] or {}
    if not isinstance(body, dict):
        raise ConfigError(f"Project '{project}' must be a map")
    return body


def parse_config(data: Any, base_dir: str = ".", project: Optional[str] = None) -> GraphQLConfig:
    """Build a GraphQLConfig from an already-parsed YAML document"""
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError("Config must be a map")

    body = _select_project(data, project)
    base_dir = os.path.abspath(base_dir)

    documents = [
        path if os.path.isabs(path) else os.path.join(base_dir, path)
        for path in _string_list(body.get("documents"), "documents")
    ]

    return GraphQLConfig(
        endpoints=tuple(_parse_schema(body.get("schema"))),
        documents=tuple(documents),
        include=tuple(_string_list(body.get("include"), "include")),
        exclude=tuple(_string_list(body.get("exclude"), "exclude")),
        base_dir=base_dir,
    )


def load_config(path: str = DEFAULT_CONFIG_PATH, project: Optional[str] = None) -> GraphQLConfig:
    """Read and resolve a .graphqlrc.yml file"""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Error reading config {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Error parsing config {path}: {e}") from e

    config = parse_config(data, base_dir=os.path.dirname(os.path.abspath(path)), project=project)
    logger.info(
        f"Loaded config {path}: {len(config.endpoints)} endpoint(s), "
        f"{len(config.documents)} document path(s)"
    )
    return config

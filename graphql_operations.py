"""
GraphQL operation documents

Walks the configured document paths, parses every .graphql file and extracts
the named queries and mutations it declares. Operations are read fresh from
disk on every call; nothing is cached between loads.
"""

import os
import re
import glob
import fnmatch
import logging
from dataclasses import dataclass
from typing import Iterator, Optional

from graphql import GraphQLError, Source, parse
from graphql.language import (
    DocumentNode,
    FragmentDefinitionNode,
    ListTypeNode,
    NonNullTypeNode,
    OperationDefinitionNode,
    TypeNode,
    VariableDefinitionNode,
    Visitor,
    visit,
)

from graphql_config import GraphQLConfig

logger = logging.getLogger(__name__)

GRAPHQL_EXTENSIONS = (".graphql", ".gql")

# Operation kinds that can be exposed as tools
SUPPORTED_KINDS = ("query", "mutation")

_GLOB_MAGIC = re.compile(r"[*?\[]")


class OperationLoadError(Exception):
    """Base error for failures while loading operation documents"""


class OperationIOError(OperationLoadError):
    """A document file or directory could not be read"""


class OperationParseError(OperationLoadError):
    """A document file is not valid GraphQL"""

    def __init__(self, path: str, message: str):
        super().__init__(f"Failed to parse {path}: {message}")
        self.path = path


@dataclass(frozen=True)
class VariableDefinition:
    """A declared operation variable"""
    name: str
    type_name: str
    non_null: bool
    is_list: bool

    @classmethod
    def from_node(cls, node: VariableDefinitionNode) -> "VariableDefinition":
        type_node: TypeNode = node.type
        non_null = isinstance(type_node, NonNullTypeNode)
        if non_null:
            type_node = type_node.type
        is_list = isinstance(type_node, ListTypeNode)
        # Element type of (possibly nested) lists
        while isinstance(type_node, (ListTypeNode, NonNullTypeNode)):
            type_node = type_node.type
        return cls(
            name=node.variable.name.value,
            type_name=type_node.name.value,
            non_null=non_null,
            is_list=is_list,
        )


@dataclass(frozen=True)
class Operation:
    """A named GraphQL query or mutation read from a document file"""
    name: str
    kind: str
    raw: str
    variables: tuple[VariableDefinition, ...]
    source_path: str


class _FragmentSpreadCollector(Visitor):
    def __init__(self):
        super().__init__()
        self.names: set[str] = set()

    def enter_fragment_spread(self, node, *_args):
        self.names.add(node.name.value)


def _fragment_spreads(node) -> set[str]:
    collector = _FragmentSpreadCollector()
    visit(node, collector)
    return collector.names


def operation_text(
    operation: OperationDefinitionNode,
    fragments: dict[str, FragmentDefinitionNode],
    text: str,
) -> str:
    """
    Source text for one operation: its own definition followed by every
    fragment it spreads, directly or through other fragments.
    """
    needed: list[str] = []
    pending = sorted(_fragment_spreads(operation))
    while pending:
        name = pending.pop(0)
        if name in needed or name not in fragments:
            continue
        needed.append(name)
        pending.extend(sorted(_fragment_spreads(fragments[name])))

    # Keep fragments in the order they appear in the file
    ordered = [node for fname, node in fragments.items() if fname in needed]
    parts = [operation] + ordered
    return "\n\n".join(text[node.loc.start:node.loc.end] for node in parts)


def _matches(path: str, base_dir: str, patterns: tuple[str, ...]) -> bool:
    rel = os.path.relpath(path, base_dir).replace(os.sep, "/")
    return any(fnmatch.fnmatch(rel, p) or fnmatch.fnmatch(path, p) for p in patterns)


def _is_document(path: str) -> bool:
    return os.path.splitext(path)[1] in GRAPHQL_EXTENSIONS


def _walk(root: str) -> Iterator[str]:
    def on_error(error: OSError):
        raise OperationIOError(f"Failed to read {error.filename}: {error.strerror}") from error

    for dirpath, dirnames, filenames in os.walk(root, onerror=on_error):
        dirnames.sort()
        for filename in sorted(filenames):
            path = os.path.join(dirpath, filename)
            if _is_document(path):
                yield path


def iter_document_files(config: GraphQLConfig) -> Iterator[str]:
    """Yield every GraphQL document file under the configured document paths"""
    seen: set[str] = set()
    for root in config.documents:
        if _GLOB_MAGIC.search(root):
            candidates = []
            for match in sorted(glob.glob(root, recursive=True)):
                if os.path.isdir(match):
                    candidates.extend(_walk(match))
                elif _is_document(match):
                    candidates.append(match)
        elif os.path.isdir(root):
            candidates = _walk(root)
        elif os.path.isfile(root):
            candidates = [root] if _is_document(root) else []
        else:
            logger.debug(f"Document path does not exist: {root}")
            continue

        for path in candidates:
            path = os.path.abspath(path)
            if path in seen:
                continue
            if config.include and not _matches(path, config.base_dir, config.include):
                continue
            if config.exclude and _matches(path, config.base_dir, config.exclude):
                continue
            seen.add(path)
            yield path


def parse_document(path: str) -> tuple[str, DocumentNode]:
    """Read and parse one document file"""
    try:
        with open(path, "r", encoding="utf-8") as f:
            text = f.read()
    except OSError as e:
        raise OperationIOError(f"Failed to read {path}: {e}") from e
    except UnicodeDecodeError as e:
        raise OperationParseError(path, str(e)) from e

    try:
        return text, parse(Source(text, path))
    except GraphQLError as e:
        raise OperationParseError(path, e.message) from e


def operations_from_document(path: str, text: str, document: DocumentNode) -> list[Operation]:
    """Extract the named queries and mutations of a parsed document"""
    definitions = [d for d in document.definitions if isinstance(d, OperationDefinitionNode)]
    fragments = {
        d.name.value: d for d in document.definitions if isinstance(d, FragmentDefinitionNode)
    }

    operations = []
    for definition in definitions:
        kind = definition.operation.value
        if definition.name is None:
            logger.warning(f"Skipping anonymous {kind} in {path}")
            continue
        if kind not in SUPPORTED_KINDS:
            logger.warning(f"Skipping {kind} {definition.name.value} in {path}: not supported")
            continue

        raw = text if len(definitions) == 1 else operation_text(definition, fragments, text)
        operations.append(Operation(
            name=definition.name.value,
            kind=kind,
            raw=raw,
            variables=tuple(
                VariableDefinition.from_node(v) for v in definition.variable_definitions or ()
            ),
            source_path=path,
        ))
    return operations


def load_operations(config: GraphQLConfig) -> dict[str, Operation]:
    """
    Load every named operation from the configured documents.

    A single unparsable file fails the whole load. When two operations share a
    name the one loaded last wins.
    """
    operations: dict[str, Operation] = {}
    for path in iter_document_files(config):
        text, document = parse_document(path)
        for operation in operations_from_document(path, text, document):
            previous: Optional[Operation] = operations.get(operation.name)
            if previous is not None:
                logger.warning(
                    f"Operation {operation.name} in {path} replaces the one in {previous.source_path}"
                )
            operations[operation.name] = operation

    logger.debug(f"Loaded {len(operations)} operation(s)")
    return operations

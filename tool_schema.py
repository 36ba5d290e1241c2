"""
Input schemas for GraphQL operations

Derives a JSON-Schema object from an operation's variable definitions so MCP
clients know which arguments a tool takes. The schema is descriptive only;
arguments are not validated against it when a tool is called.
"""

from typing import Any

from graphql import GraphQLError, parse
from graphql.language import OperationDefinitionNode

from graphql_operations import OperationParseError, VariableDefinition

SCALAR_TYPE_MAP = {
    "String": "string",
    "ID": "string",
    "Int": "integer",
    "Float": "number",
    "Boolean": "boolean",
}


def json_schema_type(variable: VariableDefinition) -> str:
    """Map a variable's GraphQL type to a JSON-Schema type name"""
    if variable.is_list:
        return "array"
    # Enums, custom scalars and input objects fall back to string
    return SCALAR_TYPE_MAP.get(variable.type_name, "string")


def schema_from_variables(variables: tuple[VariableDefinition, ...]) -> dict[str, Any]:
    properties = {}
    required = []
    for variable in variables:
        properties[variable.name] = {"type": json_schema_type(variable)}
        if variable.non_null:
            required.append(variable.name)

    schema: dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


def derive_schema(raw_operation: str) -> dict[str, Any]:
    """
    Build the input schema for the first operation in ``raw_operation``.

    Returns an object schema with empty properties when the operation declares
    no variables (or the text holds no operation at all).
    """
    try:
        document = parse(raw_operation)
    except GraphQLError as e:
        raise OperationParseError("<operation>", e.message) from e

    for definition in document.definitions:
        if isinstance(definition, OperationDefinitionNode):
            variables = tuple(
                VariableDefinition.from_node(v) for v in definition.variable_definitions or ()
            )
            return schema_from_variables(variables)

    return schema_from_variables(())

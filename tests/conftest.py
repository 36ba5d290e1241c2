"""Shared fixtures: a document tree with one query and a config pointing at it."""

from unittest.mock import AsyncMock

import pytest

from graphql_config import GraphQLConfig, SchemaEndpoint

GET_FILM = "query GetFilm($id: ID!) { film(id: $id) { title } }\n"

FILM_RESULT = {"data": {"film": {"title": "A New Hope"}}}

ENDPOINT_URL = "http://example/graphql"


@pytest.fixture
def documents_dir(tmp_path):
    docs = tmp_path / "operations"
    docs.mkdir()
    (docs / "get_film.graphql").write_text(GET_FILM)
    return docs


@pytest.fixture
def endpoint():
    return SchemaEndpoint(url=ENDPOINT_URL, headers={"Authorization": "Bearer token"})


@pytest.fixture
def config(documents_dir, endpoint):
    return GraphQLConfig(
        endpoints=(endpoint,),
        documents=(str(documents_dir),),
        base_dir=str(documents_dir.parent),
    )


@pytest.fixture
def executor():
    return AsyncMock(return_value=FILM_RESULT)

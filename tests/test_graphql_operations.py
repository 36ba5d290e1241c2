"""Tests for document discovery and operation extraction."""

import logging
import os

import pytest

from graphql_config import GraphQLConfig
from graphql_operations import (
    OperationIOError,
    OperationParseError,
    iter_document_files,
    load_operations,
    parse_document,
)


def config_for(tmp_path, *documents, include=(), exclude=()) -> GraphQLConfig:
    return GraphQLConfig(
        documents=tuple(str(d) for d in documents),
        include=include,
        exclude=exclude,
        base_dir=str(tmp_path),
    )


class TestIterDocumentFiles:
    def test_walks_directories_recursively(self, tmp_path) -> None:
        (tmp_path / "ops" / "nested").mkdir(parents=True)
        (tmp_path / "ops" / "a.graphql").write_text("query A { a }")
        (tmp_path / "ops" / "nested" / "b.gql").write_text("query B { b }")
        (tmp_path / "ops" / "notes.txt").write_text("not graphql")

        files = list(iter_document_files(config_for(tmp_path, tmp_path / "ops")))

        assert [os.path.basename(f) for f in files] == ["a.graphql", "b.gql"]

    def test_single_file(self, tmp_path) -> None:
        path = tmp_path / "one.graphql"
        path.write_text("query One { one }")

        assert list(iter_document_files(config_for(tmp_path, path))) == [str(path)]

    def test_glob_pattern(self, tmp_path) -> None:
        (tmp_path / "ops").mkdir()
        (tmp_path / "ops" / "a.graphql").write_text("query A { a }")
        (tmp_path / "ops" / "b.graphql").write_text("query B { b }")

        files = list(iter_document_files(config_for(tmp_path, tmp_path / "ops" / "*.graphql")))

        assert len(files) == 2

    def test_missing_path_is_skipped(self, tmp_path) -> None:
        assert list(iter_document_files(config_for(tmp_path, tmp_path / "missing"))) == []

    def test_duplicate_roots_yield_once(self, tmp_path) -> None:
        (tmp_path / "ops").mkdir()
        (tmp_path / "ops" / "a.graphql").write_text("query A { a }")

        files = list(iter_document_files(config_for(tmp_path, tmp_path / "ops", tmp_path / "ops")))

        assert len(files) == 1

    def test_exclude_pattern(self, tmp_path) -> None:
        (tmp_path / "ops" / "drafts").mkdir(parents=True)
        (tmp_path / "ops" / "a.graphql").write_text("query A { a }")
        (tmp_path / "ops" / "drafts" / "b.graphql").write_text("query B { b }")

        config = config_for(tmp_path, tmp_path / "ops", exclude=("ops/drafts/*",))
        files = list(iter_document_files(config))

        assert [os.path.basename(f) for f in files] == ["a.graphql"]

    def test_include_pattern(self, tmp_path) -> None:
        (tmp_path / "ops").mkdir()
        (tmp_path / "ops" / "films.graphql").write_text("query A { a }")
        (tmp_path / "ops" / "people.graphql").write_text("query B { b }")

        config = config_for(tmp_path, tmp_path / "ops", include=("*/films.graphql",))
        files = list(iter_document_files(config))

        assert [os.path.basename(f) for f in files] == ["films.graphql"]


class TestParseDocument:
    def test_invalid_graphql(self, tmp_path) -> None:
        path = tmp_path / "bad.graphql"
        path.write_text("query Broken { ")

        with pytest.raises(OperationParseError) as exc_info:
            parse_document(str(path))

        assert exc_info.value.path == str(path)
        assert str(path) in str(exc_info.value)

    def test_unreadable_file(self, tmp_path) -> None:
        with pytest.raises(OperationIOError):
            parse_document(str(tmp_path / "missing.graphql"))


class TestLoadOperations:
    def test_single_operation_keeps_file_text(self, config, documents_dir) -> None:
        operations = load_operations(config)

        assert list(operations) == ["GetFilm"]
        op = operations["GetFilm"]
        assert op.kind == "query"
        assert op.raw == (documents_dir / "get_film.graphql").read_text()
        assert op.source_path == str(documents_dir / "get_film.graphql")
        assert [(v.name, v.type_name, v.non_null, v.is_list) for v in op.variables] == [
            ("id", "ID", True, False)
        ]

    def test_multiple_operations_get_their_own_text(self, tmp_path) -> None:
        (tmp_path / "ops.graphql").write_text(
            "query GetFilm($id: ID!) {\n  film(id: $id) { ...FilmFields }\n}\n\n"
            "mutation RateFilm($id: ID!, $stars: Int!) {\n  rate(id: $id, stars: $stars) { ok }\n}\n\n"
            "fragment FilmFields on Film {\n  title\n}\n"
        )

        operations = load_operations(config_for(tmp_path, tmp_path))

        assert set(operations) == {"GetFilm", "RateFilm"}
        get_film = operations["GetFilm"].raw
        assert get_film.startswith("query GetFilm")
        assert "fragment FilmFields on Film" in get_film
        assert "RateFilm" not in get_film

        rate_film = operations["RateFilm"].raw
        assert rate_film.startswith("mutation RateFilm")
        assert "FilmFields" not in rate_film
        assert operations["RateFilm"].kind == "mutation"

    def test_nested_fragments_are_included(self, tmp_path) -> None:
        (tmp_path / "ops.graphql").write_text(
            "query A { film { ...Outer } }\n"
            "query B { other }\n"
            "fragment Inner on Film { id }\n"
            "fragment Outer on Film { ...Inner title }\n"
            "fragment Unused on Film { director }\n"
        )

        raw = load_operations(config_for(tmp_path, tmp_path))["A"].raw

        assert "fragment Outer" in raw
        assert "fragment Inner" in raw
        assert "Unused" not in raw
        # fragments follow file order
        assert raw.index("fragment Inner") < raw.index("fragment Outer")

    def test_anonymous_and_subscription_operations_skipped(self, tmp_path, caplog) -> None:
        (tmp_path / "ops.graphql").write_text(
            "query Named { a }\n"
            "subscription OnFilm { filmAdded { id } }\n"
        )
        (tmp_path / "anon.graphql").write_text("{ b }\n")

        with caplog.at_level(logging.WARNING):
            operations = load_operations(config_for(tmp_path, tmp_path))

        assert list(operations) == ["Named"]
        assert "anonymous" in caplog.text
        assert "OnFilm" in caplog.text

    def test_duplicate_names_last_wins(self, tmp_path, caplog) -> None:
        (tmp_path / "a.graphql").write_text("query Same { first }")
        (tmp_path / "b.graphql").write_text("query Same { second }")

        with caplog.at_level(logging.WARNING):
            operations = load_operations(config_for(tmp_path, tmp_path))

        assert "second" in operations["Same"].raw
        assert "replaces" in caplog.text

    def test_parse_error_fails_whole_load(self, tmp_path) -> None:
        (tmp_path / "good.graphql").write_text("query Good { a }")
        (tmp_path / "zz_bad.graphql").write_text("query Bad {")

        with pytest.raises(OperationParseError):
            load_operations(config_for(tmp_path, tmp_path))

    def test_list_variables(self, tmp_path) -> None:
        (tmp_path / "ops.graphql").write_text(
            "query Films($ids: [ID!]!, $tags: [String]) { films(ids: $ids, tags: $tags) { id } }"
        )

        op = load_operations(config_for(tmp_path, tmp_path))["Films"]

        assert [(v.name, v.type_name, v.non_null, v.is_list) for v in op.variables] == [
            ("ids", "ID", True, True),
            ("tags", "String", False, True),
        ]

    def test_no_documents(self, tmp_path) -> None:
        assert load_operations(config_for(tmp_path)) == {}

    def test_changes_on_disk_are_seen(self, tmp_path) -> None:
        config = config_for(tmp_path, tmp_path)
        (tmp_path / "a.graphql").write_text("query First { a }")
        assert list(load_operations(config)) == ["First"]

        (tmp_path / "b.graphql").write_text("query Second { b }")
        assert set(load_operations(config)) == {"First", "Second"}

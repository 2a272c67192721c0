import json

import pytest
from sqlalchemy.dialects import sqlite

from crudrouter.errors import ValidationError
from crudrouter.query import build_criteria, build_order_by, coerce_id, filter_order, filter_select, filter_where
from crudrouter.request import parse_include, parse_list_query, parse_order
from tests.conftest import User

FIELDS = ["id", "name", "email"]


def _sql(criteria) -> str:
    return " AND ".join(str(c.compile(dialect=sqlite.dialect(), compile_kwargs={"literal_binds": True})) for c in criteria)


@pytest.mark.parametrize("value, expected", [("42", 42), ("-3", -3), ("4.5", 4.5), ("3f2a-11", "3f2a-11"), ("", ""), (7, 7)])
def test_coerce_id(value, expected) -> None:
    assert coerce_id(value) == expected


def test_filter_where_keeps_known_fields() -> None:
    where = {"name": {"contains": "jo"}, "password": "x", "OR": [{"email": "a"}, {"secret": 1}], "NOT": {"bogus": 1}}

    assert filter_where(where, FIELDS) == {"name": {"contains": "jo"}, "OR": [{"email": "a"}]}


def test_filter_where_degraded_mode() -> None:
    where = {"anything": 1}
    assert filter_where(where, []) is where


def test_filter_select_and_order() -> None:
    assert filter_select({"name": True, "password": True}, FIELDS) == {"name": True}
    assert filter_select({"password": True}, FIELDS) is None
    assert filter_order({"name": "asc", "secret": "desc"}, FIELDS) == {"name": "asc"}
    assert filter_order([{"secret": "asc"}, {"id": "desc"}], FIELDS) == [{"id": "desc"}]
    assert filter_order({"x": "asc"}, []) == {"x": "asc"}


def test_build_criteria_operators() -> None:
    sql = _sql(build_criteria(User, {"name": {"startsWith": "jo", "mode": "insensitive"}, "id": {"in": [1, 2], "gte": 1}}))

    assert "users.name LIKE 'jo' || '%'" in sql
    assert "users.id IN (1, 2)" in sql
    assert "users.id >= 1" in sql


def test_build_criteria_logical_operators() -> None:
    sql = _sql(build_criteria(User, {"OR": [{"name": "a"}, {"name": "b"}], "NOT": {"email": None}}))

    assert "users.name = 'a' OR users.name = 'b'" in sql
    assert "users.email IS NOT NULL" in sql


@pytest.mark.parametrize("where", [{"name": {"like": "x"}}, {"nope": 1}, ["name"]])
def test_build_criteria_invalid(where) -> None:
    with pytest.raises(ValidationError):
        build_criteria(User, where)


def test_build_order_by() -> None:
    clauses = build_order_by(User, [{"name": "desc"}, {"id": "asc"}])
    assert [str(c) for c in clauses] == ["users.name DESC", "users.id ASC"]

    with pytest.raises(ValidationError):
        build_order_by(User, {"name": "sideways"})


def test_parse_list_query_defaults() -> None:
    query = parse_list_query({}, default_limit=25)

    assert query.filter == {}
    assert (query.skip, query.take) == (0, 25)
    assert query.order_by is None and query.include is None and query.select is None


def test_parse_list_query_aliases() -> None:
    args = {"take": "5", "limit": "9", "skip": "2", "offset": "7", "orderBy": json.dumps({"name": "asc"}), "order": json.dumps([["id", "desc"]])}
    query = parse_list_query(args)

    assert (query.take, query.skip) == (5, 2)
    assert query.order_by == {"name": "asc"}


def test_parse_list_query_select_disables_include() -> None:
    query = parse_list_query({"select": json.dumps(["name"]), "include": json.dumps({"posts": True})})

    assert query.select == {"name": True}
    assert query.include is None


@pytest.mark.parametrize("args", [{"limit": "-1"}, {"limit": "many"}, {"filter": "[1]"}, {"filter": "{"}, {"include": "[]"}])
def test_parse_list_query_invalid(args) -> None:
    with pytest.raises(ValidationError):
        parse_list_query(args)


def test_parse_order() -> None:
    assert parse_order([["name", "DESC"], ["id"]]) == [{"name": "desc"}, {"id": "asc"}]
    assert parse_order(["name", "asc"]) == [{"name": "asc"}]
    assert parse_order(None) is None


def test_parse_include() -> None:
    assert parse_include({"include": json.dumps({"posts": True})}) == {"posts": True}
    assert parse_include({}) == {}

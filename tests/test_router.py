import base64
import json
import logging
from functools import wraps
from http import HTTPStatus

import pytest
import yaml
from flask import Response, request

from crudrouter import CRUD, CRUDRouter, DB, Plugin, SQLAModelHandle, ValidationError
from tests.conftest import Category, Post, Profile, User


def _tracer(calls: list, name: str):
    def decorator(fun):
        @wraps(fun)
        def wrapper(*args, **kwargs):
            calls.append(name)
            return fun(*args, **kwargs)

        return wrapper

    return decorator


#
# List
#
def test_list_paginates_and_counts(router: CRUDRouter, client, users) -> None:
    router.register("/users", User)
    response = client.get("/users", query_string={"limit": 2, "orderBy": json.dumps({"id": "asc"})})

    assert response.status_code == HTTPStatus.OK
    body = response.get_json()
    assert body["message"] == "Data retrieved successfully"
    assert body["count"] == 5
    assert [row["name"] for row in body["data"]] == ["user0", "user1"]
    assert all("password" not in row for row in body["data"])
    assert response.headers["X-Resource-IDs"] == "1,2"
    assert response.headers["X-Response-Type"] == "ok"
    assert response.headers["X-Response-Method"] == "GET"
    assert response.headers["X-Environment"] == "development"


def test_list_take_skip_and_order(router: CRUDRouter, client, users) -> None:
    router.register("/users", User)
    response = client.get("/users", query_string={"take": 2, "skip": 1, "order": json.dumps([["id", "desc"]])})

    body = response.get_json()
    assert [row["id"] for row in body["data"]] == [4, 3]
    assert body["count"] == 5


def test_list_filter(router: CRUDRouter, client, users) -> None:
    router.register("/users", User)
    response = client.get("/users", query_string={"filter": json.dumps({"name": {"startsWith": "user1"}})})

    body = response.get_json()
    assert body["count"] == 1
    assert body["data"][0]["email"] == "user1@example.com"


def test_list_filter_drops_unknown_and_excluded_fields(router: CRUDRouter, client, users) -> None:
    router.register("/users", User)
    response = client.get("/users", query_string={"filter": json.dumps({"nope": 1, "password": "wrong"})})

    assert response.status_code == HTTPStatus.OK
    assert response.get_json()["count"] == 5


def test_list_select_disables_include(router: CRUDRouter, client, users) -> None:
    router.register("/users", User)
    response = client.get("/users", query_string={"select": json.dumps(["name"]), "include": json.dumps({"posts": True})})

    rows = response.get_json()["data"]
    assert rows[0] == {"name": "user0"}


def test_list_invalid_filter_json(router: CRUDRouter, client, users) -> None:
    router.register("/users", User)
    response = client.get("/users", query_string={"filter": "{nope"})

    assert response.status_code == HTTPStatus.BAD_REQUEST
    assert response.get_json()["code"] == "VALIDATION_ERROR"


#
# Get by id
#
def test_get_by_id_with_include(router: CRUDRouter, client, users) -> None:
    router.register("/users", User)
    response = client.get("/users/1", query_string={"include": json.dumps({"posts": True})})

    assert response.status_code == HTTPStatus.OK
    body = response.get_json()
    assert body["name"] == "user0"
    assert "password" not in body
    assert [post["title"] for post in body["posts"]] == ["first", "second"]
    assert body["count"] == 1
    assert response.headers["X-Resource-ID"] == "1"


def test_get_by_id_include_relations(router: CRUDRouter, client, users) -> None:
    router.register("/users", User, include_relations=True, exclude_relations=["profile"])
    body = client.get("/users/1").get_json()

    assert len(body["posts"]) == 2
    assert "profile" not in body


def test_excluded_fields_are_hidden_in_included_rows(router: CRUDRouter, client, users) -> None:
    router.register("/posts", Post)
    router.register("/users", User)

    body = client.get("/posts", query_string={"include": json.dumps({"author": True})}).get_json()
    assert body["data"][0]["author"]["name"] == "user0"
    assert all("password" not in row["author"] for row in body["data"])

    body = client.get("/posts/1", query_string={"include": json.dumps({"author": {"include": {"posts": True}}})}).get_json()
    assert "password" not in body["author"]
    assert len(body["author"]["posts"]) == 2

    body = client.get("/users/1", query_string={"include": json.dumps({"profile": True, "posts": True})}).get_json()
    assert "password" not in body


def test_get_by_id_not_found(router: CRUDRouter, client) -> None:
    router.register("/users", User)
    response = client.get("/users/999")

    assert response.status_code == HTTPStatus.NOT_FOUND
    body = response.get_json()
    assert body["error"] is True
    assert body["code"] == "NOT_FOUND"
    assert response.headers["X-Response-Type"] == "error"


def test_get_by_id_non_numeric_id(router: CRUDRouter, client) -> None:
    router.register("/users", User)
    response = client.get("/users/abc")

    assert response.status_code == HTTPStatus.NOT_FOUND


def test_request_id_header_is_propagated(router: CRUDRouter, client, users) -> None:
    router.register("/users", User)
    response = client.get("/users/1", headers={"X-Request-ID": "req-42"})

    assert response.headers["X-Response-ID"] == "req-42"


#
# Create
#
def test_create_with_nested_relations(router: CRUDRouter, client) -> None:
    router.register("/users", User)
    payload = {"name": "jo", "email": "jo@example.com", "password": "x", "profile": {"bio": "dev"}, "posts": [{"title": "hello"}]}
    response = client.post("/users", json=payload)

    assert response.status_code == HTTPStatus.CREATED
    body = response.get_json()
    assert body["created"] is True
    assert body["message"] == "Resource created successfully"
    assert "password" not in body
    assert body["profile"]["bio"] == "dev"
    assert body["profile"]["user_id"] == body["id"]
    assert body["posts"][0]["title"] == "hello"
    assert response.headers["X-Resource-ID"] == str(body["id"])
    assert DB.session.query(Profile).count() == 1
    assert DB.session.query(Post).filter_by(author_id=body["id"]).count() == 1


def test_create_nested_rolls_back_on_failure(router: CRUDRouter, client) -> None:
    router.register("/users", User)
    response = client.post("/users", json={"name": "jo", "posts": [{"title": "ok"}, {"nope": 1}]})

    assert response.status_code == HTTPStatus.BAD_REQUEST
    assert DB.session.query(User).count() == 0
    assert DB.session.query(Post).count() == 0


def test_create_missing_required_field(router: CRUDRouter, client) -> None:
    router.register("/posts", Post)
    response = client.post("/posts", json={"body": "no title"})

    assert response.status_code == HTTPStatus.BAD_REQUEST
    body = response.get_json()
    assert body["error"] is True
    assert body["code"] == "CONSTRAINT_VIOLATION"
    assert "title" in body["message"]


def test_create_missing_required_field_production(app, client) -> None:
    router = CRUDRouter(app, is_dev=False)
    router.register("/posts", Post)
    response = client.post("/posts", json={"body": "no title"})

    assert response.status_code == HTTPStatus.BAD_REQUEST
    assert response.get_json()["message"] == "Constraint violation"
    assert response.headers["X-Environment"] == "production"


def test_create_foreign_key_violation(router: CRUDRouter, client) -> None:
    router.register("/posts", Post)
    response = client.post("/posts", json={"title": "t", "author_id": 42})

    assert response.status_code == HTTPStatus.BAD_REQUEST
    assert "author_id references non-existent users" in response.get_json()["message"]


def test_create_unique_violation(router: CRUDRouter, client, users) -> None:
    router.register("/users", User)
    response = client.post("/users", json={"name": "dup", "email": "user1@example.com"})

    assert response.status_code == HTTPStatus.BAD_REQUEST
    assert "Unique constraint violation on field 'email'" in response.get_json()["message"]


def test_create_requires_json_object(router: CRUDRouter, client) -> None:
    router.register("/users", User)
    response = client.post("/users", json=[{"name": "jo"}])

    assert response.status_code == HTTPStatus.BAD_REQUEST


def test_create_nested_models_restriction(router: CRUDRouter, client) -> None:
    router.register("/users", User, nested_models={"create": ["profile"]})
    response = client.post("/users", json={"name": "jo", "posts": [{"title": "no"}]})

    assert response.status_code == HTTPStatus.BAD_REQUEST
    assert "posts" in response.get_json()["message"]


def test_uploaded_files_are_not_persisted(router: CRUDRouter, client) -> None:
    received = []

    def before_create(data, req):
        received.append(data.get("uploadedFiles"))

    def attach_uploads(fun):
        @wraps(fun)
        def wrapper(*args, **kwargs):
            request.uploaded_files = [{"filename": "avatar.png"}]
            return fun(*args, **kwargs)

        return wrapper

    router.register("/users", User, middleware=[attach_uploads], before_actions={"create": before_create})
    response = client.post("/users", json={"name": "jo"})

    assert response.status_code == HTTPStatus.CREATED
    assert received == [[{"filename": "avatar.png"}]]
    assert "uploadedFiles" not in response.get_json()


def test_create_with_null_unique_field(router: CRUDRouter, client) -> None:
    router.register("/users", User)
    DB.session.add(User(name="a", email=None))
    DB.session.commit()

    response = client.post("/users", json={"name": "b", "email": None})

    assert response.status_code == HTTPStatus.CREATED
    assert DB.session.query(User).filter(User.email.is_(None)).count() == 2


#
# Update
#
def test_update(router: CRUDRouter, client, users) -> None:
    router.register("/users", User)
    response = client.put("/users/1", json={"name": "renamed", "email": "user0@example.com"})

    assert response.status_code == HTTPStatus.OK
    body = response.get_json()
    assert body["updated"] is True
    assert body["name"] == "renamed"


def test_update_with_nested_create(router: CRUDRouter, client, users) -> None:
    router.register("/users", User)
    response = client.put("/users/2", json={"profile": {"bio": "new"}})

    assert response.status_code == HTTPStatus.OK
    assert response.get_json()["profile"]["bio"] == "new"
    assert DB.session.query(Profile).filter_by(user_id=2).count() == 1


def test_update_unique_violation(router: CRUDRouter, client, users) -> None:
    router.register("/users", User)
    response = client.put("/users/1", json={"email": "user2@example.com"})

    assert response.status_code == HTTPStatus.BAD_REQUEST


def test_update_not_found(router: CRUDRouter, client) -> None:
    router.register("/users", User)
    response = client.put("/users/999", json={"name": "x"})

    assert response.status_code == HTTPStatus.NOT_FOUND


#
# Delete
#
def test_delete(router: CRUDRouter, client, users) -> None:
    router.register("/users", User)
    response = client.delete("/users/5")

    assert response.status_code == HTTPStatus.NO_CONTENT
    assert response.data == b""
    assert response.headers["X-Resource-ID"] == "5"
    assert DB.session.get(User, 5) is None


def test_delete_cascades(router: CRUDRouter, client, categories) -> None:
    router.register("/categories", Category)
    response = client.delete("/categories/1")

    assert response.status_code == HTTPStatus.NO_CONTENT
    assert DB.session.query(Category).count() == 0


def test_delete_cascade_failure_is_not_fatal(router: CRUDRouter, client, categories, caplog) -> None:
    class FlakyCategories(SQLAModelHandle):
        async def delete(self, id):
            if id == 3:
                raise RuntimeError("row is locked")
            return await super().delete(id)

    router.register("/categories", FlakyCategories(Category))
    with caplog.at_level(logging.WARNING):
        response = client.delete("/categories/1")

    assert response.status_code == HTTPStatus.NO_CONTENT
    assert "Cascade operations completed with warnings" in caplog.text
    assert "row is locked" in caplog.text
    assert [category.name for category in DB.session.query(Category).all()] == ["b"]


def test_delete_before_hook_short_circuits(router: CRUDRouter, client, users) -> None:
    deleted = []
    router.register(
        "/users",
        User,
        before_actions={"delete": lambda id, req: {"id": id, "archived": True}},
        after_actions={"delete": lambda row, req: deleted.append(row)},
    )
    response = client.delete("/users/1")

    assert response.status_code == HTTPStatus.NO_CONTENT
    assert deleted == [{"id": 1, "archived": True}]
    assert DB.session.get(User, 1) is not None


#
# Middleware, exclusion and custom actions
#
def test_middleware_order(router: CRUDRouter, client, users) -> None:
    calls = []
    router.add_global_middleware(_tracer(calls, "global"))
    router.register(
        "/users",
        User,
        middleware={"default": [_tracer(calls, "default")], "list": [_tracer(calls, "list")]},
        auth_middleware=_tracer(calls, "auth"),
    )
    client.get("/users")
    assert calls == ["global", "default", "list", "auth"]

    calls.clear()
    client.get("/users/1")
    assert calls == ["global", "default", "auth"]


def test_auth_middleware_rejects(router: CRUDRouter, client, users) -> None:
    def deny(fun):
        @wraps(fun)
        def wrapper(*args, **kwargs):
            return {"message": "unauthorized"}, HTTPStatus.UNAUTHORIZED

        return wrapper

    router.register("/users", User, auth_middleware=deny)
    response = client.get("/users")

    assert response.status_code == HTTPStatus.UNAUTHORIZED


def test_excluded_route(router: CRUDRouter, client, users) -> None:
    router.register("/users", User, exclude_route=["delete", "create"])

    assert client.delete("/users/1").status_code == HTTPStatus.METHOD_NOT_ALLOWED
    assert client.post("/users", json={"name": "x"}).status_code == HTTPStatus.METHOD_NOT_ALLOWED
    assert client.get("/users/1").status_code == HTTPStatus.OK

    excluded = {(route["method"], route["operation"]) for route in router.describe_routes() if route["excluded"]}
    assert excluded == {("DELETE", "delete"), ("POST", "create")}


def test_custom_actions(router: CRUDRouter, client, users, caplog) -> None:
    def bulk_patch():
        return {"patched": request.get_json()["ids"]}

    def failing_action():
        raise ValidationError("nothing to export")

    with caplog.at_level(logging.WARNING):
        router.register("/users", User, custom_actions={"patch": bulk_patch, "trace": bulk_patch, "delete": failing_action})

    response = client.patch("/users", json={"ids": [1, 2]})
    assert response.status_code == HTTPStatus.OK
    assert response.get_json() == {"patched": [1, 2]}

    response = client.delete("/users")
    assert response.status_code == HTTPStatus.BAD_REQUEST
    assert response.get_json()["message"] == "nothing to export"

    assert "Invalid custom action method 'trace'" in caplog.text
    custom = [route["method"] for route in router.describe_routes() if route["operation"] == "custom"]
    assert custom == ["PATCH", "DELETE"]


def test_duplicate_registration(router: CRUDRouter, client, users) -> None:
    router.register("/users", User)
    router.route("/people", User)

    assert client.get("/people/1").get_json()["name"] == "user0"
    endpoints = {route["endpoint"] for route in router.describe_routes()}
    assert {"User_API", "User_API_2", "User_Instance_API", "User_Instance_API_2"} <= endpoints


#
# Hooks and validation
#
def test_hooks_replace_values(router: CRUDRouter, client, users) -> None:
    router.register(
        "/users",
        User,
        before_actions={"create": lambda data, req: dict(data, name=data["name"].upper()), "list": lambda args, req: dict(args, limit="1")},
        after_actions={"get_by_id": lambda row, req: dict(row, display=f"<{row['name']}>")},
    )

    assert client.post("/users", json={"name": "jo"}).get_json()["name"] == "JO"
    assert len(client.get("/users").get_json()["data"]) == 1
    assert client.get("/users/1").get_json()["display"] == "<user0>"


def test_async_hooks(router: CRUDRouter, client, users) -> None:
    async def after_list(result, req):
        return {"rows": [row["name"] for row in result["rows"]], "count": result["count"]}

    router.register("/users", User, after_actions={"list": after_list})
    body = client.get("/users", query_string={"limit": 2}).get_json()

    assert body["data"] == ["user0", "user1"]
    assert body["count"] == 5


def test_validation_hook(router: CRUDRouter, client) -> None:
    async def validate_email(data, req):
        return {"is_valid": "@" in data.get("email", ""), "message": "invalid email"}

    router.register("/users", User, validation={"create": validate_email})
    response = client.post("/users", json={"name": "jo", "email": "nope"})

    assert response.status_code == HTTPStatus.BAD_REQUEST
    body = response.get_json()
    assert body["message"] == "invalid email"
    assert body["code"] == "VALIDATION_ERROR"
    assert client.post("/users", json={"name": "jo", "email": "jo@example.com"}).status_code == HTTPStatus.CREATED


#
# Plugins and error handlers
#
def test_plugins(app, client, users) -> None:
    calls = []

    class TracePlugin(Plugin):
        def apply(self, router):
            router.add_global_middleware(_tracer(calls, "plugin"))

    router = CRUDRouter(app, plugins=[TracePlugin()])
    router.add_plugin(lambda r: r.add_global_middleware(_tracer(calls, "function")))
    router.register("/users", User)
    client.get("/users")

    assert calls == ["plugin", "function"]


def test_global_error_handler(app, client) -> None:
    router = CRUDRouter(app)
    router.set_global_error_handler(lambda exc, verb, formatter: formatter.error(verb, message="custom", status_code=HTTPStatus.IM_A_TEAPOT))
    router.register("/users", User)
    response = client.get("/users/999")

    assert response.status_code == HTTPStatus.IM_A_TEAPOT
    assert response.get_json()["message"] == "custom"


def test_route_error_handler_overrides_global(app, client) -> None:
    router = CRUDRouter(app)
    router.set_global_error_handler(lambda exc, verb, formatter: formatter.error(verb, status_code=HTTPStatus.IM_A_TEAPOT))
    router.register("/users", User, error_handler=lambda exc, verb, formatter: Response("gone", status=HTTPStatus.GONE))
    response = client.get("/users/999")

    assert response.status_code == HTTPStatus.GONE
    assert response.data == b"gone"


#
# Response options
#
def test_obfuscation(app, client, users) -> None:
    router = CRUDRouter(app, obfuscation_key="secret")
    router.register("/users", User)
    response = client.get("/users/1")

    assert response.headers["X-Encrypted"] == "true"
    decoded = json.loads(base64.b64decode(response.get_json()))
    assert decoded["name"] == "user0"


def test_config_defaults(app, client, users) -> None:
    app.config["CRUD_DEFAULT_LIMIT"] = 3
    app.config["CRUD_EXCLUDE_FIELDS"] = ["email"]
    router = CRUDRouter(app)
    router.register("/users", User)
    body = client.get("/users").get_json()

    assert len(body["data"]) == 3
    assert "email" not in body["data"][0]
    assert "password" in body["data"][0]


def test_route_schema(router: CRUDRouter, client) -> None:
    router.register("/users", User, exclude_route=["delete"])
    router.expose_route_schema()

    body = client.get("/crud/routes").get_json()
    assert {"path": "/users", "method": "GET", "operation": "list", "excluded": False, "endpoint": "User_API"} in body["routes"]

    response = client.get("/crud/routes", query_string={"yaml": 1})
    assert response.content_type.startswith("text/yaml")
    routes = yaml.safe_load(response.data)["routes"]
    assert len(routes) == 5


def test_swagger_paths(router: CRUDRouter, client) -> None:
    router.register("/users", User)
    paths = client.get("/crud/swagger.json").get_json()["paths"]

    assert set(paths["/users"]) == {"get", "post"}
    assert set(paths["/users/{id}"]) == {"get", "put", "delete"}


@pytest.mark.parametrize("path", ["users", "/users/"])
def test_path_normalization(router: CRUDRouter, client, users, path: str) -> None:
    router.register(path, User)
    assert client.get("/users/1").status_code == HTTPStatus.OK


def test_session_teardown_is_registered_once(router: CRUDRouter, app) -> None:
    CRUD(app)
    CRUD(app, app_db=DB)

    teardowns = [func for func in app.teardown_appcontext_funcs if func.__name__ == "shutdown_session"]
    assert len(teardowns) == 1

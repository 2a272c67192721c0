"""
Route configuration

A RouteConfig is created once per registered (path, model) pair, e.g.

    router.register("/users", User, {
        "middleware": {"default": [login_required], "delete": [admin_required]},
        "validation": {"create": validate_user},
        "before_actions": {"create": hash_password},
        "after_actions": {"get_by_id": add_avatar_url},
        "custom_actions": {"patch": bulk_patch_users},
        "exclude_fields": ["token"],
        "exclude_route": ["delete"],
    })

Hooks and validation functions receive the request as their last argument and may be
coroutine functions. Hooks returning a value other than None replace the current value.
"""
import inspect
from dataclasses import dataclass, field, fields
from types import MappingProxyType
from typing import Any, Callable, Mapping, Optional, Tuple

LIST = "list"
GET_BY_ID = "get_by_id"
CREATE = "create"
UPDATE = "update"
DELETE = "delete"
OPERATIONS = (LIST, GET_BY_ID, CREATE, UPDATE, DELETE)

OPERATION_ALIASES = {
    "get": LIST,
    "getById": GET_BY_ID,
    "get_by_id": GET_BY_ID,
    "post": CREATE,
    "put": UPDATE,
    "destroy": DELETE,
}
# http verbs accepted for custom actions
CUSTOM_ACTION_VERBS = ("get", "post", "put", "delete", "patch")


def operation_name(name: str) -> str:
    """
    :return: the operation name for name or one of its aliases
    """
    result = OPERATION_ALIASES.get(name, name)
    if result not in OPERATIONS and result != "default":
        raise ValueError(f"Invalid operation '{name}', valid operations are {', '.join(OPERATIONS)}")
    return result


def _operation_map(value: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
    if not value:
        return MappingProxyType({})
    return MappingProxyType({operation_name(key): val for key, val in value.items()})


def _middleware_map(value) -> Mapping[str, Tuple[Callable, ...]]:
    # a list is the default middleware of all operations
    if not value:
        return MappingProxyType({})
    if callable(value):
        value = [value]
    if isinstance(value, (list, tuple)):
        value = {"default": value}
    result = {}
    for key, decorators in value.items():
        if callable(decorators):
            decorators = [decorators]
        result[operation_name(key)] = tuple(decorators)
    return MappingProxyType(result)


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool = True
    message: Optional[str] = None

    @classmethod
    def coerce(cls, result: Any) -> "ValidationResult":
        """
        Accept ValidationResult, bool, None (valid) and {"is_valid"/"isValid": ..., "message": ...} results
        """
        if isinstance(result, ValidationResult):
            return result
        if result is None:
            return cls(True)
        if isinstance(result, Mapping):
            is_valid = result.get("is_valid", result.get("isValid", False))
            return cls(bool(is_valid), result.get("message"))
        if isinstance(result, tuple) and result:
            return cls(bool(result[0]), result[1] if len(result) > 1 else None)
        return cls(bool(result))


@dataclass(frozen=True)
class RouteConfig:
    middleware: Mapping[str, Tuple[Callable, ...]] = field(default_factory=dict)
    auth_middleware: Optional[Callable] = None
    validation: Mapping[str, Callable] = field(default_factory=dict)
    before_actions: Mapping[str, Callable] = field(default_factory=dict)
    after_actions: Mapping[str, Callable] = field(default_factory=dict)
    custom_actions: Mapping[str, Callable] = field(default_factory=dict)
    error_handler: Optional[Callable] = None
    include_relations: bool = False
    exclude_relations: Tuple[str, ...] = ()
    exclude_fields: Tuple[str, ...] = ()
    # None: use the router setting
    enable_constraint_checking: Optional[bool] = None
    enable_cascade_handling: Optional[bool] = None
    auto_detect_relations: bool = True
    # operation => names of the relations that may be written nested, all when absent
    nested_models: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)
    # declared relations: {name: {"kind": "single"|"bulk", "target": model name}}
    relations: Optional[Mapping[str, Any]] = None
    exclude_route: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        # normalize the collections, the config is immutable once created
        object.__setattr__(self, "middleware", _middleware_map(self.middleware))
        object.__setattr__(self, "validation", _operation_map(self.validation))
        object.__setattr__(self, "before_actions", _operation_map(self.before_actions))
        object.__setattr__(self, "after_actions", _operation_map(self.after_actions))
        object.__setattr__(self, "nested_models", MappingProxyType({k: tuple(v) for k, v in _operation_map(self.nested_models).items()}))
        object.__setattr__(self, "exclude_relations", tuple(self.exclude_relations))
        object.__setattr__(self, "exclude_fields", tuple(self.exclude_fields))
        object.__setattr__(self, "exclude_route", tuple(operation_name(op) for op in self.exclude_route))
        if self.relations is not None:
            object.__setattr__(self, "relations", MappingProxyType(dict(self.relations)))

        custom_actions = {}
        for verb, handler in (self.custom_actions or {}).items():
            if not callable(handler):
                raise ValueError(f"Custom action for '{verb}' is not callable")
            custom_actions[verb.lower()] = handler
        object.__setattr__(self, "custom_actions", MappingProxyType(custom_actions))

    @classmethod
    def from_options(cls, options=None, **kwargs: Any) -> "RouteConfig":
        """
        :param options: RouteConfig or mapping with RouteConfig field names
        :param kwargs: additional options
        :return: RouteConfig
        """
        if isinstance(options, RouteConfig):
            if not kwargs:
                return options
            options = {f.name: getattr(options, f.name) for f in fields(cls)}
        options = dict(options or {}, **kwargs)
        valid_names = {f.name for f in fields(cls)}
        invalid_names = set(options) - valid_names
        if invalid_names:
            raise ValueError(f"Invalid route options: {', '.join(sorted(invalid_names))}")
        return cls(**options)

    def chain(self, operation: Optional[str], global_middleware=()) -> Tuple[Callable, ...]:
        """
        :return: the middleware of operation, in execution order:
            global, route default, operation, authentication
        """
        result = list(global_middleware)
        result += self.middleware.get("default", ())
        result += self.middleware.get(operation, ())
        if self.auth_middleware is not None:
            result.append(self.auth_middleware)
        return tuple(result)

    def is_excluded(self, operation: str) -> bool:
        return operation in self.exclude_route


async def call_hook(hook: Optional[Callable], *args: Any) -> Any:
    """
    Call a (sync or async) hook and return its result
    """
    if hook is None:
        return None
    result = hook(*args)
    if inspect.isawaitable(result):
        result = await result
    return result

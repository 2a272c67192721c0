"""
Request parsing for the generated routes

The list route accepts these query string arguments:
- filter: JSON object, e.g. filter={"name": {"contains": "jo"}}
- limit / take: max number of rows (default 100)
- offset / skip: number of rows to skip (default 0)
- order: JSON array of [field, direction] pairs, e.g. order=[["name", "desc"]]
- orderBy: JSON object or array, e.g. orderBy={"name": "asc"}
- include / select: JSON objects (select may also be a list of field names)
"""
import json
from dataclasses import dataclass
from flask import Request
from werkzeug.exceptions import BadRequest
from .errors import ValidationError
from typing import Any, Dict, List, Mapping, Optional, Union

DEFAULT_LIMIT = 100
DEFAULT_OFFSET = 0


# pylint: disable=too-many-ancestors
class CRUDRequest(Request):
    """
    Request class installed on the app by CRUD.init_app
    """

    # uploaded file descriptors, set by an upload middleware
    uploaded_files = None

    def get_json_payload(self) -> Dict[str, Any]:
        """
        :return: request body, must be a JSON object
        """
        try:
            result = self.get_json(force=True, silent=False)
        except BadRequest:
            raise ValidationError("Invalid JSON payload")
        if not isinstance(result, dict):
            raise ValidationError(f"Invalid JSON payload : {result}")
        return result


@dataclass
class ListQuery:
    """
    Parsed list query
    """

    filter: Dict[str, Any]
    skip: int = DEFAULT_OFFSET
    take: int = DEFAULT_LIMIT
    order_by: Optional[Union[Dict[str, str], List[Dict[str, str]]]] = None
    include: Optional[Dict[str, Any]] = None
    select: Optional[Dict[str, bool]] = None


def _json_arg(args: Mapping[str, Any], name: str, default=None):
    """
    Decode a JSON query string argument
    """
    value = args.get(name)
    if value is None or value == "":
        return default
    if not isinstance(value, str):
        # hooks may supply decoded values
        return value
    try:
        return json.loads(value)
    except ValueError:
        raise ValidationError(f"Invalid JSON in '{name}' query argument")


def _int_arg(args: Mapping[str, Any], names, default: int) -> int:
    for name in names:
        value = args.get(name)
        if value is None or value == "":
            continue
        try:
            result = int(value)
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid integer in '{name}' query argument")
        if result < 0:
            raise ValidationError(f"'{name}' must not be negative")
        return result
    return default


def parse_order(order) -> Optional[List[Dict[str, str]]]:
    """
    Convert an `order` argument ([["name", "desc"], ["id", "asc"]]) to orderBy objects
    """
    if not order:
        return None
    if isinstance(order, (list, tuple)) and order and isinstance(order[0], str):
        # a single [field, direction] pair
        order = [order]
    if not isinstance(order, (list, tuple)):
        raise ValidationError("'order' must be an array of [field, direction] pairs")
    result = []
    for item in order:
        if not isinstance(item, (list, tuple)) or not item:
            raise ValidationError(f"Invalid order item {item}")
        field = item[0]
        direction = str(item[1]).lower() if len(item) > 1 else "asc"
        result.append({field: direction})
    return result


def parse_list_query(args: Mapping[str, Any], default_limit: int = DEFAULT_LIMIT) -> ListQuery:
    """
    :param args: query string arguments (request.args or a dict returned by a before hook)
    :param default_limit: take when no limit/take argument is given
    :return: ListQuery
    """
    where = _json_arg(args, "filter", {})
    if not isinstance(where, dict):
        raise ValidationError("'filter' must be a JSON object")

    take = _int_arg(args, ("take", "limit"), default_limit)
    skip = _int_arg(args, ("skip", "offset"), DEFAULT_OFFSET)

    order_by = _json_arg(args, "orderBy")
    if order_by is None:
        order_by = parse_order(_json_arg(args, "order"))
    elif not isinstance(order_by, (dict, list)):
        raise ValidationError("'orderBy' must be a JSON object or array")

    select = _json_arg(args, "select")
    if isinstance(select, list):
        select = {field: True for field in select}
    elif select is not None and not isinstance(select, dict):
        raise ValidationError("'select' must be a JSON object or array")

    include = _json_arg(args, "include")
    if include is not None and not isinstance(include, dict):
        raise ValidationError("'include' must be a JSON object")
    if select:
        # selection and inclusion are mutually exclusive
        include = None

    return ListQuery(filter=where, skip=skip, take=take, order_by=order_by, include=include, select=select)


def parse_include(args: Mapping[str, Any]) -> Dict[str, Any]:
    """
    :return: decoded `include` argument of the get-by-id route
    """
    include = _json_arg(args, "include", {})
    if not isinstance(include, dict):
        raise ValidationError("'include' must be a JSON object")
    return include

"""
Where / orderBy / select query objects

where objects have the form
    {"name": "J"}                                   equality
    {"age": {"gte": 18, "lt": 65}}                  operators
    {"OR": [{"name": "J"}, {"email": {"endsWith": "@x.com"}}]}
    {"NOT": {"role": "admin"}}

filter_where, filter_select and filter_order remove the fields that aren't part of the
known-field set, build_criteria and build_order_by convert the objects to sqla expressions.
"""
import re
from sqlalchemy import and_, or_, not_
from .errors import ValidationError
from typing import Any, Dict, Iterable, List, Optional, Union

LOGICAL_OPERATORS = ("AND", "OR", "NOT")
INT_RE = re.compile(r"^-?\d+$")
DECIMAL_RE = re.compile(r"^-?\d+\.\d+$")


def coerce_id(value: Any) -> Any:
    """
    Convert a path id to a number when it's numeric, otherwise return it as is

    "42" => 42, "4.2" => 4.2, "3f2a-..." => "3f2a-..."
    """
    if not isinstance(value, str):
        return value
    if INT_RE.match(value):
        return int(value)
    if DECIMAL_RE.match(value):
        return float(value)
    return value


def filter_where(where: Any, valid_fields: Iterable[str]) -> Any:
    """
    Remove the fields that aren't in valid_fields from a where object,
    the logical operators are filtered recursively

    :param where: where object
    :param valid_fields: known fields, no filtering happens when empty (the model structure is unknown)
    """
    valid_fields = set(valid_fields)
    if not valid_fields or not isinstance(where, dict):
        return where

    result = {}
    for key, value in where.items():
        if key in LOGICAL_OPERATORS:
            if isinstance(value, list):
                filtered = [filter_where(item, valid_fields) for item in value]
                filtered = [item for item in filtered if item]
                if filtered:
                    result[key] = filtered
            elif isinstance(value, dict):
                filtered = filter_where(value, valid_fields)
                if filtered:
                    result[key] = filtered
        elif key in valid_fields:
            result[key] = value
    return result


def filter_select(select: Optional[Dict[str, Any]], valid_fields: Iterable[str]) -> Optional[Dict[str, Any]]:
    """
    :return: select object with known fields only, None if nothing remains
    """
    if not select:
        return None
    valid_fields = set(valid_fields)
    if not valid_fields:
        return select
    result = {key: value for key, value in select.items() if key in valid_fields and value}
    return result or None


def filter_order(order_by: Union[Dict[str, str], List[Dict[str, str]], None], valid_fields: Iterable[str]):
    """
    :return: order_by object with known fields only, None if nothing remains
    """
    if not order_by:
        return None
    valid_fields = set(valid_fields)
    if not valid_fields:
        return order_by
    if isinstance(order_by, list):
        result = [item for item in order_by if isinstance(item, dict) and item and next(iter(item)) in valid_fields]
    else:
        result = {key: value for key, value in order_by.items() if key in valid_fields}
    return result or None


def _column(model_class, field: str):
    column = getattr(model_class, field, None)
    if column is None or not hasattr(column, "in_"):
        raise ValidationError(f"Invalid filter field '{field}'")
    return column


def _field_criteria(column, value) -> list:
    if not isinstance(value, dict):
        if value is None:
            return [column.is_(None)]
        return [column == value]

    result = []
    for operator, operand in value.items():
        if operator == "equals":
            result.append(column.is_(None) if operand is None else column == operand)
        elif operator == "not":
            if isinstance(operand, dict):
                result.append(not_(and_(*_field_criteria(column, operand))))
            else:
                result.append(column.is_not(None) if operand is None else column != operand)
        elif operator == "in":
            result.append(column.in_(list(operand)))
        elif operator == "notIn":
            result.append(column.not_in(list(operand)))
        elif operator == "lt":
            result.append(column < operand)
        elif operator == "lte":
            result.append(column <= operand)
        elif operator == "gt":
            result.append(column > operand)
        elif operator == "gte":
            result.append(column >= operand)
        elif operator == "contains":
            result.append(column.contains(operand, autoescape=True))
        elif operator == "startsWith":
            result.append(column.startswith(operand, autoescape=True))
        elif operator == "endsWith":
            result.append(column.endswith(operand, autoescape=True))
        elif operator == "mode":
            # case sensitivity isn't configurable here
            continue
        else:
            raise ValidationError(f"Invalid filter operator '{operator}'")
    return result


def build_criteria(model_class, where: Optional[Dict[str, Any]]) -> list:
    """
    Convert a where object to a list of sqla expressions (to be and-ed)

    :param model_class: sqla declarative class
    :param where: where object
    :return: list of sqla expressions
    """
    if not where:
        return []
    if not isinstance(where, dict):
        raise ValidationError(f"Invalid filter {where}")

    criteria = []
    for key, value in where.items():
        if key == "AND":
            items = value if isinstance(value, list) else [value]
            criteria.extend(c for item in items for c in build_criteria(model_class, item))
        elif key == "OR":
            items = value if isinstance(value, list) else [value]
            criteria.append(or_(*[and_(*build_criteria(model_class, item)) for item in items]))
        elif key == "NOT":
            items = value if isinstance(value, list) else [value]
            criteria.extend(not_(and_(*build_criteria(model_class, item))) for item in items)
        else:
            criteria.extend(_field_criteria(_column(model_class, key), value))
    return criteria


def build_order_by(model_class, order_by) -> list:
    """
    :param order_by: {"name": "asc"} or [{"name": "asc"}, {"id": "desc"}]
    :return: list of sqla order_by clauses
    """
    if not order_by:
        return []
    items = order_by if isinstance(order_by, list) else [{key: value} for key, value in order_by.items()]
    result = []
    for item in items:
        for field, direction in item.items():
            column = getattr(model_class, field, None)
            if column is None or not hasattr(column, "desc"):
                raise ValidationError(f"Invalid sort field '{field}'")
            direction = str(direction).lower()
            if direction not in ("asc", "desc"):
                raise ValidationError(f"Invalid sort direction '{direction}'")
            result.append(column.desc() if direction == "desc" else column.asc())
    return result

"""
Model handles: the persistence operations used by the generated routes

ModelHandle is the interface, SQLAModelHandle implements it for SQLAlchemy
declarative classes (using the Flask-SQLAlchemy session by default).
Rows are exchanged as dicts, nested writes use the {"relation": {"create": ...}} syntax.
"""
import abc
from sqlalchemy import inspect as sqla_inspect
from sqlalchemy.orm import selectinload
import crudrouter
from . import tx
from .attr_parse import parse_attr
from .errors import NotFoundError, ValidationError
from .query import build_criteria, build_order_by
from .structure import ModelStructure, describe_model
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Optional

# relationships that can be loaded with query options
LOADABLE_LAZY = ("select", "joined", "subquery", "selectin")


class ModelHandle(abc.ABC):
    """
    Reference to a persistence collection

    All operations are coroutines, implementations may call synchronous code
    """

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """model name, used as the structure cache key"""

    @property
    def table_name(self) -> Optional[str]:
        return None

    @abc.abstractmethod
    async def list(self, where=None, skip: int = 0, take: Optional[int] = None, order_by=None, include=None, select=None) -> List[dict]:
        """rows matching where"""

    @abc.abstractmethod
    async def count(self, where=None) -> int:
        """number of rows matching where"""

    @abc.abstractmethod
    async def get_by_id(self, id, include=None, select=None) -> Optional[dict]:
        """row with primary key id or None"""

    @abc.abstractmethod
    async def create(self, data: dict, include=None) -> dict:
        """create a row, the relations in include are returned as well"""

    @abc.abstractmethod
    async def update(self, id, data: dict, include=None) -> dict:
        """update a row, raises NotFoundError when it doesn't exist"""

    @abc.abstractmethod
    async def delete(self, id) -> dict:
        """delete a row and return it, raises NotFoundError when it doesn't exist"""

    async def find_first(self, where=None) -> Optional[dict]:
        rows = await self.list(where=where, take=1)
        return rows[0] if rows else None

    async def find_many(self, where=None) -> List[dict]:
        return await self.list(where=where)

    async def update_many(self, where, data: dict) -> int:
        raise NotImplementedError(f"{self.name} doesn't support bulk updates")

    async def run_transaction(self, callback: Callable[[], Awaitable[Any]]) -> Any:
        """
        Run callback as a single unit of work, the default has no transactional guarantees
        """
        return await callback()

    def describe(self) -> Optional[ModelStructure]:
        """
        :return: the structure of the model, None if unknown
        """
        return None


def to_dict(instance, include: Optional[Dict[str, Any]] = None, select: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Serialize a sqla instance

    :param instance: sqla model instance
    :param include: relations to include, {"posts": True, "profile": {"include": {...}, "select": {...}}}
    :param select: columns to return, all columns when empty
    :return: dict
    """
    mapper = sqla_inspect(type(instance))
    result = {}
    for prop in mapper.column_attrs:
        if select and not select.get(prop.key):
            continue
        result[prop.key] = getattr(instance, prop.key)

    for rel_name, spec in (include or {}).items():
        if not spec:
            continue
        if rel_name not in mapper.relationships:
            raise ValidationError(f"Invalid relation '{rel_name}' for {mapper.class_.__name__}")
        relationship = mapper.relationships[rel_name]
        nested_include = spec.get("include") if isinstance(spec, dict) else None
        nested_select = spec.get("select") if isinstance(spec, dict) else None
        value = getattr(instance, rel_name)
        if value is None:
            result[rel_name] = None
        elif relationship.uselist:
            result[rel_name] = [to_dict(item, nested_include, nested_select) for item in value]
        else:
            result[rel_name] = to_dict(value, nested_include, nested_select)

    return result


class SQLAModelHandle(ModelHandle):
    """
    ModelHandle for a SQLAlchemy declarative class

    :param model_class: declarative class, e.g. DB.Model subclass
    :param session: sqla (scoped) session, crudrouter.DB.session by default
    """

    def __init__(self, model_class, session=None) -> None:
        self.model_class = model_class
        self._session = session

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.name}>"

    @property
    def session(self):
        if self._session is not None:
            return self._session
        return crudrouter.DB.session

    @property
    def name(self) -> str:
        return self.model_class.__name__

    @property
    def table_name(self) -> Optional[str]:
        return getattr(self.model_class, "__tablename__", None)

    @property
    def mapper(self):
        return sqla_inspect(self.model_class)

    def describe(self) -> ModelStructure:
        return describe_model(self.model_class)

    def _target(self, relationship) -> "SQLAModelHandle":
        return SQLAModelHandle(relationship.mapper.class_, self._session)

    #
    # Reading
    #
    def _query(self, where=None, include=None):
        query = self.session.query(self.model_class)
        criteria = build_criteria(self.model_class, where)
        if criteria:
            query = query.filter(*criteria)
        for rel_name in include or {}:
            relationship = self.mapper.relationships.get(rel_name)
            if relationship is not None and relationship.lazy in LOADABLE_LAZY:
                query = query.options(selectinload(getattr(self.model_class, rel_name)))
        return query

    def _pk_value(self, id):
        """
        :return: id parsed to the primary key column type
        """
        column = self.mapper.primary_key[0]
        try:
            return parse_attr(column, id)
        except ValidationError:
            raise NotFoundError(f"Invalid {self.name} id {id}")

    def _get(self, id):
        return self.session.get(self.model_class, self._pk_value(id))

    def _get_or_404(self, id):
        instance = self._get(id)
        if instance is None:
            raise NotFoundError(f"{self.name} {id} not found")
        return instance

    async def list(self, where=None, skip: int = 0, take: Optional[int] = None, order_by=None, include=None, select=None) -> List[dict]:
        query = self._query(where, include)
        order_clauses = build_order_by(self.model_class, order_by)
        if order_clauses:
            query = query.order_by(*order_clauses)
        if skip:
            query = query.offset(skip)
        if take is not None:
            query = query.limit(take)
        return [to_dict(instance, include, select) for instance in query.all()]

    async def count(self, where=None) -> int:
        return self._query(where).order_by(None).count()

    async def get_by_id(self, id, include=None, select=None) -> Optional[dict]:
        instance = self._get(id)
        if instance is None:
            return None
        return to_dict(instance, include, select)

    async def find_first(self, where=None) -> Optional[dict]:
        instance = self._query(where).first()
        return None if instance is None else to_dict(instance)

    async def find_many(self, where=None) -> List[dict]:
        return [to_dict(instance) for instance in self._query(where).all()]

    #
    # Writing
    #
    def _commit(self) -> None:
        session = self.session
        if tx.in_transaction():
            session.flush()
            tx.note_write()
            return
        try:
            session.commit()
        except Exception:
            session.rollback()
            raise

    def _relation_items(self, relationship, value) -> Iterator[dict]:
        """
        :param value: nested write, {"create": item} or {"create": [items]} (or the item(s) as is)
        """
        if isinstance(value, dict) and "create" in value:
            value = value["create"]
        items = value if isinstance(value, list) else [value]
        if not relationship.uselist and len(items) != 1:
            raise ValidationError(f"Relation '{relationship.key}' can only hold a single item")
        for item in items:
            if not isinstance(item, dict):
                raise ValidationError(f"Invalid nested data for '{relationship.key}': {item}")
            yield item

    def _apply(self, instance, data: Dict[str, Any]) -> None:
        """
        Set the column values and create the nested relations of instance
        """
        mapper = self.mapper
        for key, value in data.items():
            if key in mapper.relationships:
                relationship = mapper.relationships[key]
                if value is None and not relationship.uselist:
                    setattr(instance, key, None)
                    continue
                target = self._target(relationship)
                children = [target._build(item) for item in self._relation_items(relationship, value)]
                if relationship.uselist:
                    collection = getattr(instance, key)
                    for child in children:
                        collection.append(child)
                else:
                    setattr(instance, key, children[0])
            elif key in mapper.column_attrs:
                column = mapper.column_attrs[key].columns[0]
                setattr(instance, key, parse_attr(column, value))
            else:
                raise ValidationError(f"Invalid field '{key}' for {self.name}")

    def _build(self, data: Dict[str, Any]):
        instance = self.model_class()
        self._apply(instance, data)
        return instance

    async def create(self, data: dict, include=None) -> dict:
        instance = self._build(data)
        self.session.add(instance)
        self._commit()
        return to_dict(instance, include)

    async def update(self, id, data: dict, include=None) -> dict:
        instance = self._get_or_404(id)
        self._apply(instance, data)
        self._commit()
        return to_dict(instance, include)

    async def delete(self, id) -> dict:
        instance = self._get_or_404(id)
        result = to_dict(instance)
        self.session.delete(instance)
        self._commit()
        return result

    async def update_many(self, where, data: dict) -> int:
        mapper = self.mapper
        values = {}
        for key, value in data.items():
            if key not in mapper.column_attrs:
                raise ValidationError(f"Invalid field '{key}' for {self.name}")
            values[key] = parse_attr(mapper.column_attrs[key].columns[0], value)
        result = self._query(where).update(values, synchronize_session="fetch")
        self._commit()
        return result

    async def run_transaction(self, callback: Callable[[], Awaitable[Any]]) -> Any:
        """
        Group the writes of callback: the outermost transaction commits once,
        or rolls back everything when callback fails
        """
        session = self.session
        token = tx.begin()
        outermost = tx.is_outermost()
        try:
            result = await callback()
            if outermost and tx.has_writes():
                session.commit()
            return result
        except Exception:
            if outermost:
                session.rollback()
            raise
        finally:
            tx.end(token)


class ModelRegistry:
    """
    Model handles by name, used to resolve the models referenced by foreign keys.
    Lookups are case-insensitive and also match the table name.
    """

    def __init__(self, models=None) -> None:
        self._handles = {}
        if isinstance(models, dict):
            for name, model in models.items():
                self.add(model, name)
        else:
            for model in models or ():
                self.add(model)

    def __len__(self) -> int:
        return len(self._handles)

    def __iter__(self):
        return iter(self._handles.values())

    def add(self, model, name: Optional[str] = None) -> ModelHandle:
        """
        :param model: ModelHandle or sqla declarative class
        :param name: registry name, the model name by default
        :return: ModelHandle
        """
        handle = as_handle(model)
        self._handles[(name or handle.name).lower()] = handle
        return handle

    def get(self, name: str) -> Optional[ModelHandle]:
        if not name:
            return None
        key = name.lower()
        handle = self._handles.get(key)
        if handle is not None:
            return handle
        for handle in self._handles.values():
            if handle.name.lower() == key or (handle.table_name or "").lower() == key:
                return handle
        return None


def as_handle(model) -> ModelHandle:
    """
    :param model: ModelHandle or sqla declarative class
    :return: ModelHandle
    """
    if isinstance(model, ModelHandle):
        return model
    if isinstance(model, type) and hasattr(model, "__mapper__"):
        return SQLAModelHandle(model)
    raise TypeError(f"{model} is not a ModelHandle or a mapped class")

"""
Model structure descriptors

A ModelStructure describes the fields, keys and relations of a model.
It is generated from the SQLAlchemy mapper (describe_model) or provided by
a ModelHandle.describe() implementation, and it's looked up through the
StructureCache owned by the router.
"""
from dataclasses import dataclass, field
from sqlalchemy import inspect as sqla_inspect, UniqueConstraint
from sqlalchemy.orm.interfaces import MANYTOONE
import crudrouter
from typing import Dict, Optional, Tuple

SINGLE = "single"
BULK = "bulk"
RELATION_KINDS = (SINGLE, BULK)
DEFAULT_ON_DELETE = "NO ACTION"
DEFAULT_ON_UPDATE = "NO ACTION"


@dataclass(frozen=True)
class FieldDescriptor:
    name: str
    primary_key: bool = False
    nullable: bool = True
    has_default: bool = False
    unique: bool = False
    python_type: Optional[type] = None

    @property
    def required(self) -> bool:
        """a value must be supplied on create"""
        return not (self.primary_key or self.nullable or self.has_default)


@dataclass(frozen=True)
class ForeignKeyDescriptor:
    field: str
    referenced_model: str
    on_delete: str = DEFAULT_ON_DELETE
    on_update: str = DEFAULT_ON_UPDATE


@dataclass(frozen=True)
class RelationDescriptor:
    name: str
    kind: str = SINGLE
    target: Optional[str] = None
    local_fields: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.kind not in RELATION_KINDS:
            raise ValueError(f"Invalid relation kind '{self.kind}' for {self.name}")


@dataclass(frozen=True)
class ModelStructure:
    """
    Schema descriptor of a model
    """

    name: str
    table_name: Optional[str] = None
    fields: Tuple[FieldDescriptor, ...] = ()
    foreign_keys: Tuple[ForeignKeyDescriptor, ...] = ()
    relations: Tuple[RelationDescriptor, ...] = ()
    # False when the structure couldn't be determined: no constraints will be enforced
    introspected: bool = True

    @classmethod
    def empty(cls, name: str) -> "ModelStructure":
        return cls(name=name, introspected=False)

    @property
    def field_names(self) -> Tuple[str, ...]:
        return tuple(f.name for f in self.fields)

    @property
    def primary_key(self) -> Optional[str]:
        for f in self.fields:
            if f.primary_key:
                return f.name
        return "id" if self.fields else None

    @property
    def required_fields(self) -> Tuple[str, ...]:
        return tuple(f.name for f in self.fields if f.required)

    @property
    def optional_fields(self) -> Tuple[str, ...]:
        return tuple(f.name for f in self.fields if not f.primary_key and not f.required)

    @property
    def unique_fields(self) -> Tuple[str, ...]:
        return tuple(f.name for f in self.fields if f.unique and not f.primary_key)

    @property
    def cascade_delete(self) -> Tuple[str, ...]:
        return tuple(fk.field for fk in self.foreign_keys if fk.on_delete.upper() == "CASCADE")

    @property
    def cascade_update(self) -> Tuple[str, ...]:
        return tuple(fk.field for fk in self.foreign_keys if fk.on_update.upper() == "CASCADE")

    @property
    def has_relations(self) -> bool:
        return bool(self.foreign_keys or self.relations)

    @property
    def relation_names(self) -> Tuple[str, ...]:
        return tuple(rel.name for rel in self.relations)

    def get_relation(self, name: str) -> Optional[RelationDescriptor]:
        for rel in self.relations:
            if rel.name == name:
                return rel
        return None

    def with_relations(self, relations: Dict[str, dict]) -> "ModelStructure":
        """
        :param relations: declared relation schema: {name: {"kind": "single"|"bulk", "target": model name}}
        :return: copy of this structure where the declared relations replace the introspected ones
        """
        declared = tuple(
            RelationDescriptor(name=name, kind=spec.get("kind", SINGLE), target=spec.get("target"))
            if isinstance(spec, dict)
            else RelationDescriptor(name=name, kind=spec)
            for name, spec in relations.items()
        )
        return ModelStructure(
            name=self.name,
            table_name=self.table_name,
            fields=self.fields,
            foreign_keys=self.foreign_keys,
            relations=declared,
            introspected=True,
        )


def describe_model(model_class) -> ModelStructure:
    """
    Generate the structure of a SQLAlchemy mapped class from its mapper

    - required: not nullable, not the primary key, no (server) default
    - unique: unique column or single-column unique constraint
    - foreign keys: ondelete / onupdate as declared on the ForeignKey,
      NO ACTION when not declared

    :param model_class: SQLAlchemy declarative class
    :return: ModelStructure
    """
    mapper = sqla_inspect(model_class)
    table = mapper.local_table

    unique_columns = set()
    for constraint in getattr(table, "constraints", ()):
        if isinstance(constraint, UniqueConstraint) and len(constraint.columns) == 1:
            unique_columns.update(col.name for col in constraint.columns)

    fields = []
    foreign_keys = []
    for prop in mapper.column_attrs:
        column = prop.columns[0]
        try:
            python_type = column.type.python_type
        except NotImplementedError:
            python_type = None
        fields.append(
            FieldDescriptor(
                name=prop.key,
                primary_key=bool(column.primary_key),
                nullable=bool(column.nullable),
                has_default=column.default is not None or column.server_default is not None,
                unique=bool(column.unique) or column.name in unique_columns,
                python_type=python_type,
            )
        )
        for fk in getattr(column, "foreign_keys", ()):
            foreign_keys.append(
                ForeignKeyDescriptor(
                    field=prop.key,
                    referenced_model=fk.column.table.name,
                    on_delete=(fk.ondelete or DEFAULT_ON_DELETE).upper(),
                    on_update=(fk.onupdate or DEFAULT_ON_UPDATE).upper(),
                )
            )

    relations = []
    for rel in mapper.relationships:
        local_fields = ()
        if rel.direction == MANYTOONE:
            local_fields = tuple(mapper.get_property_by_column(col).key for col in rel.local_columns)
        relations.append(
            RelationDescriptor(
                name=rel.key,
                kind=BULK if rel.uselist else SINGLE,
                target=rel.mapper.class_.__name__,
                local_fields=local_fields,
            )
        )

    return ModelStructure(
        name=model_class.__name__,
        table_name=getattr(table, "name", None),
        fields=tuple(fields),
        foreign_keys=tuple(foreign_keys),
        relations=tuple(relations),
    )


@dataclass
class StructureCache:
    """
    Model structures keyed by model name

    Failing introspections are logged and not cached: an empty structure is returned
    so the routes keep working without constraint checks
    """

    structures: Dict[str, ModelStructure] = field(default_factory=dict)

    def get(self, model) -> ModelStructure:
        """
        :param model: ModelHandle
        :return: ModelStructure
        """
        name = model.name
        result = self.structures.get(name)
        if result is not None:
            return result
        try:
            result = model.describe()
        except Exception as exc:
            crudrouter.log.warning(f"Failed to analyze the structure of {name}: {exc}")
            return ModelStructure.empty(name)
        if result is None:
            return ModelStructure.empty(name)
        self.structures[name] = result
        return result

    def put(self, structure: ModelStructure) -> None:
        self.structures[structure.name] = structure

    def clear(self) -> None:
        self.structures.clear()

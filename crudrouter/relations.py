"""
Nested relation detection for create and update payloads

A payload like
    {"name": "J", "email": "j@x.com", "profile": {"bio": "dev"}, "posts": [{"title": "a"}]}
is split into
    main_data        : {"name": "J", "email": "j@x.com"}
    single_relations : {"profile": {"bio": "dev"}}
    bulk_relations   : {"posts": [{"title": "a"}]}

When the declared relations of the model are known, only those keys are treated as
relations. Otherwise every object value is a single relation and every array value
is a bulk relation.
"""
from dataclasses import dataclass, field
from .errors import ValidationError
from .structure import BULK, RelationDescriptor
from typing import Any, Dict, Iterable, Optional, Tuple

# identity, timestamp and upload keys are never relations
RELATION_EXCLUDED_KEYS = frozenset(
    ["id", "createdAt", "updatedAt", "uploadedFiles", "created_at", "updated_at", "uploaded_files"]
)
UPLOADED_FILES_KEYS = ("uploadedFiles", "uploaded_files")


@dataclass
class NestedPayload:
    main_data: Dict[str, Any] = field(default_factory=dict)
    single_relations: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    bulk_relations: Dict[str, list] = field(default_factory=dict)

    @property
    def has_relations(self) -> bool:
        return bool(self.single_relations or self.bulk_relations)

    @property
    def relation_names(self) -> Tuple[str, ...]:
        return tuple(self.single_relations) + tuple(self.bulk_relations)


def detect_relations(
    data: Dict[str, Any], declared: Optional[Iterable[RelationDescriptor]] = None, exclude: Iterable[str] = RELATION_EXCLUDED_KEYS
) -> Tuple[Dict[str, Any], Dict[str, list]]:
    """
    :param data: request payload
    :param declared: the declared relations of the model, None if unknown
    :param exclude: keys that are never relations
    :return: single_relations, bulk_relations
    """
    single_relations = {}
    bulk_relations = {}
    exclude = set(exclude)

    if declared is None:
        for key, value in data.items():
            if value is None or key in exclude or not isinstance(value, (dict, list)):
                continue
            if isinstance(value, list):
                bulk_relations[key] = value
            else:
                single_relations[key] = value
        return single_relations, bulk_relations

    for rel in declared:
        value = data.get(rel.name)
        if value is None or rel.name in exclude or not isinstance(value, (dict, list)):
            continue
        if rel.kind == BULK:
            bulk_relations[rel.name] = value if isinstance(value, list) else [value]
        elif isinstance(value, list):
            raise ValidationError(f"Relation '{rel.name}' can only hold a single item")
        else:
            single_relations[rel.name] = value

    return single_relations, bulk_relations


def split_payload(data: Dict[str, Any], declared: Optional[Iterable[RelationDescriptor]] = None) -> NestedPayload:
    """
    Partition the payload keys in main data and relations,
    every key ends up in exactly one of the three
    """
    single_relations, bulk_relations = detect_relations(data, declared)
    main_data = {key: value for key, value in data.items() if key not in single_relations and key not in bulk_relations}
    return NestedPayload(main_data, single_relations, bulk_relations)


def compose_nested_write(payload: NestedPayload) -> Tuple[Dict[str, Any], Dict[str, bool]]:
    """
    Create the nested-create write data for a split payload

    :return: (data, include), e.g.
        ({"name": "J", "profile": {"create": {"bio": "dev"}}}, {"profile": True})
    """
    data = dict(payload.main_data)
    include = {}
    for relation, items in list(payload.single_relations.items()) + list(payload.bulk_relations.items()):
        data[relation] = {"create": items}
        include[relation] = True
    return data, include


def strip_uploaded_files(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    :return: copy of data without the upload keys, these are never persisted
    """
    return {key: value for key, value in data.items() if key not in UPLOADED_FILES_KEYS}

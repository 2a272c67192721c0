"""
Constraint and cascade advisor

Best-effort checks executed by the generated routes before writing:
- required fields (create only)
- unique fields, checked with a find_first lookup
- foreign keys, checked with a get_by_id lookup on the referenced model

and cascade handling for the foreign keys declared with ON DELETE / ON UPDATE CASCADE.
The checks are advisory: they don't run in the write transaction, so the database
constraints remain authoritative.
"""
from dataclasses import dataclass, field
import crudrouter
from .structure import ModelStructure, StructureCache
from typing import Any, Dict, List, Optional

CREATE = "create"
UPDATE = "update"
DELETE = "delete"


@dataclass
class ConstraintCheck:
    is_valid: bool = True
    violations: List[str] = field(default_factory=list)
    structure: Optional[ModelStructure] = None


@dataclass
class CascadeResult:
    success: bool = True
    results: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


def _is_empty(value: Any) -> bool:
    return value is None or value == ""


def _same_id(left: Any, right: Any) -> bool:
    return left is not None and right is not None and str(left) == str(right)


class ConstraintAdvisor:
    """
    :param structures: StructureCache used to look up the model structures
    :param registry: ModelRegistry used to resolve the referenced models
    """

    def __init__(self, structures: Optional[StructureCache] = None, registry=None) -> None:
        self.structures = structures if structures is not None else StructureCache()
        self.registry = registry

    def get_structure(self, model, structure: Optional[ModelStructure] = None) -> ModelStructure:
        if structure is not None:
            return structure
        return self.structures.get(model)

    def _nested_fields(self, data: Dict[str, Any], structure: ModelStructure) -> set:
        """
        :return: foreign key fields that are set through a nested relation in data
        """
        result = set()
        for rel in structure.relations:
            if isinstance(data.get(rel.name), (dict, list)):
                result.update(rel.local_fields)
        return result

    async def check_constraints(
        self, operation: str, data: Dict[str, Any], model, record_id: Any = None, structure: Optional[ModelStructure] = None
    ) -> ConstraintCheck:
        """
        :param operation: "create" or "update"
        :param data: request payload
        :param model: ModelHandle
        :param record_id: id of the updated record, its own value doesn't violate uniqueness
        :param structure: structure to use instead of the cached one
        :return: ConstraintCheck
        """
        structure = self.get_structure(model, structure)
        if not structure.introspected:
            return ConstraintCheck(structure=structure)

        violations = []
        if operation == CREATE:
            nested_fields = self._nested_fields(data, structure)
            for field_name in structure.required_fields:
                if field_name in nested_fields:
                    continue
                if _is_empty(data.get(field_name)):
                    violations.append(f"Required field '{field_name}' is missing or empty")

        primary_key = structure.primary_key or "id"
        for field_name in structure.unique_fields:
            # unique columns accept multiple NULLs
            if data.get(field_name) is None:
                continue
            try:
                existing = await model.find_first({field_name: data[field_name]})
            except Exception as exc:
                crudrouter.log.error(f"Unique constraint lookup failed for {structure.name}.{field_name}: {exc}")
                continue
            if existing is None:
                continue
            if operation == UPDATE and _same_id(existing.get(primary_key), record_id):
                continue
            violations.append(f"Unique constraint violation on field '{field_name}'")

        for fk in structure.foreign_keys:
            value = data.get(fk.field)
            if value is None:
                continue
            referenced = self.registry.get(fk.referenced_model) if self.registry is not None else None
            if referenced is None:
                crudrouter.log.debug(f"Referenced model {fk.referenced_model} of {structure.name}.{fk.field} isn't registered")
                continue
            try:
                exists = await referenced.get_by_id(value)
            except Exception as exc:
                crudrouter.log.error(f"Foreign key lookup failed for {structure.name}.{fk.field}: {exc}")
                violations.append(f"Error checking foreign key constraint for {fk.field}")
                continue
            if exists is None:
                violations.append(f"Foreign key constraint violation: {fk.field} references non-existent {fk.referenced_model}")

        return ConstraintCheck(is_valid=not violations, violations=violations, structure=structure)

    async def handle_cascade(
        self, operation: str, data: Dict[str, Any], model, record_id: Any, structure: Optional[ModelStructure] = None
    ) -> CascadeResult:
        """
        Propagate a delete or update to the rows referencing record_id,
        failures are recorded in the result but never raised

        :param operation: "delete" or "update"
        :param data: request payload (update)
        :param model: ModelHandle
        :param record_id: id of the deleted / updated record
        :return: CascadeResult
        """
        structure = self.get_structure(model, structure)
        result = CascadeResult()
        if not structure.foreign_keys:
            return result

        primary_key = structure.primary_key or "id"
        if operation == DELETE:
            for field_name in structure.cascade_delete:
                try:
                    related = await model.find_many({field_name: record_id})
                except Exception as exc:
                    result.errors.append(f"Error in cascade delete for {field_name}: {exc}")
                    continue
                for record in related:
                    related_id = record.get(primary_key)
                    if _same_id(related_id, record_id):
                        continue
                    try:
                        await model.delete(related_id)
                        result.results.append(f"Deleted related record {related_id} due to cascade")
                    except Exception as exc:
                        result.errors.append(f"Error in cascade delete of record {related_id} for {field_name}: {exc}")

        elif operation == UPDATE:
            for field_name in structure.cascade_update:
                if field_name not in data:
                    continue
                try:
                    await model.update_many({field_name: record_id}, {field_name: data[field_name]})
                    result.results.append(f"Updated related records for {field_name}")
                except Exception as exc:
                    result.errors.append(f"Error in cascade update for {field_name}: {exc}")

        result.success = not result.errors
        return result

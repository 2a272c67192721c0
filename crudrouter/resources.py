#  This file contains the flask-restful "Resource" used for the generated routes:
#  CRUDRestAPI serves the collection (list, create) and the instances (get, update, delete)
#  of a model handle.
#
#  CRUDRouter.register creates a subclass for every registered route, e.g.
#
#  class User_API(CRUDRestAPI):
#      model = SQLAModelHandle(User)
#      route_config = RouteConfig(...)
#      router = <CRUDRouter>
#
# pylint: disable=redefined-builtin,invalid-name,no-member
#
import asyncio
from flask import g, request
from flask_restful_swagger_2 import Resource as FRSResource
import crudrouter
from .errors import ConstraintViolationError, NotFoundError, ValidationError
from .query import coerce_id, filter_order, filter_select, filter_where
from .relations import compose_nested_write, split_payload, strip_uploaded_files
from .request import parse_include, parse_list_query
from .route_config import CREATE, DELETE, GET_BY_ID, LIST, UPDATE, ValidationResult, call_hook
from .structure import ModelStructure
from typing import Any, Dict, Optional


class CRUDRestAPI(FRSResource):
    """
    Flask webservice wrapper for a model handle

    The http methods are coroutines, they're executed by http_method_decorator.
    Every method returns the flask response created from the ApiResponse of the route.
    """

    model = None
    route_config = None
    router = None

    #
    # helpers
    #
    @property
    def structure(self) -> ModelStructure:
        return self.router.get_structure(self.model, self.route_config)

    @property
    def exclude_fields(self):
        return set(self.router.exclude_fields) | set(self.route_config.exclude_fields)

    def respond(self, verb: str, data: Any = None, status_code: Optional[int] = None):
        api_response = self.router.api_response.success(
            verb, data, status_code=status_code, response_id=g.get("crud_response_id"), started=g.get("crud_started")
        )
        return self.router.render(api_response)

    def hide_fields(self, row: Any) -> Any:
        """
        Remove the excluded fields from a row and from the included related rows
        """
        if isinstance(row, list):
            return [self.hide_fields(item) for item in row]
        if not isinstance(row, dict):
            return row
        exclude = self.exclude_fields
        return {key: self.hide_fields(value) for key, value in row.items() if key not in exclude}

    def known_fields(self, structure: ModelStructure):
        """
        :return: the fields that can be used in filters, an empty list when the structure is unknown
        """
        exclude = self.exclude_fields
        return [name for name in structure.field_names if name not in exclude]

    def relations_to_include(self, requested: Optional[Dict[str, Any]], structure: ModelStructure) -> Optional[Dict[str, Any]]:
        """
        :param requested: include query argument
        :return: include object: the requested relations and, with include_relations, all declared relations
        """
        config = self.route_config
        result = {}
        if config.include_relations:
            for name in structure.relation_names:
                if name not in config.exclude_relations:
                    result[name] = True
        for name, spec in (requested or {}).items():
            if not structure.introspected or name in structure.relation_names:
                result[name] = spec
            else:
                crudrouter.log.warning(f"Invalid include '{name}' for {structure.name}")
        return result or None

    def get_payload(self) -> Dict[str, Any]:
        data = request.get_json_payload()
        uploaded_files = getattr(request, "uploaded_files", None)
        if uploaded_files is not None:
            data = dict(data, uploadedFiles=uploaded_files)
        return data

    async def validate(self, operation: str, data: Dict[str, Any]) -> None:
        validator = self.route_config.validation.get(operation)
        if validator is None:
            return
        result = ValidationResult.coerce(await call_hook(validator, data, request))
        if not result.is_valid:
            raise ValidationError(result.message or "Validation failed")

    async def check_constraints(self, operation: str, data: Dict[str, Any], record_id: Any = None) -> None:
        if not self.router.constraint_checking_enabled(self.route_config):
            return
        check = await self.router.advisor.check_constraints(operation, data, self.model, record_id, structure=self.structure)
        if not check.is_valid:
            raise ConstraintViolationError(check.violations)

    async def cascade(self, operation: str, data: Dict[str, Any], record_id: Any) -> None:
        if not self.router.cascade_handling_enabled(self.route_config):
            return
        result = await self.router.advisor.handle_cascade(operation, data, self.model, record_id, structure=self.structure)
        if not result.success:
            crudrouter.log.warning(f"Cascade operations completed with warnings: {', '.join(result.errors)}")

    async def write(self, operation: str, data: Dict[str, Any], persist):
        """
        Write data with persist(data, include), nested relations are written
        with the nested create syntax in a single transaction

        :param operation: "create" or "update"
        :param persist: coroutine function performing the write
        """
        data = strip_uploaded_files(data)
        if not self.router.relation_detection_enabled(self.route_config):
            return await persist(data, None)

        structure = self.structure
        declared = structure.relations if structure.introspected else None
        payload = split_payload(data, declared)
        if not payload.has_relations:
            return await persist(payload.main_data, None)

        allowed = self.route_config.nested_models.get(operation)
        if allowed is not None:
            not_allowed = [name for name in payload.relation_names if name not in allowed]
            if not_allowed:
                raise ValidationError(f"Nested {operation} not allowed for {', '.join(not_allowed)}")

        write_data, include = compose_nested_write(payload)
        crudrouter.log.debug(f"Nested {operation} of {self.model.name} with {', '.join(include)}")
        return await self.model.run_transaction(lambda: persist(write_data, include))

    #
    # HTTP methods
    #
    async def get(self, id=None, **kwargs):
        """
        summary : Retrieve {model} rows
        ---
        HTTP GET: without id: list the rows, with id: get a row by id
        """
        if id is not None:
            return await self.get_by_id(id)
        return await self.list()

    async def list(self):
        config = self.route_config
        args = request.args.to_dict()
        result = await call_hook(config.before_actions.get(LIST), args, request)
        if result is not None:
            args = result

        query = parse_list_query(args, self.router.default_limit)
        structure = self.structure
        known_fields = self.known_fields(structure)
        where = filter_where(query.filter, known_fields)
        select = filter_select(query.select, known_fields)
        order_by = filter_order(query.order_by, known_fields)
        include = None if query.select else self.relations_to_include(query.include, structure)

        take = min(query.take, self.router.max_limit)
        rows, count = await asyncio.gather(
            self.model.list(where=where, skip=query.skip, take=take, order_by=order_by, include=include, select=select),
            self.model.count(where=where),
        )
        result = {"rows": [self.hide_fields(row) for row in rows], "count": count}
        after_result = await call_hook(config.after_actions.get(LIST), result, request)
        if after_result is not None:
            result = after_result

        if isinstance(result, dict) and "rows" in result:
            data = {"data": result["rows"], "count": result.get("count")}
        else:
            data = {"data": result}
        return self.respond("get", data)

    async def get_by_id(self, id):
        config = self.route_config
        record_id = coerce_id(id)
        include = self.relations_to_include(parse_include(request.args), self.structure)
        row = await self.model.get_by_id(record_id, include=include)
        if row is None:
            raise NotFoundError(f"{self.model.name} {record_id} not found")
        row = self.hide_fields(row)
        result = await call_hook(config.after_actions.get(GET_BY_ID), row, request)
        if result is not None:
            row = result
        return self.respond("get", row)

    async def post(self, id=None, **kwargs):
        """
        summary : Create {model}
        ---
        HTTP POST: create a row, nested relations are created as well
        """
        config = self.route_config
        data = self.get_payload()
        result = await call_hook(config.before_actions.get(CREATE), data, request)
        if result is not None:
            data = result
        if not isinstance(data, dict):
            raise ValidationError("Invalid data provided for creation")

        await self.validate(CREATE, data)
        await self.check_constraints(CREATE, data)
        created = await self.write(CREATE, data, lambda write_data, include: self.model.create(write_data, include=include))
        created = self.hide_fields(created)

        result = await call_hook(config.after_actions.get(CREATE), created, request)
        if result is not None:
            created = result
        return self.respond("post", created, status_code=201)

    async def put(self, id=None, **kwargs):
        """
        summary : Update {model}
        ---
        HTTP PUT: update a row, nested relations are created
        """
        if id is None:
            raise ValidationError("ID is required for update operation")
        config = self.route_config
        record_id = coerce_id(id)
        data = self.get_payload()
        result = await call_hook(config.before_actions.get(UPDATE), record_id, data, request)
        if result is not None:
            data = result
        if not isinstance(data, dict):
            raise ValidationError("Invalid data provided for update")

        await self.validate(UPDATE, data)
        await self.check_constraints(UPDATE, data, record_id)
        await self.cascade(UPDATE, data, record_id)
        updated = await self.write(UPDATE, data, lambda write_data, include: self.model.update(record_id, write_data, include=include))
        updated = self.hide_fields(updated)

        result = await call_hook(config.after_actions.get(UPDATE), updated, request)
        if result is not None:
            updated = result
        return self.respond("put", updated)

    async def delete(self, id=None, **kwargs):
        """
        summary : Delete {model}
        ---
        HTTP DELETE: delete a row, the before hook may replace the deletion
        """
        if id is None:
            raise ValidationError("ID is required for delete operation")
        config = self.route_config
        record_id = coerce_id(id)
        deleted = await call_hook(config.before_actions.get(DELETE), record_id, request)
        if deleted is None:
            await self.cascade(DELETE, {}, record_id)
            deleted = await self.model.delete(record_id)
        deleted = self.hide_fields(deleted)

        result = await call_hook(config.after_actions.get(DELETE), deleted, request)
        if result is not None:
            deleted = result
        return self.respond("delete", deleted)

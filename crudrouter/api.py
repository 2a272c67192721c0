# flask_restful_swagger2 API subclass
import time
import uuid
from http import HTTPStatus
from functools import wraps
from flask_restful import Resource
from flask_restful_swagger_2 import Api as FRSApiBase
from flask_restful_swagger_2 import extract_swagger_path
from flask import current_app, g, request, Response
from flask.app import Flask
import yaml
import crudrouter
from .analyzer import ConstraintAdvisor
from .config import get_config, is_debug
from .crud_init import CRUD
from .errors import describe_error
from .handles import ModelRegistry, as_handle
from .json_encoder import CRUDJSONProvider
from .plugins import as_plugin
from .resources import CRUDRestAPI
from .response import ApiResponse, ResponseFormatter, make_response
from .route_config import CREATE, CUSTOM_ACTION_VERBS, DELETE, GET_BY_ID, LIST, UPDATE, RouteConfig
from .structure import ModelStructure, StructureCache
from typing import Any, Callable, Dict, List, Optional

# operation => http method, resource
COLLECTION_OPERATIONS = ((LIST, "get"), (CREATE, "post"))
INSTANCE_OPERATIONS = ((GET_BY_ID, "get"), (UPDATE, "put"), (DELETE, "delete"))


class CRUDRouter(FRSApiBase):
    """
    Subclass of the flask_restful_swagger API class where we add the register method:
    this method creates the CRUD endpoints for a model and the corresponding swagger paths

    :param app: Flask app
    :param models: model handles or sqla classes used to resolve the models referenced by foreign keys
    :param is_dev: development mode: error messages contain the exception text
    """

    def __init__(
        self,
        app: Flask,
        models=None,
        is_dev: Optional[bool] = None,
        version: Optional[str] = None,
        obfuscation_key: Optional[str] = None,
        logs_path: Optional[str] = None,
        default_middleware=(),
        plugins=(),
        enable_relation_analysis: Optional[bool] = None,
        enable_constraint_checking: Optional[bool] = None,
        enable_cascade_handling: Optional[bool] = None,
        exclude_fields=None,
        spec_url: str = "/crud/swagger",
        swaggerui_url: Optional[str] = None,
        description: str = "CRUD routes",
        **kwargs: Any,
    ) -> None:
        app_db = kwargs.pop("app_db", None)
        CRUD(app, app_db=app_db, spec_url=spec_url, swaggerui_url=swaggerui_url)

        with app.app_context():

            def option(value, name):
                return value if value is not None else get_config(name)

            self.version = option(version, "API_VERSION")
            self.obfuscation_key = option(obfuscation_key, "OBFUSCATION_KEY")
            self.logs_path = option(logs_path, "LOGS_PATH")
            self.enable_relation_analysis = bool(option(enable_relation_analysis, "ENABLE_RELATION_ANALYSIS"))
            self.enable_constraint_checking = bool(option(enable_constraint_checking, "ENABLE_CONSTRAINT_CHECKING"))
            self.enable_cascade_handling = bool(option(enable_cascade_handling, "ENABLE_CASCADE_HANDLING"))
            self.exclude_fields = tuple(option(exclude_fields, "EXCLUDE_FIELDS") or ())
            self.default_limit = int(get_config("DEFAULT_LIMIT"))
            self.max_limit = int(get_config("MAX_LIMIT"))
            self.powered_by = get_config("POWERED_BY")

        if is_dev is None:
            is_dev = bool(app.config.get("DEBUG")) or is_debug()
        self.is_dev = is_dev

        super().__init__(app, api_spec_url=spec_url, api_version=self.version, description=description, **kwargs)
        app.json = CRUDJSONProvider(app)

        self.registry = ModelRegistry(models)
        self.structures = StructureCache()
        self.advisor = ConstraintAdvisor(self.structures, self.registry)
        self.formatter = ResponseFormatter(
            is_dev=self.is_dev,
            version=self.version,
            obfuscation_key=self.obfuscation_key,
            logs_path=self.logs_path,
            powered_by=self.powered_by,
        )
        self.global_middleware: List[Callable] = list(default_middleware)
        self.global_error_handler: Optional[Callable] = None
        self._routes: List[Dict[str, Any]] = []
        self._endpoints: Dict[str, int] = {}

        for plugin in plugins:
            self.add_plugin(plugin)

    #
    # settings
    #
    @property
    def api_response(self) -> ResponseFormatter:
        """
        The response formatter of the generated routes
        """
        return self.formatter

    def relation_detection_enabled(self, config: RouteConfig) -> bool:
        return self.enable_relation_analysis and config.auto_detect_relations

    def constraint_checking_enabled(self, config: RouteConfig) -> bool:
        if config.enable_constraint_checking is not None:
            return config.enable_constraint_checking
        return self.enable_constraint_checking

    def cascade_handling_enabled(self, config: RouteConfig) -> bool:
        if config.enable_cascade_handling is not None:
            return config.enable_cascade_handling
        return self.enable_cascade_handling

    def get_structure(self, model, config: Optional[RouteConfig] = None) -> ModelStructure:
        """
        :param model: ModelHandle
        :param config: RouteConfig, its declared relations replace the introspected ones
        :return: ModelStructure
        """
        structure = self.structures.get(model)
        if config is not None and config.relations is not None:
            structure = structure.with_relations(config.relations)
        return structure

    #
    # plugins, middleware and error handling
    #
    def add_plugin(self, plugin) -> "CRUDRouter":
        plugin = as_plugin(plugin)
        crudrouter.log.debug(f"Applying plugin {plugin}")
        plugin.apply(self)
        return self

    def add_global_middleware(self, middleware: Callable) -> "CRUDRouter":
        """
        :param middleware: view decorator applied to the routes registered after this call
        """
        self.global_middleware.append(middleware)
        return self

    def set_global_error_handler(self, handler: Callable) -> "CRUDRouter":
        """
        :param handler: handler(exc, verb, formatter), used for the routes without an error_handler
        """
        self.global_error_handler = handler
        return self

    def handle_error(self, exc: Exception, verb: str, error_handler: Optional[Callable] = None):
        """
        Create the error response for an exception raised by a route handler

        :param exc: exception
        :param verb: http method
        :param error_handler: route error handler, replaces the default formatting
        :return: ApiResponse or flask response
        """
        handler = error_handler or self.global_error_handler
        if handler is not None:
            result = handler(exc, verb, self.api_response)
            if result is not None:
                return result

        status_code, message, code = describe_error(exc, self.is_dev)
        if status_code >= HTTPStatus.INTERNAL_SERVER_ERROR.value:
            crudrouter.log.exception(exc)
        else:
            crudrouter.log.info(f"{code}: {exc}")
        return self.api_response.error(
            verb,
            message=message,
            status_code=status_code,
            code=code,
            response_id=g.get("crud_response_id"),
            started=g.get("crud_started"),
        )

    @staticmethod
    def render(api_response):
        if isinstance(api_response, ApiResponse):
            return make_response(api_response)
        return api_response

    #
    # route registration
    #
    def _unique_endpoint(self, name: str) -> str:
        count = self._endpoints.get(name, 0) + 1
        self._endpoints[name] = count
        return name if count == 1 else f"{name}_{count}"

    def _record(self, url: str, method: str, operation: str, endpoint: Optional[str]) -> None:
        excluded = endpoint is None
        self._routes.append({"path": url, "method": method.upper(), "operation": operation, "excluded": excluded, "endpoint": endpoint})
        crudrouter.log.info(f"{'Excluded' if excluded else 'Registered'} {method.upper()} {url} ({operation})")

    def _add_swagger_path(self, url: str, methods: Dict[str, str], tag: str) -> None:
        swagger_path = extract_swagger_path(self.prefix + url)
        path_item = self.get_swagger_doc().setdefault("paths", {}).setdefault(swagger_path, {})
        for method_name, operation in methods.items():
            path_item[method_name] = {
                "tags": [tag],
                "summary": f"{operation} {tag}",
                "operationId": self._unique_endpoint(f"op_{tag}_{operation}"),
                "responses": {"200": {"description": HTTPStatus.OK.phrase}},
            }
            if "{id}" in swagger_path:
                path_item[method_name]["parameters"] = [{"name": "id", "in": "path", "required": True, "type": "string"}]

    def _expose(self, model, config: RouteConfig, url: str, operations, suffix: str) -> None:
        chains = {}
        methods = {}
        for operation, method_name in operations:
            if config.is_excluded(operation):
                self._record(url, method_name, operation, None)
                continue
            chains[method_name] = config.chain(operation, self.global_middleware)
            methods[method_name] = operation
        if not methods:
            return

        endpoint = self._unique_endpoint(f"{model.name}_{suffix}")
        properties = {"model": model, "route_config": config, "router": self}
        resource = api_decorator(type(f"{model.name}_{suffix}", (CRUDRestAPI,), properties), chains)
        self.add_resource(resource, url, endpoint=endpoint, methods=[m.upper() for m in methods])
        self._add_swagger_path(url, methods, model.name)
        for method_name, operation in methods.items():
            self._record(url, method_name, operation, endpoint)

    def _expose_custom_actions(self, model, config: RouteConfig, url: str) -> None:
        chain = config.chain(None, self.global_middleware)
        for verb, handler in config.custom_actions.items():
            if verb not in CUSTOM_ACTION_VERBS:
                crudrouter.log.warning(f"Invalid custom action method '{verb}' for {url}, skipped")
                continue
            endpoint = self._unique_endpoint(f"{model.name}_{verb}_action")
            view = http_method_decorator(handler, self, config)
            for middleware in reversed(chain):
                view = middleware(view)
            self.app.add_url_rule(self.prefix + url, endpoint=endpoint, view_func=view, methods=[verb.upper()])
            self._record(url, verb, "custom", endpoint)

    def register(self, path: str, model, config=None, **options: Any) -> RouteConfig:
        """This method creates the API url endpoints for a model:
            GET    path          list
            POST   path          create
            GET    path/<id>     get by id
            PUT    path/<id>     update
            DELETE path/<id>     delete
        and the custom actions on path

        :param path: url path, e.g. "/users"
        :param model: ModelHandle or sqla declarative class
        :param config: RouteConfig or dict with RouteConfig options
        :param options: additional RouteConfig options
        :return: RouteConfig of the route
        """
        handle = as_handle(model)
        config = RouteConfig.from_options(config, **options)
        if self.registry.get(handle.name) is None:
            self.registry.add(handle)

        url = "/" + path.strip("/")
        instance_url = f"{url.rstrip('/')}/<string:id>"
        self._expose(handle, config, url, COLLECTION_OPERATIONS, "API")
        self._expose(handle, config, instance_url, INSTANCE_OPERATIONS, "Instance_API")
        self._expose_custom_actions(handle, config, url)
        return config

    route = register

    def add_resource(self, resource, *urls, **kwargs):
        """
        Register the resource with flask-restful,
        the swagger paths of the generated routes are added by _add_swagger_path
        """
        super(FRSApiBase, self).add_resource(resource, *urls, **kwargs)

    def describe_routes(self) -> List[Dict[str, Any]]:
        """
        :return: the registered (and excluded) routes
        """
        return [dict(route) for route in self._routes]

    def expose_route_schema(self, url: str = "/crud/routes") -> None:
        """
        Expose the route records as JSON, or as YAML with the "yaml" query argument
        """
        router = self

        class RouteSchema(Resource):
            def get(self):
                result = {"version": router.version, "routes": router.describe_routes()}
                if request.args.get("yaml"):
                    return Response(yaml.dump(result), content_type="text/yaml")
                return result

        self.add_resource(RouteSchema, url, endpoint=self._unique_endpoint("crud_route_schema"))


def api_decorator(cls, chains: Dict[str, tuple]):
    """Decorator for the generated resources:
        - add generic exception handling ( http_method_decorator )
        - add the middleware, the first middleware in the chain is the outermost decorator

    :param cls: the class that will be decorated (a CRUDRestAPI subclass)
    :param chains: http method => middleware chain
    :return: decorated class
    """
    for method_name, chain in chains.items():
        method = getattr(cls, method_name, None)
        if not method:
            continue
        decorated_method = http_method_decorator(method, cls.router, cls.route_config)
        # Apply the middleware decorators
        for middleware in reversed(chain):
            decorated_method = middleware(decorated_method)
        setattr(cls, method_name, decorated_method)
    return cls


def http_method_decorator(fun: Callable, router: CRUDRouter, route_config: RouteConfig) -> Callable:
    """Decorator for the route handlers
    - set the correlation id and start time of the request
    - run the (coroutine) handler
    - convert all exceptions to an error response and roll back the session

    :param fun: handler
    :return: wrapped fun
    """

    @wraps(fun)
    def method_wrapper(*args, **kwargs):
        header = get_config("REQUEST_ID_HEADER")
        g.crud_response_id = (request.headers.get(header) if header else None) or str(uuid.uuid4())
        g.crud_started = time.perf_counter()
        try:
            return current_app.ensure_sync(fun)(*args, **kwargs)
        except Exception as exc:
            app_db = current_app.extensions.get("sqlalchemy")
            if app_db is not None:
                app_db.session.rollback()
            api_response = router.handle_error(exc, request.method.lower(), route_config.error_handler)
            return router.render(api_response)

    return method_wrapper

# flake8: noqa: F401
#
# crud_init has to be imported first: it creates the DB and log objects used by the other modules
#
from .crud_init import DB, log, CRUD, CRUDRequest
from .errors import CRUDError, ValidationError, ConstraintViolationError, NotFoundError, GenericError, HandlerNotFoundError
from .structure import ModelStructure, describe_model
from .handles import ModelHandle, SQLAModelHandle, ModelRegistry
from .relations import detect_relations, split_payload
from .route_config import RouteConfig, ValidationResult
from .plugins import Plugin, FunctionPlugin
from .response import ApiResponse, ResponseFormatter
from .api import CRUDRouter
from .__about__ import __version__, __description__

__all__ = (
    "__version__",
    "__description__",
    #
    "CRUDRouter",
    "CRUD",
    "DB",
    "log",
    # models:
    "ModelHandle",
    "SQLAModelHandle",
    "ModelRegistry",
    "ModelStructure",
    "describe_model",
    # routes:
    "RouteConfig",
    "ValidationResult",
    "Plugin",
    "FunctionPlugin",
    # relations:
    "detect_relations",
    "split_payload",
    # responses:
    "ApiResponse",
    "ResponseFormatter",
    # Errors:
    "CRUDError",
    "ValidationError",
    "ConstraintViolationError",
    "NotFoundError",
    "GenericError",
    "HandlerNotFoundError",
    # request
    "CRUDRequest",
)

# Exception Handlers
#
# Every exception raised while handling a generated route is caught in
# http_method_decorator and handed to CRUDRouter.handle_error, for example:
# {
#      "error": true,
#      "message": "Constraint violations: Required field 'title' is missing or empty",
#      "code": "CONSTRAINT_VIOLATION"
# }
#
# In verbose (development) mode the exception text is returned to the client,
# otherwise only the generic message from ERROR_CODES is shown.
#
from http import HTTPStatus
from werkzeug.exceptions import HTTPException, NotFound
from sqlalchemy.exc import DontWrapMixin, IntegrityError, DataError, OperationalError, StatementError
from sqlalchemy.orm.exc import NoResultFound
import crudrouter
from typing import Optional, Tuple

# error code => (http status, generic message)
ERROR_CODES = {
    "NOT_FOUND": (HTTPStatus.NOT_FOUND.value, "Resource not found"),
    "VALIDATION_ERROR": (HTTPStatus.BAD_REQUEST.value, "Validation failed"),
    "CONSTRAINT_VIOLATION": (HTTPStatus.BAD_REQUEST.value, "Constraint violation"),
    "UNIQUE_VIOLATION": (HTTPStatus.CONFLICT.value, "Unique constraint failed"),
    "FOREIGN_KEY_VIOLATION": (HTTPStatus.CONFLICT.value, "Foreign key constraint failed"),
    "NOT_NULL_VIOLATION": (HTTPStatus.BAD_REQUEST.value, "Null constraint violation"),
    "INTEGRITY_ERROR": (HTTPStatus.CONFLICT.value, "Integrity constraint violation"),
    "INVALID_DATA": (HTTPStatus.BAD_REQUEST.value, "Invalid data provided"),
    "DATABASE_UNAVAILABLE": (HTTPStatus.SERVICE_UNAVAILABLE.value, "Database unavailable"),
    "DATABASE_ERROR": (HTTPStatus.INTERNAL_SERVER_ERROR.value, "Database error"),
    "HANDLER_NOT_FOUND": (HTTPStatus.INTERNAL_SERVER_ERROR.value, "Response handler not found"),
    "INTERNAL_ERROR": (HTTPStatus.INTERNAL_SERVER_ERROR.value, "Internal server error"),
}
DEFAULT_ERROR_CODE = "INTERNAL_ERROR"


class CRUDError(Exception, DontWrapMixin):
    """
    Base class for the errors raised by the generated routes
    """

    status_code = HTTPStatus.INTERNAL_SERVER_ERROR.value
    api_code = DEFAULT_ERROR_CODE
    message = ""

    def __init__(self, message: str = "", status_code: Optional[int] = None, api_code: Optional[str] = None) -> None:
        Exception.__init__(self, message)
        self.message = str(message)
        if status_code is not None:
            self.status_code = status_code
        if api_code is not None:
            self.api_code = api_code

    def __str__(self) -> str:
        return self.message


class ValidationError(CRUDError):
    """
    This exception is raised when invalid input has been detected (client side input)
    """

    status_code = HTTPStatus.BAD_REQUEST.value
    api_code = "VALIDATION_ERROR"

    def __init__(self, message: str = "", status_code: Optional[int] = None, api_code: Optional[str] = None) -> None:
        super().__init__(message, status_code, api_code)
        crudrouter.log.warning("ValidationError: %s", message)


class ConstraintViolationError(ValidationError):
    """
    Raised when the constraint advisor reports violations
    """

    api_code = "CONSTRAINT_VIOLATION"

    def __init__(self, violations=(), status_code: Optional[int] = None) -> None:
        self.violations = list(violations)
        super().__init__(f"Constraint violations: {', '.join(self.violations)}", status_code)


class NotFoundError(CRUDError, NotFound):
    """
    This exception is raised when an item was not found
    """

    status_code = HTTPStatus.NOT_FOUND.value
    api_code = "NOT_FOUND"

    def __init__(self, message: str = "Record not found", status_code: Optional[int] = None, api_code: Optional[str] = None) -> None:
        CRUDError.__init__(self, message, status_code, api_code)
        crudrouter.log.error("Not found: %s", message)


class GenericError(CRUDError):
    """
    This exception is raised when an error has been detected
    """

    def __init__(self, message: str = "", status_code: Optional[int] = None, api_code: Optional[str] = None) -> None:
        super().__init__(message, status_code, api_code)
        crudrouter.log.error("Generic Error: %s", message)


class HandlerNotFoundError(GenericError):
    """
    Raised when the response formatter has no handler for a kind/verb combination
    """

    api_code = "HANDLER_NOT_FOUND"


def error_code_for(exc: BaseException) -> str:
    """
    Map an exception to an ERROR_CODES key

    Exceptions may carry their own code in an `api_code` or (string) `code` attribute
    """
    for attr in ("api_code", "code"):
        code = getattr(exc, attr, None)
        if isinstance(code, str) and code in ERROR_CODES:
            return code

    if isinstance(exc, NotFound):
        return "NOT_FOUND"
    if isinstance(exc, NoResultFound):
        return "NOT_FOUND"
    if isinstance(exc, IntegrityError):
        text = str(exc.orig).lower()
        if "unique" in text or "duplicate" in text:
            return "UNIQUE_VIOLATION"
        if "foreign key" in text:
            return "FOREIGN_KEY_VIOLATION"
        if "not null" in text or "null value" in text:
            return "NOT_NULL_VIOLATION"
        return "INTEGRITY_ERROR"
    if isinstance(exc, DataError):
        return "INVALID_DATA"
    if isinstance(exc, OperationalError):
        return "DATABASE_UNAVAILABLE"
    if isinstance(exc, StatementError):
        return "DATABASE_ERROR"
    if isinstance(exc, (ValueError, TypeError)):
        return "INVALID_DATA"
    return DEFAULT_ERROR_CODE


def describe_error(exc: BaseException, verbose: bool = False) -> Tuple[int, str, str]:
    """
    :param exc: exception raised while handling a request
    :param verbose: show the exception text instead of the generic message
    :return: (status_code, message, error code)
    """
    code = error_code_for(exc)
    status_code, generic_message = ERROR_CODES.get(code, ERROR_CODES[DEFAULT_ERROR_CODE])
    exc_status = getattr(exc, "status_code", None)
    if isinstance(exc_status, int):
        status_code = exc_status
    elif isinstance(exc, HTTPException) and exc.code:
        status_code = exc.code
    if verbose:
        message = getattr(exc, "message", None) or str(exc) or generic_message
    else:
        message = generic_message
    return status_code, message, code

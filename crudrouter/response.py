"""
Response formatting

ResponseFormatter.match(kind, verb, data, ...) creates the ApiResponse for an outcome:
- kind: "ok", "error", "info" or "warning"
- verb: the HTTP method of the request, "get", "post", "put", "patch" or "delete"

The status code and message default to the STATUS_CODES and MESSAGES tables.
Success bodies merge the data with the message, e.g.
    {"message": "Resource created successfully", "id": 1, "name": "J", "created": true}
error bodies contain an error flag:
    {"error": true, "message": "Resource not found", "code": "NOT_FOUND"}
"""
import base64
import datetime
import json
import logging
import os
import time
import uuid
from dataclasses import dataclass, field
from http import HTTPStatus
from flask import Response, current_app
import crudrouter
from .errors import ERROR_CODES
from .json_encoder import CRUDJSONEncoder
from typing import Any, Dict, Optional

KINDS = ("ok", "error", "info", "warning")
VERBS = ("get", "post", "put", "patch", "delete")

STATUS_CODES = {
    "ok": {"get": 200, "post": 201, "put": 200, "patch": 200, "delete": 204},
    "error": {"get": 404, "post": 400, "put": 400, "patch": 400, "delete": 404},
    "info": {"get": 200, "post": 202, "put": 202, "patch": 202, "delete": 202},
    "warning": {"get": 200, "post": 200, "put": 200, "patch": 200, "delete": 200},
}

MESSAGES = {
    "ok": {
        "get": "Data retrieved successfully",
        "post": "Resource created successfully",
        "put": "Resource updated successfully",
        "patch": "Resource partially updated successfully",
        "delete": "Resource deleted successfully",
    },
    "error": {
        "get": "Failed to retrieve data",
        "post": "Failed to create resource",
        "put": "Failed to update resource",
        "patch": "Failed to partially update resource",
        "delete": "Failed to delete resource",
    },
    "info": {
        "get": "Information retrieved",
        "post": "Information processed",
        "put": "Information updated",
        "patch": "Information modified",
        "delete": "Information removed",
    },
    "warning": {
        "get": "Data retrieved with warnings",
        "post": "Resource created with warnings",
        "put": "Resource updated with warnings",
        "patch": "Resource partially updated with warnings",
        "delete": "Resource deleted with warnings",
    },
}
DEFAULT_MESSAGE = "Operation completed"

# flags added to successful responses
VERB_FLAGS = {"post": "created", "put": "updated", "patch": "patched", "delete": "deleted"}


@dataclass(frozen=True)
class ApiResponse:
    body: Any
    headers: Dict[str, str] = field(default_factory=dict)
    status_code: int = HTTPStatus.OK.value


def _count(data: Any) -> int:
    if isinstance(data, (list, tuple)):
        return len(data)
    return 1 if data else 0


def _resource_headers(data: Any) -> Dict[str, str]:
    """
    X-Resource-IDs for arrays of resources, X-Resource-ID for a single resource
    """
    items = data.get("data") if isinstance(data, dict) and isinstance(data.get("data"), list) else data
    if isinstance(items, list):
        ids = [str(item["id"]) for item in items if isinstance(item, dict) and item.get("id") is not None]
        return {"X-Resource-IDs": ",".join(ids)} if ids else {}
    if isinstance(data, dict):
        resource = data.get("data") if isinstance(data.get("data"), dict) else data
        if resource.get("id") is not None:
            return {"X-Resource-ID": str(resource["id"])}
    return {}


def create_error_logger(logs_path: str) -> logging.Logger:
    """
    :param logs_path: file that will receive the error records, one JSON document per line
    :return: logger
    """
    log_dir = os.path.dirname(logs_path)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
    logger = logging.getLogger(f"{__name__}.errors.{os.path.abspath(logs_path)}")
    if not logger.handlers:
        handler = logging.FileHandler(logs_path)
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)
        logger.setLevel(logging.ERROR)
        logger.propagate = False
    return logger


class ResponseFormatter:
    """
    Formats the outcome of the generated routes

    :param is_dev: development mode: sets the X-Environment header
    :param version: API version, X-API-Version header
    :param obfuscation_key: when set, the response data is replaced by its base64 encoded JSON
        (this is obfuscation, not encryption)
    :param logs_path: file receiving the error records
    :param powered_by: X-Powered-By header
    """

    def __init__(
        self,
        is_dev: bool = False,
        version: str = "1.0.0",
        obfuscation_key: Optional[str] = None,
        logs_path: Optional[str] = None,
        powered_by: str = "crudrouter",
    ) -> None:
        self.is_dev = is_dev
        self.version = version
        self.obfuscation_key = obfuscation_key
        self.logs_path = logs_path
        self.powered_by = powered_by
        self.logger = create_error_logger(logs_path) if logs_path else None

    @staticmethod
    def default_status_code(kind: str, verb: str) -> int:
        return STATUS_CODES.get(kind, {}).get(verb, HTTPStatus.OK.value)

    @staticmethod
    def default_message(kind: str, verb: str) -> str:
        return MESSAGES.get(kind, {}).get(verb, DEFAULT_MESSAGE)

    def encode_body(self, data: Any) -> str:
        """
        :return: base64 encoded JSON of data
        """
        encoded = json.dumps(data, cls=CRUDJSONEncoder).encode("utf-8")
        return base64.b64encode(encoded).decode("ascii")

    def _base_headers(self, kind: str, method: str, response_id: str, started: Optional[float]) -> Dict[str, str]:
        elapsed = 0 if started is None else int((time.perf_counter() - started) * 1000)
        return {
            "X-Response-Type": kind,
            "X-Response-Method": method,
            "X-Response-ID": response_id,
            "X-Response-Time": f"{elapsed}ms",
            "X-API-Version": self.version,
            "X-Environment": "development" if self.is_dev else "production",
            "X-Encrypted": "false",
            "X-Timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
            "X-Powered-By": self.powered_by,
        }

    def match(
        self,
        kind: str,
        verb: str,
        data: Any = None,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        response_id: Optional[str] = None,
        started: Optional[float] = None,
        code: Optional[str] = None,
    ) -> ApiResponse:
        """
        :param kind: "ok", "error", "info" or "warning"
        :param verb: HTTP method
        :param data: response data, dicts are merged in the body, other values are set as "data"
        :param message: message, MESSAGES default
        :param status_code: status code, STATUS_CODES default
        :param response_id: correlation id, generated when not supplied
        :param started: time.perf_counter() at the start of the request, for X-Response-Time
        :param code: error code (error kind)
        :return: ApiResponse
        """
        verb = (verb or "").lower()
        response_id = response_id or str(uuid.uuid4())
        if kind not in KINDS or verb not in VERBS:
            return self.handler_not_found(kind, verb, response_id, started)

        status_code = status_code or self.default_status_code(kind, verb)
        message = message or self.default_message(kind, verb)
        headers = self._base_headers(kind, verb.upper(), response_id, started)

        if kind == "error":
            body = {"error": True, "message": message}
            if code:
                body["code"] = code
            if isinstance(data, dict):
                body.update({key: value for key, value in data.items() if key not in body})
            elif data is not None:
                body["data"] = data
            self.log_error(response_id, verb, message, status_code, code, data)
        else:
            body = {"message": message}
            if isinstance(data, dict):
                body.update(data)
            elif data is not None:
                body["data"] = data
            if kind == "ok":
                if verb == "get":
                    body.setdefault("count", _count(data))
                else:
                    body.setdefault(VERB_FLAGS[verb], True)

        headers.update(_resource_headers(data))

        if self.obfuscation_key and data:
            body = self.encode_body(data)
            headers["X-Encrypted"] = "true"

        return ApiResponse(body=body, headers=headers, status_code=status_code)

    def success(self, verb: str, data: Any = None, message: Optional[str] = None, status_code: Optional[int] = None, **kwargs) -> ApiResponse:
        return self.match("ok", verb, data, message, status_code, **kwargs)

    def error(self, verb: str, data: Any = None, message: Optional[str] = None, status_code: Optional[int] = None, **kwargs) -> ApiResponse:
        return self.match("error", verb, data, message, status_code, **kwargs)

    def info(self, verb: str, data: Any = None, message: Optional[str] = None, status_code: Optional[int] = None, **kwargs) -> ApiResponse:
        return self.match("info", verb, data, message, status_code, **kwargs)

    def warning(self, verb: str, data: Any = None, message: Optional[str] = None, status_code: Optional[int] = None, **kwargs) -> ApiResponse:
        return self.match("warning", verb, data, message, status_code, **kwargs)

    def handler_not_found(self, kind: str, verb: str, response_id: str, started: Optional[float] = None) -> ApiResponse:
        """
        :return: error response for an unsupported kind / verb combination
        """
        code = "HANDLER_NOT_FOUND"
        status_code = ERROR_CODES[code][0]
        message = f"No handler found for {kind}/{verb}"
        crudrouter.log.error(message)
        headers = self._base_headers("error", "ERROR", response_id, started)
        headers["X-Error-Code"] = code
        self.log_error(response_id, verb, message, status_code, code)
        return ApiResponse(body={"error": True, "message": message, "code": code}, headers=headers, status_code=status_code)

    def log_error(
        self, response_id: str, verb: str, message: str, status_code: int, code: Optional[str] = None, data: Any = None
    ) -> None:
        """
        Write an error record to the error log file (when logs_path is set)
        """
        if self.logger is None:
            return
        record = {
            "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
            "level": "error",
            "service": self.powered_by,
            "responseId": response_id,
            "method": (verb or "").upper(),
            "message": message,
            "statusCode": status_code,
            "errorCode": code,
            "data": data,
        }
        self.logger.error(json.dumps(record, cls=CRUDJSONEncoder))


def make_response(api_response: ApiResponse) -> Response:
    """
    Create the flask response for an ApiResponse, 204 responses have no body
    """
    if api_response.status_code == HTTPStatus.NO_CONTENT.value:
        response = current_app.response_class(status=api_response.status_code)
    else:
        response = current_app.response_class(
            current_app.json.dumps(api_response.body), status=api_response.status_code, mimetype="application/json"
        )
    for name, value in api_response.headers.items():
        response.headers[name] = value
    return response

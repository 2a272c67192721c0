import logging
import os
import sys
from flask_swagger_ui import get_swaggerui_blueprint
from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from .request import CRUDRequest
import crudrouter
import flask.app
from typing import Any, Optional


class CRUD:
    """This class configures the Flask application to serve generated CRUD routes
    :param app: a Flask application.
    :param LOGLEVEL: loglevel configuration variable, values from logging module (0: trace, .. 50: critical)

    Every class variable can be overridden with a ``CRUD_<NAME>`` app.config key
    or a ``CRUD_<NAME>`` environment variable, cfr. config.get_config
    """

    # Configuration settings are stored as class variables
    DEFAULT_LIMIT = 100
    MAX_LIMIT = 10000
    DEFAULT_OFFSET = 0
    EXCLUDE_FIELDS = ("password",)
    API_VERSION = "1.0.0"
    OBFUSCATION_KEY = None
    LOGS_PATH = None
    POWERED_BY = "crudrouter"
    ENABLE_RELATION_ANALYSIS = True
    ENABLE_CONSTRAINT_CHECKING = True
    ENABLE_CASCADE_HANDLING = True
    LOGLEVEL = logging.WARNING
    # correlation id request header, a uuid4 is generated when it's absent
    REQUEST_ID_HEADER = "X-Request-ID"

    def __init__(self, app: flask.app.Flask, *args, **kwargs) -> None:
        """
        Constructor
        """
        self.app = app
        self.db = None
        if app is not None:
            self.init_app(app, *args, **kwargs)

    def init_app(
        self,
        app: flask.app.Flask,
        app_db: Optional[SQLAlchemy] = None,
        spec_url: str = "/crud/swagger",
        swaggerui_url: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        """
        Application initialization:
        - install the request class
        - register the (optional) swagger ui blueprint
        - remove the sqla session when the app context is torn down
        """
        if not isinstance(app, Flask):  # pragma: no cover
            raise TypeError("'app' should be Flask.")

        if app_db is None:
            app_db = app.extensions.get("sqlalchemy")

        if app_db is not None:
            crudrouter.DB = self.db = app_db

        app.request_class = CRUDRequest
        app.url_map.strict_slashes = False

        if app.config.get("DEBUG", False):
            log.setLevel(logging.DEBUG)

        if swaggerui_url:
            swaggerui_blueprint = get_swaggerui_blueprint(
                swaggerui_url, f"{spec_url}.json", config={"docExpansion": "none", "defaultModelsExpandDepth": -1}
            )
            app.register_blueprint(swaggerui_blueprint, url_prefix=swaggerui_url)

        for conf_name, conf_val in kwargs.items():
            setattr(CRUD, conf_name, conf_val)

        state = app.extensions.setdefault("crudrouter", {})
        if self.db is not None and not state.get("session_teardown"):
            state["session_teardown"] = True

            # pylint: disable=unused-argument,unused-variable
            @app.teardown_appcontext
            def shutdown_session(exception=None):
                """cfr. https://flask.palletsprojects.com/en/latest/patterns/sqlalchemy/"""
                self.db.session.remove()


def init_logging(loglevel: int = logging.WARNING) -> logging.Logger:
    """
    Specify the log format used in the webserver logs
    """
    log = logging.getLogger(__name__)
    if log.level == logging.NOTSET:
        handler = logging.StreamHandler(sys.stderr)
        formatter = logging.Formatter("[%(asctime)s] %(levelname)s: %(message)s")
        handler.setFormatter(formatter)
        log.setLevel(loglevel)
        log.addHandler(handler)
    return log


#
# DB and logging initialization
#
DB = SQLAlchemy()

try:
    DEBUG = os.getenv("DEBUG", logging.WARNING)
    LOGLEVEL = int(DEBUG)
except ValueError:  # pragma: no cover
    print(f'Invalid LogLevel in DEBUG Environment Variable! "{DEBUG}"')
    LOGLEVEL = logging.INFO

log = init_logging(LOGLEVEL)

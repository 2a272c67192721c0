# Configuration settings should be set in app.config, prefixed with "CRUD_"
# The get_config function falls back to the CRUD class defaults and the environment
import os
import logging
from flask import current_app
import crudrouter
from typing import Any, Optional

CONFIG_PREFIX = "CRUD_"


def get_config(option: str) -> Optional[Any]:
    """Retrieve a configuration parameter from the app
    :param option: configuration parameter, e.g. "DEFAULT_LIMIT"
    :return: configuration value
    """
    key = CONFIG_PREFIX + option
    try:
        return current_app.config[key]
    except (KeyError, RuntimeError):
        pass

    result = getattr(crudrouter.CRUD, option, None)
    if result is None:
        result = os.environ.get(key, None)
    return result


def is_debug() -> bool:
    """
    We use the loglevel to check whether we're running in debug mode
    :return: whether the app is in debug mode
    :rtype: Boolean
    """
    return crudrouter.log.getEffectiveLevel() < logging.INFO

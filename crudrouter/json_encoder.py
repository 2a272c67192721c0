# JSON encoding of row values
#
# Rows returned by the model handles are plain dicts, but their values may be
# dates, decimals, uuids, ... Hooks may also return mapped instances.

import datetime
import decimal
import enum
import json
from flask.json.provider import DefaultJSONProvider
from uuid import UUID
import crudrouter
from .handles import to_dict


def encode_value(obj):
    """
    :param obj: value that the json module can't serialize
    :return: serializable representation of obj
    """
    if isinstance(obj, (datetime.datetime, datetime.date, datetime.time)):
        return obj.isoformat()
    if isinstance(obj, datetime.timedelta):
        return obj.total_seconds()
    if isinstance(obj, decimal.Decimal):
        return float(obj)
    if isinstance(obj, enum.Enum):
        return obj.value
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, (set, frozenset, tuple)):
        return list(obj)
    if isinstance(obj, (bytes, bytearray)):
        return obj.hex()
    if hasattr(obj, "__mapper__") and not isinstance(obj, type):
        return to_dict(obj)

    crudrouter.log.warning(f'JSON Encoding Error: Unknown object type "{type(obj)}" for {obj}')
    return str(obj)


class CRUDJSONProvider(DefaultJSONProvider):
    """
    Flask JSON provider, keeps the column order of the rows
    """

    sort_keys = False

    def default(self, obj):  # pylint: disable=arguments-differ,method-hidden
        return encode_value(obj)


class CRUDJSONEncoder(json.JSONEncoder):
    """
    Encoder for the json module (error logs, obfuscated bodies)
    """

    def default(self, o):
        return encode_value(o)

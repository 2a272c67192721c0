import datetime
import decimal
import enum
import json
import uuid

from crudrouter import DB
from crudrouter.json_encoder import CRUDJSONEncoder, encode_value
from tests.conftest import User


class Color(enum.Enum):
    RED = "red"


def test_encode_values() -> None:
    row = {
        "created": datetime.datetime(2024, 1, 2, 3, 4, 5),
        "day": datetime.date(2024, 1, 2),
        "price": decimal.Decimal("1.5"),
        "color": Color.RED,
        "uid": uuid.UUID(int=1),
        "tags": {"a"},
        "blob": b"\x01\x02",
    }

    assert json.loads(json.dumps(row, cls=CRUDJSONEncoder)) == {
        "created": "2024-01-02T03:04:05",
        "day": "2024-01-02",
        "price": 1.5,
        "color": "red",
        "uid": "00000000-0000-0000-0000-000000000001",
        "tags": ["a"],
        "blob": "0102",
    }


def test_encode_mapped_instance(users) -> None:
    assert encode_value(DB.session.get(User, 1))["name"] == "user0"


def test_unknown_type_is_stringified() -> None:
    assert encode_value(object).startswith("<class")

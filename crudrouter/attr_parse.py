import datetime
import decimal
import crudrouter
import sqlalchemy


def parse_attr(column, attr_val):
    """
    Parse the supplied JSON `attr_val` so it can be saved in the SQLAlchemy `column`

    :param column: SQLAlchemy column
    :param attr_val: request payload value
    :return: processed value
    """
    if attr_val is None:
        return attr_val

    try:
        python_type = column.type.python_type
    except NotImplementedError as exc:
        # custom column type: the type implementation should know how to handle the value
        crudrouter.log.debug(exc)
        return attr_val

    # skip type coercion on JSON columns, since they could be anything
    if isinstance(column.type, sqlalchemy.types.JSON):
        return attr_val

    if isinstance(attr_val, python_type):
        return attr_val

    # Parse datetime and date values for some common representations
    # If another format is used, the user should create a custom column type
    if python_type == datetime.datetime:
        date_str = str(attr_val)
        try:
            attr_val = datetime.datetime.fromisoformat(date_str.replace("Z", "+00:00"))
        except ValueError as exc:
            raise crudrouter.ValidationError(f'Invalid datetime "{attr_val}" for {column.key}: {exc}')
    elif python_type == datetime.date:
        try:
            attr_val = datetime.date.fromisoformat(str(attr_val)[:10])
        except ValueError as exc:
            raise crudrouter.ValidationError(f'Invalid date "{attr_val}" for {column.key}: {exc}')
    elif python_type == datetime.time:
        try:
            attr_val = datetime.time.fromisoformat(str(attr_val))
        except ValueError as exc:
            raise crudrouter.ValidationError(f'Invalid time "{attr_val}" for {column.key}: {exc}')
    elif python_type == bool:
        if isinstance(attr_val, str):
            attr_val = attr_val.strip().lower() in ("1", "true", "yes", "on")
        else:
            attr_val = bool(attr_val)
    elif python_type == decimal.Decimal:
        try:
            attr_val = decimal.Decimal(str(attr_val))
        except decimal.InvalidOperation:
            raise crudrouter.ValidationError(f'Invalid decimal "{attr_val}" for {column.key}')
    else:
        try:
            attr_val = python_type(attr_val)
        except (TypeError, ValueError) as exc:
            raise crudrouter.ValidationError(f'Invalid value "{attr_val}" for {column.key}: {exc}')

    return attr_val

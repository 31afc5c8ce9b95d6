from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional

from sqlalchemy import inspect


def to_json_safe(value: Any) -> Any:
    """
    Convert a column value into something the JSON audit columns can store.

    Decimals become strings so cents are never lost to float rounding; dates
    and datetimes become ISO strings.
    """
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {key: to_json_safe(inner) for key, inner in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_json_safe(inner) for inner in value]
    return value


def model_snapshot(instance: Any, exclude: Optional[Iterable[str]] = None) -> Dict[str, Any]:
    """
    Snapshot every mapped column of an ORM instance as a plain dict.

    Returns a NEW dictionary (pure function), detached from the session, so it
    can be taken before a mutation and compared with one taken after.
    """
    excluded = set(exclude or ())
    mapper = inspect(instance).mapper
    return {
        column.key: to_json_safe(getattr(instance, column.key))
        for column in mapper.column_attrs
        if column.key not in excluded
    }

"""Conversion between dataclass models and JSON-safe repository records.

CRITICAL: Decimal values are stored as strings and restored as Decimal on read.
Datetimes are stored as ISO-8601 strings, enums by value.
"""

import types
from dataclasses import fields, is_dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, TypeVar, Union, get_args, get_origin, get_type_hints

T = TypeVar("T")


def encode_value(value: Any) -> Any:
    """Convert a model value into a JSON-safe value."""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: encode_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [encode_value(v) for v in value]
    return value


def to_record(obj: Any) -> dict[str, Any]:
    """Encode a dataclass instance as a plain dict."""
    if not is_dataclass(obj):
        raise TypeError(f"Expected a dataclass instance, got {type(obj).__name__}")
    return {f.name: encode_value(getattr(obj, f.name)) for f in fields(obj)}


def _coerce(annotation: Any, value: Any) -> Any:
    if value is None:
        return None

    origin = get_origin(annotation)
    if origin is Union or origin is types.UnionType:
        candidates = [a for a in get_args(annotation) if a is not type(None)]
        return _coerce(candidates[0], value) if candidates else value

    if annotation is Decimal:
        return value if isinstance(value, Decimal) else Decimal(str(value))
    if annotation is datetime:
        return value if isinstance(value, datetime) else datetime.fromisoformat(value)
    if isinstance(annotation, type) and issubclass(annotation, Enum):
        return annotation(value)
    return value


def from_record(cls: type[T], record: dict[str, Any]) -> T:
    """Decode a stored record into an instance of dataclass cls.

    Keys without a matching field are ignored; missing keys fall back to the
    field defaults.
    """
    hints = get_type_hints(cls)
    kwargs = {
        f.name: _coerce(hints[f.name], record[f.name])
        for f in fields(cls)  # type: ignore[arg-type]
        if f.name in record
    }
    return cls(**kwargs)

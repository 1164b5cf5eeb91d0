"""
Argument validation helpers. Every helper raises ValidationError and never touches a backend.
"""

import re
from enum import Enum
from typing import Any, Iterable, List, Optional, Sequence, Type, TypeVar

from .errors import ValidationError

E = TypeVar('E', bound=Enum)

SCALAR_TYPES = (str, int, float, bool)
_COLLECTION_NAME = re.compile(r'^[a-z0-9][a-z0-9_\-]{0,99}$')


def require_text(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f'{field_name} must be a non-empty string')
    return value


def optional_text(value: Any, field_name: str) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f'{field_name} must be a string')
    return value


def require_int_range(value: Any, field_name: str, minimum: int, maximum: Optional[int] = None) -> int:
    # bool is an int subclass; a flag is never a valid count
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f'{field_name} must be an integer')
    if value < minimum or (maximum is not None and value > maximum):
        bound = f'between {minimum} and {maximum}' if maximum is not None else f'at least {minimum}'
        raise ValidationError(f'{field_name} must be {bound}, got {value}')
    return value


def require_unit_interval(value: Any, field_name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f'{field_name} must be a number')
    if not 0.0 <= float(value) <= 1.0:
        raise ValidationError(f'{field_name} must be within [0, 1], got {value}')
    return float(value)


def require_str_list(values: Optional[Iterable[Any]], field_name: str) -> List[str]:
    if values is None:
        return []
    if isinstance(values, str):
        raise ValidationError(f'{field_name} must be a list of strings, not a single string')
    result = list(values)
    for item in result:
        if not isinstance(item, str):
            raise ValidationError(f'{field_name} must contain only strings')
    return result


def parse_enum(enum_cls: Type[E], value: Any, field_name: str) -> E:
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ', '.join(member.value for member in enum_cls)
        raise ValidationError(f'Invalid {field_name}: {value!r} (allowed: {allowed})')


def parse_optional_enum(enum_cls: Type[E], value: Any, field_name: str) -> Optional[E]:
    if value is None:
        return None
    return parse_enum(enum_cls, value, field_name)


def require_scalar_mapping(values: Optional[dict], field_name: str, allow_none: bool = False) -> dict:
    """Accept a flat mapping of string keys to scalar values."""
    if values is None:
        return {}
    if not isinstance(values, dict):
        raise ValidationError(f'{field_name} must be a mapping')
    for key, val in values.items():
        if not isinstance(key, str) or not key:
            raise ValidationError(f'{field_name} keys must be non-empty strings')
        if val is None and allow_none:
            continue
        if not isinstance(val, SCALAR_TYPES):
            raise ValidationError(f'{field_name}.{key} must be a string, number or boolean')
    return dict(values)


def require_collection_name(value: Any) -> str:
    if not isinstance(value, str) or not _COLLECTION_NAME.match(value):
        raise ValidationError(f'Invalid collection name {value!r}: use lowercase letters, digits, "_" or "-"')
    return value


def require_matching_lengths(field_name: str, expected: int, values: Optional[Sequence[Any]]) -> None:
    if values is not None and len(values) != expected:
        raise ValidationError(f'{field_name} has {len(values)} entries but documents has {expected}')

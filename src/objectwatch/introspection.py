"""
Object model helpers shared by the interception layer and the tree engine.

Python objects expose "properties" in two ways: attributes (instances with a
__dict__ or __slots__) and items (mappings and sequences). These helpers give
both layers one definition of what counts as an atomic value, a structured
value, an array, and an object's own keys.
"""

import datetime
import decimal
import enum
import pathlib
import uuid
from collections.abc import Mapping, MutableSequence, Sequence, Set as AbstractSet
from typing import Any, List

# Values rendered as leaves even though some of them carry attributes internally
ATOMIC_TYPES = (
    bool, int, float, complex, str, bytes, bytearray, memoryview,
    decimal.Decimal, uuid.UUID, pathlib.PurePath, enum.Enum,
    datetime.date, datetime.time, datetime.timedelta, datetime.tzinfo,
)

_TEXT_TYPES = (str, bytes, bytearray, memoryview)


def is_atomic(value: Any) -> bool:
    """True for None and values that are never walked or wrapped."""
    return value is None or isinstance(value, ATOMIC_TYPES)


def is_array_like(value: Any) -> bool:
    """Sequences and sets (but not text) serialize as arrays."""
    return isinstance(value, (Sequence, AbstractSet)) and not isinstance(value, _TEXT_TYPES)


def has_attributes(value: Any) -> bool:
    return hasattr(value, '__dict__') or bool(slot_names(type(value)))


def is_structured(value: Any) -> bool:
    """True for values the interception layer can wrap.

    Mappings, mutable sequences and attribute-carrying instances qualify.
    Callables never do: functions, classes and bound methods are returned raw.
    """
    if is_atomic(value) or callable(value):
        return False
    if isinstance(value, (Mapping, MutableSequence)):
        return True
    if isinstance(value, (tuple, AbstractSet)):
        return False
    return has_attributes(value)


def slot_names(cls: type) -> List[str]:
    """All __slots__ names declared along the MRO, in declaration order."""
    names: List[str] = []
    for klass in reversed(cls.__mro__):
        slots = klass.__dict__.get('__slots__', ())
        if isinstance(slots, str):
            slots = (slots,)
        for name in slots:
            if name not in ('__dict__', '__weakref__') and name not in names:
                names.append(name)
    return names


def own_keys(value: Any) -> List[Any]:
    """Own property keys of a mapping or attribute-carrying instance, in natural order."""
    if isinstance(value, Mapping):
        return list(value.keys())
    keys = list(vars(value)) if hasattr(value, '__dict__') else []
    for name in slot_names(type(value)):
        if name not in keys and hasattr(value, name):
            keys.append(name)
    return keys


def read_property(value: Any, key: Any) -> Any:
    if isinstance(value, Mapping):
        return value[key]
    return getattr(value, key)


def type_name(value: Any) -> str:
    return type(value).__name__


def function_name(value: Any) -> str:
    return getattr(value, '__name__', None) or 'anonymous'


def join_key(parent: str, key: Any) -> str:
    """Dotted path for a named property: "a" + "b" -> "a.b"."""
    return f"{parent}.{key}" if parent else str(key)


def join_index(parent: str, index: int) -> str:
    """Bracketed path for a sequence index: "a" + 0 -> "a[0]"."""
    return f"{parent}[{index}]"

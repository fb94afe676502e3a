from typing import Any, Iterable
import numpy as np
import pandas as pd
from ..config import settings

class NullValue:
    """Single stand-in for every null or blank input in a value list.

    All null-like inputs (None, NaN, NaT, pd.NA, empty or whitespace-only
    strings) collapse onto this one object, so a column holds at most one
    null entry and it compares equal only to itself.
    """

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return settings.filters.NULL_DISPLAY_TEXT

    __str__ = __repr__

    def __eq__(self, other):
        return isinstance(other, NullValue)

    def __hash__(self):
        return hash("filter_engine.null_value")

NULL_VALUE = NullValue()

_COLLECTION_TYPES = (list, tuple, set, frozenset, dict)

def is_null_like(value: Any) -> bool:
    """True for None, the null sentinel and pandas/numpy missing markers"""
    if value is None or value is NULL_VALUE:
        return True
    if isinstance(value, _COLLECTION_TYPES):
        return False
    try:
        result = pd.isna(value)
    except (TypeError, ValueError):
        return False
    return isinstance(result, (bool, np.bool_)) and bool(result)

def is_blank_string(value: Any) -> bool:
    return isinstance(value, str) and not value.strip()

def is_null_or_blank(value: Any) -> bool:
    return is_null_like(value) or is_blank_string(value)

def normalize_value(value: Any) -> Any:
    """Map null/blank inputs onto the shared sentinel"""
    return NULL_VALUE if is_null_or_blank(value) else value

def to_python_scalar(value: Any) -> Any:
    """Unwrap numpy scalars so values serialize cleanly"""
    if is_null_like(value):
        return None
    if isinstance(value, np.generic):
        return value.item()
    return value

class ValueSet:
    """Membership test over normalized values.

    Hashable values go into a set; anything unhashable falls back to a linear
    equality scan.
    """

    def __init__(self, values: Iterable[Any] = ()):
        self._hashed = set()
        self._unhashed = []
        for value in values:
            self.add(value)

    def add(self, value: Any):
        value = normalize_value(value)
        try:
            self._hashed.add(value)
        except TypeError:
            if not any(value == existing for existing in self._unhashed):
                self._unhashed.append(value)

    def __contains__(self, value: Any) -> bool:
        value = normalize_value(value)
        try:
            if value in self._hashed:
                return True
        except TypeError:
            pass
        return any(value == existing for existing in self._unhashed)

    def __len__(self):
        return len(self._hashed) + len(self._unhashed)

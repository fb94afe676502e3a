"""Value coercion.

Turns raw, possibly textual input into typed values that can be compared
with column values, classifies raw values into one of four comparison
families, and orders paired range operands.
"""
import math
import re
import types
import typing
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional, Tuple

import numpy as np
import pandas as pd

from ..config import settings
from ..schemas.filter import ColumnDataType
from ..utils.logger import setup_logger
from ..utils.values import is_null_like, is_null_or_blank

logger = setup_logger("coercion", "logs/filter.log")

class TypeFlag(str, Enum):
    BOOLEAN = "boolean"
    DATETIME = "datetime"
    NUMERIC = "numeric"
    STRING = "string"

_NUMERIC_TEXT = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")
_THOUSANDS_TEXT = re.compile(r"^[+-]?\d{1,3}(,\d{3})+(\.\d+)?$")
_COLLECTION_TYPES = (list, tuple, set, frozenset, dict)

_DATA_TYPE_TARGETS = {
    ColumnDataType.STRING: str,
    ColumnDataType.NUMBER: Decimal,
    ColumnDataType.DATETIME: datetime,
    ColumnDataType.BOOLEAN: bool,
}

def is_boolean_value(value: Any) -> bool:
    return isinstance(value, (bool, np.bool_))

def is_numeric_value(value: Any) -> bool:
    """Numbers proper; booleans are excluded even though bool subclasses int"""
    if is_boolean_value(value) or is_null_like(value):
        return False
    return isinstance(value, (int, float, Decimal, np.number))

def is_datetime_value(value: Any) -> bool:
    if is_null_like(value):
        return False
    return isinstance(value, (datetime, date, np.datetime64))

def to_text(value: Any) -> str:
    """Text form used for case-insensitive comparisons"""
    if is_null_like(value):
        return ""
    if isinstance(value, Enum):
        return value.name
    return str(value)

def to_decimal(value: Any) -> Optional[Decimal]:
    if is_null_like(value) or is_boolean_value(value):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, (int, np.integer)):
        return Decimal(int(value))
    if isinstance(value, (float, np.floating)):
        number = float(value)
        if not math.isfinite(number):
            return None
        return Decimal(repr(number))
    if isinstance(value, str):
        text = value.strip()
        if _THOUSANDS_TEXT.match(text):
            text = text.replace(",", "")
        if not _NUMERIC_TEXT.match(text):
            return None
        try:
            result = Decimal(text)
        except InvalidOperation:
            return None
        return result if result.is_finite() else None
    return None

def to_datetime(value: Any) -> Optional[datetime]:
    if is_null_like(value):
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time())
    if isinstance(value, np.datetime64):
        return pd.Timestamp(value).to_pydatetime()
    if isinstance(value, str):
        text = value.strip()
        # Bare numbers and words like "today" are not dates
        if not any(ch.isdigit() for ch in text) or _NUMERIC_TEXT.match(text):
            return None
        try:
            parsed = pd.Timestamp(text)
        except (ValueError, TypeError, OverflowError):
            return None
        if pd.isna(parsed):
            return None
        return parsed.to_pydatetime()
    return None

def to_boolean(value: Any) -> Optional[bool]:
    if is_boolean_value(value):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in ("true", "false"):
            return text == "true"
    return None

def unwrap_optional(target: Any) -> Any:
    """Optional[X] -> X"""
    origin = typing.get_origin(target)
    if origin is typing.Union or (hasattr(types, "UnionType") and origin is types.UnionType):
        args = [arg for arg in typing.get_args(target) if arg is not type(None)]
        if len(args) == 1:
            return args[0]
    return target

def _resolve_target(target: Any) -> Any:
    target = unwrap_optional(target)
    if isinstance(target, ColumnDataType):
        return _DATA_TYPE_TARGETS.get(target, str)
    return target

def _is_subclass(target: Any, classes) -> bool:
    return isinstance(target, type) and issubclass(target, classes)

def type_flags_for(target: Any) -> TypeFlag:
    """Comparison family implied by a target type"""
    target = _resolve_target(target)
    if target is None:
        return TypeFlag.STRING
    if _is_subclass(target, (datetime, date, np.datetime64)):
        return TypeFlag.DATETIME
    if _is_subclass(target, (bool, np.bool_)):
        return TypeFlag.BOOLEAN
    if _is_subclass(target, (int, float, Decimal, np.number)):
        return TypeFlag.NUMERIC
    return TypeFlag.STRING

def infer_type_flags(raw: Any) -> TypeFlag:
    """Classify a raw value: DateTime, then Numeric, then Boolean, else String"""
    if to_datetime(raw) is not None:
        return TypeFlag.DATETIME
    if to_decimal(raw) is not None:
        return TypeFlag.NUMERIC
    if to_boolean(raw) is not None:
        return TypeFlag.BOOLEAN
    return TypeFlag.STRING

def is_no_value(raw: Any) -> bool:
    """Null, blank, or the reserved placeholder text for an unset value"""
    if is_null_or_blank(raw):
        return True
    return isinstance(raw, str) and raw.strip().lower() == settings.filters.NO_VALUE_TEXT.lower()

def _to_number(raw: Any, target: Any) -> Any:
    number = to_decimal(raw)
    if number is None:
        return None
    if target is None or _is_subclass(target, Decimal):
        return number
    if _is_subclass(target, (int, np.integer)):
        # Keep the exact decimal when the target cannot hold it
        if number == number.to_integral_value():
            return target(int(number))
        return number
    if _is_subclass(target, (float, np.floating)):
        return target(float(number))
    return number

def convert(raw: Any, target_type: Any = None) -> Any:
    """Convert a raw operand to the column's comparison type.

    Returns None for null/blank/placeholder input and for anything that
    fails to parse. Never raises.
    """
    if isinstance(raw, _COLLECTION_TYPES) or is_no_value(raw):
        return None

    try:
        if target_type is None:
            flag = infer_type_flags(raw)
            target = None
        else:
            target = _resolve_target(target_type)
            flag = type_flags_for(target)

        if flag == TypeFlag.DATETIME:
            return to_datetime(raw)
        if flag == TypeFlag.NUMERIC:
            return _to_number(raw, target)
        if flag == TypeFlag.BOOLEAN:
            if target is None:
                return to_boolean(raw)
            return bool(raw) if is_boolean_value(raw) else None
        if target is None or target is str:
            return to_text(raw).lower()
        return raw

    except Exception as e:
        logger.debug(f"Could not convert {raw!r} to {target_type}: {str(e)}")
        return None

def _compare(left: Any, right: Any) -> int:
    if left < right:
        return -1
    if left > right:
        return 1
    return 0

def compare_values(column_value: Any, comparison: Any, flag: TypeFlag) -> int:
    """Three-way compare a column value with a converted operand.

    Nulls sort first. Values are compared in the operand's type family when
    both sides convert; otherwise as case-insensitive text.
    """
    column_null = is_null_like(column_value)
    comparison_null = is_null_like(comparison)
    if column_null and comparison_null:
        return 0
    if column_null:
        return -1
    if comparison_null:
        return 1

    if flag == TypeFlag.DATETIME:
        left, right = to_datetime(column_value), to_datetime(comparison)
        if left is not None and right is not None:
            return _compare(left, right)
    elif flag == TypeFlag.NUMERIC:
        left, right = to_decimal(column_value), to_decimal(comparison)
        if left is not None and right is not None:
            return _compare(left, right)

    return _compare(to_text(column_value).lower(), to_text(comparison).lower())

def order_range(primary: Any, secondary: Any, flag: TypeFlag) -> Tuple[Any, Any]:
    """Return the pair with the smaller value first"""
    if is_null_like(primary) or is_null_like(secondary):
        return primary, secondary
    if flag not in (TypeFlag.NUMERIC, TypeFlag.DATETIME, TypeFlag.STRING):
        return primary, secondary
    try:
        if compare_values(primary, secondary, flag) > 0:
            return secondary, primary
    except TypeError as e:
        logger.debug(f"Range values {primary!r} and {secondary!r} are not comparable: {str(e)}")
    return primary, secondary

def python_type_for(data_type: ColumnDataType, sample_values=()) -> type:
    """Target type for a column, refined by the first typed sample value"""
    if data_type == ColumnDataType.NUMBER:
        for value in sample_values:
            if is_numeric_value(value):
                return type(value)
        return Decimal
    if data_type == ColumnDataType.ENUM:
        for value in sample_values:
            if isinstance(value, Enum):
                return type(value)
        return str
    return _DATA_TYPE_TARGETS.get(data_type, str)

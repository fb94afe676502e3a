from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Optional

from ..schemas.filter import DateInterval, SearchOperator
from ..utils.values import ValueSet, is_null_like
from .coercion import (
    TypeFlag,
    convert,
    infer_type_flags,
    is_no_value,
    order_range,
    to_boolean,
    to_datetime,
    to_decimal,
    to_text,
    type_flags_for,
)

_FLAG_TARGETS = {
    TypeFlag.DATETIME: datetime,
    TypeFlag.NUMERIC: Decimal,
    TypeFlag.STRING: str,
}

class SearchCondition:
    """Operator plus converted operands, ready to be compared with column values.

    Setting a raw operand or the target type re-runs conversion and range
    ordering, so ``primary_value <= secondary_value`` holds whenever both are
    set.
    """

    def __init__(
        self,
        operator: SearchOperator = SearchOperator.CONTAINS,
        primary: Any = None,
        secondary: Any = None,
        target_type: Any = None,
        count_value: Optional[int] = None,
        date_interval: Optional[DateInterval] = None,
        values: Iterable[Any] = (),
        dates: Iterable[Any] = (),
        date_intervals: Iterable[DateInterval] = ()
    ):
        self.operator = operator
        self.count_value = count_value
        self.date_interval = date_interval
        self.values = list(values)
        self.value_set = ValueSet(self.values)
        self.date_set = frozenset(
            parsed.date() for parsed in (to_datetime(raw) for raw in dates) if parsed is not None
        )
        intervals = list(date_intervals)
        if date_interval is not None and date_interval not in intervals:
            intervals.append(date_interval)
        self.date_intervals = tuple(intervals)
        self._target_type = target_type
        self._raw_primary = primary
        self._raw_secondary = secondary
        self._convert_values()

    @property
    def target_type(self) -> Any:
        return self._target_type

    @target_type.setter
    def target_type(self, value: Any):
        self._target_type = value
        self._convert_values()

    @property
    def raw_primary(self) -> Any:
        return self._raw_primary

    @raw_primary.setter
    def raw_primary(self, value: Any):
        self._raw_primary = value
        self._convert_values()

    @property
    def raw_secondary(self) -> Any:
        return self._raw_secondary

    @raw_secondary.setter
    def raw_secondary(self, value: Any):
        self._raw_secondary = value
        self._convert_values()

    @property
    def is_boolean(self) -> bool:
        return self.type_flag == TypeFlag.BOOLEAN

    @property
    def is_datetime(self) -> bool:
        return self.type_flag == TypeFlag.DATETIME

    @property
    def is_numeric(self) -> bool:
        return self.type_flag == TypeFlag.NUMERIC

    @property
    def is_string(self) -> bool:
        return self.type_flag == TypeFlag.STRING

    @property
    def top_count(self) -> Optional[int]:
        """Row count for TopN/BottomN, from the explicit count or the primary operand"""
        if self.count_value is not None:
            return self.count_value
        number = to_decimal(self._raw_primary)
        if number is None or number != number.to_integral_value():
            return None
        return int(number)

    def _determine_flag(self) -> TypeFlag:
        if self._target_type is not None:
            return type_flags_for(self._target_type)
        for raw in (self._raw_primary, self._raw_secondary):
            if not is_no_value(raw):
                return infer_type_flags(raw)
        return TypeFlag.STRING

    def _convert_by_flag(self, raw: Any) -> Any:
        if self._target_type is not None:
            return convert(raw, self._target_type)
        if self.type_flag == TypeFlag.BOOLEAN:
            return None if is_no_value(raw) else to_boolean(raw)
        return convert(raw, _FLAG_TARGETS[self.type_flag])

    def _convert_values(self):
        self.type_flag = self._determine_flag()
        self.string_value = "" if is_null_like(self._raw_primary) else to_text(self._raw_primary).lower()

        primary = self._convert_by_flag(self._raw_primary)
        secondary = self._convert_by_flag(self._raw_secondary)
        self.primary_value, self.secondary_value = order_range(primary, secondary, self.type_flag)

        # Numbers and dates may arrive as text; strings stay exact
        self.converted_set = None
        if self.values and self.type_flag in (TypeFlag.NUMERIC, TypeFlag.DATETIME):
            converted = (self._convert_by_flag(raw) for raw in self.values)
            self.converted_set = ValueSet(value for value in converted if value is not None)

    def contains_value(self, value: Any) -> bool:
        """List membership for IsAnyOf/IsNoneOf, comparing in the column's type when known"""
        if value in self.value_set:
            return True
        if not self.converted_set or is_null_like(value):
            return False
        converted = self._convert_by_flag(value)
        return converted is not None and converted in self.converted_set

    def __repr__(self):
        return (
            f"SearchCondition(operator={self.operator.value}, primary={self.primary_value!r}, "
            f"secondary={self.secondary_value!r}, flag={self.type_flag.value})"
        )

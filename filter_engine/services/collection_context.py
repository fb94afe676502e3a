from collections import Counter
from functools import cached_property
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd

from ..utils.logger import setup_logger
from ..utils.values import NULL_VALUE, ValueSet, normalize_value
from .coercion import is_numeric_value
from .value_cache import detect_data_type, sort_values

logger = setup_logger("collection_context", "logs/filter.log")

def _frequency_key(value: Any) -> Any:
    value = normalize_value(value)
    try:
        hash(value)
    except TypeError:
        return repr(value)
    return value

class CollectionContext:
    """Whole-column statistics shared by every row of one filter pass.

    Each aggregate is computed on first use and then reused; ``computations``
    records how often each one was built.
    """

    def __init__(self, values: Iterable[Any]):
        self.values: List[Any] = list(values)
        self.computations = Counter()
        self._top: Dict[int, ValueSet] = {}
        self._bottom: Dict[int, ValueSet] = {}

    def __len__(self) -> int:
        return len(self.values)

    @cached_property
    def average(self) -> Optional[float]:
        """Mean of the numeric values; None when there are none"""
        self.computations["average"] += 1
        numbers = pd.Series([float(value) for value in self.values if is_numeric_value(value)], dtype=float)
        if numbers.empty:
            return None
        return float(numbers.mean())

    @cached_property
    def ascending(self) -> List[Any]:
        """Non-null values in type-aware ascending order"""
        self.computations["ranking"] += 1
        present = [value for value in self.values if normalize_value(value) is not NULL_VALUE]
        return sort_values(present, detect_data_type(present))

    @cached_property
    def frequencies(self) -> Dict[Any, int]:
        self.computations["frequencies"] += 1
        keys = pd.Series([_frequency_key(value) for value in self.values], dtype=object)
        return {key: int(count) for key, count in keys.value_counts(sort=False).items()}

    def top_values(self, count: int) -> ValueSet:
        if count not in self._top:
            ranked = self.ascending
            self._top[count] = ValueSet(ranked[::-1][:count])
        return self._top[count]

    def bottom_values(self, count: int) -> ValueSet:
        if count not in self._bottom:
            self._bottom[count] = ValueSet(self.ascending[:count])
        return self._bottom[count]

    def count_of(self, value: Any) -> int:
        return self.frequencies.get(_frequency_key(value), 0)

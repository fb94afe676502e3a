from functools import cmp_to_key
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Sequence

import pandas as pd

from ..schemas.dataset import ColumnValueRequest, ColumnValueResponse, DatasetError
from ..utils.logger import setup_logger
from ..utils.values import NULL_VALUE, ValueSet, is_null_like, is_blank_string, to_python_scalar
from .coercion import to_text
from .value_cache import compare_for_sort, detect_data_type

logger = setup_logger("value_provider", "logs/cache.log")

class ValueProvider(Protocol):
    async def get_values(self, request: ColumnValueRequest) -> ColumnValueResponse:
        ...

def _aggregate(raw_values: Iterable[Any]) -> pd.Series:
    """Occurrence counts per distinct value, nulls folded into the sentinel"""
    series = pd.Series(list(raw_values), dtype=object)
    series = series.map(lambda value: NULL_VALUE if is_null_like(value) else value)
    return series.value_counts(sort=False, dropna=False)

def build_response(raw_values: Iterable[Any], request: ColumnValueRequest) -> ColumnValueResponse:
    """Filter, order and page the distinct values of one column"""
    counts = _aggregate(raw_values)
    excluded = ValueSet(request.exclude_values)
    search_text = (request.search_text or "").strip().lower()

    entries = []
    for value, count in counts.items():
        if value is NULL_VALUE:
            if not request.include_null:
                continue
        elif is_blank_string(value):
            if not request.include_empty:
                continue
        elif value in excluded:
            continue
        if search_text and search_text not in to_text(value).lower():
            continue
        entries.append((value, int(count)))

    data_type = detect_data_type(value for value, _ in entries)
    if request.group_by_frequency:
        entries.sort(
            key=cmp_to_key(
                lambda a, b: (b[1] - a[1]) or compare_for_sort(a[0], b[0], data_type)
            )
        )
    else:
        entries.sort(key=cmp_to_key(lambda a, b: compare_for_sort(a[0], b[0], data_type)))
    if not request.sort_ascending:
        entries.reverse()

    total_count = len(entries)
    end = total_count if request.take is None else request.skip + request.take
    page = entries[request.skip:end]

    return ColumnValueResponse(
        column_key=request.column_key,
        values=[NULL_VALUE if value is NULL_VALUE else to_python_scalar(value) for value, _ in page],
        counts=[count for _, count in page],
        total_count=total_count,
        has_more=end < total_count
    )

class RowValueProvider:
    """Serves column values out of plain row objects via per-column accessors"""

    def __init__(self, rows: Sequence[Any], accessors: Dict[str, Callable[[Any], Any]]):
        self.rows = rows
        self.accessors = accessors

    def _column_values(self, column_key: str) -> List[Any]:
        accessor = self.accessors.get(column_key)
        if accessor is None:
            raise DatasetError(f"Unknown column: {column_key}", "unknown_column")
        return [accessor(row) for row in self.rows]

    async def get_values(self, request: ColumnValueRequest) -> ColumnValueResponse:
        return build_response(self._column_values(request.column_key), request)

    async def get_total_count(self, column_key: str) -> int:
        return build_response(
            self._column_values(column_key), ColumnValueRequest(column_key=column_key)
        ).total_count

class DataFrameValueProvider(RowValueProvider):
    """Serves column values out of a pandas DataFrame"""

    def __init__(self, df: pd.DataFrame, source: Optional[str] = None):
        self.df = df
        self.source = source

    def _column_values(self, column_key: str) -> List[Any]:
        if column_key not in self.df.columns:
            raise DatasetError(f"Column {column_key} not found in dataset", "unknown_column")
        return self.df[column_key].tolist()

    async def get_values(self, request: ColumnValueRequest) -> ColumnValueResponse:
        response = await super().get_values(request)
        logger.debug(
            f"Served {len(response.values)} of {response.total_count} values "
            f"for column '{request.column_key}' from {self.source or 'dataframe'}"
        )
        return response

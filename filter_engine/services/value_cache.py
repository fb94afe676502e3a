import asyncio
import inspect
from datetime import datetime
from enum import Enum
from functools import cmp_to_key
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..config import settings
from ..schemas.dataset import ColumnValueRequest, ColumnValueResponse
from ..schemas.filter import ColumnDataType
from ..utils.logger import setup_logger
from ..utils.values import NULL_VALUE, normalize_value
from .coercion import (
    is_boolean_value,
    is_datetime_value,
    is_numeric_value,
    to_datetime,
    to_decimal,
    to_text,
)

logger = setup_logger("value_cache", "logs/cache.log")

def detect_data_type(values: Iterable[Any], sample_size: int = None) -> ColumnDataType:
    """Detect the column type from the first typed value in a sample.

    The null sentinel is skipped and does not count towards the sample.
    """
    sample_size = sample_size or settings.filters.TYPE_DETECTION_SAMPLE_SIZE
    sampled = 0
    for value in values:
        if value is NULL_VALUE:
            continue
        if sampled >= sample_size:
            break
        sampled += 1

        if is_datetime_value(value):
            return ColumnDataType.DATETIME
        if is_boolean_value(value):
            return ColumnDataType.BOOLEAN
        if is_numeric_value(value):
            return ColumnDataType.NUMBER
        if isinstance(value, Enum):
            return ColumnDataType.ENUM

    return ColumnDataType.STRING

def _three_way(left: Any, right: Any) -> int:
    return (left > right) - (left < right)

def _text_compare(left: Any, right: Any) -> int:
    return _three_way(to_text(left).lower(), to_text(right).lower())

def _converted_compare(left: Any, right: Any, converter: Callable) -> int:
    # Values that fail conversion sort before the ones that succeed
    converted_left, converted_right = converter(left), converter(right)
    if converted_left is None and converted_right is None:
        return _text_compare(left, right)
    if converted_left is None:
        return -1
    if converted_right is None:
        return 1
    try:
        return _three_way(converted_left, converted_right)
    except TypeError:
        return _text_compare(left, right)

def _count_key(value: Any) -> Any:
    # True == 1 and False == 0 must still count as separate values
    if is_boolean_value(value):
        return (bool, bool(value))
    return value

def _same_value(left: Any, right: Any) -> bool:
    return is_boolean_value(left) == is_boolean_value(right) and left == right

def compare_for_sort(left: Any, right: Any, data_type: ColumnDataType) -> int:
    """Type-aware ordering of cached values; the null sentinel always sorts first"""
    if left is NULL_VALUE or right is NULL_VALUE:
        return (right is NULL_VALUE) - (left is NULL_VALUE)

    if data_type == ColumnDataType.NUMBER:
        return _converted_compare(left, right, to_decimal)
    if data_type == ColumnDataType.DATETIME:
        return _converted_compare(left, right, to_datetime)
    if data_type == ColumnDataType.ENUM:
        if isinstance(left, Enum) and type(left) is type(right):
            if isinstance(left.value, int) and isinstance(right.value, int):
                return _three_way(left.value, right.value)
        return _text_compare(left, right)
    if data_type == ColumnDataType.BOOLEAN and is_boolean_value(left) and is_boolean_value(right):
        return _three_way(bool(left), bool(right))
    return _text_compare(left, right)

def sort_values(values: List[Any], data_type: ColumnDataType) -> List[Any]:
    return sorted(values, key=cmp_to_key(lambda a, b: compare_for_sort(a, b, data_type)))

class LoadToken:
    """Handle for one load request; invalidated when a newer token is issued"""

    def __init__(self, owner: "ColumnValueCache", generation: int):
        self._owner = owner
        self.generation = generation

    @property
    def is_cancelled(self) -> bool:
        return self._owner.generation != self.generation

    def __repr__(self):
        return f"LoadToken(generation={self.generation}, cancelled={self.is_cancelled})"

class ColumnValueCache:
    """Distinct values observed in one column.

    Values are null-normalized, deduplicated, counted, type-detected and
    sorted. The set is either supplied up front or pulled lazily from a
    loader, which may be a coroutine function.
    """

    def __init__(
        self,
        values: Optional[Iterable[Any]] = None,
        loader: Optional[Callable[[], Any]] = None,
        column_key: Optional[str] = None
    ):
        if values is not None and loader is not None:
            raise ValueError("Provide either values or a loader, not both")

        self.column_key = column_key
        self._loader = loader
        self._values: Optional[List[Any]] = None
        self._counts: Dict[Any, int] = {}
        self._unhashable_counts: List[List[Any]] = []
        self._data_type = ColumnDataType.STRING
        self._contains_null = False
        self._is_sorted = False
        self._generation = 0
        self._load_task: Optional[asyncio.Future] = None
        self.stats = {
            "hits": 0,
            "misses": 0,
            "loads": 0,
            "discarded_loads": 0,
            "last_loaded": None
        }

        if values is not None:
            self._materialize(values)

    @classmethod
    def from_provider(cls, provider, column_key: str, **request_options) -> "ColumnValueCache":
        """Lazy cache fed by a value provider's ``get_values``"""
        async def loader():
            request = ColumnValueRequest(column_key=column_key, **request_options)
            return await provider.get_values(request)

        return cls(loader=loader, column_key=column_key)

    # ------------------------------------------------------------------
    # State

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def is_loaded(self) -> bool:
        return self._values is not None

    @property
    def is_loading(self) -> bool:
        return self._load_task is not None and not self._load_task.done()

    @property
    def is_async(self) -> bool:
        return self._loader is not None and inspect.iscoroutinefunction(self._loader)

    @property
    def values(self) -> List[Any]:
        if self._values is None:
            self.stats["misses"] += 1
            self.load()
        else:
            self.stats["hits"] += 1
        return self._values

    @property
    def data_type(self) -> ColumnDataType:
        if self._values is None and self._loader is not None and not self.is_async:
            self.load()
        return self._data_type

    @property
    def contains_null(self) -> bool:
        return self._contains_null

    @property
    def is_sorted(self) -> bool:
        return self._is_sorted

    @property
    def value_counts(self) -> Dict[Any, int]:
        """Occurrence count per distinct value, in cache order"""
        return {value: self.count_of(value) for value in self.values}

    def count_of(self, value: Any) -> int:
        value = normalize_value(value)
        try:
            return self._counts.get(_count_key(value), 0)
        except TypeError:
            for entry in self._unhashable_counts:
                if entry[0] == value:
                    return entry[1]
            return 0

    def contains(self, value: Any) -> bool:
        return self.count_of(value) > 0

    def __contains__(self, value: Any) -> bool:
        return self.contains(value)

    def __len__(self) -> int:
        return len(self.values)

    def __iter__(self):
        return iter(self.values)

    # ------------------------------------------------------------------
    # Loading

    def new_load_token(self) -> LoadToken:
        """Issue a token for a new load; every earlier token becomes cancelled"""
        self._generation += 1
        return LoadToken(self, self._generation)

    def load(self) -> List[Any]:
        """Synchronously (re)load from the loader"""
        if self._loader is None:
            if self._values is None:
                self._materialize([])
            return self._values

        if self.is_async:
            raise RuntimeError(
                f"Column '{self.column_key}' has an asynchronous loader; await load_async() first"
            )

        token = self.new_load_token()
        result = self._loader()
        if inspect.isawaitable(result):
            if inspect.iscoroutine(result):
                result.close()
            raise RuntimeError(
                f"Column '{self.column_key}' loader returned an awaitable; await load_async() first"
            )
        if not token.is_cancelled:
            self._apply_result(result)
        return self._values

    async def load_async(self) -> bool:
        """Load from the loader, superseding any load still in flight.

        Returns False when this load was superseded by a newer one; its
        result is discarded.
        """
        token = self.new_load_token()
        if self.is_loading:
            logger.info(f"Cancelling in-flight load for column '{self.column_key}'")
            self._load_task.cancel()

        task = asyncio.ensure_future(self._invoke_loader())
        self._load_task = task
        try:
            result = await task
        except asyncio.CancelledError:
            if token.is_cancelled:
                self.stats["discarded_loads"] += 1
                return False
            raise

        if token.is_cancelled:
            logger.info(
                f"Discarding superseded load for column '{self.column_key}' "
                f"(generation {token.generation}, current {self._generation})"
            )
            self.stats["discarded_loads"] += 1
            return False

        self._apply_result(result)
        return True

    async def _invoke_loader(self) -> Any:
        if self._loader is None:
            return []
        result = self._loader()
        if inspect.isawaitable(result):
            result = await result
        return result

    def _apply_result(self, result: Any):
        if isinstance(result, ColumnValueResponse):
            self._materialize(result.values, result.counts or None)
        else:
            self._materialize(result if result is not None else [])

    def refresh(self) -> Optional[List[Any]]:
        """Drop the materialized set and reload it; async caches only drop"""
        self.invalidate()
        if self._loader is not None and self.is_async:
            return None
        return self.values

    def invalidate(self):
        self._values = None
        self._counts = {}
        self._unhashable_counts = []
        self._contains_null = False
        self._is_sorted = False

    def _materialize(self, raw_values: Iterable[Any], counts: Optional[List[int]] = None):
        values: List[Any] = []
        self._counts = {}
        self._unhashable_counts = []

        for index, raw in enumerate(raw_values):
            occurrences = counts[index] if counts is not None and index < len(counts) else 1
            value = normalize_value(raw)
            if self._increment(value, occurrences):
                continue
            self._store_new(value, occurrences)
            values.append(value)

        self._contains_null = self.count_of(NULL_VALUE) > 0
        self._data_type = detect_data_type(values)

        if len(values) <= settings.filters.SORT_MAX_ITEMS:
            values = sort_values(values, self._data_type)
            self._is_sorted = True
        else:
            logger.info(
                f"Column '{self.column_key}' has {len(values)} distinct values; keeping arrival order"
            )
            self._is_sorted = False

        self._values = values
        self.stats["loads"] += 1
        self.stats["last_loaded"] = datetime.now().isoformat()
        logger.debug(
            f"Loaded {len(values)} distinct values for column '{self.column_key}' "
            f"as {self._data_type.value}"
        )

    def _increment(self, value: Any, occurrences: int = 1) -> bool:
        """Bump the count of a known value; False if the value is new"""
        try:
            if _count_key(value) in self._counts:
                self._counts[_count_key(value)] += occurrences
                return True
            return False
        except TypeError:
            for entry in self._unhashable_counts:
                if entry[0] == value:
                    entry[1] += occurrences
                    return True
            return False

    def _store_new(self, value: Any, occurrences: int):
        try:
            self._counts[_count_key(value)] = occurrences
        except TypeError:
            self._unhashable_counts.append([value, occurrences])

    def _drop(self, value: Any):
        try:
            self._counts.pop(_count_key(value), None)
        except TypeError:
            self._unhashable_counts = [
                entry for entry in self._unhashable_counts if not entry[0] == value
            ]

    # ------------------------------------------------------------------
    # Incremental updates

    def add(self, value: Any) -> bool:
        """Record one occurrence of a value. Returns True if it was new."""
        values = self.values
        value = normalize_value(value)
        if self._increment(value):
            return False

        had_typed_values = any(existing is not NULL_VALUE for existing in values)
        self._store_new(value, 1)

        if value is NULL_VALUE:
            values.insert(0, value)
            self._contains_null = True
        elif self._is_sorted and len(values) <= settings.filters.INCREMENTAL_SORT_MAX_ITEMS:
            position = len(values)
            for index, existing in enumerate(values):
                if compare_for_sort(existing, value, self._data_type) > 0:
                    position = index
                    break
            values.insert(position, value)
        else:
            values.append(value)
            self._is_sorted = False

        if not had_typed_values and value is not NULL_VALUE:
            self._data_type = detect_data_type(values)
        return True

    def remove(self, value: Any, occurrences: Optional[int] = None) -> bool:
        """Remove a value by normalized equality.

        With ``occurrences`` only that many occurrences are discounted and the
        entry disappears once its count reaches zero.
        """
        values = self.values
        value = normalize_value(value)
        count = self.count_of(value)
        if count == 0:
            return False

        if occurrences is not None and count > occurrences:
            self._increment(value, -occurrences)
            return False

        self._drop(value)
        for index, existing in enumerate(values):
            if _same_value(existing, value):
                del values[index]
                break
        if value is NULL_VALUE:
            self._contains_null = False
        return True

class ColumnValueCacheManager:
    """Keyed registry of column caches"""

    def __init__(self):
        self._caches: Dict[str, ColumnValueCache] = {}

    def get(self, key: str) -> Optional[ColumnValueCache]:
        return self._caches.get(key)

    def get_or_create(
        self,
        key: str,
        values: Optional[Iterable[Any]] = None,
        loader: Optional[Callable[[], Any]] = None
    ) -> ColumnValueCache:
        cache = self._caches.get(key)
        if cache is None:
            cache = ColumnValueCache(values=values, loader=loader, column_key=key)
            self._caches[key] = cache
            logger.debug(f"Created value cache for '{key}'")
        return cache

    def set(self, key: str, cache: ColumnValueCache):
        self._caches[key] = cache

    def invalidate(self, key: str) -> bool:
        cache = self._caches.pop(key, None)
        if cache is None:
            return False
        cache.invalidate()
        return True

    def invalidate_prefix(self, prefix: str) -> int:
        keys = [key for key in self._caches if key.startswith(prefix)]
        for key in keys:
            self.invalidate(key)
        return len(keys)

    def clear(self):
        for cache in self._caches.values():
            cache.invalidate()
        self._caches.clear()

    def __contains__(self, key: str) -> bool:
        return key in self._caches

    def __len__(self) -> int:
        return len(self._caches)

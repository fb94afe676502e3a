import asyncio

import pandas as pd
import pytest

from filter_engine.config import settings
from filter_engine.schemas.dataset import ColumnValueRequest, DatasetError
from filter_engine.schemas.filter import ColumnDataType
from filter_engine.services.value_cache import ColumnValueCache, ColumnValueCacheManager, detect_data_type
from filter_engine.services.value_provider import DataFrameValueProvider, RowValueProvider, build_response
from filter_engine.utils.values import NULL_VALUE

def test_nulls_and_blanks_collapse_into_one_entry():
    cache = ColumnValueCache(values=[None, "", "  ", "A", "A"])

    assert cache.values == [NULL_VALUE, "A"]
    assert cache.count_of(None) == 3
    assert cache.count_of("A") == 2
    assert cache.contains_null
    assert "" in cache

def test_booleans_stay_apart_from_equal_integers():
    cache = ColumnValueCache(values=[True, 1, 0, False, 1])

    assert len(cache.values) == 4
    assert cache.count_of(True) == 1
    assert cache.count_of(1) == 2
    assert cache.count_of(False) == 1

    assert cache.remove(True)
    assert cache.count_of(True) == 0
    assert cache.count_of(1) == 2
    assert len(cache.values) == 3
    assert not any(value is True for value in cache.values)

def test_values_are_sorted_by_detected_type():
    numbers = ColumnValueCache(values=[10, 2, None, 33])
    assert numbers.data_type == ColumnDataType.NUMBER
    assert numbers.values == [NULL_VALUE, 2, 10, 33]

    words = ColumnValueCache(values=["b", "A", "c"])
    assert words.data_type == ColumnDataType.STRING
    assert words.values == ["A", "b", "c"]

def test_large_sets_keep_arrival_order(monkeypatch):
    monkeypatch.setattr(settings.filters, "SORT_MAX_ITEMS", 2)
    cache = ColumnValueCache(values=[3, 1, 2])

    assert cache.values == [3, 1, 2]
    assert not cache.is_sorted

def test_unhashable_values_are_counted():
    cache = ColumnValueCache(values=[[1, 2], [1, 2], [3]])

    assert len(cache) == 2
    assert cache.count_of([1, 2]) == 2
    assert cache.remove([3])
    assert cache.values == [[1, 2]]

def test_detect_data_type_skips_nulls():
    assert detect_data_type([NULL_VALUE, True]) == ColumnDataType.BOOLEAN
    assert detect_data_type([NULL_VALUE, NULL_VALUE]) == ColumnDataType.STRING
    assert detect_data_type([pd.Timestamp("2024-01-01")]) == ColumnDataType.DATETIME

def test_add_inserts_in_sorted_position():
    cache = ColumnValueCache(values=[1, 3])

    assert cache.add(2)
    assert cache.values == [1, 2, 3]
    assert not cache.add(2)
    assert cache.count_of(2) == 2

    assert cache.add(None)
    assert cache.values[0] is NULL_VALUE
    assert cache.contains_null

def test_add_to_empty_cache_detects_type():
    cache = ColumnValueCache(values=[])
    cache.add(5)
    assert cache.data_type == ColumnDataType.NUMBER

def test_remove_discounts_occurrences():
    cache = ColumnValueCache(values=[1, 2, 2, 3])

    assert not cache.remove(2, occurrences=1)
    assert cache.count_of(2) == 1
    assert cache.remove(2)
    assert cache.values == [1, 3]
    assert not cache.remove(42)

def test_values_and_loader_are_exclusive():
    with pytest.raises(ValueError):
        ColumnValueCache(values=[1], loader=lambda: [1])

def test_sync_loader_loads_on_access():
    calls = []

    def loader():
        calls.append(1)
        return [3, 1, 2]

    cache = ColumnValueCache(loader=loader, column_key="score")
    assert not cache.is_loaded
    assert cache.data_type == ColumnDataType.NUMBER
    assert cache.values == [1, 2, 3]
    assert len(calls) == 1
    assert cache.stats["hits"] == 1

    cache.refresh()
    assert len(calls) == 2

def test_async_cache_reports_string_until_loaded():
    async def loader():
        return [2, 1]

    cache = ColumnValueCache(loader=loader, column_key="score")
    assert cache.data_type == ColumnDataType.STRING
    with pytest.raises(RuntimeError):
        cache.values

    assert asyncio.run(cache.load_async())
    assert cache.data_type == ColumnDataType.NUMBER
    assert cache.values == [1, 2]

def test_new_token_cancels_older_tokens():
    cache = ColumnValueCache(values=[])
    first = cache.new_load_token()
    second = cache.new_load_token()

    assert first.is_cancelled
    assert not second.is_cancelled

def test_superseded_async_load_is_discarded():
    calls = []

    async def loader():
        calls.append(1)
        if len(calls) == 1:
            await asyncio.sleep(0.05)
            return ["stale"]
        return ["fresh"]

    cache = ColumnValueCache(loader=loader, column_key="city")

    async def run_loads():
        first = asyncio.ensure_future(cache.load_async())
        await asyncio.sleep(0.001)
        second = await cache.load_async()
        return await first, second

    assert asyncio.run(run_loads()) == (False, True)
    assert cache.values == ["fresh"]
    assert cache.stats["discarded_loads"] == 1

def test_manager_invalidates_by_prefix():
    manager = ColumnValueCacheManager()
    manager.get_or_create("a.csv::x", values=[1])
    manager.get_or_create("a.csv::y", values=[2])
    manager.get_or_create("b.csv::x", values=[3])

    assert manager.get_or_create("a.csv::x").values == [1]
    assert manager.invalidate_prefix("a.csv::") == 2
    assert len(manager) == 1
    assert "b.csv::x" in manager

def test_cache_from_dataframe_provider_keeps_counts():
    df = pd.DataFrame({"city": ["Paris", "Berlin", None, "Paris"]})
    cache = ColumnValueCache.from_provider(DataFrameValueProvider(df), "city")

    assert asyncio.run(cache.load_async())
    assert cache.values == [NULL_VALUE, "Berlin", "Paris"]
    assert cache.count_of("Paris") == 2

def test_build_response_filters_and_pages():
    raw = ["b", "a", "a", None, "", "c", "c", "c"]

    response = build_response(raw, ColumnValueRequest(column_key="letters", take=2))
    assert response.values == [NULL_VALUE, ""]
    assert response.total_count == 5
    assert response.has_more

    response = build_response(raw, ColumnValueRequest(
        column_key="letters", include_null=False, include_empty=False, exclude_values=["b"]
    ))
    assert response.values == ["a", "c"]
    assert response.counts == [2, 3]

    response = build_response(raw, ColumnValueRequest(
        column_key="letters", include_null=False, include_empty=False, group_by_frequency=True
    ))
    assert response.values == ["c", "a", "b"]

    response = build_response(raw, ColumnValueRequest(column_key="letters", search_text="C"))
    assert response.values == ["c"]

def test_row_provider_rejects_unknown_columns():
    rows = [{"name": "alice"}, {"name": "bob"}]
    provider = RowValueProvider(rows, {"name": lambda row: row["name"]})

    response = asyncio.run(provider.get_values(ColumnValueRequest(column_key="name")))
    assert response.values == ["alice", "bob"]
    assert asyncio.run(provider.get_total_count("name")) == 2

    with pytest.raises(DatasetError):
        asyncio.run(provider.get_values(ColumnValueRequest(column_key="age")))

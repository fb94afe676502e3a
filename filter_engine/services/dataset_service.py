import io
import math
import os
import asyncio
from typing import List, Any, Optional
import pandas as pd
from google.cloud import storage
from ..schemas.filter import FilterDefinition
from ..schemas.dataset import ColumnValueRequest, ColumnValueResponse, DatasetError, DatasetResponse
from ..schemas.optimizer import OptimizeResponse
from .filter_service import FilterService
from .optimizer import SelectionOptimizer, apply_to_controller, build_optimization_info
from .value_cache import ColumnValueCache, ColumnValueCacheManager
from .value_provider import DataFrameValueProvider
from ..utils.logger import setup_logger
from ..utils.values import NULL_VALUE, ValueSet
from ..config import settings

logger = setup_logger("dataset_service", "logs/dataset_service.log")

def _wire_forms(value: Any) -> List[str]:
    """Text forms a value may come back as after a JSON round trip"""
    forms = [str(value)]
    if hasattr(value, "isoformat"):
        forms.append(value.isoformat())
        if getattr(value, "hour", 0) == getattr(value, "minute", 0) == getattr(value, "second", 0) == 0:
            forms.append(value.strftime("%Y-%m-%d"))
    return forms

def match_selection(values: List[Any], selected: List[Any]) -> List[Any]:
    """Column values picked by a client selection; ``None`` stands for null"""
    lookup = ValueSet(selected)
    texts = {item for item in selected if isinstance(item, str)}
    return [
        value for value in values
        if value in lookup or (value is not NULL_VALUE and any(form in texts for form in _wire_forms(value)))
    ]

class DatasetService:
    def __init__(self):
        self.filter_service = FilterService()
        self.value_caches = ColumnValueCacheManager()
        self._storage_client = None
        self._dataset_df = None
        self._current_dataset_path = None

    @property
    def storage_client(self) -> storage.Client:
        if self._storage_client is None:
            try:
                self._storage_client = storage.Client()
                logger.info("Successfully initialized Google Cloud Storage client")
            except Exception as e:
                logger.error(f"Failed to initialize GCS client: {str(e)}")
                raise DatasetError(f"Google Cloud Storage is not available: {str(e)}", "storage_unavailable")
        return self._storage_client

    def _parse_gcs_path(self, gcs_path: str) -> tuple[str, str]:
        """Parse Google Cloud Storage path into bucket and blob path"""
        if not gcs_path.startswith("gs://"):
            raise DatasetError("Invalid GCS path format", "invalid_path")

        path = gcs_path.replace("gs://", "")
        bucket_name = path.split("/")[0]
        blob_path = "/".join(path.split("/")[1:])
        return bucket_name, blob_path

    def _read_frame(self, source: Any, file_path: str) -> pd.DataFrame:
        if file_path.endswith('.csv'):
            return pd.read_csv(source)
        elif file_path.endswith('.jsonl'):
            return pd.read_json(source, lines=True)
        elif file_path.endswith('.json'):
            return pd.read_json(source)
        elif file_path.endswith(('.xls', '.xlsx')):
            return pd.read_excel(source)
        else:
            raise DatasetError(f"Unsupported file format: {file_path}", "unsupported_format")

    async def _load_file(self, file_path: str) -> pd.DataFrame:
        """
        Load a dataset file into a pandas DataFrame from local filesystem or Google Cloud Storage.

        Args:
            file_path (str): Path to the dataset file (local path or gs:// URL)

        Returns:
            pd.DataFrame: Loaded dataset
        """
        if file_path.startswith('gs://'):
            return await self._load_from_gcs(file_path)
        else:
            return await self._load_from_local(file_path)

    async def _load_from_gcs(self, gcs_path: str) -> pd.DataFrame:
        """Load file from Google Cloud Storage"""
        try:
            bucket_name, blob_name = self._parse_gcs_path(gcs_path)
            bucket = self.storage_client.bucket(bucket_name)
            blob = bucket.blob(blob_name)

            # Download content to memory
            content = await asyncio.to_thread(blob.download_as_bytes, timeout=settings.GCS_TIMEOUT)
            return self._read_frame(io.BytesIO(content), gcs_path)

        except DatasetError:
            raise
        except Exception as e:
            raise DatasetError(f"Error reading from GCS: {str(e)}", "read_failed")

    async def _load_from_local(self, file_path: str) -> pd.DataFrame:
        """Load file from local filesystem"""
        if not os.path.exists(file_path):
            raise DatasetError(f"File not found: {file_path}", "file_not_found")

        try:
            return self._read_frame(file_path, file_path)
        except DatasetError:
            raise
        except Exception as e:
            raise DatasetError(f"Error reading file: {str(e)}", "read_failed")

    async def get_dataframe(self, file_path: str) -> pd.DataFrame:
        """Current dataset, reloaded when a different file is requested"""
        if self._current_dataset_path != file_path:
            df = await self._load_file(file_path)
            if self._current_dataset_path is not None:
                self.value_caches.invalidate_prefix(f"{self._current_dataset_path}::")
            self._dataset_df = df
            self._current_dataset_path = file_path
            logger.info(f"Loaded {len(df)} rows from {file_path}")
        return self._dataset_df

    def get_value_cache(self, file_path: str, df: pd.DataFrame, column: str) -> ColumnValueCache:
        """Lazy distinct-value cache for one column of the current dataset"""
        if column not in df.columns:
            raise DatasetError(f"Column {column} not found in dataset", "unknown_column")

        key = f"{file_path}::{column}"
        cache = self.value_caches.get(key)
        if cache is None:
            provider = DataFrameValueProvider(df, source=file_path)
            cache = ColumnValueCache.from_provider(provider, column)
            self.value_caches.set(key, cache)
        return cache

    async def load_dataset(
        self,
        file_path: str,
        page: int = 1,
        page_size: int = 10,
        filters: Optional[List[FilterDefinition]] = None
    ) -> DatasetResponse:
        """Load dataset with pagination and filtering"""
        try:
            df = await self.get_dataframe(file_path)
            filtered_df = self.filter_service.apply_filters(df, filters or [])

            # Calculate pagination
            total_rows = len(filtered_df)
            total_pages = math.ceil(total_rows / page_size)

            # Validate page number
            if total_pages and page > total_pages:
                raise DatasetError(f"Page {page} exceeds total pages {total_pages}", "invalid_page")

            # Calculate slice indices
            start_idx = (page - 1) * page_size
            end_idx = min(start_idx + page_size, total_rows)

            # Get page data; NaN and NaT do not survive JSON
            page_data = filtered_df.iloc[start_idx:end_idx].astype(object)
            page_data = page_data.where(pd.notna(page_data), None)

            columns_and_filters = self.filter_service.get_filterable_columns(df)

            return DatasetResponse(
                total_rows=total_rows,
                total_pages=total_pages,
                current_page=page,
                page_size=page_size,
                columns=columns_and_filters["columns"],
                filters=columns_and_filters["filters"],
                active_filters=self.filter_service.describe_filters(df, filters),
                data=page_data.to_dict('records')
            )

        except DatasetError as de:
            logger.warning(f"Dataset error: {de.message}")
            raise
        except Exception as e:
            logger.error(f"Error loading dataset: {str(e)}", exc_info=True)
            raise

    async def get_column_values(
        self,
        file_path: str,
        column: str,
        skip: int = 0,
        take: int = 100,
        search_text: Optional[str] = None,
        group_by_frequency: bool = False
    ) -> ColumnValueResponse:
        """Distinct values of one column, paged, with occurrence counts"""
        df = await self.get_dataframe(file_path)
        cache = self.get_value_cache(file_path, df, column)
        is_from_cache = cache.is_loaded

        provider = DataFrameValueProvider(df, source=file_path)
        response = await provider.get_values(ColumnValueRequest(
            column_key=column,
            skip=skip,
            take=min(take, settings.MAX_COLUMN_VALUES),
            search_text=search_text,
            group_by_frequency=group_by_frequency
        ))
        response.is_from_cache = is_from_cache
        return response

    async def optimize_selection(
        self,
        file_path: str,
        column: str,
        selected_values: List[Any],
        data_type=None
    ) -> OptimizeResponse:
        """Smallest rule tree that selects exactly the chosen values of a column"""
        df = await self.get_dataframe(file_path)
        cache = self.get_value_cache(file_path, df, column)
        if not cache.is_loaded:
            await cache.load_async()

        controller = self.filter_service.build_controller(df[column], cache=cache)
        if data_type is not None:
            controller.column_data_type = data_type
        values = cache.values
        selected = match_selection(values, selected_values)

        optimizer = SelectionOptimizer(controller.column_data_type, controller.target_type)
        selection = optimizer.prepare(values, selected)
        analysis, rules = optimizer.solve(selection)
        apply_to_controller(controller, rules)

        return OptimizeResponse(
            column=column,
            analysis=analysis,
            rules=rules,
            info=build_optimization_info(analysis, rules),
            filter=controller.to_definition(),
            display_text=controller.display_text()
        )

from typing import List, Dict, Any, Optional
import pandas as pd
from ..config import settings
from ..schemas.dataset import ColumnInfo, FilterMetadata
from ..schemas.filter import ColumnDataType, FilterDefinition, InvalidSearchError
from ..utils.logger import setup_logger
from ..utils.values import is_null_or_blank, to_python_scalar
from .collection_context import CollectionContext
from .coercion import to_datetime
from .operator_registry import OperatorRegistry, operator_registry
from .rule_tree import SearchTemplateController
from .value_cache import ColumnValueCache, detect_data_type

logger = setup_logger("filter_service", "logs/filter.log")

class FilterService:
    def __init__(self, registry: Optional[OperatorRegistry] = None):
        self.registry = registry or operator_registry
        self.dtype_checks = [
            (pd.api.types.is_bool_dtype, ColumnDataType.BOOLEAN),
            (pd.api.types.is_numeric_dtype, ColumnDataType.NUMBER),
            (pd.api.types.is_datetime64_any_dtype, ColumnDataType.DATETIME),
        ]

    def detect_column_type(self, series: pd.Series) -> ColumnDataType:
        """Detect the data type of a column"""
        try:
            non_null = series.dropna()
            if len(non_null) == 0:
                return ColumnDataType.STRING

            # bool before numeric: pandas treats bool columns as numeric
            for check, data_type in self.dtype_checks:
                if check(series):
                    return data_type

            if isinstance(series.dtype, pd.CategoricalDtype):
                return detect_data_type(non_null.astype(object).tolist())

            # Object columns: typed python values first, then date strings
            sample = non_null.head(settings.filters.TYPE_DETECTION_SAMPLE_SIZE).tolist()
            detected = detect_data_type(sample)
            if detected != ColumnDataType.STRING:
                return detected

            texts = [value for value in sample if isinstance(value, str) and value.strip()]
            if texts and all(to_datetime(value) is not None for value in texts):
                return ColumnDataType.DATETIME

            return ColumnDataType.STRING

        except Exception as e:
            logger.error(f"Error detecting column type: {str(e)}")
            return ColumnDataType.STRING

    def build_controller(
        self,
        series: pd.Series,
        definition: Optional[FilterDefinition] = None,
        cache: Optional[ColumnValueCache] = None
    ) -> SearchTemplateController:
        """Controller for one column, seeded with the column's values"""
        if definition is not None and definition.data_type is not None:
            data_type = definition.data_type
        else:
            data_type = self.detect_column_type(series)

        if cache is None:
            cache = ColumnValueCache(values=series.tolist(), column_key=str(series.name))

        controller = SearchTemplateController(
            column_name=str(series.name),
            cache=cache,
            data_type=data_type,
            registry=self.registry
        )
        if definition is not None:
            controller.apply_definition(definition)
        return controller

    def apply_filter_to_series(self, series: pd.Series, controller: SearchTemplateController) -> pd.Series:
        """Apply a controller to a pandas Series and return boolean mask"""
        try:
            if not controller.is_active:
                return pd.Series(True, index=series.index)

            values = series.tolist()
            context = None
            if controller.requires_collection_context:
                context = CollectionContext(values)

            expression = controller.filter_expression
            return pd.Series([expression(value, context) for value in values], index=series.index, dtype=bool)

        except Exception as e:
            logger.error(f"Error applying filter to series: {str(e)}")
            return pd.Series(False, index=series.index)

    def apply_filters(self, df: pd.DataFrame, filters: List[FilterDefinition]) -> pd.DataFrame:
        """Apply per-column rule trees to the dataframe; rows must pass every column"""
        try:
            if not filters:
                return df

            mask = pd.Series(True, index=df.index)
            for definition in filters:
                if definition.column not in df.columns:
                    raise InvalidSearchError(f"Column {definition.column} not found in dataset", "unknown_column")

                controller = self.build_controller(df[definition.column], definition)
                logger.info(
                    f"Applying filter for column {definition.column} of type "
                    f"{controller.column_data_type.value}: {controller.display_text()}"
                )
                # Statistics such as the average are taken over the full column
                mask &= self.apply_filter_to_series(df[definition.column], controller)
                logger.info(f"After filter on {definition.column}: {int(mask.sum())} rows")

            return df[mask]

        except InvalidSearchError:
            raise
        except Exception as e:
            logger.error(f"Error applying filters: {str(e)}")
            raise

    def describe_filters(self, df: pd.DataFrame, filters: Optional[List[FilterDefinition]]) -> List[str]:
        """Display text of every active filter, prefixed with its column"""
        descriptions = []
        for definition in filters or []:
            if definition.column not in df.columns:
                continue
            controller = self.build_controller(df[definition.column], definition)
            if controller.is_active:
                descriptions.append(f"{definition.column}: {controller.display_text()}")
        return descriptions

    def get_filterable_columns(self, df: pd.DataFrame) -> Dict[str, List]:
        """Get columns and their filter metadata"""
        try:
            columns = []
            filters = []

            for column in df.columns:
                series = df[column]
                data_type = self.detect_column_type(series)
                contains_null = bool(series.map(is_null_or_blank).any())
                total_unique = int(series.nunique(dropna=True))

                columns.append(ColumnInfo(
                    name=str(column),
                    type=data_type,
                    dtype=str(series.dtype),
                    contains_null=contains_null,
                    distinct_count=total_unique
                ))

                # Get unique values, limit to 50 values
                unique_vals = series.dropna().drop_duplicates().head(50).tolist()
                unique_values = [to_python_scalar(value) for value in unique_vals]

                filters.append(FilterMetadata(
                    column=str(column),
                    type=data_type,
                    unique_values=unique_values,
                    total_unique=total_unique,
                    operators=self.registry.describe_for(data_type, is_nullable=contains_null)
                ))

            return {
                "columns": columns,
                "filters": filters
            }

        except Exception as e:
            logger.error(f"Error getting filterable columns: {str(e)}")
            raise

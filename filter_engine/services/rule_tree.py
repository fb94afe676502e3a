from typing import Any, Callable, Dict, Iterable, List, Optional

from ..config import settings
from ..schemas.filter import (
    ColumnDataType,
    DateInterval,
    FilterChip,
    FilterDefinition,
    InvalidSearchError,
    LogicalConnector,
    SearchGroupModel,
    SearchOperator,
    SearchTemplateModel,
)
from ..utils.logger import setup_logger
from .coercion import python_type_for
from .collection_context import CollectionContext
from .display import filter_components, filter_display_text
from .evaluators import CompiledPredicate, compile_predicate
from .operator_registry import OperandArity, OperatorRegistry, arity_of, operator_registry
from .search_condition import SearchCondition
from .validation import SearchTemplateValidator, ValidationResult
from .value_cache import ColumnValueCache

logger = setup_logger("rule_tree", "logs/filter.log")

class SearchTemplate:
    """One rule: an operator, its operands and the connector to the previous rule"""

    def __init__(
        self,
        data_type: ColumnDataType = ColumnDataType.STRING,
        operator: Optional[SearchOperator] = None,
        registry: Optional[OperatorRegistry] = None,
        value_source: Optional[ColumnValueCache] = None
    ):
        self.registry = registry or operator_registry
        self.validator = SearchTemplateValidator(self.registry)
        self.value_source = value_source
        self._data_type = data_type
        self._operator = self.registry.default_operator_for(data_type)
        self.connector = LogicalConnector.OR
        self.on_change: Optional[Callable[[], None]] = None
        self.reset()
        if operator is not None:
            self.operator = operator

    def reset(self):
        """Clear operands; the operator stays"""
        self._selected_value = None
        self._selected_secondary_value = None
        self.selected_values: List[Any] = []
        self.selected_dates: List[Any] = []
        self.date_intervals: Dict[DateInterval, bool] = {interval: False for interval in DateInterval}
        self._changed()

    def _changed(self):
        if self.on_change is not None:
            self.on_change()

    @property
    def operator(self) -> SearchOperator:
        return self._operator

    @operator.setter
    def operator(self, operator: SearchOperator):
        operator = SearchOperator(operator)
        result = self.validator.validate_operator(operator, self._data_type)
        if not result:
            raise InvalidSearchError(result.error_message, "invalid_operator")
        self._operator = operator
        self._changed()

    @property
    def data_type(self) -> ColumnDataType:
        return self._data_type

    @data_type.setter
    def data_type(self, data_type: ColumnDataType):
        self._data_type = data_type
        if not self.registry.is_valid(self._operator, data_type):
            fallback = self.registry.default_operator_for(data_type)
            logger.info(
                f"Operator {self._operator.value} is not valid for {data_type.value}; using {fallback.value}"
            )
            self._operator = fallback
        self._changed()

    @property
    def selected_value(self) -> Any:
        return self._selected_value

    @selected_value.setter
    def selected_value(self, value: Any):
        self._selected_value = value
        self._changed()

    @property
    def selected_secondary_value(self) -> Any:
        return self._selected_secondary_value

    @selected_secondary_value.setter
    def selected_secondary_value(self, value: Any):
        self._selected_secondary_value = value
        self._changed()

    @property
    def arity(self) -> OperandArity:
        return arity_of(self._operator)

    @property
    def available_values(self) -> List[Any]:
        """Distinct column values a host can offer for list operators"""
        if self.value_source is None:
            return []
        if self.value_source.is_async and not self.value_source.is_loaded:
            return []
        return self.value_source.values

    @property
    def selected_date_intervals(self) -> List[DateInterval]:
        return [interval for interval, selected in self.date_intervals.items() if selected]

    def select_interval(self, interval: DateInterval, selected: bool = True):
        self.date_intervals[DateInterval(interval)] = selected
        self._changed()

    def _collection_operands(self) -> List[Any]:
        if self._operator in (SearchOperator.IS_ANY_OF, SearchOperator.IS_NONE_OF):
            return self.selected_values
        if self._operator == SearchOperator.IS_ON_ANY_OF_DATES:
            return self.selected_dates
        if self._operator == SearchOperator.DATE_INTERVAL:
            return self.selected_date_intervals
        return []

    def validate(self) -> ValidationResult:
        result = self.validator.validate_operator(self._operator, self._data_type)
        if not result:
            return result
        return self.validator.validate_search_condition(
            self._operator,
            self._selected_value,
            self._selected_secondary_value,
            self._collection_operands()
        )

    @property
    def is_valid(self) -> bool:
        return self.validate().is_valid

    @property
    def has_criteria(self) -> bool:
        """True when the operands are complete enough to filter anything"""
        if self.arity == OperandArity.NONE:
            return True
        return self.validator.validate_search_condition(
            self._operator,
            self._selected_value,
            self._selected_secondary_value,
            self._collection_operands()
        ).is_valid

    def build_condition(self, target_type: Any = None) -> SearchCondition:
        return SearchCondition(
            operator=self._operator,
            primary=self._selected_value,
            secondary=self._selected_secondary_value,
            target_type=target_type,
            values=self.selected_values,
            dates=self.selected_dates,
            date_intervals=self.selected_date_intervals
        )

    def to_model(self) -> SearchTemplateModel:
        return SearchTemplateModel(
            operator=self._operator,
            value=self._selected_value,
            secondary_value=self._selected_secondary_value,
            values=list(self.selected_values),
            dates=list(self.selected_dates),
            date_intervals=self.selected_date_intervals,
            connector=self.connector
        )

    def apply_model(self, model: SearchTemplateModel):
        self.operator = model.operator
        self.connector = model.connector
        self._selected_value = model.value
        self._selected_secondary_value = model.secondary_value
        self.selected_values = list(model.values)
        self.selected_dates = list(model.dates)
        self.date_intervals = {interval: interval in model.date_intervals for interval in DateInterval}
        self._changed()

        if self._operator in (SearchOperator.TOP_N, SearchOperator.BOTTOM_N) and model.value is not None:
            result = self.validate()
            if not result:
                raise InvalidSearchError(result.error_message, "invalid_count")

    def __repr__(self):
        return (
            f"SearchTemplate(operator={self._operator.value}, value={self._selected_value!r}, "
            f"secondary={self._selected_secondary_value!r}, connector={self.connector.value})"
        )

class SearchTemplateGroup:
    """Templates folded left to right by each template's own connector"""

    def __init__(self, connector: LogicalConnector = LogicalConnector.AND):
        self.connector = connector
        self.templates: List[SearchTemplate] = []

    def index_of(self, template: SearchTemplate) -> int:
        for index, existing in enumerate(self.templates):
            if existing is template:
                return index
        return -1

    def __contains__(self, template: SearchTemplate) -> bool:
        return self.index_of(template) >= 0

    def __len__(self) -> int:
        return len(self.templates)

    def __iter__(self):
        return iter(self.templates)

    def __repr__(self):
        return f"SearchTemplateGroup(connector={self.connector.value}, templates={len(self.templates)})"

class SearchTemplateController:
    """All rule groups for one column plus the column's value cache.

    Structural edits and template setters mark the compiled predicate stale;
    in-place edits of a template's value lists need an explicit
    ``update_filter_expression()``.
    """

    def __init__(
        self,
        column_name: Optional[str] = None,
        values: Optional[Iterable[Any]] = None,
        loader: Optional[Callable[[], Any]] = None,
        cache: Optional[ColumnValueCache] = None,
        data_type: Optional[ColumnDataType] = None,
        accessor: Optional[Callable[[Any], Any]] = None,
        allow_multiple_groups: Optional[bool] = None,
        registry: Optional[OperatorRegistry] = None
    ):
        self.column_name = column_name
        self.cache = cache if cache is not None else ColumnValueCache(values=values, loader=loader, column_key=column_name)
        self.accessor = accessor
        self.registry = registry or operator_registry
        self.validator = SearchTemplateValidator(self.registry)
        self.allow_multiple_groups = (
            settings.filters.ALLOW_MULTIPLE_GROUPS if allow_multiple_groups is None else allow_multiple_groups
        )
        self._data_type_override = data_type
        self._filter_expression: Optional[CompiledPredicate] = None
        self.has_custom_expression = False
        self.groups: List[SearchTemplateGroup] = []
        self.groups.append(self._new_group())

    # ------------------------------------------------------------------
    # Column type

    def _cache_ready(self) -> bool:
        return self.cache.is_loaded or not self.cache.is_async

    @property
    def column_data_type(self) -> ColumnDataType:
        if self._data_type_override is not None:
            return self._data_type_override
        if not self._cache_ready():
            return ColumnDataType.STRING
        return self.cache.data_type

    @column_data_type.setter
    def column_data_type(self, data_type: Optional[ColumnDataType]):
        self._data_type_override = data_type
        self._sync_data_type()

    @property
    def target_type(self) -> Any:
        samples = self.cache.values if self._cache_ready() else []
        return python_type_for(self.column_data_type, samples)

    def _sync_data_type(self):
        data_type = self.column_data_type
        for template in self.templates:
            if template.data_type != data_type:
                template.data_type = data_type
        self._mark_dirty()

    async def load_values_async(self) -> bool:
        """Load the value cache and adopt the detected column type"""
        loaded = await self.cache.load_async()
        if loaded:
            self._sync_data_type()
        return loaded

    def refresh_values(self):
        self.cache.refresh()
        if self._cache_ready():
            self._sync_data_type()

    # ------------------------------------------------------------------
    # Structure

    @property
    def templates(self) -> List[SearchTemplate]:
        return [template for group in self.groups for template in group.templates]

    def _mark_dirty(self):
        self._filter_expression = None

    def _new_template(self, operator: Optional[SearchOperator] = None) -> SearchTemplate:
        template = SearchTemplate(
            data_type=self.column_data_type,
            operator=operator,
            registry=self.registry,
            value_source=self.cache
        )
        template.on_change = self._mark_dirty
        return template

    def _new_group(self, connector: LogicalConnector = LogicalConnector.AND) -> SearchTemplateGroup:
        group = SearchTemplateGroup(connector)
        group.templates.append(self._new_template())
        return group

    def _group_index(self, group: SearchTemplateGroup) -> int:
        for index, existing in enumerate(self.groups):
            if existing is group:
                return index
        return -1

    def group_of(self, template: SearchTemplate) -> Optional[SearchTemplateGroup]:
        for group in self.groups:
            if template in group:
                return group
        return None

    def add_group(
        self,
        reference: Optional[SearchTemplateGroup] = None,
        connector: LogicalConnector = LogicalConnector.AND
    ) -> SearchTemplateGroup:
        result = self.validator.validate_add_group(self.groups, self.allow_multiple_groups)
        if not result:
            raise InvalidSearchError(result.error_message, "multiple_groups_not_allowed")

        group = self._new_group(connector)
        if reference is None:
            self.groups.append(group)
        else:
            index = self._group_index(reference)
            if index < 0:
                raise InvalidSearchError("Reference group does not belong to this controller", "unknown_group")
            self.groups.insert(index + 1, group)

        self._mark_dirty()
        return group

    def add_template(
        self,
        group: Optional[SearchTemplateGroup] = None,
        reference: Optional[SearchTemplate] = None,
        operator: Optional[SearchOperator] = None,
        connector: LogicalConnector = LogicalConnector.OR
    ) -> SearchTemplate:
        if group is None:
            group = self.group_of(reference) if reference is not None else self.groups[-1]
        if group is None or self._group_index(group) < 0:
            raise InvalidSearchError("Group does not belong to this controller", "unknown_group")

        template = self._new_template(operator)
        template.connector = connector
        if reference is None:
            group.templates.append(template)
        else:
            index = group.index_of(reference)
            if index < 0:
                raise InvalidSearchError("Reference template is not in the group", "unknown_template")
            group.templates.insert(index + 1, template)

        self._mark_dirty()
        return template

    def remove_template(self, template: SearchTemplate):
        """Remove a template; an emptied group goes too, but the last one is reset"""
        result = self.validator.validate_remove_template(self.groups, template)
        if not result:
            raise InvalidSearchError(result.error_message, "unknown_template")

        group = self.group_of(template)
        if len(group.templates) > 1:
            del group.templates[group.index_of(template)]
        elif len(self.groups) > 1:
            del self.groups[self._group_index(group)]
        else:
            group.templates = [self._new_template()]

        self._mark_dirty()

    def remove_group(self, group: SearchTemplateGroup):
        result = self.validator.validate_remove_group(self.groups, group)
        if not result:
            raise InvalidSearchError(result.error_message, "unknown_group")

        if len(self.groups) > 1:
            del self.groups[self._group_index(group)]
        else:
            group.templates = [self._new_template()]
            group.connector = LogicalConnector.AND
        self._mark_dirty()

    def move_template(
        self,
        template: SearchTemplate,
        target_group: SearchTemplateGroup,
        target_index: Optional[int] = None
    ):
        source_group = self.group_of(template)
        if target_index is None:
            target_index = len(target_group.templates)

        result = self.validator.validate_move_template(
            self.groups, source_group, target_group, template, target_index
        )
        if not result:
            raise InvalidSearchError(result.error_message, "invalid_move")

        source_index = source_group.index_of(template)
        del source_group.templates[source_index]
        if source_group is target_group and source_index < target_index:
            target_index -= 1
        target_group.templates.insert(target_index, template)

        if not source_group.templates:
            del self.groups[self._group_index(source_group)]

        self._mark_dirty()

    def clear(self):
        self.groups = [self._new_group()]
        self._mark_dirty()
        self.has_custom_expression = False

    # ------------------------------------------------------------------
    # Evaluation

    def update_filter_expression(self) -> CompiledPredicate:
        self._filter_expression = compile_predicate(self)
        self.has_custom_expression = self._filter_expression.is_active
        logger.debug(
            f"Compiled filter for column '{self.column_name}': "
            f"{len(self._filter_expression.groups)} active group(s)"
        )
        return self._filter_expression

    @property
    def filter_expression(self) -> CompiledPredicate:
        if self._filter_expression is None:
            return self.update_filter_expression()
        return self._filter_expression

    @property
    def is_active(self) -> bool:
        return self.filter_expression.is_active

    @property
    def requires_collection_context(self) -> bool:
        return self.filter_expression.requires_context

    def create_collection_context(self, values: Iterable[Any]) -> CollectionContext:
        return CollectionContext(values)

    def evaluate(self, value: Any, context: Optional[CollectionContext] = None) -> bool:
        return self.filter_expression(value, context)

    def filter_values(self, values: Iterable[Any]) -> List[bool]:
        """Match flags for a whole column; statistics are gathered once"""
        return self.filter_expression.evaluate_many(values)

    def filter_rows(self, rows: Iterable[Any], accessor: Optional[Callable[[Any], Any]] = None) -> List[Any]:
        accessor = accessor or self.accessor
        if accessor is None:
            raise InvalidSearchError(
                f"No value accessor configured for column '{self.column_name}'", "missing_accessor"
            )
        rows = list(rows)
        flags = self.filter_values(accessor(row) for row in rows)
        return [row for row, keep in zip(rows, flags) if keep]

    # ------------------------------------------------------------------
    # Serialization

    def to_definition(self) -> FilterDefinition:
        return FilterDefinition(
            column=self.column_name or "",
            data_type=self._data_type_override,
            groups=[
                SearchGroupModel(
                    connector=group.connector,
                    templates=[template.to_model() for template in group.templates]
                )
                for group in self.groups
            ]
        )

    def apply_definition(self, definition: FilterDefinition):
        if definition.data_type is not None:
            self._data_type_override = definition.data_type
        if not definition.groups:
            self.clear()
            return
        if len(definition.groups) > 1 and not self.allow_multiple_groups:
            raise InvalidSearchError("Multiple search groups are not allowed for this column", "multiple_groups_not_allowed")

        groups = []
        for group_model in definition.groups:
            group = SearchTemplateGroup(group_model.connector)
            for template_model in group_model.templates or [SearchTemplateModel()]:
                template = self._new_template()
                template.apply_model(template_model)
                group.templates.append(template)
            groups.append(group)
        self.groups = groups
        self.update_filter_expression()

    @classmethod
    def from_definition(cls, definition: FilterDefinition, **kwargs) -> "SearchTemplateController":
        kwargs.setdefault("column_name", definition.column)
        kwargs.setdefault("data_type", definition.data_type)
        controller = cls(**kwargs)
        controller.apply_definition(definition)
        return controller

    # ------------------------------------------------------------------
    # Display

    def display_text(self) -> str:
        return filter_display_text(self)

    def filter_components(self) -> List[FilterChip]:
        return filter_components(self)

    def __repr__(self):
        return f"SearchTemplateController(column={self.column_name!r}, groups={len(self.groups)})"

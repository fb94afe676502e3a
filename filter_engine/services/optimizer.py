"""Selection optimizer.

Works backward from a subset of a column's distinct values to a small rule
set that selects exactly that subset. Null is split off first, then the
remaining values are classified by how the selection lies along the sorted
column (one range, several ranges, a few gaps, or scattered) and the
cheapest matching rule shape is emitted. Every result is checked against
the column before it is returned; a rule set that does not reproduce the
selection is replaced by a plain value list.
"""
from collections import Counter
from datetime import time, timedelta
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..config import settings
from ..schemas.filter import ColumnDataType, LogicalConnector, SearchOperator
from ..schemas.optimizer import (
    NullHandling,
    OptimizationInfo,
    OptimizedRule,
    SelectionAnalysis,
    SelectionPattern,
    ValueRange,
)
from ..utils.logger import setup_logger
from ..utils.values import NULL_VALUE, ValueSet, normalize_value
from .coercion import (
    TypeFlag,
    compare_values,
    convert,
    is_no_value,
    python_type_for,
    to_datetime,
    to_decimal,
    to_text,
    type_flags_for,
)
from .display import format_value
from .evaluators import CompiledPredicate
from .operator_registry import NULL_OPERATORS, OperandArity, arity_of
from .search_condition import SearchCondition
from .value_cache import detect_data_type, sort_values

logger = setup_logger("optimizer", "logs/optimizer.log")

_EXCLUSION_OPERATORS = frozenset({
    SearchOperator.NOT_EQUALS,
    SearchOperator.NOT_BETWEEN,
    SearchOperator.IS_NONE_OF,
    SearchOperator.IS_NOT_NULL,
})

def rule_complexity(operator: SearchOperator, value_count: int = 0) -> int:
    """Cost of one rule: list operators cost one per listed value"""
    arity = arity_of(operator)
    if arity == OperandArity.DUAL:
        return 2
    if arity == OperandArity.COLLECTION:
        return max(1, value_count)
    return 1

def operand_count(rule: OptimizedRule) -> int:
    arity = arity_of(rule.operator)
    if arity == OperandArity.NONE:
        return 0
    if arity == OperandArity.DUAL:
        return 2
    if arity == OperandArity.COLLECTION:
        return len(rule.values)
    return 1

def _distinct(values: Iterable[Any]) -> List[Any]:
    seen = ValueSet()
    result = []
    for value in values:
        value = normalize_value(value)
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result

class ColumnSelection:
    """Distinct column values in sorted order with a selected flag for each"""

    def __init__(self, values: List[Any], flags: List[bool], data_type: ColumnDataType, target_type: Any):
        self.values = values
        self.flags = flags
        self.data_type = data_type
        self.target_type = target_type
        self.flag = type_flags_for(target_type)
        self.key_counts = Counter(self.comparison_key(value) for value in values if value is not NULL_VALUE)
        self._exact: Dict[int, bool] = {}
        self.supports_ranges = (
            data_type in (ColumnDataType.NUMBER, ColumnDataType.DATETIME)
            and self.flag in (TypeFlag.NUMERIC, TypeFlag.DATETIME)
            and all(self._ordinal(value) is not None for value in values if value is not NULL_VALUE)
        )
        self.all_midnight = self.flag == TypeFlag.DATETIME and all(
            self._ordinal(value) is not None and self._ordinal(value).time() == time()
            for value in values if value is not NULL_VALUE
        )

    @property
    def selected(self) -> List[Any]:
        return [value for value, flag in zip(self.values, self.flags) if flag]

    @property
    def unselected(self) -> List[Any]:
        return [value for value, flag in zip(self.values, self.flags) if not flag]

    def _ordinal(self, value: Any) -> Any:
        if self.flag == TypeFlag.NUMERIC:
            return to_decimal(value)
        if self.flag == TypeFlag.DATETIME:
            return to_datetime(value)
        return None

    def comparison_key(self, value: Any) -> Tuple[str, Any]:
        """Values with equal keys are indistinguishable to Equals"""
        ordinal = self._ordinal(value)
        if ordinal is not None:
            return (self.flag.value, ordinal)
        return ("text", to_text(value).lower())

    def is_exact(self, value: Any) -> bool:
        """True when Equals(value) matches this value and no other value of the column"""
        marker = id(value)
        if marker not in self._exact:
            self._exact[marker] = self._check_exact(value)
        return self._exact[marker]

    def _check_exact(self, value: Any) -> bool:
        if value is NULL_VALUE or is_no_value(value):
            return False
        converted = convert(value, self.target_type)
        if converted is None:
            return False
        try:
            if compare_values(value, converted, self.flag) != 0:
                return False
        except TypeError:
            return False
        return self.key_counts[self.comparison_key(value)] == 1

    def adjacent(self, left: Any, right: Any) -> bool:
        try:
            gap = self._ordinal(right) - self._ordinal(left)
        except TypeError:
            return False
        if self.flag == TypeFlag.NUMERIC:
            return gap <= Decimal(str(settings.filters.NUMERIC_ADJACENCY_GAP))
        return gap <= timedelta(days=settings.filters.DATE_ADJACENCY_DAYS)

    def subset(self, start: int) -> "ColumnSelection":
        return ColumnSelection(self.values[start:], self.flags[start:], self.data_type, self.target_type)

class SelectionOptimizer:
    def __init__(self, data_type: Optional[ColumnDataType] = None, target_type: Any = None):
        self.data_type = data_type
        self.target_type = target_type

    def prepare(self, all_values: Iterable[Any], selected_values: Iterable[Any]) -> ColumnSelection:
        """Deduplicate and sort the column; selected values outside it are ignored"""
        values = _distinct(all_values)
        data_type = self.data_type or detect_data_type(values)
        ordered = sort_values(values, data_type)
        target_type = self.target_type if self.target_type is not None else python_type_for(data_type, ordered)
        chosen = ValueSet(selected_values)
        return ColumnSelection(ordered, [value in chosen for value in ordered], data_type, target_type)

    def optimize_selection(
        self,
        all_values: Iterable[Any],
        selected_values: Iterable[Any]
    ) -> Tuple[SelectionAnalysis, List[OptimizedRule]]:
        return self.solve(self.prepare(all_values, selected_values))

    def solve(self, selection: ColumnSelection) -> Tuple[SelectionAnalysis, List[OptimizedRule]]:
        analysis, rules = self._analyze(selection)

        if rules and not self.reproduces(rules, selection):
            logger.warning(
                f"{analysis.pattern.value} rules do not reproduce the selection; falling back to a value list"
            )
            analysis = self._analysis(
                selection, SelectionPattern.SPARSE, efficiency_score=len(selection.selected)
            )
            rules = [self._list_rule(selection.selected, negate=False)]

        logger.info(
            f"Optimized selection of {analysis.selected_count}/{analysis.total_count} values: "
            f"{analysis.pattern.value} -> {len(rules)} rule(s)"
        )
        return analysis, rules

    def reproduces(self, rules: List[OptimizedRule], selection: ColumnSelection) -> bool:
        predicate = compile_rules(rules, selection.target_type)
        return predicate.evaluate_many(selection.values) == selection.flags

    # ------------------------------------------------------------------
    # Classification

    def _analysis(self, selection: ColumnSelection, pattern: SelectionPattern, **fields) -> SelectionAnalysis:
        selected_count = sum(selection.flags)
        return SelectionAnalysis(
            pattern=pattern,
            total_count=len(selection.values),
            selected_count=selected_count,
            unselected_count=len(selection.values) - selected_count,
            **fields
        )

    def _analyze(self, selection: ColumnSelection) -> Tuple[SelectionAnalysis, List[OptimizedRule]]:
        selected, unselected = selection.selected, selection.unselected

        if not selected:
            rules = [
                self._rule(SearchOperator.IS_NULL, description="Is null"),
                self._rule(SearchOperator.IS_NOT_NULL, description="Is not null", connector=LogicalConnector.AND),
            ]
            return self._analysis(selection, SelectionPattern.ALL_UNSELECTED, efficiency_score=1), rules
        if not unselected:
            return self._analysis(selection, SelectionPattern.ALL_SELECTED, efficiency_score=0), []
        if len(selected) == 1:
            rules = [self._single_rule(selection, selected[0], negate=False)]
            return self._analysis(selection, SelectionPattern.SINGLE_SELECTED, efficiency_score=1), rules
        if len(unselected) == 1:
            rules = [self._single_rule(selection, unselected[0], negate=True)]
            analysis = self._analysis(
                selection, SelectionPattern.SINGLE_UNSELECTED, use_negation=True, efficiency_score=1
            )
            return analysis, rules

        if selection.values[0] is NULL_VALUE:
            return self._split_null(selection)
        return self._analyze_ranges(selection)

    def _split_null(self, selection: ColumnSelection) -> Tuple[SelectionAnalysis, List[OptimizedRule]]:
        """Dedicated null rule in group 0, the remaining values in group 1"""
        null_selected = selection.flags[0]
        inner_analysis, inner_rules = self._analyze(selection.subset(1))

        if null_selected:
            null_rule = self._rule(SearchOperator.IS_NULL, description="Is null")
            group_connector, handling = LogicalConnector.OR, NullHandling.INCLUDE
        else:
            null_rule = self._rule(SearchOperator.IS_NOT_NULL, description="Is not null")
            group_connector, handling = LogicalConnector.AND, NullHandling.EXCLUDE

        rules = [null_rule] + [
            rule.model_copy(update={"group": rule.group + 1, "group_connector": group_connector})
            for rule in inner_rules
        ]
        analysis = inner_analysis.model_copy(update={
            "null_handling": handling,
            "efficiency_score": inner_analysis.efficiency_score + 1,
            "total_count": len(selection.values),
            "selected_count": sum(selection.flags),
            "unselected_count": len(selection.values) - sum(selection.flags),
        })
        return analysis, rules

    def find_ranges(self, selection: ColumnSelection) -> Tuple[List[ValueRange], List[ValueRange]]:
        """Maximal runs of sorted values on the same side of the selection.

        Only columns whose every value is numeric (or every value a date)
        form multi-value runs; values Equals cannot single out stay alone.
        """
        selected_ranges: List[ValueRange] = []
        unselected_ranges: List[ValueRange] = []
        run: List[Any] = []
        run_side = None

        def flush():
            if run:
                target = selected_ranges if run_side else unselected_ranges
                target.append(ValueRange(start=run[0], end=run[-1], count=len(run), values=list(run)))

        for value, is_selected in zip(selection.values, selection.flags):
            extends = (
                run
                and is_selected == run_side
                and selection.supports_ranges
                and selection.is_exact(run[-1])
                and selection.is_exact(value)
                and selection.adjacent(run[-1], value)
            )
            if not extends:
                flush()
                run = []
                run_side = is_selected
            run.append(value)
        flush()

        return selected_ranges, unselected_ranges

    def _analyze_ranges(self, selection: ColumnSelection) -> Tuple[SelectionAnalysis, List[OptimizedRule]]:
        selected, unselected = selection.selected, selection.unselected
        selected_ranges, unselected_ranges = self.find_ranges(selection)
        use_negation = len(unselected) < len(selected) and len(unselected_ranges) <= 2
        fields = {"selected_ranges": selected_ranges, "unselected_ranges": unselected_ranges}

        if len(selected_ranges) == 1:
            rules = [self._range_rule(selection, selected_ranges[0], negate=False)]
            analysis = self._analysis(selection, SelectionPattern.CONTINUOUS_RANGE, efficiency_score=2, **fields)
            return analysis, rules

        if any(not item.is_single_value for item in selected_ranges):
            rules = [
                self._range_rule(selection, item, negate=False, connector=LogicalConnector.OR)
                for item in selected_ranges
            ]
            analysis = self._analysis(
                selection, SelectionPattern.MULTIPLE_RANGES,
                efficiency_score=len(selected_ranges) * 2, **fields
            )
            return analysis, rules

        if use_negation:
            rules = [
                self._range_rule(selection, item, negate=True, connector=LogicalConnector.AND)
                for item in unselected_ranges
            ]
            analysis = self._analysis(
                selection, SelectionPattern.MIXED_PATTERN, use_negation=True,
                efficiency_score=len(unselected_ranges) * 2, **fields
            )
            return analysis, rules

        negate = len(unselected) < len(selected) and len(unselected) <= settings.filters.SPARSE_NEGATION_MAX_VALUES
        rules = [self._list_rule(unselected if negate else selected, negate=negate)]
        analysis = self._analysis(
            selection, SelectionPattern.SPARSE, use_negation=negate,
            efficiency_score=min(len(selected), len(unselected)), **fields
        )
        return analysis, rules

    # ------------------------------------------------------------------
    # Rule construction

    def _rule(self, operator: SearchOperator, connector: LogicalConnector = LogicalConnector.OR, **fields) -> OptimizedRule:
        values = fields.get("values", [])
        return OptimizedRule(
            operator=operator,
            connector=connector,
            complexity_score=rule_complexity(operator, len(values)),
            **fields
        )

    def _single_rule(
        self,
        selection: ColumnSelection,
        value: Any,
        negate: bool,
        connector: Optional[LogicalConnector] = None
    ) -> OptimizedRule:
        if connector is None:
            connector = LogicalConnector.AND if negate else LogicalConnector.OR
        if value is NULL_VALUE:
            operator = SearchOperator.IS_NOT_NULL if negate else SearchOperator.IS_NULL
            return self._rule(operator, connector, description="Is not null" if negate else "Is null")
        if not selection.is_exact(value):
            return self._list_rule([value], negate, connector)
        if negate:
            return self._rule(
                SearchOperator.NOT_EQUALS, connector, primary_value=value,
                description=f"Not equal to {format_value(value)}"
            )
        return self._rule(
            SearchOperator.EQUALS, connector, primary_value=value,
            description=f"Equals {format_value(value)}"
        )

    def _range_rule(
        self,
        selection: ColumnSelection,
        value_range: ValueRange,
        negate: bool,
        connector: Optional[LogicalConnector] = None
    ) -> OptimizedRule:
        if value_range.is_single_value:
            return self._single_rule(selection, value_range.start, negate, connector)
        if connector is None:
            connector = LogicalConnector.AND if negate else LogicalConnector.OR

        start, end = format_value(value_range.start), format_value(value_range.end)
        if negate:
            operator = SearchOperator.NOT_BETWEEN
            description = f"Not between {start} and {end}"
        elif selection.all_midnight:
            operator = SearchOperator.BETWEEN_DATES
            description = f"Between dates {start} and {end}"
        else:
            operator = SearchOperator.BETWEEN
            description = f"Between {start} and {end}"

        return self._rule(
            operator, connector,
            primary_value=value_range.start,
            secondary_value=value_range.end,
            description=description
        )

    def _list_rule(
        self,
        values: List[Any],
        negate: bool,
        connector: Optional[LogicalConnector] = None
    ) -> OptimizedRule:
        if connector is None:
            connector = LogicalConnector.AND if negate else LogicalConnector.OR
        operator = SearchOperator.IS_NONE_OF if negate else SearchOperator.IS_ANY_OF
        shown = ", ".join(format_value(value) for value in values[:3])
        if len(values) > 3:
            shown += f" and {len(values) - 3} more"
        prefix = "Is none of" if negate else "Is any of"
        return self._rule(operator, connector, values=list(values), description=f"{prefix} [{shown}]")

# ----------------------------------------------------------------------
# Working with rule sets

def compile_rules(rules: List[OptimizedRule], target_type: Any = None) -> CompiledPredicate:
    groups: List[Tuple[LogicalConnector, list]] = []
    current_group = None
    for rule in rules:
        if rule.group != current_group:
            groups.append((rule.group_connector, []))
            current_group = rule.group
        condition = SearchCondition(
            operator=rule.operator,
            primary=rule.primary_value,
            secondary=rule.secondary_value,
            target_type=target_type,
            values=rule.values
        )
        groups[-1][1].append((rule.connector, condition))
    return CompiledPredicate(groups)

def build_optimization_info(analysis: SelectionAnalysis, rules: List[OptimizedRule]) -> OptimizationInfo:
    if not rules:
        return OptimizationInfo.create_unoptimized("All values are selected; no filter is needed")

    optimized_count = sum(operand_count(rule) for rule in rules)
    if optimized_count >= analysis.selected_count:
        return OptimizationInfo.create_unoptimized(
            f"{analysis.pattern.value} selection needs {optimized_count} operand(s) for "
            f"{analysis.selected_count} selected value(s)"
        )

    operators = {rule.operator for rule in rules if rule.operator not in NULL_OPERATORS}
    if len(operators) == 1:
        optimized_type = operators.pop().value
    elif operators:
        optimized_type = "combined rules"
    else:
        optimized_type = rules[0].operator.value

    return OptimizationInfo.create_optimized(
        analysis.selected_count, optimized_count, SearchOperator.IS_ANY_OF.value, optimized_type
    )

def template_cost(template) -> int:
    values = template.selected_values or template.selected_dates or template.selected_date_intervals
    return rule_complexity(template.operator, len(values))

def controller_cost(controller) -> int:
    return sum(template_cost(template) for template in controller.templates if template.has_criteria)

def _fill_template(template, rule: OptimizedRule):
    template.operator = rule.operator
    template.connector = rule.connector
    template.selected_values = list(rule.values)
    template.selected_value = rule.primary_value
    template.selected_secondary_value = rule.secondary_value

def apply_to_controller(controller, rules: List[OptimizedRule]):
    """Replace the controller's rule tree with ``rules``.

    When the controller allows a single group only, later groups are folded
    into the first one with their group connector on their first rule.
    """
    controller.clear()
    group = None
    current_group = None

    for rule in rules:
        if rule.group != current_group:
            if group is None:
                group = controller.groups[0]
                group.connector = rule.group_connector
                template = group.templates[0]
                _fill_template(template, rule)
            elif controller.allow_multiple_groups:
                group = controller.add_group(connector=rule.group_connector)
                _fill_template(group.templates[0], rule)
            else:
                template = controller.add_template(group)
                _fill_template(template, rule)
                template.connector = rule.group_connector
            current_group = rule.group
        else:
            _fill_template(controller.add_template(group), rule)

    controller.update_filter_expression()
    return controller

def merge_with_existing(controller, all_values: Iterable[Any], selected_values: Iterable[Any]) -> bool:
    """Rebuild the controller from a selection unless its current rules already do the job.

    Returns True when the rule tree was replaced.
    """
    optimizer = SelectionOptimizer(controller.column_data_type, controller.target_type)
    selection = optimizer.prepare(all_values, selected_values)
    analysis, rules = optimizer.solve(selection)

    current = controller.filter_values(selection.values)
    if current == selection.flags and controller_cost(controller) <= sum(rule.complexity_score for rule in rules):
        logger.info(f"Existing rules for '{controller.column_name}' already match the selection; keeping them")
        return False

    apply_to_controller(controller, rules)
    return True

def analyze_selection(
    all_values: Iterable[Any],
    selected_values: Iterable[Any],
    data_type: Optional[ColumnDataType] = None
) -> SelectionAnalysis:
    analysis, _ = SelectionOptimizer(data_type).optimize_selection(all_values, selected_values)
    return analysis

def optimize(
    all_values: Iterable[Any],
    selected_values: Iterable[Any],
    data_type: Optional[ColumnDataType] = None
) -> List[OptimizedRule]:
    """Smallest rule set found that selects exactly ``selected_values`` out of ``all_values``"""
    _, rules = SelectionOptimizer(data_type).optimize_selection(all_values, selected_values)
    return rules

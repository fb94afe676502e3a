"""Operator evaluation and rule-tree compilation.

Every SearchOperator maps to exactly one evaluator in ``EVALUATORS``; the
module refuses to import if an operator is left without one. Evaluators
take ``(value, condition, context)`` and return a bool. Operators that need
whole-column statistics read them from a ``CollectionContext`` built once
per filter pass and match nothing when no context is supplied.
"""
import re
from calendar import monthrange
from datetime import date, timedelta
from functools import lru_cache
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from ..config import settings
from ..schemas.filter import DateInterval, LogicalConnector, SearchOperator
from ..utils.logger import setup_logger
from ..utils.values import is_blank_string, is_null_or_blank
from .coercion import compare_values, is_numeric_value, to_datetime, to_text
from .collection_context import CollectionContext
from .operator_registry import CONTEXT_OPERATORS
from .search_condition import SearchCondition

logger = setup_logger("evaluators", "logs/filter.log")

Evaluator = Callable[[Any, SearchCondition, Optional[CollectionContext]], bool]

# Source of "today" for relative-date operators
clock: Callable[[], date] = date.today

# ----------------------------------------------------------------------
# Relative dates

def week_start(today: date) -> date:
    offset = (today.weekday() - settings.filters.WEEK_START_DAY) % 7
    return today - timedelta(days=offset)

def date_interval_matches(value: date, interval: DateInterval, today: date) -> bool:
    """Calendar-date test for one relative-date bucket.

    Today itself belongs only to the Today bucket; the earlier/later buckets
    of the current year, month and week exclude it.
    """
    year_start = date(today.year, 1, 1)
    year_end = date(today.year, 12, 31)
    month_start = today.replace(day=1)
    month_end = today.replace(day=monthrange(today.year, today.month)[1])
    first_of_week = week_start(today)
    last_of_week = first_of_week + timedelta(days=6)

    if interval == DateInterval.PRIOR_THIS_YEAR:
        return value < year_start
    if interval == DateInterval.EARLIER_THIS_YEAR:
        return year_start <= value < today
    if interval == DateInterval.LATER_THIS_YEAR:
        return today < value <= year_end
    if interval == DateInterval.BEYOND_THIS_YEAR:
        return value > year_end
    if interval == DateInterval.EARLIER_THIS_MONTH:
        return month_start <= value < today
    if interval == DateInterval.LATER_THIS_MONTH:
        return today < value <= month_end
    if interval == DateInterval.EARLIER_THIS_WEEK:
        return first_of_week <= value < today
    if interval == DateInterval.LATER_THIS_WEEK:
        return today < value <= last_of_week
    if interval == DateInterval.LAST_WEEK:
        return first_of_week - timedelta(days=7) <= value <= first_of_week - timedelta(days=1)
    if interval == DateInterval.NEXT_WEEK:
        return last_of_week + timedelta(days=1) <= value <= last_of_week + timedelta(days=7)
    if interval == DateInterval.YESTERDAY:
        return value == today - timedelta(days=1)
    if interval == DateInterval.TODAY:
        return value == today
    if interval == DateInterval.TOMORROW:
        return value == today + timedelta(days=1)
    return False

def _value_date(value: Any) -> Optional[date]:
    parsed = to_datetime(value)
    return parsed.date() if parsed is not None else None

# ----------------------------------------------------------------------
# Evaluators

def _compare(value: Any, condition: SearchCondition) -> Optional[int]:
    if condition.primary_value is None:
        return None
    return compare_values(value, condition.primary_value, condition.type_flag)

def _equals(value, condition, context):
    return _compare(value, condition) == 0

def _not_equals(value, condition, context):
    result = _compare(value, condition)
    return result is not None and result != 0

def _greater_than(value, condition, context):
    result = _compare(value, condition)
    return result is not None and result > 0

def _greater_than_or_equal(value, condition, context):
    result = _compare(value, condition)
    return result is not None and result >= 0

def _less_than(value, condition, context):
    result = _compare(value, condition)
    return result is not None and result < 0

def _less_than_or_equal(value, condition, context):
    result = _compare(value, condition)
    return result is not None and result <= 0

def _between(value, condition, context):
    if condition.primary_value is None or condition.secondary_value is None:
        return False
    return (
        compare_values(value, condition.primary_value, condition.type_flag) >= 0
        and compare_values(value, condition.secondary_value, condition.type_flag) <= 0
    )

def _not_between(value, condition, context):
    if condition.primary_value is None or condition.secondary_value is None:
        return False
    return (
        compare_values(value, condition.primary_value, condition.type_flag) < 0
        or compare_values(value, condition.secondary_value, condition.type_flag) > 0
    )

def _between_dates(value, condition, context):
    value_date = _value_date(value)
    low, high = _value_date(condition.primary_value), _value_date(condition.secondary_value)
    if value_date is None or low is None or high is None:
        return False
    return low <= value_date <= high

def _contains(value, condition, context):
    return condition.string_value in to_text(value).lower()

def _does_not_contain(value, condition, context):
    return condition.string_value not in to_text(value).lower()

def _starts_with(value, condition, context):
    return to_text(value).lower().startswith(condition.string_value)

def _ends_with(value, condition, context):
    return to_text(value).lower().endswith(condition.string_value)

@lru_cache(maxsize=256)
def like_pattern(pattern: str) -> "re.Pattern":
    """SQL LIKE pattern (% and _ wildcards) as a case-insensitive regex"""
    parts = []
    for char in pattern:
        if char == "%":
            parts.append(".*")
        elif char == "_":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    return re.compile("".join(parts), re.IGNORECASE | re.DOTALL)

def _is_like(value, condition, context):
    return like_pattern(condition.string_value).fullmatch(to_text(value)) is not None

def _is_not_like(value, condition, context):
    return not _is_like(value, condition, context)

def _is_null(value, condition, context):
    return is_null_or_blank(value)

def _is_not_null(value, condition, context):
    return not is_null_or_blank(value)

def _is_blank(value, condition, context):
    return is_blank_string(value)

def _is_not_blank(value, condition, context):
    return not is_null_or_blank(value)

def _today(value, condition, context):
    return _value_date(value) == clock()

def _yesterday(value, condition, context):
    return _value_date(value) == clock() - timedelta(days=1)

def _is_any_of(value, condition, context):
    return condition.contains_value(value)

def _is_none_of(value, condition, context):
    return not condition.contains_value(value)

def _is_on_any_of_dates(value, condition, context):
    value_date = _value_date(value)
    return value_date is not None and value_date in condition.date_set

def _date_interval(value, condition, context):
    value_date = _value_date(value)
    if value_date is None or not condition.date_intervals:
        return False
    today = clock()
    return any(date_interval_matches(value_date, interval, today) for interval in condition.date_intervals)

def _requires(context: Optional[CollectionContext], condition: SearchCondition) -> bool:
    if context is None:
        logger.debug(f"{condition.operator.value} needs a collection context; treating as no match")
        return False
    return True

def _top_n(value, condition, context):
    if not _requires(context, condition):
        return False
    count = condition.top_count
    return bool(count and count > 0) and value in context.top_values(count)

def _bottom_n(value, condition, context):
    if not _requires(context, condition):
        return False
    count = condition.top_count
    return bool(count and count > 0) and value in context.bottom_values(count)

def _above_average(value, condition, context):
    if not _requires(context, condition):
        return False
    average = context.average
    return average is not None and is_numeric_value(value) and float(value) > average

def _below_average(value, condition, context):
    if not _requires(context, condition):
        return False
    average = context.average
    return average is not None and is_numeric_value(value) and float(value) < average

def _unique(value, condition, context):
    if not _requires(context, condition):
        return False
    return context.count_of(value) == 1

def _duplicate(value, condition, context):
    if not _requires(context, condition):
        return False
    return context.count_of(value) > 1

EVALUATORS: Dict[SearchOperator, Evaluator] = {
    SearchOperator.EQUALS: _equals,
    SearchOperator.NOT_EQUALS: _not_equals,
    SearchOperator.GREATER_THAN: _greater_than,
    SearchOperator.GREATER_THAN_OR_EQUAL_TO: _greater_than_or_equal,
    SearchOperator.LESS_THAN: _less_than,
    SearchOperator.LESS_THAN_OR_EQUAL_TO: _less_than_or_equal,
    SearchOperator.BETWEEN: _between,
    SearchOperator.NOT_BETWEEN: _not_between,
    SearchOperator.BETWEEN_DATES: _between_dates,
    SearchOperator.CONTAINS: _contains,
    SearchOperator.DOES_NOT_CONTAIN: _does_not_contain,
    SearchOperator.STARTS_WITH: _starts_with,
    SearchOperator.ENDS_WITH: _ends_with,
    SearchOperator.IS_LIKE: _is_like,
    SearchOperator.IS_NOT_LIKE: _is_not_like,
    SearchOperator.IS_NULL: _is_null,
    SearchOperator.IS_NOT_NULL: _is_not_null,
    SearchOperator.IS_BLANK: _is_blank,
    SearchOperator.IS_NOT_BLANK: _is_not_blank,
    SearchOperator.TODAY: _today,
    SearchOperator.YESTERDAY: _yesterday,
    SearchOperator.IS_ANY_OF: _is_any_of,
    SearchOperator.IS_NONE_OF: _is_none_of,
    SearchOperator.IS_ON_ANY_OF_DATES: _is_on_any_of_dates,
    SearchOperator.DATE_INTERVAL: _date_interval,
    SearchOperator.TOP_N: _top_n,
    SearchOperator.BOTTOM_N: _bottom_n,
    SearchOperator.ABOVE_AVERAGE: _above_average,
    SearchOperator.BELOW_AVERAGE: _below_average,
    SearchOperator.UNIQUE: _unique,
    SearchOperator.DUPLICATE: _duplicate,
}

_missing = set(SearchOperator) - set(EVALUATORS)
if _missing:
    raise RuntimeError(f"No evaluator registered for: {sorted(op.value for op in _missing)}")

def evaluate_condition(value: Any, condition: SearchCondition, context: Optional[CollectionContext] = None) -> bool:
    """Evaluate one condition; any error counts as no match"""
    try:
        return bool(EVALUATORS[condition.operator](value, condition, context))
    except Exception as e:
        logger.error(f"Error evaluating {condition.operator.value} against {value!r}: {str(e)}")
        return False

# ----------------------------------------------------------------------
# Folding and compiled predicates

def combine(result: bool, connector: LogicalConnector, other: bool) -> bool:
    if connector == LogicalConnector.OR:
        return result or other
    return result and other

def fold_results(results: Iterable[Tuple[Optional[LogicalConnector], bool]]) -> bool:
    """Strict left-to-right fold; the first connector is ignored and there is no precedence"""
    folded = None
    for connector, result in results:
        folded = result if folded is None else combine(folded, connector, result)
    return True if folded is None else folded

ConditionGroup = Tuple[LogicalConnector, List[Tuple[LogicalConnector, SearchCondition]]]

class CompiledPredicate:
    """Callable ``(value, context=None) -> bool`` built from a rule tree"""

    def __init__(self, groups: Sequence[ConditionGroup]):
        self.groups = [(connector, list(conditions)) for connector, conditions in groups if conditions]

    @property
    def is_active(self) -> bool:
        return bool(self.groups)

    @property
    def requires_context(self) -> bool:
        return any(
            condition.operator in CONTEXT_OPERATORS
            for _, conditions in self.groups
            for _, condition in conditions
        )

    def _evaluate_group(self, conditions, value, context) -> bool:
        return fold_results(
            (connector, evaluate_condition(value, condition, context))
            for connector, condition in conditions
        )

    def __call__(self, value: Any, context: Optional[CollectionContext] = None) -> bool:
        if not self.groups:
            return True
        return fold_results(
            (connector, self._evaluate_group(conditions, value, context))
            for connector, conditions in self.groups
        )

    def evaluate_many(self, values: Iterable[Any], context: Optional[CollectionContext] = None) -> List[bool]:
        """Evaluate a whole column, building the collection context once if needed"""
        values = list(values)
        if not self.groups:
            return [True] * len(values)
        if context is None and self.requires_context:
            context = CollectionContext(values)
        return [self(value, context) for value in values]

def compile_predicate(controller) -> CompiledPredicate:
    """Compile a controller's groups into one predicate.

    Templates without meaningful criteria are left out, as are groups that
    end up empty; with nothing left the predicate accepts everything.
    """
    target_type = controller.target_type
    groups = []
    for group in controller.groups:
        conditions = [
            (template.connector, template.build_condition(target_type))
            for template in group.templates
            if template.has_criteria
        ]
        if conditions:
            groups.append((group.connector, conditions))
    return CompiledPredicate(groups)

def evaluate_with_context(value: Any, controller, context: Optional[CollectionContext]) -> bool:
    return controller.filter_expression(value, context)

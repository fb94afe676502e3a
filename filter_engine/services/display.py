from datetime import datetime, time
from typing import Any, List

from ..config import settings
from ..schemas.filter import FilterChip, SearchOperator
from ..utils.logger import setup_logger
from ..utils.values import is_null_like
from .coercion import to_datetime, to_text
from .operator_registry import DATE_INTERVAL_LABELS, label_of

logger = setup_logger("display", "logs/filter.log")

NO_FILTER_TEXT = "No filter"

_VALUE_FORMATS = {
    SearchOperator.CONTAINS: "Contains '{value}'",
    SearchOperator.DOES_NOT_CONTAIN: "Does not contain '{value}'",
    SearchOperator.EQUALS: "= '{value}'",
    SearchOperator.NOT_EQUALS: "≠ '{value}'",
    SearchOperator.STARTS_WITH: "Starts with '{value}'",
    SearchOperator.ENDS_WITH: "Ends with '{value}'",
    SearchOperator.GREATER_THAN: "> '{value}'",
    SearchOperator.GREATER_THAN_OR_EQUAL_TO: ">= '{value}'",
    SearchOperator.LESS_THAN: "< '{value}'",
    SearchOperator.LESS_THAN_OR_EQUAL_TO: "<= '{value}'",
    SearchOperator.IS_LIKE: "Is like '{value}'",
    SearchOperator.IS_NOT_LIKE: "Is not like '{value}'",
    SearchOperator.BETWEEN: "Between '{value}' and '{secondary}'",
    SearchOperator.NOT_BETWEEN: "Not between '{value}' and '{secondary}'",
    SearchOperator.BETWEEN_DATES: "Between dates '{value}' and '{secondary}'",
    SearchOperator.TOP_N: "Top {value}",
    SearchOperator.BOTTOM_N: "Bottom {value}",
}

_FIXED_TEXT = {
    SearchOperator.IS_NULL: "Is null",
    SearchOperator.IS_NOT_NULL: "Is not null",
    SearchOperator.IS_BLANK: "Is blank",
    SearchOperator.IS_NOT_BLANK: "Is not blank",
    SearchOperator.ABOVE_AVERAGE: "Above average",
    SearchOperator.BELOW_AVERAGE: "Below average",
    SearchOperator.UNIQUE: "Unique values",
    SearchOperator.DUPLICATE: "Duplicate values",
    SearchOperator.YESTERDAY: "Is yesterday",
    SearchOperator.TODAY: "Is today",
}

def format_value(value: Any) -> str:
    """Display form of one operand; dates at midnight drop the time part"""
    if is_null_like(value):
        return settings.filters.NULL_DISPLAY_TEXT
    if isinstance(value, datetime):
        if value.time() == time():
            return value.strftime("%Y-%m-%d")
        return value.strftime("%Y-%m-%d %H:%M:%S")
    return to_text(value)

def format_date(value: Any) -> str:
    parsed = to_datetime(value)
    return parsed.strftime("%Y-%m-%d") if parsed is not None else to_text(value)

def format_value_list(prefix: str, items: List[str], quote: bool = True, empty_text: str = "(no values)") -> str:
    """``prefix [a, b, c]`` for short lists, ``prefix [a, b and N more]`` otherwise"""
    if not items:
        return f"{prefix} {empty_text}"
    shown = [f"'{item}'" if quote else item for item in items]
    limit = settings.filters.DISPLAY_MAX_LIST_VALUES
    if len(shown) <= limit:
        return f"{prefix} [{', '.join(shown)}]"
    return f"{prefix} [{', '.join(shown[:2])} and {len(shown) - 2} more]"

def template_display_text(template) -> str:
    operator = template.operator
    if operator in _FIXED_TEXT:
        return _FIXED_TEXT[operator]

    if operator == SearchOperator.IS_ANY_OF:
        return format_value_list("Is any of", [format_value(value) for value in template.selected_values])
    if operator == SearchOperator.IS_NONE_OF:
        return format_value_list("Is none of", [format_value(value) for value in template.selected_values])
    if operator == SearchOperator.IS_ON_ANY_OF_DATES:
        return format_value_list(
            "Is on any of", [format_date(value) for value in template.selected_dates],
            quote=False, empty_text="(no dates)"
        )
    if operator == SearchOperator.DATE_INTERVAL:
        return format_value_list(
            label_of(operator), [DATE_INTERVAL_LABELS[interval] for interval in template.selected_date_intervals],
            quote=False, empty_text="(none selected)"
        )

    formatter = format_date if operator == SearchOperator.BETWEEN_DATES else format_value
    return _VALUE_FORMATS.get(operator, label_of(operator)).format(
        value=formatter(template.selected_value),
        secondary=formatter(template.selected_secondary_value)
    )

def _active_templates(group) -> list:
    return [template for template in group.templates if template.has_criteria]

def filter_display_text(controller) -> str:
    """Human-readable summary, e.g. ``(Contains 'a' OR = 'b') AND Is not null``"""
    try:
        group_texts = []
        for group in controller.groups:
            templates = _active_templates(group)
            if not templates:
                continue
            text = template_display_text(templates[0])
            for template in templates[1:]:
                text += f" {template.connector.value.upper()} {template_display_text(template)}"
            if len(templates) > 1:
                text = f"({text})"
            group_texts.append((group, text))

        if not group_texts:
            return NO_FILTER_TEXT

        result = group_texts[0][1]
        for group, text in group_texts[1:]:
            result += f" {group.connector.value.upper()} {text}"
        return result

    except Exception as e:
        logger.error(f"Error building filter display text: {str(e)}")
        return "Advanced filter"

def template_chip(template, group_index: int, template_index: int, connector=None) -> FilterChip:
    operator = template.operator
    chip = FilterChip(
        group_index=group_index,
        template_index=template_index,
        search_type_text=label_of(operator),
        connector=connector,
        is_date_interval=operator == SearchOperator.DATE_INTERVAL
    )

    if operator in (SearchOperator.IS_ANY_OF, SearchOperator.IS_NONE_OF):
        chip.value_items = [format_value(value) for value in template.selected_values]
    elif operator == SearchOperator.IS_ON_ANY_OF_DATES:
        chip.value_items = [format_date(value) for value in template.selected_dates]
    elif operator == SearchOperator.DATE_INTERVAL:
        chip.value_items = [DATE_INTERVAL_LABELS[interval] for interval in template.selected_date_intervals]
    elif operator in (SearchOperator.BETWEEN, SearchOperator.NOT_BETWEEN, SearchOperator.BETWEEN_DATES):
        formatter = format_date if operator == SearchOperator.BETWEEN_DATES else format_value
        chip.primary_value = formatter(template.selected_value)
        chip.secondary_value = formatter(template.selected_secondary_value)
        chip.value_operator_text = "and"
    elif operator not in _FIXED_TEXT:
        chip.primary_value = format_value(template.selected_value)

    return chip

def filter_components(controller) -> List[FilterChip]:
    """One chip per active template; all but the first carry their connector"""
    chips = []
    for group_index, group in enumerate(controller.groups):
        first_in_group = True
        for template_index, template in enumerate(group.templates):
            if not template.has_criteria:
                continue
            if not first_in_group:
                connector = template.connector
            elif chips:
                connector = group.connector
            else:
                connector = None
            chips.append(template_chip(template, group_index, template_index, connector))
            first_in_group = False
    return chips

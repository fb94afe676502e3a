from datetime import datetime

from filter_engine.schemas.filter import DateInterval, LogicalConnector, SearchOperator
from filter_engine.services import display
from filter_engine.services.display import format_value, format_value_list, template_display_text
from filter_engine.services.rule_tree import SearchTemplateController

DAYS = [datetime(2024, 1, day) for day in range(1, 11)]

def test_format_value():
    assert format_value(None) == "(null)"
    assert format_value(datetime(2024, 1, 5)) == "2024-01-05"
    assert format_value(datetime(2024, 1, 5, 10, 30)) == "2024-01-05 10:30:00"
    assert format_value(42) == "42"

def test_long_lists_are_shortened():
    assert format_value_list("Is any of", ["a", "b", "c"]) == "Is any of ['a', 'b', 'c']"
    assert format_value_list("Is any of", ["a", "b", "c", "d", "e"]) == "Is any of ['a', 'b' and 3 more]"
    assert format_value_list("Is any of", []) == "Is any of (no values)"

def test_no_filter_text(scores):
    controller = SearchTemplateController("score", values=scores)
    assert controller.display_text() == "No filter"
    assert controller.filter_components() == []

def test_groups_and_connectors_are_rendered(scores):
    controller = SearchTemplateController("score", values=scores)
    first = controller.templates[0]
    first.operator = SearchOperator.EQUALS
    first.selected_value = 1
    second = controller.add_template(operator=SearchOperator.EQUALS)
    second.selected_value = 2
    group = controller.add_group(connector=LogicalConnector.AND)
    group.templates[0].operator = SearchOperator.LESS_THAN
    group.templates[0].selected_value = 2

    assert controller.display_text() == "(= '1' OR = '2') AND < '2'"

    chips = controller.filter_components()
    assert [chip.connector for chip in chips] == [None, LogicalConnector.OR, LogicalConnector.AND]
    assert [chip.primary_value for chip in chips] == ["1", "2", "2"]
    assert chips[2].group_index == 1

def test_list_and_fixed_operators():
    controller = SearchTemplateController("city", values=["Paris", "Rome", None])
    template = controller.templates[0]

    template.operator = SearchOperator.IS_NONE_OF
    template.selected_values = ["Paris", None]
    assert template_display_text(template) == "Is none of ['Paris', '(null)']"

    template.operator = SearchOperator.IS_NOT_NULL
    assert controller.display_text() == "Is not null"

def test_date_operators():
    controller = SearchTemplateController("joined", values=DAYS)
    template = controller.templates[0]

    template.operator = SearchOperator.BETWEEN_DATES
    template.selected_value = "2024-01-02"
    template.selected_secondary_value = datetime(2024, 1, 5)
    assert template_display_text(template) == "Between dates '2024-01-02' and '2024-01-05'"

    chip = controller.filter_components()[0]
    assert chip.value_operator_text == "and"
    assert (chip.primary_value, chip.secondary_value) == ("2024-01-02", "2024-01-05")

    template.operator = SearchOperator.DATE_INTERVAL
    template.select_interval(DateInterval.TODAY)
    template.select_interval(DateInterval.YESTERDAY)
    assert template_display_text(template) == "Date intervals [Yesterday, Today]"
    assert controller.filter_components()[0].is_date_interval

def test_top_n_text(scores):
    controller = SearchTemplateController("score", values=scores)
    template = controller.templates[0]
    template.operator = SearchOperator.TOP_N
    template.selected_value = 3

    assert controller.display_text() == "Top 3"

def test_display_errors_fall_back_to_generic_text(scores, monkeypatch):
    controller = SearchTemplateController("score", values=scores)
    controller.templates[0].operator = SearchOperator.IS_NULL

    def broken(template):
        raise ValueError("boom")

    monkeypatch.setattr(display, "template_display_text", broken)
    assert controller.display_text() == "Advanced filter"

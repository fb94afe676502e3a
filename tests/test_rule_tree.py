import asyncio

import pytest

from filter_engine.schemas.filter import (
    ColumnDataType,
    FilterDefinition,
    InvalidSearchError,
    LogicalConnector,
    SearchGroupModel,
    SearchOperator,
    SearchTemplateModel,
)
from filter_engine.services.rule_tree import SearchTemplate, SearchTemplateController

AND, OR = LogicalConnector.AND, LogicalConnector.OR

@pytest.fixture
def controller(scores):
    return SearchTemplateController("score", values=scores)

def set_rule(template, operator, value=None, secondary=None):
    template.operator = operator
    template.selected_value = value
    template.selected_secondary_value = secondary
    return template

def test_fresh_controller_accepts_everything(controller, scores):
    assert len(controller.groups) == 1
    assert len(controller.templates) == 1
    assert controller.column_data_type == ColumnDataType.NUMBER
    assert controller.templates[0].operator == SearchOperator.CONTAINS
    assert not controller.is_active
    assert controller.filter_values(scores) == [True] * len(scores)

def test_template_edits_recompile_the_filter(controller):
    template = set_rule(controller.templates[0], SearchOperator.EQUALS, 3)
    assert controller.filter_values([1, 2, 3]) == [False, False, True]

    template.selected_value = 2
    assert controller.filter_values([1, 2, 3]) == [False, True, False]

def test_invalid_operator_is_rejected(controller):
    words = SearchTemplateController("city", values=["Paris", "Rome"])

    with pytest.raises(InvalidSearchError) as error:
        words.templates[0].operator = SearchOperator.TOP_N
    assert error.value.error_code == "invalid_operator"

    controller.templates[0].operator = SearchOperator.TOP_N
    assert controller.templates[0].operator == SearchOperator.TOP_N

def test_templates_fold_left_to_right(controller):
    first = set_rule(controller.templates[0], SearchOperator.EQUALS, 1)
    second = controller.add_template(reference=first, operator=SearchOperator.EQUALS, connector=OR)
    second.selected_value = 2
    third = controller.add_template(operator=SearchOperator.LESS_THAN, connector=AND)
    third.selected_value = 2

    assert controller.templates == [first, second, third]
    assert controller.filter_values([1, 2, 3]) == [True, False, False]

def test_groups_are_combined_by_group_connector(controller, scores):
    set_rule(controller.templates[0], SearchOperator.GREATER_THAN, 8)
    group = controller.add_group(connector=OR)
    set_rule(group.templates[0], SearchOperator.LESS_THAN, 2)

    flags = controller.filter_values(scores)
    assert [value for value, keep in zip(scores, flags) if keep] == [1, 9, 10]

def test_templates_without_criteria_are_ignored(controller, scores):
    set_rule(controller.templates[0], SearchOperator.BETWEEN, 3, 4)
    controller.add_template(operator=SearchOperator.EQUALS, connector=AND)
    controller.add_group(connector=AND)

    flags = controller.filter_values(scores)
    assert [value for value, keep in zip(scores, flags) if keep] == [3, 4]

def test_single_group_controller_rejects_second_group(scores):
    controller = SearchTemplateController("score", values=scores, allow_multiple_groups=False)

    with pytest.raises(InvalidSearchError) as error:
        controller.add_group()
    assert error.value.error_code == "multiple_groups_not_allowed"

def test_removing_last_template_resets_the_group(controller):
    template = set_rule(controller.templates[0], SearchOperator.EQUALS, 3)
    controller.remove_template(template)

    assert len(controller.groups) == 1
    assert len(controller.templates) == 1
    assert controller.templates[0] is not template
    assert not controller.is_active

def test_removing_unknown_template_fails(controller):
    with pytest.raises(InvalidSearchError) as error:
        controller.remove_template(SearchTemplate(ColumnDataType.NUMBER))
    assert error.value.error_code == "unknown_template"

def test_remove_group(controller):
    group = controller.add_group()
    controller.remove_group(group)
    assert len(controller.groups) == 1

    only = controller.groups[0]
    only.connector = OR
    controller.remove_group(only)
    assert controller.groups == [only]
    assert only.connector == AND

def test_move_template_drops_emptied_group(controller):
    moved = controller.templates[0]
    target = controller.add_group()

    controller.move_template(moved, target, 0)

    assert controller.groups == [target]
    assert target.templates[0] is moved
    assert len(target.templates) == 2

def test_move_template_validates_index(controller):
    template = controller.templates[0]
    with pytest.raises(InvalidSearchError) as error:
        controller.move_template(template, controller.groups[0], 5)
    assert error.value.error_code == "invalid_move"

def test_in_place_list_edits_need_explicit_update(controller):
    template = controller.templates[0]
    template.operator = SearchOperator.IS_ANY_OF
    template.selected_values = [1]
    assert controller.filter_values([1, 2]) == [True, False]

    template.selected_values.append(2)
    assert controller.filter_values([1, 2]) == [True, False]

    controller.update_filter_expression()
    assert controller.filter_values([1, 2]) == [True, True]

def test_statistics_use_whole_column(scores):
    controller = SearchTemplateController("score", values=scores)
    controller.templates[0].operator = SearchOperator.ABOVE_AVERAGE

    assert controller.requires_collection_context
    assert controller.filter_values([1, 2, 3, 4, 5]) == [False, False, False, True, True]

def test_filter_rows_uses_accessor(controller):
    rows = [{"score": 1}, {"score": 5}, {"score": None}]
    set_rule(controller.templates[0], SearchOperator.GREATER_THAN_OR_EQUAL_TO, 2)

    assert controller.filter_rows(rows, lambda row: row["score"]) == [{"score": 5}]

    with pytest.raises(InvalidSearchError) as error:
        controller.filter_rows(rows)
    assert error.value.error_code == "missing_accessor"

def test_definition_round_trip(controller, scores):
    set_rule(controller.templates[0], SearchOperator.BETWEEN, 2, 4)
    group = controller.add_group(connector=OR)
    group.templates[0].operator = SearchOperator.IS_ANY_OF
    group.templates[0].selected_values = [9]

    payload = controller.to_definition().model_dump(mode="json")
    restored = SearchTemplateController.from_definition(FilterDefinition(**payload), values=scores)

    assert len(restored.groups) == 2
    assert restored.groups[1].connector == OR
    assert restored.filter_values(scores) == controller.filter_values(scores)

def test_apply_definition_rejects_bad_count(controller):
    definition = FilterDefinition(
        column="score",
        groups=[SearchGroupModel(templates=[SearchTemplateModel(operator=SearchOperator.TOP_N, value="abc")])]
    )
    with pytest.raises(InvalidSearchError) as error:
        controller.apply_definition(definition)
    assert error.value.error_code == "invalid_count"

def test_apply_definition_respects_group_limit(scores):
    controller = SearchTemplateController("score", values=scores, allow_multiple_groups=False)
    definition = FilterDefinition(column="score", groups=[SearchGroupModel(), SearchGroupModel()])

    with pytest.raises(InvalidSearchError):
        controller.apply_definition(definition)

def test_async_cache_reports_string_until_loaded():
    async def loader():
        return [3, 1, 2]

    controller = SearchTemplateController("score", loader=loader)
    template = controller.templates[0]
    template.operator = SearchOperator.IS_BLANK

    assert controller.column_data_type == ColumnDataType.STRING
    assert controller.target_type is str

    assert asyncio.run(controller.load_values_async())
    assert controller.column_data_type == ColumnDataType.NUMBER
    assert template.data_type == ColumnDataType.NUMBER
    assert template.operator == SearchOperator.CONTAINS
    assert template.available_values == [1, 2, 3]

def test_data_type_override_wins(controller):
    controller.templates[0].operator = SearchOperator.TOP_N
    controller.column_data_type = ColumnDataType.STRING

    assert controller.column_data_type == ColumnDataType.STRING
    assert controller.templates[0].operator == SearchOperator.CONTAINS
    assert controller.to_definition().data_type == ColumnDataType.STRING

def test_clear(controller):
    set_rule(controller.templates[0], SearchOperator.EQUALS, 3)
    controller.add_group()
    controller.clear()

    assert len(controller.groups) == 1
    assert not controller.is_active
    assert not controller.has_custom_expression

def test_three_groups_fold_without_precedence(controller):
    set_rule(controller.templates[0], SearchOperator.EQUALS, 1)
    second = controller.add_group(connector=OR)
    set_rule(second.templates[0], SearchOperator.EQUALS, 2)
    third = controller.add_group(connector=AND)
    set_rule(third.templates[0], SearchOperator.EQUALS, 3)

    # (True OR False) AND False
    assert controller.filter_values([1]) == [False]

def test_refresh_values_redetects_column_type():
    source = {"values": [3, 1, 2]}
    controller = SearchTemplateController("code", loader=lambda: source["values"])
    controller.templates[0].operator = SearchOperator.TOP_N
    assert controller.column_data_type == ColumnDataType.NUMBER

    source["values"] = ["b", "a"]
    controller.refresh_values()

    assert controller.column_data_type == ColumnDataType.STRING
    assert controller.templates[0].data_type == ColumnDataType.STRING
    assert controller.templates[0].operator == SearchOperator.CONTAINS
    assert controller.templates[0].available_values == ["a", "b"]

import random
from datetime import datetime, timedelta

import pytest

from filter_engine.schemas.filter import ColumnDataType, LogicalConnector, SearchOperator
from filter_engine.schemas.optimizer import NullHandling, OptimizationInfo, SelectionPattern
from filter_engine.services import optimizer as optimizer_module
from filter_engine.services.optimizer import (
    SelectionOptimizer,
    analyze_selection,
    apply_to_controller,
    build_optimization_info,
    compile_rules,
    merge_with_existing,
    optimize,
)
from filter_engine.services.rule_tree import SearchTemplateController
from filter_engine.utils.values import NULL_VALUE

AND, OR = LogicalConnector.AND, LogicalConnector.OR

def solve(all_values, selected_values, data_type=None):
    optimizer = SelectionOptimizer(data_type)
    selection = optimizer.prepare(all_values, selected_values)
    analysis, rules = optimizer.solve(selection)
    return selection, analysis, rules

def selected_by(rules, selection):
    flags = compile_rules(rules, selection.target_type).evaluate_many(selection.values)
    return [value for value, keep in zip(selection.values, flags) if keep]

def test_one_excluded_value_becomes_not_equals(scores):
    selection, analysis, rules = solve(scores, scores[:-1])

    assert analysis.pattern == SelectionPattern.SINGLE_UNSELECTED
    assert analysis.use_negation
    assert len(rules) == 1
    assert rules[0].operator == SearchOperator.NOT_EQUALS
    assert rules[0].primary_value == 10
    assert selected_by(rules, selection) == scores[:-1]

    info = build_optimization_info(analysis, rules)
    assert info.optimization_applied
    assert info.user_message == "Excluding 1 item instead of including 9"

def test_single_selected_value_becomes_equals(scores):
    selection, analysis, rules = solve(scores, [4])

    assert analysis.pattern == SelectionPattern.SINGLE_SELECTED
    assert [rule.operator for rule in rules] == [SearchOperator.EQUALS]
    assert selected_by(rules, selection) == [4]

def test_nothing_selected(scores):
    selection, analysis, rules = solve(scores + [None], [])

    assert analysis.pattern == SelectionPattern.ALL_UNSELECTED
    assert [rule.operator for rule in rules] == [SearchOperator.IS_NULL, SearchOperator.IS_NOT_NULL]
    assert rules[1].connector == AND
    assert selected_by(rules, selection) == []

def test_everything_selected(scores):
    _, analysis, rules = solve(scores, scores)

    assert analysis.pattern == SelectionPattern.ALL_SELECTED
    assert rules == []
    assert not build_optimization_info(analysis, rules).optimization_applied

def test_continuous_range_becomes_between(scores):
    selection, analysis, rules = solve(scores, [3, 4, 5, 6])

    assert analysis.pattern == SelectionPattern.CONTINUOUS_RANGE
    assert len(analysis.selected_ranges) == 1
    assert analysis.selected_ranges[0].count == 4
    assert rules[0].operator == SearchOperator.BETWEEN
    assert (rules[0].primary_value, rules[0].secondary_value) == (3, 6)
    assert selected_by(rules, selection) == [3, 4, 5, 6]

def test_multiple_ranges_are_joined_with_or(scores):
    selection, analysis, rules = solve(scores, [1, 2, 3, 7, 8])

    assert analysis.pattern == SelectionPattern.MULTIPLE_RANGES
    assert [rule.operator for rule in rules] == [SearchOperator.BETWEEN, SearchOperator.BETWEEN]
    assert all(rule.connector == OR for rule in rules)
    assert selected_by(rules, selection) == [1, 2, 3, 7, 8]

def test_few_gaps_become_exclusions():
    values = [1, 3, 5, 7, 9, 11]
    selection, analysis, rules = solve(values, [1, 3, 7, 11])

    assert analysis.pattern == SelectionPattern.MIXED_PATTERN
    assert [rule.operator for rule in rules] == [SearchOperator.NOT_EQUALS, SearchOperator.NOT_EQUALS]
    assert all(rule.connector == AND for rule in rules)
    assert selected_by(rules, selection) == [1, 3, 7, 11]

def test_scattered_strings_use_value_lists():
    letters = list("abcdefghij")

    selection, analysis, rules = solve(letters, ["a", "c", "e"])
    assert analysis.pattern == SelectionPattern.SPARSE
    assert rules[0].operator == SearchOperator.IS_ANY_OF
    assert rules[0].values == ["a", "c", "e"]

    selection, analysis, rules = solve(letters, [letter for letter in letters if letter not in "bdf"])
    assert analysis.pattern == SelectionPattern.SPARSE
    assert analysis.use_negation
    assert rules[0].operator == SearchOperator.IS_NONE_OF
    assert rules[0].values == ["b", "d", "f"]
    assert selected_by(rules, selection) == [letter for letter in letters if letter not in "bdf"]

def test_null_gets_its_own_group():
    values = [None, 1, 2, 3, 4, 5]

    selection, analysis, rules = solve(values, [None, 2, 3, 4])
    assert analysis.null_handling == NullHandling.INCLUDE
    assert analysis.pattern == SelectionPattern.CONTINUOUS_RANGE
    assert rules[0].operator == SearchOperator.IS_NULL
    assert rules[1].group == 1
    assert rules[1].group_connector == OR
    assert selected_by(rules, selection) == [NULL_VALUE, 2, 3, 4]

    selection, analysis, rules = solve(values, [2, 3, 4])
    assert analysis.null_handling == NullHandling.EXCLUDE
    assert rules[0].operator == SearchOperator.IS_NOT_NULL
    assert rules[1].group_connector == AND
    assert selected_by(rules, selection) == [2, 3, 4]

def test_midnight_dates_use_between_dates():
    days = [datetime(2024, 1, 1) + timedelta(days=offset) for offset in range(10)]
    selection, analysis, rules = solve(days, days[2:6])

    assert analysis.pattern == SelectionPattern.CONTINUOUS_RANGE
    assert rules[0].operator == SearchOperator.BETWEEN_DATES
    assert selected_by(rules, selection) == days[2:6]

    noons = [day.replace(hour=12) for day in days]
    _, _, rules = solve(noons, noons[2:6])
    assert rules[0].operator == SearchOperator.BETWEEN

def test_case_duplicates_are_listed_explicitly():
    selection, analysis, rules = solve(["Paris", "paris", "Rome", "Berlin"], ["paris", "Rome"])

    assert SearchOperator.EQUALS not in [rule.operator for rule in rules]
    assert selected_by(rules, selection) == ["paris", "Rome"]

def test_selected_values_outside_the_column_are_ignored(scores):
    selection, analysis, _ = solve(scores, [2, 99])
    assert analysis.selected_count == 1
    assert selection.selected == [2]

@pytest.mark.parametrize("column", [
    list(range(1, 21)) + [None],
    [0.5, 1.0, 1.5, 2.0, 3.5, 5.0, 5.5, 8.0, None],
    ["alpha", "Beta", "beta", "gamma", "custom filter", "delta", "epsilon", "", "zeta"],
    [datetime(2024, 3, 1) + timedelta(days=offset) for offset in range(15)] + [None],
])
def test_rules_reproduce_random_selections(column, monkeypatch):
    warnings = []
    monkeypatch.setattr(optimizer_module.logger, "warning", warnings.append)
    rng = random.Random(1234)

    for _ in range(40):
        chosen = [value for value in column if rng.random() < 0.5]
        selection, _, rules = solve(column, chosen)
        assert selected_by(rules, selection) == selection.selected

    assert warnings == []

def test_analyze_selection_and_optimize(scores):
    analysis = analyze_selection(scores, [5, 6, 7], ColumnDataType.NUMBER)
    assert analysis.pattern == SelectionPattern.CONTINUOUS_RANGE
    assert analysis.total_count == 10
    assert analysis.selected_count == 3
    assert analysis.unselected_count == 7

    rules = optimize(scores, [5, 6, 7])
    assert rules[0].operator == SearchOperator.BETWEEN

def test_apply_to_controller_builds_groups():
    values = [None, 1, 2, 3, 4, 5]
    _, _, rules = solve(values, [None, 2, 3, 4])

    controller = SearchTemplateController("score", values=values)
    apply_to_controller(controller, rules)

    assert len(controller.groups) == 2
    assert controller.groups[1].connector == OR
    assert controller.filter_values(values) == [True, False, True, True, True, False]

def test_apply_to_single_group_controller_flattens_groups():
    values = [None, 1, 2, 3, 4, 5, 6, 7, 8]
    selection, _, rules = solve(values, [1, 2, 5, 6])

    controller = SearchTemplateController("score", values=values, allow_multiple_groups=False)
    apply_to_controller(controller, rules)

    assert len(controller.groups) == 1
    assert controller.filter_values(selection.values) == selection.flags

def test_merge_keeps_equivalent_rules(scores):
    controller = SearchTemplateController("score", values=scores)
    template = controller.templates[0]
    template.operator = SearchOperator.BETWEEN
    template.selected_value = 3
    template.selected_secondary_value = 6

    assert not merge_with_existing(controller, scores, [3, 4, 5, 6])
    assert controller.templates == [template]

    assert merge_with_existing(controller, scores, scores[:-1])
    assert controller.templates[0].operator == SearchOperator.NOT_EQUALS
    assert controller.filter_values(scores) == [True] * 9 + [False]

def test_optimization_info_messages():
    info = OptimizationInfo.create_optimized(9, 2, "is_any_of", "between")
    assert info.user_message == "Optimized filter: 2 values instead of 9"
    assert info.values_saved == 7
    assert info.summary == "Optimized: 7 values saved (78% improvement)"

    info = OptimizationInfo.create_optimized(8, 3, "is_any_of", "is_none_of")
    assert info.user_message == "Excluding 3 items instead of including 8"

    info = OptimizationInfo.create_unoptimized("nothing to gain")
    assert not info.optimization_applied
    assert info.summary == "No optimization applied"
    assert info.technical_details == "nothing to gain"

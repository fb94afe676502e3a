from typing import Any, List, Optional

from ..schemas.filter import ColumnDataType, SearchOperator
from .coercion import is_no_value, to_decimal
from .operator_registry import OPERATOR_ARITY, OperandArity, OperatorRegistry, operator_registry

class ValidationResult:
    def __init__(self, is_valid: bool, error_message: Optional[str] = None, warning_message: Optional[str] = None):
        self.is_valid = is_valid
        self.error_message = error_message
        self.warning_message = warning_message

    @classmethod
    def success(cls, warning_message: Optional[str] = None) -> "ValidationResult":
        return cls(True, warning_message=warning_message)

    @classmethod
    def failure(cls, error_message: str) -> "ValidationResult":
        return cls(False, error_message=error_message)

    def __bool__(self):
        return self.is_valid

    def __repr__(self):
        return f"ValidationResult(is_valid={self.is_valid}, error={self.error_message!r})"

class SearchTemplateValidator:
    """Structural checks for rule-tree edits and operand completeness"""

    def __init__(self, registry: OperatorRegistry = None):
        self.registry = registry or operator_registry

    def validate_add_group(self, groups: List, allow_multiple_groups: bool) -> ValidationResult:
        if groups and not allow_multiple_groups:
            return ValidationResult.failure("Multiple search groups are not allowed for this column")
        return ValidationResult.success()

    def validate_remove_group(self, groups: List, group) -> ValidationResult:
        if group is None:
            return ValidationResult.failure("Group to remove cannot be None")
        if not any(existing is group for existing in groups):
            return ValidationResult.failure("Group does not belong to this controller")
        if len(groups) == 1:
            return ValidationResult.success("Last group will be reset instead of removed")
        return ValidationResult.success()

    def validate_remove_template(self, groups: List, template) -> ValidationResult:
        if template is None:
            return ValidationResult.failure("Template to remove cannot be None")
        if not any(template in group for group in groups):
            return ValidationResult.failure("Template does not belong to this controller")
        return ValidationResult.success()

    def validate_move_template(self, groups: List, source_group, target_group, template, target_index: int) -> ValidationResult:
        if template is None:
            return ValidationResult.failure("Template to move cannot be None")
        if not any(group is source_group for group in groups):
            return ValidationResult.failure("Source group must exist in search groups")
        if not any(group is target_group for group in groups):
            return ValidationResult.failure("Target group must exist in search groups")
        if template not in source_group:
            return ValidationResult.failure("Template must exist in source group")
        if target_index < 0 or target_index > len(target_group.templates):
            return ValidationResult.failure("Target index is out of valid range")
        return ValidationResult.success()

    def validate_operator(self, operator: SearchOperator, data_type: ColumnDataType) -> ValidationResult:
        if not self.registry.is_valid(operator, data_type):
            return ValidationResult.failure(
                f"Operator {operator.value} is not valid for {data_type.value} columns"
            )
        return ValidationResult.success()

    def validate_search_condition(
        self,
        operator: SearchOperator,
        primary_value: Any,
        secondary_value: Any = None,
        values: Optional[List[Any]] = None
    ) -> ValidationResult:
        arity = OPERATOR_ARITY.get(operator)
        if arity is None:
            return ValidationResult.failure(f"Unknown search type: {operator}")

        if operator in (SearchOperator.TOP_N, SearchOperator.BOTTOM_N):
            count = to_decimal(primary_value)
            if count is None or count != count.to_integral_value() or count <= 0:
                return ValidationResult.failure(f"{operator.value} requires a positive integer value")
            return ValidationResult.success()

        if arity == OperandArity.DUAL:
            if is_no_value(primary_value) or is_no_value(secondary_value):
                return ValidationResult.failure(f"{operator.value} requires both primary and secondary values")
        elif arity == OperandArity.SINGLE:
            if is_no_value(primary_value):
                return ValidationResult.failure(f"{operator.value} requires a primary value")
        elif arity == OperandArity.COLLECTION:
            if not values:
                return ValidationResult.failure(f"{operator.value} requires at least one selection")

        return ValidationResult.success()

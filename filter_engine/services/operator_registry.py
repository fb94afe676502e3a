from enum import Enum
from typing import Dict, Iterable, List, Optional

from ..schemas.filter import ColumnDataType, DateInterval, OperatorInfo, SearchOperator

class OperandArity(str, Enum):
    NONE = "none"
    SINGLE = "single"
    DUAL = "dual"
    COLLECTION = "collection"

OPERATOR_LABELS = {
    SearchOperator.EQUALS: "Equals",
    SearchOperator.NOT_EQUALS: "Does not equal",
    SearchOperator.GREATER_THAN: "Is greater than",
    SearchOperator.GREATER_THAN_OR_EQUAL_TO: "Is greater than or equal to",
    SearchOperator.LESS_THAN: "Is less than",
    SearchOperator.LESS_THAN_OR_EQUAL_TO: "Is less than or equal to",
    SearchOperator.CONTAINS: "Contains",
    SearchOperator.DOES_NOT_CONTAIN: "Does not contain",
    SearchOperator.STARTS_WITH: "Starts with",
    SearchOperator.ENDS_WITH: "Ends with",
    SearchOperator.IS_LIKE: "Is like",
    SearchOperator.IS_NOT_LIKE: "Is not like",
    SearchOperator.BETWEEN: "Is between",
    SearchOperator.NOT_BETWEEN: "Is not between",
    SearchOperator.BETWEEN_DATES: "Is between dates",
    SearchOperator.TOP_N: "Top N",
    SearchOperator.BOTTOM_N: "Bottom N",
    SearchOperator.ABOVE_AVERAGE: "Above average",
    SearchOperator.BELOW_AVERAGE: "Below average",
    SearchOperator.IS_NULL: "Is null",
    SearchOperator.IS_NOT_NULL: "Is not null",
    SearchOperator.IS_BLANK: "Is blank",
    SearchOperator.IS_NOT_BLANK: "Is not blank",
    SearchOperator.UNIQUE: "Unique",
    SearchOperator.DUPLICATE: "Duplicate",
    SearchOperator.YESTERDAY: "Is yesterday",
    SearchOperator.TODAY: "Is today",
    SearchOperator.IS_ANY_OF: "Is any of",
    SearchOperator.IS_NONE_OF: "Is none of",
    SearchOperator.IS_ON_ANY_OF_DATES: "Is on any of the following",
    SearchOperator.DATE_INTERVAL: "Date intervals",
}

DATE_INTERVAL_LABELS = {
    DateInterval.PRIOR_THIS_YEAR: "Prior this year",
    DateInterval.EARLIER_THIS_YEAR: "Earlier this year",
    DateInterval.LATER_THIS_YEAR: "Later this year",
    DateInterval.BEYOND_THIS_YEAR: "Beyond this year",
    DateInterval.EARLIER_THIS_MONTH: "Earlier this month",
    DateInterval.LATER_THIS_MONTH: "Later this month",
    DateInterval.EARLIER_THIS_WEEK: "Earlier this week",
    DateInterval.LATER_THIS_WEEK: "Later this week",
    DateInterval.LAST_WEEK: "Last week",
    DateInterval.NEXT_WEEK: "Next week",
    DateInterval.YESTERDAY: "Yesterday",
    DateInterval.TODAY: "Today",
    DateInterval.TOMORROW: "Tomorrow",
}

OPERATOR_ARITY = {
    SearchOperator.IS_NULL: OperandArity.NONE,
    SearchOperator.IS_NOT_NULL: OperandArity.NONE,
    SearchOperator.IS_BLANK: OperandArity.NONE,
    SearchOperator.IS_NOT_BLANK: OperandArity.NONE,
    SearchOperator.ABOVE_AVERAGE: OperandArity.NONE,
    SearchOperator.BELOW_AVERAGE: OperandArity.NONE,
    SearchOperator.UNIQUE: OperandArity.NONE,
    SearchOperator.DUPLICATE: OperandArity.NONE,
    SearchOperator.TODAY: OperandArity.NONE,
    SearchOperator.YESTERDAY: OperandArity.NONE,
    SearchOperator.CONTAINS: OperandArity.SINGLE,
    SearchOperator.DOES_NOT_CONTAIN: OperandArity.SINGLE,
    SearchOperator.STARTS_WITH: OperandArity.SINGLE,
    SearchOperator.ENDS_WITH: OperandArity.SINGLE,
    SearchOperator.EQUALS: OperandArity.SINGLE,
    SearchOperator.NOT_EQUALS: OperandArity.SINGLE,
    SearchOperator.GREATER_THAN: OperandArity.SINGLE,
    SearchOperator.GREATER_THAN_OR_EQUAL_TO: OperandArity.SINGLE,
    SearchOperator.LESS_THAN: OperandArity.SINGLE,
    SearchOperator.LESS_THAN_OR_EQUAL_TO: OperandArity.SINGLE,
    SearchOperator.IS_LIKE: OperandArity.SINGLE,
    SearchOperator.IS_NOT_LIKE: OperandArity.SINGLE,
    SearchOperator.TOP_N: OperandArity.SINGLE,
    SearchOperator.BOTTOM_N: OperandArity.SINGLE,
    SearchOperator.BETWEEN: OperandArity.DUAL,
    SearchOperator.NOT_BETWEEN: OperandArity.DUAL,
    SearchOperator.BETWEEN_DATES: OperandArity.DUAL,
    SearchOperator.IS_ANY_OF: OperandArity.COLLECTION,
    SearchOperator.IS_NONE_OF: OperandArity.COLLECTION,
    SearchOperator.IS_ON_ANY_OF_DATES: OperandArity.COLLECTION,
    SearchOperator.DATE_INTERVAL: OperandArity.COLLECTION,
}

# Operators that need whole-column statistics
CONTEXT_OPERATORS = frozenset({
    SearchOperator.TOP_N,
    SearchOperator.BOTTOM_N,
    SearchOperator.ABOVE_AVERAGE,
    SearchOperator.BELOW_AVERAGE,
    SearchOperator.UNIQUE,
    SearchOperator.DUPLICATE,
})

NULL_OPERATORS = frozenset({SearchOperator.IS_NULL, SearchOperator.IS_NOT_NULL})

_ALL_TYPES = tuple(ColumnDataType)
_TEXT_TYPES = (ColumnDataType.STRING, ColumnDataType.NUMBER, ColumnDataType.ENUM)
_ORDERED_TYPES = (ColumnDataType.NUMBER, ColumnDataType.DATETIME)

DEFAULT_VALID_TYPES: Dict[SearchOperator, tuple] = {
    SearchOperator.EQUALS: _ALL_TYPES,
    SearchOperator.NOT_EQUALS: _ALL_TYPES,
    SearchOperator.GREATER_THAN: _ORDERED_TYPES,
    SearchOperator.GREATER_THAN_OR_EQUAL_TO: _ORDERED_TYPES,
    SearchOperator.LESS_THAN: _ORDERED_TYPES,
    SearchOperator.LESS_THAN_OR_EQUAL_TO: _ORDERED_TYPES,
    SearchOperator.CONTAINS: _TEXT_TYPES,
    SearchOperator.DOES_NOT_CONTAIN: _TEXT_TYPES,
    SearchOperator.STARTS_WITH: _TEXT_TYPES,
    SearchOperator.ENDS_WITH: _TEXT_TYPES,
    SearchOperator.IS_LIKE: _TEXT_TYPES,
    SearchOperator.IS_NOT_LIKE: _TEXT_TYPES,
    SearchOperator.BETWEEN: _ORDERED_TYPES,
    SearchOperator.NOT_BETWEEN: _ORDERED_TYPES,
    SearchOperator.BETWEEN_DATES: (ColumnDataType.DATETIME,),
    SearchOperator.TOP_N: (ColumnDataType.NUMBER,),
    SearchOperator.BOTTOM_N: (ColumnDataType.NUMBER,),
    SearchOperator.ABOVE_AVERAGE: (ColumnDataType.NUMBER,),
    SearchOperator.BELOW_AVERAGE: (ColumnDataType.NUMBER,),
    SearchOperator.IS_NULL: _ALL_TYPES,
    SearchOperator.IS_NOT_NULL: _ALL_TYPES,
    SearchOperator.IS_BLANK: (ColumnDataType.STRING,),
    SearchOperator.IS_NOT_BLANK: (ColumnDataType.STRING,),
    SearchOperator.UNIQUE: (ColumnDataType.STRING, ColumnDataType.NUMBER, ColumnDataType.DATETIME),
    SearchOperator.DUPLICATE: (ColumnDataType.STRING, ColumnDataType.NUMBER, ColumnDataType.DATETIME),
    SearchOperator.YESTERDAY: (ColumnDataType.DATETIME,),
    SearchOperator.TODAY: (ColumnDataType.DATETIME,),
    SearchOperator.IS_ANY_OF: _ALL_TYPES,
    SearchOperator.IS_NONE_OF: _ALL_TYPES,
    SearchOperator.IS_ON_ANY_OF_DATES: (ColumnDataType.DATETIME,),
    SearchOperator.DATE_INTERVAL: (ColumnDataType.DATETIME,),
}

class OperatorRegistry:
    """Which operators a column of a given data type may use.

    The table is host configuration; pass ``valid_types`` to replace the
    default one.
    """

    def __init__(self, valid_types: Optional[Dict[SearchOperator, Iterable[ColumnDataType]]] = None):
        table = valid_types if valid_types is not None else DEFAULT_VALID_TYPES
        self.valid_types = {operator: frozenset(types) for operator, types in table.items()}

    def is_valid(self, operator: SearchOperator, data_type: ColumnDataType) -> bool:
        return data_type in self.valid_types.get(operator, frozenset())

    def valid_operators_for(self, data_type: ColumnDataType, is_nullable: bool = True) -> List[SearchOperator]:
        operators = [operator for operator in SearchOperator if self.is_valid(operator, data_type)]
        if not is_nullable:
            operators = [operator for operator in operators if operator not in NULL_OPERATORS]
        return operators

    def default_operator_for(self, data_type: ColumnDataType) -> SearchOperator:
        # Prefer an operator that needs input so a fresh template filters nothing
        for operator in (SearchOperator.CONTAINS, SearchOperator.EQUALS):
            if self.is_valid(operator, data_type):
                return operator
        operators = [
            operator for operator in self.valid_operators_for(data_type)
            if OPERATOR_ARITY[operator] != OperandArity.NONE
        ]
        return operators[0] if operators else SearchOperator.EQUALS

    def describe(self, operator: SearchOperator) -> OperatorInfo:
        return OperatorInfo(
            name=operator,
            description=OPERATOR_LABELS[operator],
            arity=OPERATOR_ARITY[operator].value,
            requires_collection_context=operator in CONTEXT_OPERATORS
        )

    def describe_for(self, data_type: ColumnDataType, is_nullable: bool = True) -> List[OperatorInfo]:
        return [self.describe(operator) for operator in self.valid_operators_for(data_type, is_nullable)]

def arity_of(operator: SearchOperator) -> OperandArity:
    return OPERATOR_ARITY[operator]

def label_of(operator: SearchOperator) -> str:
    return OPERATOR_LABELS.get(operator, operator.value)

operator_registry = OperatorRegistry()

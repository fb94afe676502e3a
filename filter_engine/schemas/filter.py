from pydantic import BaseModel, Field
from typing import List, Any, Optional
from enum import Enum

class ColumnDataType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    DATETIME = "datetime"
    BOOLEAN = "boolean"
    ENUM = "enum"

class SearchOperator(str, Enum):
    # Zero-operand
    IS_NULL = "is_null"
    IS_NOT_NULL = "is_not_null"
    IS_BLANK = "is_blank"
    IS_NOT_BLANK = "is_not_blank"
    ABOVE_AVERAGE = "above_average"
    BELOW_AVERAGE = "below_average"
    UNIQUE = "unique"
    DUPLICATE = "duplicate"
    TODAY = "today"
    YESTERDAY = "yesterday"

    # One-operand
    CONTAINS = "contains"
    DOES_NOT_CONTAIN = "does_not_contain"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    GREATER_THAN_OR_EQUAL_TO = "greater_than_or_equal_to"
    LESS_THAN = "less_than"
    LESS_THAN_OR_EQUAL_TO = "less_than_or_equal_to"
    IS_LIKE = "is_like"
    IS_NOT_LIKE = "is_not_like"
    TOP_N = "top_n"
    BOTTOM_N = "bottom_n"

    # Two-operand
    BETWEEN = "between"
    NOT_BETWEEN = "not_between"
    BETWEEN_DATES = "between_dates"

    # Collection-operand
    IS_ANY_OF = "is_any_of"
    IS_NONE_OF = "is_none_of"
    IS_ON_ANY_OF_DATES = "is_on_any_of_dates"
    DATE_INTERVAL = "date_interval"

class DateInterval(str, Enum):
    PRIOR_THIS_YEAR = "prior_this_year"
    EARLIER_THIS_YEAR = "earlier_this_year"
    LATER_THIS_YEAR = "later_this_year"
    BEYOND_THIS_YEAR = "beyond_this_year"
    EARLIER_THIS_MONTH = "earlier_this_month"
    LATER_THIS_MONTH = "later_this_month"
    EARLIER_THIS_WEEK = "earlier_this_week"
    LATER_THIS_WEEK = "later_this_week"
    LAST_WEEK = "last_week"
    NEXT_WEEK = "next_week"
    YESTERDAY = "yesterday"
    TODAY = "today"
    TOMORROW = "tomorrow"

class LogicalConnector(str, Enum):
    AND = "and"
    OR = "or"

class SearchTemplateModel(BaseModel):
    """Wire form of a single rule"""
    operator: SearchOperator = SearchOperator.CONTAINS
    value: Optional[Any] = None
    secondary_value: Optional[Any] = None
    values: List[Any] = Field(default_factory=list)
    dates: List[Any] = Field(default_factory=list)
    date_intervals: List[DateInterval] = Field(default_factory=list)
    connector: LogicalConnector = LogicalConnector.OR

class SearchGroupModel(BaseModel):
    connector: LogicalConnector = LogicalConnector.AND
    templates: List[SearchTemplateModel] = Field(default_factory=lambda: [SearchTemplateModel()])

class FilterDefinition(BaseModel):
    """Rule tree for one column"""
    column: str
    data_type: Optional[ColumnDataType] = None
    groups: List[SearchGroupModel] = Field(default_factory=lambda: [SearchGroupModel()])

class OperatorInfo(BaseModel):
    name: SearchOperator
    description: str
    arity: str
    requires_collection_context: bool = False

class FilterChip(BaseModel):
    """Read-only pieces a host needs to render one rule as a removable chip"""
    group_index: int
    template_index: int
    search_type_text: str
    primary_value: Optional[str] = None
    secondary_value: Optional[str] = None
    value_operator_text: Optional[str] = None
    value_items: List[str] = Field(default_factory=list)
    connector: Optional[LogicalConnector] = None
    is_date_interval: bool = False

class InvalidSearchError(Exception):
    def __init__(self, message: str, error_code: str = None):
        self.message = message
        self.error_code = error_code
        super().__init__(self.message)

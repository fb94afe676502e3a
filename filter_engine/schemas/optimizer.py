from pydantic import BaseModel, Field
from typing import List, Any, Optional
from enum import Enum
from .filter import ColumnDataType, FilterDefinition, LogicalConnector, SearchOperator

class SelectionPattern(str, Enum):
    ALL_SELECTED = "all_selected"
    ALL_UNSELECTED = "all_unselected"
    SINGLE_SELECTED = "single_selected"
    SINGLE_UNSELECTED = "single_unselected"
    CONTINUOUS_RANGE = "continuous_range"
    MULTIPLE_RANGES = "multiple_ranges"
    MIXED_PATTERN = "mixed_pattern"
    SPARSE = "sparse"

class NullHandling(str, Enum):
    NONE = "none"
    INCLUDE = "include"
    EXCLUDE = "exclude"

class ValueRange(BaseModel):
    """Run of values that sit next to each other in the sorted column"""
    start: Any
    end: Any
    count: int
    values: List[Any] = Field(default_factory=list)

    @property
    def is_single_value(self) -> bool:
        return self.count == 1

class SelectionAnalysis(BaseModel):
    pattern: SelectionPattern
    selected_ranges: List[ValueRange] = Field(default_factory=list)
    unselected_ranges: List[ValueRange] = Field(default_factory=list)
    use_negation: bool = False
    efficiency_score: int = 0
    total_count: int = 0
    selected_count: int = 0
    unselected_count: int = 0
    null_handling: NullHandling = NullHandling.NONE

class OptimizedRule(BaseModel):
    """One rule of an optimized rule set.

    ``connector`` joins the rule to the previous rule of the same group;
    ``group_connector`` joins its group to the previous group.
    """
    operator: SearchOperator
    primary_value: Optional[Any] = None
    secondary_value: Optional[Any] = None
    values: List[Any] = Field(default_factory=list)
    description: str = ""
    complexity_score: int = 1
    connector: LogicalConnector = LogicalConnector.OR
    group: int = 0
    group_connector: LogicalConnector = LogicalConnector.AND

class OptimizationInfo(BaseModel):
    """Summary of how much an optimized rule set saves over listing every selected value"""
    optimization_applied: bool = False
    original_strategy: str = ""
    optimized_strategy: str = ""
    values_saved: int = 0
    performance_gain_ratio: float = 0.0
    user_message: str = ""
    technical_details: str = ""

    @classmethod
    def create_optimized(
        cls,
        original_count: int,
        optimized_count: int,
        original_type: str,
        optimized_type: str
    ) -> "OptimizationInfo":
        values_saved = original_count - optimized_count
        gain = values_saved / original_count if original_count > 0 else 0.0

        if optimized_type in (SearchOperator.NOT_EQUALS.value, SearchOperator.IS_NONE_OF.value):
            plural = "" if optimized_count == 1 else "s"
            message = f"Excluding {optimized_count} item{plural} instead of including {original_count}"
        else:
            message = f"Optimized filter: {optimized_count} values instead of {original_count}"

        return cls(
            optimization_applied=True,
            original_strategy=f"{original_type} with {original_count} values",
            optimized_strategy=f"{optimized_type} with {optimized_count} values",
            values_saved=values_saved,
            performance_gain_ratio=gain,
            user_message=message,
            technical_details=(
                f"Reduced filter expression from {original_count} to {optimized_count} values "
                f"({gain:.1%} improvement)"
            )
        )

    @classmethod
    def create_unoptimized(cls, reason: str) -> "OptimizationInfo":
        return cls(
            optimization_applied=False,
            original_strategy="Standard inclusion filter",
            optimized_strategy="Standard inclusion filter",
            user_message="Using standard filter strategy",
            technical_details=reason
        )

    @property
    def summary(self) -> str:
        if not self.optimization_applied:
            return "No optimization applied"
        return f"Optimized: {self.values_saved} values saved ({self.performance_gain_ratio:.0%} improvement)"

class OptimizeRequest(BaseModel):
    file_path: str
    column: str
    selected_values: List[Any] = Field(default_factory=list)
    data_type: Optional[ColumnDataType] = None

class OptimizeResponse(BaseModel):
    column: str
    analysis: SelectionAnalysis
    rules: List[OptimizedRule]
    info: OptimizationInfo
    filter: FilterDefinition
    display_text: str

from pydantic import BaseModel, ConfigDict, Field
from typing import List, Dict, Any, Optional
from .filter import ColumnDataType, FilterDefinition, OperatorInfo

class ColumnInfo(BaseModel):
    name: str
    type: ColumnDataType
    dtype: str
    contains_null: bool = False
    distinct_count: int = 0

class FilterMetadata(BaseModel):
    column: str
    type: ColumnDataType
    unique_values: Optional[List[Any]] = None
    total_unique: int = 0
    operators: List[OperatorInfo]

class DatasetLoadRequest(BaseModel):
    file_path: str
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=10, ge=1, le=100)
    filters: Optional[List[FilterDefinition]] = Field(default=None)

class DatasetResponse(BaseModel):
    total_rows: int
    total_pages: int
    current_page: int
    page_size: int
    columns: List[ColumnInfo]
    filters: List[FilterMetadata]
    active_filters: List[str] = Field(default_factory=list)
    data: List[Dict[str, Any]]

    model_config = ConfigDict(from_attributes=True)

class ColumnValueRequest(BaseModel):
    """Paged request for the distinct values of one column"""
    column_key: str
    skip: int = Field(default=0, ge=0)
    take: Optional[int] = Field(default=None, ge=1)
    search_text: Optional[str] = None
    include_null: bool = True
    include_empty: bool = True
    exclude_values: List[Any] = Field(default_factory=list)
    sort_ascending: bool = True
    group_by_frequency: bool = False

class ColumnValueResponse(BaseModel):
    column_key: str
    values: List[Any]
    counts: List[int] = Field(default_factory=list)
    total_count: int
    has_more: bool = False
    is_from_cache: bool = False

class ColumnValuesRequest(BaseModel):
    file_path: str
    column: str
    skip: int = Field(default=0, ge=0)
    take: int = Field(default=100, ge=1, le=1000)
    search_text: Optional[str] = None
    group_by_frequency: bool = False

class ErrorResponse(BaseModel):
    """Response model for errors"""
    detail: str
    error_code: Optional[str] = None

class DatasetError(Exception):
    def __init__(self, message: str, error_code: str = None):
        self.message = message
        self.error_code = error_code
        super().__init__(self.message)

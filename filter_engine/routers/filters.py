from fastapi import APIRouter, HTTPException, Body, Query
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from typing import Any, List
from ..schemas.dataset import (
    ColumnValueResponse,
    ColumnValuesRequest,
    DatasetError,
    DatasetLoadRequest,
    DatasetResponse,
    ErrorResponse
)
from ..schemas.filter import ColumnDataType, InvalidSearchError, OperatorInfo
from ..schemas.optimizer import OptimizeRequest, OptimizeResponse
from ..services.dataset_service import DatasetService
from ..services.operator_registry import operator_registry
from ..utils.values import NULL_VALUE

router = APIRouter()
dataset_service = DatasetService()

ERROR_RESPONSES = {400: {"model": ErrorResponse}}

def to_wire(value: Any) -> Any:
    """Replace the null sentinel with None throughout a dumped model"""
    if value is NULL_VALUE:
        return None
    if isinstance(value, dict):
        return {key: to_wire(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_wire(item) for item in value]
    return value

def wire_response(model) -> JSONResponse:
    return JSONResponse(content=jsonable_encoder(to_wire(model.model_dump())))

@router.post("/dataset/load", response_model=DatasetResponse, responses=ERROR_RESPONSES)
async def load_dataset(
    request: DatasetLoadRequest = Body(...)
):
    try:
        data = await dataset_service.load_dataset(
            file_path=request.file_path,
            page=request.page,
            page_size=request.page_size,
            filters=request.filters
        )
        return wire_response(data)
    except (DatasetError, InvalidSearchError):
        raise
    except Exception as e:
        raise HTTPException(
            status_code=400,
            detail=f"Error loading dataset: {str(e)}"
        )

@router.post("/dataset/column-values", response_model=ColumnValueResponse, responses=ERROR_RESPONSES)
async def get_column_values(
    request: ColumnValuesRequest = Body(...)
):
    """Distinct values of a column with occurrence counts"""
    try:
        data = await dataset_service.get_column_values(
            file_path=request.file_path,
            column=request.column,
            skip=request.skip,
            take=request.take,
            search_text=request.search_text,
            group_by_frequency=request.group_by_frequency
        )
        return wire_response(data)
    except (DatasetError, InvalidSearchError):
        raise
    except Exception as e:
        raise HTTPException(
            status_code=400,
            detail=f"Error loading column values: {str(e)}"
        )

@router.post("/dataset/optimize", response_model=OptimizeResponse, responses=ERROR_RESPONSES)
async def optimize_selection(
    request: OptimizeRequest = Body(...)
):
    """Turn a set of selected column values into the smallest matching filter"""
    try:
        data = await dataset_service.optimize_selection(
            file_path=request.file_path,
            column=request.column,
            selected_values=request.selected_values,
            data_type=request.data_type
        )
        return wire_response(data)
    except (DatasetError, InvalidSearchError):
        raise
    except Exception as e:
        raise HTTPException(
            status_code=400,
            detail=f"Error optimizing selection: {str(e)}"
        )

@router.get("/operators/{data_type}", response_model=List[OperatorInfo])
async def get_operators(
    data_type: ColumnDataType,
    is_nullable: bool = Query(True, description="Include null checks")
) -> List[OperatorInfo]:
    return operator_registry.describe_for(data_type, is_nullable=is_nullable)

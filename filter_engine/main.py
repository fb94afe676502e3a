from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from .routers import filters
from .config import settings
from .schemas.dataset import DatasetError, ErrorResponse
from .schemas.filter import InvalidSearchError
from .utils.logger import setup_logger
import time

# Configure logging
logger = setup_logger(
    "filter_engine",
    "logs/filter_engine.log"
)

app = FastAPI(
    title=settings.PROJECT_NAME,
    description="API for filtering dataset columns with rule trees and optimizing value selections",
    version="1.0.0"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Root route
@app.get("/")
async def root():
    return {
        "message": "Column Filter Engine",
        "status": "active",
        "api_version": "1.0.0",
        "documentation": "/docs"
    }

# Include routers
app.include_router(filters.router, prefix=settings.API_V1_STR)

# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()

    client_host = request.client.host if request.client else "unknown"
    logger.info(
        f"Request started: {request.method} {request.url.path} "
        f"Client: {client_host}"
    )

    response = await call_next(request)

    duration = time.time() - start_time
    logger.info(
        f"Request completed: {request.method} {request.url.path} "
        f"Status: {response.status_code} Duration: {duration:.3f}s"
    )

    return response

# Error handling
@app.exception_handler(InvalidSearchError)
async def invalid_search_handler(request: Request, exc: InvalidSearchError):
    logger.warning(f"Invalid search for {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(detail=exc.message, error_code=exc.error_code).model_dump()
    )

@app.exception_handler(DatasetError)
async def dataset_error_handler(request: Request, exc: DatasetError):
    logger.warning(f"Dataset error for {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(detail=exc.message, error_code=exc.error_code).model_dump()
    )

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(
        f"Global error handler caught exception for request "
        f"{request.method} {request.url.path}",
        exc_info=True
    )

    # Log additional request details for debugging
    logger.debug(f"Request headers: {dict(request.headers)}")
    logger.debug(f"Request query params: {dict(request.query_params)}")

    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional
from pathlib import Path

class FilterSettings(BaseSettings):
    # Column value cache
    SORT_MAX_ITEMS: int = 100_000
    INCREMENTAL_SORT_MAX_ITEMS: int = 10_000
    TYPE_DETECTION_SAMPLE_SIZE: int = 100

    # Null handling
    NULL_DISPLAY_TEXT: str = "(null)"
    NO_VALUE_TEXT: str = "custom filter"

    # Relative dates (Monday=0 ... Sunday=6)
    WEEK_START_DAY: int = 6

    # Selection optimizer
    NUMERIC_ADJACENCY_GAP: float = 1.0
    DATE_ADJACENCY_DAYS: int = 1
    SPARSE_NEGATION_MAX_VALUES: int = 5

    # Rule tree
    ALLOW_MULTIPLE_GROUPS: bool = True
    DISPLAY_MAX_LIST_VALUES: int = 3

class LoggingSettings(BaseSettings):
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    LOG_DIR: str = "logs"
    ENABLE_FILE_LOGGING: bool = True
    ENABLE_CONSOLE_LOGGING: bool = True
    MAX_LOG_FILE_SIZE: int = 10 * 1024 * 1024  # 10MB
    MAX_LOG_FILE_COUNT: int = 5

class Settings(BaseSettings):
    # Base settings
    API_V1_STR: str = "/api/v1"
    PROJECT_NAME: str = "Column Filter Engine API"
    DEBUG: bool = False

    # CORS settings
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:5173"]

    # GCS settings
    GOOGLE_APPLICATION_CREDENTIALS: Optional[str] = None
    GCS_TIMEOUT: int = 30

    # Pagination settings
    MAX_PAGE_SIZE: int = 100
    MAX_COLUMN_VALUES: int = 1000

    # Sub-configurations
    filters: FilterSettings = FilterSettings()
    logging: LoggingSettings = LoggingSettings()

    model_config = SettingsConfigDict(env_file=".env", extra="allow")

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._create_directories()

    def _create_directories(self):
        """Create necessary directories"""
        if self.logging.ENABLE_FILE_LOGGING:
            Path(self.logging.LOG_DIR).mkdir(parents=True, exist_ok=True)

    @property
    def is_development(self) -> bool:
        """Check if running in development mode"""
        return self.DEBUG

# Initialize settings
settings = Settings()

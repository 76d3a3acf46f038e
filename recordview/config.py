import os

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

load_dotenv()


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    database_url: str = Field(
        default=os.getenv("DATABASE_URL", "sqlite+pysqlite:///./recordview.db")
    )
    db_pool_size: int = Field(default=int(os.getenv("DB_POOL_SIZE", "15")))
    db_max_overflow: int = Field(default=int(os.getenv("DB_MAX_OVERFLOW", "20")))
    db_pool_timeout: int = Field(default=int(os.getenv("DB_POOL_TIMEOUT", "30")))
    db_pool_recycle: int = Field(default=int(os.getenv("DB_POOL_RECYCLE", "1800")))

    # Data-source errors propagate instead of degrading to an empty result
    debug: bool = Field(default=_env_flag("RECORDVIEW_DEBUG"))

    # Pagination
    page_limit: int = Field(default=int(os.getenv("PAGE_LIMIT", "20")))
    max_page_limit: int = Field(default=int(os.getenv("MAX_PAGE_LIMIT", "200")))

    # Display formatting
    date_format: str = Field(default=os.getenv("DATE_FORMAT", "%Y-%m-%d"))
    datetime_format: str = Field(default=os.getenv("DATETIME_FORMAT", "%Y-%m-%d %H:%M"))
    time_format: str = Field(default=os.getenv("TIME_FORMAT", "%H:%M"))
    list_separator: str = Field(default=os.getenv("LIST_SEPARATOR", ", "))
    truncate_suffix: str = Field(default=os.getenv("TRUNCATE_SUFFIX", "..."))

    # Logging
    log_level: str = Field(default=os.getenv("LOG_LEVEL", "INFO"))
    log_json: bool = Field(default=_env_flag("LOG_JSON"))

    @field_validator("page_limit", "max_page_limit", mode="after")
    @classmethod
    def validate_positive_limit(cls, v: int) -> int:
        if v < 1:
            raise ValueError("page limits must be >= 1")
        return v

    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


settings = Settings()

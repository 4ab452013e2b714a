from typing import List, Optional
from functools import lru_cache
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class CORSSettings(BaseSettings):
    """CORS configuration settings."""

    model_config = SettingsConfigDict(env_prefix="CORS_", extra="ignore")

    allowed_origins: List[str] = Field(default=["*"])
    allowed_methods: List[str] = Field(default=["*"])
    allowed_headers: List[str] = Field(default=["*"])
    allow_credentials: bool = Field(default=True)


class DatabaseSettings(BaseSettings):
    """Database configuration settings."""

    model_config = SettingsConfigDict(env_prefix="DB_", extra="ignore")

    url: str = Field(default="sqlite:///./data/keyed_ingest.db")
    echo: bool = Field(default=False)


class IngestSettings(BaseSettings):
    """Ingestion configuration settings."""

    model_config = SettingsConfigDict(env_prefix="INGEST_", extra="ignore")

    key_field: str = Field(default="TRGID", description="Business key used to deduplicate rows")
    batch_size: int = Field(default=1000, ge=1, description="Rows per write transaction")
    csv_chunk_rows: int = Field(default=5000, ge=1, description="Rows per parser chunk")
    csv_delimiter: str = Field(default=",", description="Delimiter or 'auto'")
    csv_encoding: str = Field(default="utf-8-sig", description="Encoding or 'auto'")
    excel_max_bytes: int = Field(default=20 * 1024 * 1024, ge=1)
    revision_field: Optional[str] = Field(default=None)
    preview_limit: int = Field(default=300, ge=1)
    scan_page_size: int = Field(default=1000, ge=1)


class ExportSettings(BaseSettings):
    """Export configuration settings."""

    model_config = SettingsConfigDict(env_prefix="EXPORT_", extra="ignore")

    row_cap: int = Field(default=600_000, ge=1)
    filename: str = Field(default="deduped_export.csv")


class LoggingSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="LOG_", extra="ignore")

    level: str = Field(default="INFO")
    json_format: bool = Field(default=False)
    format: str = Field(default="%(asctime)s - %(levelname)s - %(name)s - %(message)s")
    file_path: Optional[str] = Field(default=None)
    max_bytes: int = Field(default=10 * 1024 * 1024)
    backup_count: int = Field(default=5)


class Settings(BaseSettings):
    app_name: str = Field(default="keyed-ingest")
    api_prefix: str = Field(default="/api/v1")

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    ingest: IngestSettings = Field(default_factory=IngestSettings)
    export: ExportSettings = Field(default_factory=ExportSettings)
    cors_settings: CORSSettings = Field(default_factory=CORSSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    model_config = SettingsConfigDict(env_file=".env", extra="allow", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    return Settings()

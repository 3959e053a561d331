"""Application configuration using pydantic-settings with grouped env prefixes."""

from __future__ import annotations

from typing import Literal

from pydantic_settings import BaseSettings


class DynamoDBConfig(BaseSettings):
    """DynamoDB configuration (job records)."""

    model_config = {"env_prefix": "EFDLOADER_DYNAMO_"}

    table_suffix: str = ""  # "-dev", "-uat", or "" for prod
    region: str = "us-east-1"
    endpoint_url: str | None = None  # LocalStack override


class RedisConfig(BaseSettings):
    """Redis configuration (slice leases)."""

    model_config = {"env_prefix": "EFDLOADER_REDIS_"}

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    lease_enabled: bool = False
    lease_ttl_seconds: int = 120


class S3Config(BaseSettings):
    """S3 file storage configuration."""

    model_config = {"env_prefix": "EFDLOADER_S3_"}

    bucket: str = "efd-files"
    region: str = "us-east-1"
    endpoint_url: str | None = None  # LocalStack override
    read_chunk_size: int = 1024 * 1024


class SQSConfig(BaseSettings):
    """SQS queue configuration."""

    model_config = {"env_prefix": "EFDLOADER_SQS_"}

    region: str = "us-east-1"
    endpoint_url: str | None = None  # LocalStack override
    slice_queue_url: str = ""
    wait_time_seconds: int = 20


class DatabaseConfig(BaseSettings):
    """Destination ledger database configuration."""

    model_config = {"env_prefix": "EFDLOADER_DB_"}

    url: str = "sqlite:///./efdloader.db"
    echo: bool = False
    create_schema: bool = False
    # Run once per completed job, e.g. "REFRESH MATERIALIZED VIEW mv_ledger_summary"
    refresh_statements: list[str] = []


class ImportConfig(BaseSettings):
    """Stream driver and scheduler tuning."""

    model_config = {"env_prefix": "EFDLOADER_IMPORT_"}

    batch_size: int = 1000
    slice_time_budget_seconds: float = 45.0
    slice_line_budget: int = 50_000
    cancel_check_interval: int = 5_000
    checkpoint_interval: int = 20_000
    source_encoding: str = "latin-1"
    transport_retry_delay_seconds: float = 2.0
    delete_source_on_complete: bool = True
    dispatcher: Literal["local", "sqs"] = "local"


class AppSettings(BaseSettings):
    """Root application settings aggregating all sub-configs."""

    model_config = {"env_prefix": "EFDLOADER_"}

    environment: Literal["dev", "uat", "prod"] = "dev"
    log_level: str = "INFO"

    dynamodb: DynamoDBConfig = DynamoDBConfig()
    redis: RedisConfig = RedisConfig()
    s3: S3Config = S3Config()
    sqs: SQSConfig = SQSConfig()
    database: DatabaseConfig = DatabaseConfig()
    importer: ImportConfig = ImportConfig()

"""Pluggable persistence backends behind Protocol interfaces."""

from __future__ import annotations

from efdloader.core.config import AppSettings
from efdloader.persistence.dynamodb_backend import DynamoDBJobStore
from efdloader.persistence.redis_backend import RedisCacheBackend
from efdloader.persistence.s3_backend import S3FileStore
from efdloader.persistence.sql_backend import SqlLedgerStore


def create_persistence(settings: AppSettings | None = None):
    """Create wired-up persistence backends from application settings.

    Returns:
        Tuple of (job_store, cache, file_store, ledger_store).
    """
    if settings is None:
        settings = AppSettings()

    cache = RedisCacheBackend(
        host=settings.redis.host,
        port=settings.redis.port,
        db=settings.redis.db,
    )

    job_store = DynamoDBJobStore(
        table_suffix=settings.dynamodb.table_suffix,
        region=settings.dynamodb.region,
        endpoint_url=settings.dynamodb.endpoint_url,
    )

    file_store = S3FileStore(
        bucket=settings.s3.bucket,
        region=settings.s3.region,
        endpoint_url=settings.s3.endpoint_url,
    )

    ledger_store = SqlLedgerStore(
        settings.database.url,
        echo=settings.database.echo,
        refresh_statements=settings.database.refresh_statements,
        create_schema=settings.database.create_schema,
    )

    return job_store, cache, file_store, ledger_store

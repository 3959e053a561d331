"""Create the import job table and optionally register a local EFD file as a pending job.

Usage:
    python scripts/seed_dynamodb.py --endpoint-url http://localhost:4566
    python scripts/seed_dynamodb.py --endpoint-url http://localhost:4566 \
        --upload ./samples/efd.txt --entity-id ent-1
"""

from __future__ import annotations

import argparse
import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import boto3

from efdloader.core.protocols import IFileStore, IJobStore
from efdloader.models.job import ImportJob
from efdloader.models.records import ImportScope
from efdloader.persistence.dynamodb_backend import JOBS_TABLE, DynamoDBJobStore
from efdloader.persistence.s3_backend import S3FileStore

TABLE_DEFINITIONS: list[dict[str, Any]] = [
    {"name": JOBS_TABLE},
]


def create_tables(ddb: Any, suffix: str = "") -> None:
    """Create the DynamoDB tables. Skips if table already exists."""
    client = ddb.meta.client
    existing = client.list_tables().get("TableNames", [])

    for defn in TABLE_DEFINITIONS:
        table_name = f"{defn['name']}{suffix}"
        if table_name in existing:
            print(f"  Table {table_name} already exists, skipping")
            continue
        client.create_table(
            TableName=table_name,
            KeySchema=[
                {"AttributeName": "PK", "KeyType": "HASH"},
                {"AttributeName": "SK", "KeyType": "RANGE"},
            ],
            AttributeDefinitions=[
                {"AttributeName": "PK", "AttributeType": "S"},
                {"AttributeName": "SK", "AttributeType": "S"},
            ],
            BillingMode="PAY_PER_REQUEST",
        )
        print(f"  Created table {table_name}")


def register_upload(
    job_store: IJobStore,
    file_store: IFileStore,
    path: Path,
    *,
    entity_id: str,
    record_limit: int = 0,
    import_scope: ImportScope = ImportScope.ALL,
) -> ImportJob:
    """Upload an EFD file and write a pending job record pointing at it."""
    data = path.read_bytes()
    job_id = str(uuid.uuid4())
    key = f"uploads/{entity_id}/{job_id}/{path.name}"
    file_store.write(key, data, content_type="text/plain")

    job = ImportJob(
        job_id=job_id,
        entity_id=entity_id,
        file_path=key,
        file_name=path.name,
        file_size=len(data),
        record_limit=record_limit,
        import_scope=import_scope,
        created_at=datetime.now(tz=UTC),
    )
    job_store.create_job(job)
    print(f"  Registered job {job_id} for {key} ({len(data)} bytes)")
    return job


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed DynamoDB tables for the EFD loader")
    parser.add_argument("--endpoint-url", default=None, help="AWS endpoint (e.g. http://localhost:4566)")
    parser.add_argument("--table-suffix", default="", help="Table name suffix (e.g. -dev)")
    parser.add_argument("--region", default="us-east-1", help="AWS region")
    parser.add_argument("--upload", type=Path, default=None, help="EFD file to register as a pending job")
    parser.add_argument("--bucket", default="efd-files", help="S3 bucket for --upload")
    parser.add_argument("--entity-id", default="local-entity", help="Owning entity for --upload")
    parser.add_argument("--record-limit", type=int, default=0, help="Per-block record limit (0 = all)")
    parser.add_argument(
        "--scope", default=ImportScope.ALL.value, choices=[s.value for s in ImportScope],
        help="Which blocks to import",
    )
    args = parser.parse_args()

    kwargs: dict[str, Any] = {"region_name": args.region}
    if args.endpoint_url:
        kwargs["endpoint_url"] = args.endpoint_url

    ddb = boto3.resource("dynamodb", **kwargs)

    print("Creating tables...")
    create_tables(ddb, suffix=args.table_suffix)

    if args.upload is not None:
        print("Registering upload...")
        job_store = DynamoDBJobStore(
            table_suffix=args.table_suffix, region=args.region, endpoint_url=args.endpoint_url,
        )
        file_store = S3FileStore(
            bucket=args.bucket, region=args.region, endpoint_url=args.endpoint_url,
        )
        register_upload(
            job_store, file_store, args.upload,
            entity_id=args.entity_id,
            record_limit=args.record_limit,
            import_scope=ImportScope(args.scope),
        )

    print("Done!")


if __name__ == "__main__":
    main()

"""DynamoDB backend implementing IJobStore."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

import boto3
from botocore.exceptions import ClientError
from pydantic import BaseModel

from efdloader.core.exceptions import JobCancelledError, JobNotFoundError, JobStoreError
from efdloader.models.job import CANCELLED_BY_USER, CANCELLABLE_STATUSES, ImportJob, JobStatus

JOBS_TABLE = "efdloader-import-jobs"
STATE_SK = "STATE"


def _job_pk(job_id: str) -> str:
    return f"JOB#{job_id}"


def _decode_decimals(item: dict[str, Any]) -> dict[str, Any]:
    """Convert Decimal values in a DynamoDB item to int/float."""
    out: dict[str, Any] = {}
    for k, v in item.items():
        if isinstance(v, Decimal):
            out[k] = int(v) if v == int(v) else float(v)
        elif isinstance(v, dict):
            out[k] = _decode_decimals(v)
        elif isinstance(v, list):
            out[k] = [
                _decode_decimals(i) if isinstance(i, dict)
                else (int(i) if isinstance(i, Decimal) and i == int(i) else float(i) if isinstance(i, Decimal) else i)
                for i in v
            ]
        else:
            out[k] = v
    return out


def _to_attribute(value: Any) -> Any:
    """Convert a Python value into something boto3 can store."""
    if isinstance(value, BaseModel):
        return _to_attribute(value.model_dump(mode="json"))
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: _to_attribute(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_to_attribute(i) for i in value]
    return value


class DynamoDBJobStore:
    """Production IJobStore backed by a PK/SK DynamoDB table."""

    def __init__(self, table_suffix: str = "", region: str = "us-east-1",
                 endpoint_url: str | None = None) -> None:
        self._table_suffix = table_suffix
        kwargs: dict = {"region_name": region}
        if endpoint_url:
            kwargs["endpoint_url"] = endpoint_url
        self._ddb = boto3.resource("dynamodb", **kwargs)
        self._table = self._ddb.Table(f"{JOBS_TABLE}{table_suffix}")

    def create_job(self, job: ImportJob) -> None:
        if job.created_at is None:
            job = job.model_copy(update={"created_at": datetime.now(tz=UTC)})
        item = {"PK": _job_pk(job.job_id), "SK": STATE_SK, **_to_attribute(job)}
        try:
            self._table.put_item(Item=item, ConditionExpression="attribute_not_exists(PK)")
        except ClientError as exc:
            raise JobStoreError(f"Could not create job {job.job_id}: {exc}") from exc

    def get_job(self, job_id: str) -> ImportJob | None:
        try:
            resp = self._table.get_item(Key={"PK": _job_pk(job_id), "SK": STATE_SK})
        except ClientError as exc:
            raise JobStoreError(f"Could not read job {job_id}: {exc}") from exc
        item = resp.get("Item")
        if not item:
            return None
        data = _decode_decimals(item)
        data.pop("PK", None)
        data.pop("SK", None)
        return ImportJob.model_validate(data)

    def get_status(self, job_id: str) -> JobStatus | None:
        try:
            resp = self._table.get_item(
                Key={"PK": _job_pk(job_id), "SK": STATE_SK},
                ProjectionExpression="#status",
                ExpressionAttributeNames={"#status": "status"},
            )
        except ClientError as exc:
            raise JobStoreError(f"Could not read status of job {job_id}: {exc}") from exc
        item = resp.get("Item")
        return JobStatus(item["status"]) if item and "status" in item else None

    def update_job(self, job_id: str, **fields: Any) -> None:
        """SET the given fields unless the job was cancelled in the meantime."""
        if not fields:
            return
        names = {"#status": "status"}
        values: dict[str, Any] = {":cancelled": JobStatus.CANCELLED.value}
        assignments = []
        for i, (name, value) in enumerate(fields.items()):
            names[f"#f{i}"] = name
            values[f":v{i}"] = _to_attribute(value)
            assignments.append(f"#f{i} = :v{i}")
        try:
            self._table.update_item(
                Key={"PK": _job_pk(job_id), "SK": STATE_SK},
                UpdateExpression="SET " + ", ".join(assignments),
                ConditionExpression="attribute_exists(PK) AND #status <> :cancelled",
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
            )
        except ClientError as exc:
            if exc.response["Error"]["Code"] != "ConditionalCheckFailedException":
                raise JobStoreError(f"Could not update job {job_id}: {exc}") from exc
            if self.get_status(job_id) is None:
                raise JobNotFoundError(job_id) from exc
            raise JobCancelledError(job_id) from exc

    def cancel_job(self, job_id: str, reason: str | None = None) -> bool:
        """Flip a pending/processing job to cancelled; False if it is in any other state."""
        allowed = sorted(status.value for status in CANCELLABLE_STATUSES)
        try:
            self._table.update_item(
                Key={"PK": _job_pk(job_id), "SK": STATE_SK},
                UpdateExpression="SET #status = :cancelled, error_message = :reason, completed_at = :now",
                ConditionExpression="#status IN (:s0, :s1)",
                ExpressionAttributeNames={"#status": "status"},
                ExpressionAttributeValues={
                    ":cancelled": JobStatus.CANCELLED.value,
                    ":reason": reason or CANCELLED_BY_USER,
                    ":now": datetime.now(tz=UTC).isoformat(),
                    ":s0": allowed[0],
                    ":s1": allowed[1],
                },
            )
        except ClientError as exc:
            if exc.response["Error"]["Code"] == "ConditionalCheckFailedException":
                return False
            raise JobStoreError(f"Could not cancel job {job_id}: {exc}") from exc
        return True

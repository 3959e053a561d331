"""S3 file storage backend implementing IFileStore."""

from __future__ import annotations

import io
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from efdloader.core.exceptions import FileStoreError, SourceStreamError
from efdloader.core.protocols import IByteStream


class S3RangeStream:
    """Wraps an S3 streaming body; transport failures surface as SourceStreamError."""

    def __init__(self, body: Any, path: str) -> None:
        self._body = body
        self._path = path

    def read(self, size: int = -1) -> bytes:
        try:
            return self._body.read(size if size >= 0 else None)
        except (BotoCoreError, ConnectionError, TimeoutError) as exc:
            raise SourceStreamError(f"Reading {self._path!r} failed: {exc}") from exc

    def close(self) -> None:
        self._body.close()


class S3FileStore:
    """Production IFileStore backed by S3."""

    def __init__(self, bucket: str, region: str = "us-east-1",
                 endpoint_url: str | None = None) -> None:
        self._bucket = bucket
        kwargs: dict = {"region_name": region}
        if endpoint_url:
            kwargs["endpoint_url"] = endpoint_url
        self._client = boto3.client("s3", **kwargs)

    def write(self, path: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        try:
            self._client.put_object(
                Bucket=self._bucket, Key=path, Body=data, ContentType=content_type,
            )
            return path
        except ClientError as exc:
            raise FileStoreError(f"S3 write failed for {path!r}: {exc}") from exc

    def open_range(self, path: str, start: int = 0) -> IByteStream:
        """Stream the object from byte ``start``; past the end yields an empty stream."""
        kwargs: dict[str, Any] = {"Bucket": self._bucket, "Key": path}
        if start > 0:
            kwargs["Range"] = f"bytes={start}-"
        try:
            resp = self._client.get_object(**kwargs)
        except ClientError as exc:
            if exc.response["Error"]["Code"] == "InvalidRange":
                return io.BytesIO(b"")
            raise FileStoreError(f"S3 open failed for {path!r} at byte {start}: {exc}") from exc
        except BotoCoreError as exc:
            raise SourceStreamError(f"S3 open failed for {path!r} at byte {start}: {exc}") from exc
        return S3RangeStream(resp["Body"], path)

    def delete(self, path: str) -> None:
        try:
            self._client.delete_object(Bucket=self._bucket, Key=path)
        except ClientError as exc:
            raise FileStoreError(f"S3 delete failed for {path!r}: {exc}") from exc

"""Slice dispatchers: how the next slice of a job gets triggered."""

from __future__ import annotations

import json
import logging
from collections import deque
from typing import Any, Callable

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from efdloader.core.config import AppSettings
from efdloader.core.exceptions import DispatchError
from efdloader.core.protocols import ISliceDispatcher

logger = logging.getLogger(__name__)


class LocalSliceDispatcher:
    """In-process queue; :meth:`drain` turns requeues into a plain loop."""

    def __init__(self) -> None:
        self.queue: deque[str] = deque()

    def dispatch(self, job_id: str) -> None:
        self.queue.append(job_id)

    def drain(self, handler: Callable[[str], Any], max_slices: int | None = None) -> int:
        """Run queued slices until the queue is empty; returns how many ran."""
        ran = 0
        while max_slices is None or ran < max_slices:
            try:
                job_id = self.queue.popleft()
            except IndexError:
                break
            handler(job_id)
            ran += 1
        return ran


class SQSSliceDispatcher:
    """Queue the next slice as an SQS message consumed by SliceWorker."""

    def __init__(self, queue_url: str, region: str = "us-east-1",
                 endpoint_url: str | None = None) -> None:
        self._queue_url = queue_url
        kwargs: dict = {"region_name": region}
        if endpoint_url:
            kwargs["endpoint_url"] = endpoint_url
        self._client = boto3.client("sqs", **kwargs)

    def dispatch(self, job_id: str) -> None:
        try:
            self._client.send_message(
                QueueUrl=self._queue_url,
                MessageBody=json.dumps({"job_id": job_id}),
            )
        except (ClientError, BotoCoreError) as exc:
            raise DispatchError(f"SQS send failed for job {job_id}: {exc}") from exc
        logger.debug("Queued next slice for job %s", job_id)


def create_dispatcher(settings: AppSettings) -> ISliceDispatcher:
    if settings.importer.dispatcher == "sqs":
        return SQSSliceDispatcher(
            queue_url=settings.sqs.slice_queue_url,
            region=settings.sqs.region,
            endpoint_url=settings.sqs.endpoint_url,
        )
    return LocalSliceDispatcher()

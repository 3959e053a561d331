"""Slice worker: SQS consumer that runs one slice per queued message."""

from __future__ import annotations

import json
import logging
from typing import Any

import boto3

from efdloader.core.config import AppSettings
from efdloader.core.exceptions import JobNotFoundError
from efdloader.core.logging import configure_logging
from efdloader.ingest.scheduler import ChunkScheduler, create_scheduler
from efdloader.orchestration.dispatchers import SQSSliceDispatcher

logger = logging.getLogger(__name__)


class SliceWorker:
    def __init__(
        self,
        scheduler: ChunkScheduler,
        queue_url: str,
        region: str = "us-east-1",
        endpoint_url: str | None = None,
        wait_time_seconds: int = 20,
        max_messages: int = 1,
    ) -> None:
        self.scheduler = scheduler
        self._queue_url = queue_url
        self._wait_time_seconds = wait_time_seconds
        self._max_messages = max_messages
        kwargs: dict = {"region_name": region}
        if endpoint_url:
            kwargs["endpoint_url"] = endpoint_url
        self._client = boto3.client("sqs", **kwargs)

    def poll_once(self) -> int:
        """Receive and handle one batch of messages; returns how many were handled."""
        resp = self._client.receive_message(
            QueueUrl=self._queue_url,
            MaxNumberOfMessages=self._max_messages,
            WaitTimeSeconds=self._wait_time_seconds,
        )
        messages: list[dict[str, Any]] = resp.get("Messages", [])
        for message in messages:
            self._handle(message)
            self._client.delete_message(
                QueueUrl=self._queue_url, ReceiptHandle=message["ReceiptHandle"],
            )
        return len(messages)

    def run_forever(self) -> None:
        logger.info("Slice worker polling %s", self._queue_url)
        while True:
            self.poll_once()

    def _handle(self, message: dict[str, Any]) -> None:
        try:
            job_id = json.loads(message["Body"])["job_id"]
        except (KeyError, TypeError, json.JSONDecodeError):
            logger.error("Discarding malformed slice message: %r", message.get("Body"))
            return
        try:
            report = self.scheduler.process(job_id)
        except JobNotFoundError:
            logger.error("Discarding slice message for unknown job %s", job_id)
            return
        logger.info(
            "Job %s slice done: status=%s outcome=%s byte=%d",
            job_id, report.status, report.outcome, report.bytes_processed,
        )


def build_worker(settings: AppSettings) -> SliceWorker:
    """Worker whose scheduler requeues follow-up slices onto the queue it polls."""
    if not settings.sqs.slice_queue_url:
        raise ValueError("EFDLOADER_SQS_SLICE_QUEUE_URL is required for the slice worker")
    dispatcher = SQSSliceDispatcher(
        queue_url=settings.sqs.slice_queue_url,
        region=settings.sqs.region,
        endpoint_url=settings.sqs.endpoint_url,
    )
    return SliceWorker(
        create_scheduler(settings, dispatcher),
        queue_url=settings.sqs.slice_queue_url,
        region=settings.sqs.region,
        endpoint_url=settings.sqs.endpoint_url,
        wait_time_seconds=settings.sqs.wait_time_seconds,
    )


def main() -> None:
    settings = AppSettings()
    configure_logging(settings.log_level)
    build_worker(settings).run_forever()


if __name__ == "__main__":
    main()

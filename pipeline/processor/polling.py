"""
Completion Polling

Bounded pull alternative to the SNS push path: receive from the queue
subscribed to the Textract completion topic until the wanted job's
notification shows up or the attempts run out.
"""

import time
from typing import Callable

import structlog

from pipeline.shared.exceptions import QueueError, ValidationError
from pipeline.shared.interfaces import Queue
from pipeline.shared.models import CompletionNotification, unwrap_notification

log = structlog.get_logger()

RECEIVE_BATCH = 5


class CompletionPoller:
    """
    Waits for one Textract job's completion notification.

    Only the matching message is deleted; notifications for other jobs are
    left to become visible again for their own consumers. Queue errors are
    logged and count as a spent attempt.
    """

    def __init__(
        self,
        queue: Queue,
        *,
        max_attempts: int = 20,
        wait_seconds: float = 6.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._queue = queue
        self._max_attempts = max_attempts
        self._wait_seconds = wait_seconds
        self._sleep = sleep

    def _receive_once(self, textract_job_id: str) -> CompletionNotification | None:
        for message in self._queue.receive(RECEIVE_BATCH):
            try:
                notification = unwrap_notification(message.body)
            except ValidationError as e:
                log.warning(
                    "unparseable_notification_skipped",
                    message_id=message.message_id,
                    receive_count=message.receive_count,
                    error=str(e),
                )
                continue

            if notification.job_id != textract_job_id:
                continue

            self._queue.delete(message.receipt_handle)
            return notification

        return None

    def wait_for(self, textract_job_id: str) -> CompletionNotification | None:
        """
        Poll until the notification for textract_job_id arrives.

        Returns:
            The notification, or None after max_attempts
        """
        for attempt in range(1, self._max_attempts + 1):
            try:
                notification = self._receive_once(textract_job_id)
            except QueueError as e:
                log.warning(
                    "completion_poll_failed",
                    textract_job_id=textract_job_id,
                    attempt=attempt,
                    error=str(e),
                )
                notification = None

            if notification is not None:
                log.info(
                    "completion_notification_found",
                    textract_job_id=textract_job_id,
                    status=notification.status,
                    attempt=attempt,
                )
                return notification

            if attempt < self._max_attempts:
                self._sleep(self._wait_seconds)

        log.warning(
            "completion_poll_exhausted",
            textract_job_id=textract_job_id,
            attempts=self._max_attempts,
        )
        return None

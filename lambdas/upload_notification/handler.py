"""
UploadNotification Lambda Handler

Main entry point for S3 upload events.

Trigger: S3 ObjectCreated notification
Output: Ingest queue messages

Flow:
1. Convert each S3 record into an ingest message
2. Send it to the ingest queue
3. Return the sent message ids; any send failure fails the invocation
"""

from typing import Any

import structlog

from pipeline.shared.config import get_settings
from pipeline.shared.models import ingest_messages_from_s3_event
from pipeline.shared.tools.sqs import SqsQueue

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

log = structlog.get_logger()

_queue: SqsQueue | None = None


def _get_queue() -> SqsQueue:
    """Ingest queue shared by invocations in this container."""
    global _queue
    if _queue is None:
        settings = get_settings()
        if not settings.sqs_ingest_queue_url:
            raise ValueError("DOCPIPE_SQS_INGEST_QUEUE_URL is not configured")
        _queue = SqsQueue.from_settings(settings, settings.sqs_ingest_queue_url)
    return _queue


def lambda_handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """
    AWS Lambda entry point for S3 upload notifications.

    Returns:
        {"messageIds": [...]}
    """
    messages = ingest_messages_from_s3_event(event)
    log.info("lambda_invoked", handler="upload_notification", record_count=len(messages))

    queue = _get_queue()
    message_ids = []
    for message in messages:
        message_id = queue.send(message.model_dump(by_alias=True, mode="json", exclude_none=True))
        message_ids.append(message_id)
        log.info(
            "ingest_message_sent",
            bucket=message.bucket,
            key=message.key,
            message_id=message_id,
        )

    return {"messageIds": message_ids}

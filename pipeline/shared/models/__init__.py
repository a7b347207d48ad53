# Shared Models
"""
Pydantic models for job rows and queue messages.
"""

from pipeline.shared.models.job import DocumentJob, JobKey, latest_job
from pipeline.shared.models.messages import (
    ClassificationMessage,
    CompletionNotification,
    IngestMessage,
    IngestMetadata,
    ingest_messages_from_body,
    ingest_messages_from_s3_event,
    parse_message,
    unwrap_notification,
)

__all__ = [
    # DynamoDB
    "DocumentJob",
    "JobKey",
    "latest_job",
    # Messages
    "IngestMessage",
    "IngestMetadata",
    "ClassificationMessage",
    "CompletionNotification",
    "ingest_messages_from_body",
    "ingest_messages_from_s3_event",
    "parse_message",
    "unwrap_notification",
]

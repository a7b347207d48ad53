"""
Queue Message Models

Pydantic models for the three message shapes carried between stages:
ingest, classification trigger, and Textract completion notification.
Messages are immutable once sent.
"""

import json
from datetime import datetime, timezone
from typing import Any
from urllib.parse import unquote_plus

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, field_validator

from pipeline.shared.exceptions import ValidationError


class IngestMetadata(BaseModel):
    """Upload event details attached to an ingest message."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    event_time: str | None = Field(default=None, alias="eventTime")
    event_name: str | None = Field(default=None, alias="eventName")
    file_size: int | None = Field(default=None, alias="fileSize", ge=0)
    content_type: str | None = Field(default=None, alias="contentType")

    @field_validator("file_size", mode="before")
    @classmethod
    def _coerce_file_size(cls, value: Any) -> Any:
        # S3 event metadata carries sizes as strings
        if isinstance(value, str):
            value = value.strip()
            return int(value) if value else None
        return value


class IngestMessage(BaseModel):
    """
    Ingest queue message produced for every uploaded document.

    {documentId?, bucket, key, timestamp, metadata: {eventTime, eventName, fileSize}}
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    document_id: str | None = Field(default=None, alias="documentId")
    bucket: str = Field(..., min_length=1)
    key: str = Field(..., min_length=1)
    timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat(),
        description="Upload time, defaults to receipt time",
    )
    metadata: IngestMetadata = Field(default_factory=IngestMetadata)


class ClassificationMessage(BaseModel):
    """Classification trigger message. All three fields are required."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    document_id: str = Field(..., alias="documentId", min_length=1)
    bucket: str = Field(..., min_length=1)
    key: str = Field(..., min_length=1)

    def to_body(self) -> dict[str, str]:
        return {"documentId": self.document_id, "bucket": self.bucket, "key": self.key}


class CompletionNotification(BaseModel):
    """Textract job completion payload published to SNS."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    job_id: str = Field(..., alias="JobId", min_length=1)
    status: str = Field(..., alias="Status", min_length=1)
    api: str | None = Field(default=None, alias="API")
    job_tag: str | None = Field(default=None, alias="JobTag")
    timestamp: int | None = Field(default=None, alias="Timestamp")
    document_location: dict[str, Any] = Field(default_factory=dict, alias="DocumentLocation")

    @property
    def succeeded(self) -> bool:
        return self.status == "SUCCEEDED"

    @property
    def partially_succeeded(self) -> bool:
        return self.status == "PARTIAL_SUCCESS"


def parse_message(model: type[BaseModel], body: str | dict[str, Any]) -> Any:
    """
    Parse a queue body into one of the message models.

    Raises:
        ValidationError: If the body is not JSON or misses required fields
    """
    try:
        data = json.loads(body) if isinstance(body, str) else body
    except json.JSONDecodeError as e:
        raise ValidationError(
            f"Message body is not valid JSON: {e}",
            model=model.__name__,
        ) from e

    if not isinstance(data, dict):
        raise ValidationError(
            "Message body must be a JSON object",
            model=model.__name__,
        )

    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Invalid {model.__name__}: {e.error_count()} validation error(s)",
            model=model.__name__,
            errors=[err["loc"] for err in e.errors()],
        ) from e


def unwrap_notification(body: str | dict[str, Any]) -> CompletionNotification:
    """
    Extract a completion notification from an SNS message or SQS body.

    Handles:
    - SNS envelope delivered through SQS: {"Type": "Notification", "Message": "..."}
    - Raw Textract payload: {"JobId": ..., "Status": ...}
    """
    try:
        data = json.loads(body) if isinstance(body, str) else body
    except json.JSONDecodeError as e:
        raise ValidationError(f"Notification is not valid JSON: {e}") from e

    if isinstance(data, dict) and "Message" in data and "JobId" not in data:
        return parse_message(CompletionNotification, data["Message"])

    return parse_message(CompletionNotification, data)


def ingest_messages_from_s3_event(event: dict[str, Any]) -> list[IngestMessage]:
    """
    Convert an S3 event notification into ingest messages.

    Object keys arrive URL-encoded ("+" for spaces). s3:TestEvent and
    non-S3 records yield nothing.
    """
    messages: list[IngestMessage] = []

    for record in event.get("Records", []):
        s3 = record.get("s3")
        if not isinstance(s3, dict):
            continue

        size = s3.get("object", {}).get("size")
        messages.append(
            parse_message(
                IngestMessage,
                {
                    "bucket": s3.get("bucket", {}).get("name", ""),
                    "key": unquote_plus(s3.get("object", {}).get("key", "")),
                    "timestamp": record.get("eventTime") or datetime.now(timezone.utc).isoformat(),
                    "metadata": {
                        "eventTime": record.get("eventTime"),
                        "eventName": record.get("eventName"),
                        "fileSize": size,
                    },
                },
            )
        )

    return messages


def ingest_messages_from_body(body: str | dict[str, Any]) -> list[IngestMessage]:
    """
    Parse an ingest queue body.

    Accepts an ingest message, or an S3 event notification delivered
    straight to the queue.
    """
    try:
        data = json.loads(body) if isinstance(body, str) else body
    except json.JSONDecodeError as e:
        raise ValidationError(f"Message body is not valid JSON: {e}") from e

    if isinstance(data, dict) and "Records" in data:
        return ingest_messages_from_s3_event(data)
    if isinstance(data, dict) and data.get("Event") == "s3:TestEvent":
        return []

    return [parse_message(IngestMessage, data)]

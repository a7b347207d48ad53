"""
Custom Exceptions for the Document Processing Pipeline

All exceptions follow the pattern of specific, actionable errors
with context needed for debugging and logging.

Retry semantics:
- ValidationError is permanent; the message is left to dead-letter.
- StorageError, DatabaseError and QueueError are transient; queue
  redelivery retries them up to the max receive count.
- TextractError wraps the gateway cause and fails the job.
"""

from dataclasses import dataclass
from typing import Any


class PipelineError(Exception):
    """Base exception for the document processing pipeline."""

    def __init__(self, message: str, **context: Any) -> None:
        self.message = message
        self.context = context
        super().__init__(message)

    def __str__(self) -> str:
        if self.context:
            context_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({context_str})"
        return self.message


class ValidationError(PipelineError):
    """Malformed message, unsupported document, or schema-violating model output."""


@dataclass
class InvalidStateTransitionError(PipelineError):
    """Attempted invalid job status transition."""

    current_status: str
    new_status: str
    allowed_transitions: list[str]

    def __init__(
        self,
        current_status: str,
        new_status: str,
        allowed_transitions: list[str],
    ) -> None:
        self.current_status = current_status
        self.new_status = new_status
        self.allowed_transitions = allowed_transitions
        super().__init__(
            f"Cannot transition from '{current_status}' to '{new_status}'. "
            f"Allowed transitions: {allowed_transitions}",
            current_status=current_status,
            new_status=new_status,
            allowed_transitions=allowed_transitions,
        )


@dataclass
class StorageError(PipelineError):
    """S3 operation failed."""

    operation: str  # "get", "put", "head"
    bucket: str
    key: str | None = None

    def __init__(
        self,
        operation: str,
        bucket: str,
        key: str | None = None,
        error_message: str | None = None,
    ) -> None:
        self.operation = operation
        self.bucket = bucket
        self.key = key
        super().__init__(
            f"S3 {operation} failed for s3://{bucket}/{key or '*'}: "
            f"{error_message or 'Unknown error'}",
            operation=operation,
            bucket=bucket,
            key=key,
            error_message=error_message,
        )


@dataclass
class DocumentNotFoundError(StorageError):
    """Referenced object does not exist in S3."""

    def __init__(self, bucket: str, key: str) -> None:
        super().__init__(
            operation="get",
            bucket=bucket,
            key=key,
            error_message=f"Document not found: {bucket}/{key}",
        )


@dataclass
class DatabaseError(PipelineError):
    """DynamoDB operation failed."""

    operation: str  # "get", "put", "update", "query"
    table_name: str

    def __init__(
        self,
        operation: str,
        table_name: str,
        error_message: str | None = None,
    ) -> None:
        self.operation = operation
        self.table_name = table_name
        super().__init__(
            f"DynamoDB {operation} failed on table '{table_name}': {error_message or 'Unknown error'}",
            operation=operation,
            table_name=table_name,
            error_message=error_message,
        )


@dataclass
class JobAlreadyExistsError(DatabaseError):
    """A job with the same jobId is already stored."""

    job_id: str

    def __init__(self, table_name: str, job_id: str) -> None:
        self.job_id = job_id
        super().__init__(
            operation="put",
            table_name=table_name,
            error_message=f"Job '{job_id}' already exists",
        )


@dataclass
class StatusConflictError(DatabaseError):
    """Conditional status write lost against a concurrent update."""

    job_id: str
    expected_status: str | None = None

    def __init__(
        self,
        table_name: str,
        job_id: str,
        expected_status: str | None = None,
    ) -> None:
        self.job_id = job_id
        self.expected_status = expected_status
        super().__init__(
            operation="conditional_write",
            table_name=table_name,
            error_message=f"Job '{job_id}' is no longer in status {expected_status}",
        )


@dataclass
class QueueError(PipelineError):
    """SQS operation failed."""

    operation: str  # "send", "receive", "delete", "configure"
    queue_url: str

    def __init__(
        self,
        operation: str,
        queue_url: str,
        error_message: str | None = None,
    ) -> None:
        self.operation = operation
        self.queue_url = queue_url
        super().__init__(
            f"SQS {operation} failed on '{queue_url}': {error_message or 'Unknown error'}",
            operation=operation,
            queue_url=queue_url,
            error_message=error_message,
        )


class TextractError(PipelineError):
    """Extraction gateway failure, carrying the original cause."""

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        **context: Any,
    ) -> None:
        self.cause = cause
        super().__init__(message, **context)


class JobNotFoundError(TextractError):
    """Completion notification refers to a Textract job with no job row."""

    def __init__(self, textract_job_id: str) -> None:
        self.textract_job_id = textract_job_id
        super().__init__(
            "Job not found in database",
            textract_job_id=textract_job_id,
        )

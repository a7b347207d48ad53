"""
DynamoDB Models

Pydantic model for document job rows in the DocumentJobs table.

Table layout:
    HASH documentId, RANGE timestamp
    JobIdIndex          HASH jobId
    TextractJobIdIndex  HASH textractJobId
    StatusIndex         HASH status, RANGE timestamp
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from pipeline.shared.state_machine import JobStatus


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


# Python attribute -> DynamoDB attribute
ATTRIBUTE_NAMES: dict[str, str] = {
    "job_id": "jobId",
    "document_id": "documentId",
    "bucket": "bucket",
    "key": "key",
    "status": "status",
    "textract_features": "textractFeatures",
    "textract_job_id": "textractJobId",
    "timestamp": "timestamp",
    "created_at": "createdAt",
    "updated_at": "updatedAt",
    "completed_at": "completedAt",
    "error_message": "errorMessage",
}

IMMUTABLE_ATTRIBUTES: frozenset[str] = frozenset({
    "jobId",
    "documentId",
    "timestamp",
    "createdAt",
    "textractFeatures",
})

# Only written through update_job_status
LIFECYCLE_ATTRIBUTES: frozenset[str] = frozenset({
    "status",
    "completedAt",
    "updatedAt",
})


class DocumentJob(BaseModel):
    """
    One tracked attempt to process a single document.

    jobId is the identity used by callers; (documentId, timestamp) is the
    physical key every write goes through.
    """

    model_config = ConfigDict(frozen=True)

    job_id: str = Field(..., description="Opaque unique job identifier")
    document_id: str = Field(..., description="Logical document identity, stable across retries")
    bucket: str = Field(..., description="S3 bucket of the source document")
    key: str = Field(..., description="S3 key of the source document")
    status: JobStatus = Field(default=JobStatus.SUBMITTED, description="Current job status")
    textract_features: list[str] = Field(
        default_factory=list,
        description="Requested Textract feature types, empty for plain text detection",
    )
    textract_job_id: str | None = Field(default=None, description="Async Textract job handle")
    timestamp: str = Field(default="", description="Creation time, table range key")
    created_at: str | None = Field(default=None)
    updated_at: str | None = Field(default=None)
    completed_at: str | None = Field(default=None, description="Set only on terminal states")
    error_message: str | None = Field(default=None, description="Set only on FAILED")

    @property
    def has_features(self) -> bool:
        """Whether the analysis (rather than detection) API applies."""
        return bool(self.textract_features)

    @property
    def key_coordinates(self) -> "JobKey":
        return JobKey(self.document_id, self.timestamp)

    def to_dynamodb(self) -> dict[str, Any]:
        """
        Convert to DynamoDB item format.

        Unset optional attributes are omitted so GSI key attributes
        never hold NULL values.
        """
        item: dict[str, Any] = {
            "jobId": self.job_id,
            "documentId": self.document_id,
            "bucket": self.bucket,
            "key": self.key,
            "status": self.status.value,
            "textractFeatures": list(self.textract_features),
            "timestamp": self.timestamp,
        }

        if self.textract_job_id:
            item["textractJobId"] = self.textract_job_id
        if self.created_at:
            item["createdAt"] = self.created_at
        if self.updated_at:
            item["updatedAt"] = self.updated_at
        if self.completed_at:
            item["completedAt"] = self.completed_at
        if self.error_message:
            item["errorMessage"] = self.error_message

        return item

    @classmethod
    def from_dynamodb(cls, item: dict[str, Any]) -> "DocumentJob":
        """Parse from DynamoDB item."""
        return cls(
            job_id=item["jobId"],
            document_id=item["documentId"],
            bucket=item.get("bucket", ""),
            key=item.get("key", ""),
            status=JobStatus(item.get("status", JobStatus.SUBMITTED.value)),
            textract_features=list(item.get("textractFeatures") or []),
            textract_job_id=item.get("textractJobId"),
            timestamp=item.get("timestamp", ""),
            created_at=item.get("createdAt"),
            updated_at=item.get("updatedAt"),
            completed_at=item.get("completedAt"),
            error_message=item.get("errorMessage"),
        )

    def with_updates(self, **updates: Any) -> "DocumentJob":
        """
        Create a new DocumentJob with the specified updates.

        Since DocumentJob is frozen, this returns a new instance.
        """
        data = self.model_dump()
        data.update(updates)
        return DocumentJob.model_validate(data)


@dataclass(frozen=True)
class JobKey:
    """
    DynamoDB primary key for a job row.

    Utility class for key construction.
    """

    document_id: str
    timestamp: str

    def to_key(self) -> dict[str, str]:
        """Convert to DynamoDB key format."""
        return {"documentId": self.document_id, "timestamp": self.timestamp}


def latest_job(jobs: list[DocumentJob]) -> DocumentJob | None:
    """Most recent attempt by timestamp, or None for an empty list."""
    if not jobs:
        return None
    return max(jobs, key=lambda job: job.timestamp)

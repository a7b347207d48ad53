"""
S3 Tools

Object storage access for source documents and pipeline artifacts.
Artifact keys are derived from the documentId only, so a redelivered
message overwrites the same objects instead of duplicating them.
"""

import json
from datetime import datetime, timezone
from typing import Any

import boto3
from botocore.exceptions import ClientError
import structlog

from pipeline.shared.config import Settings
from pipeline.shared.exceptions import DocumentNotFoundError, StorageError
from pipeline.shared.interfaces import DocumentStorage

log = structlog.get_logger()

NOT_FOUND_CODES = frozenset({"NoSuchKey", "404", "NotFound"})


def extracted_key(document_id: str) -> str:
    """Raw Textract result key."""
    return f"extracted/{document_id}.json"


def formatted_key(document_id: str) -> str:
    """Structured text/forms/tables key."""
    return f"formatted/{document_id}.json"


def classified_key(document_id: str) -> str:
    """Classification result key."""
    return f"classified/{document_id}.json"


class S3DocumentStorage:
    """S3 implementation of the DocumentStorage interface."""

    def __init__(self, client: Any) -> None:
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "S3DocumentStorage":
        return cls(boto3.client("s3", **settings.s3_config))

    def _raise(self, operation: str, bucket: str, key: str, e: ClientError) -> None:
        error_code = e.response.get("Error", {}).get("Code")

        if error_code in NOT_FOUND_CODES:
            log.warning("document_not_found", bucket=bucket, key=key)
            raise DocumentNotFoundError(bucket, key) from e

        log.error(f"s3_{operation}_failed", bucket=bucket, key=key, error=str(e))
        raise StorageError(
            operation=operation,
            bucket=bucket,
            key=key,
            error_message=str(e),
        ) from e

    def get_size(self, bucket: str, key: str) -> int:
        """
        Object size in bytes.

        Raises:
            DocumentNotFoundError: If the object does not exist
            StorageError: On other S3 failures
        """
        try:
            response = self._client.head_object(Bucket=bucket, Key=key)
        except ClientError as e:
            self._raise("head", bucket, key, e)

        return int(response.get("ContentLength", 0))

    def ensure_exists(self, bucket: str, key: str) -> None:
        """
        Check that an object can be read.

        Raises:
            DocumentNotFoundError: If the object does not exist
            StorageError: On other S3 failures
        """
        log.debug("validating_document", bucket=bucket, key=key)

        try:
            self._client.head_object(Bucket=bucket, Key=key)
        except ClientError as e:
            self._raise("head", bucket, key, e)

        log.info("document_validated", bucket=bucket, key=key)

    def get_json(self, bucket: str, key: str) -> Any:
        """
        Download and decode a JSON object.

        Raises:
            DocumentNotFoundError: If the object does not exist
            StorageError: On S3 failures, empty or non-JSON content
        """
        try:
            response = self._client.get_object(Bucket=bucket, Key=key)
            content = response["Body"].read()
        except ClientError as e:
            self._raise("get", bucket, key, e)

        if not content:
            raise StorageError(
                operation="get",
                bucket=bucket,
                key=key,
                error_message="Empty document content",
            )

        try:
            return json.loads(content)
        except json.JSONDecodeError as e:
            raise StorageError(
                operation="get",
                bucket=bucket,
                key=key,
                error_message=f"Invalid JSON content: {e}",
            ) from e

    def put_json(self, bucket: str, key: str, payload: Any) -> None:
        """
        Upload a JSON document, overwriting any existing object.

        Raises:
            StorageError: If the upload fails
        """
        body = json.dumps(payload, indent=2, default=str)

        try:
            self._client.put_object(
                Bucket=bucket,
                Key=key,
                Body=body.encode("utf-8"),
                ContentType="application/json",
            )
        except ClientError as e:
            log.error("s3_put_failed", bucket=bucket, key=key, error=str(e))
            raise StorageError(
                operation="put",
                bucket=bucket,
                key=key,
                error_message=str(e),
            ) from e

        log.info("document_stored", bucket=bucket, key=key, size_bytes=len(body))


class ResultSink:
    """
    Writes extraction and classification artifacts next to the source document.

    Layout inside the document's bucket:
        extracted/{documentId}.json   raw Textract result
        formatted/{documentId}.json   {text, forms, tables}
        classified/{documentId}.json  {documentId, classification, extractedAt}
    """

    def __init__(self, storage: DocumentStorage) -> None:
        self._storage = storage

    def store_extraction(
        self,
        bucket: str,
        document_id: str,
        raw_result: dict[str, Any],
        formatted: dict[str, Any],
    ) -> str:
        """Store raw and formatted extraction; returns the formatted key."""
        self._storage.put_json(bucket, extracted_key(document_id), raw_result)
        key = formatted_key(document_id)
        self._storage.put_json(bucket, key, formatted)
        return key

    def store_classification(
        self,
        bucket: str,
        document_id: str,
        classification: dict[str, Any],
    ) -> str:
        """Store a classification result; returns its key."""
        key = classified_key(document_id)
        self._storage.put_json(
            bucket,
            key,
            {
                "documentId": document_id,
                "classification": classification,
                "extractedAt": datetime.now(timezone.utc).isoformat(),
            },
        )
        return key

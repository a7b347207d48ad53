"""
DynamoDB Tools

Job store for document job rows in DynamoDB.
Every lookup goes through the table key or a GSI; writes use the row's
own (documentId, timestamp) key and are conditioned on the status read.
"""

import threading
from typing import Any, Callable

import boto3
from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError
import structlog

from pipeline.shared.config import Settings, get_settings
from pipeline.shared.exceptions import (
    DatabaseError,
    JobAlreadyExistsError,
    StatusConflictError,
    ValidationError,
)
from pipeline.shared.models.job import (
    ATTRIBUTE_NAMES,
    IMMUTABLE_ATTRIBUTES,
    LIFECYCLE_ATTRIBUTES,
    DocumentJob,
    utc_now_iso,
)
from pipeline.shared.state_machine import JobStatus, validate_transition

log = structlog.get_logger()


class DynamoJobStore:
    """
    DynamoDB implementation of the JobStore interface.

    Usage:
        store = DynamoJobStore.from_settings(get_settings())
        job = store.create_job(DocumentJob(job_id=..., document_id=..., ...))
        store.update_job_status(job.job_id, JobStatus.IN_PROGRESS)
    """

    def __init__(
        self,
        table: Any = None,
        settings: Settings | None = None,
        *,
        table_factory: Callable[[], Any] | None = None,
    ) -> None:
        if table is None and table_factory is None:
            raise ValueError("table or table_factory is required")
        self._shared_table = table
        self._table_factory = table_factory
        self._local = threading.local()
        self._settings = settings or get_settings()

    @classmethod
    def from_settings(cls, settings: Settings) -> "DynamoJobStore":
        """Build the store with one table resource per calling thread."""

        def make_table() -> Any:
            session = boto3.session.Session()
            dynamodb = session.resource("dynamodb", **settings.dynamodb_config)
            return dynamodb.Table(settings.dynamodb_table_name)

        return cls(settings=settings, table_factory=make_table)

    @property
    def _table(self) -> Any:
        # Resources are not thread-safe; batch records run on worker threads.
        if self._table_factory is None:
            return self._shared_table
        table = getattr(self._local, "table", None)
        if table is None:
            table = self._local.table = self._table_factory()
        return table

    @property
    def table_name(self) -> str:
        return self._settings.dynamodb_table_name

    def _error(self, operation: str, e: ClientError, **context: Any) -> DatabaseError:
        log.error(f"dynamodb_{operation}_failed", error=str(e), **context)
        return DatabaseError(
            operation=operation,
            table_name=self.table_name,
            error_message=str(e),
        )

    def _query_all(self, params: dict[str, Any], limit: int | None = None) -> list[dict[str, Any]]:
        """Run a query following LastEvaluatedKey until exhausted or limit reached."""
        if limit:
            params["Limit"] = limit

        response = self._table.query(**params)
        items = response.get("Items", [])

        while "LastEvaluatedKey" in response and (limit is None or len(items) < limit):
            params["ExclusiveStartKey"] = response["LastEvaluatedKey"]
            response = self._table.query(**params)
            items.extend(response.get("Items", []))

        return items[:limit] if limit else items

    def create_job(self, job: DocumentJob) -> DocumentJob:
        """
        Create a new job row.

        Stamps timestamp, createdAt and updatedAt with the current time.

        Args:
            job: Job to persist (timestamps are overwritten)

        Returns:
            The stored DocumentJob

        Raises:
            JobAlreadyExistsError: If a row with the same jobId exists
            DatabaseError: On DynamoDB operation failure
        """
        if self.get_job(job.job_id) is not None:
            log.warning("job_already_exists", job_id=job.job_id)
            raise JobAlreadyExistsError(self.table_name, job.job_id)

        now = utc_now_iso()
        stored = job.with_updates(timestamp=now, created_at=now, updated_at=now)

        log.info(
            "creating_job",
            job_id=stored.job_id,
            document_id=stored.document_id,
            status=stored.status.value,
        )

        try:
            self._table.put_item(
                Item=stored.to_dynamodb(),
                ConditionExpression="attribute_not_exists(jobId)",
            )
        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                log.warning("job_already_exists", job_id=job.job_id)
                raise JobAlreadyExistsError(self.table_name, job.job_id) from e
            raise self._error("put", e, job_id=job.job_id) from e

        log.info("job_created", job_id=stored.job_id, document_id=stored.document_id)
        return stored

    def get_job(self, job_id: str) -> DocumentJob | None:
        """
        Load a job by jobId through the JobIdIndex.

        Returns:
            DocumentJob if found, None otherwise

        Raises:
            DatabaseError: On DynamoDB operation failure
        """
        try:
            items = self._query_all(
                {
                    "IndexName": self._settings.dynamodb_job_id_index,
                    "KeyConditionExpression": Key("jobId").eq(job_id),
                }
            )
        except ClientError as e:
            raise self._error("query", e, job_id=job_id) from e

        if not items:
            log.debug("job_not_found", job_id=job_id)
            return None

        return DocumentJob.from_dynamodb(items[0])

    def update_job_status(
        self,
        job_id: str,
        new_status: JobStatus | str,
        error_message: str | None = None,
        *,
        operator_retry: bool = False,
    ) -> DocumentJob | None:
        """
        Move a job to a new status.

        Reads the current row, validates the transition, then writes by the
        row's own key conditioned on the status that was read. Terminal
        statuses set completedAt; an operator retry back to SUBMITTED clears
        completedAt, errorMessage and textractJobId.

        Args:
            job_id: Job identifier
            new_status: Desired status
            error_message: Failure reason to record
            operator_retry: Allow FAILED -> SUBMITTED

        Returns:
            Updated DocumentJob, or None if the job does not exist

        Raises:
            InvalidStateTransitionError: If the transition is not allowed
            StatusConflictError: If the status changed concurrently
            DatabaseError: On other DynamoDB failures
        """
        if isinstance(new_status, str):
            new_status = JobStatus.from_string(new_status)

        current = self.get_job(job_id)
        if current is None:
            log.warning("job_status_update_skipped", job_id=job_id, reason="job not found")
            return None

        if current.status == new_status:
            if new_status.is_terminal:
                log.info(
                    "job_already_terminal",
                    job_id=job_id,
                    status=current.status.value,
                )
                return current
        else:
            validate_transition(current.status, new_status, operator_retry=operator_retry)

        now = utc_now_iso()
        set_parts = ["#status = :new_status", "#updatedAt = :now"]
        remove_parts: list[str] = []
        expr_names = {"#status": "status", "#updatedAt": "updatedAt"}
        expr_values: dict[str, Any] = {
            ":new_status": new_status.value,
            ":now": now,
            ":current_status": current.status.value,
        }

        if new_status.is_terminal:
            set_parts.append("#completedAt = :now")
            expr_names["#completedAt"] = "completedAt"
        else:
            remove_parts.append("#completedAt")
            expr_names["#completedAt"] = "completedAt"

        if error_message is not None and new_status == JobStatus.FAILED:
            set_parts.append("#errorMessage = :error_message")
            expr_names["#errorMessage"] = "errorMessage"
            expr_values[":error_message"] = error_message
        elif new_status != JobStatus.FAILED:
            remove_parts.append("#errorMessage")
            expr_names["#errorMessage"] = "errorMessage"

        if operator_retry:
            remove_parts.append("#textractJobId")
            expr_names["#textractJobId"] = "textractJobId"

        update_expression = "SET " + ", ".join(set_parts)
        if remove_parts:
            update_expression += " REMOVE " + ", ".join(remove_parts)

        log.info(
            "updating_job_status",
            job_id=job_id,
            old_status=current.status.value,
            new_status=new_status.value,
            operator_retry=operator_retry,
        )

        try:
            response = self._table.update_item(
                Key=current.key_coordinates.to_key(),
                UpdateExpression=update_expression,
                ExpressionAttributeNames=expr_names,
                ExpressionAttributeValues=expr_values,
                ConditionExpression="attribute_exists(jobId) AND #status = :current_status",
                ReturnValues="ALL_NEW",
            )
        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                log.warning(
                    "job_status_conflict",
                    job_id=job_id,
                    expected_status=current.status.value,
                )
                raise StatusConflictError(
                    self.table_name,
                    job_id,
                    expected_status=current.status.value,
                ) from e
            raise self._error("update", e, job_id=job_id) from e

        updated = DocumentJob.from_dynamodb(response["Attributes"])
        log.info("job_status_updated", job_id=job_id, status=updated.status.value)
        return updated

    def update_job(self, job_id: str, attributes: dict[str, Any]) -> DocumentJob | None:
        """
        Patch mutable job attributes.

        Attribute names are the DocumentJob field names (e.g. textract_job_id).
        textractJobId is write-once: a different existing value is rejected.

        Returns:
            Updated DocumentJob, or None if the job does not exist

        Raises:
            ValidationError: On unknown, immutable or lifecycle attributes
            StatusConflictError: If textractJobId is already set to another value
            DatabaseError: On DynamoDB failures
        """
        if not attributes:
            return self.get_job(job_id)

        names: dict[str, str] = {}
        for field_name in attributes:
            attr = ATTRIBUTE_NAMES.get(field_name)
            if attr is None:
                raise ValidationError(f"Unknown job attribute '{field_name}'", job_id=job_id)
            if attr in IMMUTABLE_ATTRIBUTES or attr in LIFECYCLE_ATTRIBUTES:
                raise ValidationError(
                    f"Job attribute '{field_name}' cannot be patched",
                    job_id=job_id,
                )
            names[field_name] = attr

        current = self.get_job(job_id)
        if current is None:
            log.warning("job_update_skipped", job_id=job_id, reason="job not found")
            return None

        set_parts = ["#updatedAt = :now"]
        remove_parts: list[str] = []
        expr_names = {"#updatedAt": "updatedAt"}
        expr_values: dict[str, Any] = {":now": utc_now_iso()}
        conditions = ["attribute_exists(jobId)"]

        for field_name, attr in names.items():
            expr_names[f"#{attr}"] = attr
            # None clears the attribute; GSI keys must never be NULL
            if attributes[field_name] is None:
                remove_parts.append(f"#{attr}")
                continue
            set_parts.append(f"#{attr} = :{attr}")
            expr_values[f":{attr}"] = attributes[field_name]

        if ":textractJobId" in expr_values:
            conditions.append(
                "(attribute_not_exists(#textractJobId) OR #textractJobId = :textractJobId)"
            )

        update_expression = "SET " + ", ".join(set_parts)
        if remove_parts:
            update_expression += " REMOVE " + ", ".join(remove_parts)

        log.info("updating_job", job_id=job_id, attributes=sorted(names))

        try:
            response = self._table.update_item(
                Key=current.key_coordinates.to_key(),
                UpdateExpression=update_expression,
                ExpressionAttributeNames=expr_names,
                ExpressionAttributeValues=expr_values,
                ConditionExpression=" AND ".join(conditions),
                ReturnValues="ALL_NEW",
            )
        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                log.warning(
                    "job_update_conflict",
                    job_id=job_id,
                    textract_job_id=current.textract_job_id,
                )
                raise StatusConflictError(
                    self.table_name,
                    job_id,
                    expected_status=current.status.value,
                ) from e
            raise self._error("update", e, job_id=job_id) from e

        return DocumentJob.from_dynamodb(response["Attributes"])

    def get_jobs_by_document_id(self, document_id: str) -> list[DocumentJob]:
        """All attempts for a document, oldest first (table range order)."""
        try:
            items = self._query_all(
                {"KeyConditionExpression": Key("documentId").eq(document_id)}
            )
        except ClientError as e:
            raise self._error("query", e, document_id=document_id) from e

        return [DocumentJob.from_dynamodb(item) for item in items]

    def find_jobs_by_textract_job_id(self, textract_job_id: str) -> list[DocumentJob]:
        """Jobs carrying the given Textract job handle."""
        try:
            items = self._query_all(
                {
                    "IndexName": self._settings.dynamodb_textract_job_id_index,
                    "KeyConditionExpression": Key("textractJobId").eq(textract_job_id),
                }
            )
        except ClientError as e:
            raise self._error("query", e, textract_job_id=textract_job_id) from e

        return [DocumentJob.from_dynamodb(item) for item in items]

    def get_jobs_by_status(self, status: JobStatus | str, limit: int = 10) -> list[DocumentJob]:
        """
        Jobs in a status, oldest first, through the StatusIndex.

        Args:
            status: Status to query
            limit: Maximum number of jobs returned
        """
        if isinstance(status, str):
            status = JobStatus.from_string(status)

        log.debug("querying_jobs_by_status", status=status.value, limit=limit)

        try:
            items = self._query_all(
                {
                    "IndexName": self._settings.dynamodb_status_index,
                    "KeyConditionExpression": Key("status").eq(status.value),
                },
                limit=limit,
            )
        except ClientError as e:
            raise self._error("query", e, status=status.value) from e

        return [DocumentJob.from_dynamodb(item) for item in items]

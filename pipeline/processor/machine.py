"""
Document Job State Machine

Drives one document through ingest, extraction and classification.
Stages are coordinated only by queue messages and the job row, so every
operation here can be re-run with the same input after a redelivery.

Failure policy: once a job row exists, a stage error is recorded as
FAILED with errorMessage and then re-raised, so the queue still sees the
failure and redelivers or dead-letters the message.
"""

import uuid
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import TYPE_CHECKING

import structlog

from pipeline.shared.config import Settings, get_settings
from pipeline.shared.exceptions import (
    InvalidStateTransitionError,
    JobNotFoundError,
    PipelineError,
    StatusConflictError,
    TextractError,
    ValidationError,
)
from pipeline.shared.interfaces import DocumentStorage, ExtractionGateway, JobStore, Queue
from pipeline.shared.llm.schemas import ClassificationResult
from pipeline.shared.models import (
    ClassificationMessage,
    CompletionNotification,
    DocumentJob,
    IngestMessage,
    latest_job,
)
from pipeline.shared.state_machine import JobStatus
from pipeline.shared.tools.s3 import ResultSink
from pipeline.processor.classifier import DocumentClassifier
from pipeline.processor.parser import parse_textract_blocks

if TYPE_CHECKING:
    from pipeline.processor.polling import CompletionPoller

log = structlog.get_logger()

SUPPORTED_EXTENSIONS = frozenset({".pdf", ".png", ".jpg", ".jpeg", ".tiff", ".tif"})

CONTENT_TYPES = {
    ".pdf": "application/pdf",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".tiff": "image/tiff",
    ".tif": "image/tiff",
}

PDF_FEATURES = ["TABLES", "FORMS", "SIGNATURES"]
IMAGE_FEATURES = ["TABLES", "FORMS"]

ERROR_MESSAGE_LIMIT = 1000


def resolve_document_id(message: IngestMessage) -> str:
    """Message documentId, else a UUIDv5 of the object location."""
    if message.document_id:
        return message.document_id
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"s3://{message.bucket}/{message.key}"))


def _check_format(message: IngestMessage) -> str:
    extension = PurePosixPath(message.key).suffix.lower()
    if extension not in SUPPORTED_EXTENSIONS:
        raise ValidationError(
            f"Unsupported document format '{extension or message.key}'",
            bucket=message.bucket,
            key=message.key,
        )
    return extension


def select_features(content_type: str | None, default: list[str]) -> list[str]:
    """Textract feature types for a content type."""
    if content_type == "application/pdf":
        return list(PDF_FEATURES)
    if content_type and content_type.startswith("image/"):
        return list(IMAGE_FEATURES)
    return list(default)


@dataclass(frozen=True)
class ClassificationRecord:
    """Outcome of classify_document."""

    document_id: str
    classification_key: str | None
    result: ClassificationResult | None
    job: DocumentJob | None
    skipped: bool = False


class DocumentJobStateMachine:
    """
    Orchestrates the document job lifecycle.

    SUBMITTED -> IN_PROGRESS -> EXTRACTED -> SUCCEEDED, with FAILED and
    PARTIAL_SUCCESS as the other terminal states. All collaborators are
    injected; see pipeline.processor.wiring for the AWS-backed setup.
    """

    def __init__(
        self,
        *,
        jobs: JobStore,
        storage: DocumentStorage,
        extraction: ExtractionGateway,
        classification_queue: Queue,
        classifier: DocumentClassifier,
        sink: ResultSink | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._jobs = jobs
        self._storage = storage
        self._extraction = extraction
        self._classification_queue = classification_queue
        self._classifier = classifier
        self._sink = sink or ResultSink(storage)
        self._settings = settings or get_settings()

    @property
    def jobs(self) -> JobStore:
        return self._jobs

    # --- Failure recording ---

    def _fail(self, job: DocumentJob, error: Exception) -> None:
        """Persist FAILED; a failure here is logged and never replaces the original error."""
        message = str(error)[:ERROR_MESSAGE_LIMIT]
        try:
            self._jobs.update_job_status(job.job_id, JobStatus.FAILED, error_message=message)
        except Exception as status_error:
            log.error(
                "job_failure_not_recorded",
                job_id=job.job_id,
                document_id=job.document_id,
                error=str(status_error),
                original_error=message,
            )
            return

        log.warning(
            "job_failed",
            job_id=job.job_id,
            document_id=job.document_id,
            error=message,
            error_type=type(error).__name__,
        )

    def _advance(self, job: DocumentJob, status: JobStatus) -> DocumentJob:
        """
        Move a job forward, tolerating a concurrent stage that already finished it.

        The sync extraction path enqueues classification before writing
        EXTRACTED, so the classifier may win the race.
        """
        try:
            updated = self._jobs.update_job_status(job.job_id, status)
        except (InvalidStateTransitionError, StatusConflictError):
            current = self._jobs.get_job(job.job_id)
            if current is not None and current.status.is_terminal:
                log.info(
                    "job_already_advanced",
                    job_id=job.job_id,
                    status=current.status.value,
                    requested_status=status.value,
                )
                return current
            raise

        if updated is None:
            log.warning("job_disappeared", job_id=job.job_id, requested_status=status.value)
            return job
        return updated

    # --- Ingest ---

    def _document_size(self, message: IngestMessage) -> int:
        if message.metadata.file_size is not None:
            return message.metadata.file_size
        return self._storage.get_size(message.bucket, message.key)

    def accept_ingest(self, message: IngestMessage, *, file_size: int | None = None) -> DocumentJob:
        """
        Validate an uploaded document and create its SUBMITTED job.

        A redelivered message for a document whose latest job is not FAILED
        returns that job instead of creating another attempt.

        Raises:
            ValidationError: Unsupported format or document too large
            StorageError: Size lookup failed
            DatabaseError: Job could not be stored
        """
        job, _ = self._accept(message, file_size)
        return job

    def _accept(self, message: IngestMessage, file_size: int | None) -> tuple[DocumentJob, int]:
        extension = _check_format(message)
        size = file_size if file_size is not None else self._document_size(message)
        if size > self._settings.max_document_size_bytes:
            raise ValidationError(
                "Document exceeds maximum size for Textract",
                bucket=message.bucket,
                key=message.key,
                file_size=size,
                max_size=self._settings.max_document_size_bytes,
            )

        document_id = resolve_document_id(message)
        existing = latest_job(self._jobs.get_jobs_by_document_id(document_id))
        if existing is not None and existing.status != JobStatus.FAILED:
            log.info(
                "duplicate_ingest_ignored",
                document_id=document_id,
                job_id=existing.job_id,
                status=existing.status.value,
            )
            return existing, size

        content_type = message.metadata.content_type or CONTENT_TYPES.get(extension)
        job = DocumentJob(
            job_id=str(uuid.uuid4()),
            document_id=document_id,
            bucket=message.bucket,
            key=message.key,
            textract_features=select_features(content_type, self._settings.textract_default_features),
        )

        created = self._jobs.create_job(job)
        log.info(
            "job_submitted",
            job_id=created.job_id,
            document_id=document_id,
            bucket=message.bucket,
            key=message.key,
            file_size=size,
            features=created.textract_features,
        )
        return created, size

    def start_extraction(self, job: DocumentJob, *, file_size: int | None = None) -> DocumentJob:
        """
        Move a SUBMITTED job to IN_PROGRESS and start Textract.

        The size is read from S3 when not given. Documents below the sync
        threshold are extracted inline and end EXTRACTED without a
        textractJobId. Everything else starts an async job whose id is
        persisted before returning.

        Raises:
            TextractError: Extraction could not be started (job marked FAILED)
            PipelineError: Storage, queue or database failure (job marked FAILED)
        """
        in_progress = self._jobs.update_job_status(job.job_id, JobStatus.IN_PROGRESS)
        if in_progress is None:
            log.warning("job_not_found_for_extraction", job_id=job.job_id)
            return job

        try:
            if file_size is None:
                file_size = self._storage.get_size(in_progress.bucket, in_progress.key)
            # Empty objects take the async path.
            use_sync = 0 < file_size < self._settings.sync_size_threshold_bytes

            if use_sync:
                raw_result = self._extraction.analyze_document_sync(
                    in_progress.bucket,
                    in_progress.key,
                    in_progress.textract_features,
                )
                self._store_and_enqueue(in_progress, raw_result)
                extracted = self._advance(in_progress, JobStatus.EXTRACTED)
                log.info("sync_extraction_completed", job_id=job.job_id, document_id=job.document_id)
                return extracted

            textract_job_id = self._extraction.start_extraction(
                in_progress.bucket,
                in_progress.key,
                in_progress.textract_features,
                job_tag=in_progress.job_id,
            )
            updated = self._jobs.update_job(in_progress.job_id, {"textract_job_id": textract_job_id})
            log.info(
                "async_extraction_started",
                job_id=job.job_id,
                document_id=job.document_id,
                textract_job_id=textract_job_id,
            )
            return updated or in_progress.with_updates(textract_job_id=textract_job_id)

        except PipelineError as e:
            self._fail(in_progress, e)
            raise
        except Exception as e:
            self._fail(in_progress, e)
            raise TextractError(
                f"Extraction failed: {e}",
                cause=e,
                job_id=job.job_id,
            ) from e

    def ingest(self, message: IngestMessage) -> DocumentJob:
        """Accept an ingest message and start extraction for a new job."""
        job, size = self._accept(message, None)
        if job.status != JobStatus.SUBMITTED:
            return job

        return self.start_extraction(job, file_size=size)

    # --- Extraction completion ---

    def _store_and_enqueue(self, job: DocumentJob, raw_result: dict) -> str:
        formatted = parse_textract_blocks(raw_result.get("Blocks", [])).to_formatted()
        formatted_key = self._sink.store_extraction(job.bucket, job.document_id, raw_result, formatted)
        self._classification_queue.send(
            ClassificationMessage(
                document_id=job.document_id,
                bucket=job.bucket,
                key=formatted_key,
            ).to_body()
        )
        log.info(
            "classification_enqueued",
            job_id=job.job_id,
            document_id=job.document_id,
            key=formatted_key,
        )
        return formatted_key

    def complete_extraction(self, notification: CompletionNotification) -> DocumentJob:
        """
        Handle a Textract completion notification.

        Raises:
            JobNotFoundError: No job row carries the notification's JobId
            TextractError: Result retrieval failed (job marked FAILED)
            PipelineError: Storage, queue or database failure (job marked FAILED)
        """
        job = latest_job(self._jobs.find_jobs_by_textract_job_id(notification.job_id))
        if job is None:
            log.error("job_not_found_for_notification", textract_job_id=notification.job_id)
            raise JobNotFoundError(notification.job_id)

        log.info(
            "extraction_notification_received",
            job_id=job.job_id,
            document_id=job.document_id,
            textract_job_id=notification.job_id,
            textract_status=notification.status,
            status=job.status.value,
        )

        if job.status.is_terminal:
            log.info("notification_for_finished_job_ignored", job_id=job.job_id, status=job.status.value)
            return job

        if not (notification.succeeded or notification.partially_succeeded):
            self._fail(job, TextractError(f"Textract job {notification.status}", textract_job_id=notification.job_id))
            return self._jobs.get_job(job.job_id) or job

        try:
            raw_result = self._extraction.fetch_result(notification.job_id, with_features=job.has_features)

            if notification.partially_succeeded:
                formatted = parse_textract_blocks(raw_result.get("Blocks", [])).to_formatted()
                self._sink.store_extraction(job.bucket, job.document_id, raw_result, formatted)
                return self._advance(job, JobStatus.PARTIAL_SUCCESS)

            self._store_and_enqueue(job, raw_result)
            return self._advance(job, JobStatus.EXTRACTED)

        except PipelineError as e:
            self._fail(job, e)
            raise
        except Exception as e:
            self._fail(job, e)
            raise TextractError(
                f"Extraction completion failed: {e}",
                cause=e,
                job_id=job.job_id,
                textract_job_id=notification.job_id,
            ) from e

    def await_extraction(self, job_id: str, poller: "CompletionPoller") -> DocumentJob | None:
        """
        Poll for one job's completion notification and apply it.

        Returns the job unchanged when it has no async Textract job or the
        poller gives up.
        """
        job = self._jobs.get_job(job_id)
        if job is None:
            log.warning("job_not_found", job_id=job_id)
            return None

        if not job.textract_job_id or job.status != JobStatus.IN_PROGRESS:
            log.info("job_not_awaiting_extraction", job_id=job_id, status=job.status.value)
            return job

        notification = poller.wait_for(job.textract_job_id)
        if notification is None:
            log.warning("extraction_wait_timed_out", job_id=job_id, textract_job_id=job.textract_job_id)
            return job

        return self.complete_extraction(notification)

    # --- Classification ---

    def classify_document(self, message: ClassificationMessage) -> ClassificationRecord:
        """
        Classify a formatted document and finish its job.

        A missing formatted object re-raises without touching the job. A
        message for a FAILED job keeps failing so SQS dead-letters it.

        Raises:
            DocumentNotFoundError: Formatted document is missing
            ValidationError: Model answer violates the schema (job marked FAILED),
                or the job already FAILED
            LLMInvocationError: Model call failed (job marked FAILED)
        """
        self._storage.ensure_exists(message.bucket, message.key)

        job = latest_job(self._jobs.get_jobs_by_document_id(message.document_id))
        if job is None:
            log.warning("job_not_found_for_classification", document_id=message.document_id)
        elif job.status == JobStatus.FAILED:
            log.warning(
                "classification_for_failed_job_rejected",
                job_id=job.job_id,
                document_id=message.document_id,
                error=job.error_message,
            )
            raise ValidationError(
                f"Job already failed: {job.error_message}",
                job_id=job.job_id,
                document_id=message.document_id,
            )
        elif job.status.is_terminal:
            log.info(
                "classification_for_finished_job_ignored",
                job_id=job.job_id,
                document_id=message.document_id,
                status=job.status.value,
            )
            return ClassificationRecord(
                document_id=message.document_id,
                classification_key=None,
                result=None,
                job=job,
                skipped=True,
            )

        try:
            document = self._storage.get_json(message.bucket, message.key)
            result = self._classifier.classify(document, bucket=message.bucket)
            classification_key = self._sink.store_classification(
                message.bucket,
                message.document_id,
                result.to_record(),
            )
            if job is not None:
                job = self._advance(job, JobStatus.SUCCEEDED)
        except Exception as e:
            if job is not None:
                self._fail(job, e)
            raise

        log.info(
            "document_classified",
            document_id=message.document_id,
            job_id=job.job_id if job else None,
            document_type=result.document_type.type,
            key=classification_key,
        )
        return ClassificationRecord(
            document_id=message.document_id,
            classification_key=classification_key,
            result=result,
            job=job,
        )

"""
Unit tests for DocumentJobStateMachine.

DynamoDB, S3 and SQS run on moto; Textract and Bedrock are MagicMocks.
"""

import json
import uuid
from unittest.mock import MagicMock

import pytest

from pipeline.shared.exceptions import (
    DocumentNotFoundError,
    JobNotFoundError,
    TextractError,
    ValidationError,
)
from pipeline.shared.models import (
    ClassificationMessage,
    CompletionNotification,
    DocumentJob,
    IngestMessage,
    latest_job,
)
from pipeline.shared.state_machine import JobStatus
from pipeline.shared.tools.dynamodb import DynamoJobStore
from pipeline.shared.tools.s3 import S3DocumentStorage
from pipeline.shared.tools.sqs import SqsQueue
from pipeline.processor.classifier import DocumentClassifier
from pipeline.processor.machine import (
    IMAGE_FEATURES,
    PDF_FEATURES,
    DocumentJobStateMachine,
    resolve_document_id,
    select_features,
)
from pipeline.processor.operations import BatchOperations

BUCKET = "test-documents"
SMALL = 1024
LARGE = 10 * 1024 * 1024


# --- Fixtures ---


@pytest.fixture
def jobs(mock_aws_all, settings):
    return DynamoJobStore(mock_aws_all["table"], settings)


@pytest.fixture
def storage(mock_aws_all):
    return S3DocumentStorage(mock_aws_all["s3"])


@pytest.fixture
def classification_queue(mock_aws_all):
    return SqsQueue(mock_aws_all["sqs"], mock_aws_all["classification_url"])


@pytest.fixture
def machine(jobs, storage, classification_queue, mock_extraction, mock_classification_gateway, settings):
    return DocumentJobStateMachine(
        jobs=jobs,
        storage=storage,
        extraction=mock_extraction,
        classification_queue=classification_queue,
        classifier=DocumentClassifier(mock_classification_gateway),
        settings=settings,
    )


@pytest.fixture
def queued_messages(mock_aws_all):
    """Drain the classification queue."""
    def _drain() -> list[dict]:
        response = mock_aws_all["sqs"].receive_message(
            QueueUrl=mock_aws_all["classification_url"],
            MaxNumberOfMessages=10,
        )
        return [json.loads(m["Body"]) for m in response.get("Messages", [])]
    return _drain


def _message(document_id="doc-1", key="uploads/statement.pdf", size=SMALL, **metadata) -> IngestMessage:
    if size is not None:
        metadata["fileSize"] = size
    return IngestMessage.model_validate({
        "documentId": document_id,
        "bucket": BUCKET,
        "key": key,
        "metadata": metadata,
    })


def _notification(job_id="ext-123", status="SUCCEEDED") -> CompletionNotification:
    return CompletionNotification.model_validate({"JobId": job_id, "Status": status})


def _latest(jobs, document_id="doc-1"):
    return latest_job(jobs.get_jobs_by_document_id(document_id))


# --- Helper Tests ---


class TestHelpers:
    """Tests for document id and feature selection."""

    def test_document_id_from_message(self):
        assert resolve_document_id(_message("given")) == "given"

    def test_document_id_derived_from_location(self):
        message = IngestMessage(bucket=BUCKET, key="uploads/a.pdf")

        assert resolve_document_id(message) == str(
            uuid.uuid5(uuid.NAMESPACE_URL, "s3://test-documents/uploads/a.pdf")
        )
        assert resolve_document_id(message) == resolve_document_id(IngestMessage(bucket=BUCKET, key="uploads/a.pdf"))

    def test_select_features(self):
        assert select_features("application/pdf", ["TABLES"]) == PDF_FEATURES
        assert select_features("image/png", ["TABLES"]) == IMAGE_FEATURES
        assert select_features(None, ["FORMS"]) == ["FORMS"]
        assert select_features("application/octet-stream", []) == []


# --- Ingest Tests ---


class TestAcceptIngest:
    """Tests for validation and job creation."""

    def test_unsupported_format_rejected(self, machine, jobs):
        with pytest.raises(ValidationError, match="Unsupported document format"):
            machine.accept_ingest(_message(key="uploads/notes.docx"))

        assert jobs.get_jobs_by_document_id("doc-1") == []

    def test_oversized_document_rejected(self, machine, jobs):
        with pytest.raises(ValidationError, match="maximum size"):
            machine.accept_ingest(_message(size=600 * 1024 * 1024))

        assert jobs.get_jobs_by_document_id("doc-1") == []

    def test_creates_submitted_job(self, machine):
        job = machine.accept_ingest(_message())

        assert job.status == JobStatus.SUBMITTED
        assert job.document_id == "doc-1"
        assert job.textract_features == PDF_FEATURES
        assert job.textract_job_id is None

    def test_image_features(self, machine):
        job = machine.accept_ingest(_message(key="uploads/receipt.JPG"))

        assert job.textract_features == IMAGE_FEATURES

    def test_content_type_overrides_extension(self, machine):
        job = machine.accept_ingest(_message(key="uploads/scan.tif", contentType="application/pdf"))

        assert job.textract_features == PDF_FEATURES

    def test_duplicate_returns_live_job(self, machine, jobs):
        first = machine.accept_ingest(_message())
        second = machine.accept_ingest(_message())

        assert second.job_id == first.job_id
        assert len(jobs.get_jobs_by_document_id("doc-1")) == 1

    def test_failed_document_gets_new_attempt(self, machine, jobs):
        first = machine.accept_ingest(_message())
        jobs.update_job_status(first.job_id, JobStatus.FAILED, error_message="boom")

        second = machine.accept_ingest(_message())

        assert second.job_id != first.job_id
        assert second.status == JobStatus.SUBMITTED
        assert _latest(jobs).job_id == second.job_id

    def test_size_read_from_storage(self, machine, mock_aws_all):
        mock_aws_all["s3"].put_object(Bucket=BUCKET, Key="uploads/statement.pdf", Body=b"%PDF" * 10)

        job = machine.accept_ingest(_message(size=None))

        assert job.status == JobStatus.SUBMITTED

    def test_missing_source_document(self, machine):
        with pytest.raises(DocumentNotFoundError):
            machine.accept_ingest(_message(size=None))


class TestIngest:
    """Tests for ingest through extraction start."""

    def test_small_document_extracted_synchronously(self, machine, jobs, storage, mock_extraction, queued_messages):
        job = machine.ingest(_message(size=SMALL))

        assert job.status == JobStatus.EXTRACTED
        assert job.textract_job_id is None
        mock_extraction.analyze_document_sync.assert_called_once_with(BUCKET, "uploads/statement.pdf", PDF_FEATURES)
        mock_extraction.start_extraction.assert_not_called()

        formatted = storage.get_json(BUCKET, "formatted/doc-1.json")
        assert formatted["forms"] == [{"key": "Name:", "value": "Jane Doe"}]
        assert storage.get_json(BUCKET, "extracted/doc-1.json")["DocumentMetadata"] == {"Pages": 2}
        assert queued_messages() == [{"documentId": "doc-1", "bucket": BUCKET, "key": "formatted/doc-1.json"}]

    def test_large_document_starts_async_job(self, machine, jobs, mock_extraction, queued_messages):
        job = machine.ingest(_message(size=LARGE))

        assert job.status == JobStatus.IN_PROGRESS
        assert job.textract_job_id == "ext-123"
        _, kwargs = mock_extraction.start_extraction.call_args
        assert kwargs["job_tag"] == job.job_id
        assert jobs.get_job(job.job_id).textract_job_id == "ext-123"
        assert queued_messages() == []

    def test_duplicate_ingest_does_not_restart(self, machine, mock_extraction):
        machine.ingest(_message(size=LARGE))
        again = machine.ingest(_message(size=LARGE))

        assert again.status == JobStatus.IN_PROGRESS
        assert mock_extraction.start_extraction.call_count == 1

    def test_start_failure_marks_job_failed(self, machine, jobs, mock_extraction):
        mock_extraction.start_extraction.side_effect = TextractError("Textract start failed: limit exceeded")

        with pytest.raises(TextractError):
            machine.ingest(_message(size=LARGE))

        job = _latest(jobs)
        assert job.status == JobStatus.FAILED
        assert job.error_message == "Textract start failed: limit exceeded"
        assert job.completed_at is not None

    def test_unexpected_failure_wrapped(self, machine, jobs, mock_extraction):
        mock_extraction.analyze_document_sync.side_effect = RuntimeError("socket closed")

        with pytest.raises(TextractError) as exc_info:
            machine.ingest(_message(size=SMALL))

        assert isinstance(exc_info.value.cause, RuntimeError)
        assert _latest(jobs).status == JobStatus.FAILED

    def test_unsupported_format_never_touches_storage(self, machine, storage):
        with pytest.raises(ValidationError):
            machine.ingest(_message(key="uploads/archive.zip", size=None))

    def test_classification_racing_sync_extraction(self, jobs, storage, mock_extraction, mock_classification_gateway, settings):
        """Classification may finish before EXTRACTED is written."""
        queue = MagicMock()

        def finish_first(body):
            job = _latest(jobs)
            jobs.update_job_status(job.job_id, JobStatus.SUCCEEDED)
            return "msg-1"

        queue.send.side_effect = finish_first
        machine = DocumentJobStateMachine(
            jobs=jobs,
            storage=storage,
            extraction=mock_extraction,
            classification_queue=queue,
            classifier=DocumentClassifier(mock_classification_gateway),
            settings=settings,
        )

        job = machine.ingest(_message(size=SMALL))

        assert job.status == JobStatus.SUCCEEDED


class TestStartExtraction:
    """Tests for starting extraction on an existing SUBMITTED job."""

    def _submit(self, machine, mock_aws_all, body):
        mock_aws_all["s3"].put_object(Bucket=BUCKET, Key="uploads/statement.pdf", Body=body)
        return machine.accept_ingest(_message(size=None))

    def test_swept_small_document_extracted_synchronously(self, machine, jobs, mock_extraction, mock_aws_all):
        """Jobs advanced by the scheduled sweep are routed by their stored size."""
        self._submit(machine, mock_aws_all, b"x" * SMALL)

        processed = BatchOperations(machine).process_batch()

        job = _latest(jobs)
        assert processed == ["doc-1"]
        assert job.status == JobStatus.EXTRACTED
        assert job.textract_job_id is None
        mock_extraction.analyze_document_sync.assert_called_once()
        mock_extraction.start_extraction.assert_not_called()

    def test_size_read_from_storage(self, machine, jobs, mock_extraction, mock_aws_all):
        job = self._submit(machine, mock_aws_all, b"x" * SMALL)

        started = machine.start_extraction(job)

        assert started.status == JobStatus.EXTRACTED
        assert started.textract_job_id is None

    def test_size_lookup_failure_marks_job_failed(self, machine, jobs):
        job = jobs.create_job(
            DocumentJob(job_id="gone", document_id="doc-9", bucket=BUCKET, key="uploads/gone.pdf")
        )

        with pytest.raises(DocumentNotFoundError):
            machine.start_extraction(job)

        failed = jobs.get_job("gone")
        assert failed.status == JobStatus.FAILED
        assert "uploads/gone.pdf" in failed.error_message

    def test_empty_document_takes_async_path(self, machine, mock_extraction):
        job = machine.ingest(_message(size=0))

        assert job.status == JobStatus.IN_PROGRESS
        assert job.textract_job_id == "ext-123"
        mock_extraction.analyze_document_sync.assert_not_called()


# --- Completion Tests ---


class TestCompleteExtraction:
    """Tests for Textract completion handling."""

    @pytest.fixture
    def started(self, machine):
        return machine.ingest(_message(size=LARGE))

    def test_success_extracts_and_enqueues(self, machine, started, mock_extraction, storage, queued_messages):
        job = machine.complete_extraction(_notification())

        assert job.status == JobStatus.EXTRACTED
        assert job.job_id == started.job_id
        mock_extraction.fetch_result.assert_called_once_with("ext-123", with_features=True)
        assert storage.get_json(BUCKET, "formatted/doc-1.json")["tables"]
        assert queued_messages() == [{"documentId": "doc-1", "bucket": BUCKET, "key": "formatted/doc-1.json"}]

    def test_text_detection_job(self, machine, jobs, mock_extraction):
        jobs.create_job(DocumentJob(job_id="plain", document_id="doc-2", bucket=BUCKET, key="uploads/plain.png"))
        jobs.update_job_status("plain", JobStatus.IN_PROGRESS)
        jobs.update_job("plain", {"textract_job_id": "ext-plain"})

        machine.complete_extraction(_notification("ext-plain"))

        mock_extraction.fetch_result.assert_called_once_with("ext-plain", with_features=False)

    def test_unknown_job(self, machine):
        with pytest.raises(JobNotFoundError) as exc_info:
            machine.complete_extraction(_notification("ext-unknown"))

        assert exc_info.value.textract_job_id == "ext-unknown"

    def test_failed_notification_marks_job_failed(self, machine, started, mock_extraction):
        job = machine.complete_extraction(_notification(status="FAILED"))

        assert job.status == JobStatus.FAILED
        assert job.error_message == "Textract job FAILED (textract_job_id='ext-123')"
        mock_extraction.fetch_result.assert_not_called()

    def test_partial_success_stores_without_classification(self, machine, started, storage, queued_messages):
        job = machine.complete_extraction(_notification(status="PARTIAL_SUCCESS"))

        assert job.status == JobStatus.PARTIAL_SUCCESS
        assert job.completed_at is not None
        assert storage.get_json(BUCKET, "formatted/doc-1.json")["text"]
        assert queued_messages() == []

    def test_finished_job_left_untouched(self, machine, started, jobs, mock_extraction):
        jobs.update_job_status(started.job_id, JobStatus.FAILED, error_message="cancelled")

        job = machine.complete_extraction(_notification())

        assert job.status == JobStatus.FAILED
        assert job.error_message == "cancelled"
        mock_extraction.fetch_result.assert_not_called()

    def test_redelivery_after_extracted_is_idempotent(self, machine, started, queued_messages):
        machine.complete_extraction(_notification())
        job = machine.complete_extraction(_notification())

        assert job.status == JobStatus.EXTRACTED
        assert len(queued_messages()) == 2

    def test_fetch_failure_marks_job_failed(self, machine, started, jobs, mock_extraction):
        mock_extraction.fetch_result.side_effect = RuntimeError("connection reset")

        with pytest.raises(TextractError, match="connection reset"):
            machine.complete_extraction(_notification())

        job = jobs.get_job(started.job_id)
        assert job.status == JobStatus.FAILED
        assert "connection reset" in job.error_message

    def test_await_extraction(self, machine, started):
        poller = MagicMock()
        poller.wait_for.return_value = _notification()

        job = machine.await_extraction(started.job_id, poller)

        poller.wait_for.assert_called_once_with("ext-123")
        assert job.status == JobStatus.EXTRACTED

    def test_await_extraction_times_out(self, machine, started):
        poller = MagicMock()
        poller.wait_for.return_value = None

        job = machine.await_extraction(started.job_id, poller)

        assert job.status == JobStatus.IN_PROGRESS

    def test_await_extraction_without_async_job(self, machine):
        job = machine.ingest(_message(size=SMALL))
        poller = MagicMock()

        assert machine.await_extraction(job.job_id, poller).status == JobStatus.EXTRACTED
        assert machine.await_extraction("missing", poller) is None
        poller.wait_for.assert_not_called()


# --- Classification Tests ---


class TestClassifyDocument:
    """Tests for the classification stage."""

    def _classification_message(self, document_id="doc-1"):
        return ClassificationMessage(
            document_id=document_id,
            bucket=BUCKET,
            key=f"formatted/{document_id}.json",
        )

    def test_classification_succeeds(self, machine, jobs, storage):
        machine.ingest(_message(size=SMALL))

        record = machine.classify_document(self._classification_message())

        assert record.skipped is False
        assert record.classification_key == "classified/doc-1.json"
        assert record.result.document_type.type == "BANK_STATEMENT"
        assert record.job.status == JobStatus.SUCCEEDED

        stored = storage.get_json(BUCKET, "classified/doc-1.json")
        assert stored["documentId"] == "doc-1"
        assert stored["classification"]["documentType"]["type"] == "BANK_STATEMENT"
        assert _latest(jobs).completed_at is not None

    def test_missing_formatted_document(self, machine, jobs, storage, mock_aws_all):
        machine.ingest(_message(size=SMALL))
        mock_aws_all["s3"].delete_object(Bucket=BUCKET, Key="formatted/doc-1.json")

        with pytest.raises(DocumentNotFoundError):
            machine.classify_document(self._classification_message())

        assert _latest(jobs).status == JobStatus.EXTRACTED

    def test_invalid_answer_marks_job_failed(self, machine, jobs, mock_classification_gateway):
        machine.ingest(_message(size=SMALL))
        mock_classification_gateway.classify.return_value = "I am not sure what this is."

        with pytest.raises(ValidationError):
            machine.classify_document(self._classification_message())

        job = _latest(jobs)
        assert job.status == JobStatus.FAILED
        assert "No JSON object" in job.error_message

    def test_redelivery_after_failure_keeps_failing(self, machine, jobs, mock_classification_gateway):
        """A FAILED job never acknowledges its classification message."""
        machine.ingest(_message(size=SMALL))
        mock_classification_gateway.classify.return_value = "not json"

        with pytest.raises(ValidationError):
            machine.classify_document(self._classification_message())
        with pytest.raises(ValidationError, match="Job already failed"):
            machine.classify_document(self._classification_message())

        assert mock_classification_gateway.classify.call_count == 1
        job = _latest(jobs)
        assert job.status == JobStatus.FAILED
        assert "No JSON object" in job.error_message

    def test_finished_job_skipped(self, machine, jobs, mock_classification_gateway):
        job = machine.ingest(_message(size=SMALL))
        jobs.update_job_status(job.job_id, JobStatus.SUCCEEDED)

        record = machine.classify_document(self._classification_message())

        assert record.skipped is True
        mock_classification_gateway.classify.assert_not_called()

    def test_without_job_still_classifies(self, machine, storage):
        storage.put_json(BUCKET, "formatted/orphan.json", {"text": "x", "forms": [], "tables": []})

        record = machine.classify_document(self._classification_message("orphan"))

        assert record.job is None
        assert storage.get_json(BUCKET, "classified/orphan.json")["documentId"] == "orphan"

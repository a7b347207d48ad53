"""Capability interfaces the job state machine depends on."""

from typing import Any, Protocol, runtime_checkable

from pipeline.shared.models.job import DocumentJob
from pipeline.shared.state_machine import JobStatus


@runtime_checkable
class JobStore(Protocol):
    """Durable job rows with indexed lookups and conditional status writes."""

    def create_job(self, job: DocumentJob) -> DocumentJob: ...

    def get_job(self, job_id: str) -> DocumentJob | None: ...

    def update_job_status(
        self,
        job_id: str,
        new_status: JobStatus,
        error_message: str | None = None,
        *,
        operator_retry: bool = False,
    ) -> DocumentJob | None: ...

    def update_job(self, job_id: str, attributes: dict[str, Any]) -> DocumentJob | None: ...

    def get_jobs_by_document_id(self, document_id: str) -> list[DocumentJob]: ...

    def find_jobs_by_textract_job_id(self, textract_job_id: str) -> list[DocumentJob]: ...

    def get_jobs_by_status(self, status: JobStatus, limit: int) -> list[DocumentJob]: ...


@runtime_checkable
class Queue(Protocol):
    """At-least-once message channel."""

    def send(self, message: dict[str, Any]) -> str: ...

    def receive(
        self,
        max_messages: int = 10,
        *,
        wait_time_seconds: int = 0,
        visibility_timeout: int | None = None,
    ) -> list[Any]: ...

    def delete(self, receipt_handle: str) -> None: ...


@runtime_checkable
class DocumentStorage(Protocol):
    """Object storage with not-found distinguished from other failures."""

    def get_size(self, bucket: str, key: str) -> int: ...

    def ensure_exists(self, bucket: str, key: str) -> None: ...

    def get_json(self, bucket: str, key: str) -> Any: ...

    def put_json(self, bucket: str, key: str, payload: Any) -> None: ...


@runtime_checkable
class ExtractionGateway(Protocol):
    """Long-running OCR capability with sync and async modes."""

    def analyze_document_sync(self, bucket: str, key: str, features: list[str]) -> dict[str, Any]: ...

    def start_extraction(
        self,
        bucket: str,
        key: str,
        features: list[str],
        *,
        job_tag: str | None = None,
    ) -> str: ...

    def fetch_result(self, job_id: str, *, with_features: bool) -> dict[str, Any]: ...


@runtime_checkable
class ClassificationGateway(Protocol):
    """LLM text generation; output structure is validated by the caller."""

    def classify(
        self,
        prompt: str,
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str: ...


@runtime_checkable
class KnowledgeBaseProvisioner(Protocol):
    """Retrieval index lookup, creation and query."""

    def get_status(self, knowledge_base_id: str) -> str | None: ...

    def create(self, name: str) -> str | None: ...

    def query(
        self,
        query: str,
        knowledge_base_id: str,
        *,
        number_of_results: int = 3,
        temperature: float = 0.1,
    ) -> Any: ...

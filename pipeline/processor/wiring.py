"""
Dependency Wiring

Builds the AWS-backed collaborators once per Lambda container and injects
them into the state machine.
"""

import structlog

from pipeline.shared.config import Settings, get_settings
from pipeline.shared.llm.bedrock_client import BedrockClassificationGateway
from pipeline.shared.llm.config import LLMSettings, get_llm_settings
from pipeline.shared.llm.knowledge_base import KnowledgeBaseGateway
from pipeline.shared.tools.dynamodb import DynamoJobStore
from pipeline.shared.tools.s3 import ResultSink, S3DocumentStorage
from pipeline.shared.tools.sqs import SqsQueue
from pipeline.shared.tools.textract import TextractGateway
from pipeline.processor.classifier import DocumentClassifier
from pipeline.processor.machine import DocumentJobStateMachine
from pipeline.processor.polling import CompletionPoller

log = structlog.get_logger()


def build_classifier(
    settings: Settings,
    llm_settings: LLMSettings,
    storage: S3DocumentStorage,
) -> DocumentClassifier:
    return DocumentClassifier(
        BedrockClassificationGateway(llm_settings),
        knowledge_base=KnowledgeBaseGateway.from_settings(settings, llm_settings),
        storage=storage,
        knowledge_base_id=settings.knowledge_base_id,
        state_bucket=settings.s3_bucket_name,
        state_key=settings.knowledge_base_state_key,
        temperature=llm_settings.llm_temperature,
    )


def build_state_machine(
    settings: Settings | None = None,
    llm_settings: LLMSettings | None = None,
) -> DocumentJobStateMachine:
    """
    Construct the state machine with DynamoDB, S3, SQS, Textract and Bedrock adapters.

    Raises:
        ValueError: If the classification queue URL is not configured
    """
    settings = settings or get_settings()
    llm_settings = llm_settings or get_llm_settings()

    if not settings.sqs_classification_queue_url:
        raise ValueError("DOCPIPE_SQS_CLASSIFICATION_QUEUE_URL is not configured")

    storage = S3DocumentStorage.from_settings(settings)

    machine = DocumentJobStateMachine(
        jobs=DynamoJobStore.from_settings(settings),
        storage=storage,
        extraction=TextractGateway.from_settings(settings),
        classification_queue=SqsQueue.from_settings(settings, settings.sqs_classification_queue_url),
        classifier=build_classifier(settings, llm_settings, storage),
        sink=ResultSink(storage),
        settings=settings,
    )

    log.info(
        "state_machine_initialized",
        table_name=settings.dynamodb_table_name,
        environment=settings.environment,
    )
    return machine


def build_completion_poller(settings: Settings | None = None) -> CompletionPoller | None:
    """Poller over the completion queue, or None when no queue is configured."""
    settings = settings or get_settings()
    if not settings.sqs_completion_queue_url:
        return None

    return CompletionPoller(
        SqsQueue.from_settings(settings, settings.sqs_completion_queue_url),
        max_attempts=settings.completion_poll_attempts,
        wait_seconds=settings.completion_poll_wait_seconds,
    )


def configure_dead_letter_queues(settings: Settings | None = None) -> list[str]:
    """
    Point every configured source queue at the dead-letter queue.

    Applies the max receive count and visibility timeout from settings.

    Returns:
        URLs of the queues that were configured

    Raises:
        ValueError: If no dead-letter queue URL is configured
        QueueError: If an attribute lookup or update fails
    """
    settings = settings or get_settings()
    if not settings.sqs_dlq_url:
        raise ValueError("DOCPIPE_SQS_DLQ_URL is not configured")

    dlq_arn = SqsQueue.from_settings(settings, settings.sqs_dlq_url).get_arn()
    source_urls = [
        url
        for url in (
            settings.sqs_ingest_queue_url,
            settings.sqs_classification_queue_url,
            settings.sqs_completion_queue_url,
        )
        if url
    ]

    for url in source_urls:
        SqsQueue.from_settings(settings, url).configure_dead_letter(
            dlq_arn,
            settings.sqs_max_receive_count,
            visibility_timeout=settings.sqs_visibility_timeout_seconds,
        )

    log.info("dead_letter_queues_configured", dlq_arn=dlq_arn, queue_count=len(source_urls))
    return source_urls

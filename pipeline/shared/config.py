"""
Configuration Management

Pydantic-settings based configuration for the document processing pipeline.
All settings can be overridden via environment variables.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Environment variables are prefixed with DOCPIPE_ and are case-insensitive.
    Example: DOCPIPE_DYNAMODB_TABLE_NAME=MyTable
    """

    model_config = SettingsConfigDict(
        env_prefix="DOCPIPE_",
        env_file=[".env.local", ".env"],  # Try .env.local first
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # DynamoDB Configuration
    dynamodb_table_name: str = Field(
        default="DocumentJobs",
        description="DynamoDB table name for document job records",
    )
    dynamodb_job_id_index: str = Field(
        default="JobIdIndex",
        description="GSI keyed by jobId",
    )
    dynamodb_textract_job_id_index: str = Field(
        default="TextractJobIdIndex",
        description="GSI keyed by textractJobId",
    )
    dynamodb_status_index: str = Field(
        default="StatusIndex",
        description="GSI keyed by status with timestamp range key",
    )
    dynamodb_endpoint_url: str | None = Field(
        default=None,
        description="DynamoDB endpoint URL (for local development)",
    )

    # S3 Configuration
    s3_bucket_name: str = Field(
        default="document-processor-documents",
        description="Default bucket for documents and pipeline artifacts",
    )
    s3_endpoint_url: str | None = Field(
        default=None,
        description="S3 endpoint URL (for local development)",
    )

    # SQS Configuration
    sqs_ingest_queue_url: str | None = Field(
        default=None,
        description="Queue receiving upload notifications",
    )
    sqs_classification_queue_url: str | None = Field(
        default=None,
        description="Queue receiving classification trigger messages",
    )
    sqs_completion_queue_url: str | None = Field(
        default=None,
        description="Queue subscribed to the Textract completion topic",
    )
    sqs_dlq_url: str | None = Field(
        default=None,
        description="Dead-letter queue for messages past max receive count",
    )
    sqs_max_receive_count: int = Field(
        default=3,
        ge=1,
        description="Deliveries before SQS redirects a message to the DLQ",
    )
    sqs_visibility_timeout_seconds: int = Field(
        default=300,
        ge=0,
        description="Visibility window for received messages",
    )
    sqs_endpoint_url: str | None = Field(
        default=None,
        description="SQS endpoint URL (for local development)",
    )

    # AWS Configuration
    aws_region: str = Field(
        default="us-east-1",
        description="AWS region",
    )

    # Application Configuration
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Textract Configuration
    textract_sns_topic_arn: str | None = Field(
        default=None,
        description="SNS topic ARN for Textract completion notifications",
    )
    textract_role_arn: str | None = Field(
        default=None,
        description="IAM role ARN for Textract to send SNS notifications",
    )
    textract_endpoint_url: str | None = Field(
        default=None,
        description="Textract endpoint URL (for local development)",
    )
    textract_default_features: list[str] = Field(
        default_factory=lambda: ["TABLES", "FORMS"],
        description="Feature types requested when the content type gives no hint",
    )
    sync_size_threshold_bytes: int = Field(
        default=5 * 1024 * 1024,
        gt=0,
        description="Files smaller than this are extracted synchronously",
    )
    max_document_size_bytes: int = Field(
        default=500 * 1024 * 1024,
        gt=0,
        description="Largest document Textract accepts",
    )

    # Knowledge Base Configuration
    knowledge_base_id: str | None = Field(
        default=None,
        description="Existing Bedrock knowledge base to use for classification context",
    )
    knowledge_base_role_arn: str | None = Field(
        default=None,
        description="Service role used when creating a knowledge base",
    )
    opensearch_collection_arn: str | None = Field(
        default=None,
        description="OpenSearch Serverless collection backing a new knowledge base",
    )
    embedding_model_arn: str = Field(
        default="arn:aws:bedrock:us-east-1::foundation-model/amazon.titan-embed-text-v1",
        description="Embedding model for new knowledge bases",
    )
    knowledge_base_index_name: str = Field(
        default="document-processor-index",
        description="Vector index name inside the OpenSearch collection",
    )
    knowledge_base_state_key: str = Field(
        default="knowledge-base/active.json",
        description="Object key remembering a knowledge base created by the pipeline",
    )

    # Batch / Polling Configuration
    batch_max_workers: int = Field(
        default=10,
        ge=1,
        le=10,
        description="Concurrent records processed per SQS batch",
    )
    completion_poll_attempts: int = Field(
        default=20,
        ge=1,
        description="Receive attempts when polling for a Textract completion",
    )
    completion_poll_wait_seconds: float = Field(
        default=6.0,
        ge=0.0,
        description="Wait between completion poll attempts",
    )

    @property
    def is_local(self) -> bool:
        """Detect if running in local mode."""
        return (
            self.environment == "development"
            or self.dynamodb_endpoint_url is not None
        )

    def _client_config(self, endpoint_url: str | None) -> dict:
        config = {"region_name": self.aws_region}
        if endpoint_url:
            config["endpoint_url"] = endpoint_url
        return config

    @property
    def dynamodb_config(self) -> dict:
        """DynamoDB client configuration."""
        return self._client_config(self.dynamodb_endpoint_url)

    @property
    def s3_config(self) -> dict:
        """S3 client configuration."""
        return self._client_config(self.s3_endpoint_url)

    @property
    def sqs_config(self) -> dict:
        """SQS client configuration."""
        return self._client_config(self.sqs_endpoint_url)

    @property
    def textract_config(self) -> dict:
        """Textract client configuration."""
        return self._client_config(self.textract_endpoint_url)

    @property
    def bedrock_agent_config(self) -> dict:
        """Bedrock agent (control and runtime plane) client configuration."""
        return self._client_config(None)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get cached application settings.

    Uses lru_cache to ensure settings are loaded only once.
    Call Settings.model_validate({}) in tests to override.
    """
    return Settings()

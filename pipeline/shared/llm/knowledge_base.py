"""
Bedrock Knowledge Base

Optional retrieval augmentation for classification. Lookup, creation and
query go through KnowledgeBaseGateway; resolve_knowledge_base walks the
fallback chain and never raises, since classification must work without it.
"""

import re
import time
from dataclasses import dataclass, field
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError
import structlog

from pipeline.shared.config import Settings
from pipeline.shared.exceptions import DocumentNotFoundError, StorageError
from pipeline.shared.interfaces import DocumentStorage, KnowledgeBaseProvisioner
from pipeline.shared.llm.config import LLMSettings

log = structlog.get_logger()

KNOWLEDGE_BASE_ID_PATTERN = re.compile(r"^[0-9a-zA-Z]{1,10}$")
ACTIVE = "ACTIVE"


def is_valid_knowledge_base_id(knowledge_base_id: str | None) -> bool:
    return bool(knowledge_base_id) and bool(KNOWLEDGE_BASE_ID_PATTERN.match(knowledge_base_id))


@dataclass(frozen=True)
class KnowledgeBaseAnswer:
    """Generated answer with the retrieved sources behind it."""

    text: str
    citations: list[dict[str, Any]] = field(default_factory=list)
    session_id: str | None = None


class KnowledgeBaseGateway:
    """
    Bedrock Agents implementation of the KnowledgeBaseProvisioner interface.

    get_status and create return None instead of raising, because every
    caller treats the knowledge base as optional. query raises so the
    caller can fall back to direct classification.
    """

    def __init__(
        self,
        agent_client: Any,
        runtime_client: Any,
        *,
        model_arn: str,
        role_arn: str | None = None,
        collection_arn: str | None = None,
        embedding_model_arn: str | None = None,
        index_name: str = "document-processor-index",
    ) -> None:
        self._agent_client = agent_client
        self._runtime_client = runtime_client
        self._model_arn = model_arn
        self._role_arn = role_arn
        self._collection_arn = collection_arn
        self._embedding_model_arn = embedding_model_arn
        self._index_name = index_name

    @classmethod
    def from_settings(cls, settings: Settings, llm_settings: LLMSettings) -> "KnowledgeBaseGateway":
        return cls(
            boto3.client("bedrock-agent", **settings.bedrock_agent_config),
            boto3.client("bedrock-agent-runtime", **settings.bedrock_agent_config),
            model_arn=llm_settings.model_arn,
            role_arn=settings.knowledge_base_role_arn,
            collection_arn=settings.opensearch_collection_arn,
            embedding_model_arn=settings.embedding_model_arn,
            index_name=settings.knowledge_base_index_name,
        )

    def get_status(self, knowledge_base_id: str) -> str | None:
        """Status of a knowledge base, or None if it cannot be read."""
        if not is_valid_knowledge_base_id(knowledge_base_id):
            log.warning("knowledge_base_id_invalid", knowledge_base_id=knowledge_base_id)
            return None

        try:
            response = self._agent_client.get_knowledge_base(knowledgeBaseId=knowledge_base_id)
        except (ClientError, BotoCoreError) as e:
            log.warning(
                "knowledge_base_lookup_failed",
                knowledge_base_id=knowledge_base_id,
                error=str(e),
            )
            return None

        status = response.get("knowledgeBase", {}).get("status")
        log.debug("knowledge_base_status", knowledge_base_id=knowledge_base_id, status=status)
        return status

    def create(self, name: str) -> str | None:
        """
        Create a vector knowledge base on OpenSearch Serverless.

        Returns:
            The new knowledge base id, or None when creation is not
            configured or fails
        """
        if not self._role_arn or not self._collection_arn:
            log.warning(
                "knowledge_base_create_skipped",
                reason="role ARN and OpenSearch collection ARN are required",
                has_role=bool(self._role_arn),
                has_collection=bool(self._collection_arn),
            )
            return None

        try:
            response = self._agent_client.create_knowledge_base(
                name=name,
                description="Knowledge base for document classification",
                roleArn=self._role_arn,
                knowledgeBaseConfiguration={
                    "type": "VECTOR",
                    "vectorKnowledgeBaseConfiguration": {
                        "embeddingModelArn": self._embedding_model_arn,
                    },
                },
                storageConfiguration={
                    "type": "OPENSEARCH_SERVERLESS",
                    "opensearchServerlessConfiguration": {
                        "collectionArn": self._collection_arn,
                        "vectorIndexName": self._index_name,
                        "fieldMapping": {
                            "vectorField": "vector",
                            "textField": "text",
                            "metadataField": "metadata",
                        },
                    },
                },
            )
        except (ClientError, BotoCoreError) as e:
            log.warning("knowledge_base_create_failed", name=name, error=str(e))
            return None

        knowledge_base_id = response.get("knowledgeBase", {}).get("knowledgeBaseId")
        log.info("knowledge_base_created", name=name, knowledge_base_id=knowledge_base_id)
        return knowledge_base_id

    def query(
        self,
        query: str,
        knowledge_base_id: str,
        *,
        number_of_results: int = 3,
        temperature: float = 0.1,
        max_tokens: int = 2048,
    ) -> KnowledgeBaseAnswer:
        """
        Retrieve related content and generate an answer.

        Raises:
            ClientError, BotoCoreError: If the runtime call fails
        """
        log.info(
            "knowledge_base_query",
            knowledge_base_id=knowledge_base_id,
            query_length=len(query),
        )

        response = self._runtime_client.retrieve_and_generate(
            input={"text": query},
            retrieveAndGenerateConfiguration={
                "type": "KNOWLEDGE_BASE",
                "knowledgeBaseConfiguration": {
                    "knowledgeBaseId": knowledge_base_id,
                    "modelArn": self._model_arn,
                    "retrievalConfiguration": {
                        "vectorSearchConfiguration": {"numberOfResults": number_of_results},
                    },
                    "generationConfiguration": {
                        "inferenceConfig": {
                            "textInferenceConfig": {
                                "temperature": temperature,
                                "maxTokens": max_tokens,
                            },
                        },
                    },
                },
            },
        )

        return KnowledgeBaseAnswer(
            text=response.get("output", {}).get("text", ""),
            citations=response.get("citations", []),
            session_id=response.get("sessionId"),
        )


def _remembered_id(storage: DocumentStorage, bucket: str, state_key: str) -> str | None:
    try:
        state = storage.get_json(bucket, state_key)
    except DocumentNotFoundError:
        return None
    except StorageError as e:
        log.warning("knowledge_base_state_unreadable", bucket=bucket, key=state_key, error=str(e))
        return None

    if isinstance(state, dict):
        return state.get("knowledgeBaseId")
    return None


def resolve_knowledge_base(
    provisioner: KnowledgeBaseProvisioner,
    storage: DocumentStorage,
    *,
    bucket: str,
    state_key: str,
    configured_id: str | None = None,
) -> str | None:
    """
    Find an ACTIVE knowledge base to augment classification.

    Order:
    1. configured id, if ACTIVE
    2. id remembered in s3://{bucket}/{state_key}, if ACTIVE
    3. create one and remember it; used once it reports ACTIVE
    4. None, meaning direct classification

    Returns:
        Knowledge base id, or None
    """
    if configured_id:
        status = provisioner.get_status(configured_id)
        if status == ACTIVE:
            log.info("knowledge_base_selected", knowledge_base_id=configured_id, source="configured")
            return configured_id
        log.warning("configured_knowledge_base_unavailable", knowledge_base_id=configured_id, status=status)

    remembered = _remembered_id(storage, bucket, state_key)
    if remembered:
        status = provisioner.get_status(remembered)
        if status == ACTIVE:
            log.info("knowledge_base_selected", knowledge_base_id=remembered, source="remembered")
            return remembered
        if status is not None:
            # Still provisioning; creating another would leak indexes
            log.info("knowledge_base_not_ready", knowledge_base_id=remembered, status=status)
            return None

    created = provisioner.create(f"document-processor-kb-{int(time.time())}")
    if not created:
        log.info("knowledge_base_unavailable_using_direct_classification")
        return None

    try:
        storage.put_json(bucket, state_key, {"knowledgeBaseId": created})
    except StorageError as e:
        log.warning("knowledge_base_state_not_saved", knowledge_base_id=created, error=str(e))

    if provisioner.get_status(created) == ACTIVE:
        log.info("knowledge_base_selected", knowledge_base_id=created, source="created")
        return created

    log.info("knowledge_base_not_ready", knowledge_base_id=created)
    return None

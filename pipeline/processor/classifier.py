"""
Document Classifier

Builds the prompt for a formatted document, optionally augments it with
knowledge base context, invokes the classification gateway and validates
the answer.
"""

from typing import Any

from botocore.exceptions import BotoCoreError, ClientError
import structlog

from pipeline.shared.interfaces import (
    ClassificationGateway,
    DocumentStorage,
    KnowledgeBaseProvisioner,
)
from pipeline.shared.llm.bedrock_client import parse_classification
from pipeline.shared.llm.knowledge_base import resolve_knowledge_base
from pipeline.shared.llm.prompts import build_classification_prompt, build_knowledge_base_query
from pipeline.shared.llm.schemas import ClassificationResult

log = structlog.get_logger()


class DocumentClassifier:
    """
    Classifies formatted extraction output.

    The knowledge base is optional: without a provisioner, or when none is
    ACTIVE, or when its query fails, the document is classified directly.
    """

    def __init__(
        self,
        gateway: ClassificationGateway,
        *,
        knowledge_base: KnowledgeBaseProvisioner | None = None,
        storage: DocumentStorage | None = None,
        knowledge_base_id: str | None = None,
        state_bucket: str | None = None,
        state_key: str = "knowledge-base/active.json",
        number_of_results: int = 3,
        temperature: float = 0.1,
    ) -> None:
        self._gateway = gateway
        self._knowledge_base = knowledge_base
        self._storage = storage
        self._configured_id = knowledge_base_id
        self._state_bucket = state_bucket
        self._state_key = state_key
        self._number_of_results = number_of_results
        self._temperature = temperature
        self._active_id: str | None = None

    def _resolve(self, bucket: str) -> str | None:
        if self._knowledge_base is None or self._storage is None:
            return None
        if self._active_id is None:
            self._active_id = resolve_knowledge_base(
                self._knowledge_base,
                self._storage,
                bucket=self._state_bucket or bucket,
                state_key=self._state_key,
                configured_id=self._configured_id,
            )
        return self._active_id

    def _context(self, document: Any, bucket: str) -> str | None:
        knowledge_base_id = self._resolve(bucket)
        if not knowledge_base_id:
            return None

        try:
            answer = self._knowledge_base.query(
                build_knowledge_base_query(document),
                knowledge_base_id,
                number_of_results=self._number_of_results,
                temperature=self._temperature,
            )
        except (ClientError, BotoCoreError) as e:
            log.warning(
                "knowledge_base_query_failed_using_direct_classification",
                knowledge_base_id=knowledge_base_id,
                error=str(e),
            )
            return None

        return answer.text or None

    def classify(self, document: Any, *, bucket: str) -> ClassificationResult:
        """
        Classify a formatted document.

        Args:
            document: Formatted extraction ({text, forms, tables})
            bucket: Bucket the document lives in

        Raises:
            LLMInvocationError: If the model call fails after retries
            ValidationError: If the answer violates the classification schema
        """
        context = self._context(document, bucket)
        prompt = build_classification_prompt(document, context)

        log.info(
            "classification_started",
            augmented=context is not None,
            prompt_length=len(prompt),
        )

        result = parse_classification(self._gateway.classify(prompt))

        log.info(
            "classification_completed",
            document_type=result.document_type.type,
            overall_confidence=result.overall_confidence,
        )
        return result

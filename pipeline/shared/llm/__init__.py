"""
LLM Infrastructure for Document Classification

Provides AWS Bedrock integration through the Strands Agents SDK.

This package provides:
- BedrockClassificationGateway for model invocation
- Prompt builders and classification answer parsing
- Knowledge base lookup, creation and retrieval
"""

from pipeline.shared.llm.bedrock_client import (
    BedrockClassificationGateway,
    LLMInvocationError,
    extract_json_object,
    parse_classification,
)
from pipeline.shared.llm.config import LLMSettings, get_llm_settings
from pipeline.shared.llm.knowledge_base import (
    KnowledgeBaseAnswer,
    KnowledgeBaseGateway,
    resolve_knowledge_base,
)
from pipeline.shared.llm.prompts import build_classification_prompt, build_knowledge_base_query
from pipeline.shared.llm.schemas import DOCUMENT_TYPES, ClassificationResult


__all__ = [
    # Client
    "BedrockClassificationGateway",
    "LLMInvocationError",
    "extract_json_object",
    "parse_classification",
    # Settings
    "LLMSettings",
    "get_llm_settings",
    # Knowledge base
    "KnowledgeBaseGateway",
    "KnowledgeBaseAnswer",
    "resolve_knowledge_base",
    # Prompts
    "build_classification_prompt",
    "build_knowledge_base_query",
    # Schemas
    "ClassificationResult",
    "DOCUMENT_TYPES",
]

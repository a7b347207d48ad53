"""
Classification Prompts

Pure prompt builders. The same document always yields the same prompt.
"""

import json
from typing import Any

from pipeline.shared.llm.schemas import DOCUMENT_TYPES

KNOWLEDGE_BASE_QUERY_CHARS = 500


def _document_json(document: Any) -> str:
    return json.dumps(document, sort_keys=True, ensure_ascii=False, default=str)


def _quoted_types() -> str:
    return ", ".join(f'"{t}"' for t in DOCUMENT_TYPES)


CLASSIFICATION_PROMPT = """You are a banking document expert AI assistant.

Classify the following document content and return a structured JSON response matching this schema:

{{
  "overallConfidence": number, // 0 to 1
  "documentType": {{
    "type": "string", // Primary type - MUST be one of: {quoted_types}
    "confidence": number, // 0 to 1
    "alternatives": {{
      "alternativeType1": number, // confidence score for alternative type
      "alternativeType2": number
    }}
  }},
  "summary": "string", // Brief 2-3 sentence summary of document content
  "entities": [
    {{
      "type": "string", // Entity type (e.g., "Person", "Organization", "Date", "Amount")
      "value": "string", // Extracted value
      "confidence": number // 0 to 1
    }}
  ],
  "metadata": {{
    "issueDate": "string",
    "expiryDate": "string",
    "documentNumber": "string",
    "issuingAuthority": "string"
  }}
}}

Analyze this content:
{document_json}
{context_section}
IMPORTANT: The "documentType.type" field MUST be exactly one of these values: {quoted_types}. Any other value will cause a validation error.

Return only the JSON object without any extra explanation."""


def build_classification_prompt(document: Any, context: str | None = None) -> str:
    """
    Build the classification prompt for a formatted document.

    Args:
        document: Formatted extraction ({text, forms, tables})
        context: Optional knowledge base answer to append

    Returns:
        Prompt text
    """
    context_section = ""
    if context:
        context_section = f"\nAdditional context from knowledge base: {context}\n"

    return CLASSIFICATION_PROMPT.format(
        quoted_types=_quoted_types(),
        document_json=_document_json(document),
        context_section=context_section,
    )


def build_knowledge_base_query(document: Any) -> str:
    """Retrieval query built from the start of the document JSON."""
    snippet = _document_json(document)[:KNOWLEDGE_BASE_QUERY_CHARS]
    return (
        "Analyze and provide classification context for a document "
        f"with the following structure: {snippet}..."
    )

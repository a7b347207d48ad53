"""
Structured Output Schemas for LLM Responses

Pydantic models for the banking document classification answer.
Field names follow the JSON the model is asked to produce.
"""

from typing import Any, Literal, get_args

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


DocumentTypeName = Literal[
    "KYC_FORM",
    "CREDIT_APPLICATION",
    "LOAN_CONTRACT",
    "BANK_STATEMENT",
    "TRANSACTION_RECEIPT",
    "ID_CARD",
    "PASSPORT",
    "UTILITY_BILL",
    "SALARY_SLIP",
    "OTHER",
]

DOCUMENT_TYPES: tuple[str, ...] = get_args(DocumentTypeName)


class DocumentType(BaseModel):
    """Primary category with its confidence and scored alternatives."""

    model_config = ConfigDict(extra="ignore")

    type: DocumentTypeName = Field(
        ...,
        validation_alias=AliasChoices("type", "category"),
        description="Primary document category",
    )
    confidence: float = Field(..., ge=0.0, le=1.0)
    alternatives: dict[str, float] = Field(
        default_factory=dict,
        description="Other plausible categories and their confidence",
    )

    @field_validator("alternatives")
    @classmethod
    def _alternatives_in_range(cls, value: dict[str, float]) -> dict[str, float]:
        for name, score in value.items():
            if not 0.0 <= score <= 1.0:
                raise ValueError(f"alternative '{name}' confidence {score} outside 0..1")
        return value


class Entity(BaseModel):
    """A value pulled out of the document, e.g. a name, date or amount."""

    model_config = ConfigDict(extra="ignore")

    type: str = Field(..., min_length=1)
    value: str
    confidence: float = Field(..., ge=0.0, le=1.0)

    @field_validator("value", mode="before")
    @classmethod
    def _value_as_text(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value


class ClassificationResult(BaseModel):
    """
    Validated classification answer.

    Stored as the "classification" member of classified/{documentId}.json.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    overall_confidence: float = Field(..., alias="overallConfidence", ge=0.0, le=1.0)
    document_type: DocumentType = Field(..., alias="documentType")
    summary: str = Field(..., min_length=1, description="Brief 2-3 sentence summary")
    entities: list[Entity] = Field(default_factory=list)
    metadata: dict[str, str] = Field(default_factory=dict)

    @field_validator("metadata", mode="before")
    @classmethod
    def _metadata_as_text(cls, value: Any) -> Any:
        # Unknown fields come back as null; numbers as numbers
        if isinstance(value, dict):
            return {
                str(k): str(v)
                for k, v in value.items()
                if v is not None and not isinstance(v, (dict, list))
            }
        return value

    def to_record(self) -> dict[str, Any]:
        """JSON-ready form using the wire field names."""
        return self.model_dump(by_alias=True, mode="json")

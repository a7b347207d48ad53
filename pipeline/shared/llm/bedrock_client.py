"""
Bedrock LLM Client

Classification gateway over AWS Bedrock. Uses Strands Agents SDK for model
invocation; the free-form answer is parsed and validated separately so a
schema violation is never retried or silently coerced.
"""

import json
from typing import Any

import structlog
from pydantic import ValidationError as PydanticValidationError
from strands import Agent
from strands.models import BedrockModel
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from pipeline.shared.exceptions import ValidationError
from pipeline.shared.llm.config import LLMSettings, get_llm_settings
from pipeline.shared.llm.schemas import ClassificationResult


log = structlog.get_logger()


class LLMInvocationError(Exception):
    """Raised when LLM invocation fails after retries."""

    def __init__(self, message: str, original_error: Exception | None = None):
        super().__init__(message)
        self.original_error = original_error


class BedrockClassificationGateway:
    """
    Bedrock implementation of the ClassificationGateway interface.

    Usage:
        gateway = BedrockClassificationGateway()
        text = gateway.classify(build_classification_prompt(document))
        result = parse_classification(text)
    """

    def __init__(self, settings: LLMSettings | None = None):
        self._settings = settings or get_llm_settings()
        self._models: dict[tuple[float, int], BedrockModel] = {}

    @property
    def settings(self) -> LLMSettings:
        return self._settings

    def _get_model(self, temperature: float, max_tokens: int) -> BedrockModel:
        """Get or create a BedrockModel for the given sampling parameters."""
        cache_key = (temperature, max_tokens)
        if cache_key not in self._models:
            model_kwargs: dict[str, Any] = {
                "model_id": self._settings.bedrock_model_id,
                "region_name": self._settings.bedrock_region,
                "temperature": temperature,
                "max_tokens": max_tokens,
                "top_p": self._settings.llm_top_p,
            }

            # Add optional endpoint URL for testing/VPC
            if self._settings.bedrock_endpoint_url:
                model_kwargs["endpoint_url"] = self._settings.bedrock_endpoint_url

            self._models[cache_key] = BedrockModel(**model_kwargs)

            log.debug(
                "bedrock_model_initialized",
                model_id=self._settings.bedrock_model_id,
                region=self._settings.bedrock_region,
                temperature=temperature,
                max_tokens=max_tokens,
            )

        return self._models[cache_key]

    def _get_agent(self, temperature: float, max_tokens: int) -> Agent:
        # A fresh agent per call keeps conversation history out of the prompt
        return Agent(
            model=self._get_model(temperature, max_tokens),
            callback_handler=None,
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((LLMInvocationError,)),
        reraise=True,
    )
    def classify(
        self,
        prompt: str,
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        """
        Invoke the model and return its raw text answer.

        Args:
            prompt: Full classification prompt
            temperature: Sampling temperature, defaults to settings (0.1)
            max_tokens: Maximum response tokens, defaults to settings (2048)

        Raises:
            LLMInvocationError: If the call fails after retries
        """
        if not self._settings.llm_enabled:
            raise LLMInvocationError("LLM is disabled via settings")

        effective_temp = temperature if temperature is not None else self._settings.llm_temperature
        effective_max_tokens = max_tokens if max_tokens is not None else self._settings.llm_max_tokens

        log.info(
            "llm_invoke_start",
            model_id=self._settings.bedrock_model_id,
            temperature=effective_temp,
            max_tokens=effective_max_tokens,
            prompt_length=len(prompt),
        )

        try:
            agent = self._get_agent(effective_temp, effective_max_tokens)
            response_text = str(agent(prompt))
        except Exception as e:
            log.error(
                "llm_invoke_error",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise LLMInvocationError(
                f"Failed to invoke LLM: {e}",
                original_error=e,
            ) from e

        log.debug("llm_raw_response", response_preview=response_text[:500])
        log.info("llm_invoke_success", response_length=len(response_text))
        return response_text


def _sanitize_json_strings(raw: str) -> str:
    """
    Escape control characters inside JSON double-quoted string values.
    LLMs sometimes emit literal newlines inside strings, which is invalid JSON.
    """
    result: list[str] = []
    in_string = False
    escape_next = False
    for c in raw:
        if escape_next:
            result.append(c)
            escape_next = False
            continue
        if c == "\\" and in_string:
            result.append(c)
            escape_next = True
            continue
        if c == '"':
            in_string = not in_string
            result.append(c)
            continue
        if in_string and ord(c) < 32:
            if c == "\n":
                result.append("\\n")
            elif c == "\r":
                result.append("\\r")
            elif c == "\t":
                result.append("\\t")
            else:
                result.append(f"\\u{ord(c):04x}")
            continue
        result.append(c)
    return "".join(result)


def extract_json_object(text: str) -> str:
    """
    Return the first balanced {...} object in free-form model text.

    Braces inside string literals are ignored.

    Raises:
        ValidationError: If the text holds no complete JSON object
    """
    start = text.find("{")
    if start < 0:
        raise ValidationError("No JSON object found in model response")

    depth = 0
    in_string = False
    escape_next = False
    for index in range(start, len(text)):
        c = text[index]
        if escape_next:
            escape_next = False
            continue
        if in_string:
            if c == "\\":
                escape_next = True
            elif c == '"':
                in_string = False
            continue
        if c == '"':
            in_string = True
        elif c == "{":
            depth += 1
        elif c == "}":
            depth -= 1
            if depth == 0:
                return text[start:index + 1]

    raise ValidationError("Unbalanced JSON object in model response")


def parse_classification(text: str) -> ClassificationResult:
    """
    Parse and validate a model answer.

    Raises:
        ValidationError: If no JSON object can be decoded or it violates the schema
    """
    candidate = _sanitize_json_strings(extract_json_object(text))

    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as e:
        log.error("llm_json_parse_error", error=str(e), response_preview=candidate[:200])
        raise ValidationError(f"Failed to parse model response as JSON: {e}") from e

    try:
        return ClassificationResult.model_validate(data)
    except PydanticValidationError as e:
        log.error(
            "llm_schema_validation_error",
            error=str(e),
            schema=ClassificationResult.__name__,
        )
        raise ValidationError(
            f"Model response does not match classification schema: {e.error_count()} error(s)",
            errors=[".".join(str(p) for p in err["loc"]) for err in e.errors()],
        ) from e

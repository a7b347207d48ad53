"""
Unit tests for knowledge base lookup, creation and the fallback chain.
"""

from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError

from pipeline.shared.exceptions import DocumentNotFoundError, StorageError
from pipeline.shared.llm.knowledge_base import (
    KnowledgeBaseGateway,
    is_valid_knowledge_base_id,
    resolve_knowledge_base,
)

STATE_KEY = "knowledge-base/active.json"


def _gateway(agent_client=None, runtime_client=None, **overrides):
    params = {
        "model_arn": "arn:aws:bedrock:us-east-1::foundation-model/anthropic.claude-3-sonnet-20240229-v1:0",
        "role_arn": "arn:aws:iam::123456789012:role/kb",
        "collection_arn": "arn:aws:aoss:us-east-1:123456789012:collection/abc",
        "embedding_model_arn": "arn:aws:bedrock:us-east-1::foundation-model/amazon.titan-embed-text-v1",
    }
    params.update(overrides)
    return KnowledgeBaseGateway(agent_client or MagicMock(), runtime_client or MagicMock(), **params)


class TestKnowledgeBaseGateway:
    """Tests for KnowledgeBaseGateway."""

    @pytest.mark.parametrize(
        "kb_id,valid",
        [("ABCDE12345", True), ("kb1", True), ("", False), (None, False), ("ABCDE123456", False), ("kb-1", False)],
    )
    def test_id_format(self, kb_id, valid):
        assert is_valid_knowledge_base_id(kb_id) is valid

    def test_get_status(self):
        agent = MagicMock()
        agent.get_knowledge_base.return_value = {"knowledgeBase": {"status": "ACTIVE"}}

        assert _gateway(agent).get_status("KB12345678") == "ACTIVE"
        agent.get_knowledge_base.assert_called_once_with(knowledgeBaseId="KB12345678")

    def test_get_status_invalid_id_skips_call(self):
        agent = MagicMock()

        assert _gateway(agent).get_status("not a valid id") is None
        agent.get_knowledge_base.assert_not_called()

    def test_get_status_error_returns_none(self):
        agent = MagicMock()
        agent.get_knowledge_base.side_effect = ClientError(
            {"Error": {"Code": "ResourceNotFoundException", "Message": "gone"}},
            "GetKnowledgeBase",
        )

        assert _gateway(agent).get_status("KB1") is None

    def test_create_sends_vector_configuration(self):
        agent = MagicMock()
        agent.create_knowledge_base.return_value = {"knowledgeBase": {"knowledgeBaseId": "NEWKB00001"}}

        assert _gateway(agent).create("document-processor-kb-1") == "NEWKB00001"

        params = agent.create_knowledge_base.call_args.kwargs
        assert params["name"] == "document-processor-kb-1"
        assert params["knowledgeBaseConfiguration"]["type"] == "VECTOR"
        storage = params["storageConfiguration"]
        assert storage["type"] == "OPENSEARCH_SERVERLESS"
        assert storage["opensearchServerlessConfiguration"]["fieldMapping"] == {
            "vectorField": "vector",
            "textField": "text",
            "metadataField": "metadata",
        }

    def test_create_requires_role_and_collection(self):
        agent = MagicMock()

        assert _gateway(agent, collection_arn=None).create("kb") is None
        agent.create_knowledge_base.assert_not_called()

    def test_create_error_returns_none(self):
        agent = MagicMock()
        agent.create_knowledge_base.side_effect = ClientError(
            {"Error": {"Code": "AccessDeniedException", "Message": "no"}},
            "CreateKnowledgeBase",
        )

        assert _gateway(agent).create("kb") is None

    def test_query(self):
        runtime = MagicMock()
        runtime.retrieve_and_generate.return_value = {
            "output": {"text": "Similar to bank statements"},
            "citations": [{"retrievedReferences": []}],
            "sessionId": "s-1",
        }

        answer = _gateway(runtime_client=runtime).query("q", "KB1", number_of_results=3, temperature=0.1)

        assert answer.text == "Similar to bank statements"
        assert answer.session_id == "s-1"
        config = runtime.retrieve_and_generate.call_args.kwargs["retrieveAndGenerateConfiguration"]
        kb_config = config["knowledgeBaseConfiguration"]
        assert config["type"] == "KNOWLEDGE_BASE"
        assert kb_config["knowledgeBaseId"] == "KB1"
        assert kb_config["retrievalConfiguration"]["vectorSearchConfiguration"]["numberOfResults"] == 3
        assert kb_config["generationConfiguration"]["inferenceConfig"]["textInferenceConfig"] == {
            "temperature": 0.1,
            "maxTokens": 2048,
        }

    def test_query_error_propagates(self):
        runtime = MagicMock()
        runtime.retrieve_and_generate.side_effect = ClientError(
            {"Error": {"Code": "ThrottlingException", "Message": "slow down"}},
            "RetrieveAndGenerate",
        )

        with pytest.raises(ClientError):
            _gateway(runtime_client=runtime).query("q", "KB1")


class TestResolveKnowledgeBase:
    """Tests for the configured -> remembered -> created fallback chain."""

    @pytest.fixture
    def provisioner(self):
        return MagicMock()

    @pytest.fixture
    def storage(self):
        storage = MagicMock()
        storage.get_json.side_effect = DocumentNotFoundError("state", STATE_KEY)
        return storage

    def _resolve(self, provisioner, storage, configured_id=None):
        return resolve_knowledge_base(
            provisioner,
            storage,
            bucket="state",
            state_key=STATE_KEY,
            configured_id=configured_id,
        )

    def test_configured_active(self, provisioner, storage):
        provisioner.get_status.return_value = "ACTIVE"

        assert self._resolve(provisioner, storage, "CONF1") == "CONF1"
        storage.get_json.assert_not_called()
        provisioner.create.assert_not_called()

    def test_remembered_active(self, provisioner, storage):
        storage.get_json.side_effect = None
        storage.get_json.return_value = {"knowledgeBaseId": "REM1"}
        provisioner.get_status.side_effect = lambda kb_id: {"CONF1": None, "REM1": "ACTIVE"}[kb_id]

        assert self._resolve(provisioner, storage, "CONF1") == "REM1"
        provisioner.create.assert_not_called()

    def test_remembered_still_creating(self, provisioner, storage):
        storage.get_json.side_effect = None
        storage.get_json.return_value = {"knowledgeBaseId": "REM1"}
        provisioner.get_status.return_value = "CREATING"

        assert self._resolve(provisioner, storage) is None
        provisioner.create.assert_not_called()

    def test_created_and_remembered(self, provisioner, storage):
        provisioner.create.return_value = "NEW1"
        provisioner.get_status.return_value = "ACTIVE"

        with patch("pipeline.shared.llm.knowledge_base.time.time", return_value=1700000000):
            assert self._resolve(provisioner, storage) == "NEW1"

        provisioner.create.assert_called_once_with("document-processor-kb-1700000000")
        storage.put_json.assert_called_once_with("state", STATE_KEY, {"knowledgeBaseId": "NEW1"})

    def test_created_not_yet_active(self, provisioner, storage):
        provisioner.create.return_value = "NEW1"
        provisioner.get_status.return_value = "CREATING"

        assert self._resolve(provisioner, storage) is None
        storage.put_json.assert_called_once()

    def test_creation_unavailable(self, provisioner, storage):
        provisioner.create.return_value = None

        assert self._resolve(provisioner, storage) is None
        storage.put_json.assert_not_called()

    def test_unreadable_state_falls_through_to_create(self, provisioner, storage):
        storage.get_json.side_effect = StorageError("get", "state", STATE_KEY, "Invalid JSON content")
        provisioner.create.return_value = None

        assert self._resolve(provisioner, storage) is None
        provisioner.create.assert_called_once()

    def test_state_save_failure_is_not_fatal(self, provisioner, storage):
        provisioner.create.return_value = "NEW1"
        provisioner.get_status.return_value = "ACTIVE"
        storage.put_json.side_effect = StorageError("put", "state", STATE_KEY, "denied")

        assert self._resolve(provisioner, storage) == "NEW1"

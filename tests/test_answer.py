from decimal import Decimal

import pytest

from kbhub.core.errors import ConfigurationError, InsufficientBalanceError, ProviderError
from kbhub.models import TokenUsage
from kbhub.services.answer import NO_CONTEXT_ANSWER, AnswerGenerator, build_messages
from kbhub.services.billing import BillingLedger
from kbhub.services.openai_service import ChatClient
from tests.conftest import FakeChatClient, FakeEmbeddingClient


@pytest.fixture
def indexed_tenant(seed):
    tenant = seed.tenant(balance="10")
    seed.document(tenant, "Refunds", chunks=["refund policy: 30 days", "refund exceptions"])
    seed.document(tenant, "Leave", chunks=["vacation policy"])
    return tenant


class TestBuildMessages:
    def test_layout(self):
        messages = build_messages("What is the refund policy?", "[Chunk 1]\nctx", [], 10)

        assert messages[0]["role"] == "system"
        assert "[Chunk 1]\nctx" in messages[0]["content"]
        assert messages[-1] == {"role": "user", "content": "What is the refund policy?"}

    def test_history_is_trimmed_and_roles_normalized(self):
        history = [{"role": "USER" if i % 2 == 0 else "ASSISTANT", "content": f"turn {i}"} for i in range(12)]

        messages = build_messages("q", "ctx", history, 4)

        turns = messages[1:-1]
        assert [m["content"] for m in turns] == ["turn 8", "turn 9", "turn 10", "turn 11"]
        assert [m["role"] for m in turns] == ["user", "assistant", "user", "assistant"]

    def test_zero_history_turns(self):
        messages = build_messages("q", "ctx", [{"role": "user", "content": "old"}], 0)
        assert len(messages) == 2


class TestAnswerGenerator:
    """Test cases for AnswerGenerator.answer."""

    def test_grounded_answer_is_charged(self, db, indexed_tenant, embedding_client, chat_client):
        generator = AnswerGenerator(db, embedding_client, chat_client, top_k=3)

        result = generator.answer("refund policy", indexed_tenant.id)

        assert result.answer == "Refunds are issued within 30 days."
        assert result.usage.total_tokens == 1500
        assert result.usage.cost == Decimal("0.00045")
        balance, total_spent = BillingLedger(db).get_balance(indexed_tenant.id)
        assert balance == Decimal("9.99955")
        assert total_spent == Decimal("0.00045")

    def test_sources_are_deduplicated(self, db, indexed_tenant, embedding_client, chat_client):
        generator = AnswerGenerator(db, embedding_client, chat_client, top_k=3)

        result = generator.answer("refund policy", indexed_tenant.id)

        names = [s.document_name for s in result.sources]
        assert names == ["Refunds", "Leave"]

    def test_context_reaches_the_model(self, db, indexed_tenant, embedding_client, chat_client):
        AnswerGenerator(db, embedding_client, chat_client, top_k=1).answer("refund policy", indexed_tenant.id)

        system_prompt = chat_client.calls[0]["messages"][0]["content"]
        assert "[Chunk 1]\nrefund policy: 30 days" in system_prompt
        assert "[Chunk 2]" not in system_prompt

    def test_history_is_limited(self, db, indexed_tenant, embedding_client, chat_client):
        history = [{"role": "user", "content": f"turn {i}"} for i in range(15)]
        generator = AnswerGenerator(db, embedding_client, chat_client, history_turns=10)

        generator.answer("refund policy", indexed_tenant.id, history=history)

        messages = chat_client.calls[0]["messages"]
        assert len(messages) == 12
        assert messages[1]["content"] == "turn 5"

    def test_no_context_short_circuits(self, db, seed, embedding_client, chat_client):
        tenant = seed.tenant(balance="10")

        result = AnswerGenerator(db, embedding_client, chat_client).answer("refund policy", tenant.id)

        assert result.answer == NO_CONTEXT_ANSWER
        assert result.sources == []
        assert result.usage is None
        assert chat_client.calls == []
        assert db.query(TokenUsage).count() == 0
        assert BillingLedger(db).get_balance(tenant.id)[0] == Decimal("10")

    def test_missing_credentials_fail_before_retrieval(self, db, indexed_tenant, embedding_client):
        generator = AnswerGenerator(db, embedding_client, ChatClient(api_key=""))

        with pytest.raises(ConfigurationError):
            generator.answer("refund policy", indexed_tenant.id)
        assert embedding_client.calls == []

    def test_unconfigured_embeddings(self, db, indexed_tenant, chat_client):
        generator = AnswerGenerator(db, FakeEmbeddingClient(configured=False), chat_client)

        with pytest.raises(ConfigurationError):
            generator.answer("refund policy", indexed_tenant.id)

    def test_balance_gate(self, db, seed, embedding_client, chat_client):
        tenant = seed.tenant(balance="0")
        seed.document(tenant, "Refunds", chunks=["refund policy"])

        with pytest.raises(InsufficientBalanceError) as exc_info:
            AnswerGenerator(db, embedding_client, chat_client).answer("refund policy", tenant.id)

        assert exc_info.value.balance == Decimal("0")
        assert embedding_client.calls == []
        assert chat_client.calls == []

    def test_balance_gate_can_be_skipped(self, db, seed, embedding_client, chat_client):
        tenant = seed.tenant(balance="0")
        seed.document(tenant, "Refunds", chunks=["refund policy"])

        result = AnswerGenerator(db, embedding_client, chat_client).answer(
            "refund policy", tenant.id, enforce_balance=False
        )

        assert result.usage is not None

    def test_provider_failure_charges_nothing(self, db, indexed_tenant, embedding_client):
        chat_client = FakeChatClient(error=ProviderError("upstream down"))

        with pytest.raises(ProviderError):
            AnswerGenerator(db, embedding_client, chat_client).answer("refund policy", indexed_tenant.id)

        assert db.query(TokenUsage).count() == 0
        assert BillingLedger(db).get_balance(indexed_tenant.id)[0] == Decimal("10")

    def test_missing_usage_is_not_charged(self, db, indexed_tenant, embedding_client):
        chat_client = FakeChatClient()
        chat_client.usage = None

        result = AnswerGenerator(db, embedding_client, chat_client).answer("refund policy", indexed_tenant.id)

        assert result.usage is None
        assert db.query(TokenUsage).count() == 0

    def test_restricted_principal_only_sees_granted_sources(self, db, seed, embedding_client, chat_client):
        tenant = seed.tenant(balance="10")
        sales = seed.tag(tenant, "Sales")
        seed.document(tenant, "Sales Playbook", tags=[sales], chunks=["sales pricing refund"])
        seed.document(tenant, "Handbook", chunks=["refund policy"])

        result = AnswerGenerator(db, embedding_client, chat_client).answer("refund pricing", tenant.id, principal=None)

        assert [s.document_name for s in result.sources] == ["Handbook"]

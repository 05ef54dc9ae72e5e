import pytest

from kbhub.models import Message, MessageFeedback, MessageRole
from kbhub.services import conversations as conversation_service


@pytest.fixture
def tenant(seed):
    return seed.tenant()


@pytest.fixture
def member(seed, tenant):
    return seed.member(tenant)


@pytest.fixture
def conversation(db, tenant, member):
    return conversation_service.create_conversation(db, tenant.id, user_id=member.user_id)


class TestCreateConversation:
    def test_default_title(self, conversation):
        assert conversation.title == conversation_service.DEFAULT_TITLE

    def test_needs_owner(self, db, tenant):
        with pytest.raises(ValueError):
            conversation_service.create_conversation(db, tenant.id)

    def test_lookup_is_scoped_to_owner(self, db, seed, tenant, conversation, member):
        other = seed.member(tenant)

        assert conversation_service.get_member_conversation(db, conversation.id, tenant.id, member.user_id)
        assert conversation_service.get_member_conversation(db, conversation.id, tenant.id, other.user_id) is None
        assert conversation_service.get_member_conversation(db, conversation.id, seed.tenant().id,
                                                            member.user_id) is None


class TestRecordExchange:
    def test_turns_are_ordered_and_form_history(self, db, conversation):
        conversation_service.record_exchange(db, conversation, "What is the refund policy?", "30 days.")
        conversation_service.record_exchange(db, conversation, "And vacation?", "25 days.")

        assert conversation_service.load_history(conversation) == [
            {"role": MessageRole.USER, "content": "What is the refund policy?"},
            {"role": MessageRole.ASSISTANT, "content": "30 days."},
            {"role": MessageRole.USER, "content": "And vacation?"},
            {"role": MessageRole.ASSISTANT, "content": "25 days."},
        ]
        assert [m.position for m in conversation.messages] == [0, 1, 2, 3]

    def test_first_question_becomes_title(self, db, conversation):
        question = "How many vacation days do new engineering hires get in their first year?"

        conversation_service.record_exchange(db, conversation, question, "25.")
        conversation_service.record_exchange(db, conversation, "Thanks", "You're welcome.")

        assert conversation.title == question[:50] + "..."

    def test_explicit_title_is_kept(self, db, tenant, member):
        conversation = conversation_service.create_conversation(db, tenant.id, user_id=member.user_id,
                                                                title="Onboarding")

        conversation_service.record_exchange(db, conversation, "refund?", "30 days.")

        assert conversation.title == "Onboarding"

    def test_sources_are_stored_on_the_reply(self, db, conversation):
        sources = [{"document_id": "d1", "document_name": "Refunds", "document_url": "/documents/d1"}]

        user_message, reply = conversation_service.record_exchange(db, conversation, "refund?", "30 days.", sources)

        assert user_message.sources is None
        assert reply.sources == sources


class TestListConversations:
    def test_summaries(self, db, tenant, member, conversation):
        conversation_service.record_exchange(db, conversation, "refund?", "30 days.")
        conversation_service.create_conversation(db, tenant.id, user_id=member.user_id, title="Empty")

        summaries = conversation_service.list_conversations(db, tenant.id, member.user_id)

        by_title = {s["title"]: s for s in summaries}
        assert by_title["refund?"]["messageCount"] == 2
        assert by_title["refund?"]["preview"] == "refund?"
        assert by_title["Empty"]["preview"] == ""

    def test_other_members_are_excluded(self, db, seed, tenant, conversation):
        other = seed.member(tenant)
        assert conversation_service.list_conversations(db, tenant.id, other.user_id) == []


class TestFeedback:
    def test_set_and_clear(self, db, conversation):
        _, reply = conversation_service.record_exchange(db, conversation, "refund?", "30 days.")

        conversation_service.set_feedback(db, reply, MessageFeedback.NEGATIVE)
        assert db.get(Message, reply.id).feedback == MessageFeedback.NEGATIVE

        conversation_service.set_feedback(db, reply, None)
        assert db.get(Message, reply.id).feedback is None

    def test_only_replies_take_feedback(self, db, conversation):
        question, _ = conversation_service.record_exchange(db, conversation, "refund?", "30 days.")

        with pytest.raises(ValueError):
            conversation_service.set_feedback(db, question, MessageFeedback.POSITIVE)

    @pytest.mark.parametrize("value", ["GOOD", "positive", 1, ["POSITIVE"]])
    def test_unknown_value(self, db, conversation, value):
        _, reply = conversation_service.record_exchange(db, conversation, "refund?", "30 days.")

        with pytest.raises(ValueError):
            conversation_service.set_feedback(db, reply, value)


class TestWidgets:
    def test_disabled_widget_is_not_found(self, db, tenant):
        widget = conversation_service.create_widget(db, tenant.id, "Help center")
        assert conversation_service.get_enabled_widget(db, widget.id).id == widget.id

        widget.is_enabled = False
        db.commit()

        assert conversation_service.get_enabled_widget(db, widget.id) is None

    def test_widget_conversation_lookup(self, db, seed, tenant):
        widget = conversation_service.create_widget(db, tenant.id, "Help center")
        other_widget = conversation_service.create_widget(db, tenant.id, "Docs site")
        conversation = conversation_service.create_conversation(db, tenant.id, widget_id=widget.id)

        assert conversation_service.get_widget_conversation(db, conversation.id, widget).id == conversation.id
        assert conversation_service.get_widget_conversation(db, conversation.id, other_widget) is None

"""Unit tests for SessionStore and the session models."""
import pytest
from hypothesis import given
from hypothesis import strategies as st

from ensu.config import AppConfig
from ensu.llm import ChatMessage
from ensu.session import NO_RESPONSE_TEXT, ChatSession, ContextUsage, Message, SessionStore


@pytest.fixture
def store(config) -> SessionStore:
    return SessionStore.create_session(config, provider="remote", model="tiny-remote")


class TestCreateSession:
    """Tests for session creation."""

    def test_defaults_from_config(self):
        config = AppConfig()
        store = SessionStore.create_session(config)

        assert store.session.provider == config.defaults.provider
        assert store.session.model == config.defaults.model
        assert store.session.options.temperature == 0.7
        assert store.session.options.max_tokens == 2048
        assert store.session.options.top_p == 0.9
        assert store.messages == ()

    def test_overrides(self, config):
        store = SessionStore.create_session(
            config, id="abc", provider="ollama", model="llama3.2", temperature=0.2
        )

        assert store.id == "abc"
        assert store.session.provider == "ollama"
        assert store.session.options.temperature == 0.2

    def test_ids_are_unique(self, config):
        assert SessionStore.create_session(config).id != SessionStore.create_session(config).id


class TestMessages:
    """Tests for message history."""

    def test_add_message_keeps_order(self, store):
        store.add_message("user", "one")
        store.add_message("assistant", "two")

        assert [m.content for m in store.messages] == ["one", "two"]

    def test_name_from_first_user_message(self, store):
        store.add_message("user", "x" * 80)

        assert store.session.name == "x" * 50

    def test_provider_messages_strip_bookkeeping(self, store):
        store.add_message("user", "look", images=[b"png"])
        store.add_message("assistant", "nice")

        messages = store.get_messages_for_provider(system_prompt="Be brief.")

        assert messages == [
            ChatMessage(role="system", content="Be brief."),
            ChatMessage(role="user", content="look", images=(b"png",)),
            ChatMessage(role="assistant", content="nice"),
        ]

    def test_history_limit(self, store):
        for i in range(8):
            store.add_message("user" if i % 2 == 0 else "assistant", str(i))

        messages = store.get_messages_for_provider(history_limit=6)

        assert [m.content for m in messages] == ["2", "3", "4", "5", "6", "7"]

    def test_no_response_placeholder_is_not_sent(self, store):
        store.begin_turn("hi")
        store.record_no_response()

        assert len(store.messages) == 2
        assert store.messages[-1].content == NO_RESPONSE_TEXT
        assert store.messages[-1].sentinel
        assert store.get_messages_for_provider() == [ChatMessage(role="user", content="hi")]


class TestTurns:
    """Tests for begin/commit/rollback."""

    def test_commit_appends_assistant(self, store):
        store.add_message("user", "earlier")
        store.begin_turn("hi")
        store.commit_turn("Hello")

        assert [(m.role, m.content) for m in store.messages] == [
            ("user", "earlier"), ("user", "hi"), ("assistant", "Hello")
        ]
        assert store.pending is None

    def test_rollback_restores_history(self, store):
        store.add_message("user", "earlier")
        store.add_message("assistant", "reply")
        before = store.messages

        store.begin_turn("hi")
        store.rollback_turn()

        assert store.messages == before

    def test_rollback_of_first_turn_clears_name(self, store):
        store.begin_turn("first question")
        store.rollback_turn()

        assert store.session.name is None

    def test_only_one_pending_turn(self, store):
        store.begin_turn("one")

        with pytest.raises(RuntimeError):
            store.begin_turn("two")

    def test_finishing_without_turn_fails(self, store):
        with pytest.raises(RuntimeError):
            store.commit_turn("orphan")


class TestContextUsage:
    """Tests for usage accounting and the context warning."""

    def test_usage_recomputed_on_commit(self, store):
        store.begin_turn("hi")
        store.commit_turn("Hello", {"prompt_tokens": 40, "completion_tokens": 5, "total_tokens": 45})

        usage = store.context_usage
        assert usage == ContextUsage(prompt_tokens=40, total_tokens=45, limit=100)
        assert usage.percent == 40

    def test_usage_unchanged_without_counts(self, store):
        store.begin_turn("hi")
        store.commit_turn("Hello", {"prompt_tokens": 40, "completion_tokens": 5, "total_tokens": 45})
        store.begin_turn("again")
        store.commit_turn("Sure", None)

        assert store.context_usage.prompt_tokens == 40

    def test_unknown_model_uses_default_limit(self, config):
        store = SessionStore.create_session(config, model="unregistered")

        assert store.context_usage.limit == config.default_context_limit

    def test_warning_is_one_shot(self, store):
        """Test that crossing the threshold warns once per session."""
        store.begin_turn("a")
        store.commit_turn("b", {"prompt_tokens": 85, "total_tokens": 90})
        first = store.pop_context_warning()

        store.begin_turn("c")
        store.commit_turn("d", {"prompt_tokens": 95, "total_tokens": 99})

        assert first is not None
        assert first.percent == 85
        assert store.pop_context_warning() is None

    def test_below_threshold_no_warning(self, store):
        store.begin_turn("a")
        store.commit_turn("b", {"prompt_tokens": 79, "total_tokens": 80})

        assert store.pop_context_warning() is None
        assert store.context_warning is None

    def test_acknowledgment_is_sticky_until_clear(self, store):
        store.begin_turn("a")
        store.commit_turn("b", {"prompt_tokens": 90, "total_tokens": 95})
        store.acknowledge_context_warning()

        assert store.context_warning is None

        store.clear()
        assert store.messages == ()
        assert store.context_usage.prompt_tokens == 0

        store.begin_turn("a")
        store.commit_turn("b", {"prompt_tokens": 90, "total_tokens": 95})
        assert store.pop_context_warning() is not None


class TestPersistence:
    """Tests for to_json/from_json."""

    def test_persisted_shape(self, store):
        store.add_message("user", "hi", images=[b"\x00\x01"])

        data = store.to_json()

        assert set(data) >= {"id", "name", "model", "provider", "messages", "createdAt", "updatedAt"}
        assert data["messages"][0]["images"] == ["AAE="]
        assert data["options"]["maxTokens"] == 2048

    def test_round_trip_keeps_images_and_sentinel(self, store, config):
        store.add_message("user", "hi", images=[b"\x89PNG"])
        store.begin_turn("again")
        store.record_no_response()

        restored = SessionStore.from_json(store.to_json(), config)

        assert restored.messages == store.messages
        assert restored.messages[0].images == [b"\x89PNG"]
        assert restored.messages[-1].sentinel

    @given(st.lists(st.tuples(st.sampled_from(["user", "assistant"]), st.text(max_size=40)), max_size=10))
    def test_messages_survive_persistence(self, pairs):
        """Property test: persisted history reloads in the same order."""
        session = ChatSession(messages=[Message(role=r, content=c) for r, c in pairs])
        store = SessionStore(session)

        restored = SessionStore.from_json(store.to_json())

        assert [(m.role, m.content) for m in restored.messages] == pairs

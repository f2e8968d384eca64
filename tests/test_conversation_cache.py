"""Unit tests for ConversationCache."""
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

import threading
import pytest
from datetime import datetime, timezone
from unittest.mock import Mock
from models.conversation import Turn, USER, ASSISTANT
from services.conversation_cache import ConversationCache, CacheConfig, derive_title
from services.conversation_store import ConversationStore
from exceptions import ConversationStoreError


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def store():
    store = Mock(spec=ConversationStore)
    store.fetch_session.return_value = None
    store.fetch_recent_turns.return_value = []
    return store


@pytest.fixture
def clock():
    return FakeClock()


def make_cache(store, clock, **overrides) -> ConversationCache:
    return ConversationCache(store, CacheConfig(**overrides), clock=clock)


class TestDeriveTitle:
    """Test suite for session titles."""

    def test_short_message_kept(self):
        assert derive_title("What is entropy?") == "What is entropy?"

    def test_long_message_truncated(self):
        title = derive_title("x" * 80)
        assert title == "x" * 50 + "..."


class TestConversationCache:
    """Test suite for ConversationCache."""

    def test_get_unknown_chat_returns_none(self, store, clock):
        cache = make_cache(store, clock)

        assert cache.get("chat-1", "user-1") is None
        store.fetch_session.assert_called_once_with("chat-1", "user-1")
        assert len(cache) == 0

    def test_get_hydrates_from_store(self, store, clock):
        now = datetime.now(timezone.utc)
        store.fetch_session.return_value = {"id": "chat-1", "user_id": "user-1", "pdf_id": "pdf-9", "title": "Intro"}
        store.fetch_recent_turns.return_value = [
            Turn(role=USER, content="hi", timestamp=now),
            Turn(role=ASSISTANT, content="hello", timestamp=now),
        ]
        cache = make_cache(store, clock)

        context = cache.get("chat-1", "user-1")

        assert context.pdf_id == "pdf-9"
        assert context.title == "Intro"
        assert [t.content for t in context.turns] == ["hi", "hello"]
        store.fetch_recent_turns.assert_called_once_with("chat-1", 20)

        # Second read is served from memory
        cache.get("chat-1", "user-1")
        assert store.fetch_session.call_count == 1

    def test_store_failure_during_hydration_returns_none(self, store, clock):
        store.fetch_session.side_effect = ConversationStoreError("connection reset")
        cache = make_cache(store, clock)

        assert cache.get("chat-1", "user-1") is None

    def test_other_users_chat_is_a_miss(self, store, clock):
        cache = make_cache(store, clock)
        cache.append("chat-1", "owner", "question", "answer")

        assert cache.get("chat-1", "intruder") is None

    def test_first_append_creates_session(self, store, clock):
        cache = make_cache(store, clock)

        context = cache.append("chat-1", "user-1", "What is a derivative?", "A rate of change.", pdf_id="pdf-1")

        store.create_session.assert_called_once()
        args, kwargs = store.create_session.call_args
        assert args[:3] == ("chat-1", "user-1", "What is a derivative?")
        assert kwargs["pdf_id"] == "pdf-1"
        assert [t.role for t in context.turns] == [USER, ASSISTANT]
        store.append_turns.assert_called_once()
        store.touch_session.assert_called_once()

    def test_eleven_appends_keep_twenty_turns(self, store, clock):
        cache = make_cache(store, clock, max_messages_per_chat=20)

        for i in range(11):
            cache.append("chat-1", "user-1", f"question {i}", f"answer {i}")

        context = cache.get("chat-1", "user-1")
        assert len(context.turns) == 20
        assert context.turns[0].content == "question 1"
        assert context.turns[-1].content == "answer 10"
        assert store.create_session.call_count == 1

    def test_turns_stay_paired_after_trimming(self, store, clock):
        cache = make_cache(store, clock, max_messages_per_chat=6)

        for i in range(5):
            context = cache.append("chat-1", "user-1", f"q{i}", f"a{i}")
            assert len(context.turns) <= 6
            assert context.turns[0].role == USER

    def test_persistence_failure_is_swallowed(self, store, clock):
        store.append_turns.side_effect = ConversationStoreError("insert failed")
        store.touch_session.side_effect = ConversationStoreError("update failed")
        cache = make_cache(store, clock)

        context = cache.append("chat-1", "user-1", "q", "a")

        assert len(context.turns) == 2
        assert "chat-1" in cache
        store.append_turns.assert_called_once()
        store.touch_session.assert_called_once()

    def test_failed_session_creation_skips_durable_writes(self, store, clock):
        store.create_session.side_effect = ConversationStoreError("insert failed")
        cache = make_cache(store, clock)

        context = cache.append("chat-1", "user-1", "q", "a")

        assert [t.content for t in context.turns] == ["q", "a"]
        assert len(cache.get("chat-1", "user-1").turns) == 2
        store.append_turns.assert_not_called()
        store.touch_session.assert_not_called()

    def test_hydration_and_creation_failure_keeps_turn_in_memory(self, store, clock):
        store.fetch_session.side_effect = ConversationStoreError("connection reset")
        store.create_session.side_effect = ConversationStoreError("duplicate key")
        cache = make_cache(store, clock)

        context = cache.append("chat-1", "user-1", "q", "a")

        assert len(context.turns) == 2
        assert "chat-1" in cache
        store.append_turns.assert_not_called()

    def test_append_never_writes_into_another_users_chat(self, store, clock):
        cache = make_cache(store, clock)
        cache.append("chat-1", "alice", "alice question", "alice answer")

        store.create_session.side_effect = ConversationStoreError("duplicate key")
        context = cache.append("chat-1", "mallory", "mallory question", "mallory answer")

        assert store.append_turns.call_count == 1
        assert store.touch_session.call_count == 1
        assert context.user_id == "mallory"
        assert [t.content for t in context.turns] == ["mallory question", "mallory answer"]

        alice = cache.get("chat-1", "alice")
        assert [t.content for t in alice.turns] == ["alice question", "alice answer"]

    def test_concurrent_readers_never_see_partial_pairs(self, store, clock):
        cache = make_cache(store, clock, max_messages_per_chat=6)
        cache.append("chat-1", "user-1", "seed q", "seed a")
        violations = []

        def write(writer: int):
            for i in range(300):
                cache.append("chat-1", "user-1", f"q{writer}-{i}", f"a{writer}-{i}")

        def read():
            for _ in range(2000):
                context = cache.get("chat-1", "user-1")
                roles = [t.role for t in context.turns]
                if len(roles) > 6 or len(roles) % 2 or roles != [USER, ASSISTANT] * (len(roles) // 2):
                    violations.append(roles)

        threads = [threading.Thread(target=write, args=(n,)) for n in range(3)]
        threads += [threading.Thread(target=read) for _ in range(3)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert violations == []
        assert len(cache.get("chat-1", "user-1").turns) == 6

    def test_snapshot_is_isolated_from_later_appends(self, store, clock):
        cache = make_cache(store, clock)
        cache.append("chat-1", "user-1", "q1", "a1")
        snapshot = cache.get("chat-1", "user-1")

        cache.append("chat-1", "user-1", "q2", "a2")

        assert len(snapshot.turns) == 2
        assert len(cache.get("chat-1", "user-1").turns) == 4

    def test_capacity_eviction_removes_least_recently_used(self, store, clock):
        cache = make_cache(store, clock, max_cached_chats=10)
        for i in range(10):
            cache.append(f"chat-{i}", "user-1", "q", "a")
            clock.advance(1)

        # Touch chat-0 so chat-1 becomes the oldest
        cache.get("chat-0", "user-1")
        clock.advance(1)
        cache.append("chat-new", "user-1", "q", "a")

        assert len(cache) == 10
        assert "chat-1" not in cache
        assert "chat-0" in cache
        assert "chat-new" in cache

    def test_capacity_eviction_removes_ten_percent(self, store, clock):
        cache = make_cache(store, clock, max_cached_chats=20)
        for i in range(20):
            cache.append(f"chat-{i}", "user-1", "q", "a")
            clock.advance(1)

        cache.append("chat-new", "user-1", "q", "a")

        assert len(cache) == 19
        assert "chat-0" not in cache
        assert "chat-1" not in cache

    def test_sweep_idle_evicts_only_stale_chats(self, store, clock):
        cache = make_cache(store, clock, inactive_timeout_seconds=60)
        cache.append("stale", "user-1", "q", "a")
        clock.advance(120)
        cache.append("fresh", "user-1", "q", "a")

        evicted = cache.sweep_idle()

        assert evicted == 1
        assert "stale" not in cache
        assert "fresh" in cache

    def test_start_and_stop_are_idempotent(self, store, clock):
        cache = make_cache(store, clock, cleanup_interval_seconds=0.01)

        cache.start()
        cache.start()
        assert cache.running
        cache.stop()
        cache.stop()
        assert not cache.running

    def test_stats_and_clear(self, store, clock):
        cache = make_cache(store, clock)
        cache.append("chat-1", "user-1", "q", "a")
        cache.append("chat-2", "user-1", "q", "a")

        stats = cache.stats()
        assert stats["total_chats"] == 2
        assert stats["config"]["max_messages_per_chat"] == 20

        assert cache.clear_chat("chat-1") is True
        assert cache.clear_chat("chat-1") is False
        assert cache.clear_all() == 1
        assert len(cache) == 0

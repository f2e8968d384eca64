"""In-memory conversation context cache mirrored to durable storage.

Keeps the most recent turns of each chat in memory so a turn does not
re-read history from Supabase. Supabase stays authoritative: entries can be
evicted at any time (capacity or idleness) and are re-hydrated on the next
get(). Durable writes never fail the caller.
"""
import logging
import math
import threading
import time
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from models.conversation import ConversationContext, Turn, USER, ASSISTANT
from services.conversation_store import ConversationStore
from config import (
    MAX_MESSAGES_PER_CHAT,
    CACHE_CLEANUP_INTERVAL_SECONDS,
    CACHE_INACTIVE_TIMEOUT_SECONDS,
    MAX_CACHED_CHATS,
)

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 50
EVICTION_FRACTION = 0.1


@dataclass
class CacheConfig:
    """Tunables for ConversationCache."""
    max_messages_per_chat: int = MAX_MESSAGES_PER_CHAT
    cleanup_interval_seconds: float = CACHE_CLEANUP_INTERVAL_SECONDS
    inactive_timeout_seconds: float = CACHE_INACTIVE_TIMEOUT_SECONDS
    max_cached_chats: int = MAX_CACHED_CHATS


def derive_title(first_message: str) -> str:
    """Session title from the first user message."""
    if len(first_message) > TITLE_MAX_LENGTH:
        return first_message[:TITLE_MAX_LENGTH] + "..."
    return first_message


class ConversationCache:
    """Per-chat recent-turn cache with capacity and idle eviction."""

    def __init__(
        self,
        store: ConversationStore,
        config: Optional[CacheConfig] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize the cache.

        Args:
            store: Durable conversation store (authoritative copy)
            config: Cache limits and sweep timings
            clock: Monotonic time source in seconds
        """
        self.store = store
        self.config = config or CacheConfig()
        self._clock = clock
        self._contexts: Dict[str, ConversationContext] = {}
        self._lock = threading.RLock()
        self._stop_event = threading.Event()
        self._sweeper: Optional[threading.Thread] = None

        logger.info(
            f"Conversation cache initialized: max_messages={self.config.max_messages_per_chat}, "
            f"max_chats={self.config.max_cached_chats}, "
            f"cleanup_interval={self.config.cleanup_interval_seconds}s, "
            f"inactive_timeout={self.config.inactive_timeout_seconds}s"
        )

    # Lifecycle

    def start(self) -> None:
        """Start the background idle-eviction sweep."""
        with self._lock:
            if self._sweeper is not None and self._sweeper.is_alive():
                return
            self._stop_event.clear()
            self._sweeper = threading.Thread(
                target=self._sweep_loop, name="conversation-cache-sweeper", daemon=True
            )
            self._sweeper.start()
        logger.info("Conversation cache sweeper started")

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """Stop the background sweep and wait for it to exit."""
        with self._lock:
            sweeper = self._sweeper
            self._sweeper = None
        self._stop_event.set()
        if sweeper is not None:
            sweeper.join(timeout)
            logger.info("Conversation cache sweeper stopped")

    @property
    def running(self) -> bool:
        sweeper = self._sweeper
        return sweeper is not None and sweeper.is_alive()

    def _sweep_loop(self) -> None:
        while not self._stop_event.wait(self.config.cleanup_interval_seconds):
            try:
                self.sweep_idle()
            except Exception:
                logger.exception("Idle eviction sweep failed")

    # Reads and writes

    def get(self, chat_id: str, user_id: str) -> Optional[ConversationContext]:
        """
        Return the chat's recent context, hydrating from the store on a miss.

        Returns:
            A snapshot of the context, or None if no session exists for
            (chat_id, user_id) or the store could not be read
        """
        with self._lock:
            context = self._contexts.get(chat_id)
            if context is not None and context.user_id == user_id:
                context.last_accessed = self._clock()
                logger.debug(f"Cache hit for chat {chat_id} ({len(context.turns)} turns)")
                return replace(context)

        logger.debug(f"Cache miss for chat {chat_id}, fetching from store")
        try:
            session = self.store.fetch_session(chat_id, user_id)
            if not session:
                logger.info(f"Chat session not found: {chat_id}")
                return None
            turns = self.store.fetch_recent_turns(chat_id, self.config.max_messages_per_chat)
        except Exception as e:
            logger.error(f"Error hydrating chat {chat_id} from store: {e}")
            return None

        hydrated = ConversationContext(
            chat_id=session.get("id") or chat_id,
            user_id=session.get("user_id") or user_id,
            pdf_id=session.get("pdf_id"),
            title=session.get("title") or "",
            turns=tuple(turns[-self.config.max_messages_per_chat:]),
            last_accessed=self._clock(),
        )

        with self._lock:
            # Another request may have admitted this chat while we were reading
            resident = self._contexts.get(chat_id)
            if resident is not None and resident.user_id == user_id:
                resident.last_accessed = self._clock()
                return replace(resident)
            self._admit(hydrated)
            logger.info(f"Loaded chat context {chat_id} ({len(hydrated.turns)} turns)")
            return replace(hydrated)

    def append(
        self,
        chat_id: str,
        user_id: str,
        user_message: str,
        assistant_message: str,
        pdf_id: Optional[str] = None
    ) -> ConversationContext:
        """
        Append a user/assistant pair, trim to the per-chat limit, and persist.

        Creates the session (durably and in memory) on the first turn.
        Store failures are logged; the in-memory context is still updated.
        If the session could not be created, nothing is written to the store.
        A resident chat held by another user is never replaced; the turn is
        returned on a detached context instead.

        Returns:
            Snapshot of the updated context
        """
        timestamp = datetime.now(timezone.utc)
        new_turns = (
            Turn(role=USER, content=user_message, timestamp=timestamp),
            Turn(role=ASSISTANT, content=assistant_message, timestamp=timestamp),
        )

        existing = self.get(chat_id, user_id)
        session_ready = existing is not None
        if not session_ready:
            title = derive_title(user_message)
            try:
                self.store.create_session(chat_id, user_id, title, pdf_id=pdf_id, timestamp=timestamp)
                session_ready = True
            except Exception as e:
                logger.error(f"Error creating chat session {chat_id}: {e}")

        with self._lock:
            context = self._contexts.get(chat_id)
            if context is None or context.user_id != user_id:
                held_by_other = context is not None
                base = existing or ConversationContext(
                    chat_id=chat_id,
                    user_id=user_id,
                    pdf_id=pdf_id,
                    title=derive_title(user_message),
                )
                context = replace(base)
                if held_by_other:
                    logger.warning(f"Chat {chat_id} is cached for another user; turn kept out of the cache")
                else:
                    self._admit(context)

            turns = context.turns + new_turns
            excess = len(turns) - self.config.max_messages_per_chat
            if excess > 0:
                turns = turns[excess:]
                logger.debug(f"Trimmed {excess} old turns from chat {chat_id}")

            # Swap in a new tuple so readers never observe a half-written pair
            context.turns = turns
            if pdf_id and not context.pdf_id:
                context.pdf_id = pdf_id
            context.last_accessed = self._clock()
            snapshot = replace(context)

        if session_ready:
            self._persist(chat_id, list(new_turns), timestamp)
        else:
            logger.warning(f"Skipping durable write for chat {chat_id}: no session")
        logger.info(f"Added turns to chat {chat_id} (cache: {len(snapshot.turns)} turns)")
        return snapshot

    def _persist(self, chat_id: str, turns: List[Turn], timestamp: datetime) -> None:
        try:
            self.store.append_turns(chat_id, turns)
        except Exception as e:
            logger.error(f"Error persisting turns for chat {chat_id}: {e}")

        try:
            self.store.touch_session(chat_id, timestamp)
        except Exception as e:
            logger.error(f"Error updating session timestamp for chat {chat_id}: {e}")

    # Eviction

    def _admit(self, context: ConversationContext) -> None:
        """Insert a context, evicting the oldest entries first when at capacity. Caller holds the lock."""
        if context.chat_id not in self._contexts and len(self._contexts) >= self.config.max_cached_chats:
            count = max(1, math.floor(self.config.max_cached_chats * EVICTION_FRACTION))
            self._evict_oldest(count)
        self._contexts[context.chat_id] = context

    def _evict_oldest(self, count: int) -> None:
        oldest = sorted(self._contexts.values(), key=lambda c: c.last_accessed)[:count]
        for context in oldest:
            del self._contexts[context.chat_id]
        logger.info(f"Evicted {len(oldest)} oldest cache entries")

    def sweep_idle(self) -> int:
        """
        Remove chats idle longer than the inactivity timeout.

        Works from a snapshot of access times so the live map is only locked
        briefly; an entry touched after the snapshot is kept.

        Returns:
            Number of chats evicted
        """
        with self._lock:
            access_times = {chat_id: c.last_accessed for chat_id, c in self._contexts.items()}

        threshold = self._clock() - self.config.inactive_timeout_seconds
        stale = [chat_id for chat_id, accessed in access_times.items() if accessed < threshold]

        evicted = 0
        for chat_id in stale:
            with self._lock:
                context = self._contexts.get(chat_id)
                if context is not None and context.last_accessed < threshold:
                    del self._contexts[chat_id]
                    evicted += 1

        if evicted:
            logger.info(f"Cleaned up {evicted} inactive chat sessions")
        return evicted

    # Introspection

    def stats(self) -> Dict[str, Any]:
        """Cache size, limits and access-time range."""
        with self._lock:
            access_times = [c.last_accessed for c in self._contexts.values()]
            total = len(self._contexts)
        return {
            "total_chats": total,
            "max_chats": self.config.max_cached_chats,
            "oldest_access": min(access_times) if access_times else None,
            "newest_access": max(access_times) if access_times else None,
            "sweeper_running": self.running,
            "config": {
                "max_messages_per_chat": self.config.max_messages_per_chat,
                "cleanup_interval_seconds": self.config.cleanup_interval_seconds,
                "inactive_timeout_seconds": self.config.inactive_timeout_seconds,
                "max_cached_chats": self.config.max_cached_chats,
            },
        }

    def clear_chat(self, chat_id: str) -> bool:
        """Drop one chat from memory. Returns True if it was resident."""
        with self._lock:
            return self._contexts.pop(chat_id, None) is not None

    def clear_all(self) -> int:
        """Drop every resident chat. Returns how many were removed."""
        with self._lock:
            count = len(self._contexts)
            self._contexts.clear()
        logger.info(f"Cleared entire conversation cache ({count} entries)")
        return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._contexts)

    def __contains__(self, chat_id: object) -> bool:
        with self._lock:
            return chat_id in self._contexts

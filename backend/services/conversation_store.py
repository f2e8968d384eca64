"""Durable conversation store backed by Supabase PostgreSQL."""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from supabase import create_client, Client

from models.conversation import Turn, USER, ASSISTANT
from config import SUPABASE_URL, SUPABASE_KEY
from exceptions import ConversationStoreError

logger = logging.getLogger(__name__)


class ConversationStore:
    """Reads and writes chat sessions and messages in Supabase.

    Every failure is raised as ConversationStoreError; deciding whether a
    failure is fatal is left to the caller.
    """

    def __init__(
        self,
        supabase_url: Optional[str] = SUPABASE_URL,
        supabase_key: Optional[str] = SUPABASE_KEY,
        client: Optional[Client] = None
    ):
        """Initialize the conversation store with a Supabase client."""
        if client is None:
            if not supabase_url or not supabase_key:
                raise ValueError("SUPABASE_URL and SUPABASE_KEY must be set in environment variables")
            client = create_client(supabase_url, supabase_key)

        self.client: Client = client
        logger.info("ConversationStore initialized with Supabase")

    def fetch_session(self, chat_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        """
        Fetch session metadata for a (chat_id, user_id) pair.

        Returns:
            Session row (id, user_id, pdf_id, title) or None if it does not exist
        """
        try:
            result = (
                self.client.table("chat_sessions")
                .select("id, user_id, pdf_id, title")
                .eq("id", chat_id)
                .eq("user_id", user_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            raise ConversationStoreError(f"Error fetching session {chat_id}: {e}") from e

        return result.data[0] if result.data else None

    def fetch_recent_turns(self, chat_id: str, limit: int) -> List[Turn]:
        """
        Fetch the most recent `limit` messages of a chat.

        Returns:
            Turns in chronological order (oldest first)
        """
        try:
            result = (
                self.client.table("chat_messages")
                .select("content, is_user, timestamp")
                .eq("chat_id", chat_id)
                .order("timestamp", desc=True)
                .limit(limit)
                .execute()
            )
        except Exception as e:
            raise ConversationStoreError(f"Error fetching messages for {chat_id}: {e}") from e

        rows = list(reversed(result.data or []))
        return [
            Turn(
                role=USER if row.get("is_user") else ASSISTANT,
                content=row.get("content") or "",
                timestamp=self._parse_timestamp(row.get("timestamp"))
            )
            for row in rows
        ]

    def create_session(
        self,
        chat_id: str,
        user_id: str,
        title: str,
        pdf_id: Optional[str] = None,
        timestamp: Optional[datetime] = None
    ) -> None:
        """Insert a new chat session row."""
        created_at = (timestamp or datetime.now(timezone.utc)).isoformat()
        try:
            self.client.table("chat_sessions").insert({
                "id": chat_id,
                "user_id": user_id,
                "title": title,
                "pdf_id": pdf_id,
                "created_at": created_at,
                "updated_at": created_at
            }).execute()
        except Exception as e:
            raise ConversationStoreError(f"Error creating chat session {chat_id}: {e}") from e

        logger.info(f"Created chat session: {chat_id}")

    def append_turns(self, chat_id: str, turns: List[Turn]) -> None:
        """Persist turns for a chat in one insert."""
        records = [
            {
                "chat_id": chat_id,
                "content": turn.content,
                "is_user": turn.role == USER,
                "timestamp": turn.timestamp.isoformat()
            }
            for turn in turns
        ]
        try:
            self.client.table("chat_messages").insert(records).execute()
        except Exception as e:
            raise ConversationStoreError(f"Error persisting messages for {chat_id}: {e}") from e

    def touch_session(self, chat_id: str, timestamp: Optional[datetime] = None) -> None:
        """Bump the session's updated_at activity timestamp."""
        updated_at = (timestamp or datetime.now(timezone.utc)).isoformat()
        try:
            self.client.table("chat_sessions").update({"updated_at": updated_at}).eq("id", chat_id).execute()
        except Exception as e:
            raise ConversationStoreError(f"Error updating chat session timestamp {chat_id}: {e}") from e

    @staticmethod
    def _parse_timestamp(timestamp_str: Optional[str]) -> datetime:
        """
        Parse timestamp string from Supabase, handling various formats.

        Supabase can return timestamps with varying microsecond precision,
        which Python's fromisoformat() can't always handle. This method
        normalizes the fractional seconds to six digits.

        Args:
            timestamp_str: Timestamp string from Supabase

        Returns:
            timezone-aware datetime (UTC when no offset is present)
        """
        if not timestamp_str:
            return datetime.now(timezone.utc)

        # Replace 'Z' with '+00:00' for timezone
        timestamp_str = timestamp_str.replace("Z", "+00:00")

        # Format: 2026-02-21T02:08:26.18976+00:00
        if "." in timestamp_str:
            head, fraction = timestamp_str.split(".", 1)
            tz = ""
            for sign in ("+", "-"):
                if sign in fraction:
                    fraction, tz_part = fraction.split(sign, 1)
                    tz = f"{sign}{tz_part}"
                    break
            fraction = fraction[:6].ljust(6, "0")
            timestamp_str = f"{head}.{fraction}{tz}"

        parsed = datetime.fromisoformat(timestamp_str)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed

"""
ConversationStore: the assistant's conversation records in SQLite.

A conversation is an ordered message log plus summaries of its older
messages, the latest plan snapshot and the agent type it last used.
"""

import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from config import CONVERSATION_LIST_LIMIT, DEFAULT_AGENT_TYPE
from core.memory_manager import ConversationSummary
from db import db_connection
from orchestration.plan import TaskPlan

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _title(first_message: Optional[str]) -> str:
    text = " ".join((first_message or "").split())
    if not text:
        return "New conversation"
    return text if len(text) <= 60 else text[:57] + "..."


@dataclass
class Conversation:
    id: str
    user_id: str
    agent_type: str = DEFAULT_AGENT_TYPE
    plan: Optional[TaskPlan] = None
    created: bool = False


class ConversationStore:
    def get(self, conversation_id: str, user_id: str) -> Optional[Conversation]:
        with db_connection(rows=True) as conn:
            row = conn.execute(
                "SELECT id, user_id, agent_type, plan FROM conversations WHERE id = ? AND user_id = ?",
                (conversation_id, user_id),
            ).fetchone()
        if not row:
            return None
        plan = None
        if row["plan"]:
            try:
                plan = TaskPlan.from_dict(json.loads(row["plan"]))
            except (ValueError, KeyError, TypeError):
                logger.warning("Discarding unreadable plan on conversation %s", conversation_id)
        return Conversation(row["id"], row["user_id"], row["agent_type"] or DEFAULT_AGENT_TYPE, plan)

    def get_or_create(self, conversation_id: Optional[str], user_id: str,
                      agent_type: str = None) -> Conversation:
        """Load the caller's conversation, or start a new one."""
        if conversation_id:
            existing = self.get(conversation_id, user_id)
            if existing:
                return existing
            logger.info("Conversation %s not found for user %s, starting a new one",
                        conversation_id, user_id)

        conv = Conversation(str(uuid.uuid4()), user_id, agent_type or DEFAULT_AGENT_TYPE, created=True)
        now = _now()
        with db_connection() as conn:
            conn.execute(
                "INSERT INTO conversations (id, user_id, agent_type, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (conv.id, user_id, conv.agent_type, now, now),
            )
            conn.commit()
        return conv

    def append_message(self, conversation_id: str, role: str, content: str,
                       tool_calls: list = None):
        now = _now()
        with db_connection() as conn:
            conn.execute(
                "INSERT INTO conversation_messages (conversation_id, role, content, tool_calls, created_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (conversation_id, role, content, json.dumps(tool_calls) if tool_calls else None, now),
            )
            conn.execute("UPDATE conversations SET updated_at = ? WHERE id = ?", (now, conversation_id))
            conn.commit()

    def load_messages(self, conversation_id: str) -> list[dict]:
        with db_connection(rows=True) as conn:
            rows = conn.execute(
                "SELECT role, content, tool_calls, created_at FROM conversation_messages "
                "WHERE conversation_id = ? ORDER BY id ASC",
                (conversation_id,),
            ).fetchall()
        messages = []
        for row in rows:
            msg = {"role": row["role"], "content": row["content"] or "", "created_at": row["created_at"]}
            if row["tool_calls"]:
                try:
                    msg["tool_calls"] = json.loads(row["tool_calls"])
                except (json.JSONDecodeError, TypeError):
                    msg["tool_calls"] = []
            messages.append(msg)
        return messages

    def load_summaries(self, conversation_id: str) -> list[ConversationSummary]:
        with db_connection(rows=True) as conn:
            rows = conn.execute(
                "SELECT summary, range_from, range_to, created_at FROM conversation_summaries "
                "WHERE conversation_id = ? ORDER BY range_from ASC",
                (conversation_id,),
            ).fetchall()
        return [ConversationSummary(r["summary"], r["range_from"], r["range_to"],
                                    float(r["created_at"] or 0)) for r in rows]

    def save_summaries(self, conversation_id: str, summaries: list[ConversationSummary]):
        if not summaries:
            return
        with db_connection() as conn:
            conn.executemany(
                "INSERT INTO conversation_summaries (conversation_id, summary, range_from, range_to, created_at) "
                "VALUES (?, ?, ?, ?, ?)",
                [(conversation_id, s.summary, s.range_from, s.range_to, str(s.created_at))
                 for s in summaries],
            )
            conn.commit()

    def save_plan(self, conversation_id: str, plan: Optional[TaskPlan]):
        with db_connection() as conn:
            conn.execute(
                "UPDATE conversations SET plan = ?, updated_at = ? WHERE id = ?",
                (json.dumps(plan.to_dict()) if plan else None, _now(), conversation_id),
            )
            conn.commit()

    def set_agent_type(self, conversation_id: str, agent_type: str):
        with db_connection() as conn:
            conn.execute(
                "UPDATE conversations SET agent_type = ?, updated_at = ? WHERE id = ?",
                (agent_type, _now(), conversation_id),
            )
            conn.commit()

    # ── Listing ──

    def list_for_user(self, user_id: str, limit: int = CONVERSATION_LIST_LIMIT) -> list[dict]:
        """The user's conversations, most recently updated first."""
        with db_connection(rows=True) as conn:
            rows = conn.execute("""
                SELECT c.id, c.agent_type, c.created_at, c.updated_at,
                       (SELECT COUNT(*) FROM conversation_messages m
                        WHERE m.conversation_id = c.id) AS message_count,
                       (SELECT content FROM conversation_messages m
                        WHERE m.conversation_id = c.id AND m.role = 'user'
                        ORDER BY m.id ASC LIMIT 1) AS first_message,
                       (SELECT content FROM conversation_messages m
                        WHERE m.conversation_id = c.id
                        ORDER BY m.id DESC LIMIT 1) AS last_message
                FROM conversations c
                WHERE c.user_id = ?
                ORDER BY c.updated_at DESC, c.rowid DESC
                LIMIT ?
            """, (user_id, limit)).fetchall()
        return [{
            "id": r["id"],
            "title": _title(r["first_message"]),
            "agentType": r["agent_type"] or DEFAULT_AGENT_TYPE,
            "lastMessage": (r["last_message"] or "")[:100],
            "messageCount": r["message_count"],
            "createdAt": r["created_at"],
            "updatedAt": r["updated_at"],
        } for r in rows]

    def delete(self, conversation_id: str, user_id: str) -> bool:
        """Remove a conversation with its messages and summaries. False if not the caller's."""
        with db_connection() as conn:
            cur = conn.execute("DELETE FROM conversations WHERE id = ? AND user_id = ?",
                               (conversation_id, user_id))
            conn.commit()
            deleted = cur.rowcount > 0
        if deleted:
            logger.info("Deleted conversation %s for user %s", conversation_id, user_id)
        return deleted

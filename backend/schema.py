"""
Database schema: CREATE TABLE statements for the conversation store.

Called once at startup via init_db().
"""

from db import db_connection


def init_db():
    with db_connection() as conn:
        c = conn.cursor()
        c.execute('''CREATE TABLE IF NOT EXISTS conversations (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            agent_type TEXT DEFAULT 'drive',
            plan TEXT,
            created_at TEXT,
            updated_at TEXT
        )''')
        c.execute('''CREATE TABLE IF NOT EXISTS conversation_messages (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            conversation_id TEXT NOT NULL,
            role TEXT,
            content TEXT,
            tool_calls TEXT,
            tool_call_id TEXT,
            created_at TEXT,
            FOREIGN KEY (conversation_id) REFERENCES conversations(id) ON DELETE CASCADE
        )''')
        c.execute('''CREATE TABLE IF NOT EXISTS conversation_summaries (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            conversation_id TEXT NOT NULL,
            summary TEXT,
            range_from INTEGER,
            range_to INTEGER,
            created_at TEXT,
            FOREIGN KEY (conversation_id) REFERENCES conversations(id) ON DELETE CASCADE
        )''')
        c.execute('''CREATE INDEX IF NOT EXISTS idx_messages_conversation
            ON conversation_messages(conversation_id, id)''')
        c.execute('''CREATE INDEX IF NOT EXISTS idx_summaries_conversation
            ON conversation_summaries(conversation_id, range_from)''')
        c.execute('''CREATE INDEX IF NOT EXISTS idx_conversations_user
            ON conversations(user_id, updated_at)''')
        conn.commit()

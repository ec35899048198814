"""
OTAI key-value storage layout.
Every entity is stored as a JSON blob under one of the keys below.
"""

CURRENT_USER_KEY = "otai_current_user"
USERS_KEY = "otai_users"
# Legacy per-user message log, kept for data written before sessions existed
MESSAGES_KEY = "otai_messages"
ARCHIVED_SESSIONS_KEY = "otai_sessions"
ACTIVE_SESSION_PREFIX = "otai_active_session"
REFERRALS_KEY = "otai_referrals"


def active_session_key(user_id: str) -> str:
    """One slot per user: a user can never hold two active sessions."""
    return f"{ACTIVE_SESSION_PREFIX}_{user_id}"


SCHEMA = """
-- =============================================================================
-- KV_STORE - string keys to serialized JSON values
-- =============================================================================
CREATE TABLE IF NOT EXISTS kv_store (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
);
"""

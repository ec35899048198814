from .connection import InMemoryStore, KeyValueStore, SqliteStore, get_connection, init_database
from .referral_repository import ReferralRepository
from .session_repository import SessionRepository
from .user_repository import UserRepository

__all__ = [
    "InMemoryStore",
    "KeyValueStore",
    "SqliteStore",
    "get_connection",
    "init_database",
    "ReferralRepository",
    "SessionRepository",
    "UserRepository",
]

"""User repository: signup, sign-in and the current-user slot."""

import logging

from pydantic import TypeAdapter

from otai_assistant.errors import ValidationError
from otai_assistant.models import User, UserType

from .connection import KeyValueStore, read_blob, write_blob
from .schema import CURRENT_USER_KEY, MESSAGES_KEY, USERS_KEY

logger = logging.getLogger(__name__)

_USER = TypeAdapter(User)
_USERS = TypeAdapter(list[User])


def _normalize_email(email: str) -> str:
    return email.strip().lower()


class UserRepository:
    """Repository for users. Identity is self-asserted; there are no passwords."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    # Current user

    def save_current_user(self, user: User) -> None:
        write_blob(self.store, CURRENT_USER_KEY, _USER, user)

    def get_current_user(self) -> User | None:
        return read_blob(self.store, CURRENT_USER_KEY, _USER)

    def clear_current_user(self) -> None:
        self.store.delete(CURRENT_USER_KEY)

    # All users

    def get_all_users(self) -> list[User]:
        return read_blob(self.store, USERS_KEY, _USERS, default=[])

    def save_user(self, user: User) -> None:
        """Insert or replace a user by id."""
        users = self.get_all_users()
        for i, existing in enumerate(users):
            if existing.id == user.id:
                users[i] = user
                break
        else:
            users.append(user)
        write_blob(self.store, USERS_KEY, _USERS, users)

    def find_user_by_email(self, email: str) -> User | None:
        wanted = _normalize_email(email)
        for user in self.get_all_users():
            if _normalize_email(user.email) == wanted:
                return user
        return None

    def register_user(self, email: str, name: str, user_type: UserType = UserType.PATIENT) -> User:
        """Create a user and make them the current user.

        Email uniqueness is checked here and nowhere else.
        """
        email = email.strip()
        name = name.strip()
        if not email or not name:
            raise ValidationError("Namn och e-post måste fyllas i.")
        if self.find_user_by_email(email):
            raise ValidationError("En användare med denna e-postadress finns redan.")

        user = User(email=email, name=name, user_type=user_type)
        self.save_user(user)
        self.save_current_user(user)
        logger.info("Registered user %s", user.id)
        return user

    def sign_in(self, email: str) -> User:
        user = self.find_user_by_email(email)
        if not user:
            raise ValidationError("Ingen användare hittades med denna e-postadress.")
        self.save_current_user(user)
        return user

    def clear_all_data(self) -> None:
        """Remove users and legacy messages. Sessions and referrals are kept."""
        self.store.delete(CURRENT_USER_KEY)
        self.store.delete(USERS_KEY)
        self.store.delete(MESSAGES_KEY)

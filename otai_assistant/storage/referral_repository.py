"""Referral repository with status transitions enforced on update."""

import logging

from pydantic import TypeAdapter

from otai_assistant.models import ReferralForm, ReferralStatus
from otai_assistant.state_machine import transition_referral

from .connection import KeyValueStore, read_blob, write_blob
from .schema import REFERRALS_KEY

logger = logging.getLogger(__name__)

_REFERRALS = TypeAdapter(list[ReferralForm])


class ReferralRepository:
    """Repository for referral forms. Referrals are only deleted explicitly."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    def _load_all(self) -> list[ReferralForm]:
        return read_blob(self.store, REFERRALS_KEY, _REFERRALS, default=[])

    def _save_all(self, referrals: list[ReferralForm]) -> None:
        write_blob(self.store, REFERRALS_KEY, _REFERRALS, referrals)

    def save_referral(self, referral: ReferralForm) -> ReferralForm:
        """Insert or replace a referral by id."""
        referrals = self._load_all()
        for i, existing in enumerate(referrals):
            if existing.id == referral.id:
                referrals[i] = referral
                break
        else:
            referrals.append(referral)
        self._save_all(referrals)
        return referral

    def get_referral(self, referral_id: str) -> ReferralForm | None:
        for referral in self._load_all():
            if referral.id == referral_id:
                return referral
        return None

    def get_referrals_for_user(self, user_id: str) -> list[ReferralForm]:
        """Get a user's referrals, newest first."""
        referrals = [r for r in self._load_all() if r.user_id == user_id]
        return sorted(referrals, key=lambda r: r.created_at, reverse=True)

    def update_referral_status(self, referral_id: str, status: ReferralStatus) -> ReferralForm | None:
        """Move a stored referral to ``status``. Returns None if it does not exist."""
        referral = self.get_referral(referral_id)
        if not referral:
            return None
        updated = transition_referral(referral, status)
        self.save_referral(updated)
        logger.info("Referral %s: %s -> %s", referral_id, referral.status.value, status.value)
        return updated

    def delete_referral(self, referral_id: str) -> None:
        referrals = self._load_all()
        remaining = [r for r in referrals if r.id != referral_id]
        if len(remaining) != len(referrals):
            self._save_all(remaining)

"""Tests for the phase classifier and the escalation and referral state machines."""

import pytest

from otai_assistant.errors import InvalidTransitionError, ReferralValidationError
from otai_assistant.models import Message, ReferralForm, ReferralStatus
from otai_assistant.state_machine import (
    CONSENT_REQUIRED_MESSAGE,
    EscalationState,
    EscalationTracker,
    Phase,
    classify_phase,
    count_user_messages,
    transition_referral,
)


class TestClassifyPhase:
    """Tests for classify_phase."""

    @pytest.mark.parametrize("count,expected", [
        (0, Phase.EXPLORATORY),
        (1, Phase.EXPLORATORY),
        (2, Phase.EXPLORATORY),
        (3, Phase.DEEPENING),
        (5, Phase.DEEPENING),
        (6, Phase.ADVISORY),
        (40, Phase.ADVISORY),
    ])
    def test_phase_boundaries(self, count, expected):
        assert classify_phase(count) == expected

    def test_phase_never_goes_backwards(self):
        """Phase is monotonic in the number of user messages."""
        order = [Phase.EXPLORATORY, Phase.DEEPENING, Phase.ADVISORY]
        ranks = [order.index(classify_phase(n)) for n in range(20)]
        assert ranks == sorted(ranks)

    def test_negative_count_raises(self):
        with pytest.raises(ValueError):
            classify_phase(-1)

    def test_count_user_messages_ignores_assistant_and_system(self, make_conversation):
        messages = make_conversation("Hej", "Hej!", "Jag har ont")
        messages.append(Message.from_system("Något gick fel"))
        assert count_user_messages(messages) == 2


class TestEscalationTracker:
    """Tests for EscalationTracker."""

    def test_starts_without_suggestion(self):
        tracker = EscalationTracker()
        assert tracker.state == EscalationState.NO_ESCALATION
        assert not tracker.suggest_referral

    def test_escalating_reply_suggests_referral(self):
        tracker = EscalationTracker()
        tracker.on_assistant_reply(escalate=True)
        assert tracker.state == EscalationState.ESCALATION_SUGGESTED
        assert tracker.suggest_referral

    def test_non_escalating_reply_keeps_suggestion(self):
        tracker = EscalationTracker(EscalationState.ESCALATION_SUGGESTED)
        tracker.on_assistant_reply(escalate=False)
        assert tracker.suggest_referral

    def test_open_and_cancel(self):
        tracker = EscalationTracker(EscalationState.ESCALATION_SUGGESTED)
        tracker.open_referral()
        assert tracker.state == EscalationState.REFERRAL_OPEN
        assert not tracker.suggest_referral

        tracker.cancel_referral()
        assert tracker.state == EscalationState.ESCALATION_SUGGESTED

    def test_replies_do_not_change_open_form(self):
        """Assistant replies are ignored while the form is open."""
        tracker = EscalationTracker(EscalationState.REFERRAL_OPEN)
        tracker.on_assistant_reply(escalate=True)
        tracker.on_assistant_reply(escalate=False)
        assert tracker.state == EscalationState.REFERRAL_OPEN

    def test_successful_submission_hides_affordance(self):
        tracker = EscalationTracker(EscalationState.REFERRAL_OPEN)
        tracker.record_submission(success=True)
        assert tracker.state == EscalationState.REFERRAL_SENT
        assert not tracker.suggest_referral

    def test_failed_submission_allows_retry(self):
        tracker = EscalationTracker(EscalationState.REFERRAL_OPEN)
        tracker.record_submission(success=False)
        assert tracker.state == EscalationState.REFERRAL_FAILED

        tracker.open_referral()
        assert tracker.state == EscalationState.REFERRAL_OPEN

    def test_next_reply_after_sent_resets(self):
        tracker = EscalationTracker(EscalationState.REFERRAL_SENT)
        tracker.on_assistant_reply(escalate=False)
        assert tracker.state == EscalationState.NO_ESCALATION

    def test_new_escalation_after_sent(self):
        tracker = EscalationTracker(EscalationState.REFERRAL_SENT)
        tracker.on_assistant_reply(escalate=True)
        assert tracker.suggest_referral

    def test_cannot_open_without_suggestion(self):
        tracker = EscalationTracker()
        with pytest.raises(InvalidTransitionError):
            tracker.open_referral()

    @pytest.mark.parametrize("state", [
        EscalationState.NO_ESCALATION,
        EscalationState.ESCALATION_SUGGESTED,
        EscalationState.REFERRAL_SENT,
        EscalationState.REFERRAL_FAILED,
    ])
    def test_stored_referral_can_be_reopened(self, state):
        """Retrying a stored referral does not depend on the chat's suggestion."""
        tracker = EscalationTracker(state)
        tracker.open_referral(retry=True)
        assert tracker.state == EscalationState.REFERRAL_OPEN

    def test_cannot_open_new_referral_after_sent(self):
        tracker = EscalationTracker(EscalationState.REFERRAL_SENT)
        with pytest.raises(InvalidTransitionError):
            tracker.open_referral()

    def test_cannot_record_submission_without_open_form(self):
        tracker = EscalationTracker(EscalationState.ESCALATION_SUGGESTED)
        with pytest.raises(InvalidTransitionError):
            tracker.record_submission(success=True)


class TestTransitionReferral:
    """Tests for referral status transitions."""

    def make_referral(self, **kwargs) -> ReferralForm:
        return ReferralForm(user_id="u-anna", **kwargs)

    def test_draft_to_submitted_with_consent(self):
        referral = self.make_referral(consent_given=True)
        submitted = transition_referral(referral, ReferralStatus.SUBMITTED)
        assert submitted.status == ReferralStatus.SUBMITTED
        assert submitted.id == referral.id
        assert referral.status == ReferralStatus.DRAFT

    def test_draft_without_consent_is_rejected(self):
        """Leaving draft without consent raises with the consent message."""
        referral = self.make_referral(consent_given=False)
        with pytest.raises(ReferralValidationError) as exc_info:
            transition_referral(referral, ReferralStatus.SUBMITTED)
        assert exc_info.value.errors == [CONSENT_REQUIRED_MESSAGE]

    @pytest.mark.parametrize("target", [ReferralStatus.SENT, ReferralStatus.FAILED])
    def test_submitted_outcomes(self, target):
        referral = self.make_referral(status=ReferralStatus.SUBMITTED, consent_given=True)
        assert transition_referral(referral, target).status == target

    def test_failed_can_be_resubmitted(self):
        referral = self.make_referral(status=ReferralStatus.FAILED, consent_given=True)
        assert transition_referral(referral, ReferralStatus.SUBMITTED).status == ReferralStatus.SUBMITTED

    @pytest.mark.parametrize("source,target", [
        (ReferralStatus.DRAFT, ReferralStatus.SENT),
        (ReferralStatus.DRAFT, ReferralStatus.FAILED),
        (ReferralStatus.SUBMITTED, ReferralStatus.DRAFT),
        (ReferralStatus.SENT, ReferralStatus.SUBMITTED),
        (ReferralStatus.SENT, ReferralStatus.FAILED),
        (ReferralStatus.FAILED, ReferralStatus.SENT),
    ])
    def test_illegal_transitions(self, source, target):
        referral = self.make_referral(status=source, consent_given=True)
        with pytest.raises(InvalidTransitionError):
            transition_referral(referral, target)

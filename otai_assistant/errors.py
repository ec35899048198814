"""Exceptions raised by the session and referral lifecycle."""


class ValidationError(Exception):
    """Raised when user-provided data blocks a state transition."""
    pass


class ReferralValidationError(ValidationError):
    """Raised when a referral cannot leave draft (missing consent or fields)."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__("; ".join(errors))


class InvalidTransitionError(Exception):
    """Raised when a status or escalation transition is not allowed."""
    pass


class CompletionError(Exception):
    """Raised when the AI completion service fails.

    ``user_message`` is safe to show in the conversation.
    """

    def __init__(self, user_message: str):
        self.user_message = user_message
        super().__init__(user_message)

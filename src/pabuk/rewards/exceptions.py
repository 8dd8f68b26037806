"""Reward engine failure taxonomy.

Callers translate these into user-facing messages. ``retryable`` tells a
caller whether re-running the whole operation may succeed.
"""

from __future__ import annotations


class RewardError(Exception):
    """Base class for all reward engine failures."""

    retryable = False


class RewardValidationError(RewardError, ValueError):
    """Caller supplied an unknown enum value, a malformed amount or a bad transition."""


class RewardNotFoundError(RewardError, LookupError):
    """The referenced row does not exist."""


class UserNotFoundError(RewardNotFoundError):
    def __init__(self, user_id: int) -> None:
        super().__init__(f"User {user_id} not found")
        self.user_id = user_id


class ContributionNotFoundError(RewardNotFoundError):
    def __init__(self, contribution_id: int) -> None:
        super().__init__(f"Contribution {contribution_id} not found")
        self.contribution_id = contribution_id


class LedgerConflictError(RewardError):
    """Concurrent writes kept conflicting after all ledger attempts."""

    retryable = True

    def __init__(self, user_id: int, attempts: int) -> None:
        super().__init__(f"Ledger write for user {user_id} conflicted {attempts} times")
        self.user_id = user_id
        self.attempts = attempts


class RewardInvariantError(RewardError):
    """A logic defect: stored state contradicts the ledger."""

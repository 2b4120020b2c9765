"""
Quote status state machine.

    draft ─submit─▶ pending_validation ─approve─▶ awaiting_acceptance ─accept─▶ accepted ─convert─▶ converted
                           │                              │  │
                           └────────reject──────▶ rejected ◀─┘  └─expire─▶ expired

Transitions are pure: apply_transition() takes a quote snapshot and
returns an updated copy, or raises InvalidTransitionError with a reason.
Nothing here reads a clock or a store; callers pass `now` in.

Expiry has no timer. A quote awaiting acceptance past its expiry date is
expired as soon as anyone looks at it (effective_status).
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field

from core.exceptions import InvalidTransitionError, TransitionRejection
from core.models import Quote, QuoteStatus
from utils.timezone import add_days


class QuoteAction(str, Enum):
    """Things that can happen to a quote."""

    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    ACCEPT = "accept"
    EXPIRE = "expire"
    CONVERT = "convert"


class TransitionPayload(BaseModel):
    """Optional details carried by an action."""

    actor_id: UUID | None = None
    notes: str | None = Field(None, max_length=2000)
    reason: str | None = Field(None, max_length=2000)


TRANSITIONS: dict[tuple[QuoteStatus, QuoteAction], QuoteStatus] = {
    (QuoteStatus.DRAFT, QuoteAction.SUBMIT): QuoteStatus.PENDING_VALIDATION,
    (QuoteStatus.PENDING_VALIDATION, QuoteAction.APPROVE): QuoteStatus.AWAITING_ACCEPTANCE,
    (QuoteStatus.PENDING_VALIDATION, QuoteAction.REJECT): QuoteStatus.REJECTED,
    (QuoteStatus.AWAITING_ACCEPTANCE, QuoteAction.ACCEPT): QuoteStatus.ACCEPTED,
    (QuoteStatus.AWAITING_ACCEPTANCE, QuoteAction.REJECT): QuoteStatus.REJECTED,
    (QuoteStatus.AWAITING_ACCEPTANCE, QuoteAction.EXPIRE): QuoteStatus.EXPIRED,
    (QuoteStatus.ACCEPTED, QuoteAction.CONVERT): QuoteStatus.CONVERTED,
}

TERMINAL_STATUSES = frozenset({
    QuoteStatus.ACCEPTED,
    QuoteStatus.REJECTED,
    QuoteStatus.EXPIRED,
    QuoteStatus.CONVERTED,
})

# Actions that record the client's (or approver's) final decision
_DECISIONS = {QuoteAction.ACCEPT, QuoteAction.REJECT, QuoteAction.EXPIRE}


def is_terminal(status: QuoteStatus) -> bool:
    return status in TERMINAL_STATUSES


def allowed_actions(status: QuoteStatus) -> set[QuoteAction]:
    """Actions the table accepts from a status."""
    return {action for (source, action) in TRANSITIONS if source == status}


def can_transition(status: QuoteStatus, action: QuoteAction) -> bool:
    return (status, action) in TRANSITIONS


def is_expired(quote: Quote, now: datetime) -> bool:
    """Awaiting a decision and past the expiry date."""
    return quote.status == QuoteStatus.AWAITING_ACCEPTANCE and now > quote.expires_at


def effective_status(quote: Quote, now: datetime) -> QuoteStatus:
    """Status as of `now`, with time-based expiry applied."""
    if is_expired(quote, now):
        return QuoteStatus.EXPIRED
    return quote.status


def reminder_date(quote: Quote) -> datetime | None:
    """When the client should be reminded, or None if reminders are off."""
    if not quote.reminder.enabled:
        return None
    return add_days(quote.expires_at, -quote.reminder.days_before_expiry)


def apply_transition(
    quote: Quote,
    action: QuoteAction,
    now: datetime,
    payload: TransitionPayload | None = None,
) -> Quote:
    """
    Apply an action to a quote.

    Args:
        quote: Current quote snapshot
        action: Action to apply
        now: Evaluation time (expiry is judged against it)
        payload: Notes, rejection reason, acting user

    Returns:
        Updated copy of the quote. The input is not modified.

    Raises:
        InvalidTransitionError: reason is
            SUPERSEDED if a newer version exists,
            EXPIRED if the quote expired while awaiting acceptance
                (except for the EXPIRE action itself),
            ALREADY_TERMINAL if the quote is in a terminal status
                the action cannot leave,
            INVALID_TRANSITION otherwise.
    """
    payload = payload or TransitionPayload()

    if not quote.is_latest_version:
        raise InvalidTransitionError(
            TransitionRejection.SUPERSEDED,
            f"Quote {quote.quote_number} v{quote.version_number} has been superseded by a newer version",
        )

    if action != QuoteAction.EXPIRE and is_expired(quote, now):
        raise InvalidTransitionError(
            TransitionRejection.EXPIRED,
            f"Quote {quote.quote_number} expired on {quote.expires_at.isoformat()}",
        )

    target = TRANSITIONS.get((quote.status, action))
    if target is None:
        if is_terminal(quote.status):
            raise InvalidTransitionError(
                TransitionRejection.ALREADY_TERMINAL,
                f"Quote {quote.quote_number} is {quote.status.value}; cannot {action.value}",
            )
        raise InvalidTransitionError(
            TransitionRejection.INVALID_TRANSITION,
            f"Cannot {action.value} a quote in status {quote.status.value}",
        )

    if action == QuoteAction.EXPIRE and not is_expired(quote, now):
        raise InvalidTransitionError(
            TransitionRejection.INVALID_TRANSITION,
            f"Quote {quote.quote_number} is valid until {quote.expires_at.isoformat()}",
        )

    updates: dict = {"status": target, "updated_at": now}

    if action == QuoteAction.APPROVE:
        updates["validated_at"] = now
        updates["validated_by"] = payload.actor_id
        updates["validation_notes"] = payload.notes
        updates["sent_at"] = now
    elif action == QuoteAction.REJECT:
        updates["rejection_reason"] = payload.reason
    elif action == QuoteAction.CONVERT:
        updates["converted_at"] = now

    if action in _DECISIONS:
        updates["decided_at"] = now

    return quote.model_copy(update=updates, deep=True)

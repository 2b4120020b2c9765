"""
Handler for quote events.

Keeps at most one pending expiry reminder per quote chain: any quote event
cancels the reminders of the quote (and of the version it superseded),
then schedules a fresh one if the quote awaits the client's decision with
reminders enabled.
"""

import logging
from typing import Callable

from core.events import QuoteEvent, QuoteVersionCreated
from core.models import NotificationCreate, NotificationType, QuoteStatus
from core.quote_states import reminder_date
from utils.company_context import CompanyContext

logger = logging.getLogger(__name__)


def handle_quote_event(notification_service) -> Callable:
    """
    Factory that returns a QuoteEvent handler.

    Args:
        notification_service: NotificationService instance

    Returns:
        Handler callable that reschedules quote reminders
    """

    def handler(event: QuoteEvent):
        quote = event.quote
        ctx = CompanyContext(company_id=event.company_id)

        notification_service.cancel_for_entity(ctx, "quote", quote.id, NotificationType.QUOTE_REMINDER)
        if isinstance(event, QuoteVersionCreated) and event.superseded is not None:
            notification_service.cancel_for_entity(
                ctx, "quote", event.superseded.id, NotificationType.QUOTE_REMINDER,
            )

        remind_at = reminder_date(quote)
        if quote.status != QuoteStatus.AWAITING_ACCEPTANCE or remind_at is None:
            return

        notification_service.schedule(ctx, NotificationCreate(
            client_id=quote.client_id,
            entity_type="quote",
            entity_id=quote.id,
            notification_type=NotificationType.QUOTE_REMINDER,
            subject=f"Quote {quote.quote_number} expires soon",
            body=(
                f"Quote {quote.quote_number} (total {quote.total}) is valid until "
                f"{quote.expires_at.date().isoformat()}."
            ),
            scheduled_for=remind_at,
        ))

    return handler

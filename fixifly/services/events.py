# fixifly/services/events.py

from __future__ import annotations

import logging
from decimal import Decimal

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.conf import settings
from django.db import transaction
from django.utils import timezone

from fixifly.models import DomainEvent, Notification, Vendor

logger = logging.getLogger(__name__)

TASK_ASSIGNED = 'TaskAssigned'
TASK_ACCEPTED = 'TaskAccepted'
TASK_DECLINED = 'TaskDeclined'
TASK_STARTED = 'TaskStarted'
TASK_COMPLETED = 'TaskCompleted'
TASK_CANCELLED = 'TaskCancelled'
PENALTY_APPLIED = 'PenaltyApplied'
PENALTY_REFUNDED = 'PenaltyRefunded'
DEPOSIT_RECEIVED = 'DepositReceived'
CASH_COLLECTED = 'CashCollected'
WITHDRAWAL_REQUESTED = 'WithdrawalRequested'
WITHDRAWAL_RESOLVED = 'WithdrawalResolved'

MESSAGES = {
    TASK_ASSIGNED: "New task {reference} assigned to you. Respond by {respond_by}.",
    TASK_ACCEPTED: "You accepted task {reference}.",
    TASK_DECLINED: "Task {reference} was declined. {reason}",
    TASK_STARTED: "Work on task {reference} has started.",
    TASK_COMPLETED: "Task {reference} completed ({payment_method}).",
    TASK_CANCELLED: "Task {reference} was cancelled by {cancelled_by}.",
    PENALTY_APPLIED: "A penalty of ₹{amount} was applied for {reference}.",
    PENALTY_REFUNDED: "Penalty for {reference} refunded: ₹{amount}.",
    DEPOSIT_RECEIVED: "Deposit of ₹{amount} received.",
    CASH_COLLECTED: "Cash collection for {reference} recorded. ₹{amount} deducted as commission.",
    WITHDRAWAL_REQUESTED: "Withdrawal request of ₹{amount} submitted.",
    WITHDRAWAL_RESOLVED: "Your withdrawal request of ₹{amount} was {status}.",
}


def _jsonable(value):
    if isinstance(value, Decimal):
        return str(value)
    if hasattr(value, 'isoformat'):
        return value.isoformat()
    return value


def emit(event_type: str, vendor: Vendor | None = None, **payload) -> DomainEvent:
    """
    Record an event in the outbox. Call inside the same transaction as the
    change it describes so the event exists iff the change committed.
    """
    return DomainEvent.objects.create(
        event_type=event_type,
        vendor=vendor,
        payload={key: _jsonable(value) for key, value in payload.items()},
    )


def render_message(event: DomainEvent) -> str:
    template = MESSAGES.get(event.event_type)
    if not template:
        return event.event_type
    try:
        return template.format(**event.payload).strip()
    except (KeyError, IndexError):
        return event.event_type


def _deliver(event: DomainEvent) -> None:
    if event.vendor is None:
        return
    user = event.vendor.user
    message = render_message(event)

    Notification.objects.create(user=user, message=message, event=event)

    channel_layer = get_channel_layer()
    if channel_layer is None:
        return
    async_to_sync(channel_layer.group_send)(
        f'notifications_{user.id}',
        {
            'type': 'send_notification',
            'message': {
                'type': event.event_type,
                'text': message,
                'payload': event.payload,
                'timestamp': timezone.now().isoformat(),
            },
        },
    )


def max_attempts() -> int:
    return int(getattr(settings, "FIXIFLY_EVENT_MAX_ATTEMPTS", 5))


def dispatch_pending(limit: int = 100) -> int:
    """
    Deliver undispatched events. A failing event is left pending with its
    error recorded and goes behind fresh events; after max_attempts() it is
    left for an admin to inspect.
    """
    pending = (
        DomainEvent.objects
        .filter(dispatched_at__isnull=True, attempts__lt=max_attempts())
        .select_related('vendor__user')
        .order_by('attempts', 'id')[:limit]
    )

    delivered = 0
    for event in pending:
        previous_attempts = event.attempts
        try:
            with transaction.atomic():
                _deliver(event)
                event.dispatched_at = timezone.now()
                event.attempts += 1
                event.last_error = ''
                event.save(update_fields=['dispatched_at', 'attempts', 'last_error'])
            delivered += 1
        except Exception as exc:
            logger.exception(f"Failed to dispatch event {event.id} ({event.event_type})")
            DomainEvent.objects.filter(pk=event.pk).update(
                attempts=previous_attempts + 1,
                last_error=str(exc)[:1000],
            )

    if delivered:
        logger.info(f"Dispatched {delivered} domain event(s)")
    return delivered

# fixifly/services/task_lifecycle.py
"""
Transitions of the shared task lifecycle.

Every function takes the task (a Booking or a SupportTicket) and the acting
vendor explicitly, locks the task row, checks the edge against
`fixifly.lifecycle.ALLOWED_TRANSITIONS` and writes the new state through the
flavor adapter. A rejected transition leaves the task untouched.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal

from django.conf import settings
from django.core.exceptions import PermissionDenied
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from fixifly.exceptions import InvalidTransitionError
from fixifly.lifecycle import TaskState, adapter_for, can_transition
from fixifly.models import TXN_EARNING, Booking, SupportTicket, VendorWallet
from fixifly.services import events
from fixifly.services.cash_reconciliation import reconcile_cash_collection
from fixifly.services.deposit_policy import ensure_can_accept, record_first_assignment
from fixifly.services.ledger import get_or_create_wallet, post_transaction
from fixifly.services.penalties import apply_cancellation_penalty, apply_decline_penalty

logger = logging.getLogger(__name__)

TASK_MODELS = (Booking, SupportTicket)

AUTO_DECLINE_REASON = "No response within the response window"


def _q(amount) -> Decimal:
    return Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def response_window() -> timedelta:
    return timedelta(minutes=int(getattr(settings, "FIXIFLY_TASK_RESPONSE_SLA_MINUTES", 25)))


def compute_vendor_earning(billing_amount, spare_amount=0, travel_amount=0) -> Decimal:
    """
    Vendor's share of an online-paid task.

    Small jobs (up to FIXIFLY_FULL_EARNING_THRESHOLD) go entirely to the
    vendor. Otherwise spare parts and travel are passed through and the rest
    is split by FIXIFLY_VENDOR_EARNING_SHARE.
    """
    billing = _q(billing_amount)
    spare = _q(spare_amount or 0)
    travel = _q(travel_amount or 0)
    threshold = _q(getattr(settings, "FIXIFLY_FULL_EARNING_THRESHOLD", "300.00"))
    share = Decimal(str(getattr(settings, "FIXIFLY_VENDOR_EARNING_SHARE", "0.50")))

    if billing <= threshold:
        return billing

    base = billing - spare - travel
    if base < 0:
        raise ValueError("Spare and travel amounts exceed the billing amount")
    return _q(base * share + spare + travel)


def _lock(task):
    return type(task).objects.select_for_update().select_related('vendor').get(pk=task.pk)


def _check_edge(task, target: TaskState) -> TaskState:
    current = adapter_for(task).to_state(task)
    if not can_transition(current, target):
        raise InvalidTransitionError(
            current_state=current.value,
            message=f"Cannot move {task.reference} from {current.value} to {target.value}.",
        )
    return current


def _check_vendor(task, vendor) -> None:
    if vendor is not None and task.vendor_id != vendor.pk:
        raise PermissionDenied("This task is not assigned to you.")


def _write_state(task, state: TaskState, *extra_fields) -> None:
    fields = adapter_for(task).apply_state(task, state)
    task.save(update_fields=list(fields) + list(extra_fields) + ['updated_at'])


def _bump(vendor, counter: str) -> None:
    VendorWallet.objects.filter(vendor=vendor).update(**{counter: F(counter) + 1})


def _event_payload(task, **extra) -> dict:
    payload = {'reference': task.reference, 'kind': adapter_for(task).kind, 'task_id': task.pk}
    payload.update(extra)
    return payload


# --- ASSIGNMENT ---

def assign(task, vendor, assigned_by=None):
    """UNASSIGNED -> ASSIGNED. Starts the response window."""
    if not vendor.is_active:
        raise ValueError(f"Vendor {vendor.vendor_id} is not active")

    with transaction.atomic():
        locked = _lock(task)
        _check_edge(locked, TaskState.ASSIGNED)

        now = timezone.now()
        locked.vendor = vendor
        locked.assigned_at = now
        locked.respond_by = now + response_window()
        locked.responded_at = None
        _write_state(locked, TaskState.ASSIGNED, 'vendor', 'assigned_at', 'respond_by', 'responded_at')

        record_first_assignment(get_or_create_wallet(vendor))
        events.emit(
            events.TASK_ASSIGNED,
            vendor,
            **_event_payload(locked, respond_by=locked.respond_by, assigned_by=str(assigned_by or 'system')),
        )

    logger.info(f"{locked.reference} assigned to vendor {vendor.vendor_id} (respond by {locked.respond_by})")
    return locked


def reassign_declined_task(task, new_vendor, assigned_by=None):
    """
    Create a fresh ASSIGNED task for a different vendor from a declined one.
    The declined task stays declined and points forward through `next_attempt`.
    """
    model = type(task)

    with transaction.atomic():
        locked = _lock(task)
        current = adapter_for(locked).to_state(locked)
        if current != TaskState.DECLINED:
            raise InvalidTransitionError(
                current_state=current.value,
                message=f"Only declined tasks can be re-assigned; {locked.reference} is {current.value}.",
            )
        if model.objects.filter(previous_attempt=locked).exists():
            raise InvalidTransitionError(
                current_state=current.value,
                message=f"{locked.reference} has already been re-assigned.",
            )
        if locked.vendor_id == new_vendor.pk:
            raise ValueError("A declined task must be re-assigned to a different vendor")

        fresh = model(previous_attempt=locked)
        for field in model.CARRY_OVER_FIELDS:
            setattr(fresh, field, getattr(locked, field))
        fresh.save()

        fresh = assign(fresh, new_vendor, assigned_by=assigned_by)

    logger.info(f"{locked.reference} re-assigned as {fresh.reference} to vendor {new_vendor.vendor_id}")
    return fresh


# --- VENDOR RESPONSE ---

def accept(task, vendor):
    """
    ASSIGNED -> ACCEPTED, gated by the deposit policy.
    Raises MandatoryDepositRequiredError with the task left ASSIGNED.
    """
    with transaction.atomic():
        locked = _lock(task)
        _check_edge(locked, TaskState.ACCEPTED)
        _check_vendor(locked, vendor)

        ensure_can_accept(get_or_create_wallet(locked.vendor))

        locked.responded_at = timezone.now()
        _write_state(locked, TaskState.ACCEPTED, 'responded_at')
        events.emit(events.TASK_ACCEPTED, locked.vendor, **_event_payload(locked))

    logger.info(f"{locked.reference} accepted by vendor {locked.vendor.vendor_id}")
    return locked


def decline(task, vendor=None, reason: str = '', auto: bool = False):
    """
    ASSIGNED -> DECLINED, then charge the decline penalty.

    Returns (task, already_declined). Declining a declined task is a no-op
    that reports the current state; the penalty is charged once per task.
    The decline is committed before the penalty is posted, so a failing
    penalty never undoes it; the task is marked `penalty_status='failed'`
    for the retry job instead.
    """
    with transaction.atomic():
        locked = _lock(task)
        _check_vendor(locked, vendor)
        if adapter_for(locked).to_state(locked) == TaskState.DECLINED:
            logger.info(f"{locked.reference} has already been declined")
            return locked, True

        _check_edge(locked, TaskState.DECLINED)

        locked.decline_reason = reason or (AUTO_DECLINE_REASON if auto else '')
        locked.responded_at = timezone.now()
        _write_state(locked, TaskState.DECLINED, 'decline_reason', 'responded_at')
        _bump(locked.vendor, 'total_tasks_declined')
        events.emit(
            events.TASK_DECLINED,
            locked.vendor,
            **_event_payload(locked, reason=locked.decline_reason, auto=auto),
        )

    logger.info(f"{locked.reference} declined by vendor {locked.vendor.vendor_id} (auto={auto})")
    _charge_penalty(locked, auto=auto)
    return locked, False


def _charge_penalty(task, auto: bool = False) -> bool:
    """Post the penalty a declined or cancelled task owes; never raises."""
    state = adapter_for(task).to_state(task)
    try:
        if state == TaskState.DECLINED:
            apply_decline_penalty(task.vendor, task.reference, reason=task.decline_reason, auto=auto)
        elif state == TaskState.CANCELLED:
            apply_cancellation_penalty(
                task.vendor, task.reference, reason=task.cancel_reason, cancelled_by=task.cancelled_by,
            )
        else:
            return False
        task.penalty_status = 'applied'
    except Exception:
        logger.exception(f"Penalty for {task.reference} failed; will retry")
        task.penalty_status = 'failed'

    type(task).objects.filter(pk=task.pk).update(penalty_status=task.penalty_status)
    return task.penalty_status == 'applied'


# --- WORK ---

def start(task, vendor):
    """ACCEPTED -> IN_PROGRESS."""
    with transaction.atomic():
        locked = _lock(task)
        _check_edge(locked, TaskState.IN_PROGRESS)
        _check_vendor(locked, vendor)

        locked.started_at = timezone.now()
        _write_state(locked, TaskState.IN_PROGRESS, 'started_at')
        events.emit(events.TASK_STARTED, locked.vendor, **_event_payload(locked))

    logger.info(f"{locked.reference} started by vendor {locked.vendor.vendor_id}")
    return locked


def complete(
    task,
    vendor,
    payment_method: str,
    billing_amount,
    gst_rate=None,
    payment_reference: str = '',
    cash_photo: str | None = None,
    spare_amount=0,
    travel_amount=0,
):
    """
    IN_PROGRESS -> COMPLETED with the payment settled in the same unit.

    Online payments need the gateway's verified `payment_reference` and
    credit the vendor's share as an earning. Cash payments deduct the
    company's commission from the wallet; InsufficientFundsError leaves the
    task IN_PROGRESS.
    """
    if payment_method not in ('online', 'cash'):
        raise ValueError(f"Unknown payment method: {payment_method}")
    if payment_method == 'online' and not payment_reference:
        raise ValueError("Online completion requires a verified payment reference")

    with transaction.atomic():
        locked = _lock(task)
        _check_edge(locked, TaskState.COMPLETED)
        _check_vendor(locked, vendor)

        billing = _q(billing_amount)
        if payment_method == 'cash':
            txn = reconcile_cash_collection(
                locked.vendor, locked.reference, billing, gst_rate=gst_rate, cash_photo=cash_photo,
            )
        else:
            earning = compute_vendor_earning(billing, spare_amount, travel_amount)
            txn = post_transaction(
                locked.vendor,
                TXN_EARNING,
                earning,
                description=f"Earning for {locked.reference}",
                reference_id=locked.reference,
                metadata={
                    'billing_amount': str(billing),
                    'spare_amount': str(_q(spare_amount or 0)),
                    'travel_amount': str(_q(travel_amount or 0)),
                    'payment_reference': payment_reference,
                },
            )

        locked.billing_amount = billing
        locked.payment_method = payment_method
        locked.payment_reference = payment_reference or ''
        locked.completed_at = timezone.now()
        _write_state(
            locked, TaskState.COMPLETED,
            'billing_amount', 'payment_method', 'payment_reference', 'completed_at',
        )
        _bump(locked.vendor, 'total_tasks_completed')
        events.emit(
            events.TASK_COMPLETED,
            locked.vendor,
            **_event_payload(locked, payment_method=payment_method, amount=txn.amount),
        )

    logger.info(f"{locked.reference} completed ({payment_method}) by vendor {locked.vendor.vendor_id}")
    return locked


def cancel(task, cancelled_by: str = 'vendor', vendor=None, reason: str = '', apply_penalty: bool | None = None):
    """
    ACCEPTED / IN_PROGRESS -> CANCELLED.

    A vendor cancellation owes the cancellation penalty; an admin may opt in
    with `apply_penalty=True`. As with declines the penalty is posted after
    the cancellation commits.
    """
    if cancelled_by not in ('vendor', 'admin', 'system'):
        raise ValueError(f"Unknown canceller: {cancelled_by}")
    if apply_penalty is None:
        apply_penalty = cancelled_by == 'vendor'

    with transaction.atomic():
        locked = _lock(task)
        _check_edge(locked, TaskState.CANCELLED)
        _check_vendor(locked, vendor)

        locked.cancelled_at = timezone.now()
        locked.cancelled_by = cancelled_by
        locked.cancel_reason = reason
        _write_state(locked, TaskState.CANCELLED, 'cancelled_at', 'cancelled_by', 'cancel_reason')
        _bump(locked.vendor, 'total_tasks_cancelled')
        events.emit(
            events.TASK_CANCELLED,
            locked.vendor,
            **_event_payload(locked, cancelled_by=cancelled_by, reason=reason),
        )

    logger.info(f"{locked.reference} cancelled by {cancelled_by}")
    if apply_penalty:
        _charge_penalty(locked)
    return locked


# --- PERIODIC ---

def auto_decline_overdue_assignments(now=None, dry_run: bool = False) -> list:
    """
    Decline every assignment whose response window has passed. Returns the
    references declined (or that would be, with dry_run).
    """
    now = now or timezone.now()
    declined = []

    for model in TASK_MODELS:
        adapter = adapter_for(model())
        overdue = (
            model.objects
            .filter(respond_by__lt=now, vendor__isnull=False, **adapter.assigned_filter)
            .order_by('respond_by')
        )
        for task in overdue:
            if dry_run:
                declined.append(task.reference)
                continue
            try:
                _, already = decline(task, reason=AUTO_DECLINE_REASON, auto=True)
            except InvalidTransitionError:
                # Vendor responded between the query and the lock
                continue
            if not already:
                declined.append(task.reference)

    if declined:
        logger.info(f"Auto-declined {len(declined)} overdue assignment(s): {declined}")
    return declined


def retry_failed_penalties() -> int:
    retried = 0
    for model in TASK_MODELS:
        for task in model.objects.filter(penalty_status='failed').select_related('vendor'):
            if _charge_penalty(task):
                retried += 1
    if retried:
        logger.info(f"Recovered {retried} failed penalty posting(s)")
    return retried

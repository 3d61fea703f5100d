# fixifly/services/penalties.py

from __future__ import annotations

import logging
from decimal import Decimal

from django.conf import settings
from django.core.exceptions import PermissionDenied
from django.db import transaction

from fixifly.exceptions import DuplicateTransactionError
from fixifly.models import (
    TXN_MANUAL_ADJUSTMENT,
    TXN_PENALTY,
    TXN_REFUND,
    Vendor,
    WalletTransaction,
)
from fixifly.services import events
from fixifly.services.ledger import _q, find_posting, lock_wallet, post_transaction

logger = logging.getLogger(__name__)


def decline_penalty_amount() -> Decimal:
    return _q(getattr(settings, "FIXIFLY_DECLINE_PENALTY_AMOUNT", "100.00"))


def cancellation_penalty_amount() -> Decimal:
    return _q(getattr(settings, "FIXIFLY_CANCELLATION_PENALTY_AMOUNT", "100.00"))


def _is_admin(user) -> bool:
    return bool(user and (user.is_staff or getattr(user, 'role', None) == 'admin'))


def _post_penalty(vendor: Vendor, task_reference: str, amount: Decimal, description: str, metadata: dict):
    """Post one penalty per task reference; a replay returns the first posting."""
    try:
        with transaction.atomic():
            txn = post_transaction(
                vendor,
                TXN_PENALTY,
                -amount,
                description=description,
                reference_id=task_reference,
                metadata=metadata,
            )
            events.emit(events.PENALTY_APPLIED, vendor, amount=amount, reference=task_reference)
    except DuplicateTransactionError as exc:
        logger.info(f"Penalty for {task_reference} already applied to vendor {vendor.vendor_id}")
        return exc.existing
    return txn


def apply_decline_penalty(vendor: Vendor, task_reference: str, reason: str = '', auto: bool = False) -> WalletTransaction:
    """
    Charge the decline penalty for a task. Manual declines and SLA
    auto-declines cost the same; `auto` only changes the description.
    """
    amount = decline_penalty_amount()
    if auto:
        description = f"Auto-decline penalty for {task_reference}: no response within SLA"
    else:
        description = f"Decline penalty for {task_reference}"
        if reason:
            description = f"{description}: {reason}"

    return _post_penalty(
        vendor,
        task_reference,
        amount,
        description,
        metadata={'kind': 'decline', 'auto': auto, 'reason': reason},
    )


def apply_cancellation_penalty(vendor: Vendor, task_reference: str, reason: str = '', cancelled_by: str = 'vendor'):
    """Returns None when cancellation penalties are disabled (amount 0)."""
    amount = cancellation_penalty_amount()
    if amount <= 0:
        return None

    description = f"Cancellation penalty for {task_reference}"
    if reason:
        description = f"{description}: {reason}"

    return _post_penalty(
        vendor,
        task_reference,
        amount,
        description,
        metadata={'kind': 'cancellation', 'cancelled_by': cancelled_by, 'reason': reason},
    )


def apply_manual_penalty(vendor: Vendor, amount, description: str, admin) -> WalletTransaction:
    """Admin-issued corrective debit. May overdraw like any penalty."""
    if not _is_admin(admin):
        raise PermissionDenied("Only admins can issue manual penalties.")
    amount = _q(amount)
    if amount <= 0:
        raise ValueError("Penalty amount must be positive")

    return post_transaction(
        vendor,
        TXN_MANUAL_ADJUSTMENT,
        -amount,
        description=description or "Manual penalty",
        metadata={'kind': 'manual_penalty', 'admin_id': admin.id},
        processed_by='admin',
    )


def apply_manual_adjustment(vendor: Vendor, amount, description: str, admin) -> WalletTransaction:
    """Signed admin correction; a positive amount credits the wallet."""
    if not _is_admin(admin):
        raise PermissionDenied("Only admins can adjust wallets.")
    amount = _q(amount)
    if amount == 0:
        raise ValueError("Adjustment amount cannot be zero")

    return post_transaction(
        vendor,
        TXN_MANUAL_ADJUSTMENT,
        amount,
        description=description or "Manual adjustment",
        metadata={'kind': 'manual_adjustment', 'admin_id': admin.id},
        processed_by='admin',
    )


def refund_penalty(vendor: Vendor, task_reference: str, admin, note: str = '') -> WalletTransaction:
    """
    Reverse an automatic penalty with an equal refund credit. The penalty row
    itself stays in the ledger. Refunding twice is refused.
    """
    if not _is_admin(admin):
        raise PermissionDenied("Only admins can refund penalties.")

    refund_reference = f"REFUND-{task_reference}"
    with transaction.atomic():
        wallet = lock_wallet(vendor)
        penalty = find_posting(wallet, TXN_PENALTY, task_reference)
        if penalty is None:
            raise ValueError(f"No penalty found for {task_reference}")

        existing = find_posting(wallet, TXN_REFUND, refund_reference)
        if existing is not None:
            raise DuplicateTransactionError(existing, "This penalty has already been refunded.")

        amount = -penalty.amount
        txn = post_transaction(
            vendor,
            TXN_REFUND,
            amount,
            description=f"Penalty refund for {task_reference}" + (f": {note}" if note else ''),
            reference_id=refund_reference,
            metadata={'penalty_transaction_id': penalty.transaction_id, 'admin_id': admin.id, 'note': note},
            processed_by='admin',
        )
        events.emit(events.PENALTY_REFUNDED, vendor, amount=amount, reference=task_reference)

    return txn

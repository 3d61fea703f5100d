# fixifly/services/withdrawals.py

from __future__ import annotations

import logging

from django.core.exceptions import PermissionDenied
from django.db import transaction
from django.utils import timezone

from fixifly.exceptions import AlreadyResolvedError, InsufficientFundsError, PendingWithdrawalExistsError
from fixifly.models import TXN_WITHDRAWAL, Vendor, WithdrawalRequest
from fixifly.services import events
from fixifly.services.ledger import _q, lock_wallet, post_transaction

logger = logging.getLogger(__name__)

APPROVED = 'approved'
DECLINED = 'declined'


def request_withdrawal(vendor: Vendor, amount) -> WithdrawalRequest:
    """
    Open a pending withdrawal. The amount must fit in the withdrawable
    balance (current balance minus security deposit); no money moves yet.
    """
    amount = _q(amount)
    if amount <= 0:
        raise ValueError("Withdrawal amount must be positive")

    with transaction.atomic():
        wallet = lock_wallet(vendor)

        if WithdrawalRequest.objects.filter(vendor=vendor, status='pending').exists():
            raise PendingWithdrawalExistsError()

        if amount > wallet.usable_balance:
            logger.warning(
                f"Withdrawal of {amount} refused for vendor {vendor.vendor_id}: "
                f"withdrawable {wallet.withdrawable_balance}"
            )
            raise InsufficientFundsError(
                current_balance=wallet.current_balance,
                required_amount=amount,
                message=f"Only ₹{wallet.withdrawable_balance} is available for withdrawal.",
            )

        wr = WithdrawalRequest.objects.create(vendor=vendor, amount=amount)
        events.emit(events.WITHDRAWAL_REQUESTED, vendor, amount=amount, request_id=wr.id)

    logger.info(f"Withdrawal request #{wr.id} of {amount} opened by vendor {vendor.vendor_id}")
    return wr


def resolve_withdrawal(request_id: int, decision: str, admin_user, admin_note: str = '') -> WithdrawalRequest:
    """
    Approve or decline a pending request. Approval posts the withdrawal debit
    exactly once; a request that is no longer pending raises
    AlreadyResolvedError with its current status.
    """
    if not (admin_user and (admin_user.is_staff or getattr(admin_user, 'role', None) == 'admin')):
        raise PermissionDenied("Only admins can resolve withdrawal requests.")
    if decision not in (APPROVED, DECLINED):
        raise ValueError(f"Unknown decision: {decision}")

    with transaction.atomic():
        wr = WithdrawalRequest.objects.select_for_update().select_related('vendor').get(pk=request_id)
        if wr.status != 'pending':
            raise AlreadyResolvedError(current_status=wr.status)

        if decision == APPROVED:
            wallet = lock_wallet(wr.vendor)
            # The balance may have moved since the request was opened
            if wr.amount > wallet.usable_balance:
                raise InsufficientFundsError(
                    current_balance=wallet.current_balance,
                    required_amount=wr.amount,
                    message=f"Only ₹{wallet.withdrawable_balance} is available for withdrawal.",
                )
            wr.transaction = post_transaction(
                wr.vendor,
                TXN_WITHDRAWAL,
                -wr.amount,
                description=f"Withdrawal #{wr.id}",
                reference_id=f"WR-{wr.id}",
                metadata={'withdrawal_request_id': wr.id, 'admin_id': admin_user.id, 'note': admin_note},
                processed_by='admin',
            )

        wr.status = decision
        wr.resolved_at = timezone.now()
        wr.resolved_by = admin_user
        wr.admin_note = admin_note
        wr.save(update_fields=['status', 'resolved_at', 'resolved_by', 'admin_note', 'transaction'])

        events.emit(events.WITHDRAWAL_RESOLVED, wr.vendor, amount=wr.amount, status=decision, request_id=wr.id)

    logger.info(f"Withdrawal request #{wr.id} {decision} by {admin_user}")
    return wr

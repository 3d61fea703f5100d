# fixifly/services/deposit_policy.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from fixifly.exceptions import DuplicateTransactionError, MandatoryDepositRequiredError
from fixifly.models import TXN_DEPOSIT, Vendor, VendorWallet, WalletTransaction
from fixifly.services import events
from fixifly.services.ledger import _q, lock_wallet, post_transaction

logger = logging.getLogger(__name__)

ACTION_MANDATORY_DEPOSIT = MandatoryDepositRequiredError.code


@dataclass(frozen=True)
class DepositDecision:
    can_accept_tasks: bool
    required_action: str | None = None
    required_amount: Decimal | None = None


def mandatory_deposit_amount() -> Decimal:
    return _q(getattr(settings, "FIXIFLY_MANDATORY_DEPOSIT_AMOUNT", "2000.00"))


def initial_deposit_amount() -> Decimal:
    return _q(getattr(settings, "FIXIFLY_INITIAL_DEPOSIT_AMOUNT", "3999.00"))


def evaluate(wallet: VendorWallet) -> DepositDecision:
    """
    Whether the vendor may accept new tasks. Reads the wallet only.

    A vendor who has never been assigned a task may accept freely; once the
    first assignment happened, acceptance needs the mandatory deposit. The
    account-activation (initial) deposit counts as satisfying it.
    """
    if wallet.first_task_assigned_at is None:
        return DepositDecision(can_accept_tasks=True)
    if wallet.has_mandatory_deposit or wallet.has_initial_deposit:
        return DepositDecision(can_accept_tasks=True)
    return DepositDecision(
        can_accept_tasks=False,
        required_action=ACTION_MANDATORY_DEPOSIT,
        required_amount=mandatory_deposit_amount(),
    )


def ensure_can_accept(wallet: VendorWallet) -> None:
    decision = evaluate(wallet)
    if not decision.can_accept_tasks:
        logger.warning(f"Vendor {wallet.vendor.vendor_id} blocked: mandatory deposit not paid")
        raise MandatoryDepositRequiredError(required_amount=decision.required_amount)


def record_first_assignment(wallet: VendorWallet) -> bool:
    """Stamp the first ever assignment. Returns False if already stamped."""
    with transaction.atomic():
        locked = lock_wallet(wallet.vendor)
        if locked.first_task_assigned_at is not None:
            return False
        locked.first_task_assigned_at = timezone.now()
        locked.save(update_fields=['first_task_assigned_at', 'updated_at'])

    wallet.first_task_assigned_at = locked.first_task_assigned_at
    logger.info(f"First task assignment recorded for vendor {locked.vendor.vendor_id}")
    return True


def _latch_mandatory(wallet: VendorWallet, changed: list) -> None:
    if wallet.latch_mandatory_deposit():
        changed.append('has_mandatory_deposit')
    threshold = mandatory_deposit_amount()
    if wallet.security_deposit < threshold:
        wallet.security_deposit = threshold
        changed.append('security_deposit')


def record_deposit(
    vendor: Vendor,
    amount,
    payment_reference: str,
    processed_by: str = 'vendor',
    metadata: dict | None = None,
) -> WalletTransaction:
    """
    Credit an externally verified payment and raise the deposit latches it
    earns. Replaying the same payment reference returns the original posting.
    """
    amount = _q(amount)
    if amount <= 0:
        raise ValueError("Deposit amount must be positive")
    if not payment_reference:
        raise ValueError("payment_reference is required")

    with transaction.atomic():
        try:
            txn = post_transaction(
                vendor,
                TXN_DEPOSIT,
                amount,
                description=f"Wallet deposit ({payment_reference})",
                reference_id=payment_reference,
                metadata=metadata or {},
                processed_by=processed_by,
            )
        except DuplicateTransactionError as exc:
            logger.info(f"Deposit {payment_reference} already recorded for vendor {vendor.vendor_id}")
            return exc.existing

        wallet = lock_wallet(vendor)
        changed = []
        if amount >= initial_deposit_amount():
            if wallet.latch_initial_deposit():
                changed.append('has_initial_deposit')
            _latch_mandatory(wallet, changed)
        elif wallet.current_balance >= mandatory_deposit_amount():
            _latch_mandatory(wallet, changed)

        if changed:
            wallet.save(update_fields=changed + ['updated_at'])
            logger.info(f"Deposit flags updated for vendor {vendor.vendor_id}: {changed}")

        events.emit(events.DEPOSIT_RECEIVED, vendor, amount=amount, reference=payment_reference)

    return txn


def grant_access(vendor: Vendor, admin_user) -> bool:
    """Admin override: mark the activation deposit as settled."""
    with transaction.atomic():
        wallet = lock_wallet(vendor)
        if not wallet.latch_initial_deposit():
            return False
        wallet.save(update_fields=['has_initial_deposit', 'updated_at'])

    logger.info(f"Admin {admin_user} granted task access to vendor {vendor.vendor_id}")
    return True

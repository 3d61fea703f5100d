# fixifly/services/ledger.py

from __future__ import annotations

import logging
from decimal import Decimal

from django.db import transaction
from django.db.models import Sum
from django.utils import timezone

from fixifly.exceptions import DuplicateTransactionError, InsufficientFundsError
from fixifly.models import (
    CREDIT_TYPES,
    DEBIT_TYPES,
    NO_OVERDRAW_TYPES,
    UNIQUE_REFERENCE_TYPES,
    TXN_CASH_COLLECTION_DEDUCTION,
    TXN_DEPOSIT,
    TXN_EARNING,
    TXN_MANUAL_ADJUSTMENT,
    TXN_PENALTY,
    TXN_REFUND,
    TXN_TASK_ACCEPTANCE_FEE,
    TXN_WITHDRAWAL,
    Vendor,
    VendorWallet,
    WalletTransaction,
)

logger = logging.getLogger(__name__)

ZERO = Decimal('0.00')

# Which running total each posting type feeds (absolute amounts)
AGGREGATE_FIELDS = {
    TXN_DEPOSIT: 'total_deposits',
    TXN_EARNING: 'total_earnings',
    TXN_PENALTY: 'total_penalties',
    TXN_WITHDRAWAL: 'total_withdrawals',
    TXN_TASK_ACCEPTANCE_FEE: 'total_task_acceptance_fees',
    TXN_CASH_COLLECTION_DEDUCTION: 'total_cash_collections',
    TXN_REFUND: 'total_refunds',
}


def _q(amount) -> Decimal:
    return Decimal(str(amount)).quantize(Decimal("0.01"))


def get_or_create_wallet(vendor: Vendor) -> VendorWallet:
    wallet, _ = VendorWallet.objects.get_or_create(vendor=vendor)
    return wallet


def lock_wallet(vendor: Vendor) -> VendorWallet:
    """
    Return the vendor's wallet row locked for update.
    Must be called inside transaction.atomic().
    """
    get_or_create_wallet(vendor)
    return VendorWallet.objects.select_for_update().select_related('vendor').get(vendor=vendor)


def _validate_sign(txn_type: str, amount: Decimal) -> None:
    if txn_type in CREDIT_TYPES and amount <= ZERO:
        raise ValueError(f"{txn_type} must be a positive amount, got {amount}")
    if txn_type in DEBIT_TYPES and amount >= ZERO:
        raise ValueError(f"{txn_type} must be a negative amount, got {amount}")
    if txn_type == TXN_MANUAL_ADJUSTMENT and amount == ZERO:
        raise ValueError("manual_adjustment cannot be zero")
    if txn_type not in CREDIT_TYPES and txn_type not in DEBIT_TYPES and txn_type != TXN_MANUAL_ADJUSTMENT:
        raise ValueError(f"Unknown transaction type: {txn_type}")


def find_posting(wallet: VendorWallet, txn_type: str, reference_id: str | None):
    if not reference_id:
        return None
    return (
        WalletTransaction.objects
        .filter(wallet=wallet, txn_type=txn_type, reference_id=reference_id)
        .first()
    )


def post_transaction(
    vendor: Vendor,
    txn_type: str,
    amount,
    description: str,
    reference_id: str | None = None,
    metadata: dict | None = None,
    processed_by: str = 'system',
) -> WalletTransaction:
    """
    Append one signed posting to the vendor's ledger and move the balance.

    Credits (deposit, earning, refund) are positive, debits (penalty,
    task_acceptance_fee, cash_collection_deduction, withdrawal) negative,
    manual_adjustment may be either sign. The row, the balance, the aggregate
    and `balance_after` are written in one atomic unit under the wallet lock.

    Raises InsufficientFundsError for no-overdraw debits that would take the
    balance below zero, DuplicateTransactionError when a unique-per-reference
    posting already exists. Nothing is written in either case.
    """
    amount = _q(amount)
    _validate_sign(txn_type, amount)

    with transaction.atomic():
        wallet = lock_wallet(vendor)

        if txn_type in UNIQUE_REFERENCE_TYPES:
            existing = find_posting(wallet, txn_type, reference_id)
            if existing is not None:
                raise DuplicateTransactionError(existing)

        new_balance = wallet.current_balance + amount
        if txn_type in NO_OVERDRAW_TYPES and new_balance < ZERO:
            logger.warning(
                f"Blocked {txn_type} of {amount} for vendor {vendor.vendor_id}: "
                f"balance {wallet.current_balance}"
            )
            raise InsufficientFundsError(
                current_balance=wallet.current_balance,
                required_amount=-amount,
            )

        txn = WalletTransaction.objects.create(
            transaction_id=WalletTransaction.new_transaction_id(txn_type, vendor.vendor_id),
            wallet=wallet,
            txn_type=txn_type,
            amount=amount,
            description=description[:255],
            reference_id=reference_id,
            balance_after=new_balance,
            metadata=metadata or {},
            processed_by=processed_by,
        )

        wallet.current_balance = new_balance
        wallet.last_transaction_at = timezone.now()
        update_fields = ['current_balance', 'last_transaction_at', 'updated_at']

        aggregate = AGGREGATE_FIELDS.get(txn_type)
        if aggregate:
            setattr(wallet, aggregate, getattr(wallet, aggregate) + abs(amount))
            update_fields.append(aggregate)

        wallet.save(update_fields=update_fields)

    logger.info(
        f"Posted {txn.transaction_id} {txn_type} {amount} for vendor {vendor.vendor_id} "
        f"(ref={reference_id}, balance={new_balance})"
    )
    return txn


def recompute_balance(wallet: VendorWallet) -> Decimal:
    """Sum of every posted amount; equals current_balance on a healthy wallet."""
    total = wallet.transactions.aggregate(total=Sum('amount'))['total']
    return _q(total or ZERO)

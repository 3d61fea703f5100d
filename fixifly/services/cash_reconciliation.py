# fixifly/services/cash_reconciliation.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from django.conf import settings
from django.db import transaction

from fixifly.exceptions import CashCollectionMismatchError, DuplicateTransactionError
from fixifly.models import TXN_CASH_COLLECTION_DEDUCTION, Vendor, WalletTransaction
from fixifly.services import events
from fixifly.services.ledger import post_transaction

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def _round(amount) -> Decimal:
    return Decimal(str(amount)).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class CashBreakdown:
    billing_amount: Decimal
    gst_rate: Decimal
    gst_amount: Decimal
    total_collectible: Decimal
    commission_rate: Decimal
    deduction: Decimal

    def as_metadata(self) -> dict:
        return {
            'billing_amount': str(self.billing_amount),
            'gst_rate': str(self.gst_rate),
            'gst_amount': str(self.gst_amount),
            'total_collectible': str(self.total_collectible),
            'commission_rate': str(self.commission_rate),
            'deduction': str(self.deduction),
        }


def commission_rate() -> Decimal:
    return Decimal(str(getattr(settings, "FIXIFLY_CASH_COMMISSION_RATE", "0.10")))


def default_gst_rate() -> Decimal:
    return Decimal(str(getattr(settings, "FIXIFLY_DEFAULT_GST_RATE", "0.18")))


def compute_cash_breakdown(billing_amount, gst_rate=None) -> CashBreakdown:
    """
    GST-inclusive total the customer paid in cash and the company's share of it.

    >>> compute_cash_breakdown(Decimal("1000"), Decimal("0.18")).deduction
    Decimal('118.00')
    """
    billing = _round(billing_amount)
    rate = default_gst_rate() if gst_rate is None else Decimal(str(gst_rate))
    if billing <= 0:
        raise ValueError("Billing amount must be positive")
    if rate < 0:
        raise ValueError("GST rate cannot be negative")

    total = _round(billing * (1 + rate))
    commission = commission_rate()
    return CashBreakdown(
        billing_amount=billing,
        gst_rate=rate,
        gst_amount=total - billing,
        total_collectible=total,
        commission_rate=commission,
        deduction=_round(total * commission),
    )


def reconcile_cash_collection(
    vendor: Vendor,
    task_reference: str,
    billing_amount,
    gst_rate=None,
    cash_photo: str | None = None,
) -> WalletTransaction:
    """
    Deduct the company's commission for a task the vendor was paid for in cash.

    The vendor keeps the cash, so only the deduction is posted. Raises
    InsufficientFundsError when the wallet cannot cover it. A task is
    reconciled at most once: a replay with the same total returns the
    original posting, a different total raises CashCollectionMismatchError.
    The caller is responsible for the customer's cash confirmation.
    """
    breakdown = compute_cash_breakdown(billing_amount, gst_rate)

    metadata = breakdown.as_metadata()
    if cash_photo:
        metadata['cash_photo'] = cash_photo

    try:
        with transaction.atomic():
            txn = post_transaction(
                vendor,
                TXN_CASH_COLLECTION_DEDUCTION,
                -breakdown.deduction,
                description=(
                    f"Cash collection commission for {task_reference} "
                    f"({breakdown.commission_rate * 100:.0f}% of ₹{breakdown.total_collectible})"
                ),
                reference_id=task_reference,
                metadata=metadata,
                processed_by='vendor',
            )
            events.emit(
                events.CASH_COLLECTED,
                vendor,
                amount=breakdown.deduction,
                reference=task_reference,
                total_collectible=breakdown.total_collectible,
            )
    except DuplicateTransactionError as exc:
        reconciled_total = exc.existing.metadata.get('total_collectible')
        if reconciled_total != str(breakdown.total_collectible):
            logger.warning(
                f"Cash collection for {task_reference} already reconciled at ₹{reconciled_total}, "
                f"refusing ₹{breakdown.total_collectible}"
            )
            raise CashCollectionMismatchError(exc.existing, breakdown.total_collectible)
        logger.info(f"Cash collection for {task_reference} already reconciled")
        return exc.existing

    return txn

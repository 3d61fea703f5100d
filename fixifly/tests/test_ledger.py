"""
Unit tests for the wallet ledger.
"""

import re
from decimal import Decimal

from django.test import TestCase

from fixifly.exceptions import DuplicateTransactionError, InsufficientFundsError
from fixifly.models import (
    TXN_CASH_COLLECTION_DEDUCTION,
    TXN_DEPOSIT,
    TXN_EARNING,
    TXN_MANUAL_ADJUSTMENT,
    TXN_PENALTY,
    TXN_TASK_ACCEPTANCE_FEE,
    TXN_WITHDRAWAL,
    VendorWallet,
    WalletTransaction,
)
from fixifly.services.ledger import post_transaction, recompute_balance

from .helpers import fund, make_vendor


class VendorProfileTest(TestCase):

    def test_vendor_user_gets_profile_and_wallet(self):
        vendor = make_vendor()
        self.assertTrue(re.fullmatch(r'FXV\d{4}', vendor.vendor_id))
        wallet = VendorWallet.objects.get(vendor=vendor)
        self.assertEqual(wallet.current_balance, Decimal('0.00'))
        self.assertFalse(wallet.has_mandatory_deposit)

    def test_vendor_ids_are_unique(self):
        first = make_vendor('v1')
        second = make_vendor('v2')
        self.assertNotEqual(first.vendor_id, second.vendor_id)


class PostTransactionTest(TestCase):

    def setUp(self):
        self.vendor = make_vendor()

    def test_balance_is_sum_of_postings(self):
        """Balance and every balance_after follow the running sum."""
        postings = [
            (TXN_DEPOSIT, Decimal('2500.00'), 'p1'),
            (TXN_PENALTY, Decimal('-100.00'), 'BK000001'),
            (TXN_EARNING, Decimal('575.50'), 'BK000002'),
            (TXN_CASH_COLLECTION_DEDUCTION, Decimal('-118.00'), 'BK000003'),
            (TXN_MANUAL_ADJUSTMENT, Decimal('-20.25'), None),
            (TXN_WITHDRAWAL, Decimal('-300.00'), 'WR-1'),
        ]
        for txn_type, amount, ref in postings:
            post_transaction(self.vendor, txn_type, amount, 'test', reference_id=ref)

        wallet = VendorWallet.objects.get(vendor=self.vendor)
        expected = sum(amount for _, amount, _ in postings)
        self.assertEqual(wallet.current_balance, expected)
        self.assertEqual(recompute_balance(wallet), expected)

        running = Decimal('0.00')
        for txn in wallet.transactions.order_by('id'):
            running += txn.amount
            self.assertEqual(txn.balance_after, running)

    def test_aggregates_track_absolute_amounts(self):
        fund(self.vendor, '1000')
        post_transaction(self.vendor, TXN_PENALTY, Decimal('-100'), 'late', reference_id='BK000001')
        post_transaction(self.vendor, TXN_PENALTY, Decimal('-100'), 'late', reference_id='BK000002')

        wallet = VendorWallet.objects.get(vendor=self.vendor)
        self.assertEqual(wallet.total_deposits, Decimal('1000.00'))
        self.assertEqual(wallet.total_penalties, Decimal('200.00'))
        self.assertIsNotNone(wallet.last_transaction_at)

    def test_wrong_sign_is_rejected(self):
        with self.assertRaises(ValueError):
            post_transaction(self.vendor, TXN_DEPOSIT, Decimal('-10'), 'bad')
        with self.assertRaises(ValueError):
            post_transaction(self.vendor, TXN_PENALTY, Decimal('10'), 'bad', reference_id='BK1')
        with self.assertRaises(ValueError):
            post_transaction(self.vendor, TXN_MANUAL_ADJUSTMENT, Decimal('0'), 'bad')
        self.assertEqual(WalletTransaction.objects.count(), 0)

    def test_no_overdraw_debits_are_refused(self):
        fund(self.vendor, '50')
        for txn_type in (TXN_CASH_COLLECTION_DEDUCTION, TXN_WITHDRAWAL, TXN_TASK_ACCEPTANCE_FEE):
            with self.assertRaises(InsufficientFundsError) as ctx:
                post_transaction(self.vendor, txn_type, Decimal('-50.01'), 'too much', reference_id='X1')
            self.assertEqual(ctx.exception.current_balance, Decimal('50.00'))
            self.assertEqual(ctx.exception.required_amount, Decimal('50.01'))

        wallet = VendorWallet.objects.get(vendor=self.vendor)
        self.assertEqual(wallet.current_balance, Decimal('50.00'))
        self.assertEqual(wallet.transactions.count(), 1)

    def test_penalty_may_overdraw(self):
        post_transaction(self.vendor, TXN_PENALTY, Decimal('-100'), 'declined', reference_id='BK000009')
        wallet = VendorWallet.objects.get(vendor=self.vendor)
        self.assertEqual(wallet.current_balance, Decimal('-100.00'))

    def test_duplicate_reference_is_refused(self):
        fund(self.vendor, '500')
        first = post_transaction(self.vendor, TXN_PENALTY, Decimal('-100'), 'declined', reference_id='BK000001')
        with self.assertRaises(DuplicateTransactionError) as ctx:
            post_transaction(self.vendor, TXN_PENALTY, Decimal('-100'), 'declined', reference_id='BK000001')
        self.assertEqual(ctx.exception.existing, first)
        self.assertEqual(VendorWallet.objects.get(vendor=self.vendor).current_balance, Decimal('400.00'))

    def test_manual_adjustments_do_not_collide(self):
        post_transaction(self.vendor, TXN_MANUAL_ADJUSTMENT, Decimal('10'), 'fix', reference_id='R1')
        post_transaction(self.vendor, TXN_MANUAL_ADJUSTMENT, Decimal('10'), 'fix', reference_id='R1')
        self.assertEqual(VendorWallet.objects.get(vendor=self.vendor).current_balance, Decimal('20.00'))

    def test_transactions_are_immutable(self):
        txn = fund(self.vendor, '100')
        txn.amount = Decimal('1000')
        with self.assertRaises(ValueError):
            txn.save()
        with self.assertRaises(ValueError):
            txn.delete()
        self.assertEqual(WalletTransaction.objects.get(pk=txn.pk).amount, Decimal('100.00'))

    def test_transaction_id_format(self):
        txn = fund(self.vendor, '100')
        self.assertTrue(txn.transaction_id.startswith(f'DEP_{self.vendor.vendor_id}_'))

"""
Management commands, Celery tasks and the event dispatcher.
"""

from datetime import timedelta
from decimal import Decimal
from io import StringIO
from unittest import mock

from django.core.management import call_command
from django.test import TestCase, override_settings
from django.utils import timezone

from fixifly.lifecycle import TaskState
from fixifly.models import (
    TXN_PENALTY,
    TXN_WITHDRAWAL,
    Booking,
    DomainEvent,
    Notification,
    VendorWallet,
    WalletTransaction,
    WithdrawalRequest,
)
from fixifly.services import task_lifecycle, withdrawals
from fixifly.services.events import TASK_ASSIGNED, dispatch_pending, emit
from fixifly.services.ledger import post_transaction
from fixifly.tasks import (
    auto_decline_overdue_assignments_task,
    dispatch_domain_events_task,
    retry_failed_penalties_task,
)

from .helpers import fund, make_admin, make_booking, make_vendor


def _make_overdue(task):
    type(task).objects.filter(pk=task.pk).update(respond_by=timezone.now() - timedelta(minutes=1))


class AutoDeclineCommandTest(TestCase):

    def setUp(self):
        self.vendor = make_vendor()
        self.booking = task_lifecycle.assign(make_booking(), self.vendor)
        _make_overdue(self.booking)

    def test_dry_run_changes_nothing(self):
        out = StringIO()
        call_command('auto_decline_overdue_tasks', '--dry-run', stdout=out)

        self.assertIn(self.booking.reference, out.getvalue())
        self.assertIn('DRY RUN', out.getvalue())
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.lifecycle_state, TaskState.ASSIGNED)
        self.assertFalse(WalletTransaction.objects.filter(txn_type=TXN_PENALTY).exists())

    def test_declines_and_penalises(self):
        out = StringIO()
        call_command('auto_decline_overdue_tasks', stdout=out)

        self.assertIn('Auto-declined 1 assignment(s)', out.getvalue())
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.lifecycle_state, TaskState.DECLINED)
        self.assertEqual(self.booking.penalty_status, 'applied')

        # A second run finds nothing left to decline
        out = StringIO()
        call_command('auto_decline_overdue_tasks', stdout=out)
        self.assertIn('No overdue assignments found', out.getvalue())
        self.assertEqual(WalletTransaction.objects.filter(txn_type=TXN_PENALTY).count(), 1)

    def test_answered_tasks_are_left_alone(self):
        Booking.objects.filter(pk=self.booking.pk).update(vendor_response='accepted')

        out = StringIO()
        call_command('auto_decline_overdue_tasks', stdout=out)
        self.assertIn('No overdue assignments found', out.getvalue())


class AuditWalletLedgerCommandTest(TestCase):

    def setUp(self):
        self.vendor = make_vendor()
        fund(self.vendor, '500')
        task_lifecycle.decline(task_lifecycle.assign(make_booking(), self.vendor), self.vendor)

    def test_consistent_ledger(self):
        out = StringIO()
        call_command('audit_wallet_ledger', stdout=out)
        self.assertIn('All 1 wallet(s) consistent', out.getvalue())

    def test_reports_balance_drift(self):
        VendorWallet.objects.filter(vendor=self.vendor).update(current_balance=Decimal('999.00'))

        out = StringIO()
        call_command('audit_wallet_ledger', '--vendor', self.vendor.vendor_id, stdout=out)
        output = out.getvalue()
        self.assertIn('999.00 != ledger sum 400.00', output)
        self.assertIn('1 problem(s) found', output)

    def test_paid_withdrawal_is_consistent(self):
        wr = withdrawals.request_withdrawal(self.vendor, Decimal('100'))
        withdrawals.resolve_withdrawal(wr.pk, withdrawals.APPROVED, make_admin())

        out = StringIO()
        call_command('audit_wallet_ledger', stdout=out)
        self.assertIn('All 1 wallet(s) consistent', out.getvalue())

    def test_reports_approved_request_without_posting(self):
        wr = WithdrawalRequest.objects.create(vendor=self.vendor, amount=Decimal('100'), status='approved')

        out = StringIO()
        call_command('audit_wallet_ledger', stdout=out)
        self.assertIn(f'withdrawal request #{wr.id} approved without a posting', out.getvalue())
        self.assertIn('1 problem(s) found', out.getvalue())

    def test_reports_withdrawal_posting_without_request(self):
        txn = post_transaction(self.vendor, TXN_WITHDRAWAL, Decimal('-100'), 'Manual payout', reference_id='WR-999')

        out = StringIO()
        call_command('audit_wallet_ledger', stdout=out)
        self.assertIn(f'withdrawal {txn.transaction_id} has no approved request', out.getvalue())
        self.assertIn('1 problem(s) found', out.getvalue())

    def test_single_vendor_filter(self):
        make_vendor('other')
        out = StringIO()
        call_command('audit_wallet_ledger', '--vendor', self.vendor.vendor_id, stdout=out)
        self.assertIn('All 1 wallet(s) consistent', out.getvalue())


class CeleryTaskTest(TestCase):

    def setUp(self):
        self.vendor = make_vendor()

    def test_auto_decline_task(self):
        booking = task_lifecycle.assign(make_booking(), self.vendor)
        _make_overdue(booking)

        result = auto_decline_overdue_assignments_task()
        self.assertEqual(result, {'declined': [booking.reference]})

    def test_retry_failed_penalties_task(self):
        booking = task_lifecycle.assign(make_booking(), self.vendor)
        with mock.patch(
            'fixifly.services.task_lifecycle.apply_decline_penalty',
            side_effect=RuntimeError('ledger unavailable'),
        ):
            task_lifecycle.decline(booking, self.vendor, reason='busy')

        booking.refresh_from_db()
        self.assertEqual(booking.penalty_status, 'failed')

        self.assertEqual(retry_failed_penalties_task(), {'recovered': 1})
        booking.refresh_from_db()
        self.assertEqual(booking.penalty_status, 'applied')
        self.assertEqual(retry_failed_penalties_task(), {'recovered': 0})

    def test_dispatch_task(self):
        task_lifecycle.assign(make_booking(), self.vendor)
        self.assertEqual(dispatch_domain_events_task(), {'delivered': 1})


class DispatchPendingTest(TestCase):

    def setUp(self):
        self.vendor = make_vendor()

    def test_each_event_is_delivered_once(self):
        emit(TASK_ASSIGNED, self.vendor, reference='BK000001', respond_by='10:25')

        self.assertEqual(dispatch_pending(), 1)
        self.assertEqual(dispatch_pending(), 0)

        note = Notification.objects.get(user=self.vendor.user)
        self.assertEqual(note.message, 'New task BK000001 assigned to you. Respond by 10:25.')
        event = DomainEvent.objects.get()
        self.assertIsNotNone(event.dispatched_at)
        self.assertEqual(event.attempts, 1)

    def test_failed_delivery_stays_pending(self):
        emit(TASK_ASSIGNED, self.vendor, reference='BK000001', respond_by='10:25')

        with mock.patch('fixifly.services.events._deliver', side_effect=RuntimeError('redis down')):
            self.assertEqual(dispatch_pending(), 0)

        event = DomainEvent.objects.get()
        self.assertIsNone(event.dispatched_at)
        self.assertEqual(event.attempts, 1)
        self.assertIn('redis down', event.last_error)
        self.assertFalse(Notification.objects.exists())

        # Picked up again on the next run
        self.assertEqual(dispatch_pending(), 1)

    @override_settings(FIXIFLY_EVENT_MAX_ATTEMPTS=3)
    def test_exhausted_events_are_skipped(self):
        stuck = emit(TASK_ASSIGNED, self.vendor, reference='BK000001', respond_by='10:25')
        DomainEvent.objects.filter(pk=stuck.pk).update(attempts=3)
        emit(TASK_ASSIGNED, self.vendor, reference='BK000002', respond_by='10:30')

        self.assertEqual(dispatch_pending(), 1)
        self.assertIsNone(DomainEvent.objects.get(pk=stuck.pk).dispatched_at)
        self.assertIn('BK000002', Notification.objects.get().message)

    def test_failing_events_do_not_starve_fresh_ones(self):
        retried = emit(TASK_ASSIGNED, self.vendor, reference='BK000001', respond_by='10:25')
        DomainEvent.objects.filter(pk=retried.pk).update(attempts=2)
        fresh = emit(TASK_ASSIGNED, self.vendor, reference='BK000002', respond_by='10:30')

        self.assertEqual(dispatch_pending(limit=1), 1)
        self.assertIsNotNone(DomainEvent.objects.get(pk=fresh.pk).dispatched_at)
        self.assertIsNone(DomainEvent.objects.get(pk=retried.pk).dispatched_at)

    def test_unknown_template_falls_back_to_event_type(self):
        emit('SomethingNew', self.vendor)
        dispatch_pending()
        self.assertEqual(Notification.objects.get().message, 'SomethingNew')

"""
API tests for task actions, wallet and withdrawal endpoints.
"""

from decimal import Decimal

from rest_framework import status
from rest_framework.test import APITestCase

from fixifly.lifecycle import TaskState
from fixifly.models import (
    TXN_CASH_COLLECTION_DEDUCTION,
    TXN_PENALTY,
    Notification,
    VendorWallet,
    WalletTransaction,
)
from fixifly.services import deposit_policy, task_lifecycle, withdrawals
from fixifly.services.events import dispatch_pending

from .helpers import fund, make_admin, make_booking, make_ticket, make_vendor


class TaskActionAPITest(APITestCase):

    def setUp(self):
        self.vendor = make_vendor()
        self.admin = make_admin()
        self.booking = make_booking()
        self.client.force_authenticate(user=self.admin)
        response = self.client.post(
            f'/api/bookings/{self.booking.pk}/assign/', {'vendor_id': self.vendor.vendor_id}, format='json',
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.client.force_authenticate(user=self.vendor.user)

    def test_accept_without_deposit_is_forbidden_with_code(self):
        response = self.client.post(f'/api/bookings/{self.booking.pk}/accept/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data['error'], 'MANDATORY_DEPOSIT_REQUIRED')
        self.assertEqual(response.data['required_amount'], '2000.00')

    def test_accept_after_deposit(self):
        response = self.client.post(
            '/api/wallet/deposit/', {'amount': '2000', 'payment_reference': 'pay_001'}, format='json',
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertTrue(response.data['wallet']['has_mandatory_deposit'])

        response = self.client.post(f'/api/bookings/{self.booking.pk}/accept/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['task']['lifecycle_state'], 'ACCEPTED')

    def test_decline_twice(self):
        url = f'/api/bookings/{self.booking.pk}/decline/'
        first = self.client.post(url, {'reason': 'too far'}, format='json')
        self.assertEqual(first.status_code, status.HTTP_200_OK)
        self.assertFalse(first.data['already_declined'])

        second = self.client.post(url, {'reason': 'too far'}, format='json')
        self.assertEqual(second.status_code, status.HTTP_200_OK)
        self.assertTrue(second.data['already_declined'])
        self.assertEqual(second.data['detail'], 'Task has already been declined')

        self.assertEqual(WalletTransaction.objects.filter(txn_type=TXN_PENALTY).count(), 1)

    def test_start_before_accept_is_conflict(self):
        response = self.client.post(f'/api/bookings/{self.booking.pk}/start/')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error'], 'INVALID_TRANSITION')
        self.assertEqual(response.data['current_state'], 'ASSIGNED')

    def test_vendor_cannot_assign(self):
        response = self.client.post(
            f'/api/bookings/{self.booking.pk}/assign/', {'vendor_id': self.vendor.vendor_id}, format='json',
        )
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_other_vendors_tasks_are_hidden(self):
        stranger = make_vendor('stranger')
        self.client.force_authenticate(user=stranger.user)
        response = self.client.post(f'/api/bookings/{self.booking.pk}/accept/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_list_only_own_tasks(self):
        make_booking()
        response = self.client.get('/api/bookings/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 1)


class CompletionAPITest(APITestCase):

    def setUp(self):
        self.vendor = make_vendor()
        deposit_policy.record_deposit(self.vendor, Decimal('2500'), 'pay_001')
        ticket = task_lifecycle.assign(make_ticket(), self.vendor)
        ticket = task_lifecycle.accept(ticket, self.vendor)
        self.ticket = task_lifecycle.start(ticket, self.vendor)
        self.client.force_authenticate(user=self.vendor.user)

    def test_cash_completion_needs_confirmation(self):
        response = self.client.post(
            f'/api/support_tickets/{self.ticket.pk}/complete/',
            {'payment_method': 'cash', 'billing_amount': '1000', 'gst_rate': '0.18'},
            format='json',
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'CASH_NOT_CONFIRMED')

    def test_confirmed_cash_completion(self):
        response = self.client.post(
            f'/api/support_tickets/{self.ticket.pk}/complete/',
            {'payment_method': 'cash', 'billing_amount': '1000', 'gst_rate': '0.18', 'confirmed': True},
            format='json',
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['task']['vendor_status'], 'Completed')
        self.assertEqual(VendorWallet.objects.get(vendor=self.vendor).current_balance, Decimal('2382.00'))

    def test_online_completion_requires_reference(self):
        response = self.client.post(
            f'/api/support_tickets/{self.ticket.pk}/complete/',
            {'payment_method': 'online', 'billing_amount': '1000'},
            format='json',
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('payment_reference', response.data)

    def test_vendor_cancel(self):
        response = self.client.post(
            f'/api/support_tickets/{self.ticket.pk}/cancel/', {'reason': 'part unavailable'}, format='json',
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['task']['cancelled_by'], 'vendor')
        self.assertEqual(response.data['task']['penalty_status'], 'applied')


class WalletAPITest(APITestCase):

    def setUp(self):
        self.vendor = make_vendor()
        self.client.force_authenticate(user=self.vendor.user)

    def test_wallet_summary(self):
        fund(self.vendor, '750')
        response = self.client.get('/api/wallet/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['current_balance'], '750.00')
        self.assertEqual(response.data['security_deposit'], '0.00')
        self.assertEqual(response.data['usable_balance'], '750.00')
        self.assertFalse(response.data['has_mandatory_deposit'])

    def test_transactions_filtered_by_type(self):
        fund(self.vendor, '750')
        task_lifecycle.decline(task_lifecycle.assign(make_booking(), self.vendor), self.vendor)

        response = self.client.get('/api/wallet/transactions/', {'type': 'penalty'})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 1)
        self.assertEqual(response.data['results'][0]['amount'], '-100.00')

    def test_wallet_tells_deposit_prompt_from_top_up(self):
        response = self.client.get('/api/wallet/')
        self.assertTrue(response.data['can_accept_tasks'])
        self.assertIsNone(response.data['required_action'])
        self.assertIsNone(response.data['required_amount'])

        task_lifecycle.assign(make_booking(), self.vendor)
        response = self.client.get('/api/wallet/')
        self.assertFalse(response.data['can_accept_tasks'])
        self.assertEqual(response.data['required_action'], 'MANDATORY_DEPOSIT_REQUIRED')
        self.assertEqual(response.data['required_amount'], '2000.00')

    def _task_in_progress(self):
        deposit_policy.grant_access(self.vendor, make_admin())
        booking = task_lifecycle.assign(make_booking(), self.vendor)
        booking = task_lifecycle.accept(booking, self.vendor)
        return task_lifecycle.start(booking, self.vendor)

    def test_cash_collection_requires_confirmation(self):
        booking = self._task_in_progress()
        payload = {'task_reference': booking.reference, 'billing_amount': '1000', 'gst_rate': '0.18'}

        response = self.client.post('/api/wallet/cash-collection/', payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'CASH_NOT_CONFIRMED')

    def test_cash_collection_needs_task_in_progress(self):
        fund(self.vendor, '500')
        booking = task_lifecycle.assign(make_booking(), self.vendor)
        payload = {'task_reference': booking.reference, 'billing_amount': '1', 'confirmed': True}

        response = self.client.post('/api/wallet/cash-collection/', payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error'], 'INVALID_TRANSITION')
        self.assertEqual(response.data['current_state'], 'ASSIGNED')
        self.assertFalse(WalletTransaction.objects.filter(txn_type=TXN_CASH_COLLECTION_DEDUCTION).exists())

    def test_early_small_collection_cannot_undercut_completion(self):
        fund(self.vendor, '20000')
        booking = task_lifecycle.assign(make_booking(), self.vendor)
        early = {'task_reference': booking.reference, 'billing_amount': '1', 'confirmed': True}
        response = self.client.post('/api/wallet/cash-collection/', early, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

        deposit_policy.grant_access(self.vendor, make_admin())
        task_lifecycle.start(task_lifecycle.accept(booking, self.vendor), self.vendor)

        response = self.client.post(
            f'/api/bookings/{booking.pk}/complete/',
            {'payment_method': 'cash', 'billing_amount': '100000', 'gst_rate': '0.18', 'confirmed': True},
            format='json',
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        deductions = WalletTransaction.objects.filter(txn_type=TXN_CASH_COLLECTION_DEDUCTION)
        self.assertEqual([txn.amount for txn in deductions], [Decimal('-11800.00')])

    def test_completion_for_a_different_total_is_refused(self):
        fund(self.vendor, '20000')
        booking = self._task_in_progress()
        early = {'task_reference': booking.reference, 'billing_amount': '1', 'gst_rate': '0.18', 'confirmed': True}
        response = self.client.post('/api/wallet/cash-collection/', early, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)

        response = self.client.post(
            f'/api/bookings/{booking.pk}/complete/',
            {'payment_method': 'cash', 'billing_amount': '100000', 'gst_rate': '0.18', 'confirmed': True},
            format='json',
        )
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error'], 'CASH_COLLECTION_MISMATCH')
        self.assertEqual(response.data['reconciled_total'], '1.18')
        self.assertEqual(response.data['total_collectible'], '118000.00')

        booking.refresh_from_db()
        self.assertEqual(booking.lifecycle_state, TaskState.IN_PROGRESS)

    def test_completion_after_matching_collection_posts_once(self):
        fund(self.vendor, '500')
        booking = self._task_in_progress()
        payload = {'task_reference': booking.reference, 'billing_amount': '1000', 'gst_rate': '0.18', 'confirmed': True}
        self.client.post('/api/wallet/cash-collection/', payload, format='json')

        response = self.client.post(
            f'/api/bookings/{booking.pk}/complete/',
            {'payment_method': 'cash', 'billing_amount': '1000', 'gst_rate': '0.18', 'confirmed': True},
            format='json',
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(WalletTransaction.objects.filter(txn_type=TXN_CASH_COLLECTION_DEDUCTION).count(), 1)
        self.assertEqual(VendorWallet.objects.get(vendor=self.vendor).current_balance, Decimal('382.00'))

    def test_cash_collection_insufficient_balance(self):
        booking = self._task_in_progress()
        payload = {
            'task_reference': booking.reference, 'billing_amount': '1000', 'gst_rate': '0.18', 'confirmed': True,
        }
        response = self.client.post('/api/wallet/cash-collection/', payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'INSUFFICIENT_WALLET_BALANCE')
        self.assertEqual(response.data['required_amount'], '118.00')

    def test_cash_collection(self):
        fund(self.vendor, '500')
        booking = self._task_in_progress()
        payload = {
            'task_reference': booking.reference, 'billing_amount': '1000', 'gst_rate': '0.18',
            'confirmed': True, 'cash_photo': 'https://cdn.example/cash.jpg',
        }
        response = self.client.post('/api/wallet/cash-collection/', payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['transaction']['amount'], '-118.00')
        self.assertEqual(response.data['wallet']['current_balance'], '382.00')

    def test_cash_collection_for_unknown_task(self):
        payload = {'task_reference': 'BK999999', 'billing_amount': '1000', 'confirmed': True}
        response = self.client.post('/api/wallet/cash-collection/', payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_wallet_requires_vendor(self):
        self.client.force_authenticate(user=make_admin())
        response = self.client.get('/api/wallet/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)


class WithdrawalAPITest(APITestCase):

    def setUp(self):
        self.vendor = make_vendor()
        self.admin = make_admin()
        fund(self.vendor, '800')

    def test_request_and_approve_once(self):
        self.client.force_authenticate(user=self.vendor.user)
        response = self.client.post('/api/withdrawals/', {'amount': '500'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        wr_id = response.data['id']

        response = self.client.put(f'/api/withdrawals/{wr_id}/approve/', {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        self.client.force_authenticate(user=self.admin)
        response = self.client.put(f'/api/withdrawals/{wr_id}/approve/', {'admin_note': 'Paid'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'approved')
        self.assertIsNotNone(response.data['transaction_id'])

        response = self.client.put(f'/api/withdrawals/{wr_id}/approve/', {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error'], 'ALREADY_RESOLVED')
        self.assertEqual(response.data['current_status'], 'approved')

        self.assertEqual(VendorWallet.objects.get(vendor=self.vendor).current_balance, Decimal('300.00'))

    def test_request_over_withdrawable(self):
        self.client.force_authenticate(user=self.vendor.user)
        response = self.client.post('/api/withdrawals/', {'amount': '900'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'INSUFFICIENT_WALLET_BALANCE')

    def test_vendor_sees_own_requests(self):
        withdrawals.request_withdrawal(self.vendor, Decimal('100'))
        other = make_vendor('other')
        fund(other, '300')
        withdrawals.request_withdrawal(other, Decimal('100'))

        self.client.force_authenticate(user=self.vendor.user)
        response = self.client.get('/api/withdrawals/')
        self.assertEqual(response.data['count'], 1)

        self.client.force_authenticate(user=self.admin)
        response = self.client.get('/api/withdrawals/')
        self.assertEqual(response.data['count'], 2)


class AdminWalletAPITest(APITestCase):

    def setUp(self):
        self.vendor = make_vendor()
        self.admin = make_admin()
        self.client.force_authenticate(user=self.admin)

    def test_adjust(self):
        response = self.client.post(
            f'/api/admin/wallets/{self.vendor.vendor_id}/adjust/',
            {'amount': '-150', 'description': 'Damaged part'},
            format='json',
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['wallet']['current_balance'], '-150.00')

    def test_refund_penalty(self):
        task_lifecycle.decline(task_lifecycle.assign(make_booking(), self.vendor), self.vendor)
        reference = WalletTransaction.objects.get(txn_type=TXN_PENALTY).reference_id

        url = f'/api/admin/wallets/{self.vendor.vendor_id}/refund-penalty/'
        response = self.client.post(url, {'task_reference': reference}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['wallet']['current_balance'], '0.00')

        response = self.client.post(url, {'task_reference': reference}, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

    def test_grant_access(self):
        response = self.client.post(f'/api/admin/wallets/{self.vendor.vendor_id}/grant-access/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['wallet']['has_initial_deposit'])
        self.assertTrue(response.data['wallet']['can_accept_tasks'])

    def test_vendor_cannot_use_admin_tools(self):
        self.client.force_authenticate(user=self.vendor.user)
        response = self.client.post(f'/api/admin/wallets/{self.vendor.vendor_id}/grant-access/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)


class NotificationAPITest(APITestCase):

    def test_dispatched_events_reach_the_inbox(self):
        vendor = make_vendor()
        task_lifecycle.assign(make_booking(), vendor)
        dispatch_pending()

        self.client.force_authenticate(user=vendor.user)
        response = self.client.get('/api/notifications/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 1)
        self.assertIn('assigned to you', response.data[0]['message'])

        note_id = response.data[0]['id']
        response = self.client.post(f'/api/notifications/read/{note_id}/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(Notification.objects.get(pk=note_id).read)

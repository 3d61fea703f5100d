# fixifly/views.py

import logging

from django.db.models import Q
from django.shortcuts import get_object_or_404
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action, api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from .exceptions import InvalidTransitionError, WalletError
from .lifecycle import TaskState
from .models import (
    Booking,
    Notification,
    SupportTicket,
    Vendor,
    WalletTransaction,
    WithdrawalRequest,
)
from .permissions import IsAuthenticatedAndAdmin, IsAuthenticatedAndVendor, IsVendorOrAdmin
from .serializers import (
    AdjustmentSerializer,
    AssignSerializer,
    BookingSerializer,
    CancelSerializer,
    CashCollectionSerializer,
    CompleteTaskSerializer,
    DepositSerializer,
    NotificationSerializer,
    ReasonSerializer,
    RefundPenaltySerializer,
    ResolveWithdrawalSerializer,
    SupportTicketSerializer,
    WalletSerializer,
    WalletTransactionSerializer,
    WithdrawalRequestSerializer,
)
from .services import deposit_policy, penalties, task_lifecycle, withdrawals
from .services.cash_reconciliation import reconcile_cash_collection
from .services.ledger import get_or_create_wallet

logger = logging.getLogger(__name__)


def _error_response(exc: WalletError) -> Response:
    return Response(exc.as_response_data(), status=exc.http_status)


def _cash_not_confirmed() -> Response:
    return Response(
        {
            'detail': 'Please confirm that the customer paid in cash before submitting.',
            'error': 'CASH_NOT_CONFIRMED',
        },
        status=status.HTTP_400_BAD_REQUEST,
    )


def _is_admin(user) -> bool:
    return bool(user.is_staff or getattr(user, 'role', '') == 'admin')


# -------------------
# TASKS
# -------------------

class TaskViewSet(
    mixins.CreateModelMixin,
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    mixins.UpdateModelMixin,
    viewsets.GenericViewSet,
):
    """
    Shared endpoints for bookings and support tickets. Subclasses only set
    the model and serializer; the lifecycle is the same for both.
    """

    model = None
    permission_classes = [IsVendorOrAdmin]

    VENDOR_ACTIONS = ('accept', 'decline', 'start', 'complete')
    ADMIN_ACTIONS = ('create', 'update', 'partial_update', 'assign', 'reassign')

    def get_queryset(self):
        """
        - Vendor: tasks assigned to them.
        - Admin/staff: all tasks.
        """
        user = self.request.user
        qs = self.model.objects.select_related('vendor').order_by('-created_at')
        if _is_admin(user):
            return qs
        return qs.filter(vendor__user=user)

    def get_permissions(self):
        if self.action in self.VENDOR_ACTIONS:
            return [IsAuthenticatedAndVendor()]
        if self.action in self.ADMIN_ACTIONS:
            return [IsAuthenticatedAndAdmin()]
        return [permission() for permission in self.permission_classes]

    def _respond(self, task, http_status=status.HTTP_200_OK, **extra):
        data = {'task': self.get_serializer(task).data}
        data.update(extra)
        return Response(data, status=http_status)

    @action(detail=True, methods=['post'])
    def assign(self, request, pk=None):
        """
        POST /api/<tasks>/{id}/assign/
        Body: { "vendor_id": "FXV0001" }
        """
        task = self.get_object()
        serializer = AssignSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        vendor = serializer.validated_data['vendor_id']

        try:
            task = task_lifecycle.assign(task, vendor, assigned_by=request.user)
        except WalletError as exc:
            return _error_response(exc)
        except ValueError as exc:
            return Response({'detail': str(exc)}, status=status.HTTP_400_BAD_REQUEST)
        return self._respond(task)

    @action(detail=True, methods=['post'])
    def reassign(self, request, pk=None):
        """
        POST /api/<tasks>/{id}/reassign/
        Creates a new assigned task for another vendor from a declined one.
        """
        task = self.get_object()
        serializer = AssignSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        vendor = serializer.validated_data['vendor_id']

        try:
            fresh = task_lifecycle.reassign_declined_task(task, vendor, assigned_by=request.user)
        except WalletError as exc:
            return _error_response(exc)
        except ValueError as exc:
            return Response({'detail': str(exc)}, status=status.HTTP_400_BAD_REQUEST)
        return self._respond(fresh, http_status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['post'])
    def accept(self, request, pk=None):
        """
        POST /api/<tasks>/{id}/accept/
        403 MANDATORY_DEPOSIT_REQUIRED when the deposit gate is closed.
        """
        task = self.get_object()
        try:
            task = task_lifecycle.accept(task, request.user.vendor_profile)
        except WalletError as exc:
            return _error_response(exc)
        return self._respond(task)

    @action(detail=True, methods=['post'])
    def decline(self, request, pk=None):
        """
        POST /api/<tasks>/{id}/decline/
        Body: { "reason": "too far" }
        Declining twice is reported, not failed.
        """
        task = self.get_object()
        serializer = ReasonSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            task, already_declined = task_lifecycle.decline(
                task, request.user.vendor_profile, reason=serializer.validated_data['reason'],
            )
        except WalletError as exc:
            return _error_response(exc)

        if already_declined:
            return self._respond(task, detail='Task has already been declined', already_declined=True)
        return self._respond(task, already_declined=False)

    @action(detail=True, methods=['post'])
    def start(self, request, pk=None):
        task = self.get_object()
        try:
            task = task_lifecycle.start(task, request.user.vendor_profile)
        except WalletError as exc:
            return _error_response(exc)
        return self._respond(task)

    @action(detail=True, methods=['post'])
    def complete(self, request, pk=None):
        """
        POST /api/<tasks>/{id}/complete/
        Body: {
            "payment_method": "cash" | "online",
            "billing_amount": 1000,
            "gst_rate": 0.18,              (cash, optional)
            "confirmed": true,             (cash, required)
            "cash_photo": "https://...",   (cash, optional)
            "payment_reference": "pay_x",  (online, required)
            "spare_amount": 0, "travel_amount": 0
        }
        """
        task = self.get_object()
        serializer = CompleteTaskSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        if data['payment_method'] == 'cash' and not data['confirmed']:
            return _cash_not_confirmed()

        try:
            task = task_lifecycle.complete(
                task,
                request.user.vendor_profile,
                payment_method=data['payment_method'],
                billing_amount=data['billing_amount'],
                gst_rate=data.get('gst_rate'),
                payment_reference=data['payment_reference'],
                cash_photo=data['cash_photo'] or None,
                spare_amount=data['spare_amount'],
                travel_amount=data['travel_amount'],
            )
        except WalletError as exc:
            return _error_response(exc)
        except ValueError as exc:
            return Response({'detail': str(exc)}, status=status.HTTP_400_BAD_REQUEST)
        return self._respond(task)

    @action(detail=True, methods=['post'])
    def cancel(self, request, pk=None):
        """
        POST /api/<tasks>/{id}/cancel/
        Vendors pay the cancellation penalty; admins may opt in with
        "apply_penalty": true.
        """
        task = self.get_object()
        serializer = CancelSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        if _is_admin(request.user):
            kwargs = {
                'cancelled_by': 'admin',
                'apply_penalty': bool(serializer.validated_data['apply_penalty']),
            }
        else:
            kwargs = {'cancelled_by': 'vendor', 'vendor': request.user.vendor_profile}

        try:
            task = task_lifecycle.cancel(task, reason=serializer.validated_data['reason'], **kwargs)
        except WalletError as exc:
            return _error_response(exc)
        return self._respond(task)


class BookingViewSet(TaskViewSet):
    model = Booking
    queryset = Booking.objects.all()
    serializer_class = BookingSerializer


class SupportTicketViewSet(TaskViewSet):
    model = SupportTicket
    queryset = SupportTicket.objects.all()
    serializer_class = SupportTicketSerializer


# -------------------
# WALLET (vendor)
# -------------------

class WalletViewSet(viewsets.GenericViewSet):
    permission_classes = [IsAuthenticatedAndVendor]
    serializer_class = WalletTransactionSerializer

    def list(self, request):
        """GET /api/wallet/"""
        wallet = get_or_create_wallet(request.user.vendor_profile)
        return Response(WalletSerializer(wallet).data)

    @action(detail=False, methods=['get'])
    def transactions(self, request):
        """GET /api/wallet/transactions/?type=penalty"""
        wallet = get_or_create_wallet(request.user.vendor_profile)
        qs = WalletTransaction.objects.filter(wallet=wallet).order_by('-id')
        txn_type = request.query_params.get('type')
        if txn_type:
            qs = qs.filter(txn_type=txn_type)

        page = self.paginate_queryset(qs)
        if page is not None:
            return self.get_paginated_response(self.get_serializer(page, many=True).data)
        return Response(self.get_serializer(qs, many=True).data)

    @action(detail=False, methods=['post'])
    def deposit(self, request):
        """
        POST /api/wallet/deposit/
        Body: { "amount": 2000, "payment_reference": "pay_123" }
        The payment reference comes from the gateway after verification.
        """
        serializer = DepositSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        vendor = request.user.vendor_profile

        try:
            txn = deposit_policy.record_deposit(
                vendor,
                serializer.validated_data['amount'],
                serializer.validated_data['payment_reference'],
            )
        except WalletError as exc:
            return _error_response(exc)

        wallet = get_or_create_wallet(vendor)
        return Response(
            {
                'transaction': WalletTransactionSerializer(txn).data,
                'wallet': WalletSerializer(wallet).data,
            },
            status=status.HTTP_201_CREATED,
        )

    @action(detail=False, methods=['post'], url_path='cash-collection')
    def cash_collection(self, request):
        """
        POST /api/wallet/cash-collection/
        Body: { "task_reference": "BK000001", "billing_amount": 1000,
                "gst_rate": 0.18, "confirmed": true, "cash_photo": "..." }
        """
        serializer = CashCollectionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        if not data['confirmed']:
            return _cash_not_confirmed()

        vendor = request.user.vendor_profile
        reference = data['task_reference']
        task = (
            Booking.objects.filter(reference=reference, vendor=vendor).first()
            or SupportTicket.objects.filter(reference=reference, vendor=vendor).first()
        )
        if task is None:
            return Response({'detail': 'Task not found.'}, status=status.HTTP_404_NOT_FOUND)

        # Cash is only collected for work that is under way
        if task.lifecycle_state != TaskState.IN_PROGRESS:
            return _error_response(InvalidTransitionError(
                current_state=task.lifecycle_state.value,
                message=f"Cash can only be collected for a task in progress; {reference} is "
                        f"{task.lifecycle_state.value}.",
            ))

        try:
            txn = reconcile_cash_collection(
                vendor,
                reference,
                data['billing_amount'],
                gst_rate=data.get('gst_rate'),
                cash_photo=data['cash_photo'] or None,
            )
        except WalletError as exc:
            return _error_response(exc)

        wallet = get_or_create_wallet(vendor)
        return Response(
            {
                'transaction': WalletTransactionSerializer(txn).data,
                'wallet': WalletSerializer(wallet).data,
            },
            status=status.HTTP_201_CREATED,
        )


# -------------------
# WITHDRAWALS
# -------------------

class WithdrawalRequestViewSet(
    mixins.CreateModelMixin,
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    viewsets.GenericViewSet,
):
    serializer_class = WithdrawalRequestSerializer
    permission_classes = [IsVendorOrAdmin]

    def get_queryset(self):
        user = self.request.user
        qs = WithdrawalRequest.objects.select_related('vendor', 'transaction')
        if _is_admin(user):
            return qs
        return qs.filter(vendor__user=user)

    def get_permissions(self):
        if self.action == 'create':
            return [IsAuthenticatedAndVendor()]
        if self.action in ('approve', 'decline'):
            return [IsAuthenticatedAndAdmin()]
        return super().get_permissions()

    def create(self, request, *args, **kwargs):
        """
        POST /api/withdrawals/
        Body: { "amount": 500 }
        """
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            wr = withdrawals.request_withdrawal(
                request.user.vendor_profile, serializer.validated_data['amount'],
            )
        except WalletError as exc:
            return _error_response(exc)
        return Response(self.get_serializer(wr).data, status=status.HTTP_201_CREATED)

    def _resolve(self, request, pk, decision):
        serializer = ResolveWithdrawalSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        wr = self.get_object()

        try:
            wr = withdrawals.resolve_withdrawal(
                wr.pk, decision, request.user, admin_note=serializer.validated_data['admin_note'],
            )
        except WalletError as exc:
            return _error_response(exc)
        return Response(self.get_serializer(wr).data)

    @action(detail=True, methods=['put'])
    def approve(self, request, pk=None):
        """PUT /api/withdrawals/{id}/approve/"""
        return self._resolve(request, pk, withdrawals.APPROVED)

    @action(detail=True, methods=['put'])
    def decline(self, request, pk=None):
        """PUT /api/withdrawals/{id}/decline/"""
        return self._resolve(request, pk, withdrawals.DECLINED)


# -------------------
# ADMIN WALLET TOOLING
# -------------------

class AdminWalletViewSet(viewsets.GenericViewSet):
    """Per-vendor wallet corrections, addressed by the public vendor id."""

    permission_classes = [IsAuthenticatedAndAdmin]
    queryset = Vendor.objects.select_related('user', 'wallet')
    lookup_field = 'vendor_id'
    serializer_class = WalletSerializer

    def list(self, request):
        """GET /api/admin/wallets/?search=FXV0001"""
        qs = self.get_queryset().order_by('vendor_id')
        search = request.query_params.get('search')
        if search:
            qs = qs.filter(
                Q(vendor_id__icontains=search)
                | Q(first_name__icontains=search)
                | Q(last_name__icontains=search)
            )
        wallets = [get_or_create_wallet(vendor) for vendor in qs]
        page = self.paginate_queryset(wallets)
        if page is not None:
            return self.get_paginated_response(WalletSerializer(page, many=True).data)
        return Response(WalletSerializer(wallets, many=True).data)

    def retrieve(self, request, vendor_id=None):
        vendor = self.get_object()
        return Response(WalletSerializer(get_or_create_wallet(vendor)).data)

    @action(detail=True, methods=['post'])
    def adjust(self, request, vendor_id=None):
        """
        POST /api/admin/wallets/{vendor_id}/adjust/
        Body: { "amount": -150, "description": "Damaged part" }
        """
        vendor = self.get_object()
        serializer = AdjustmentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        txn = penalties.apply_manual_adjustment(
            vendor,
            serializer.validated_data['amount'],
            serializer.validated_data['description'],
            request.user,
        )
        return Response(
            {
                'transaction': WalletTransactionSerializer(txn).data,
                'wallet': WalletSerializer(get_or_create_wallet(vendor)).data,
            },
            status=status.HTTP_201_CREATED,
        )

    @action(detail=True, methods=['post'], url_path='refund-penalty')
    def refund_penalty(self, request, vendor_id=None):
        """
        POST /api/admin/wallets/{vendor_id}/refund-penalty/
        Body: { "task_reference": "BK000007", "note": "Customer rescheduled" }
        """
        vendor = self.get_object()
        serializer = RefundPenaltySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            txn = penalties.refund_penalty(
                vendor,
                serializer.validated_data['task_reference'],
                request.user,
                note=serializer.validated_data['note'],
            )
        except WalletError as exc:
            return _error_response(exc)
        except ValueError as exc:
            return Response({'detail': str(exc)}, status=status.HTTP_404_NOT_FOUND)

        return Response(
            {
                'transaction': WalletTransactionSerializer(txn).data,
                'wallet': WalletSerializer(get_or_create_wallet(vendor)).data,
            },
            status=status.HTTP_201_CREATED,
        )

    @action(detail=True, methods=['post'], url_path='grant-access')
    def grant_access(self, request, vendor_id=None):
        """POST /api/admin/wallets/{vendor_id}/grant-access/"""
        vendor = self.get_object()
        changed = deposit_policy.grant_access(vendor, request.user)
        return Response(
            {
                'detail': 'Access granted.' if changed else 'Vendor already had access.',
                'wallet': WalletSerializer(get_or_create_wallet(vendor)).data,
            }
        )


# -------------------
# NOTIFICATIONS
# -------------------

@api_view(["GET"])
@permission_classes([IsAuthenticated])
def list_notifications(request):
    notes = Notification.objects.filter(user=request.user).order_by("-id")
    return Response(NotificationSerializer(notes, many=True).data)


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def mark_as_read(request, pk):
    note = get_object_or_404(Notification, id=pk, user=request.user)
    note.read = True
    note.save(update_fields=['read'])
    return Response({"status": "ok"})

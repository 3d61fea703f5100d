# fixifly/serializers.py

from decimal import Decimal

from rest_framework import serializers

from .models import (
    Booking,
    Notification,
    SupportTicket,
    Vendor,
    VendorWallet,
    WalletTransaction,
    WithdrawalRequest,
)
from .services.deposit_policy import evaluate

MONEY = dict(max_digits=12, decimal_places=2)


class VendorSerializer(serializers.ModelSerializer):
    username = serializers.CharField(source='user.username', read_only=True)

    class Meta:
        model = Vendor
        fields = ['id', 'vendor_id', 'username', 'first_name', 'last_name', 'is_active']
        read_only_fields = ['vendor_id']


class WalletSerializer(serializers.ModelSerializer):
    vendor_id = serializers.CharField(source='vendor.vendor_id', read_only=True)
    usable_balance = serializers.DecimalField(read_only=True, **MONEY)
    withdrawable_balance = serializers.DecimalField(read_only=True, **MONEY)
    can_accept_tasks = serializers.SerializerMethodField()
    required_action = serializers.SerializerMethodField()
    required_amount = serializers.SerializerMethodField()

    class Meta:
        model = VendorWallet
        fields = [
            'vendor_id',
            'current_balance',
            'security_deposit',
            'usable_balance',
            'withdrawable_balance',
            'has_initial_deposit',
            'has_mandatory_deposit',
            'can_accept_tasks',
            'required_action',
            'required_amount',
            'first_task_assigned_at',
            'total_deposits',
            'total_earnings',
            'total_penalties',
            'total_withdrawals',
            'total_task_acceptance_fees',
            'total_cash_collections',
            'total_refunds',
            'total_tasks_completed',
            'total_tasks_declined',
            'total_tasks_cancelled',
            'last_transaction_at',
        ]
        read_only_fields = fields

    # The deposit gate tells the app which prompt to show (deposit vs top-up)
    def get_can_accept_tasks(self, obj):
        return evaluate(obj).can_accept_tasks

    def get_required_action(self, obj):
        return evaluate(obj).required_action

    def get_required_amount(self, obj):
        amount = evaluate(obj).required_amount
        return str(amount) if amount is not None else None


class WalletTransactionSerializer(serializers.ModelSerializer):
    class Meta:
        model = WalletTransaction
        fields = [
            'transaction_id',
            'txn_type',
            'amount',
            'description',
            'reference_id',
            'balance_after',
            'metadata',
            'processed_by',
            'created_at',
        ]
        read_only_fields = fields


class TaskSerializerMixin(serializers.Serializer):
    vendor_id = serializers.CharField(source='vendor.vendor_id', read_only=True, default=None)
    lifecycle_state = serializers.SerializerMethodField()

    def get_lifecycle_state(self, obj):
        return obj.lifecycle_state.value


TASK_FIELDS = [
    'id',
    'reference',
    'vendor_id',
    'lifecycle_state',
    'customer_name',
    'customer_phone',
    'billing_amount',
    'priority',
    'scheduled_at',
    'vendor_response',
    'assigned_at',
    'respond_by',
    'responded_at',
    'decline_reason',
    'started_at',
    'completed_at',
    'cancelled_at',
    'cancelled_by',
    'cancel_reason',
    'payment_method',
    'payment_reference',
    'penalty_status',
    'previous_attempt',
    'created_at',
]

# Lifecycle fields only change through the task actions
TASK_READ_ONLY = [f for f in TASK_FIELDS if f not in (
    'customer_name', 'customer_phone', 'billing_amount', 'priority', 'scheduled_at',
)]


class BookingSerializer(TaskSerializerMixin, serializers.ModelSerializer):
    class Meta:
        model = Booking
        fields = TASK_FIELDS + ['status', 'service_name', 'address']
        read_only_fields = TASK_READ_ONLY + ['status']


class SupportTicketSerializer(TaskSerializerMixin, serializers.ModelSerializer):
    class Meta:
        model = SupportTicket
        fields = TASK_FIELDS + ['vendor_status', 'subject', 'description']
        read_only_fields = TASK_READ_ONLY + ['vendor_status']


class WithdrawalRequestSerializer(serializers.ModelSerializer):
    vendor_id = serializers.CharField(source='vendor.vendor_id', read_only=True)
    transaction_id = serializers.CharField(source='transaction.transaction_id', read_only=True, default=None)

    class Meta:
        model = WithdrawalRequest
        fields = [
            'id',
            'vendor_id',
            'amount',
            'status',
            'requested_at',
            'resolved_at',
            'admin_note',
            'transaction_id',
        ]
        read_only_fields = ['status', 'requested_at', 'resolved_at', 'admin_note', 'transaction_id']

    def validate_amount(self, value):
        if value <= 0:
            raise serializers.ValidationError('Amount must be positive.')
        return value


class NotificationSerializer(serializers.ModelSerializer):
    class Meta:
        model = Notification
        fields = ['id', 'message', 'read', 'created_at']
        read_only_fields = ['message', 'created_at']


# --- ACTION PAYLOADS ---

class AssignSerializer(serializers.Serializer):
    vendor_id = serializers.CharField()

    def validate_vendor_id(self, value):
        try:
            return Vendor.objects.get(vendor_id=value)
        except Vendor.DoesNotExist:
            raise serializers.ValidationError('Vendor not found.')


class ReasonSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default='')


class CancelSerializer(ReasonSerializer):
    apply_penalty = serializers.BooleanField(required=False, allow_null=True, default=None)


class CompleteTaskSerializer(serializers.Serializer):
    payment_method = serializers.ChoiceField(choices=['online', 'cash'])
    billing_amount = serializers.DecimalField(min_value=Decimal('0.01'), **MONEY)
    gst_rate = serializers.DecimalField(max_digits=5, decimal_places=4, required=False, min_value=Decimal('0'))
    payment_reference = serializers.CharField(required=False, allow_blank=True, default='')
    confirmed = serializers.BooleanField(required=False, default=False)
    cash_photo = serializers.CharField(required=False, allow_blank=True, default='')
    spare_amount = serializers.DecimalField(required=False, default=Decimal('0'), min_value=Decimal('0'), **MONEY)
    travel_amount = serializers.DecimalField(required=False, default=Decimal('0'), min_value=Decimal('0'), **MONEY)

    def validate(self, attrs):
        if attrs['payment_method'] == 'online' and not attrs.get('payment_reference'):
            raise serializers.ValidationError({'payment_reference': 'Required for online payments.'})
        return attrs


class DepositSerializer(serializers.Serializer):
    amount = serializers.DecimalField(min_value=Decimal('0.01'), **MONEY)
    payment_reference = serializers.CharField(max_length=64)


class CashCollectionSerializer(serializers.Serializer):
    task_reference = serializers.CharField(max_length=20)
    billing_amount = serializers.DecimalField(min_value=Decimal('0.01'), **MONEY)
    gst_rate = serializers.DecimalField(max_digits=5, decimal_places=4, required=False, min_value=Decimal('0'))
    confirmed = serializers.BooleanField(required=False, default=False)
    cash_photo = serializers.CharField(required=False, allow_blank=True, default='')


class AdjustmentSerializer(serializers.Serializer):
    amount = serializers.DecimalField(**MONEY)
    description = serializers.CharField(max_length=255)

    def validate_amount(self, value):
        if value == 0:
            raise serializers.ValidationError('Amount cannot be zero.')
        return value


class RefundPenaltySerializer(serializers.Serializer):
    task_reference = serializers.CharField(max_length=20)
    note = serializers.CharField(required=False, allow_blank=True, default='')


class ResolveWithdrawalSerializer(serializers.Serializer):
    admin_note = serializers.CharField(required=False, allow_blank=True, default='')

# fixifly/models.py

import uuid
from decimal import Decimal

from django.conf import settings
from django.contrib.auth.models import AbstractUser
from django.db import models
from django.db.models import Q

# --- TRANSACTION TYPES ---

TXN_DEPOSIT = 'deposit'
TXN_EARNING = 'earning'
TXN_PENALTY = 'penalty'
TXN_TASK_ACCEPTANCE_FEE = 'task_acceptance_fee'
TXN_CASH_COLLECTION_DEDUCTION = 'cash_collection_deduction'
TXN_WITHDRAWAL = 'withdrawal'
TXN_MANUAL_ADJUSTMENT = 'manual_adjustment'
TXN_REFUND = 'refund'

CREDIT_TYPES = (TXN_DEPOSIT, TXN_EARNING, TXN_REFUND)
DEBIT_TYPES = (TXN_PENALTY, TXN_TASK_ACCEPTANCE_FEE, TXN_CASH_COLLECTION_DEDUCTION, TXN_WITHDRAWAL)

# Debits that may never take the balance below zero
NO_OVERDRAW_TYPES = (TXN_CASH_COLLECTION_DEDUCTION, TXN_WITHDRAWAL, TXN_TASK_ACCEPTANCE_FEE)

# At most one posting of these types per (wallet, reference_id)
UNIQUE_REFERENCE_TYPES = (
    TXN_DEPOSIT,
    TXN_EARNING,
    TXN_PENALTY,
    TXN_CASH_COLLECTION_DEDUCTION,
    TXN_WITHDRAWAL,
    TXN_TASK_ACCEPTANCE_FEE,
)


class CustomUser(AbstractUser):
    ROLE_CHOICES = (
        ('user', 'User'),
        ('vendor', 'Vendor'),
        ('admin', 'Admin'),
    )
    role = models.CharField(max_length=10, choices=ROLE_CHOICES, default='user')
    phone_number = models.CharField(max_length=15, blank=True, null=True)

    @property
    def is_platform_admin(self) -> bool:
        return self.is_staff or self.role == 'admin'

    def __str__(self):
        return self.username


class Vendor(models.Model):
    user = models.OneToOneField(
        CustomUser,
        on_delete=models.CASCADE,
        related_name='vendor_profile',
    )
    vendor_id = models.CharField(max_length=20, unique=True, blank=True)
    first_name = models.CharField(max_length=80, blank=True)
    last_name = models.CharField(max_length=80, blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def save(self, *args, **kwargs):
        super().save(*args, **kwargs)
        # Stable public id derived from the primary key (FXV0001, FXV0002, ...)
        if not self.vendor_id:
            self.vendor_id = f"FXV{self.pk:04d}"
            super().save(update_fields=['vendor_id'])

    @property
    def full_name(self) -> str:
        name = f"{self.first_name} {self.last_name}".strip()
        return name or self.user.username

    def __str__(self):
        return f"{self.vendor_id} ({self.full_name})"


class VendorWallet(models.Model):
    """
    Money state of one vendor.

    `current_balance` is only ever changed by the ledger service together with
    a WalletTransaction row. The deposit flags are latches: they can be raised
    through `latch_initial_deposit` / `latch_mandatory_deposit` and `save()`
    refuses to lower them again.
    """

    LATCH_FIELDS = ('has_initial_deposit', 'has_mandatory_deposit')

    vendor = models.OneToOneField(
        Vendor,
        on_delete=models.CASCADE,
        related_name='wallet',
    )
    current_balance = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    security_deposit = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))

    has_initial_deposit = models.BooleanField(default=False)
    has_mandatory_deposit = models.BooleanField(default=False)
    first_task_assigned_at = models.DateTimeField(null=True, blank=True)

    total_deposits = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    total_earnings = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    total_penalties = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    total_withdrawals = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    total_task_acceptance_fees = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    total_cash_collections = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    total_refunds = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))

    total_tasks_completed = models.PositiveIntegerField(default=0)
    total_tasks_declined = models.PositiveIntegerField(default=0)
    total_tasks_cancelled = models.PositiveIntegerField(default=0)

    last_transaction_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    @classmethod
    def from_db(cls, db, field_names, values):
        instance = super().from_db(db, field_names, values)
        instance._loaded_latches = {
            name: getattr(instance, name)
            for name in cls.LATCH_FIELDS
            if name in field_names
        }
        return instance

    def save(self, *args, **kwargs):
        loaded = getattr(self, '_loaded_latches', {})
        for name, was_set in loaded.items():
            if was_set and not getattr(self, name):
                raise ValueError(f"{name} is a one-way flag and cannot be cleared")
        super().save(*args, **kwargs)
        self._loaded_latches = {name: getattr(self, name) for name in self.LATCH_FIELDS}

    def latch_initial_deposit(self) -> bool:
        """Raise the activation-deposit flag. Returns True if it changed."""
        if self.has_initial_deposit:
            return False
        self.has_initial_deposit = True
        return True

    def latch_mandatory_deposit(self) -> bool:
        """Raise the mandatory-deposit flag. Returns True if it changed."""
        if self.has_mandatory_deposit:
            return False
        self.has_mandatory_deposit = True
        return True

    @property
    def usable_balance(self) -> Decimal:
        return self.current_balance - self.security_deposit

    @property
    def withdrawable_balance(self) -> Decimal:
        return max(Decimal('0.00'), self.usable_balance)

    @property
    def can_accept_tasks(self) -> bool:
        from fixifly.services.deposit_policy import evaluate
        return evaluate(self).can_accept_tasks

    def __str__(self):
        return f"Wallet({self.vendor.vendor_id}: ₹{self.current_balance})"


class WalletTransaction(models.Model):
    """
    Immutable ledger row. Corrections are new offsetting rows, never edits.
    """

    TYPE_CHOICES = (
        (TXN_DEPOSIT, 'Deposit'),
        (TXN_EARNING, 'Earning'),
        (TXN_PENALTY, 'Penalty'),
        (TXN_TASK_ACCEPTANCE_FEE, 'Task acceptance fee'),
        (TXN_CASH_COLLECTION_DEDUCTION, 'Cash collection deduction'),
        (TXN_WITHDRAWAL, 'Withdrawal'),
        (TXN_MANUAL_ADJUSTMENT, 'Manual adjustment'),
        (TXN_REFUND, 'Refund'),
    )

    PROCESSED_BY_CHOICES = (
        ('system', 'System'),
        ('vendor', 'Vendor'),
        ('admin', 'Admin'),
    )

    transaction_id = models.CharField(max_length=64, unique=True)
    wallet = models.ForeignKey(
        VendorWallet,
        on_delete=models.PROTECT,
        related_name='transactions',
    )
    txn_type = models.CharField(max_length=32, choices=TYPE_CHOICES)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    description = models.CharField(max_length=255)
    reference_id = models.CharField(max_length=64, null=True, blank=True)
    balance_after = models.DecimalField(max_digits=12, decimal_places=2)
    metadata = models.JSONField(default=dict, blank=True)
    processed_by = models.CharField(max_length=10, choices=PROCESSED_BY_CHOICES, default='system')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['id']
        indexes = [
            models.Index(fields=['wallet', 'created_at'], name='fx_txn_wallet_time_idx'),
            models.Index(fields=['txn_type', 'reference_id'], name='fx_txn_type_ref_idx'),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['wallet', 'txn_type', 'reference_id'],
                condition=Q(txn_type__in=UNIQUE_REFERENCE_TYPES),
                name='fx_txn_unique_reference_per_type',
            ),
        ]

    PREFIXES = {
        TXN_DEPOSIT: 'DEP',
        TXN_EARNING: 'EARN',
        TXN_PENALTY: 'PEN',
        TXN_TASK_ACCEPTANCE_FEE: 'FEE',
        TXN_CASH_COLLECTION_DEDUCTION: 'CASH',
        TXN_WITHDRAWAL: 'WTH',
        TXN_MANUAL_ADJUSTMENT: 'ADJ',
        TXN_REFUND: 'REF',
    }

    @classmethod
    def new_transaction_id(cls, txn_type: str, vendor_id: str) -> str:
        prefix = cls.PREFIXES.get(txn_type, 'TXN')
        return f"{prefix}_{vendor_id}_{uuid.uuid4().hex[:12].upper()}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("Wallet transactions are immutable; post an offsetting transaction instead.")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError("Wallet transactions are retained indefinitely and cannot be deleted.")

    @property
    def is_credit(self) -> bool:
        return self.amount > 0

    def __str__(self):
        return f"{self.transaction_id} {self.txn_type} {self.amount}"


# --- TASKS (bookings and support tickets share one lifecycle) ---

class AssignableTask(models.Model):
    """
    Fields shared by every task flavor. The per-flavor status string is the
    outward representation; `fixifly.lifecycle` maps it onto TaskState.
    """

    PRIORITY_CHOICES = (
        ('low', 'Low'),
        ('medium', 'Medium'),
        ('high', 'High'),
        ('urgent', 'Urgent'),
    )
    VENDOR_RESPONSE_CHOICES = (
        ('none', 'No response'),
        ('accepted', 'Accepted'),
        ('declined', 'Declined'),
    )
    CANCELLED_BY_CHOICES = (
        ('vendor', 'Vendor'),
        ('admin', 'Admin'),
        ('system', 'System'),
    )
    PAYMENT_METHOD_CHOICES = (
        ('online', 'Online'),
        ('cash', 'Cash'),
    )
    PENALTY_STATUS_CHOICES = (
        ('none', 'None'),
        ('applied', 'Applied'),
        ('failed', 'Failed'),
    )

    REFERENCE_PREFIX = 'TSK'

    reference = models.CharField(max_length=20, unique=True, blank=True)
    vendor = models.ForeignKey(
        Vendor,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='+',
    )
    customer_name = models.CharField(max_length=120)
    customer_phone = models.CharField(max_length=15, blank=True)
    billing_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    priority = models.CharField(max_length=10, choices=PRIORITY_CHOICES, default='medium')
    scheduled_at = models.DateTimeField(null=True, blank=True)

    vendor_response = models.CharField(max_length=10, choices=VENDOR_RESPONSE_CHOICES, default='none')
    assigned_at = models.DateTimeField(null=True, blank=True)
    respond_by = models.DateTimeField(null=True, blank=True)
    responded_at = models.DateTimeField(null=True, blank=True)
    decline_reason = models.TextField(blank=True)

    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancelled_by = models.CharField(max_length=10, choices=CANCELLED_BY_CHOICES, null=True, blank=True)
    cancel_reason = models.TextField(blank=True)

    payment_method = models.CharField(max_length=10, choices=PAYMENT_METHOD_CHOICES, null=True, blank=True)
    payment_reference = models.CharField(max_length=100, blank=True)
    penalty_status = models.CharField(max_length=10, choices=PENALTY_STATUS_CHOICES, default='none')

    previous_attempt = models.OneToOneField(
        'self',
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='next_attempt',
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        super().save(*args, **kwargs)
        if not self.reference:
            self.reference = f"{self.REFERENCE_PREFIX}{self.pk:06d}"
            super().save(update_fields=['reference'])

    @property
    def lifecycle_state(self):
        from fixifly.lifecycle import adapter_for
        return adapter_for(self).to_state(self)


class Booking(AssignableTask):
    STATUS_CHOICES = (
        ('waiting_for_engineer', 'Waiting for engineer'),
        ('confirmed', 'Confirmed'),
        ('in_progress', 'In progress'),
        ('completed', 'Completed'),
        ('cancelled', 'Cancelled'),
        ('declined', 'Declined'),
    )

    REFERENCE_PREFIX = 'BK'
    CARRY_OVER_FIELDS = (
        'customer_name', 'customer_phone', 'billing_amount', 'priority',
        'scheduled_at', 'service_name', 'address',
    )

    status = models.CharField(max_length=24, choices=STATUS_CHOICES, default='waiting_for_engineer')
    service_name = models.CharField(max_length=120, blank=True)
    address = models.TextField(blank=True)

    class Meta:
        indexes = [
            models.Index(fields=['vendor', 'status'], name='fx_booking_vendor_status_idx'),
            models.Index(fields=['vendor_response', 'respond_by'], name='fx_booking_sla_idx'),
        ]

    def __str__(self):
        return f"Booking {self.reference} ({self.status})"


class SupportTicket(AssignableTask):
    VENDOR_STATUS_CHOICES = (
        ('Pending', 'Pending'),
        ('Accepted', 'Accepted'),
        ('Completed', 'Completed'),
        ('Declined', 'Declined'),
        ('Cancelled', 'Cancelled'),
    )

    REFERENCE_PREFIX = 'TK'
    CARRY_OVER_FIELDS = (
        'customer_name', 'customer_phone', 'billing_amount', 'priority',
        'scheduled_at', 'subject', 'description',
    )

    vendor_status = models.CharField(max_length=12, choices=VENDOR_STATUS_CHOICES, default='Pending')
    subject = models.CharField(max_length=200)
    description = models.TextField(blank=True)

    class Meta:
        indexes = [
            models.Index(fields=['vendor', 'vendor_status'], name='fx_ticket_vendor_status_idx'),
            models.Index(fields=['vendor_response', 'respond_by'], name='fx_ticket_sla_idx'),
        ]

    def __str__(self):
        return f"SupportTicket {self.reference} ({self.vendor_status})"


class WithdrawalRequest(models.Model):
    STATUS_CHOICES = (
        ('pending', 'Pending'),
        ('approved', 'Approved'),
        ('declined', 'Declined'),
    )

    vendor = models.ForeignKey(
        Vendor,
        on_delete=models.PROTECT,
        related_name='withdrawal_requests',
    )
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default='pending')
    requested_at = models.DateTimeField(auto_now_add=True)
    resolved_at = models.DateTimeField(null=True, blank=True)
    resolved_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='resolved_withdrawals',
    )
    admin_note = models.TextField(blank=True)
    transaction = models.OneToOneField(
        WalletTransaction,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='withdrawal_request',
    )

    class Meta:
        ordering = ['-requested_at']
        indexes = [
            models.Index(fields=['vendor', 'status'], name='fx_withdrawal_vendor_idx'),
        ]

    def __str__(self):
        return f"Withdrawal #{self.id} {self.vendor.vendor_id} ₹{self.amount} ({self.status})"


# --- OUTBOX / NOTIFICATIONS ---

class DomainEvent(models.Model):
    """Outbox row written in the same transaction as the change it describes."""

    event_type = models.CharField(max_length=50)
    vendor = models.ForeignKey(
        Vendor,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='events',
    )
    payload = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    dispatched_at = models.DateTimeField(null=True, blank=True)
    attempts = models.PositiveIntegerField(default=0)
    last_error = models.TextField(blank=True)

    class Meta:
        ordering = ['id']
        indexes = [
            models.Index(fields=['dispatched_at'], name='fx_event_pending_idx'),
        ]

    def __str__(self):
        return f"{self.event_type} #{self.id}"


class Notification(models.Model):
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE)
    message = models.TextField()
    event = models.ForeignKey(
        DomainEvent,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='notifications',
    )
    read = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.user} - {self.message[:30]}"

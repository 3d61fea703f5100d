# fixifly/admin.py

from django.contrib import admin, messages
from django.contrib.auth.admin import UserAdmin

from .exceptions import WalletError
from .models import (
    Booking,
    CustomUser,
    DomainEvent,
    Notification,
    SupportTicket,
    Vendor,
    VendorWallet,
    WalletTransaction,
    WithdrawalRequest,
)
from .services import deposit_policy, withdrawals


@admin.register(CustomUser)
class CustomUserAdmin(UserAdmin):
    list_display = ('username', 'email', 'role', 'is_staff')
    list_filter = ('role', 'is_staff')
    fieldsets = UserAdmin.fieldsets + (
        ('Fixifly', {'fields': ('role', 'phone_number')}),
    )


@admin.register(Vendor)
class VendorAdmin(admin.ModelAdmin):
    list_display = ('vendor_id', 'first_name', 'last_name', 'user', 'is_active')
    search_fields = ('vendor_id', 'first_name', 'last_name', 'user__username')
    actions = ['grant_task_access']

    def grant_task_access(self, request, queryset):
        """
        Admin action: treat the activation deposit as settled for the
        selected vendors so they can accept tasks.
        """
        count = sum(1 for vendor in queryset if deposit_policy.grant_access(vendor, request.user))
        self.message_user(request, f"Granted task access to {count} vendor(s).")

    grant_task_access.short_description = "Grant task access (mark activation deposit settled)"


@admin.register(VendorWallet)
class VendorWalletAdmin(admin.ModelAdmin):
    list_display = (
        'vendor',
        'current_balance',
        'security_deposit',
        'has_initial_deposit',
        'has_mandatory_deposit',
        'total_penalties',
        'last_transaction_at',
    )
    list_filter = ('has_initial_deposit', 'has_mandatory_deposit')
    search_fields = ('vendor__vendor_id',)
    # Money and latches only move through the ledger services
    readonly_fields = [f.name for f in VendorWallet._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(WalletTransaction)
class WalletTransactionAdmin(admin.ModelAdmin):
    list_display = ('transaction_id', 'wallet', 'txn_type', 'amount', 'balance_after', 'reference_id', 'created_at')
    list_filter = ('txn_type', 'processed_by')
    search_fields = ('transaction_id', 'reference_id', 'wallet__vendor__vendor_id')
    readonly_fields = [f.name for f in WalletTransaction._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


class TaskAdmin(admin.ModelAdmin):
    search_fields = ('reference', 'customer_name', 'vendor__vendor_id')
    readonly_fields = (
        'reference',
        'vendor_response',
        'assigned_at',
        'respond_by',
        'responded_at',
        'started_at',
        'completed_at',
        'cancelled_at',
        'cancelled_by',
        'penalty_status',
        'previous_attempt',
    )


@admin.register(Booking)
class BookingAdmin(TaskAdmin):
    list_display = ('reference', 'vendor', 'status', 'vendor_response', 'respond_by', 'penalty_status')
    list_filter = ('status', 'vendor_response', 'penalty_status', 'priority')


@admin.register(SupportTicket)
class SupportTicketAdmin(TaskAdmin):
    list_display = ('reference', 'vendor', 'vendor_status', 'vendor_response', 'respond_by', 'penalty_status')
    list_filter = ('vendor_status', 'vendor_response', 'penalty_status', 'priority')


@admin.register(WithdrawalRequest)
class WithdrawalRequestAdmin(admin.ModelAdmin):
    list_display = ('id', 'vendor', 'amount', 'status', 'requested_at', 'resolved_at')
    list_filter = ('status',)
    search_fields = ('vendor__vendor_id',)
    readonly_fields = ('vendor', 'amount', 'status', 'requested_at', 'resolved_at', 'resolved_by', 'transaction')
    actions = ['approve_selected', 'decline_selected']

    def _resolve(self, request, queryset, decision):
        done = 0
        for wr in queryset:
            try:
                withdrawals.resolve_withdrawal(wr.pk, decision, request.user)
                done += 1
            except WalletError as exc:
                self.message_user(request, f"#{wr.pk}: {exc.message}", level=messages.WARNING)
        self.message_user(request, f"{done} withdrawal request(s) {decision}.")

    def approve_selected(self, request, queryset):
        self._resolve(request, queryset, withdrawals.APPROVED)

    def decline_selected(self, request, queryset):
        self._resolve(request, queryset, withdrawals.DECLINED)


@admin.register(DomainEvent)
class DomainEventAdmin(admin.ModelAdmin):
    list_display = ('id', 'event_type', 'vendor', 'created_at', 'dispatched_at', 'attempts')
    list_filter = ('event_type',)


admin.site.register(Notification)

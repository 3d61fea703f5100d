import decimal

import django.contrib.auth.models
import django.contrib.auth.validators
import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


TASK_PRIORITY_CHOICES = [('low', 'Low'), ('medium', 'Medium'), ('high', 'High'), ('urgent', 'Urgent')]
VENDOR_RESPONSE_CHOICES = [('none', 'No response'), ('accepted', 'Accepted'), ('declined', 'Declined')]
CANCELLED_BY_CHOICES = [('vendor', 'Vendor'), ('admin', 'Admin'), ('system', 'System')]
PAYMENT_METHOD_CHOICES = [('online', 'Online'), ('cash', 'Cash')]
PENALTY_STATUS_CHOICES = [('none', 'None'), ('applied', 'Applied'), ('failed', 'Failed')]


def task_fields():
    return [
        ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
        ('reference', models.CharField(blank=True, max_length=20, unique=True)),
        ('customer_name', models.CharField(max_length=120)),
        ('customer_phone', models.CharField(blank=True, max_length=15)),
        ('billing_amount', models.DecimalField(decimal_places=2, default=decimal.Decimal('0.00'), max_digits=12)),
        ('priority', models.CharField(choices=TASK_PRIORITY_CHOICES, default='medium', max_length=10)),
        ('scheduled_at', models.DateTimeField(blank=True, null=True)),
        ('vendor_response', models.CharField(choices=VENDOR_RESPONSE_CHOICES, default='none', max_length=10)),
        ('assigned_at', models.DateTimeField(blank=True, null=True)),
        ('respond_by', models.DateTimeField(blank=True, null=True)),
        ('responded_at', models.DateTimeField(blank=True, null=True)),
        ('decline_reason', models.TextField(blank=True)),
        ('started_at', models.DateTimeField(blank=True, null=True)),
        ('completed_at', models.DateTimeField(blank=True, null=True)),
        ('cancelled_at', models.DateTimeField(blank=True, null=True)),
        ('cancelled_by', models.CharField(blank=True, choices=CANCELLED_BY_CHOICES, max_length=10, null=True)),
        ('cancel_reason', models.TextField(blank=True)),
        ('payment_method', models.CharField(blank=True, choices=PAYMENT_METHOD_CHOICES, max_length=10, null=True)),
        ('payment_reference', models.CharField(blank=True, max_length=100)),
        ('penalty_status', models.CharField(choices=PENALTY_STATUS_CHOICES, default='none', max_length=10)),
        ('created_at', models.DateTimeField(auto_now_add=True)),
        ('updated_at', models.DateTimeField(auto_now=True)),
    ]


def money(default='0.00'):
    return models.DecimalField(decimal_places=2, default=decimal.Decimal(default), max_digits=12)


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('auth', '0012_alter_user_first_name_max_length'),
    ]

    operations = [
        migrations.CreateModel(
            name='CustomUser',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('password', models.CharField(max_length=128, verbose_name='password')),
                ('last_login', models.DateTimeField(blank=True, null=True, verbose_name='last login')),
                ('is_superuser', models.BooleanField(default=False, help_text='Designates that this user has all permissions without explicitly assigning them.', verbose_name='superuser status')),
                ('username', models.CharField(error_messages={'unique': 'A user with that username already exists.'}, help_text='Required. 150 characters or fewer. Letters, digits and @/./+/-/_ only.', max_length=150, unique=True, validators=[django.contrib.auth.validators.UnicodeUsernameValidator()], verbose_name='username')),
                ('first_name', models.CharField(blank=True, max_length=150, verbose_name='first name')),
                ('last_name', models.CharField(blank=True, max_length=150, verbose_name='last name')),
                ('email', models.EmailField(blank=True, max_length=254, verbose_name='email address')),
                ('is_staff', models.BooleanField(default=False, help_text='Designates whether the user can log into this admin site.', verbose_name='staff status')),
                ('is_active', models.BooleanField(default=True, help_text='Designates whether this user should be treated as active. Unselect this instead of deleting accounts.', verbose_name='active')),
                ('date_joined', models.DateTimeField(default=django.utils.timezone.now, verbose_name='date joined')),
                ('role', models.CharField(choices=[('user', 'User'), ('vendor', 'Vendor'), ('admin', 'Admin')], default='user', max_length=10)),
                ('phone_number', models.CharField(blank=True, max_length=15, null=True)),
                ('groups', models.ManyToManyField(blank=True, help_text='The groups this user belongs to. A user will get all permissions granted to each of their groups.', related_name='user_set', related_query_name='user', to='auth.group', verbose_name='groups')),
                ('user_permissions', models.ManyToManyField(blank=True, help_text='Specific permissions for this user.', related_name='user_set', related_query_name='user', to='auth.permission', verbose_name='user permissions')),
            ],
            options={
                'verbose_name': 'user',
                'verbose_name_plural': 'users',
                'abstract': False,
            },
            managers=[
                ('objects', django.contrib.auth.models.UserManager()),
            ],
        ),
        migrations.CreateModel(
            name='Vendor',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('vendor_id', models.CharField(blank=True, max_length=20, unique=True)),
                ('first_name', models.CharField(blank=True, max_length=80)),
                ('last_name', models.CharField(blank=True, max_length=80)),
                ('is_active', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('user', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='vendor_profile', to=settings.AUTH_USER_MODEL)),
            ],
        ),
        migrations.CreateModel(
            name='VendorWallet',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('current_balance', money()),
                ('security_deposit', money()),
                ('has_initial_deposit', models.BooleanField(default=False)),
                ('has_mandatory_deposit', models.BooleanField(default=False)),
                ('first_task_assigned_at', models.DateTimeField(blank=True, null=True)),
                ('total_deposits', money()),
                ('total_earnings', money()),
                ('total_penalties', money()),
                ('total_withdrawals', money()),
                ('total_task_acceptance_fees', money()),
                ('total_cash_collections', money()),
                ('total_refunds', money()),
                ('total_tasks_completed', models.PositiveIntegerField(default=0)),
                ('total_tasks_declined', models.PositiveIntegerField(default=0)),
                ('total_tasks_cancelled', models.PositiveIntegerField(default=0)),
                ('last_transaction_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('vendor', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='wallet', to='fixifly.vendor')),
            ],
        ),
        migrations.CreateModel(
            name='WalletTransaction',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('transaction_id', models.CharField(max_length=64, unique=True)),
                ('txn_type', models.CharField(choices=[('deposit', 'Deposit'), ('earning', 'Earning'), ('penalty', 'Penalty'), ('task_acceptance_fee', 'Task acceptance fee'), ('cash_collection_deduction', 'Cash collection deduction'), ('withdrawal', 'Withdrawal'), ('manual_adjustment', 'Manual adjustment'), ('refund', 'Refund')], max_length=32)),
                ('amount', models.DecimalField(decimal_places=2, max_digits=12)),
                ('description', models.CharField(max_length=255)),
                ('reference_id', models.CharField(blank=True, max_length=64, null=True)),
                ('balance_after', models.DecimalField(decimal_places=2, max_digits=12)),
                ('metadata', models.JSONField(blank=True, default=dict)),
                ('processed_by', models.CharField(choices=[('system', 'System'), ('vendor', 'Vendor'), ('admin', 'Admin')], default='system', max_length=10)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('wallet', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='transactions', to='fixifly.vendorwallet')),
            ],
            options={
                'ordering': ['id'],
                'indexes': [
                    models.Index(fields=['wallet', 'created_at'], name='fx_txn_wallet_time_idx'),
                    models.Index(fields=['txn_type', 'reference_id'], name='fx_txn_type_ref_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(
                        condition=models.Q(('txn_type__in', ('deposit', 'earning', 'penalty', 'cash_collection_deduction', 'withdrawal', 'task_acceptance_fee'))),
                        fields=('wallet', 'txn_type', 'reference_id'),
                        name='fx_txn_unique_reference_per_type',
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name='Booking',
            fields=task_fields() + [
                ('status', models.CharField(choices=[('waiting_for_engineer', 'Waiting for engineer'), ('confirmed', 'Confirmed'), ('in_progress', 'In progress'), ('completed', 'Completed'), ('cancelled', 'Cancelled'), ('declined', 'Declined')], default='waiting_for_engineer', max_length=24)),
                ('service_name', models.CharField(blank=True, max_length=120)),
                ('address', models.TextField(blank=True)),
                ('previous_attempt', models.OneToOneField(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='next_attempt', to='fixifly.booking')),
                ('vendor', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='+', to='fixifly.vendor')),
            ],
            options={
                'indexes': [
                    models.Index(fields=['vendor', 'status'], name='fx_booking_vendor_status_idx'),
                    models.Index(fields=['vendor_response', 'respond_by'], name='fx_booking_sla_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='SupportTicket',
            fields=task_fields() + [
                ('vendor_status', models.CharField(choices=[('Pending', 'Pending'), ('Accepted', 'Accepted'), ('Completed', 'Completed'), ('Declined', 'Declined'), ('Cancelled', 'Cancelled')], default='Pending', max_length=12)),
                ('subject', models.CharField(max_length=200)),
                ('description', models.TextField(blank=True)),
                ('previous_attempt', models.OneToOneField(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='next_attempt', to='fixifly.supportticket')),
                ('vendor', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='+', to='fixifly.vendor')),
            ],
            options={
                'indexes': [
                    models.Index(fields=['vendor', 'vendor_status'], name='fx_ticket_vendor_status_idx'),
                    models.Index(fields=['vendor_response', 'respond_by'], name='fx_ticket_sla_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='WithdrawalRequest',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('amount', models.DecimalField(decimal_places=2, max_digits=12)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('approved', 'Approved'), ('declined', 'Declined')], default='pending', max_length=10)),
                ('requested_at', models.DateTimeField(auto_now_add=True)),
                ('resolved_at', models.DateTimeField(blank=True, null=True)),
                ('admin_note', models.TextField(blank=True)),
                ('resolved_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='resolved_withdrawals', to=settings.AUTH_USER_MODEL)),
                ('transaction', models.OneToOneField(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='withdrawal_request', to='fixifly.wallettransaction')),
                ('vendor', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='withdrawal_requests', to='fixifly.vendor')),
            ],
            options={
                'ordering': ['-requested_at'],
                'indexes': [
                    models.Index(fields=['vendor', 'status'], name='fx_withdrawal_vendor_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='DomainEvent',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('event_type', models.CharField(max_length=50)),
                ('payload', models.JSONField(blank=True, default=dict)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('dispatched_at', models.DateTimeField(blank=True, null=True)),
                ('attempts', models.PositiveIntegerField(default=0)),
                ('last_error', models.TextField(blank=True)),
                ('vendor', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name='events', to='fixifly.vendor')),
            ],
            options={
                'ordering': ['id'],
                'indexes': [
                    models.Index(fields=['dispatched_at'], name='fx_event_pending_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Notification',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('message', models.TextField()),
                ('read', models.BooleanField(default=False)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('event', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='notifications', to='fixifly.domainevent')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, to=settings.AUTH_USER_MODEL)),
            ],
        ),
    ]

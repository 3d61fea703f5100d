"""
Shared fixtures for the Fixifly test-suite.
"""

from decimal import Decimal

from fixifly.models import TXN_DEPOSIT, Booking, CustomUser, SupportTicket
from fixifly.services.ledger import post_transaction


def make_vendor(username='vendor', **extra):
    """Create a vendor user; the post_save signal adds the profile and wallet."""
    user = CustomUser.objects.create_user(
        username=username,
        password='testpass123',
        role='vendor',
        first_name=extra.pop('first_name', 'Ravi'),
        last_name=extra.pop('last_name', 'Kumar'),
        **extra
    )
    return user.vendor_profile


def make_admin(username='admin'):
    return CustomUser.objects.create_user(
        username=username,
        password='testpass123',
        role='admin',
        is_staff=True,
    )


def make_booking(**fields):
    fields.setdefault('customer_name', 'Anita Sharma')
    fields.setdefault('service_name', 'Laptop screen replacement')
    fields.setdefault('billing_amount', Decimal('1000.00'))
    return Booking.objects.create(**fields)


def make_ticket(**fields):
    fields.setdefault('customer_name', 'Rahul Verma')
    fields.setdefault('subject', 'Printer not detected')
    return SupportTicket.objects.create(**fields)


def fund(vendor, amount, reference='seed'):
    """Plain deposit posting that does not touch the deposit flags."""
    return post_transaction(vendor, TXN_DEPOSIT, Decimal(str(amount)), 'Test funding', reference_id=reference)

# fixifly/signals.py


from django.db.models.signals import post_save
from django.dispatch import receiver
from .models import CustomUser, Vendor, VendorWallet


@receiver(post_save, sender=CustomUser)
def ensure_vendor_profile(sender, instance: CustomUser, created, **kwargs):
    if instance.role == "vendor":
        vendor, _ = Vendor.objects.get_or_create(
            user=instance,
            defaults={
                "first_name": instance.first_name,
                "last_name": instance.last_name,
            },
        )
        VendorWallet.objects.get_or_create(vendor=vendor)

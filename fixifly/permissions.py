# fixifly/permissions.py

from rest_framework import permissions


class IsAuthenticatedAndVendor(permissions.BasePermission):
    """Allow access only to authenticated users with the role 'vendor'."""
    def has_permission(self, request, view):
        return bool(
            request.user
            and request.user.is_authenticated
            and request.user.role == 'vendor'
            and hasattr(request.user, 'vendor_profile')
        )


class IsAuthenticatedAndAdmin(permissions.BasePermission):
    """Allow access only to authenticated admins (role 'admin' or staff)."""
    def has_permission(self, request, view):
        return bool(
            request.user
            and request.user.is_authenticated
            and (request.user.role == 'admin' or request.user.is_staff)
        )


class IsVendorOrAdmin(permissions.BasePermission):
    def has_permission(self, request, view):
        return (
            IsAuthenticatedAndVendor().has_permission(request, view)
            or IsAuthenticatedAndAdmin().has_permission(request, view)
        )

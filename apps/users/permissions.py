from rest_framework.permissions import BasePermission

from .models import User


class IsAdminRole(BasePermission):
    message = "Admin access required."

    def has_permission(self, request, view):
        return bool(request.user and request.user.is_authenticated and request.user.is_admin)


class IsVendorOrAdmin(BasePermission):
    message = "Insufficient permissions."

    def has_permission(self, request, view):
        user = request.user
        if not (user and user.is_authenticated):
            return False
        return user.is_admin or user.role == User.Role.VENDOR

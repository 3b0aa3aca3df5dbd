"""
Role and clinic scoped access control.
"""
from rest_framework.exceptions import PermissionDenied
from rest_framework.permissions import BasePermission

STAFF_ROLES = {"super", "admin", "doctor", "nurse", "pharmacist"}


class IsSuperAdmin(BasePermission):
    """Only super administrators."""
    def has_permission(self, request, view) -> bool:
        user = getattr(request, "user", None)
        return bool(
            user and user.is_authenticated
            and not getattr(user, "is_deleted", False)
            and getattr(user, "role", None) == "super"
        )


class IsClinicStaff(BasePermission):
    """Any active, non-deleted staff account."""
    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        user = getattr(request, "user", None)
        return bool(
            user and user.is_authenticated
            and not getattr(user, "is_deleted", False)
            and getattr(user, "role", None) in STAFF_ROLES
        )


def ensure_warehouse_access(user, warehouse) -> None:
    """Raise 403 unless ``user`` may act on ``warehouse``."""
    if getattr(user, "role", None) == "super":
        return
    if not getattr(user, "warehouse_id", None) or user.warehouse_id != warehouse.id:
        raise PermissionDenied("forbidden for this clinic")

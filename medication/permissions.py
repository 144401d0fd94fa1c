# medication/permissions.py
from rest_framework import permissions


class IsMedicationOwner(permissions.BasePermission):
    """
    Permission to check if user is the patient the record belongs to.

    Works for medications and dose logs, which both carry ``patient``.
    Staff users can access every record.
    """

    def has_object_permission(self, request, view, obj):
        if request.user.is_staff:
            return True
        return obj.patient_id == request.user.id

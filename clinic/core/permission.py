# clinic/core/permission.py
from __future__ import annotations

from enum import Enum
from typing import FrozenSet, Mapping

from fastapi import Depends, HTTPException, status

from clinic.dependencies import get_current_user
from clinic.modules.users.models import User, UserRole


class Capability(str, Enum):
    BOOK_APPOINTMENT = "book_appointment"
    CANCEL_APPOINTMENT = "cancel_appointment"
    REVIEW_APPOINTMENT = "review_appointment"      # approve / reject / complete
    MANAGE_AVAILABILITY = "manage_availability"
    PAY = "pay"
    CONFIRM_CLINIC_PAYMENT = "confirm_clinic_payment"
    VIEW_EARNINGS = "view_earnings"
    REQUEST_REFUND = "request_refund"
    ADJUDICATE_REFUND = "adjudicate_refund"
    OVERRIDE_PAYMENT_STATUS = "override_payment_status"
    VIEW_STATISTICS = "view_statistics"
    MODERATE = "moderate"


ROLE_CAPABILITIES: Mapping[UserRole, FrozenSet[Capability]] = {
    UserRole.PATIENT: frozenset({
        Capability.BOOK_APPOINTMENT,
        Capability.CANCEL_APPOINTMENT,
        Capability.PAY,
        Capability.REQUEST_REFUND,
    }),
    UserRole.DOCTOR: frozenset({
        Capability.REVIEW_APPOINTMENT,
        Capability.CANCEL_APPOINTMENT,
        Capability.MANAGE_AVAILABILITY,
        Capability.CONFIRM_CLINIC_PAYMENT,
        Capability.VIEW_EARNINGS,
    }),
    UserRole.ADMIN: frozenset({
        Capability.ADJUDICATE_REFUND,
        Capability.OVERRIDE_PAYMENT_STATUS,
        Capability.VIEW_STATISTICS,
        Capability.MODERATE,
    }),
}


def has_capability(user: User, capability: Capability) -> bool:
    try:
        role = UserRole(user.role)
    except ValueError:
        return False
    return capability in ROLE_CAPABILITIES[role]


def require_capability(capability: Capability):
    """
    Capability guard factory. Example: Depends(require_capability(Capability.PAY))
    """
    async def dep(user: User = Depends(get_current_user)) -> User:
        if not has_capability(user, capability):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="forbidden_role",
            )
        return user
    return dep

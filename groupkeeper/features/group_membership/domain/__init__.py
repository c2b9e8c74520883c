"""
Domain subpackage for the group membership feature.
"""

from .models import (
    AddProcessResult,
    AddWorkItem,
    AdminRole,
    AttemptResult,
    AttemptStatus,
    AuthorizationRecord,
    GroupRoster,
    MemberPhone,
    MembershipStatus,
    Participant,
    ParticipantUpdate,
    RemovalResult,
    RemovalScope,
    RemoveWorkItem,
    Worker,
)

__all__ = [
    "AddProcessResult",
    "AddWorkItem",
    "AdminRole",
    "AttemptResult",
    "AttemptStatus",
    "AuthorizationRecord",
    "GroupRoster",
    "MemberPhone",
    "MembershipStatus",
    "Participant",
    "ParticipantUpdate",
    "RemovalResult",
    "RemovalScope",
    "RemoveWorkItem",
    "Worker",
]

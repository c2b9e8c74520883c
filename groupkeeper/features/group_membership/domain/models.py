"""
Domain models for the group membership lifecycle.

Work items are parsed from the registration system's queue payloads;
rosters are snapshots handed back by the messaging client and are never
kept across requests.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from groupkeeper.features.group_membership.errors import InvalidWorkItemError

RJB_GROUP_TYPE = "RJB"


@dataclass(slots=True)
class Worker:
    """The bot identity consuming the queues (a whatsapp_workers row)."""

    id: int
    phone: str


def _load_payload(raw: str | bytes | dict) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise InvalidWorkItemError(f"Queue item is not valid JSON: {e}", payload=str(raw)) from e
    if not isinstance(payload, dict):
        raise InvalidWorkItemError("Queue item is not a JSON object", payload=str(raw))
    return payload


def _required(payload: dict[str, Any], *names: str) -> Any:
    """First non-empty value among the accepted spellings of a field."""
    for name in names:
        value = payload.get(name)
        if value is not None and str(value).strip() != "":
            return value
    raise InvalidWorkItemError(f"Queue item missing '{names[0]}'", payload=json.dumps(payload))


@dataclass(slots=True, frozen=True)
class AddWorkItem:
    request_id: int
    registration_id: str
    group_id: str
    group_type: str
    type: str = "add"

    @classmethod
    def from_payload(cls, raw: str | bytes | dict) -> "AddWorkItem":
        payload = _load_payload(raw)
        request_id = _required(payload, "request_id", "requestId")
        try:
            request_id = int(request_id)
        except (TypeError, ValueError) as e:
            raise InvalidWorkItemError(
                f"request_id must be numeric, got {request_id!r}", payload=json.dumps(payload)
            ) from e
        return cls(
            request_id=request_id,
            registration_id=str(_required(payload, "registration_id", "registrationId")),
            group_id=str(_required(payload, "group_id", "groupId")),
            group_type=str(payload.get("group_type") or payload.get("groupType") or ""),
            type=str(payload.get("type") or "add"),
        )

    @property
    def is_rjb(self) -> bool:
        return self.group_type.strip().upper() == RJB_GROUP_TYPE


@dataclass(slots=True, frozen=True)
class RemoveWorkItem:
    registration_id: str
    group_id: str
    phone: str
    reason: str
    community_id: str | None = None
    type: str = "remove"

    @classmethod
    def from_payload(cls, raw: str | bytes | dict) -> "RemoveWorkItem":
        payload = _load_payload(raw)
        community_id = payload.get("communityId", payload.get("community_id"))
        return cls(
            registration_id=str(_required(payload, "registration_id", "registrationId")),
            group_id=str(_required(payload, "groupId", "group_id")),
            phone=str(_required(payload, "phone")),
            reason=str(payload.get("reason") or ""),
            community_id=str(community_id) if community_id else None,
            type=str(payload.get("type") or "remove"),
        )


@dataclass(slots=True)
class MemberPhone:
    """A phone tied to a registration: the member's own or a legal representative's."""

    phone: str
    is_legal_rep: bool = False


@dataclass(slots=True, frozen=True)
class AuthorizationRecord:
    """Consent for `phone_number` to be contacted by worker `worker_id`."""

    phone_number: str
    worker_id: int
    auth_id: int | None = None


class AdminRole(str, Enum):
    NONE = "none"
    ADMIN = "admin"
    SUPERADMIN = "superadmin"

    @classmethod
    def parse(cls, value: Any) -> "AdminRole":
        if isinstance(value, AdminRole):
            return value
        if not value:
            return cls.NONE
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.NONE

    @property
    def is_admin(self) -> bool:
        return self in (AdminRole.ADMIN, AdminRole.SUPERADMIN)


@dataclass(slots=True)
class Participant:
    """
    A roster entry. The platform fills a different subset of identity
    fields depending on how the participant was surfaced.
    """

    id: str | None = None
    jid: str | None = None
    lid: str | None = None
    phone_number: str | None = None
    admin: AdminRole = AdminRole.NONE

    def __post_init__(self):
        self.admin = AdminRole.parse(self.admin)

    @property
    def identity_fields(self) -> tuple[str | None, ...]:
        return (self.id, self.jid, self.lid, self.phone_number)


@dataclass(slots=True)
class GroupRoster:
    address: str
    subject: str | None = None
    participants: list[Participant] = field(default_factory=list)

    @property
    def display_name(self) -> str:
        return self.subject or self.address


@dataclass(slots=True, frozen=True)
class ParticipantUpdate:
    """Per-target status returned by an add/remove call."""

    status: int | str | None
    address: str | None = None


class AttemptStatus(str, Enum):
    ADDED = "added"
    ALREADY_MEMBER = "already_member"
    INVITED = "invited"
    FAILED = "failed"


@dataclass(slots=True, frozen=True)
class AttemptResult:
    """Outcome of one phone against one group. Never persisted directly."""

    status: AttemptStatus
    reason: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status is not AttemptStatus.FAILED


@dataclass(slots=True)
class AddProcessResult:
    added: bool = False
    invite_sent: bool = False
    already_in_group: bool = False
    processed_phones: int = 0
    total_phones: int = 0
    unauthorized_phones: list[str] = field(default_factory=list)
    failure_reason: str | None = None

    @property
    def fulfilled(self) -> bool:
        return self.added or self.invite_sent or self.already_in_group

    def record(self, attempt: AttemptResult) -> None:
        """Fold a per-phone attempt into the request-level result."""
        if attempt.status is AttemptStatus.ADDED:
            self.added = True
        elif attempt.status is AttemptStatus.INVITED:
            self.invite_sent = True
        elif attempt.status is AttemptStatus.ALREADY_MEMBER:
            self.already_in_group = True
        else:
            return
        self.processed_phones += 1

    def to_dict(self) -> dict:
        return {
            "added": self.added,
            "invite_sent": self.invite_sent,
            "already_in_group": self.already_in_group,
            "processed_phones": self.processed_phones,
            "total_phones": self.total_phones,
            "unauthorized_count": len(self.unauthorized_phones),
        }


class RemovalScope(str, Enum):
    COMMUNITY = "Community"
    GROUP = "Group"


@dataclass(slots=True)
class RemovalResult:
    removed: bool
    scope: RemovalScope | None = None
    group_name: str | None = None
    error_reason: str | None = None


class MembershipStatus(str, Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"

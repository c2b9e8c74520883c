"""
Participant and authorization lookups tolerant of address-format mismatches.
"""

from groupkeeper.features.group_membership.domain import (
    AuthorizationRecord,
    GroupRoster,
    Participant,
)
from groupkeeper.features.group_membership.domain.identity import (
    IdentityLike,
    identity_keys,
    last8,
)


def find_participant(
    roster: GroupRoster | None,
    target: IdentityLike,
    alt: IdentityLike = None,
) -> Participant | None:
    """
    Return the first participant sharing a numeric key with `target` or `alt`.

    Every identity field of each participant is checked, since the platform
    may report the same person differently between requests.
    """
    if roster is None:
        return None
    wanted = identity_keys(target) | identity_keys(alt)
    if not wanted:
        return None
    for participant in roster.participants:
        if identity_keys(participant) & wanted:
            return participant
    return None


def is_admin(roster: GroupRoster | None, target: IdentityLike, alt: IdentityLike = None) -> bool:
    participant = find_participant(roster, target, alt)
    return participant is not None and participant.admin.is_admin


async def resolve_authorization(
    repository, phone: str, worker_id: int
) -> AuthorizationRecord | None:
    """
    Consent record for `phone` with this worker, matched on the last 8 digits.

    Country-code prefixes are recorded inconsistently upstream, so the
    shorter key is the join key.
    """
    key = last8(phone)
    if not key:
        return None
    return await repository.find_authorization(key, worker_id)

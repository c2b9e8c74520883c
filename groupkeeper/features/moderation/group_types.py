"""
Group categories derived from group names, and a per-connection cache of them.
"""

import re
from dataclasses import dataclass
from enum import Enum

from groupkeeper.features.group_membership.domain import GroupRoster
from groupkeeper.infrastructure.observability.logging import get_logger
from groupkeeper.services.messaging_client import MessagingClient
from groupkeeper.utils.bounded_call import BoundedCaller

logger = get_logger(__name__)


class GroupCategory(str, Enum):
    M_JB = "M.JB"
    R_JB = "R.JB"
    JB = "JB"
    ORG_MB = "OrgMB"
    MB = "MB"
    NOT_MENSA = "NotMensa"
    NOT_A_GROUP = "NotAGroup"


# Order matters: the prefixed JB variants must win over plain JB.
_NAME_PATTERNS: tuple[tuple[re.Pattern, GroupCategory], ...] = (
    (re.compile(r"^M[\s.]*JB", re.IGNORECASE), GroupCategory.M_JB),
    (re.compile(r"^R[\s.]*JB", re.IGNORECASE), GroupCategory.R_JB),
    (re.compile(r"^JB", re.IGNORECASE), GroupCategory.JB),
    (re.compile(r"^OrgMB", re.IGNORECASE), GroupCategory.ORG_MB),
    (re.compile(r"^MB", re.IGNORECASE), GroupCategory.MB),
)


def classify_group_name(name: str | None) -> GroupCategory:
    """
    Category of a group from its subject line.

    >>> classify_group_name("M.JB Rio de Janeiro")
    <GroupCategory.M_JB: 'M.JB'>
    """
    text = str(name or "")
    for pattern, category in _NAME_PATTERNS:
        if pattern.match(text):
            return category
    return GroupCategory.NOT_MENSA


def classify_roster(roster: GroupRoster | None) -> GroupCategory:
    if roster is None:
        return GroupCategory.NOT_A_GROUP
    return classify_group_name(roster.subject)


@dataclass(slots=True, frozen=True)
class GroupInfo:
    category: GroupCategory
    name: str


def describe_roster(group_address: str, roster: GroupRoster | None) -> GroupInfo:
    if roster is None:
        return GroupInfo(GroupCategory.NOT_A_GROUP, group_address)
    return GroupInfo(classify_roster(roster), roster.display_name)


class GroupTypeCache:
    """
    Group address -> category and subject, scoped to one client connection.

    Entries are fetched on miss and kept until `clear()`, which runs when the
    client reports a reconnect. Lookups that find no roster are not stored,
    so a transient fetch failure is retried later.
    """

    def __init__(self, client: MessagingClient, caller: BoundedCaller | None = None):
        self.client = client
        self.caller = caller or BoundedCaller()
        self._groups: dict[str, GroupInfo] = {}

    def __len__(self) -> int:
        return len(self._groups)

    def __contains__(self, group_address: str) -> bool:
        return group_address in self._groups

    async def describe(self, group_address: str, roster: GroupRoster | None = None) -> GroupInfo:
        cached = self._groups.get(group_address)
        if cached is not None:
            return cached

        if roster is None:
            try:
                roster = await self.caller.read(
                    "fetch_group_roster", lambda: self.client.fetch_group_roster(group_address)
                )
            except Exception as e:
                logger.warning("Group roster unavailable", group=group_address, error=str(e))
                return describe_roster(group_address, None)

        info = describe_roster(group_address, roster)
        if info.category is not GroupCategory.NOT_A_GROUP:
            self._groups[group_address] = info
        return info

    def clear(self) -> None:
        self._groups.clear()

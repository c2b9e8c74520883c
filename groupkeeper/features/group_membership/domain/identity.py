"""
Identity normalization for messaging-platform addresses.

The platform exposes one person under several encodings:

    "447700900123@s.whatsapp.net"     phone-number address
    "447700900123:18@s.whatsapp.net"  same, with a device index
    "163552992182285@lid"             opaque linked-device address

All matching goes through numeric keys, never raw string equality.
"""

import re

from groupkeeper.features.group_membership.domain.models import Participant
from groupkeeper.features.group_membership.errors import InvalidIdentityError

USER_DOMAIN = "s.whatsapp.net"
GROUP_DOMAIN = "g.us"
CHANNEL_DOMAIN = "newsletter"
PHONE_DOMAINS = frozenset({USER_DOMAIN, "c.us", "hosted"})
INVITE_LINK_BASE = "https://chat.whatsapp.com/"
AUTH_KEY_DIGITS = 8

_NON_DIGITS = re.compile(r"\D")

IdentityLike = str | Participant | None


def digits_only(value: str | None) -> str:
    return _NON_DIGITS.sub("", value or "")


def to_member_address(phone: str) -> str:
    """
    Convert a loosely formatted phone number into a member address.

    "+55 (11) 99999-8888" -> "5511999998888@s.whatsapp.net"
    """
    digits = digits_only(phone)
    if not digits:
        raise InvalidIdentityError(f"Invalid phone number: {phone!r}")
    return f"{digits}@{USER_DOMAIN}"


def to_group_address(group_id: str) -> str:
    """Ensure a group id carries the group domain suffix."""
    group_id = (group_id or "").strip()
    if not group_id:
        raise InvalidIdentityError("Empty group id")
    suffix = f"@{GROUP_DOMAIN}"
    return group_id if group_id.endswith(suffix) else f"{group_id}{suffix}"


def is_group_address(address: str | None) -> bool:
    return bool(address) and address.endswith(f"@{GROUP_DOMAIN}")


def is_shared_chat(address: str | None) -> bool:
    """Groups and channels: chats moderated rather than treated as contacts."""
    return is_group_address(address) or (
        bool(address) and address.endswith(f"@{CHANNEL_DOMAIN}")
    )


def numeric_key(address: str | None) -> str | None:
    """Digits of the local part, before the domain and any device index."""
    if not address:
        return None
    local = str(address).split("@", 1)[0]
    local = local.split(":", 1)[0]
    return digits_only(local) or None


def identity_keys(target: IdentityLike) -> set[str]:
    """Numeric keys for a raw address or every identity field of a participant."""
    if target is None:
        return set()
    if isinstance(target, Participant):
        candidates = target.identity_fields
    else:
        candidates = (target,)
    return {key for key in map(numeric_key, candidates) if key}


def last8(phone: str | None) -> str:
    """Join key for authorization lookup and phone deduplication."""
    return digits_only(phone)[-AUTH_KEY_DIGITS:]


def invite_link(invite_code: str) -> str:
    return f"{INVITE_LINK_BASE}{invite_code}"


def phone_from_address(address: str | None) -> str | None:
    """Phone digits of a phone-number address; None for groups and linked-device ids."""
    if not address or "@" not in address:
        return None
    domain = address.rsplit("@", 1)[1]
    if domain not in PHONE_DOMAINS:
        return None
    return numeric_key(address)

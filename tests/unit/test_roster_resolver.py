import pytest

from groupkeeper.features.group_membership.domain import AdminRole, GroupRoster, Participant
from groupkeeper.features.group_membership.services.roster_resolver import (
    find_participant,
    is_admin,
    resolve_authorization,
)


@pytest.fixture
def roster():
    return GroupRoster(
        address="120363@g.us",
        subject="MB Sao Paulo",
        participants=[
            Participant(id="111111111111@lid", phone_number="5511911112222@s.whatsapp.net"),
            Participant(id="5511933334444:2@s.whatsapp.net", admin="superadmin"),
            Participant(jid="5511955556666@s.whatsapp.net", admin="admin"),
        ],
    )


def test_find_participant_matches_across_address_formats(roster):
    found = find_participant(roster, "5511911112222@s.whatsapp.net")
    assert found is roster.participants[0]

    # device index on the roster side
    found = find_participant(roster, "5511933334444@s.whatsapp.net")
    assert found is roster.participants[1]


def test_find_participant_uses_alternate_identity(roster):
    found = find_participant(roster, "5500000000000@s.whatsapp.net", "111111111111@lid")
    assert found is roster.participants[0]


def test_find_participant_returns_none_when_absent(roster):
    assert find_participant(roster, "5500000000000@s.whatsapp.net") is None
    assert find_participant(None, "5511911112222@s.whatsapp.net") is None
    assert find_participant(roster, None) is None


def test_is_admin_recognizes_both_admin_roles(roster):
    assert is_admin(roster, "5511933334444@s.whatsapp.net")
    assert is_admin(roster, "5511955556666@s.whatsapp.net")
    assert not is_admin(roster, "5511911112222@s.whatsapp.net")
    assert not is_admin(roster, "5500000000000@s.whatsapp.net")


def test_admin_role_parsing():
    assert Participant(admin=None).admin is AdminRole.NONE
    assert Participant(admin="SuperAdmin").admin is AdminRole.SUPERADMIN
    assert Participant(admin="moderator").admin is AdminRole.NONE


@pytest.mark.asyncio
async def test_resolve_authorization_matches_on_last_eight_digits(fake_repository):
    fake_repository.authorize("11 99999-8888", worker_id=1)

    record = await resolve_authorization(fake_repository, "+55 11 99999-8888", 1)

    assert record is not None
    assert record.phone_number == "11999998888"


@pytest.mark.asyncio
async def test_resolve_authorization_is_scoped_to_worker(fake_repository):
    fake_repository.authorize("5511999998888", worker_id=2)

    assert await resolve_authorization(fake_repository, "5511999998888", 1) is None


@pytest.mark.asyncio
async def test_resolve_authorization_without_digits(fake_repository):
    assert await resolve_authorization(fake_repository, "n/a", 1) is None

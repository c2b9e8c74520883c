import pytest

from groupkeeper.features.authorization.service import AuthorizationService, resolve_worker
from groupkeeper.features.group_membership.errors import InvalidIdentityError
from groupkeeper.services.messaging_client import IncomingMessage


@pytest.fixture
def service(fake_repository):
    return AuthorizationService(fake_repository)


@pytest.mark.asyncio
async def test_authorize_new_contact(service, fake_repository, worker):
    created = await service.authorize_contact("+55 11 99999-8888", worker)

    assert created is True
    assert [(r.phone_number, r.worker_id) for r in fake_repository.authorizations] == [
        ("5511999998888", worker.id)
    ]


@pytest.mark.asyncio
async def test_existing_authorization_matched_on_last_eight(service, fake_repository, worker):
    fake_repository.authorize("11999998888", worker.id)

    created = await service.authorize_contact("5511999998888", worker)

    assert created is False
    assert len(fake_repository.authorizations) == 1


@pytest.mark.asyncio
async def test_authorize_contact_rejects_empty_phone(service, worker):
    with pytest.raises(InvalidIdentityError):
        await service.authorize_contact("--", worker)


@pytest.mark.asyncio
async def test_sync_contacts_keeps_phone_addresses_only(service, fake_repository, worker):
    count = await service.sync_contacts(
        [
            "5511999998888@s.whatsapp.net",
            "5511999998888:4@s.whatsapp.net",
            "5511933334444@c.us",
            "163552992182285@lid",
            "120363025246125486@g.us",
            "status@broadcast",
        ],
        worker,
    )

    assert count == 2
    assert {r.phone_number for r in fake_repository.authorizations} == {
        "5511999998888",
        "5511933334444",
    }


@pytest.mark.asyncio
async def test_sync_contacts_with_nothing_to_do(service, fake_repository, worker):
    assert await service.sync_contacts(["120363025246125486@g.us"], worker) == 0
    assert fake_repository.authorizations == []


@pytest.mark.asyncio
async def test_direct_message_authorizes_sender(service, fake_repository, worker):
    await service.handle_message(
        IncomingMessage(
            chat_address="5511999998888@s.whatsapp.net",
            sender_address="5511999998888@s.whatsapp.net",
            text="oi",
        ),
        worker,
    )

    assert len(fake_repository.authorizations) == 1


@pytest.mark.asyncio
async def test_own_messages_are_ignored(service, fake_repository, worker):
    await service.handle_message(
        IncomingMessage(
            chat_address="5511999998888@s.whatsapp.net",
            sender_address=None,
            text="welcome",
            from_me=True,
        ),
        worker,
    )

    assert fake_repository.authorizations == []


@pytest.mark.asyncio
async def test_resolve_worker_from_client_address(fake_client, fake_repository):
    fake_client.self_address = "5511900000000:12@s.whatsapp.net"

    worker = await resolve_worker(fake_client, fake_repository)

    assert worker.id == 1


@pytest.mark.asyncio
async def test_resolve_worker_unknown_phone(fake_client, fake_repository):
    fake_client.self_address = "5511000000000@s.whatsapp.net"

    with pytest.raises(RuntimeError):
        await resolve_worker(fake_client, fake_repository)

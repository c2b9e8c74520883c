from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from conftest import bot_participant, make_roster

from groupkeeper.config import settings
from groupkeeper.features.group_membership.domain import Participant
from groupkeeper.features.moderation.group_types import (
    GroupCategory,
    GroupTypeCache,
    classify_group_name,
)
from groupkeeper.features.moderation.service import (
    ModerationService,
    contains_blocked_link,
    flagged_categories,
)
from groupkeeper.services.messaging_client import IncomingMessage

GROUP = "120363025246125486@g.us"
SENDER = "5511999998888@s.whatsapp.net"
ADMIN = "5511933334444@s.whatsapp.net"


@pytest.mark.parametrize(
    "name, category",
    [
        ("M.JB Rio", GroupCategory.M_JB),
        ("m jb Rio", GroupCategory.M_JB),
        ("R.JB Sul", GroupCategory.R_JB),
        ("JB Campinas", GroupCategory.JB),
        ("OrgMB Eventos", GroupCategory.ORG_MB),
        ("MB Sao Paulo", GroupCategory.MB),
        ("Family chat", GroupCategory.NOT_MENSA),
        (None, GroupCategory.NOT_MENSA),
    ],
)
def test_classify_group_name(name, category):
    assert classify_group_name(name) is category


@pytest.mark.parametrize(
    "text, blocked",
    [
        ("join us https://chat.whatsapp.com/AbCdEfGhIjKl", True),
        ("see http://bit.ly/3xYz", True),
        ("https://www.tinyurl.com/abc", True),
        ("https://example.com/page", False),
        ("", False),
    ],
)
def test_contains_blocked_link(text, blocked):
    assert contains_blocked_link(text) is blocked


def moderation_result(flagged=True, **categories):
    return SimpleNamespace(
        flagged=flagged,
        categories={name: True for name in categories} | {"sexual": False},
        category_scores={name: score for name, score in categories.items()} | {"sexual": 0.01},
    )


def test_flagged_categories_keeps_only_hits():
    result = moderation_result(harassment=0.9, violence=0.6)

    assert flagged_categories(result) == [("harassment", 0.9), ("violence", 0.6)]


@pytest.mark.asyncio
async def test_group_type_cache_fetches_on_miss_only(fake_client, caller):
    fake_client.add_roster(make_roster(GROUP, "JB Campinas"))
    cache = GroupTypeCache(fake_client, caller)

    assert (await cache.describe(GROUP)).category is GroupCategory.JB
    assert (await cache.describe(GROUP)).name == "JB Campinas"
    assert fake_client.roster_calls == [GROUP]

    cache.clear()
    assert GROUP not in cache
    await cache.describe(GROUP)
    assert len(fake_client.roster_calls) == 2


@pytest.mark.asyncio
async def test_group_type_cache_does_not_store_missing_groups(fake_client, caller):
    cache = GroupTypeCache(fake_client, caller)

    assert (await cache.describe(GROUP)).category is GroupCategory.NOT_A_GROUP
    assert len(cache) == 0


@pytest.fixture
def openai_client():
    client = SimpleNamespace(moderations=SimpleNamespace(create=AsyncMock()))
    client.moderations.create.return_value = SimpleNamespace(
        results=[moderation_result(harassment=0.93)]
    )
    return client


@pytest.fixture
def moderation(fake_client, fake_notifier, caller, openai_client):
    fake_client.add_roster(
        make_roster(
            GROUP,
            "JB Campinas",
            bot_participant(),
            Participant(phone_number=SENDER),
            Participant(phone_number=ADMIN, admin="admin"),
        )
    )
    return ModerationService(fake_client, fake_notifier, openai_client=openai_client, caller=caller)


@pytest.fixture
def link_moderation(monkeypatch):
    monkeypatch.setattr(settings, "ENABLE_LINK_MODERATION", True)


@pytest.fixture
def content_moderation(monkeypatch):
    monkeypatch.setattr(settings, "ENABLE_CONTENT_MODERATION", True)
    monkeypatch.setattr(settings, "TELEGRAM_MODERATIONS_CHAT_ID", "-100mods")


def group_message(text: str, sender: str = SENDER) -> IncomingMessage:
    return IncomingMessage(
        chat_address=GROUP, sender_address=sender, text=text, key={"id": "m1"}, timestamp=1700000000
    )


@pytest.mark.asyncio
async def test_invite_link_from_member_is_deleted(moderation, fake_client, link_moderation):
    await moderation.handle_message(group_message("https://chat.whatsapp.com/AbCdEfGhIjKl"))

    assert fake_client.deleted == [(GROUP, {"id": "m1"})]


@pytest.mark.asyncio
async def test_invite_link_from_admin_is_kept(moderation, fake_client, link_moderation):
    await moderation.handle_message(group_message("https://chat.whatsapp.com/AbCdEfGhIjKl", ADMIN))

    assert fake_client.deleted == []


@pytest.mark.asyncio
async def test_link_moderation_disabled(moderation, fake_client, monkeypatch):
    monkeypatch.setattr(settings, "ENABLE_LINK_MODERATION", False)

    await moderation.handle_message(group_message("https://bit.ly/abc"))

    assert fake_client.deleted == []


@pytest.mark.asyncio
async def test_flagged_message_in_jb_group_is_reported(
    moderation, fake_notifier, openai_client, content_moderation
):
    await moderation.handle_message(group_message("something nasty"))

    openai_client.moderations.create.assert_awaited_once()
    kwargs = openai_client.moderations.create.await_args.kwargs
    assert kwargs["input"] == [{"type": "text", "text": "something nasty"}]
    assert len(fake_notifier.flagged) == 1
    payload = fake_notifier.flagged[0]
    assert payload.categories == [("harassment", 0.93)]
    assert payload.sender == SENDER
    assert payload.time.startswith("2023-11-14")


@pytest.mark.asyncio
async def test_content_moderation_skips_other_group_types(
    moderation, fake_client, fake_notifier, openai_client, content_moderation
):
    fake_client.rosters[GROUP].subject = "MB Sao Paulo"

    await moderation.handle_message(group_message("something nasty"))

    openai_client.moderations.create.assert_not_awaited()
    assert fake_notifier.flagged == []


@pytest.mark.asyncio
async def test_clean_message_not_reported(moderation, fake_notifier, openai_client, content_moderation):
    openai_client.moderations.create.return_value = SimpleNamespace(
        results=[moderation_result(flagged=False)]
    )

    await moderation.handle_message(group_message("hello everyone"))

    assert fake_notifier.flagged == []


@pytest.mark.asyncio
async def test_direct_messages_are_ignored(moderation, openai_client, content_moderation):
    await moderation.handle_message(
        IncomingMessage(chat_address=SENDER, sender_address=SENDER, text="something nasty")
    )

    openai_client.moderations.create.assert_not_awaited()


@pytest.mark.asyncio
async def test_moderation_errors_are_swallowed(
    moderation, fake_notifier, openai_client, content_moderation
):
    openai_client.moderations.create.side_effect = RuntimeError("unexpected")

    await moderation.handle_message(group_message("something nasty"))

    assert fake_notifier.flagged == []


@pytest.mark.asyncio
async def test_flagged_report_names_group_without_link(
    moderation, fake_notifier, content_moderation
):
    await moderation.handle_message(group_message("something nasty"))

    assert fake_notifier.flagged[0].group_name == "JB Campinas"


@pytest.mark.asyncio
async def test_channel_messages_are_moderated(
    moderation, fake_client, fake_notifier, content_moderation
):
    channel = "120363111111111111@newsletter"
    fake_client.add_roster(make_roster(channel, "JB Avisos"))

    await moderation.handle_message(
        IncomingMessage(chat_address=channel, sender_address=SENDER, text="something nasty")
    )

    assert fake_notifier.flagged[0].group_name == "JB Avisos"


@pytest.mark.asyncio
async def test_reconnect_clears_cache(moderation):
    await moderation.group_types.describe(GROUP)

    await moderation.handle_reconnect()

    assert GROUP not in moderation.group_types

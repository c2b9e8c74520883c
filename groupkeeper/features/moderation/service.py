"""
Moderation of incoming group and channel messages.

Two independent checks, each behind its own setting:
- link moderation deletes group invite links and shortened URLs posted by
  non-admins (ENABLE_LINK_MODERATION)
- content moderation classifies text in JB and M.JB groups with the OpenAI
  moderation endpoint and reports flagged messages to the moderators chat
  (ENABLE_CONTENT_MODERATION)

Moderation never interrupts the membership worker: every failure is logged
and dropped.
"""

import re
from datetime import UTC, datetime
from typing import Any

import openai
from openai import AsyncOpenAI

from groupkeeper.config import settings
from groupkeeper.features.group_membership.domain import GroupRoster
from groupkeeper.features.group_membership.domain.identity import is_shared_chat
from groupkeeper.features.group_membership.services.roster_resolver import is_admin
from groupkeeper.features.moderation.group_types import GroupCategory, GroupTypeCache
from groupkeeper.infrastructure.observability.logging import get_logger
from groupkeeper.services.messaging_client import IncomingMessage, MessagingClient
from groupkeeper.services.notification_service import FlaggedLogPayload, TelegramNotifier
from groupkeeper.utils.bounded_call import BoundedCaller

logger = get_logger(__name__)

GROUP_INVITE_PATTERN = re.compile(r"https?://chat\.whatsapp\.com/[A-Za-z0-9]{10,}", re.IGNORECASE)
SHORTENER_PATTERN = re.compile(
    r"https?://(?:www\.)?"
    r"(bit\.ly|tinyurl\.com|t\.co|goo\.gl|ow\.ly|buff\.ly|bitly\.com|shorturl\.at|cutt\.ly|rb\.gy)"
    r"/\S+",
    re.IGNORECASE,
)

MODERATED_CATEGORIES = frozenset({GroupCategory.JB, GroupCategory.M_JB})


def contains_blocked_link(text: str | None) -> bool:
    if not text:
        return False
    return bool(GROUP_INVITE_PATTERN.search(text) or SHORTENER_PATTERN.search(text))


def _as_dict(value: Any) -> dict:
    if value is None:
        return {}
    if isinstance(value, dict):
        return value
    if hasattr(value, "model_dump"):
        return value.model_dump(by_alias=True)
    return dict(vars(value))


def flagged_categories(result: Any) -> list[tuple[str, float]]:
    """(category, score) pairs a moderation result flagged, in response order."""
    categories = _as_dict(getattr(result, "categories", None))
    scores = _as_dict(getattr(result, "category_scores", None))
    return [(name, float(scores.get(name) or 0.0)) for name, hit in categories.items() if hit]


def _message_time(message: IncomingMessage) -> str:
    if message.timestamp:
        return datetime.fromtimestamp(float(message.timestamp), UTC).isoformat()
    return datetime.now(UTC).isoformat()


class ModerationService:
    """Link and content moderation for group chats."""

    def __init__(
        self,
        client: MessagingClient,
        notifier: TelegramNotifier,
        group_types: GroupTypeCache | None = None,
        openai_client: AsyncOpenAI | None = None,
        caller: BoundedCaller | None = None,
    ):
        self.client = client
        self.notifier = notifier
        self.caller = caller or BoundedCaller()
        self.group_types = group_types if group_types is not None else GroupTypeCache(client, self.caller)
        if openai_client is None and settings.OPENAI_API_KEY:
            openai_client = AsyncOpenAI(
                api_key=settings.OPENAI_API_KEY, timeout=settings.OPENAI_TIMEOUT_SECONDS
            )
        self.openai_client = openai_client

    async def handle_message(self, message: IncomingMessage) -> None:
        if message.from_me or not is_shared_chat(message.chat_address):
            return
        try:
            await self._moderate(message)
        except Exception as e:
            logger.error(
                "Moderation failed",
                group=message.chat_address,
                error=str(e),
                error_type=type(e).__name__,
            )

    async def handle_reconnect(self) -> None:
        """Drop cached group categories and subjects."""
        logger.info("Clearing group cache after reconnect", cached=len(self.group_types))
        self.group_types.clear()

    async def _moderate(self, message: IncomingMessage) -> None:
        roster: GroupRoster | None = None

        if settings.ENABLE_LINK_MODERATION and contains_blocked_link(message.text):
            roster = await self._fetch_roster(message.chat_address)
            await self.delete_if_allowed(message, roster)

        if not settings.ENABLE_CONTENT_MODERATION or not settings.TELEGRAM_MODERATIONS_CHAT_ID:
            return
        if not message.text or not message.text.strip():
            return

        group = await self.group_types.describe(message.chat_address, roster)
        if group.category not in MODERATED_CATEGORIES:
            return

        flagged = await self.classify(message.text)
        if not flagged:
            return

        outcome = await self.notifier.send_flagged_log(
            FlaggedLogPayload(
                time=_message_time(message),
                sender=message.sender_address or message.chat_address or "unknown",
                group_name=group.name,
                message=message.text,
                categories=flagged,
            )
        )
        outcome.acknowledge(group=message.chat_address)

    async def _fetch_roster(self, group_address: str) -> GroupRoster | None:
        try:
            return await self.caller.read(
                "fetch_group_roster", lambda: self.client.fetch_group_roster(group_address)
            )
        except Exception as e:
            logger.warning("Group roster unavailable", group=group_address, error=str(e))
            return None

    async def delete_if_allowed(self, message: IncomingMessage, roster: GroupRoster | None) -> bool:
        """Delete `message` unless the roster is unknown or the sender is an admin."""
        if roster is None or message.key is None:
            return False
        if is_admin(roster, message.sender_address):
            return False
        try:
            await self.caller.send(
                "delete_message",
                lambda: self.client.delete_message(message.chat_address, message.key),
            )
        except Exception as e:
            logger.warning("Failed to delete message", group=message.chat_address, error=str(e))
            return False
        logger.info(
            "Deleted link message", group=roster.display_name, sender=message.sender_address
        )
        return True

    async def classify(self, text: str) -> list[tuple[str, float]]:
        """Flagged (category, score) pairs for `text`; empty when clean or unavailable."""
        if self.openai_client is None:
            return []
        try:
            response = await self.openai_client.moderations.create(
                model=settings.OPENAI_MODERATION_MODEL,
                input=[{"type": "text", "text": text}],
            )
        except openai.APIError as e:
            logger.warning("OpenAI moderation failed", error=str(e))
            return []

        for result in response.results or []:
            if getattr(result, "flagged", False):
                return flagged_categories(result)
        return []

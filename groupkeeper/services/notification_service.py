"""
Telegram Bot API notifications for operators.

Every send is best-effort: missing configuration skips silently and any
HTTP or transport failure comes back as a failed Outcome, never raised.
"""

import html
from dataclasses import dataclass
from datetime import UTC, datetime

import httpx

from groupkeeper.config import settings
from groupkeeper.features.group_membership.errors import NotificationFailure
from groupkeeper.infrastructure.observability.logging import get_logger
from groupkeeper.utils.outcome import Outcome

logger = get_logger(__name__)

TELEGRAM_API_BASE_URL = "https://api.telegram.org"


@dataclass(slots=True)
class AdditionFailurePayload:
    request_id: int | str
    reason: str
    registration_id: int | str | None = None
    group_id: str | None = None
    group_name: str | None = None
    unauthorized_phones: list[str] | None = None


@dataclass(slots=True)
class RemovalFailurePayload:
    phone: str
    registration_id: int | str
    group_id: str
    removal_reason: str  # business reason
    failure_reason: str | None = None  # technical reason
    group_name: str | None = None
    community_id: str | None = None


@dataclass(slots=True)
class FlaggedLogPayload:
    time: str
    sender: str
    group_name: str
    message: str
    categories: list[tuple[str, float]]


def _send_failed(operation: str, detail: str) -> Outcome:
    return Outcome.failure(operation, NotificationFailure(operation, detail))


def _escape(value: object) -> str:
    return html.escape(str(value), quote=False)


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


def format_addition_failure(payload: AdditionFailurePayload) -> str:
    lines = [
        "<b>⚠️ GROUP ADDITION FAILED ⚠️</b>",
        f"<b>Time:</b> {_now_iso()}",
        f"<b>Request ID:</b> {_escape(payload.request_id)}",
    ]
    if payload.registration_id is not None:
        lines.append(f"<b>Registration ID:</b> {_escape(payload.registration_id)}")
    if payload.group_name or payload.group_id:
        group = (
            f"{payload.group_name} ({payload.group_id or ''})"
            if payload.group_name
            else payload.group_id
        )
        lines.append(f"<b>Group:</b> {_escape(group)}")
    lines.append(f"<b>Error:</b> {_escape(payload.reason)}")
    if payload.unauthorized_phones:
        lines.append(
            f"<b>Unauthorized numbers:</b> {_escape(', '.join(payload.unauthorized_phones))}"
        )
    return "\n".join(lines)


def format_removal_failure(payload: RemovalFailurePayload) -> str:
    group = f"{payload.group_name} ({payload.group_id})" if payload.group_name else payload.group_id
    lines = [
        "<b>⚠️ MEMBER REMOVAL FAILED ⚠️</b>",
        f"<b>Time:</b> {_now_iso()}",
        f"<b>Member Phone:</b> {_escape(payload.phone)}",
        f"<b>Registration ID:</b> {_escape(payload.registration_id)}",
        f"<b>Group:</b> {_escape(group)}",
    ]
    if payload.community_id:
        lines.append(f"<b>Community ID:</b> {_escape(payload.community_id)}")
    lines.append(f"<b>Removal Reason:</b> {_escape(payload.removal_reason)}")
    if payload.failure_reason:
        lines.append(f"<b>Failure Reason:</b> {_escape(payload.failure_reason)}")
    return "\n".join(lines)


def format_flagged_log(payload: FlaggedLogPayload) -> str:
    categories = ", ".join(
        f"<b>{_escape(name)}</b> (<code>{score:.3f}</code>)" for name, score in payload.categories
    )
    return "\n".join(
        [
            "<b>Flagged Message</b>",
            f"<b>Time:</b> {_escape(payload.time)}",
            f"<b>Sender:</b> {_escape(payload.sender)}",
            f"<b>Group:</b> {_escape(payload.group_name)}",
            f"<b>Message:</b>\n<pre>{_escape(payload.message)}</pre>",
            f"<b>Flagged Categories:</b> {categories}",
        ]
    )


class TelegramNotifier:
    """Sends operator alerts to Telegram chats."""

    def __init__(
        self,
        bot_token: str | None = None,
        failures_chat_id: str | None = None,
        moderations_chat_id: str | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.bot_token = bot_token if bot_token is not None else settings.TELEGRAM_BOT_TOKEN
        self.failures_chat_id = (
            failures_chat_id if failures_chat_id is not None else settings.TELEGRAM_FAILURES_CHAT_ID
        )
        self.moderations_chat_id = (
            moderations_chat_id
            if moderations_chat_id is not None
            else settings.TELEGRAM_MODERATIONS_CHAT_ID
        )
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.TELEGRAM_TIMEOUT_SECONDS)
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def send_message(self, chat_id: str | None, text: str, operation: str) -> Outcome:
        if not self.bot_token or not chat_id:
            return Outcome.skip(operation, "telegram not configured")

        url = f"{TELEGRAM_API_BASE_URL}/bot{self.bot_token}/sendMessage"
        payload = {
            "chat_id": chat_id,
            "text": text,
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }

        try:
            response = await self._client.post(url, json=payload)
        except httpx.HTTPError as e:
            logger.warning("Telegram request error", operation=operation, error=str(e))
            return _send_failed(operation, f"{type(e).__name__}: {e}")
        except Exception as e:
            logger.error(
                "Unexpected error sending Telegram message",
                operation=operation,
                error=str(e),
                error_type=type(e).__name__,
            )
            return _send_failed(operation, f"{type(e).__name__}: {e}")

        if response.status_code >= 400:
            logger.warning(
                "Telegram request failed",
                operation=operation,
                status_code=response.status_code,
                body=response.text[:200],
            )
            return _send_failed(operation, f"HTTP {response.status_code}")

        return Outcome.success(operation)

    async def notify_addition_failure(self, payload: AdditionFailurePayload) -> Outcome:
        return await self.send_message(
            self.failures_chat_id, format_addition_failure(payload), "notify_addition_failure"
        )

    async def notify_removal_failure(self, payload: RemovalFailurePayload) -> Outcome:
        return await self.send_message(
            self.failures_chat_id, format_removal_failure(payload), "notify_removal_failure"
        )

    async def send_flagged_log(self, payload: FlaggedLogPayload) -> Outcome:
        return await self.send_message(
            self.moderations_chat_id, format_flagged_log(payload), "send_flagged_log"
        )

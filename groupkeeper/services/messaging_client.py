"""
Boundary to the messaging-platform client.

The wire protocol, encryption and session handling live in an external
client library. The worker talks to it only through the MessagingClient
protocol below; an adapter for the concrete library is loaded from the
MESSAGING_CLIENT_FACTORY setting ("package.module:factory").
"""

import importlib
import inspect
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any, Literal, Protocol, runtime_checkable

from groupkeeper.features.group_membership.domain.models import GroupRoster, ParticipantUpdate
from groupkeeper.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

ParticipantAction = Literal["add", "remove", "promote", "demote"]


@dataclass(slots=True, frozen=True)
class IncomingMessage:
    """A message event surfaced by the client."""

    chat_address: str
    sender_address: str | None
    text: str
    key: Any = None
    timestamp: float | None = None
    from_me: bool = False


MessageHandler = Callable[[IncomingMessage], Awaitable[None]]
ReconnectHandler = Callable[[], Awaitable[None]]


@runtime_checkable
class MessagingClient(Protocol):
    """Operations the worker needs from the messaging platform."""

    @property
    def self_address(self) -> str | None:
        """The bot's own phone-style address."""

    @property
    def self_alt_address(self) -> str | None:
        """The bot's own linked-device address, when known."""

    async def fetch_group_roster(self, group_address: str) -> GroupRoster | None: ...

    async def update_participants(
        self, group_address: str, member_addresses: list[str], action: ParticipantAction
    ) -> list[ParticipantUpdate] | list[dict[str, Any]] | None: ...

    async def generate_invite_code(self, group_address: str) -> str | None: ...

    async def send_group_invite(
        self,
        address: str,
        group_address: str,
        invite_code: str,
        group_name: str,
        caption: str,
    ) -> Any: ...

    async def send_direct_message(self, address: str, text: str) -> Any: ...

    async def delete_message(self, chat_address: str, message_key: Any) -> Any: ...

    async def list_direct_contacts(self) -> list[str]: ...

    def subscribe_messages(self, handler: MessageHandler) -> None: ...

    def subscribe_reconnect(self, handler: ReconnectHandler) -> None:
        """Register `handler` to run each time the connection is re-established."""

    async def close(self) -> None: ...


def as_status_code(status: Any) -> int | None:
    """Coerce a participant-update status ("200", 200, None) into an int."""
    if isinstance(status, bool):
        return None
    if isinstance(status, int):
        return status
    if isinstance(status, str) and status.strip():
        try:
            return int(status.strip())
        except ValueError:
            return None
    return None


def first_status(updates: list[ParticipantUpdate] | list[dict] | None) -> int | None:
    """Status of the first update, whether the client returns objects or mappings."""
    if not updates:
        return None
    first = updates[0]
    if isinstance(first, Mapping):
        return as_status_code(first.get("status"))
    return as_status_code(getattr(first, "status", None))


def is_success_status(status: int | None) -> bool:
    return status is not None and 200 <= status < 300


async def load_messaging_client(factory_path: str | None) -> MessagingClient:
    """
    Import and call the configured client factory.

    The factory may be sync or async and must return a connected client.

    Raises:
        RuntimeError: If the factory is not configured or cannot be imported
    """
    if not factory_path or ":" not in factory_path:
        raise RuntimeError(
            "MESSAGING_CLIENT_FACTORY must be set to 'package.module:factory'"
        )

    module_name, _, attr = factory_path.partition(":")
    try:
        module = importlib.import_module(module_name)
        factory = getattr(module, attr)
    except (ImportError, AttributeError) as e:
        raise RuntimeError(f"Cannot load messaging client factory {factory_path}: {e}") from e

    client = factory()
    if inspect.isawaitable(client):
        client = await client

    if not isinstance(client, MessagingClient):
        raise RuntimeError(f"{factory_path} did not return a MessagingClient")

    logger.info("Messaging client loaded", factory=factory_path, self_address=client.self_address)
    return client

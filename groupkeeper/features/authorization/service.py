"""
Contact authorization bookkeeping.

A phone may only be added to a group by a worker it has talked to. Every
direct conversation with the worker therefore records an authorization for
the other party, and a sweep over the worker's direct contacts backfills the
ones that predate this process.
"""

from collections.abc import Iterable

from groupkeeper.features.group_membership.domain import AuthorizationRecord, Worker
from groupkeeper.features.group_membership.domain.identity import (
    digits_only,
    numeric_key,
    phone_from_address,
)
from groupkeeper.features.group_membership.errors import InvalidIdentityError
from groupkeeper.features.group_membership.repository.membership_repository import (
    MembershipRepository,
)
from groupkeeper.features.group_membership.services.roster_resolver import resolve_authorization
from groupkeeper.infrastructure.observability.logging import get_logger
from groupkeeper.services.messaging_client import IncomingMessage

logger = get_logger(__name__)


class AuthorizationService:
    def __init__(self, repository=MembershipRepository):
        self.repository = repository

    async def authorize_contact(self, phone: str, worker: Worker) -> bool:
        """
        Record that `phone` may be contacted by `worker`.

        Returns:
            True if a new authorization was written, False if one existed

        Raises:
            InvalidIdentityError: If `phone` has no digits
        """
        normalized = digits_only(phone)
        if not normalized:
            raise InvalidIdentityError(f"Invalid phone number: {phone!r}")

        existing = await resolve_authorization(self.repository, normalized, worker.id)
        if existing is not None:
            logger.debug("Phone already authorized", phone=normalized, worker_id=worker.id)
            return False

        await self.repository.upsert_authorizations(
            [AuthorizationRecord(phone_number=normalized, worker_id=worker.id)]
        )
        logger.info("Phone authorized", phone=normalized, worker_id=worker.id)
        return True

    async def sync_contacts(self, addresses: Iterable[str], worker: Worker) -> int:
        """Upsert authorizations for every phone-style direct contact address."""
        phones = []
        seen = set()
        for address in addresses:
            phone = phone_from_address(address)
            if phone and phone not in seen:
                seen.add(phone)
                phones.append(phone)

        if not phones:
            logger.info("No direct contacts to authorize", worker_id=worker.id)
            return 0

        records = [AuthorizationRecord(phone_number=phone, worker_id=worker.id) for phone in phones]
        count = await self.repository.upsert_authorizations(records)
        logger.info("Contacts authorized", worker_id=worker.id, contact_count=count)
        return count

    async def handle_message(self, message: IncomingMessage, worker: Worker) -> None:
        """Authorize the sender of an incoming direct message."""
        if message.from_me:
            return
        phone = phone_from_address(message.sender_address or message.chat_address)
        if not phone:
            return
        try:
            await self.authorize_contact(phone, worker)
        except Exception as e:
            logger.error(
                "Failed to authorize contact",
                phone=phone,
                worker_id=worker.id,
                error=str(e),
                error_type=type(e).__name__,
            )


async def resolve_worker(client, repository=MembershipRepository) -> Worker:
    """
    The whatsapp_workers row for the connected client's own phone.

    Raises:
        RuntimeError: If the client has no address or no worker row matches it
    """
    phone = numeric_key(client.self_address)
    if not phone:
        raise RuntimeError("Messaging client did not report its own address")
    worker = await repository.find_worker_by_phone(phone)
    if worker is None:
        raise RuntimeError(f"No worker registered for phone {phone}")
    logger.info("Worker identity resolved", worker_id=worker.id, worker_phone=worker.phone)
    return worker

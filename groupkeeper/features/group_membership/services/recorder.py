"""
Best-effort persistence of membership outcomes.

A failed write never aborts a membership change that already happened on
the platform; it is returned as a failed Outcome for the caller to log.
"""

from groupkeeper.features.group_membership.domain import MembershipStatus
from groupkeeper.features.group_membership.errors import PersistenceFailure
from groupkeeper.features.group_membership.repository.membership_repository import (
    MembershipRepository,
)
from groupkeeper.infrastructure.observability.logging import get_logger
from groupkeeper.utils.outcome import Outcome

logger = get_logger(__name__)


def _write_failed(operation: str, error: Exception) -> Outcome:
    return Outcome.failure(operation, PersistenceFailure(operation, error))


class MembershipRecorder:
    """Wraps repository writes as Outcomes."""

    def __init__(self, repository=MembershipRepository):
        self.repository = repository

    async def record_entry(
        self,
        registration_id: int,
        phone: str,
        group_address: str,
        status: MembershipStatus = MembershipStatus.ACTIVE,
    ) -> Outcome:
        try:
            inserted = await self.repository.record_entry(
                registration_id, phone, group_address, status
            )
        except Exception as e:
            return _write_failed("record_entry", e)
        if not inserted:
            logger.debug("Membership already open", group=group_address, phone=phone)
        return Outcome.success("record_entry")

    async def record_exit(self, phone: str, group_address: str, reason: str) -> Outcome:
        try:
            closed = await self.repository.record_exit(phone, group_address, reason)
        except Exception as e:
            return _write_failed("record_exit", e)
        if not closed:
            logger.info("No open membership to close", group=group_address, phone=phone)
        return Outcome.success("record_exit")

    async def set_failure_reason(self, request_id: int, reason: str) -> Outcome:
        try:
            await self.repository.set_failure_reason(request_id, reason)
        except Exception as e:
            return _write_failed("set_failure_reason", e)
        return Outcome.success("set_failure_reason")

    async def mark_fulfilled(self, request_id: int) -> Outcome:
        try:
            changed = await self.repository.mark_fulfilled(request_id)
        except Exception as e:
            return _write_failed("mark_fulfilled", e)
        if not changed:
            logger.info("Request already fulfilled", request_id=request_id)
        return Outcome.success("mark_fulfilled")

    async def mark_attempt(self, request_id: int) -> Outcome:
        try:
            await self.repository.mark_attempt(request_id)
        except Exception as e:
            return _write_failed("mark_attempt", e)
        return Outcome.success("mark_attempt")

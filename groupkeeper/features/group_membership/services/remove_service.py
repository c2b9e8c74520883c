"""
Remove flow: take a member out of a community (when given) or a group.

Administrators and superadmins are never removed, whatever the request says.
"""

from groupkeeper.config import settings
from groupkeeper.features.group_membership.domain import (
    GroupRoster,
    RemovalResult,
    RemovalScope,
    RemoveWorkItem,
)
from groupkeeper.features.group_membership.domain.identity import (
    digits_only,
    to_group_address,
    to_member_address,
)
from groupkeeper.features.group_membership.repository.membership_repository import (
    MembershipRepository,
)
from groupkeeper.features.group_membership.services.recorder import MembershipRecorder
from groupkeeper.features.group_membership.services.roster_resolver import find_participant
from groupkeeper.infrastructure.observability.logging import get_logger
from groupkeeper.services.messaging_client import (
    MessagingClient,
    first_status,
    is_success_status,
)
from groupkeeper.services.notification_service import RemovalFailurePayload, TelegramNotifier
from groupkeeper.utils.bounded_call import BoundedCaller
from groupkeeper.utils.delay import delay_between

logger = get_logger(__name__)


class RemoveMembershipService:
    """Processes Remove work items against one messaging client connection."""

    def __init__(
        self,
        client: MessagingClient,
        notifier: TelegramNotifier,
        repository=MembershipRepository,
        caller: BoundedCaller | None = None,
    ):
        self.client = client
        self.notifier = notifier
        self.recorder = MembershipRecorder(repository)
        self.caller = caller or BoundedCaller()

    async def process(self, item: RemoveWorkItem) -> RemovalResult:
        """
        Run the remove flow for one queued request.

        Raises:
            InvalidIdentityError: If the phone or group id is malformed
        """
        member_address = to_member_address(item.phone)
        group_address = to_group_address(item.group_id)
        community_address = to_group_address(item.community_id) if item.community_id else None

        logger.info(
            "Processing remove request",
            registration_id=item.registration_id,
            phone=item.phone,
            group=group_address,
            community=community_address,
        )

        result = await self._remove(member_address, item.phone, group_address, community_address)

        if result.removed:
            phone = digits_only(item.phone)
            exits = [group_address]
            if result.scope is RemovalScope.COMMUNITY:
                exits.append(community_address)
            for address in exits:
                outcome = await self.recorder.record_exit(phone, address, item.reason)
                outcome.acknowledge(registration_id=item.registration_id, group=address)

            logger.info(
                "Member removed",
                phone=item.phone,
                scope=result.scope.value,
                group=result.group_name,
                reason=item.reason,
            )
            await delay_between(settings.MIN_DELAY, settings.MAX_DELAY, settings.DELAY_JITTER)
            return result

        logger.warning(
            "Member removal failed",
            phone=item.phone,
            group=group_address,
            community=community_address,
            error_reason=result.error_reason,
        )
        outcome = await self.notifier.notify_removal_failure(
            RemovalFailurePayload(
                phone=item.phone,
                registration_id=item.registration_id,
                group_id=group_address,
                group_name=result.group_name,
                community_id=community_address,
                removal_reason=item.reason,
                failure_reason=result.error_reason,
            )
        )
        outcome.acknowledge(registration_id=item.registration_id)
        return result

    async def _remove(
        self,
        member_address: str,
        phone: str,
        group_address: str,
        community_address: str | None,
    ) -> RemovalResult:
        if community_address:
            result, target_present = await self._remove_from(
                community_address, member_address, phone, RemovalScope.COMMUNITY
            )
            if target_present:
                return result
            if result.group_name is None:
                # community itself not found
                return result
            logger.info("Target not in community, trying group", reason=result.error_reason)

        result, _ = await self._remove_from(group_address, member_address, phone, RemovalScope.GROUP)
        return result

    async def _fetch_roster(self, address: str) -> GroupRoster | None:
        try:
            return await self.caller.read(
                "fetch_group_roster", lambda: self.client.fetch_group_roster(address)
            )
        except Exception as e:
            logger.warning("Roster unavailable", group=address, error=str(e))
            return None

    async def _remove_from(
        self, address: str, member_address: str, phone: str, scope: RemovalScope
    ) -> tuple[RemovalResult, bool]:
        """
        Remove the target from one roster.

        Returns:
            The result, and whether the target was found in the roster
        """
        label = scope.value.lower()
        roster = await self._fetch_roster(address)
        if roster is None:
            missing = RemovalResult(removed=False, error_reason=f"{scope.value} {address} not found.")
            return missing, False

        participant = find_participant(roster, member_address)
        if participant is None:
            return (
                RemovalResult(
                    removed=False,
                    group_name=roster.display_name,
                    error_reason=f"Participant {phone} not found in {label} {roster.display_name}.",
                ),
                False,
            )

        if participant.admin.is_admin:
            logger.warning("Refusing to remove admin", phone=phone, group=roster.display_name)
            return (
                RemovalResult(
                    removed=False,
                    group_name=roster.display_name,
                    error_reason=(
                        f"Participant {phone} is an admin in {label} {roster.display_name}; "
                        "admins are never removed."
                    ),
                ),
                True,
            )

        logger.info("Removing participant", phone=phone, group=roster.display_name, scope=label)
        try:
            updates = await self.caller.mutate(
                f"update_participants:remove:{label}",
                lambda: self.client.update_participants(roster.address, [member_address], "remove"),
            )
            status = first_status(updates)
        except Exception as e:
            return (
                RemovalResult(
                    removed=False,
                    group_name=roster.display_name,
                    error_reason=f"Removal call failed in {label}: {type(e).__name__}: {e}",
                ),
                True,
            )

        # an empty acknowledgement counts as success
        if not updates or is_success_status(status):
            return RemovalResult(removed=True, scope=scope, group_name=roster.display_name), True

        return (
            RemovalResult(
                removed=False,
                group_name=roster.display_name,
                error_reason=f"Removal rejected in {label} with status {status}.",
            ),
            True,
        )

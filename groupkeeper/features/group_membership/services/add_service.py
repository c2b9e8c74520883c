"""
Add flow: bring a registration's phones into a group.

Per request:
    1. fetch the group roster           (not found  -> finalize as attempt)
    2. check the bot is a group admin   (not admin  -> finalize as attempt)
    3. load the registration's phones   (none       -> finalize as attempt)
    4. deduplicate phones by last 8 digits
    5. per phone: RJB filter, authorization check, add, invite fallback
    6. finalize: fulfilled if any phone was added, invited or already present
"""

from groupkeeper.config import settings
from groupkeeper.features.group_membership.domain import (
    AddProcessResult,
    AddWorkItem,
    AttemptResult,
    AttemptStatus,
    GroupRoster,
    MemberPhone,
    Worker,
)
from groupkeeper.features.group_membership.domain.identity import (
    digits_only,
    invite_link,
    last8,
    to_group_address,
    to_member_address,
)
from groupkeeper.features.group_membership.errors import InvalidIdentityError
from groupkeeper.features.group_membership.repository.membership_repository import (
    MembershipRepository,
)
from groupkeeper.features.group_membership.services.recorder import MembershipRecorder
from groupkeeper.features.group_membership.services.roster_resolver import (
    is_admin,
    resolve_authorization,
)
from groupkeeper.infrastructure.observability.logging import get_logger
from groupkeeper.services.messaging_client import (
    MessagingClient,
    first_status,
    is_success_status,
)
from groupkeeper.services.notification_service import AdditionFailurePayload, TelegramNotifier
from groupkeeper.utils.bounded_call import BoundedCaller
from groupkeeper.utils.delay import delay_between, delay_secs

logger = get_logger(__name__)

STATUS_CONFLICT = 409


def parse_registration_id(raw: str) -> int:
    try:
        return int(str(raw).strip())
    except (TypeError, ValueError) as e:
        raise InvalidIdentityError(f"Invalid registration id: {raw!r}") from e


def deduplicate_phones(phones: list[MemberPhone]) -> list[MemberPhone]:
    """
    Keep the first phone per last-8-digit key, in input order.

    A later duplicate flagged as legal representative marks the kept entry
    as one, so RJB eligibility survives the dedup.
    """
    kept: dict[str, MemberPhone] = {}
    for phone in phones:
        key = last8(phone.phone)
        if not key:
            logger.info("Skipping phone without digits", phone=phone.phone)
            continue
        existing = kept.get(key)
        if existing is None:
            kept[key] = MemberPhone(phone=phone.phone, is_legal_rep=phone.is_legal_rep)
        elif phone.is_legal_rep and not existing.is_legal_rep:
            existing.is_legal_rep = True
    return list(kept.values())


class AddMembershipService:
    """Processes Add work items against one messaging client connection."""

    def __init__(
        self,
        client: MessagingClient,
        worker: Worker,
        notifier: TelegramNotifier,
        repository=MembershipRepository,
        caller: BoundedCaller | None = None,
    ):
        self.client = client
        self.worker = worker
        self.notifier = notifier
        self.repository = repository
        self.recorder = MembershipRecorder(repository)
        self.caller = caller or BoundedCaller()

    async def process(self, item: AddWorkItem) -> AddProcessResult:
        """
        Run the add flow for one queued request.

        Raises:
            InvalidIdentityError: If the group id or registration id is malformed
        """
        group_address = to_group_address(item.group_id)
        registration_id = parse_registration_id(item.registration_id)
        log = logger.bind(
            request_id=item.request_id, registration_id=registration_id, group=group_address
        )
        log.info("Processing add request", group_type=item.group_type)

        result = AddProcessResult()

        roster = await self._fetch_roster(group_address)
        if roster is None:
            result.failure_reason = f"Group {group_address} not found."
            await self.finalize(item, result, group_address)
            return result

        if not is_admin(roster, self.client.self_address, self.client.self_alt_address):
            result.failure_reason = f"Bot is not an admin in group {roster.display_name}."
            await self.finalize(item, result, group_address, roster.subject)
            return result

        try:
            phones = await self.repository.list_member_phones(registration_id)
        except Exception as e:
            log.error("Failed to load member phones", error=str(e))
            phones = []
        if not phones:
            result.failure_reason = f"No phones found for registration_id {registration_id}."
            await self.finalize(item, result, group_address, roster.subject)
            return result

        eligible = deduplicate_phones(phones)
        result.total_phones = len(eligible)

        for phone in eligible:
            if item.is_rjb and not phone.is_legal_rep:
                log.info("Skipping non legal representative in RJB group", phone=phone.phone)
                continue

            normalized = digits_only(phone.phone)
            try:
                authorization = await resolve_authorization(
                    self.repository, normalized, self.worker.id
                )
            except Exception as e:
                log.error("Authorization lookup failed", phone=normalized, error=str(e))
                continue

            if authorization is None:
                log.info("Phone not authorized for this worker", phone=normalized)
                result.unauthorized_phones.append(normalized)
                continue

            attempt = await self.attempt_add(authorization.phone_number, item, roster)
            result.record(attempt)

            if attempt.succeeded:
                outcome = await self.recorder.record_entry(
                    registration_id, normalized, group_address
                )
                outcome.acknowledge(request_id=item.request_id, phone=normalized)
            else:
                result.failure_reason = attempt.reason

            await self._backoff(attempt)

        await self.finalize(item, result, group_address, roster.subject)
        return result

    async def _fetch_roster(self, group_address: str) -> GroupRoster | None:
        try:
            return await self.caller.read(
                "fetch_group_roster", lambda: self.client.fetch_group_roster(group_address)
            )
        except Exception as e:
            logger.warning("Group roster unavailable", group=group_address, error=str(e))
            return None

    async def attempt_add(
        self, phone: str, item: AddWorkItem, roster: GroupRoster
    ) -> AttemptResult:
        """
        Add one phone to the group, falling back to an invitation.

        200-class status -> added, 409 -> already a member; any other status
        or a raised error triggers exactly one invite fallback.
        """
        member_address = to_member_address(phone)
        logger.info("Adding member to group", phone=phone, group=roster.display_name)

        try:
            updates = await self.caller.mutate(
                "update_participants:add",
                lambda: self.client.update_participants(roster.address, [member_address], "add"),
            )
            status = first_status(updates)
            if is_success_status(status):
                logger.info("Member added", phone=phone, group=roster.address)
                return AttemptResult(AttemptStatus.ADDED)
            if status == STATUS_CONFLICT:
                logger.info("Member already in group", phone=phone, group=roster.address)
                return AttemptResult(AttemptStatus.ALREADY_MEMBER)
            reason = f"status={status}"
        except Exception as e:
            reason = f"{type(e).__name__}: {e}"
            logger.warning("Add call failed", phone=phone, group=roster.address, error=reason)

        if await self.send_invite(member_address, roster):
            return AttemptResult(AttemptStatus.INVITED, reason=reason)

        failure = (
            f"Failed to add {phone} to group {roster.display_name} ({roster.address}). {reason}"
        )
        (await self.recorder.set_failure_reason(item.request_id, failure)).acknowledge(
            request_id=item.request_id
        )
        outcome = await self.notifier.notify_addition_failure(
            AdditionFailurePayload(
                request_id=item.request_id,
                registration_id=item.registration_id,
                group_id=roster.address,
                group_name=roster.subject,
                reason=failure,
            )
        )
        outcome.acknowledge(request_id=item.request_id)
        return AttemptResult(AttemptStatus.FAILED, reason=failure)

    async def send_invite(self, member_address: str, roster: GroupRoster) -> bool:
        """Send a native invite message, or a plain invite link if that fails."""
        try:
            code = await self.caller.read(
                "generate_invite_code", lambda: self.client.generate_invite_code(roster.address)
            )
        except Exception as e:
            logger.warning("Invite code unavailable", group=roster.address, error=str(e))
            return False
        if not code:
            logger.warning("Empty invite code", group=roster.address)
            return False

        group_name = roster.display_name
        try:
            await self.caller.send(
                "send_group_invite",
                lambda: self.client.send_group_invite(
                    member_address,
                    roster.address,
                    code,
                    group_name,
                    f'Invitation to join the group "{group_name}"',
                ),
            )
            logger.info("Invite sent", address=member_address, group=roster.address)
            return True
        except Exception as e:
            logger.warning(
                "Native invite failed, sending link", address=member_address, error=str(e)
            )

        try:
            await self.caller.send(
                "send_invite_link",
                lambda: self.client.send_direct_message(
                    member_address,
                    f'You are invited to join the group "{group_name}": {invite_link(code)}',
                ),
            )
            logger.info("Invite link sent", address=member_address, group=roster.address)
            return True
        except Exception as e:
            logger.warning("Invite link failed", address=member_address, error=str(e))
            return False

    async def finalize(
        self,
        item: AddWorkItem,
        result: AddProcessResult,
        group_address: str,
        group_name: str | None = None,
    ) -> None:
        """
        Settle the request status. Fulfilled is a one-way latch held by the
        repository, so repeating this call does not double count.
        """
        if result.fulfilled:
            (await self.recorder.mark_fulfilled(item.request_id)).acknowledge(
                request_id=item.request_id
            )
            logger.info(
                "Add request fulfilled",
                request_id=item.request_id,
                processed=result.processed_phones,
                total=result.total_phones,
            )
            return

        reason = result.failure_reason
        if reason is None and result.unauthorized_phones:
            reason = f"No authorized phone for registration_id {item.registration_id}."
        if reason is None:
            reason = f"No eligible phone for registration_id {item.registration_id}."

        (await self.recorder.mark_attempt(item.request_id)).acknowledge(request_id=item.request_id)
        (await self.recorder.set_failure_reason(item.request_id, reason)).acknowledge(
            request_id=item.request_id
        )
        outcome = await self.notifier.notify_addition_failure(
            AdditionFailurePayload(
                request_id=item.request_id,
                registration_id=item.registration_id,
                group_id=group_address,
                group_name=group_name,
                reason=reason,
                unauthorized_phones=list(result.unauthorized_phones),
            )
        )
        outcome.acknowledge(request_id=item.request_id)
        logger.warning("Add request not fulfilled", request_id=item.request_id, reason=reason)

        await delay_secs(settings.IDLE_DELAY, settings.IDLE_DELAY_JITTER)

    async def _backoff(self, attempt: AttemptResult) -> None:
        if attempt.status is AttemptStatus.ADDED:
            await delay_between(settings.MIN_DELAY, settings.MAX_DELAY, settings.DELAY_JITTER)
        else:
            await delay_secs(settings.IDLE_DELAY, settings.IDLE_DELAY_JITTER)

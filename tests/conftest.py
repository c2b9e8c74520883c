from collections import Counter

import pytest

from groupkeeper.features.group_membership.domain import (
    AuthorizationRecord,
    GroupRoster,
    MemberPhone,
    MembershipStatus,
    Participant,
    ParticipantUpdate,
    Worker,
)
from groupkeeper.features.group_membership.domain.identity import digits_only, last8
from groupkeeper.features.group_membership.services import add_service, remove_service
from groupkeeper.utils.bounded_call import BoundedCaller, CallPolicy
from groupkeeper.utils.outcome import Outcome

BOT_PHONE = "5511900000000"
BOT_ADDRESS = f"{BOT_PHONE}@s.whatsapp.net"
BOT_LID = "99887766554433@lid"


def make_roster(address: str, subject: str = "JB Test Group", *participants: Participant):
    return GroupRoster(address=address, subject=subject, participants=list(participants))


def bot_participant(admin: str = "admin") -> Participant:
    return Participant(id=BOT_LID, phone_number=BOT_ADDRESS, admin=admin)


class FakeMessagingClient:
    """In-memory messaging client recording every call."""

    def __init__(self):
        self.self_address = BOT_ADDRESS
        self.self_alt_address = BOT_LID
        self.rosters: dict[str, GroupRoster] = {}
        self.roster_errors: dict[str, Exception] = {}
        self.update_results: dict[str, object] = {"add": 200, "remove": 200}
        self.updates_as_mappings = False
        self.invite_code: str | None = "AbCdEfGhIjKl"
        self.invite_error: Exception | None = None
        self.group_invite_error: Exception | None = None
        self.direct_message_error: Exception | None = None
        self.contacts: list[str] = []
        self.handlers = []
        self.reconnect_handlers = []
        self.closed = False

        self.roster_calls: list[str] = []
        self.update_calls: list[tuple[str, list[str], str]] = []
        self.group_invites: list[tuple[str, str, str, str]] = []
        self.direct_messages: list[tuple[str, str]] = []
        self.deleted: list[tuple[str, object]] = []

    def add_roster(self, roster: GroupRoster) -> GroupRoster:
        self.rosters[roster.address] = roster
        return roster

    async def fetch_group_roster(self, group_address: str):
        self.roster_calls.append(group_address)
        if group_address in self.roster_errors:
            raise self.roster_errors[group_address]
        return self.rosters.get(group_address)

    async def update_participants(self, group_address, member_addresses, action):
        self.update_calls.append((group_address, list(member_addresses), action))
        result = self.update_results.get(action, 200)
        if isinstance(result, Exception):
            raise result
        if result is None:
            return []
        if self.updates_as_mappings:
            return [{"status": str(result), "jid": member_addresses[0]}]
        return [ParticipantUpdate(status=result, address=member_addresses[0])]

    async def generate_invite_code(self, group_address):
        if self.invite_error is not None:
            raise self.invite_error
        return self.invite_code

    async def send_group_invite(self, address, group_address, invite_code, group_name, caption):
        if self.group_invite_error is not None:
            raise self.group_invite_error
        self.group_invites.append((address, group_address, invite_code, group_name))
        return {"id": "invite-msg"}

    async def send_direct_message(self, address, text):
        if self.direct_message_error is not None:
            raise self.direct_message_error
        self.direct_messages.append((address, text))
        return {"id": "direct-msg"}

    async def delete_message(self, chat_address, message_key):
        self.deleted.append((chat_address, message_key))

    async def list_direct_contacts(self):
        return list(self.contacts)

    def subscribe_messages(self, handler):
        self.handlers.append(handler)

    def subscribe_reconnect(self, handler):
        self.reconnect_handlers.append(handler)

    async def reconnect(self):
        for handler in self.reconnect_handlers:
            await handler()

    async def close(self):
        self.closed = True

    @property
    def add_calls(self):
        return [call for call in self.update_calls if call[2] == "add"]

    @property
    def remove_calls(self):
        return [call for call in self.update_calls if call[2] == "remove"]


class FakeMembershipRepository:
    """Stands in for MembershipRepository's classmethods."""

    def __init__(self):
        self.phones: dict[int, list[MemberPhone]] = {}
        self.authorizations: list[AuthorizationRecord] = []
        self.workers: list[Worker] = [Worker(id=1, phone=BOT_PHONE)]
        self.entries: list[dict] = []
        self.exits: list[tuple[str, str, str]] = []
        self.fulfilled: set[int] = set()
        self.attempts: Counter = Counter()
        self.failure_reasons: dict[int, str] = {}
        self.fail_writes = False

    def authorize(self, phone: str, worker_id: int = 1) -> None:
        self.authorizations.append(
            AuthorizationRecord(phone_number=digits_only(phone), worker_id=worker_id)
        )

    def _check_writes(self):
        if self.fail_writes:
            raise RuntimeError("database unavailable")

    async def record_entry(self, registration_id, phone_number, group_id, status=MembershipStatus.ACTIVE):
        self._check_writes()
        for entry in self.entries:
            if (entry["registration_id"], entry["phone"], entry["group_id"]) == (
                registration_id,
                phone_number,
                group_id,
            ):
                return False
        self.entries.append(
            {
                "registration_id": registration_id,
                "phone": phone_number,
                "group_id": group_id,
                "status": status,
            }
        )
        return True

    async def record_exit(self, phone_number, group_id, reason):
        self._check_writes()
        self.exits.append((phone_number, group_id, reason))
        return 1

    async def mark_fulfilled(self, request_id):
        self._check_writes()
        if request_id in self.fulfilled:
            return False
        self.fulfilled.add(request_id)
        return True

    async def mark_attempt(self, request_id):
        self._check_writes()
        if request_id in self.fulfilled:
            return False
        self.attempts[request_id] += 1
        return True

    async def set_failure_reason(self, request_id, reason):
        self._check_writes()
        self.failure_reasons[request_id] = reason

    async def list_member_phones(self, registration_id):
        return list(self.phones.get(registration_id, []))

    async def find_worker_by_phone(self, phone):
        for worker in self.workers:
            if digits_only(worker.phone) == digits_only(phone):
                return worker
        return None

    async def find_authorization(self, key, worker_id):
        for record in self.authorizations:
            if record.worker_id == worker_id and last8(record.phone_number) == key:
                return record
        return None

    async def upsert_authorizations(self, records):
        records = list(records)
        self.authorizations.extend(records)
        return len(records)


class FakeNotifier:
    def __init__(self):
        self.addition_failures = []
        self.removal_failures = []
        self.flagged = []

    async def notify_addition_failure(self, payload):
        self.addition_failures.append(payload)
        return Outcome.success("notify_addition_failure")

    async def notify_removal_failure(self, payload):
        self.removal_failures.append(payload)
        return Outcome.success("notify_removal_failure")

    async def send_flagged_log(self, payload):
        self.flagged.append(payload)
        return Outcome.success("send_flagged_log")

    async def close(self):
        pass


class FakeRedis:
    """List-backed stand-in for RedisQueueClient."""

    def __init__(self):
        self.lists: dict[str, list[str]] = {}
        self.healthy = True

    async def pop_left(self, key: str) -> str | None:
        items = self.lists.get(key)
        if not items:
            return None
        return items.pop(0)

    async def enqueue(self, key: str, value: str) -> int:
        self.lists.setdefault(key, []).append(value)
        return len(self.lists[key])

    async def length(self, key: str) -> int:
        return len(self.lists.get(key, []))

    async def peek(self, key: str, start: int = 0, end: int = -1) -> list[str]:
        items = self.lists.get(key, [])
        stop = None if end == -1 else end + 1
        return items[start:stop]

    async def ping(self) -> bool:
        return self.healthy


@pytest.fixture
def fake_client():
    return FakeMessagingClient()


@pytest.fixture
def fake_repository():
    return FakeMembershipRepository()


@pytest.fixture
def fake_notifier():
    return FakeNotifier()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def worker():
    return Worker(id=1, phone=BOT_PHONE)


@pytest.fixture
def caller():
    return BoundedCaller(CallPolicy(timeout_ms=200, max_attempts=2, backoff_base=0))


@pytest.fixture(autouse=True)
def delays(monkeypatch):
    """Record backoff pauses in the flows instead of sleeping."""
    calls = []

    async def fake_between(min_seconds, max_seconds, jitter=0.0):
        calls.append(("between", min_seconds, max_seconds, jitter))
        return min_seconds

    async def fake_secs(seconds, jitter=0.0):
        calls.append(("idle", seconds, jitter))
        return seconds

    for module in (add_service, remove_service):
        monkeypatch.setattr(module, "delay_between", fake_between, raising=False)
        monkeypatch.setattr(module, "delay_secs", fake_secs, raising=False)
    return calls

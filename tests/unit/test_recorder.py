"""
Tests for MembershipRecorder and Outcome.
"""

import pytest

from groupkeeper.features.group_membership.services.recorder import MembershipRecorder
from groupkeeper.utils.outcome import Outcome


@pytest.mark.asyncio
async def test_record_entry_success(fake_repository):
    recorder = MembershipRecorder(fake_repository)

    outcome = await recorder.record_entry(501, "5511999998888", "120363@g.us")

    assert outcome.ok
    assert len(fake_repository.entries) == 1


@pytest.mark.asyncio
async def test_repeated_entry_is_still_success(fake_repository):
    recorder = MembershipRecorder(fake_repository)
    await recorder.record_entry(501, "5511999998888", "120363@g.us")

    outcome = await recorder.record_entry(501, "5511999998888", "120363@g.us")

    assert outcome.ok
    assert len(fake_repository.entries) == 1


@pytest.mark.asyncio
async def test_write_failure_becomes_outcome(fake_repository):
    fake_repository.fail_writes = True
    recorder = MembershipRecorder(fake_repository)

    outcomes = [
        await recorder.record_entry(501, "5511999998888", "120363@g.us"),
        await recorder.record_exit("5511999998888", "120363@g.us", "expired"),
        await recorder.mark_fulfilled(1),
        await recorder.mark_attempt(1),
        await recorder.set_failure_reason(1, "x"),
    ]

    assert not any(o.ok for o in outcomes)
    assert outcomes[0].error == "PersistenceFailure: RuntimeError: database unavailable"


def test_outcome_acknowledge():
    assert Outcome.success("op").acknowledge() is True
    assert Outcome.failure("op", "boom").acknowledge(request_id=1) is False


def test_outcome_skip_is_ok():
    outcome = Outcome.skip("notify", "not configured")

    assert outcome.ok and outcome.skipped
    assert outcome.error == "not configured"

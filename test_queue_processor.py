import pytest

import crud
from conftest import utc
from database import DeviceToken, QueueEntry
from fcm_client import ConfigurationError
from queue_processor import NO_TOKENS_ERROR, process_queue

NOW = utc(2025, 3, 10, 12, 0)


@pytest.fixture
def make_entry(db):
    def _make(profile_id="profile-1", reference_id="1", scheduled_at=utc(2025, 3, 10, 11, 55), **kwargs):
        entry = QueueEntry(
            profile_id=profile_id,
            type=kwargs.pop("type", "medication"),
            reference_id=reference_id,
            title="Medication time",
            body="Reminder: Metformina at 08:00",
            scheduled_at=scheduled_at,
            **kwargs
        )
        db.add(entry)
        db.commit()
        db.refresh(entry)
        return entry

    return _make


@pytest.mark.asyncio
async def test_due_entries_are_dispatched_and_marked(db, fake_client, make_profile, make_entry):
    make_profile("with-tokens", tokens=["device-a", "device-b"])
    make_profile("no-tokens")
    delivered = make_entry(profile_id="with-tokens", reference_id="7")
    orphan = make_entry(profile_id="no-tokens")

    result = await process_queue(db, fake_client, now=NOW)

    assert result.processed == 2
    assert result.successful == 1
    assert result.failed == 1

    db.refresh(delivered)
    db.refresh(orphan)
    assert delivered.processed is True
    assert delivered.succeeded is True
    assert delivered.error is None
    assert delivered.processed_at is not None
    assert orphan.processed is True
    assert orphan.succeeded is False
    assert orphan.error == NO_TOKENS_ERROR

    assert [c["token"] for c in fake_client.calls] == ["device-a", "device-b"]
    assert fake_client.calls[0]["data"] == {"type": "medication", "reference_id": "7"}


@pytest.mark.asyncio
async def test_future_and_processed_entries_are_untouched(db, fake_client, make_profile, make_entry):
    make_profile(tokens=["device-a"])
    future = make_entry(scheduled_at=utc(2025, 3, 10, 12, 5))
    done = make_entry(reference_id="2", processed=True, succeeded=True)

    result = await process_queue(db, fake_client, now=NOW)

    assert result.processed == 0
    assert fake_client.calls == []
    db.refresh(future)
    db.refresh(done)
    assert future.processed is False
    assert done.succeeded is True


@pytest.mark.asyncio
async def test_entry_is_processed_only_once(db, fake_client, make_profile, make_entry):
    make_profile(tokens=["device-a"])
    make_entry()

    first = await process_queue(db, fake_client, now=NOW)
    second = await process_queue(db, fake_client, now=NOW)

    assert first.processed == 1
    assert second.processed == 0
    assert len(fake_client.calls) == 1


@pytest.mark.asyncio
async def test_batch_is_capped(db, fake_client, make_profile, make_entry):
    make_profile(tokens=["device-a"])
    for i in range(3):
        make_entry(reference_id=str(i))

    result = await process_queue(db, fake_client, now=NOW, limit=2)

    assert result.processed == 2
    assert db.query(QueueEntry).filter(QueueEntry.processed.is_(False)).count() == 1


@pytest.mark.asyncio
async def test_all_tokens_failing_records_joined_errors(db, fake_client, make_profile, make_entry):
    make_profile(tokens=["device-a", "device-b"])
    fake_client.failures = {"device-a": "Unavailable", "device-b": "Internal error"}
    entry = make_entry()

    result = await process_queue(db, fake_client, now=NOW)

    assert result.failed == 1
    db.refresh(entry)
    assert entry.succeeded is False
    assert entry.error == "Token 0: Unavailable; Token 1: Internal error"


@pytest.mark.asyncio
async def test_partial_success_counts_as_success(db, fake_client, make_profile, make_entry):
    make_profile(tokens=["device-a", "device-b"])
    fake_client.failures = {"device-b": "Unavailable"}
    entry = make_entry()

    result = await process_queue(db, fake_client, now=NOW)

    assert result.successful == 1
    db.refresh(entry)
    assert entry.succeeded is True
    assert entry.error is None


@pytest.mark.asyncio
async def test_rejected_tokens_are_deactivated(db, fake_client, make_profile, make_entry):
    make_profile(tokens=["device-a", "stale"])
    fake_client.failures = {"stale": "Requested entity was not found."}
    fake_client.rejected = {"stale"}
    make_entry()

    await process_queue(db, fake_client, now=NOW)

    tokens = {t.token: t.active for t in db.query(DeviceToken).all()}
    assert tokens == {"device-a": True, "stale": False}


@pytest.mark.asyncio
async def test_failure_in_one_entry_does_not_stop_the_batch(db, fake_client, make_profile, make_entry, monkeypatch):
    make_profile("broken", tokens=["device-x"])
    make_profile("healthy", tokens=["device-a"])
    broken = make_entry(profile_id="broken")
    healthy = make_entry(profile_id="healthy")
    real_lookup = crud.get_active_tokens

    def flaky_lookup(session, profile_id):
        if profile_id == "broken":
            raise RuntimeError("token store unavailable")
        return real_lookup(session, profile_id)

    monkeypatch.setattr(crud, "get_active_tokens", flaky_lookup)

    result = await process_queue(db, fake_client, now=NOW)

    assert result.processed == 2
    assert result.successful == 1
    db.refresh(broken)
    db.refresh(healthy)
    assert broken.processed is True
    assert broken.succeeded is False
    assert broken.error == "token store unavailable"
    assert healthy.succeeded is True


@pytest.mark.asyncio
async def test_missing_configuration_leaves_entries_untouched(db, fake_client, make_profile, make_entry):
    make_profile(tokens=["device-a"])
    entry = make_entry()
    fake_client.configured = False

    with pytest.raises(ConfigurationError):
        await process_queue(db, fake_client, now=NOW)

    db.refresh(entry)
    assert entry.processed is False
    assert fake_client.calls == []

from __future__ import annotations

import asyncio

import pytest

from alert_store.time_utils import parse_iso
from medalert_core import AlertNotFound, InvalidTransitionError, KIND_SOS, ValidationError
from medalert_core.lifecycle import AlertLifecycleService


def test_sos_submit_acknowledge_and_reject_reopen(make_service):
    service = make_service()

    async def scenario():
        alert = await service.submit_sos(subject_id="u1", payload={"latitude": 12.9, "longitude": 77.6})
        assert alert.id
        assert alert.status == "new"
        assert alert.kind == KIND_SOS
        assert alert.created_at == alert.updated_at

        await service.transition(alert.id, "acknowledged")
        stored = await service.get_alert(alert.id)
        assert stored.status == "acknowledged"
        assert parse_iso(stored.updated_at) > parse_iso(stored.created_at)
        assert stored.lifecycle == ["new", "acknowledged"]

        with pytest.raises(InvalidTransitionError):
            await service.transition(alert.id, "new")
        return await service.get_alert(alert.id)

    final = asyncio.run(scenario())
    assert final.status == "acknowledged"


def test_sos_missing_latitude_is_rejected_without_a_record(make_service, alert_db):
    service = make_service()

    async def scenario():
        with pytest.raises(ValidationError) as excinfo:
            await service.submit_sos(subject_id="u1", payload={"longitude": 77.6})
        assert "latitude" in excinfo.value.fields
        return await service.list_alerts("sos")

    assert asyncio.run(scenario()) == []
    with alert_db.connection() as conn:
        assert conn.execute("SELECT COUNT(*) AS count FROM alerts").fetchone()["count"] == 0


@pytest.mark.parametrize(
    "payload",
    [
        {"latitude": 91.0, "longitude": 10.0},
        {"latitude": -12.0, "longitude": 181.5},
        {"latitude": "nan", "longitude": 10.0},
        {"latitude": float("inf"), "longitude": 10.0},
        {"latitude": "north", "longitude": 10.0},
    ],
)
def test_sos_rejects_out_of_range_or_non_finite_coordinates(make_service, payload):
    service = make_service()

    async def scenario():
        with pytest.raises(ValidationError):
            await service.submit_sos(subject_id="u1", payload=payload)
        return await service.list_alerts("sos")

    assert asyncio.run(scenario()) == []


def test_sos_requires_subject(make_service):
    service = make_service()
    with pytest.raises(ValidationError):
        asyncio.run(service.submit_sos(subject_id="  ", payload={"latitude": 1.0, "longitude": 2.0}))


def test_client_supplied_timestamps_are_ignored(make_service):
    service = make_service()
    alert = asyncio.run(
        service.submit_sos(
            subject_id="u1",
            payload={"latitude": 1.0, "longitude": 2.0, "created_at": "1999-01-01T00:00:00+00:00"},
        )
    )
    assert not alert.created_at.startswith("1999")
    assert "created_at" not in alert.payload


def test_sos_skip_acknowledge_and_terminal_resolved(make_service):
    service = make_service()

    async def scenario():
        alert = await service.submit_sos(subject_id="u1", payload={"latitude": 1.0, "longitude": 2.0})
        resolved = await service.transition(alert.id, "resolved", reviewer_notes="Patient reached by phone.")
        assert resolved.status == "resolved"
        assert resolved.reviewer_notes == "Patient reached by phone."
        for target in ("acknowledged", "resolved", "new"):
            with pytest.raises(InvalidTransitionError):
                await service.transition(alert.id, target)

    asyncio.run(scenario())


def test_fraud_states_are_rejected_for_sos_alerts(make_service):
    service = make_service()

    async def scenario():
        alert = await service.submit_sos(subject_id="u1", payload={"latitude": 1.0, "longitude": 2.0})
        with pytest.raises(InvalidTransitionError):
            await service.transition(alert.id, "dismissed")

    asyncio.run(scenario())


def test_transition_of_unknown_alert_fails(make_service):
    service = make_service()
    with pytest.raises(AlertNotFound):
        asyncio.run(service.transition("does-not-exist", "acknowledged"))
    assert issubclass(AlertNotFound, InvalidTransitionError)


def test_no_transition_sequence_returns_to_new():
    all_states = ["new", "acknowledged", "resolved", "reviewing", "dismissed", "action_taken", "bogus"]
    for kind in ("sos", "fraud-claim", "fraud-prescription"):
        table = AlertLifecycleService.transitions_for(kind)
        for current in table:
            for target in all_states:
                if target == "new":
                    with pytest.raises(InvalidTransitionError):
                        AlertLifecycleService.check_transition(kind, current, target)
                elif target in table[current]:
                    AlertLifecycleService.check_transition(kind, current, target)
                else:
                    with pytest.raises(InvalidTransitionError):
                        AlertLifecycleService.check_transition(kind, current, target)
            assert "new" not in table[current]


def test_reviewer_notes_kept_when_later_transition_omits_them(make_service):
    service = make_service()

    async def scenario():
        alert = await service.submit_sos(subject_id="u1", payload={"latitude": 1.0, "longitude": 2.0})
        await service.transition(alert.id, "acknowledged", reviewer_notes="Ambulance dispatched.")
        await service.transition(alert.id, "resolved")
        return await service.get_alert(alert.id), await service.transition_history(alert.id)

    stored, history = asyncio.run(scenario())
    assert stored.reviewer_notes == "Ambulance dispatched."
    assert stored.lifecycle == ["new", "acknowledged", "resolved"]
    assert [(row["from_status"], row["to_status"]) for row in history] == [
        ("new", "acknowledged"),
        ("acknowledged", "resolved"),
    ]
    assert history[0]["reviewer_notes"] == "Ambulance dispatched."
    assert history[1]["reviewer_notes"] is None


def test_updated_at_never_precedes_created_at(make_service):
    service = make_service()

    async def scenario():
        alert = await service.submit_sos(subject_id="u1", payload={"latitude": 1.0, "longitude": 2.0})
        first = await service.transition(alert.id, "acknowledged")
        second = await service.transition(alert.id, "acknowledged", reviewer_notes="still on it")
        return alert, first, second

    alert, first, second = asyncio.run(scenario())
    created = parse_iso(alert.created_at)
    assert created <= parse_iso(first.updated_at) < parse_iso(second.updated_at)


def test_polled_list_is_newest_first(make_service):
    service = make_service()

    async def scenario():
        ids = []
        for idx in range(3):
            alert = await service.submit_sos(subject_id=f"u{idx}", payload={"latitude": 1.0, "longitude": 2.0})
            ids.append(alert.id)
        await service.transition(ids[2], "resolved")
        return ids, await service.list_alerts("sos")

    ids, listed = asyncio.run(scenario())
    # Polled reads ignore status; only created_at matters.
    assert [alert.id for alert in listed] == list(reversed(ids))


def test_unknown_kind_is_a_validation_error(make_service):
    service = make_service()
    with pytest.raises(ValidationError):
        asyncio.run(service.list_alerts("pharmacy"))

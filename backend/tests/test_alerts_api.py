from __future__ import annotations

import asyncio

from fakes import StubScorer, claim_request, suspicious
from sse_utils import parse_sse_events, snapshot_ids


def _submit_sos(client, headers, **overrides):
    payload = {"latitude": 40.4406, "longitude": -79.9959, "message": "Fell down the stairs."}
    payload.update(overrides)
    return client.post("/alerts/sos", headers=headers, json=payload)


def test_requests_without_identity_are_rejected(client):
    assert client.post("/alerts/sos", json={"latitude": 1, "longitude": 2}).status_code == 401
    assert client.get("/alerts", params={"kind": "sos"}).status_code == 401
    assert client.get("/alerts", params={"kind": "sos"}, headers={"X-User-Id": "!bad id"}).status_code == 400


def test_sos_submit_list_get_and_acknowledge(client, auth_headers):
    headers = auth_headers("responder-1")
    created = _submit_sos(client, auth_headers("patient-7"))
    assert created.status_code == 201
    body = created.json()
    assert body["status"] == "new"
    assert body["kind"] == "sos"
    assert body["subject_id"] == "patient-7"
    assert body["payload"]["message"] == "Fell down the stairs."
    alert_id = body["id"]

    listed = client.get("/alerts", params={"kind": "sos"}, headers=headers)
    assert listed.status_code == 200
    assert [item["id"] for item in listed.json()["items"]] == [alert_id]

    fetched = client.get(f"/alerts/{alert_id}", headers=headers)
    assert fetched.status_code == 200
    assert fetched.json()["created_at"] == body["created_at"]

    acknowledged = client.post(
        f"/alerts/{alert_id}/status",
        headers=headers,
        json={"status": "Acknowledged", "reviewer_notes": "Calling the patient."},
    )
    assert acknowledged.status_code == 200
    assert acknowledged.json()["status"] == "acknowledged"
    assert acknowledged.json()["reviewer_notes"] == "Calling the patient."

    reopened = client.post(f"/alerts/{alert_id}/status", headers=headers, json={"status": "new"})
    assert reopened.status_code == 409
    assert client.get(f"/alerts/{alert_id}", headers=headers).json()["status"] == "acknowledged"

    history = client.get(f"/alerts/{alert_id}/transitions", headers=headers)
    assert history.status_code == 200
    items = history.json()["items"]
    assert len(items) == 1
    assert items[0]["from_status"] == "new"
    assert items[0]["to_status"] == "acknowledged"
    assert items[0]["actor_id"] == "responder-1"


def test_invalid_sos_payload_returns_422_with_fields(client, auth_headers):
    response = client.post("/alerts/sos", headers=auth_headers("patient-7"), json={"longitude": 10.0})
    assert response.status_code == 422
    assert "latitude" in response.json()["detail"]["fields"]

    out_of_range = _submit_sos(client, auth_headers("patient-7"), latitude=123.0)
    assert out_of_range.status_code == 422

    listed = client.get("/alerts", params={"kind": "sos"}, headers=auth_headers("responder-1"))
    assert listed.json()["items"] == []


def test_unknown_alert_and_unknown_kind(client, auth_headers):
    headers = auth_headers("responder-1")
    assert client.get("/alerts/missing-id", headers=headers).status_code == 404
    assert client.get("/alerts/missing-id/transitions", headers=headers).status_code == 404
    missing = client.post("/alerts/missing-id/status", headers=headers, json={"status": "acknowledged"})
    assert missing.status_code == 404
    assert client.get("/alerts", params={"kind": "pharmacy"}, headers=headers).status_code == 422
    assert client.get("/alerts/stream", params={"kind": "pharmacy"}, headers=headers).status_code == 422


def test_unknown_status_is_a_conflict(client, auth_headers):
    alert_id = _submit_sos(client, auth_headers("patient-7")).json()["id"]
    response = client.post(
        f"/alerts/{alert_id}/status",
        headers=auth_headers("responder-1"),
        json={"status": "teleported"},
    )
    assert response.status_code == 409


def test_stream_initial_snapshot_is_ordered_for_display(client, auth_headers):
    patient = auth_headers("patient-7")
    responder = auth_headers("responder-1")
    first = _submit_sos(client, patient).json()["id"]
    second = _submit_sos(client, patient).json()["id"]
    third = _submit_sos(client, patient).json()["id"]
    client.post(f"/alerts/{third}/status", headers=responder, json={"status": "resolved"})
    client.post(f"/alerts/{first}/status", headers=responder, json={"status": "acknowledged"})

    response = client.get("/alerts/stream", params={"kind": "sos", "max_events": 1}, headers=responder)
    assert response.status_code == 200
    assert "text/event-stream" in response.headers.get("content-type", "")

    events = parse_sse_events(response.text)
    assert len(events) == 1
    assert events[0]["event"] == "snapshot"
    assert events[0]["data"]["kind"] == "sos"
    # new, then acknowledged, then resolved.
    assert snapshot_ids(events[0]) == [second, first, third]

    health = client.get("/health").json()
    assert health["live_subscriptions"] == 0


def test_fraud_analysis_with_scorer_disabled_returns_fallback(client, auth_headers):
    response = client.post("/alerts/fraud/analyze", headers=auth_headers("analyst-1"), json=claim_request("c1"))
    assert response.status_code == 200
    body = response.json()
    assert body["assessment"]["fallback"] is True
    assert body["assessment"]["is_suspicious"] is False
    assert body["alert_id"] is None
    listed = client.get("/alerts", params={"kind": "fraud"}, headers=auth_headers("analyst-1"))
    assert listed.json()["items"] == []


def test_suspicious_fraud_analysis_creates_reviewable_alert(client, auth_headers, backend_module, monkeypatch):
    monkeypatch.setattr(backend_module.container.alerts, "scorer", StubScorer(assessment=suspicious(score=0.82)))
    headers = auth_headers("analyst-1")

    response = client.post("/alerts/fraud/analyze", headers=headers, json=claim_request("c1"))
    assert response.status_code == 200
    body = response.json()
    assert body["assessment"]["suspicion_score"] == 0.82
    alert_id = body["alert_id"]
    assert body["alert"]["kind"] == "fraud-claim"
    assert body["alert"]["payload"]["reference_id"] == "c1"

    listed = client.get("/alerts", params={"kind": "fraud-claim"}, headers=headers).json()["items"]
    assert [item["id"] for item in listed] == [alert_id]

    reviewing = client.post(f"/alerts/{alert_id}/status", headers=headers, json={"status": "reviewing"})
    assert reviewing.status_code == 200
    closed = client.post(
        f"/alerts/{alert_id}/status",
        headers=headers,
        json={"status": "action_taken", "reviewer_notes": "Referred to investigations."},
    )
    assert closed.status_code == 200
    assert closed.json()["lifecycle"] == ["new", "reviewing", "action_taken"]

    # SOS states do not apply to fraud alerts.
    bad = client.post(f"/alerts/{alert_id}/status", headers=headers, json={"status": "resolved"})
    assert bad.status_code == 409


def test_malformed_fraud_request_returns_422(client, auth_headers):
    response = client.post(
        "/alerts/fraud/analyze",
        headers=auth_headers("analyst-1"),
        json={"analysis_type": "claim"},
    )
    assert response.status_code == 422


def test_health_reports_configuration(client):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert body["scorer_configured"] is False
    assert body["notifier_configured"] is False


def test_demo_alerts_are_seeded_on_startup_when_enabled(backend_module, monkeypatch, auth_headers):
    from fastapi.testclient import TestClient

    monkeypatch.setenv("MEDALERT_SEED_DEMO", "true")
    with TestClient(backend_module.app) as seeded_client:
        sos = seeded_client.get("/alerts", params={"kind": "sos"}, headers=auth_headers("responder-1")).json()
        fraud = seeded_client.get("/alerts", params={"kind": "fraud"}, headers=auth_headers("responder-1")).json()

    assert {item["id"] for item in sos["items"]} == {"demo-sos-1", "demo-sos-2"}
    assert {item["id"] for item in fraud["items"]} == {"demo-fraud-claim-1", "demo-fraud-rx-1"}


def test_stream_backlog_keeps_only_the_newest_snapshots(backend_module):
    async def scenario():
        queue: asyncio.Queue = asyncio.Queue(maxsize=2)
        for marker in ("first", "second", "third"):
            backend_module.offer_latest(queue, [marker])
        return [queue.get_nowait() for _ in range(queue.qsize())]

    assert asyncio.run(scenario()) == [["second"], ["third"]]


def test_stream_releases_its_subscription_after_the_last_event(client, auth_headers, backend_module):
    params = {"kind": "sos", "max_events": 1}
    with client.stream("GET", "/alerts/stream", params=params, headers=auth_headers("responder-1")) as response:
        assert response.status_code == 200
        body = "".join(response.iter_text())
    assert len(parse_sse_events(body)) == 1
    assert len(backend_module.container.alerts.hub) == 0

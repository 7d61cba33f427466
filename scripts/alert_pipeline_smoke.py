#!/usr/bin/env python3
from __future__ import annotations

import importlib
import json
import os
import sys
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from fastapi.testclient import TestClient


@dataclass
class Check:
  name: str
  passed: bool
  detail: str = ""
  payload: dict[str, Any] = field(default_factory=dict)


def parse_sse_events(payload_text: str) -> list[dict[str, Any]]:
  events: list[dict[str, Any]] = []
  current: dict[str, Any] = {}
  for raw_line in payload_text.splitlines():
    line = raw_line.strip("\r")
    if line.startswith("event: "):
      current["event"] = line[7:]
    elif line.startswith("data: "):
      current["data"] = json.loads(line[6:])
    elif line == "" and current:
      events.append(current)
      current = {}
  if current:
    events.append(current)
  return events


def run() -> int:
  repo_root = Path(__file__).resolve().parents[1]
  backend_dir = repo_root / "backend"
  if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

  # Throwaway database with the demo alerts loaded, unless the caller points elsewhere.
  scratch_dir = tempfile.mkdtemp(prefix="medalert-smoke-")
  os.environ.setdefault("MEDALERT_DB_PATH", str(Path(scratch_dir) / "smoke.sqlite"))
  os.environ.setdefault("MEDALERT_SEED_DEMO", "true")

  backend_module = importlib.import_module("main")
  backend_module = importlib.reload(backend_module)

  responder = {"Authorization": "Bearer smoke-responder"}
  patient = {"Authorization": "Bearer smoke-patient"}
  checks: list[Check] = []

  def record(name: str, fn: Callable[[], tuple[bool, str, dict[str, Any]]]) -> None:
    try:
      passed, detail, payload = fn()
    except Exception as exc:
      checks.append(Check(name=name, passed=False, detail=f"{type(exc).__name__}: {exc}"))
      return
    checks.append(Check(name=name, passed=passed, detail=detail, payload=payload))

  with TestClient(backend_module.app) as client:
    state: dict[str, Any] = {}

    def submit_sos():
      response = client.post(
        "/alerts/sos",
        headers=patient,
        json={"latitude": 40.4406, "longitude": -79.9959, "message": "Smoke test SOS."},
      )
      body = response.json()
      state["sos_id"] = body.get("id")
      return response.status_code == 201 and body.get("status") == "new", f"HTTP {response.status_code}", body

    def list_sos():
      response = client.get("/alerts", params={"kind": "sos"}, headers=responder)
      items = response.json().get("items", [])
      ids = [item["id"] for item in items]
      newest_first = bool(ids) and ids[0] == state.get("sos_id")
      return response.status_code == 200 and newest_first, f"{len(ids)} SOS alerts", {"ids": ids}

    def acknowledge():
      response = client.post(
        f"/alerts/{state['sos_id']}/status",
        headers=responder,
        json={"status": "acknowledged", "reviewer_notes": "Smoke responder on the line."},
      )
      reopen = client.post(f"/alerts/{state['sos_id']}/status", headers=responder, json={"status": "new"})
      passed = response.status_code == 200 and reopen.status_code == 409
      return passed, f"ack HTTP {response.status_code}, reopen HTTP {reopen.status_code}", response.json()

    def stream_snapshot():
      response = client.get("/alerts/stream", params={"kind": "fraud", "max_events": 1}, headers=responder)
      events = parse_sse_events(response.text)
      ids = [alert["id"] for alert in events[0]["data"]["alerts"]] if events else []
      passed = response.status_code == 200 and len(events) == 1 and len(ids) >= 2
      return passed, f"{len(events)} event(s), {len(ids)} fraud alerts", {"ids": ids}

    def fraud_analyze():
      response = client.post(
        "/alerts/fraud/analyze",
        headers=responder,
        json={
          "analysis_type": "claim",
          "claim_data": {
            "claim_id": "smoke-claim-1",
            "patient_id": "patient-smoke",
            "claim_amount": 950.0,
            "claim_date": datetime.now(timezone.utc).date().isoformat(),
          },
        },
      )
      body = response.json()
      assessment = body.get("assessment") or {}
      passed = response.status_code == 200 and "suspicion_score" in assessment
      detail = f"suspicious={assessment.get('is_suspicious')} fallback={assessment.get('fallback')}"
      return passed, detail, body

    record("Submit SOS", submit_sos)
    record("Polled SOS list", list_sos)
    record("Acknowledge and reject reopen", acknowledge)
    record("Fraud subscription snapshot", stream_snapshot)
    record("Fraud analysis", fraud_analyze)

  passed = sum(1 for check in checks if check.passed)
  failed = len(checks) - passed
  timestamp = datetime.now(timezone.utc).isoformat()

  report_lines = [
    "# Alert Pipeline Smoke Report",
    "",
    f"- Timestamp (UTC): `{timestamp}`",
    f"- MEDALERT_DB_PATH: `{os.getenv('MEDALERT_DB_PATH')}`",
    f"- MEDALERT_DISABLE_EXTERNAL_SCORER: `{os.getenv('MEDALERT_DISABLE_EXTERNAL_SCORER')}`",
    f"- Total checks: `{len(checks)}`",
    f"- Passed: `{passed}`",
    f"- Failed: `{failed}`",
    "",
    "## Check Results",
    "",
  ]
  for check in checks:
    status = "PASS" if check.passed else "FAIL"
    report_lines.append(f"### {status} - {check.name}")
    if check.detail:
      report_lines.append(f"- Detail: `{check.detail}`")
    report_lines.append("```json")
    report_lines.append(json.dumps(check.payload, indent=2, ensure_ascii=True))
    report_lines.append("```")
    report_lines.append("")

  report_path = repo_root / "ALERT_PIPELINE_SMOKE_REPORT.md"
  report_path.write_text("\n".join(report_lines), encoding="utf-8")
  print(f"Wrote report: {report_path}")
  print(f"Passed {passed}/{len(checks)} checks.")

  return 0 if failed == 0 else 1


if __name__ == "__main__":
  raise SystemExit(run())

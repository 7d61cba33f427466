from __future__ import annotations

import json
from typing import Any


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


def snapshot_ids(event: dict[str, Any]) -> list[str]:
    return [alert["id"] for alert in event["data"]["alerts"]]

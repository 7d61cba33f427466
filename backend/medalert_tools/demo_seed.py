from __future__ import annotations

import asyncio
import logging
from typing import Any

from medalert_core.models import KIND_FRAUD_CLAIM, KIND_FRAUD_PRESCRIPTION, KIND_SOS
from medalert_core.service import AlertService

logger = logging.getLogger(__name__)

DEMO_ALERTS: list[dict[str, Any]] = [
    {
        "id": "demo-sos-1",
        "subject_id": "demo-user",
        "kind": KIND_SOS,
        "payload": {"latitude": 12.9716, "longitude": 77.5946, "message": "User triggered SOS button."},
    },
    {
        "id": "demo-sos-2",
        "subject_id": "demo-user-2",
        "kind": KIND_SOS,
        "payload": {"latitude": 40.4406, "longitude": -79.9959, "message": "User triggered SOS button."},
    },
    {
        "id": "demo-fraud-claim-1",
        "subject_id": "patient-abc",
        "kind": KIND_FRAUD_CLAIM,
        "payload": {
            "type": "claim",
            "reference_id": "claim-123-dup",
            "details": "Type: claim, ID: claim-123-dup, Amount: 4800.0",
            "ai_reasoning": "Claim appears to duplicate a recent claim for the same procedure and date.",
            "suspicion_score": 0.74,
            "ai_confidence": "Medium",
        },
    },
    {
        "id": "demo-fraud-rx-1",
        "subject_id": "patient-def",
        "kind": KIND_FRAUD_PRESCRIPTION,
        "payload": {
            "type": "prescription",
            "reference_id": "rx-456-suspicious",
            "details": "Type: prescription, ID: rx-456-suspicious",
            "ai_reasoning": "High quantity (120) of a controlled substance dosed every 4 hours as needed.",
            "suspicion_score": 0.86,
            "ai_confidence": "High",
        },
    },
]


async def seed_demo_alerts(service: AlertService) -> list[str]:
    """Insert the demo alerts that are not present yet. Safe to call repeatedly."""
    created: list[str] = []
    for spec in DEMO_ALERTS:
        if await asyncio.to_thread(service.lifecycle.exists, spec["id"]):
            continue
        alert = await asyncio.to_thread(
            service.lifecycle.create,
            subject_id=spec["subject_id"],
            kind=spec["kind"],
            payload=dict(spec["payload"]),
            alert_id=spec["id"],
        )
        await service.hub.publish(alert.kind)
        created.append(alert.id)
    if created:
        logger.info("seeded %d demo alerts", len(created))
    return created

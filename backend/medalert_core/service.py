from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Protocol

from alert_store.database import SQLiteAlertDB

from .errors import ScoringUnavailable, ValidationError
from .hub import SnapshotCallback, Subscription, SubscriptionHub
from .lifecycle import AlertLifecycleService
from .models import (
    KIND_SOS,
    Alert,
    FraudAnalysisRequest,
    FraudAssessment,
    SOSPayload,
    resolve_kinds,
    validate_payload,
)

logger = logging.getLogger(__name__)


class FraudScorer(Protocol):
    async def score(self, request: FraudAnalysisRequest) -> FraudAssessment: ...


class SOSNotifier(Protocol):
    async def notify_sos(self, alert: Alert) -> Any: ...


@dataclass
class FraudAnalysisResult:
    assessment: FraudAssessment
    alert: Alert | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "assessment": self.assessment.model_dump(),
            "alert_id": self.alert.id if self.alert else None,
            "alert": self.alert.as_dict() if self.alert else None,
        }


def _require_subject(subject_id: str | None) -> str:
    cleaned = (subject_id or "").strip()
    if not cleaned:
        raise ValidationError("Alert subject is required.", fields=["subject_id"])
    return cleaned


class AlertService:
    def __init__(
        self,
        db: SQLiteAlertDB,
        *,
        scorer: FraudScorer,
        notifier: SOSNotifier | None = None,
    ) -> None:
        self.db = db
        self.lifecycle = AlertLifecycleService(db)
        self.scorer = scorer
        self.notifier = notifier
        self.hub = SubscriptionHub(self._load_kinds)
        self._pending_notifications: set[asyncio.Task] = set()

    async def _load_kinds(self, kinds: tuple[str, ...]) -> list[Alert]:
        return await asyncio.to_thread(self.lifecycle.list_by_kinds, kinds)

    async def submit_sos(self, *, subject_id: str, payload: SOSPayload | dict[str, Any]) -> Alert:
        subject = _require_subject(subject_id)
        sos = validate_payload(SOSPayload, payload)
        alert = await asyncio.to_thread(
            self.lifecycle.create,
            subject_id=subject,
            kind=KIND_SOS,
            payload=sos.model_dump(exclude_none=True),
        )
        await self.hub.publish(alert.kind)
        self._schedule_notification(alert)
        return alert

    async def analyze_fraud(self, payload: FraudAnalysisRequest | dict[str, Any]) -> FraudAnalysisResult:
        request = validate_payload(FraudAnalysisRequest, payload)
        try:
            assessment = await self.scorer.score(request)
        except ScoringUnavailable as exc:
            logger.warning("fraud scorer unavailable for %s %s: %s", request.analysis_type, request.reference_id, exc)
            assessment = FraudAssessment.unavailable(str(exc))
        except Exception as exc:
            # Any other scorer fault is treated as no response.
            logger.exception("fraud scorer failed for %s %s", request.analysis_type, request.reference_id)
            assessment = FraudAssessment.unavailable(str(exc) or type(exc).__name__)

        if not assessment.is_suspicious:
            logger.info("fraud check completed for %s %s: not suspicious", request.analysis_type, request.reference_id)
            return FraudAnalysisResult(assessment=assessment)

        alert = await asyncio.to_thread(
            self.lifecycle.create,
            subject_id=request.patient_id,
            kind=request.kind,
            payload={
                "type": request.analysis_type,
                "reference_id": request.reference_id,
                "details": request.details(),
                "ai_reasoning": assessment.reasoning,
                "suspicion_score": assessment.suspicion_score,
                "ai_confidence": assessment.confidence,
            },
        )
        await self.hub.publish(alert.kind)
        return FraudAnalysisResult(assessment=assessment, alert=alert)

    async def list_alerts(self, kind: str) -> list[Alert]:
        return await self._load_kinds(resolve_kinds(kind))

    async def get_alert(self, alert_id: str) -> Alert:
        return await asyncio.to_thread(self.lifecycle.get, alert_id)

    async def subscribe(self, kind: str, callback: SnapshotCallback) -> Subscription:
        return await self.hub.subscribe(resolve_kinds(kind), callback)

    async def transition(
        self,
        alert_id: str,
        status: str,
        *,
        reviewer_notes: str | None = None,
        actor_id: str | None = None,
    ) -> Alert:
        alert = await asyncio.to_thread(
            self.lifecycle.transition,
            alert_id=alert_id,
            next_state=(status or "").strip().lower(),
            reviewer_notes=reviewer_notes,
            actor_id=actor_id,
        )
        await self.hub.publish(alert.kind)
        return alert

    async def transition_history(self, alert_id: str) -> list[dict[str, Any]]:
        await self.get_alert(alert_id)
        return await asyncio.to_thread(self.lifecycle.transitions_of, alert_id)

    def _schedule_notification(self, alert: Alert) -> None:
        if self.notifier is None:
            logger.warning("no notifier configured; SOS alert %s was not dispatched", alert.id)
            return
        task = asyncio.create_task(self._notify(alert))
        self._pending_notifications.add(task)
        task.add_done_callback(self._pending_notifications.discard)

    async def _notify(self, alert: Alert) -> None:
        try:
            await self.notifier.notify_sos(alert)
        except Exception:
            logger.exception("SOS notification failed for alert %s", alert.id)

    async def wait_for_notifications(self) -> None:
        if self._pending_notifications:
            await asyncio.gather(*list(self._pending_notifications), return_exceptions=True)

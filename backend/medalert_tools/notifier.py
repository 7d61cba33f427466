from __future__ import annotations

import logging
import os
from dataclasses import dataclass

import httpx

from medalert_core.models import Alert

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmergencyContact:
    name: str
    phone_number: str
    email: str | None = None


_DEFAULT_CONTACTS = (
    EmergencyContact(name="John Doe", phone_number="555-123-4567"),
    EmergencyContact(name="Jane Smith", phone_number="555-987-6543"),
)


class ContactDirectory:
    def __init__(self, contacts: dict[str, list[EmergencyContact]] | None = None) -> None:
        self._contacts = dict(contacts or {})

    def register(self, subject_id: str, contacts: list[EmergencyContact]) -> None:
        self._contacts[subject_id] = list(contacts)

    def contacts_for(self, subject_id: str) -> list[EmergencyContact]:
        return list(self._contacts.get(subject_id, _DEFAULT_CONTACTS))


def maps_link(latitude: float, longitude: float) -> str:
    return f"https://www.google.com/maps?q={latitude},{longitude}"


def build_sos_message(alert: Alert, contact: EmergencyContact) -> dict[str, str]:
    payload = alert.payload
    who = payload.get("user_name") or alert.subject_id
    latitude = float(payload.get("latitude", 0.0))
    longitude = float(payload.get("longitude", 0.0))
    body = (
        f"{contact.name}, {who} triggered an emergency SOS alert at {alert.created_at}. "
        f"Location: {latitude:.4f}, {longitude:.4f} ({maps_link(latitude, longitude)})."
    )
    if payload.get("message"):
        body += f" Message: {payload['message']}"
    return {
        "alert_id": alert.id,
        "to_name": contact.name,
        "to_phone": contact.phone_number,
        "to_email": contact.email or "",
        "subject": f"SOS alert from {who}",
        "body": body,
    }


class EmergencyNotifier:
    """Pushes SOS alerts to a subject's emergency contacts through a webhook.

    The webhook is whatever email/SMS gateway the deployment uses. Without
    one configured the dispatch is only logged. Delivery is best effort.
    """

    def __init__(
        self,
        *,
        directory: ContactDirectory | None = None,
        webhook_url: str | None = None,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.directory = directory or ContactDirectory()
        self.webhook_url = (webhook_url if webhook_url is not None else os.getenv("MEDALERT_NOTIFY_WEBHOOK_URL", "")).strip()
        self.timeout_seconds = timeout_seconds or float(os.getenv("MEDALERT_NOTIFY_TIMEOUT_SECONDS", "10"))
        self._transport = transport

    def configured(self) -> bool:
        return bool(self.webhook_url)

    async def notify_sos(self, alert: Alert) -> int:
        contacts = self.directory.contacts_for(alert.subject_id)
        messages = [build_sos_message(alert, contact) for contact in contacts]
        if not self.webhook_url:
            for message in messages:
                logger.info("SOS dispatch (no webhook) alert=%s to=%s", alert.id, message["to_name"])
            return 0

        delivered = 0
        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
            for message in messages:
                try:
                    response = await client.post(self.webhook_url, json=message)
                    response.raise_for_status()
                except httpx.HTTPError as exc:
                    logger.warning("SOS dispatch failed alert=%s to=%s: %s", alert.id, message["to_name"], exc)
                    continue
                delivered += 1
        logger.info("SOS dispatched alert=%s delivered=%d/%d", alert.id, delivered, len(messages))
        return delivered

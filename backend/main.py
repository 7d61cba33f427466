from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import os
import re
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from fastapi import Body, FastAPI, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from alert_store import SQLiteAlertDB
from medalert_core import (
    Alert,
    AlertError,
    AlertNotFound,
    AlertService,
    InvalidTransitionError,
    PersistenceError,
    ReadError,
    ValidationError,
)
from medalert_core.models import resolve_kinds
from medalert_tools import ContactDirectory, EmergencyNotifier, LLMFraudScorer, seed_demo_alerts

_ENV_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

logger = logging.getLogger("medalert")


def _load_local_env_file(path: Path) -> None:
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except OSError:
        return
    for raw in lines:
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        if not _ENV_KEY_RE.fullmatch(key):
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
            value = value[1:-1]
        os.environ.setdefault(key, value)


def _bootstrap_local_env() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    candidates = [
        repo_root / ".env",
        repo_root / "backend/.env",
    ]
    for candidate in candidates:
        if candidate.exists():
            _load_local_env_file(candidate)


def _configure_logging() -> None:
    level_name = os.getenv("MEDALERT_LOG_LEVEL", "INFO").strip().upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


_bootstrap_local_env()
_configure_logging()


def _env_flag(name: str) -> bool:
    return os.getenv(name, "false").lower() in {"1", "true", "yes"}


class TransitionRequest(BaseModel):
    status: str
    reviewer_notes: str | None = Field(default=None, max_length=4000)


class MedAlertApp:
    def __init__(self) -> None:
        db_path = os.getenv(
            "MEDALERT_DB_PATH",
            str((Path(__file__).resolve().parent / "medalert.sqlite")),
        )
        self.db = SQLiteAlertDB(db_path)
        self.contacts = ContactDirectory()
        self.scorer = LLMFraudScorer()
        self.notifier = EmergencyNotifier(directory=self.contacts)
        self.alerts = AlertService(self.db, scorer=self.scorer, notifier=self.notifier)

    async def bootstrap(self) -> None:
        if _env_flag("MEDALERT_SEED_DEMO"):
            await seed_demo_alerts(self.alerts)

    async def shutdown(self) -> None:
        await self.alerts.wait_for_notifications()


container = MedAlertApp()


@asynccontextmanager
async def lifespan(_app: FastAPI):
    await container.bootstrap()
    yield
    await container.shutdown()


app = FastAPI(title="MedAlert Backend", lifespan=lifespan)

allowed_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in allowed_origins],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


_TRUSTED_USER_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._:@-]{1,63}$")


def _validated_trusted_user_id(x_user_id: str) -> str:
    candidate = x_user_id.strip()
    if not candidate or not _TRUSTED_USER_ID_RE.fullmatch(candidate):
        raise HTTPException(status_code=400, detail="Invalid X-User-Id")
    return candidate


def get_user_id(auth_header: str | None) -> str:
    raw = (auth_header or "").replace("Bearer", "", 1).strip()
    if not raw:
        if _env_flag("ALLOW_ANON"):
            return "demo-user"
        raise HTTPException(status_code=401, detail="Missing Authorization")
    # Bearer tokens are opaque here; identity verification belongs to the auth provider.
    if len(raw) > 96:
        return f"token_{hashlib.sha256(raw.encode('utf-8')).hexdigest()[:24]}"
    return raw


def resolve_user_id(authorization: str | None, x_user_id: str | None) -> str:
    if x_user_id is not None:
        return _validated_trusted_user_id(x_user_id)
    return get_user_id(authorization)


def _http_error(exc: AlertError) -> HTTPException:
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=422, detail={"message": str(exc), "fields": exc.fields})
    if isinstance(exc, AlertNotFound):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, InvalidTransitionError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, (PersistenceError, ReadError)):
        return HTTPException(status_code=503, detail=f"{exc} Please retry.")
    return HTTPException(status_code=500, detail="Alert pipeline error.")


def _emit_sse(event: str, data: dict[str, Any]) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


# Each snapshot is a full set, so a slow reader only needs the newest ones.
_STREAM_BACKLOG = 4


def offer_latest(queue: asyncio.Queue, snapshot: list[Alert]) -> None:
    if queue.full():
        queue.get_nowait()
    queue.put_nowait(snapshot)


@app.get("/health")
def health() -> dict[str, Any]:
    return {
        "ok": True,
        "scorer_configured": container.scorer.configured(),
        "notifier_configured": container.notifier.configured(),
        "live_subscriptions": len(container.alerts.hub),
    }


@app.post("/alerts/sos", status_code=201)
async def submit_sos(
    payload: dict[str, Any] = Body(...),
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    try:
        alert = await container.alerts.submit_sos(subject_id=user_id, payload=payload)
    except AlertError as exc:
        raise _http_error(exc) from exc
    return alert.as_dict()


@app.post("/alerts/fraud/analyze")
async def analyze_fraud(
    payload: dict[str, Any] = Body(...),
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    resolve_user_id(authorization, x_user_id)
    try:
        result = await container.alerts.analyze_fraud(payload)
    except AlertError as exc:
        raise _http_error(exc) from exc
    return result.as_dict()


@app.get("/alerts")
async def list_alerts(
    kind: str = Query(...),
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    resolve_user_id(authorization, x_user_id)
    try:
        alerts = await container.alerts.list_alerts(kind)
    except AlertError as exc:
        raise _http_error(exc) from exc
    return {"kind": kind, "items": [alert.as_dict() for alert in alerts]}


@app.get("/alerts/stream")
async def stream_alerts(
    kind: str = Query(...),
    max_events: int | None = Query(default=None, ge=1),
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    resolve_user_id(authorization, x_user_id)
    try:
        resolve_kinds(kind)
    except AlertError as exc:
        raise _http_error(exc) from exc

    async def event_stream():
        snapshots: asyncio.Queue[list[Alert]] = asyncio.Queue(maxsize=_STREAM_BACKLOG)
        try:
            subscription = await container.alerts.subscribe(kind, lambda snapshot: offer_latest(snapshots, snapshot))
        except AlertError as exc:
            yield _emit_sse("error", {"kind": kind, "detail": _http_error(exc).detail})
            return
        sent = 0
        try:
            while max_events is None or sent < max_events:
                snapshot = await snapshots.get()
                yield _emit_sse("snapshot", {"kind": kind, "alerts": [alert.as_dict() for alert in snapshot]})
                sent += 1
        finally:
            subscription.cancel()

    return StreamingResponse(event_stream(), media_type="text/event-stream")


@app.get("/alerts/{alert_id}")
async def get_alert(
    alert_id: str,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    resolve_user_id(authorization, x_user_id)
    try:
        alert = await container.alerts.get_alert(alert_id)
    except AlertError as exc:
        raise _http_error(exc) from exc
    return alert.as_dict()


@app.post("/alerts/{alert_id}/status")
async def transition_alert(
    alert_id: str,
    payload: TransitionRequest,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    try:
        alert = await container.alerts.transition(
            alert_id,
            payload.status,
            reviewer_notes=payload.reviewer_notes,
            actor_id=user_id,
        )
    except AlertError as exc:
        raise _http_error(exc) from exc
    return alert.as_dict()


@app.get("/alerts/{alert_id}/transitions")
async def alert_transitions(
    alert_id: str,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    resolve_user_id(authorization, x_user_id)
    try:
        items = await container.alerts.transition_history(alert_id)
    except AlertError as exc:
        raise _http_error(exc) from exc
    return {"alert_id": alert_id, "items": items}

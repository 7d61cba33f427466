from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Literal, TypeVar

import pydantic
from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator

from .errors import ValidationError

KIND_SOS = "sos"
KIND_FRAUD_CLAIM = "fraud-claim"
KIND_FRAUD_PRESCRIPTION = "fraud-prescription"

ALERT_KINDS = (KIND_SOS, KIND_FRAUD_CLAIM, KIND_FRAUD_PRESCRIPTION)
KIND_GROUPS = {
    "fraud": (KIND_FRAUD_CLAIM, KIND_FRAUD_PRESCRIPTION),
}

STATUS_NEW = "new"
SOS_STATES = {"new", "acknowledged", "resolved"}
FRAUD_STATES = {"new", "reviewing", "dismissed", "action_taken"}

# Display order: open alerts first, then in-progress, then closed.
SEVERITY_RANK = {
    "new": 0,
    "acknowledged": 1,
    "reviewing": 1,
    "resolved": 2,
    "dismissed": 2,
    "action_taken": 2,
}

FRAUD_DISCLAIMER = (
    "**Disclaimer:** This AI analysis identifies *potential* inconsistencies or patterns commonly "
    "associated with fraudulent activity. It is NOT a definitive finding of fraud. "
    "All flagged items require human review and investigation."
)


def resolve_kinds(kind: str) -> tuple[str, ...]:
    cleaned = (kind or "").strip().lower()
    if cleaned in KIND_GROUPS:
        return KIND_GROUPS[cleaned]
    if cleaned in ALERT_KINDS:
        return (cleaned,)
    raise ValidationError(f"Unknown alert kind: {kind!r}", fields=["kind"])


def _require_text(value: str) -> str:
    cleaned = value.strip()
    if not cleaned:
        raise ValueError("must not be blank")
    return cleaned


class SOSPayload(BaseModel):
    latitude: float = Field(ge=-90.0, le=90.0, allow_inf_nan=False)
    longitude: float = Field(ge=-180.0, le=180.0, allow_inf_nan=False)
    message: str | None = Field(default=None, max_length=500)
    user_name: str | None = Field(default=None, max_length=200)
    user_email: str | None = Field(default=None, max_length=320)


class ClaimData(BaseModel):
    claim_id: str
    patient_id: str
    provider_id: str | None = None
    procedure_code: str | None = None
    diagnosis_code: str | None = None
    claim_amount: float = Field(ge=0.0, allow_inf_nan=False)
    claim_date: str
    service_date: str | None = None
    description: str | None = Field(default=None, max_length=2000)

    @field_validator("claim_id", "patient_id", "claim_date")
    @classmethod
    def strip_required_text(cls, value: str) -> str:
        return _require_text(value)


class PrescriptionData(BaseModel):
    prescription_id: str
    patient_id: str
    doctor_id: str
    medication_name: str
    dosage: str | None = None
    frequency: str | None = None
    quantity: float | None = Field(default=None, ge=0.0, allow_inf_nan=False)
    prescription_date: str

    @field_validator("prescription_id", "patient_id", "doctor_id", "medication_name", "prescription_date")
    @classmethod
    def strip_required_text(cls, value: str) -> str:
        return _require_text(value)


class FraudAnalysisRequest(BaseModel):
    analysis_type: Literal["claim", "prescription"]
    claim_data: ClaimData | None = None
    prescription_data: PrescriptionData | None = None
    patient_history_summary: str | None = Field(default=None, max_length=4000)
    provider_history_summary: str | None = Field(default=None, max_length=4000)

    @model_validator(mode="after")
    def check_single_record(self) -> "FraudAnalysisRequest":
        if self.analysis_type == "claim" and (self.claim_data is None or self.prescription_data is not None):
            raise ValueError("claim analysis requires claim_data and no prescription_data")
        if self.analysis_type == "prescription" and (
            self.prescription_data is None or self.claim_data is not None
        ):
            raise ValueError("prescription analysis requires prescription_data and no claim_data")
        return self

    @property
    def kind(self) -> str:
        return KIND_FRAUD_CLAIM if self.analysis_type == "claim" else KIND_FRAUD_PRESCRIPTION

    @property
    def reference_id(self) -> str:
        if self.analysis_type == "claim":
            return self.claim_data.claim_id
        return self.prescription_data.prescription_id

    @property
    def patient_id(self) -> str:
        if self.analysis_type == "claim":
            return self.claim_data.patient_id
        return self.prescription_data.patient_id

    def details(self) -> str:
        summary = f"Type: {self.analysis_type}, ID: {self.reference_id}"
        if self.analysis_type == "claim":
            summary += f", Amount: {self.claim_data.claim_amount}"
        return summary


class FraudAssessment(BaseModel):
    is_suspicious: bool = Field(validation_alias=AliasChoices("is_suspicious", "isPotentiallySuspicious", "isSuspicious"))
    suspicion_score: float = Field(
        ge=0.0,
        le=1.0,
        allow_inf_nan=False,
        validation_alias=AliasChoices("suspicion_score", "suspicionScore", "score"),
    )
    reasoning: str
    confidence: Literal["Low", "Medium", "High"]
    fallback: bool = False

    @field_validator("confidence", mode="before")
    @classmethod
    def normalize_confidence(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().capitalize()
        return value

    @classmethod
    def unavailable(cls, reason: str) -> "FraudAssessment":
        return cls(
            is_suspicious=False,
            suspicion_score=0.0,
            reasoning=f"AI analysis could not be completed: {reason}",
            confidence="Low",
            fallback=True,
        )


_ModelT = TypeVar("_ModelT", bound=BaseModel)


def validate_payload(model: type[_ModelT], data: Any) -> _ModelT:
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as exc:
        fields = sorted({".".join(str(part) for part in err["loc"]) for err in exc.errors() if err.get("loc")})
        first = exc.errors()[0]["msg"] if exc.errors() else "invalid payload"
        raise ValidationError(f"Invalid {model.__name__}: {first}", fields=fields) from exc


@dataclass
class Alert:
    id: str
    subject_id: str
    kind: str
    payload: dict[str, Any]
    status: str
    created_at: str
    updated_at: str
    reviewer_notes: str | None = None
    lifecycle: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "subject_id": self.subject_id,
            "kind": self.kind,
            "payload": dict(self.payload),
            "status": self.status,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "reviewer_notes": self.reviewer_notes,
            "lifecycle": list(self.lifecycle),
        }


def order_by_created_desc(alerts: Iterable[Alert]) -> list[Alert]:
    return sorted(alerts, key=lambda alert: (alert.created_at, alert.id), reverse=True)


def order_for_display(alerts: Iterable[Alert]) -> list[Alert]:
    # sorted() is stable, so created_at descending survives within each rank.
    newest_first = order_by_created_desc(alerts)
    return sorted(newest_first, key=lambda alert: SEVERITY_RANK.get(alert.status, len(SEVERITY_RANK)))

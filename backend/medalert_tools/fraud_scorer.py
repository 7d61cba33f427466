from __future__ import annotations

import json
import logging
import os
from typing import Any

import httpx
import pydantic

from medalert_core.errors import ScoringUnavailable
from medalert_core.models import FRAUD_DISCLAIMER, FraudAnalysisRequest, FraudAssessment

from .llm_providers import anthropic_complete, extract_json_object, openai_compatible_complete, provider_candidates

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an AI Fraud Detection Analyst for a healthcare system. "
    "You flag potential fraud, waste, or abuse for human review and never make definitive statements of fraud. "
    "Respond with strict JSON only."
)

_FRAUD_INDICATORS = """Consider common fraud indicators such as:
- For claims: upcoding, unbundling, phantom billing, billing for services not rendered, duplicate claims, excessive services compared to diagnosis/history, inconsistencies between service date and claim date.
- For prescriptions: doctor shopping, script mills (excessive prescribing, especially controlled substances), altered prescriptions, unusually high quantities, illogical drug combinations.
- General: billing patterns inconsistent with patient history or provider specialty."""

_OUTPUT_CONTRACT = """Based only on the provided data and context, assess the likelihood of fraudulent activity and return JSON with exactly these keys:
- is_suspicious: boolean, whether the record is potentially suspicious
- suspicion_score: number between 0 (low suspicion) and 1 (high suspicion)
- reasoning: string citing the specific data points or patterns behind the assessment; if not suspicious, explain why
- confidence: one of "Low", "Medium", "High"
If the data is insufficient for a meaningful analysis, say so in reasoning and assign a low score and confidence."""


def _or_na(value: Any) -> str:
    if value is None or (isinstance(value, str) and not value.strip()):
        return "N/A"
    return str(value)


def build_fraud_prompt(request: FraudAnalysisRequest) -> str:
    lines = [
        f"Analyze the following {request.analysis_type} data for potential signs of fraud, waste, or abuse.",
        "",
    ]
    if request.claim_data is not None:
        claim = request.claim_data
        lines.extend(
            [
                "Claim Details:",
                f"- Claim ID: {claim.claim_id}",
                f"- Patient ID: {claim.patient_id}",
                f"- Provider ID: {_or_na(claim.provider_id)}",
                f"- Procedure Code: {_or_na(claim.procedure_code)}",
                f"- Diagnosis Code: {_or_na(claim.diagnosis_code)}",
                f"- Amount: {claim.claim_amount}",
                f"- Claim Date: {claim.claim_date}",
                f"- Service Date: {_or_na(claim.service_date)}",
                f"- Description: {_or_na(claim.description)}",
            ]
        )
    if request.prescription_data is not None:
        rx = request.prescription_data
        lines.extend(
            [
                "Prescription Details:",
                f"- Prescription ID: {rx.prescription_id}",
                f"- Patient ID: {rx.patient_id}",
                f"- Doctor ID: {rx.doctor_id}",
                f"- Medication: {rx.medication_name}",
                f"- Dosage: {_or_na(rx.dosage)}",
                f"- Frequency: {_or_na(rx.frequency)}",
                f"- Quantity: {_or_na(rx.quantity)}",
                f"- Date: {rx.prescription_date}",
            ]
        )
    lines.extend(
        [
            "",
            "Optional Context:",
            f"- Patient History Summary: {request.patient_history_summary or 'Not Provided'}",
            f"- Provider History Summary: {request.provider_history_summary or 'Not Provided'}",
            "",
            _FRAUD_INDICATORS,
            "",
            _OUTPUT_CONTRACT,
        ]
    )
    return "\n".join(lines)


def _scorer_disabled() -> bool:
    return os.getenv("MEDALERT_DISABLE_EXTERNAL_SCORER", "false").lower() in {"1", "true", "yes"}


class LLMFraudScorer:
    """Forwards a claim or prescription to a hosted model and parses its verdict.

    Providers are tried in preference order. Any transport error, provider
    error, non-JSON completion or schema mismatch moves on to the next one;
    when none yields a usable verdict ``ScoringUnavailable`` is raised and the
    caller substitutes the non-suspicious fallback.
    """

    def __init__(
        self,
        *,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.timeout_seconds = timeout_seconds or float(os.getenv("MEDALERT_SCORER_TIMEOUT_SECONDS", "25"))
        self._transport = transport

    def configured(self) -> bool:
        return not _scorer_disabled() and bool(provider_candidates())

    async def score(self, request: FraudAnalysisRequest) -> FraudAssessment:
        if _scorer_disabled():
            raise ScoringUnavailable("external scorer is disabled")
        providers = provider_candidates()
        if not providers:
            raise ScoringUnavailable("no scoring provider is configured")

        user_prompt = build_fraud_prompt(request)
        failures: list[str] = []
        timeout = httpx.Timeout(self.timeout_seconds, connect=8.0)
        async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
            for provider in providers:
                provider_name = str(provider.get("provider") or "unknown")
                complete = anthropic_complete if provider_name == "anthropic" else openai_compatible_complete
                try:
                    text = await complete(
                        client,
                        provider=provider,
                        system_prompt=SYSTEM_PROMPT,
                        user_prompt=user_prompt,
                    )
                except (httpx.HTTPError, RuntimeError, ValueError) as exc:
                    logger.warning("fraud scorer call failed (%s): %s", provider_name, exc)
                    failures.append(f"{provider_name}: {exc}")
                    continue

                parsed = extract_json_object(text or "")
                if parsed is None:
                    logger.warning("fraud scorer returned non-JSON output (%s)", provider_name)
                    failures.append(f"{provider_name}: non-JSON output")
                    continue
                try:
                    assessment = FraudAssessment.model_validate(parsed)
                except pydantic.ValidationError as exc:
                    logger.warning(
                        "fraud scorer output failed validation (%s): %s",
                        provider_name,
                        json.dumps(parsed)[:300],
                    )
                    failures.append(f"{provider_name}: {exc.error_count()} invalid field(s)")
                    continue

                logger.info("fraud scorer provider used (%s)", provider_name)
                return assessment.model_copy(
                    update={
                        "reasoning": f"{assessment.reasoning.strip()}\n\n{FRAUD_DISCLAIMER}",
                        "fallback": False,
                    }
                )

        raise ScoringUnavailable("; ".join(failures) or "no usable result from scoring providers")

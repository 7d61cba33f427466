from .demo_seed import DEMO_ALERTS, seed_demo_alerts
from .fraud_scorer import LLMFraudScorer, build_fraud_prompt
from .notifier import ContactDirectory, EmergencyContact, EmergencyNotifier

__all__ = [
    "DEMO_ALERTS",
    "ContactDirectory",
    "EmergencyContact",
    "EmergencyNotifier",
    "LLMFraudScorer",
    "build_fraud_prompt",
    "seed_demo_alerts",
]

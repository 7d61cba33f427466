from .errors import (
    AlertError,
    AlertNotFound,
    InvalidTransitionError,
    PersistenceError,
    ReadError,
    ScoringUnavailable,
    ValidationError,
)
from .hub import Subscription, SubscriptionHub
from .lifecycle import AlertLifecycleService
from .models import (
    ALERT_KINDS,
    KIND_FRAUD_CLAIM,
    KIND_FRAUD_PRESCRIPTION,
    KIND_SOS,
    Alert,
    FraudAnalysisRequest,
    FraudAssessment,
    SOSPayload,
)
from .service import AlertService, FraudAnalysisResult

__all__ = [
    "ALERT_KINDS",
    "KIND_FRAUD_CLAIM",
    "KIND_FRAUD_PRESCRIPTION",
    "KIND_SOS",
    "Alert",
    "AlertError",
    "AlertLifecycleService",
    "AlertNotFound",
    "AlertService",
    "FraudAnalysisRequest",
    "FraudAnalysisResult",
    "FraudAssessment",
    "InvalidTransitionError",
    "PersistenceError",
    "ReadError",
    "SOSPayload",
    "ScoringUnavailable",
    "Subscription",
    "SubscriptionHub",
    "ValidationError",
]

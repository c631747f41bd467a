"""
Consent module
"""

from .types import (
    ConsentConditionType,
    ConsentAction,
    ConsentCondition,
    ConsentRequest,
    ConsentDecision,
    StoredConsent,
    ConsentRecord,
)
from .presenter import (
    ConsentPresenter,
    DefaultConsentPresenter,
    CallbackConsentPresenter,
)
from .manager import ConsentManager

__all__ = [
    "ConsentConditionType",
    "ConsentAction",
    "ConsentCondition",
    "ConsentRequest",
    "ConsentDecision",
    "StoredConsent",
    "ConsentRecord",
    "ConsentPresenter",
    "DefaultConsentPresenter",
    "CallbackConsentPresenter",
    "ConsentManager",
]

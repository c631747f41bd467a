"""
contextgate

Context-aware authorization and consent engine.
"""

__version__ = "0.1.0"

from .core.engine import ContextGate
from .core.config import Config
from .authz.types import (
    PermissionAction,
    ConditionType,
    ConditionOperator,
    DecisionOutcome,
    Location,
    Device,
    Network,
    RequestContext,
    PermissionCondition,
    Permission,
    PermissionRequest,
    EvaluationResult,
)
from .consent.types import (
    ConsentCondition,
    ConsentConditionType,
    ConsentRequest,
    ConsentDecision,
)
from .errors import ContextGateError

__all__ = [
    "ContextGate",
    "Config",
    "PermissionAction",
    "ConditionType",
    "ConditionOperator",
    "DecisionOutcome",
    "Location",
    "Device",
    "Network",
    "RequestContext",
    "PermissionCondition",
    "Permission",
    "PermissionRequest",
    "EvaluationResult",
    "ConsentCondition",
    "ConsentConditionType",
    "ConsentRequest",
    "ConsentDecision",
    "ContextGateError",
]

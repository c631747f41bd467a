"""
Authorization module: request contexts, conditions and permissions.
"""

from .types import (
    PermissionAction,
    ConditionType,
    ConditionOperator,
    DecisionOutcome,
    Location,
    Device,
    Network,
    Geofence,
    RequestContext,
    PermissionCondition,
    Permission,
    PermissionRequest,
    ConditionEvaluationResult,
    EvaluationResult,
    PermissionRule,
    PermissionPolicy,
)
from .conditions import ContextEvaluator, calculate_distance
from .permissions import PermissionManager

__all__ = [
    "PermissionAction",
    "ConditionType",
    "ConditionOperator",
    "DecisionOutcome",
    "Location",
    "Device",
    "Network",
    "Geofence",
    "RequestContext",
    "PermissionCondition",
    "Permission",
    "PermissionRequest",
    "ConditionEvaluationResult",
    "EvaluationResult",
    "PermissionRule",
    "PermissionPolicy",
    "ContextEvaluator",
    "calculate_distance",
    "PermissionManager",
]

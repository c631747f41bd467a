"""
Authorization types for contextgate.
Implements permissions, conditions, request contexts and evaluation results.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union
import numbers
import re

from ..common.utils import (
    coerce_datetime,
    datetime_or_none,
    generate_id,
    get_current_time,
    is_expired,
    isoformat_or_none,
)
from ..errors import ConditionError


class PermissionAction(Enum):
    """Actions a permission can grant."""
    READ = "read"
    WRITE = "write"
    DELETE = "delete"
    SHARE = "share"
    EXPORT = "export"
    MODIFY_PERMISSIONS = "modify_permissions"


class ConditionType(Enum):
    """What part of the request context a condition inspects."""
    TIME_RANGE = "time_range"
    LOCATION = "location"
    DEVICE = "device"
    NETWORK = "network"
    USER_CONTEXT = "user_context"
    DATA_SENSITIVITY = "data_sensitivity"
    PURPOSE = "purpose"


class ConditionOperator(Enum):
    """Comparison applied by a condition."""
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    IN = "in"
    NOT_IN = "not_in"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    BETWEEN = "between"
    CONTAINS = "contains"
    MATCHES_PATTERN = "matches_pattern"


class DecisionOutcome(Enum):
    """Diagnostic outcome of a permission check."""
    GRANTED = "granted"
    NO_APPLICABLE_PERMISSIONS = "no_applicable_permissions"
    EXPIRED = "expired"
    CONDITIONS_NOT_MET = "conditions_not_met"
    INVALID_REQUEST = "invalid_request"


# Ordinal scale, least to most sensitive
SENSITIVITY_LEVELS = ["public", "internal", "confidential", "restricted"]

DEFAULT_GEOFENCE_RADIUS = 100.0  # meters


def _coerce_enum(enum_cls, value):
    """Map a raw string onto an enum member, leaving unknown values untouched."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        return value


def _enum_value(value) -> Any:
    return value.value if isinstance(value, Enum) else value


@dataclass(frozen=True)
class Location:
    """Geographic point reported with a request."""
    latitude: float
    longitude: float
    accuracy: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {'latitude': self.latitude, 'longitude': self.longitude, 'accuracy': self.accuracy}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Location':
        return cls(
            latitude=data['latitude'],
            longitude=data['longitude'],
            accuracy=data.get('accuracy')
        )


@dataclass(frozen=True)
class Device:
    """Device a request originates from."""
    id: str
    type: str
    trusted: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {'id': self.id, 'type': self.type, 'trusted': self.trusted}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Device':
        return cls(id=data['id'], type=data['type'], trusted=data.get('trusted', False))


@dataclass(frozen=True)
class Network:
    """Network a request travels over (wifi, cellular, ethernet)."""
    type: str
    trusted: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {'type': self.type, 'trusted': self.trusted}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Network':
        return cls(type=data['type'], trusted=data.get('trusted', False))


@dataclass(frozen=True)
class Geofence:
    """Circular area: center plus radius in meters."""
    latitude: float
    longitude: float
    radius: float = DEFAULT_GEOFENCE_RADIUS


@dataclass(frozen=True)
class RequestContext:
    """
    Point-in-time snapshot of the world a request is evaluated against.

    Owned by the caller and never modified by the engine.
    """
    timestamp: datetime = field(default_factory=get_current_time)
    location: Optional[Location] = None
    device: Optional[Device] = None
    network: Optional[Network] = None
    user_activity: Optional[str] = None
    session_id: Optional[str] = None
    user_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def at(self, timestamp: datetime) -> 'RequestContext':
        """Copy of this context observed at another instant."""
        return replace(self, timestamp=timestamp)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            'timestamp': self.timestamp.isoformat(),
            'location': self.location.to_dict() if self.location else None,
            'device': self.device.to_dict() if self.device else None,
            'network': self.network.to_dict() if self.network else None,
            'user_activity': self.user_activity,
            'session_id': self.session_id,
            'user_id': self.user_id,
            'metadata': self.metadata
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RequestContext':
        """Create from dictionary representation."""
        return cls(
            timestamp=coerce_datetime(data['timestamp']) if data.get('timestamp') else get_current_time(),
            location=Location.from_dict(data['location']) if data.get('location') else None,
            device=Device.from_dict(data['device']) if data.get('device') else None,
            network=Network.from_dict(data['network']) if data.get('network') else None,
            user_activity=data.get('user_activity'),
            session_id=data.get('session_id'),
            user_id=data.get('user_id'),
            metadata=data.get('metadata', {})
        )


def _is_number(value: Any) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


def _is_instant(value: Any) -> bool:
    try:
        coerce_datetime(value)
        return True
    except (TypeError, ValueError):
        return False


def _is_point(value: Any) -> bool:
    return (
        isinstance(value, dict)
        and _is_number(value.get('latitude'))
        and _is_number(value.get('longitude'))
        and (value.get('radius') is None or _is_number(value.get('radius')))
    )


def _is_string_list(value: Any) -> bool:
    return isinstance(value, (list, tuple, set, frozenset)) and all(isinstance(v, str) for v in value)


def _is_pattern(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    try:
        re.compile(value)
        return True
    except re.error:
        return False


_T = ConditionType
_O = ConditionOperator

# Value shape accepted for each supported (type, operator) pair
VALUE_SCHEMA = {
    (_T.TIME_RANGE, _O.BETWEEN): lambda v: (
        isinstance(v, (list, tuple)) and len(v) == 2 and all(_is_instant(x) for x in v)),
    (_T.TIME_RANGE, _O.GREATER_THAN): _is_instant,
    (_T.TIME_RANGE, _O.LESS_THAN): _is_instant,

    (_T.LOCATION, _O.EQUALS): _is_point,
    (_T.LOCATION, _O.NOT_EQUALS): _is_point,
    (_T.LOCATION, _O.IN): lambda v: isinstance(v, (list, tuple)) and all(_is_point(x) for x in v),
    (_T.LOCATION, _O.NOT_IN): lambda v: isinstance(v, (list, tuple)) and all(_is_point(x) for x in v),

    (_T.DEVICE, _O.EQUALS): lambda v: isinstance(v, str),
    (_T.DEVICE, _O.NOT_EQUALS): lambda v: isinstance(v, str),
    (_T.DEVICE, _O.IN): _is_string_list,
    (_T.DEVICE, _O.NOT_IN): _is_string_list,
    (_T.DEVICE, _O.CONTAINS): lambda v: v == 'trusted',

    (_T.NETWORK, _O.EQUALS): lambda v: isinstance(v, str),
    (_T.NETWORK, _O.NOT_EQUALS): lambda v: isinstance(v, str),
    (_T.NETWORK, _O.IN): _is_string_list,
    (_T.NETWORK, _O.NOT_IN): _is_string_list,
    (_T.NETWORK, _O.CONTAINS): lambda v: v == 'trusted',

    (_T.USER_CONTEXT, _O.EQUALS): lambda v: isinstance(v, str),
    (_T.USER_CONTEXT, _O.NOT_EQUALS): lambda v: isinstance(v, str),
    (_T.USER_CONTEXT, _O.IN): _is_string_list,
    (_T.USER_CONTEXT, _O.NOT_IN): _is_string_list,
    (_T.USER_CONTEXT, _O.MATCHES_PATTERN): _is_pattern,

    (_T.DATA_SENSITIVITY, _O.EQUALS): lambda v: v in SENSITIVITY_LEVELS,
    (_T.DATA_SENSITIVITY, _O.LESS_THAN): lambda v: v in SENSITIVITY_LEVELS,

    (_T.PURPOSE, _O.EQUALS): lambda v: isinstance(v, str),
    (_T.PURPOSE, _O.NOT_EQUALS): lambda v: isinstance(v, str),
    (_T.PURPOSE, _O.IN): _is_string_list,
    (_T.PURPOSE, _O.NOT_IN): _is_string_list,
}


@dataclass
class PermissionCondition:
    """
    Context predicate attached to a permission or consent.

    Plain construction is permissive: an unsupported (type, operator) pair or
    a malformed value simply evaluates to False. Use ``build`` to reject such
    combinations up front.
    """
    type: Union[ConditionType, str]
    operator: Union[ConditionOperator, str]
    value: Any = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.type = _coerce_enum(ConditionType, self.type)
        self.operator = _coerce_enum(ConditionOperator, self.operator)
        if self.metadata is None:
            self.metadata = {}

    @classmethod
    def build(cls, type: Union[ConditionType, str], operator: Union[ConditionOperator, str],
              value: Any = None, metadata: Optional[Dict[str, Any]] = None) -> 'PermissionCondition':
        """
        Strict constructor.

        Raises:
            ConditionError: unknown type/operator, unsupported pair, or a value
                whose shape does not fit the pair
        """
        condition = cls(type=type, operator=operator, value=value, metadata=metadata or {})
        problems = condition.validate()
        if problems:
            raise ConditionError("; ".join(problems))
        return condition

    def validate(self) -> List[str]:
        """Return a list of problems with this condition; empty when well formed."""
        if not isinstance(self.type, ConditionType):
            return [f"Unknown condition type: {self.type}"]
        if not isinstance(self.operator, ConditionOperator):
            return [f"Unknown condition operator: {self.operator}"]

        check = VALUE_SCHEMA.get((self.type, self.operator))
        if check is None:
            return [f"Operator {self.operator.value} is not supported for {self.type.value} conditions"]
        if not check(self.value):
            return [f"Value {self.value!r} does not fit {self.type.value}/{self.operator.value}"]
        return []

    @property
    def is_valid(self) -> bool:
        return not self.validate()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        value = self.value
        if isinstance(value, datetime):
            value = value.isoformat()
        elif isinstance(value, (list, tuple)):
            value = [v.isoformat() if isinstance(v, datetime) else v for v in value]
        return {
            'type': _enum_value(self.type),
            'operator': _enum_value(self.operator),
            'value': value,
            'metadata': self.metadata
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PermissionCondition':
        """Create from dictionary representation."""
        return cls(
            type=data['type'],
            operator=data['operator'],
            value=data.get('value'),
            metadata=data.get('metadata') or {}
        )


@dataclass
class Permission:
    """
    Grant of one action on one resource type (optionally one resource
    instance) to one user. Records are never mutated in place.
    """
    user_id: str
    resource_type: str
    action: PermissionAction
    granted_by: str
    id: str = field(default_factory=lambda: generate_id("perm_"))
    resource_id: Optional[str] = None
    granted: bool = True
    granted_at: datetime = field(default_factory=get_current_time)
    expires_at: Optional[datetime] = None
    conditions: List[PermissionCondition] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.action = _coerce_enum(PermissionAction, self.action)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return is_expired(self.expires_at, now)

    def covers(self, resource_type: str, resource_id: Optional[str] = None) -> bool:
        """A type-wide grant covers every instance; an instance grant covers only itself."""
        if self.resource_type != resource_type:
            return False
        return self.resource_id is None or self.resource_id == resource_id

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            'id': self.id,
            'user_id': self.user_id,
            'resource_type': self.resource_type,
            'resource_id': self.resource_id,
            'action': _enum_value(self.action),
            'granted': self.granted,
            'granted_by': self.granted_by,
            'granted_at': self.granted_at.isoformat(),
            'expires_at': isoformat_or_none(self.expires_at),
            'conditions': [c.to_dict() for c in self.conditions],
            'metadata': self.metadata
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Permission':
        """Create from dictionary representation."""
        return cls(
            id=data['id'],
            user_id=data['user_id'],
            resource_type=data['resource_type'],
            resource_id=data.get('resource_id'),
            action=data['action'],
            granted=data.get('granted', True),
            granted_by=data['granted_by'],
            granted_at=coerce_datetime(data['granted_at']),
            expires_at=datetime_or_none(data.get('expires_at')),
            conditions=[PermissionCondition.from_dict(c) for c in data.get('conditions', [])],
            metadata=data.get('metadata', {})
        )


@dataclass
class PermissionRequest:
    """Request to perform an action on a resource."""
    user_id: str
    resource_type: str
    action: Union[PermissionAction, str]
    context: Optional[RequestContext] = None
    resource_id: Optional[str] = None
    purpose: Optional[str] = None

    def __post_init__(self):
        self.action = _coerce_enum(PermissionAction, self.action)


@dataclass
class ConditionEvaluationResult:
    """Outcome of evaluating a list of conditions conjunctively."""
    satisfied: bool
    reason: str
    failed_conditions: List[PermissionCondition] = field(default_factory=list)


@dataclass
class EvaluationResult:
    """Result of a permission check."""
    granted: bool
    reason: str
    outcome: DecisionOutcome
    audit_required: bool = True
    permission_id: Optional[str] = None
    conditions: List[PermissionCondition] = field(default_factory=list)
    failed_conditions: List[PermissionCondition] = field(default_factory=list)
    expires_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            'granted': self.granted,
            'reason': self.reason,
            'outcome': self.outcome.value,
            'audit_required': self.audit_required,
            'permission_id': self.permission_id,
            'conditions': [c.to_dict() for c in self.conditions],
            'failed_conditions': [c.to_dict() for c in self.failed_conditions],
            'expires_at': isoformat_or_none(self.expires_at)
        }


@dataclass
class PermissionRule:
    """Rule inside a policy; kept for policy registries, not consulted by checks."""
    id: str
    name: str
    conditions: List[PermissionCondition] = field(default_factory=list)
    action: str = "allow"
    priority: int = 0
    audit_required: bool = False
    notification_required: bool = False


@dataclass
class PermissionPolicy:
    """Named, prioritized set of rules for a resource type."""
    id: str
    name: str
    resource_type: str
    description: str = ""
    default_action: str = "deny"
    rules: List[PermissionRule] = field(default_factory=list)
    priority: int = 0
    active: bool = True
    created_at: datetime = field(default_factory=get_current_time)
    updated_at: datetime = field(default_factory=get_current_time)


__all__ = [
    'PermissionAction',
    'ConditionType',
    'ConditionOperator',
    'DecisionOutcome',
    'SENSITIVITY_LEVELS',
    'DEFAULT_GEOFENCE_RADIUS',
    'VALUE_SCHEMA',
    'Location',
    'Device',
    'Network',
    'Geofence',
    'RequestContext',
    'PermissionCondition',
    'Permission',
    'PermissionRequest',
    'ConditionEvaluationResult',
    'EvaluationResult',
    'PermissionRule',
    'PermissionPolicy',
]

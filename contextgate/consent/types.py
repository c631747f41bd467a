"""
Consent types for contextgate.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from ..authz.types import PermissionCondition, RequestContext
from ..common.utils import (
    coerce_datetime,
    datetime_or_none,
    get_current_time,
    is_expired,
    isoformat_or_none,
)


class ConsentConditionType(Enum):
    """Conditions concerning the consent itself rather than the request context."""
    PURPOSE_LIMITATION = "purpose_limitation"
    DATA_MINIMIZATION = "data_minimization"
    RETENTION_LIMIT = "retention_limit"


class ConsentAction(Enum):
    """Transitions recorded in consent history."""
    GRANTED = "granted"
    DENIED = "denied"
    REVOKED = "revoked"
    EXPIRED = "expired"


@dataclass
class ConsentCondition:
    """
    Condition attached to a consent decision.

    ``value`` is the purpose for purpose_limitation, the allowed data types for
    data_minimization and a duration in milliseconds for retention_limit.
    """
    type: Union[ConsentConditionType, str]
    value: Any = None
    description: str = ""

    def __post_init__(self):
        try:
            self.type = ConsentConditionType(self.type)
        except ValueError:
            pass

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': getattr(self.type, 'value', self.type),
            'value': self.value,
            'description': self.description
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ConsentCondition':
        return cls(type=data['type'], value=data.get('value'), description=data.get('description', ''))


AnyCondition = Union[ConsentCondition, PermissionCondition]

_CONSENT_CONDITION_TYPES = {t.value for t in ConsentConditionType}


def condition_from_dict(data: Dict[str, Any]) -> AnyCondition:
    """Rebuild either a consent condition or a context condition."""
    if data.get('type') in _CONSENT_CONDITION_TYPES or 'operator' not in data:
        return ConsentCondition.from_dict(data)
    return PermissionCondition.from_dict(data)


@dataclass
class ConsentRequest:
    """Request for a user's consent to process data types for a purpose."""
    id: str
    purpose: str
    data_types: List[str]
    requester: str
    context: Optional[RequestContext]
    duration: Optional[timedelta] = None

    @property
    def user_id(self) -> Optional[str]:
        return getattr(self.context, 'user_id', None)


@dataclass
class ConsentDecision:
    """Decision returned by a presenter and by ``request_consent``."""
    granted: bool
    conditions: List[AnyCondition] = field(default_factory=list)
    expires_at: Optional[datetime] = None
    revocable: bool = True
    consent_id: Optional[str] = None
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            'granted': self.granted,
            'conditions': [c.to_dict() for c in self.conditions],
            'expires_at': isoformat_or_none(self.expires_at),
            'revocable': self.revocable,
            'consent_id': self.consent_id,
            'reason': self.reason
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ConsentDecision':
        return cls(
            granted=bool(data['granted']),
            conditions=[
                c if isinstance(c, (ConsentCondition, PermissionCondition)) else condition_from_dict(c)
                for c in data.get('conditions') or []
            ],
            expires_at=datetime_or_none(data.get('expires_at')),
            revocable=data.get('revocable', True),
            consent_id=data.get('consent_id'),
            reason=data.get('reason', '')
        )


@dataclass(frozen=True)
class StoredConsent:
    """
    Granted consent held by the consent store.

    Covers a request when purpose and requester match exactly, the requested
    data types are a subset of ``data_types``, the consent has not expired and
    every condition still holds.
    """
    id: str
    user_id: str
    purpose: str
    data_types: List[str]
    requester: str
    context: RequestContext
    granted: bool = True
    granted_at: datetime = field(default_factory=get_current_time)
    expires_at: Optional[datetime] = None
    conditions: List[AnyCondition] = field(default_factory=list)
    revocable: bool = True

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return is_expired(self.expires_at, now)

    def covers(self, purpose: str, data_types: List[str], requester: Optional[str] = None) -> bool:
        if self.purpose != purpose:
            return False
        if requester is not None and self.requester != requester:
            return False
        return set(data_types) <= set(self.data_types)

    def to_decision(self) -> ConsentDecision:
        return ConsentDecision(
            granted=self.granted,
            conditions=list(self.conditions),
            expires_at=self.expires_at,
            revocable=self.revocable,
            consent_id=self.id,
            reason="Existing consent is still valid"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'user_id': self.user_id,
            'purpose': self.purpose,
            'data_types': list(self.data_types),
            'requester': self.requester,
            'context': self.context.to_dict(),
            'granted': self.granted,
            'granted_at': self.granted_at.isoformat(),
            'expires_at': isoformat_or_none(self.expires_at),
            'conditions': [c.to_dict() for c in self.conditions],
            'revocable': self.revocable
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StoredConsent':
        return cls(
            id=data['id'],
            user_id=data['user_id'],
            purpose=data['purpose'],
            data_types=list(data['data_types']),
            requester=data['requester'],
            context=RequestContext.from_dict(data['context']),
            granted=data.get('granted', True),
            granted_at=coerce_datetime(data['granted_at']),
            expires_at=datetime_or_none(data.get('expires_at')),
            conditions=[condition_from_dict(c) for c in data.get('conditions', [])],
            revocable=data.get('revocable', True)
        )


@dataclass(frozen=True)
class ConsentRecord:
    """Append-only history entry for one consent transition."""
    consent: StoredConsent
    action: ConsentAction
    timestamp: datetime = field(default_factory=get_current_time)
    reason: str = ""

    @property
    def user_id(self) -> str:
        return self.consent.user_id

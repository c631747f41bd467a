"""
Granular permission management.

The PermissionManager is the single owner of permission records. Grants are
authoritative administrative acts; checks evaluate applicable grants against a
request context; revocation and expiry remove records permanently.
"""

from contextlib import nullcontext
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Union
import asyncio
import logging

from ..audit.logger import AuditLogger
from ..common.utils import get_current_time
from ..errors import StorageError, ValidationError
from ..events.events import EventDispatcher, EventType, publish_event
from ..store.types import SecureStore
from .conditions import ContextEvaluator
from .types import (
    DecisionOutcome,
    EvaluationResult,
    Permission,
    PermissionAction,
    PermissionCondition,
    PermissionPolicy,
    PermissionRequest,
)


logger = logging.getLogger(__name__)

KEY_PREFIX = "permission:"

DEFAULT_SENSITIVE_ACTIONS = {
    PermissionAction.DELETE,
    PermissionAction.SHARE,
    PermissionAction.EXPORT,
    PermissionAction.MODIFY_PERMISSIONS,
}
DEFAULT_SENSITIVE_RESOURCE_TYPES = {"health_data", "location", "contact"}


def _action_name(action: Union[PermissionAction, str]) -> str:
    return getattr(action, 'value', str(action))


def validate_permission_request(request: PermissionRequest) -> None:
    """
    Raises:
        ValidationError: a required field is missing or empty
    """
    if request is None:
        raise ValidationError("Permission request is required")
    if not request.user_id:
        raise ValidationError("User id is required", field="user_id")
    if not request.resource_type:
        raise ValidationError("Resource type is required", field="resource_type")
    if not request.action:
        raise ValidationError("Action is required", field="action")
    if request.context is None:
        raise ValidationError("Request context is required", field="context")


class PermissionManager:
    """
    In-memory authority over permission records.
    """

    def __init__(self,
                 evaluator: Optional[ContextEvaluator] = None,
                 audit_logger: Optional[AuditLogger] = None,
                 dispatcher: Optional[EventDispatcher] = None,
                 secure_store: Optional[SecureStore] = None,
                 consent_manager=None,
                 metrics=None,
                 sensitive_actions: Optional[Iterable[Union[PermissionAction, str]]] = None,
                 sensitive_resource_types: Optional[Iterable[str]] = None):
        self.evaluator = evaluator or ContextEvaluator()
        self.audit_logger = audit_logger or AuditLogger()
        self.dispatcher = dispatcher
        self.secure_store = secure_store
        self.consent_manager = consent_manager
        self.metrics = metrics

        if sensitive_actions is None:
            self.sensitive_actions = {a.value for a in DEFAULT_SENSITIVE_ACTIONS}
        else:
            self.sensitive_actions = {_action_name(a) for a in sensitive_actions}
        self.sensitive_resource_types = set(
            DEFAULT_SENSITIVE_RESOURCE_TYPES if sensitive_resource_types is None else sensitive_resource_types
        )

        self._permissions: Dict[str, List[Permission]] = {}
        self._policies: Dict[str, PermissionPolicy] = {}
        self._lock = asyncio.Lock()

    async def grant_permission(self,
                               user_id: str,
                               resource_type: str,
                               action: Union[PermissionAction, str],
                               granted_by: str,
                               resource_id: Optional[str] = None,
                               expires_at: Optional[datetime] = None,
                               conditions: Optional[List[Union[PermissionCondition, Dict[str, Any]]]] = None,
                               metadata: Optional[Dict[str, Any]] = None) -> Permission:
        """
        Grant permission to a user for a resource type (or one instance) and action.

        Grants are never vetoed; each one creates a new record.
        """
        permission = Permission(
            user_id=user_id,
            resource_type=resource_type,
            action=action,
            granted_by=granted_by,
            resource_id=resource_id,
            expires_at=expires_at,
            conditions=[
                c if isinstance(c, PermissionCondition) else PermissionCondition.from_dict(c)
                for c in conditions or []
            ],
            metadata=dict(metadata or {})
        )

        async with self._lock:
            self._permissions.setdefault(user_id, []).append(permission)
            await self._persist(permission)

        logger.info(
            f"Granted {_action_name(permission.action)} on {resource_type}"
            f"{':' + resource_id if resource_id else ''} to {user_id} by {granted_by}"
        )
        await self.audit_logger.log_permission_grant(permission)
        await publish_event(self.dispatcher, EventType.PERMISSION_GRANTED, user_id, permission.id,
                            actor=granted_by, resource_type=resource_type,
                            action=_action_name(permission.action))
        if self.metrics is not None:
            self.metrics.record_permission_transition("granted")

        return permission

    async def check_permission(self, request: PermissionRequest) -> EvaluationResult:
        """
        Check if a user may perform an action.

        Granted iff at least one unexpired grant for the user, resource and
        action has all of its conditions satisfied by the request context.
        Never raises.
        """
        timing = self.metrics.time() if self.metrics is not None else nullcontext({'duration': 0.0})
        with timing as timer:
            try:
                result = await self._evaluate(request)
            except Exception as e:
                logger.error(f"Error evaluating permission request: {e}")
                result = EvaluationResult(
                    granted=False,
                    reason=f"Evaluation error: {e}",
                    outcome=DecisionOutcome.INVALID_REQUEST,
                    audit_required=True
                )

        if request is not None:
            await self.audit_logger.log_permission_check(request, result)
        if self.metrics is not None:
            self.metrics.record_permission_check(
                _action_name(getattr(request, 'action', None)),
                result.outcome.value,
                timer['duration']
            )
        return result

    async def _evaluate(self, request: PermissionRequest) -> EvaluationResult:
        try:
            validate_permission_request(request)
        except ValidationError as e:
            logger.warning(f"Rejected malformed permission request: {e.message}")
            return EvaluationResult(
                granted=False,
                reason=f"Invalid request: {e.message}",
                outcome=DecisionOutcome.INVALID_REQUEST,
                audit_required=True
            )

        async with self._lock:
            candidates = [
                p for p in self._permissions.get(request.user_id, [])
                if p.covers(request.resource_type, request.resource_id)
                and p.action == request.action
                and p.granted
            ]

        if not candidates:
            return EvaluationResult(
                granted=False,
                reason="No applicable permissions found",
                outcome=DecisionOutcome.NO_APPLICABLE_PERMISSIONS,
                audit_required=True
            )

        now = get_current_time()
        active = [p for p in candidates if not p.is_expired(now)]
        if not active:
            return EvaluationResult(
                granted=False,
                reason=f"Found {len(candidates)} applicable permission(s) but all have expired",
                outcome=DecisionOutcome.EXPIRED,
                audit_required=True
            )

        failed: List[PermissionCondition] = []
        for permission in active:
            if not permission.conditions:
                return self._granted(request, permission, "Permission granted without conditions")

            evaluation = await self.evaluator.evaluate_conditions(permission.conditions, request.context)
            if evaluation.satisfied:
                return self._granted(request, permission, "Permission granted with satisfied conditions")
            failed.extend(evaluation.failed_conditions)

        return EvaluationResult(
            granted=False,
            reason=f"Found {len(active)} applicable permission(s) but conditions not satisfied",
            outcome=DecisionOutcome.CONDITIONS_NOT_MET,
            audit_required=True,
            failed_conditions=failed
        )

    def _granted(self, request: PermissionRequest, permission: Permission, reason: str) -> EvaluationResult:
        return EvaluationResult(
            granted=True,
            reason=reason,
            outcome=DecisionOutcome.GRANTED,
            audit_required=self.requires_audit(request.resource_type, request.action),
            permission_id=permission.id,
            conditions=list(permission.conditions),
            expires_at=permission.expires_at
        )

    async def revoke_permission(self, permission_id: str, revoked_by: str) -> bool:
        """Revoke a specific permission; False if it does not exist."""
        async with self._lock:
            removed = await self._discard(lambda p: p.id == permission_id)

        if not removed:
            return False

        permission = removed[0]

        logger.info(f"Revoked permission {permission_id} of {permission.user_id} by {revoked_by}")
        await self._announce_revocation(permission, revoked_by)
        return True

    async def revoke_all_permissions(self, user_id: str, resource_type: str, revoked_by: str) -> int:
        """
        Remove every permission a user holds on a resource type.

        Returns the number of active grants revoked; grants that had already
        expired are removed as well and logged as expired.
        """
        now = get_current_time()
        async with self._lock:
            removed = await self._discard(lambda p: p.user_id == user_id and p.resource_type == resource_type)

        revoked = [p for p in removed if not p.is_expired(now)]
        expired = [p for p in removed if p.is_expired(now)]

        for permission in revoked:
            await self._announce_revocation(permission, revoked_by)
        for permission in expired:
            await self._announce_expiry(permission)

        if removed:
            logger.info(f"Revoked {len(revoked)} {resource_type} permission(s) of {user_id} by {revoked_by}")
        return len(revoked)

    def get_user_permissions(self, user_id: str) -> List[Permission]:
        """Get all permissions for a user"""
        return list(self._permissions.get(user_id, []))

    def get_resource_permissions(self, user_id: str, resource_type: str) -> List[Permission]:
        """Get a user's permissions for a specific resource type"""
        return [p for p in self._permissions.get(user_id, []) if p.resource_type == resource_type]

    def get_permission(self, permission_id: str) -> Optional[Permission]:
        for permissions in self._permissions.values():
            for permission in permissions:
                if permission.id == permission_id:
                    return permission
        return None

    async def cleanup_expired(self) -> Dict[str, int]:
        """
        Remove expired permissions, and expired consents when a consent
        manager is attached. Safe to call repeatedly and concurrently.
        """
        now = get_current_time()
        async with self._lock:
            expired = await self._discard(lambda p: p.is_expired(now))

        for permission in expired:
            await self._announce_expiry(permission)

        consents = 0
        if self.consent_manager is not None:
            consents = await self.consent_manager.cleanup_expired()

        if expired:
            logger.info(f"Removed {len(expired)} expired permission(s)")
        return {'permissions': len(expired), 'consents': consents}

    def get_stats(self) -> Dict[str, int]:
        """Permission and consent counts, computed from the live collections"""
        now = get_current_time()
        total = active = expired = 0

        for permissions in self._permissions.values():
            for permission in permissions:
                total += 1
                if permission.is_expired(now):
                    expired += 1
                else:
                    active += 1

        return {
            'total_permissions': total,
            'active_permissions': active,
            'expired_permissions': expired,
            'total_consents': self.consent_manager.total_consents if self.consent_manager else 0
        }

    def requires_audit(self, resource_type: str, action: Union[PermissionAction, str]) -> bool:
        """Sensitive actions and sensitive resource types always require audit"""
        return _action_name(action) in self.sensitive_actions or resource_type in self.sensitive_resource_types

    def register_policy(self, policy: PermissionPolicy) -> None:
        """Register a permission policy. Policies are not consulted by checks."""
        policy.updated_at = get_current_time()
        self._policies[policy.id] = policy

    def get_policies(self, resource_type: str) -> List[PermissionPolicy]:
        """Active policies for a resource type, highest priority first"""
        return sorted(
            (p for p in self._policies.values() if p.resource_type == resource_type and p.active),
            key=lambda p: p.priority,
            reverse=True
        )

    async def restore(self) -> int:
        """Reload permissions from the secure store; returns how many were added."""
        if self.secure_store is None:
            return 0

        restored = 0
        async with self._lock:
            known = {p.id for perms in self._permissions.values() for p in perms}
            try:
                for key in await self.secure_store.keys(KEY_PREFIX):
                    data = await self.secure_store.get(key)
                    if data is None:
                        continue
                    permission = Permission.from_dict(data)
                    if permission.id not in known:
                        self._permissions.setdefault(permission.user_id, []).append(permission)
                        known.add(permission.id)
                        restored += 1
            except (StorageError, KeyError, TypeError, ValueError) as e:
                logger.error(f"Failed to restore permissions: {e}")

        return restored

    def _remove(self, predicate) -> List[Permission]:
        """Remove matching permissions; caller holds the lock."""
        removed = []
        for user_id in list(self._permissions):
            kept = []
            for permission in self._permissions[user_id]:
                (removed if predicate(permission) else kept).append(permission)
            if kept:
                self._permissions[user_id] = kept
            else:
                del self._permissions[user_id]
        return removed

    async def _discard(self, predicate) -> List[Permission]:
        """Remove matching permissions and their stored copies; caller holds the lock."""
        removed = self._remove(predicate)
        for permission in removed:
            await self._unpersist(permission)
        return removed

    async def _announce_revocation(self, permission: Permission, revoked_by: str) -> None:
        await self.audit_logger.log_permission_revocation(permission, revoked_by)
        await publish_event(self.dispatcher, EventType.PERMISSION_REVOKED, permission.user_id,
                            permission.id, actor=revoked_by, resource_type=permission.resource_type)
        if self.metrics is not None:
            self.metrics.record_permission_transition("revoked")

    async def _announce_expiry(self, permission: Permission) -> None:
        await self.audit_logger.log_permission_expiry(permission)
        await publish_event(self.dispatcher, EventType.PERMISSION_EXPIRED, permission.user_id,
                            permission.id, resource_type=permission.resource_type)
        if self.metrics is not None:
            self.metrics.record_permission_transition("expired")

    async def _persist(self, permission: Permission) -> None:
        if self.secure_store is None:
            return
        try:
            await self.secure_store.put(f"{KEY_PREFIX}{permission.id}", permission.to_dict())
        except StorageError as e:
            logger.error(f"Failed to persist permission {permission.id}: {e}")

    async def _unpersist(self, permission: Permission) -> None:
        if self.secure_store is None:
            return
        try:
            await self.secure_store.delete(f"{KEY_PREFIX}{permission.id}")
        except StorageError as e:
            logger.error(f"Failed to remove permission {permission.id} from store: {e}")

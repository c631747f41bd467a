"""
Explicit, revocable user consent management.

The ConsentManager is the single owner of stored consents and their history.
Mutations are serialized by an asyncio lock that is never held while the
consent presenter runs; the presenter's decision is applied atomically once
it returns.
"""

from dataclasses import replace
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple, Union
import asyncio
import inspect
import logging
import numbers

from ..audit.logger import AuditLogger, AuditResult
from ..authz.conditions import ContextEvaluator
from ..authz.types import PermissionCondition
from ..common.utils import get_current_time
from ..errors import PresenterError, StorageError, ValidationError
from ..events.events import EventDispatcher, EventType, publish_event
from ..store.types import SecureStore
from .presenter import ConsentPresenter, PresenterCallback, as_presenter
from .types import (
    AnyCondition,
    ConsentAction,
    ConsentCondition,
    ConsentConditionType,
    ConsentDecision,
    ConsentRecord,
    ConsentRequest,
    StoredConsent,
)


logger = logging.getLogger(__name__)

KEY_PREFIX = "consent:"

_EVENT_TYPES = {
    ConsentAction.GRANTED: EventType.CONSENT_GRANTED,
    ConsentAction.DENIED: EventType.CONSENT_DENIED,
    ConsentAction.REVOKED: EventType.CONSENT_REVOKED,
    ConsentAction.EXPIRED: EventType.CONSENT_EXPIRED,
}


def validate_consent_request(request: ConsentRequest) -> None:
    """
    Raises:
        ValidationError: a required field is missing or empty
    """
    if request is None:
        raise ValidationError("Consent request is required")
    if not request.id:
        raise ValidationError("Consent request id is required", field="id")
    if not request.purpose:
        raise ValidationError("Consent purpose is required", field="purpose")
    if not request.data_types:
        raise ValidationError("At least one data type is required", field="data_types")
    if not request.requester:
        raise ValidationError("Consent requester is required", field="requester")
    if request.context is None:
        raise ValidationError("Request context is required", field="context")
    if not getattr(request.context, 'user_id', None):
        raise ValidationError("Request context must identify the user", field="context.user_id")


class ConsentManager:
    """
    Explicit user consent management system
    """

    def __init__(self,
                 presenter: Optional[Union[ConsentPresenter, PresenterCallback]] = None,
                 evaluator: Optional[ContextEvaluator] = None,
                 audit_logger: Optional[AuditLogger] = None,
                 dispatcher: Optional[EventDispatcher] = None,
                 secure_store: Optional[SecureStore] = None,
                 metrics=None):
        self.presenter = as_presenter(presenter)
        self.evaluator = evaluator or ContextEvaluator()
        self.audit_logger = audit_logger or AuditLogger()
        self.dispatcher = dispatcher
        self.secure_store = secure_store
        self.metrics = metrics

        self._active_consents: Dict[str, StoredConsent] = {}
        self._history: List[ConsentRecord] = []
        self._lock = asyncio.Lock()

    async def request_consent(self, request: ConsentRequest) -> ConsentDecision:
        """
        Request user consent for data access or operation.

        Returns the existing decision unchanged when a valid consent already
        covers the request; otherwise asks the presenter and records the
        outcome. Never raises.
        """
        try:
            validate_consent_request(request)
        except ValidationError as e:
            logger.warning(f"Rejected malformed consent request: {e.message}")
            return ConsentDecision(granted=False, revocable=False, reason=f"Invalid consent request: {e.message}")

        user_id = request.user_id

        async with self._lock:
            existing, lapsed = self._find_existing(request, user_id, get_current_time())
            for consent in lapsed:
                await self._evict(consent, "Consent expired")
        await self._announce_all(lapsed, ConsentAction.EXPIRED, "Consent expired")

        if existing is not None:
            logger.debug(f"Reusing consent {existing.id} for {user_id}/{request.purpose}")
            return existing.to_decision()

        decision = await self._present(request)

        if not decision.granted:
            record = StoredConsent(
                id=request.id,
                user_id=user_id,
                purpose=request.purpose,
                data_types=list(request.data_types),
                requester=request.requester,
                context=request.context,
                granted=False
            )
            async with self._lock:
                self._history.append(ConsentRecord(record, ConsentAction.DENIED, reason=decision.reason))
            await self._announce(record, ConsentAction.DENIED, decision.reason or "Consent denied")
            return replace(decision, consent_id=request.id)

        stored = StoredConsent(
            id=request.id,
            user_id=user_id,
            purpose=request.purpose,
            data_types=list(request.data_types),
            requester=request.requester,
            context=request.context,
            granted=True,
            expires_at=decision.expires_at,
            conditions=list(decision.conditions or []),
            revocable=decision.revocable
        )

        async with self._lock:
            # Another caller may have stored a matching consent while the presenter ran
            concurrent, _ = self._find_existing(request, user_id, get_current_time())
            if concurrent is None:
                self._active_consents[stored.id] = stored
                await self._persist(stored)
                self._history.append(ConsentRecord(stored, ConsentAction.GRANTED, reason=decision.reason))

        if concurrent is not None:
            return concurrent.to_decision()

        logger.info(f"Consent {stored.id} granted by {user_id} to {stored.requester} for {stored.purpose}")
        await self._announce(stored, ConsentAction.GRANTED, f"Consent granted for {stored.purpose}")
        return replace(decision, consent_id=stored.id)

    async def has_valid_consent(self, purpose: str, data_types: List[str], user_id: str) -> bool:
        """
        Check whether an active consent covers the purpose and data types.

        Consents found to have lapsed during the scan are evicted.
        """
        if not purpose or not data_types or not user_id:
            return False

        now = get_current_time()
        found = False
        lapsed = []

        async with self._lock:
            for consent in list(self._active_consents.values()):
                if consent.user_id != user_id or not consent.granted:
                    continue
                if not consent.covers(purpose, data_types):
                    continue
                if self.is_consent_valid(consent, now):
                    found = True
                    break
                if self._has_lapsed(consent, now):
                    await self._evict(consent, "Consent expired")
                    lapsed.append(consent)

        await self._announce_all(lapsed, ConsentAction.EXPIRED, "Consent expired")
        return found

    async def revoke_consent(self, consent_id: str, user_id: str) -> bool:
        """
        Revoke previously granted consent.

        Returns False when the consent is unknown, owned by someone else or
        not revocable.
        """
        async with self._lock:
            consent = self._active_consents.get(consent_id)
            if consent is None or consent.user_id != user_id or not consent.revocable:
                return False

            await self._evict(consent, f"Consent revoked by {user_id}", ConsentAction.REVOKED)

        logger.info(f"Consent {consent_id} revoked by {user_id}")
        await self._announce(consent, ConsentAction.REVOKED, f"Consent revoked by {user_id}")
        return True

    async def cleanup_expired(self) -> int:
        """Remove every consent that has lapsed; returns how many were removed."""
        now = get_current_time()

        async with self._lock:
            lapsed = [c for c in self._active_consents.values() if self._has_lapsed(c, now)]
            for consent in lapsed:
                await self._evict(consent, "Consent expired")

        await self._announce_all(lapsed, ConsentAction.EXPIRED, "Consent expired")
        if lapsed:
            logger.info(f"Removed {len(lapsed)} expired consent(s)")
        return len(lapsed)

    def get_user_consents(self, user_id: str) -> List[StoredConsent]:
        """Get all active consents for a user"""
        return [c for c in self._active_consents.values() if c.user_id == user_id and c.granted]

    def get_consent_history(self, user_id: str) -> List[ConsentRecord]:
        """Get consent history for audit purposes, oldest first"""
        return [r for r in self._history if r.user_id == user_id]

    def get_consent(self, consent_id: str) -> Optional[StoredConsent]:
        return self._active_consents.get(consent_id)

    @property
    def total_consents(self) -> int:
        return len(self._active_consents)

    async def restore(self) -> int:
        """Reload stored consents from the secure store; returns how many were added."""
        if self.secure_store is None:
            return 0

        restored = 0
        async with self._lock:
            try:
                for key in await self.secure_store.keys(KEY_PREFIX):
                    data = await self.secure_store.get(key)
                    if data is None:
                        continue
                    consent = StoredConsent.from_dict(data)
                    if consent.id not in self._active_consents:
                        self._active_consents[consent.id] = consent
                        restored += 1
            except (StorageError, KeyError, TypeError, ValueError) as e:
                logger.error(f"Failed to restore consents: {e}")

        return restored

    def is_consent_valid(self, consent: StoredConsent, now: Optional[datetime] = None) -> bool:
        """Granted, unexpired and every attached condition holds."""
        now = now or get_current_time()
        if not consent.granted or consent.is_expired(now):
            return False
        return all(self._evaluate_condition(c, consent, now) for c in consent.conditions or [])

    def _evaluate_condition(self, condition: AnyCondition, consent: StoredConsent, now: datetime) -> bool:
        if isinstance(condition, PermissionCondition):
            return self.evaluator.evaluate_condition(condition, consent.context.at(now))

        if not isinstance(condition, ConsentCondition):
            return False

        if condition.type == ConsentConditionType.PURPOSE_LIMITATION:
            return condition.value is None or condition.value == consent.purpose

        if condition.type == ConsentConditionType.DATA_MINIMIZATION:
            if condition.value is None:
                return True
            return isinstance(condition.value, (list, tuple, set, frozenset)) and \
                set(consent.data_types) <= set(condition.value)

        if condition.type == ConsentConditionType.RETENTION_LIMIT:
            return self._within_retention(condition, consent, now)

        return False

    @staticmethod
    def _within_retention(condition: ConsentCondition, consent: StoredConsent, now: datetime) -> bool:
        value = condition.value
        if not isinstance(value, numbers.Real) or isinstance(value, bool):
            return False
        try:
            return now - consent.granted_at < timedelta(milliseconds=value)
        except (OverflowError, ValueError):
            return False

    def _has_lapsed(self, consent: StoredConsent, now: datetime) -> bool:
        """Expired by date or past a retention limit."""
        if consent.is_expired(now):
            return True
        return any(
            isinstance(c, ConsentCondition)
            and c.type == ConsentConditionType.RETENTION_LIMIT
            and not self._within_retention(c, consent, now)
            for c in consent.conditions or []
        )

    def _find_existing(self, request: ConsentRequest, user_id: str,
                       now: datetime) -> Tuple[Optional[StoredConsent], List[StoredConsent]]:
        """Valid consent covering the request, plus lapsed candidates found on the way."""
        lapsed = []
        for consent in self._active_consents.values():
            if consent.user_id != user_id or not consent.covers(
                    request.purpose, request.data_types, request.requester):
                continue
            if self.is_consent_valid(consent, now):
                return consent, lapsed
            if self._has_lapsed(consent, now):
                lapsed.append(consent)
        return None, lapsed

    async def _evict(self, consent: StoredConsent, reason: str,
               action: ConsentAction = ConsentAction.EXPIRED) -> None:
        """Remove, unpersist and record; caller holds the lock."""
        self._active_consents.pop(consent.id, None)
        await self._unpersist(consent)
        self._history.append(ConsentRecord(consent, action, reason=reason))

    async def _present(self, request: ConsentRequest) -> ConsentDecision:
        """Ask the presenter; any failure becomes a denied decision."""
        try:
            result = self.presenter.present(request)
            if inspect.isawaitable(result):
                result = await result
            if isinstance(result, dict):
                result = ConsentDecision.from_dict(result)
            if not isinstance(result, ConsentDecision):
                raise PresenterError(f"Presenter returned {type(result).__name__}, expected ConsentDecision")
            return result
        except Exception as e:
            logger.error(f"Consent presenter failed for request {request.id}: {e}")
            return ConsentDecision(granted=False, revocable=False, reason=f"Consent presenter failed: {e}")

    async def _announce(self, consent: StoredConsent, action: ConsentAction, reason: str) -> None:
        """Audit and notify a committed transition."""
        await self.audit_logger.log_consent_event(
            user_id=consent.user_id,
            consent_id=consent.id,
            result=AuditResult(action.value),
            purpose=consent.purpose,
            data_types=consent.data_types,
            requester=consent.requester,
            reason=reason,
            context=consent.context
        )
        await publish_event(self.dispatcher, _EVENT_TYPES[action], consent.user_id, consent.id,
                            actor=consent.user_id if action != ConsentAction.EXPIRED else "system",
                            purpose=consent.purpose, requester=consent.requester)
        if self.metrics is not None:
            self.metrics.record_consent(action.value)

    async def _announce_all(self, consents: List[StoredConsent], action: ConsentAction, reason: str) -> None:
        for consent in consents:
            await self._announce(consent, action, reason)

    async def _persist(self, consent: StoredConsent) -> None:
        if self.secure_store is None:
            return
        try:
            await self.secure_store.put(f"{KEY_PREFIX}{consent.id}", consent.to_dict())
        except StorageError as e:
            logger.error(f"Failed to persist consent {consent.id}: {e}")

    async def _unpersist(self, consent: StoredConsent) -> None:
        if self.secure_store is None:
            return
        try:
            await self.secure_store.delete(f"{KEY_PREFIX}{consent.id}")
        except StorageError as e:
            logger.error(f"Failed to remove consent {consent.id} from store: {e}")

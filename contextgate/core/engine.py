"""
ContextGate engine: permissions, consent and audit wired together.
"""

from datetime import datetime
from typing import Dict, List, Optional, Union
import logging

from .config import Config
from ..audit.logger import AuditLogger, FileAuditSink, LoggingAuditSink, MemoryAuditSink
from ..authz.conditions import ContextEvaluator
from ..authz.permissions import PermissionManager
from ..authz.types import (
    ConditionEvaluationResult,
    EvaluationResult,
    Permission,
    PermissionAction,
    PermissionCondition,
    PermissionRequest,
    RequestContext,
)
from ..consent.manager import ConsentManager
from ..consent.presenter import ConsentPresenter, DefaultConsentPresenter, PresenterCallback
from ..consent.types import ConsentDecision, ConsentRecord, ConsentRequest, StoredConsent
from ..events.events import EventDispatcher
from ..metrics.collector import MetricConfig, MetricsCollector
from ..store import create_secure_store
from ..store.types import SecureStore


class ContextGate:
    """
    Context-aware authorization and consent engine.

    Use ContextGate.new() to construct a validated instance. The permission
    and consent stores share one condition evaluator, one audit ledger and one
    event dispatcher.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        presenter: Optional[Union[ConsentPresenter, PresenterCallback]] = None,
        audit_logger: Optional[AuditLogger] = None,
        secure_store: Optional[SecureStore] = None,
        dispatcher: Optional[EventDispatcher] = None,
    ):
        """
        Initialize the engine.

        Args:
            config: Engine configuration (defaults to Config())
            presenter: Consent presenter or callback (defaults to the built-in policy)
            audit_logger: Audit ledger (defaults to memory + logging sinks, plus a
                file sink when config.audit_log_path is set)
            secure_store: Durable store (file store when config.store_path is set,
                memory otherwise)
            dispatcher: Event dispatcher for transition notifications
        """
        self.config = config or Config()
        self.logger = logging.getLogger(__name__)
        logging.getLogger("contextgate").setLevel(self.config.log_level.upper())

        self.audit_logger = audit_logger or self._build_audit_logger()
        self.dispatcher = dispatcher or EventDispatcher()
        self.metrics = MetricsCollector(MetricConfig(enabled=self.config.metrics_enabled))
        if secure_store is None:
            secure_store = create_secure_store("file", self.config.store_path) if self.config.store_path \
                else create_secure_store("memory")
        self.secure_store = secure_store

        self.evaluator = ContextEvaluator(
            default_radius=self.config.default_geofence_radius,
            business_hours_start=self.config.business_hours_start,
            business_hours_end=self.config.business_hours_end,
            metrics=self.metrics
        )
        self.consents = ConsentManager(
            presenter=presenter or DefaultConsentPresenter(
                sensitive_data_types=self.config.sensitive_data_types,
                sensitive_expiry=self.config.sensitive_consent_expiry,
                standard_expiry=self.config.standard_consent_expiry,
                retention_limit=self.config.retention_limit
            ),
            evaluator=self.evaluator,
            audit_logger=self.audit_logger,
            dispatcher=self.dispatcher,
            secure_store=self.secure_store,
            metrics=self.metrics
        )
        self.permissions = PermissionManager(
            evaluator=self.evaluator,
            audit_logger=self.audit_logger,
            dispatcher=self.dispatcher,
            secure_store=self.secure_store,
            consent_manager=self.consents,
            metrics=self.metrics,
            sensitive_actions=self.config.sensitive_actions,
            sensitive_resource_types=self.config.sensitive_resource_types
        )

    @classmethod
    def new(cls, config: Optional[Config] = None, **kwargs) -> "ContextGate":
        """
        Create a new engine after validating the configuration.

        Raises:
            ConfigurationError: If configuration is invalid

        Example:
            gate = ContextGate.new(Config(metrics_enabled=False))
        """
        config = config or Config()
        config.validate()
        return cls(config, **kwargs)

    def _build_audit_logger(self) -> AuditLogger:
        sinks = [MemoryAuditSink(), LoggingAuditSink()]
        if self.config.audit_log_path:
            sinks.append(FileAuditSink(self.config.audit_log_path))
        return AuditLogger(sinks)

    # Permissions

    async def grant_permission(self, user_id: str, resource_type: str,
                               action: Union[PermissionAction, str], granted_by: str,
                               **options) -> Permission:
        return await self.permissions.grant_permission(user_id, resource_type, action, granted_by, **options)

    async def check_permission(self, request: PermissionRequest) -> EvaluationResult:
        return await self.permissions.check_permission(request)

    async def revoke_permission(self, permission_id: str, revoked_by: str) -> bool:
        return await self.permissions.revoke_permission(permission_id, revoked_by)

    async def revoke_all_permissions(self, user_id: str, resource_type: str, revoked_by: str) -> int:
        return await self.permissions.revoke_all_permissions(user_id, resource_type, revoked_by)

    def get_user_permissions(self, user_id: str) -> List[Permission]:
        return self.permissions.get_user_permissions(user_id)

    def get_resource_permissions(self, user_id: str, resource_type: str) -> List[Permission]:
        return self.permissions.get_resource_permissions(user_id, resource_type)

    async def cleanup_expired(self) -> Dict[str, int]:
        return await self.permissions.cleanup_expired()

    def get_stats(self) -> Dict[str, int]:
        return self.permissions.get_stats()

    # Consent

    async def request_consent(self, request: ConsentRequest) -> ConsentDecision:
        return await self.consents.request_consent(request)

    async def has_valid_consent(self, purpose: str, data_types: List[str], user_id: str) -> bool:
        return await self.consents.has_valid_consent(purpose, data_types, user_id)

    async def revoke_consent(self, consent_id: str, user_id: str) -> bool:
        return await self.consents.revoke_consent(consent_id, user_id)

    def get_user_consents(self, user_id: str) -> List[StoredConsent]:
        return self.consents.get_user_consents(user_id)

    def get_consent_history(self, user_id: str) -> List[ConsentRecord]:
        return self.consents.get_consent_history(user_id)

    # Conditions

    async def evaluate_conditions(self, conditions: List[PermissionCondition],
                                  context: RequestContext) -> ConditionEvaluationResult:
        return await self.evaluator.evaluate_conditions(conditions, context)

    def is_business_hours(self, timestamp: Optional[datetime] = None) -> bool:
        return self.evaluator.is_business_hours(timestamp)

    async def restore(self) -> Dict[str, int]:
        """Reload permissions and consents from the secure store."""
        restored = {
            'permissions': await self.permissions.restore(),
            'consents': await self.consents.restore()
        }
        self.logger.info(
            f"Restored {restored['permissions']} permission(s) and {restored['consents']} consent(s)"
        )
        return restored

    def get_metrics(self) -> bytes:
        """Prometheus exposition of the engine's metrics."""
        return self.metrics.export()

    async def close(self) -> None:
        """Flush and close the audit sinks and the secure store."""
        await self.audit_logger.close()
        await self.secure_store.close()

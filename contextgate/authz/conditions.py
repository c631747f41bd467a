"""
Context-based condition evaluation for contextgate.

Conditions are evaluated conjunctively against a RequestContext. Every
condition is evaluated and every failure collected; unsupported or malformed
conditions fail closed instead of raising.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional
import logging
import math
import re

from ..common.utils import coerce_datetime, get_current_time, to_local_naive
from .types import (
    ConditionEvaluationResult,
    ConditionOperator,
    ConditionType,
    DEFAULT_GEOFENCE_RADIUS,
    Geofence,
    Location,
    PermissionCondition,
    RequestContext,
    SENSITIVITY_LEVELS,
)


logger = logging.getLogger(__name__)

EARTH_RADIUS_METERS = 6_371_000.0

Op = ConditionOperator


def calculate_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle (haversine) distance between two coordinates in meters."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = (math.sin(d_phi / 2) ** 2 +
         math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_METERS * c


class ContextEvaluator:
    """
    Evaluates permission and consent conditions against a request context.

    The evaluator is stateless; one instance may be shared by any number of
    stores.
    """

    def __init__(self,
                 default_radius: float = DEFAULT_GEOFENCE_RADIUS,
                 business_hours_start: int = 9,
                 business_hours_end: int = 17,
                 metrics=None):
        self.default_radius = default_radius
        self.business_hours_start = business_hours_start
        self.business_hours_end = business_hours_end
        self.metrics = metrics

        self._handlers = {
            ConditionType.TIME_RANGE: self._evaluate_time_range,
            ConditionType.LOCATION: self._evaluate_location,
            ConditionType.DEVICE: self._evaluate_device,
            ConditionType.NETWORK: self._evaluate_network,
            ConditionType.USER_CONTEXT: self._evaluate_user_context,
            ConditionType.DATA_SENSITIVITY: self._evaluate_data_sensitivity,
            ConditionType.PURPOSE: self._evaluate_purpose,
        }

    async def evaluate_conditions(
        self,
        conditions: Iterable[PermissionCondition],
        context: RequestContext
    ) -> ConditionEvaluationResult:
        """
        Evaluate all conditions against the request context.

        Args:
            conditions: Conditions that must all hold
            context: Snapshot the conditions are tested against

        Returns:
            ConditionEvaluationResult: overall satisfaction and every failed condition
        """
        failed_conditions: List[PermissionCondition] = []

        for condition in conditions or []:
            if not self.evaluate_condition(condition, context):
                failed_conditions.append(condition)

        if not failed_conditions:
            return ConditionEvaluationResult(satisfied=True, reason="All conditions satisfied")

        return ConditionEvaluationResult(
            satisfied=False,
            reason=f"{len(failed_conditions)} condition(s) not satisfied",
            failed_conditions=failed_conditions
        )

    def evaluate_condition(self, condition: PermissionCondition, context: RequestContext) -> bool:
        """Evaluate a single condition; anything unexpected evaluates to False."""
        condition_type = getattr(condition, 'type', None)
        handler = self._handlers.get(condition_type)
        if handler is None or context is None:
            logger.debug(f"Unsupported condition type {condition_type!r}")
            result = False
        else:
            try:
                result = bool(handler(condition, context))
            except (TypeError, ValueError, KeyError, AttributeError, OverflowError, OSError, re.error) as e:
                logger.debug(f"Malformed {condition.type.value} condition {condition.value!r}: {e}")
                result = False

        if not result and self.metrics is not None:
            self.metrics.record_condition_failure(getattr(condition_type, 'value', str(condition_type)))

        return result

    def _evaluate_time_range(self, condition: PermissionCondition, context: RequestContext) -> bool:
        now = to_local_naive(context.timestamp)

        if condition.operator == Op.BETWEEN:
            if isinstance(condition.value, (list, tuple)) and len(condition.value) == 2:
                start, end = (coerce_datetime(v) for v in condition.value)
                return start <= now <= end
            return False

        if condition.operator == Op.GREATER_THAN:
            return now > coerce_datetime(condition.value)

        if condition.operator == Op.LESS_THAN:
            return now < coerce_datetime(condition.value)

        return False

    def _within(self, location: Location, area: Dict[str, Any]) -> bool:
        if not isinstance(area, dict):
            return False
        radius = area.get('radius') or self.default_radius
        distance = calculate_distance(
            location.latitude, location.longitude,
            float(area['latitude']), float(area['longitude'])
        )
        return distance <= radius

    def _evaluate_location(self, condition: PermissionCondition, context: RequestContext) -> bool:
        if context.location is None:
            return condition.operator == Op.NOT_EQUALS

        location = context.location

        if condition.operator == Op.EQUALS:
            return self._within(location, condition.value)

        if condition.operator == Op.NOT_EQUALS:
            return not self._within(location, condition.value)

        if condition.operator == Op.IN:
            if isinstance(condition.value, (list, tuple)):
                return any(self._within(location, area) for area in condition.value)
            return False

        if condition.operator == Op.NOT_IN:
            if isinstance(condition.value, (list, tuple)):
                return not any(self._within(location, area) for area in condition.value)
            return False

        return False

    @staticmethod
    def _match_identity(operator: ConditionOperator, value: Any, identities: List[Any],
                        trusted: bool) -> bool:
        """Shared device/network comparison: equality or membership on any identity."""
        if operator == Op.EQUALS:
            return value in identities
        if operator == Op.NOT_EQUALS:
            return value not in identities
        if operator == Op.IN:
            return isinstance(value, (list, tuple, set, frozenset)) and any(i in value for i in identities)
        if operator == Op.NOT_IN:
            return isinstance(value, (list, tuple, set, frozenset)) and not any(i in value for i in identities)
        if operator == Op.CONTAINS:
            return value == 'trusted' and trusted is True
        return False

    def _evaluate_device(self, condition: PermissionCondition, context: RequestContext) -> bool:
        device = context.device
        if device is None:
            return condition.operator == Op.NOT_EQUALS
        return self._match_identity(condition.operator, condition.value,
                                    [device.id, device.type], device.trusted)

    def _evaluate_network(self, condition: PermissionCondition, context: RequestContext) -> bool:
        network = context.network
        if network is None:
            return condition.operator == Op.NOT_EQUALS
        return self._match_identity(condition.operator, condition.value,
                                    [network.type], network.trusted)

    def _evaluate_user_context(self, condition: PermissionCondition, context: RequestContext) -> bool:
        activity = context.user_activity

        if condition.operator == Op.MATCHES_PATTERN:
            if activity and isinstance(condition.value, str):
                return re.search(condition.value, activity) is not None
            return False

        return self._match_value(condition.operator, condition.value, activity)

    def _evaluate_data_sensitivity(self, condition: PermissionCondition, context: RequestContext) -> bool:
        current = (condition.metadata or {}).get('sensitivity')

        if condition.operator == Op.EQUALS:
            return current is not None and current == condition.value

        if condition.operator == Op.LESS_THAN:
            current = current or 'public'
            if current not in SENSITIVITY_LEVELS or condition.value not in SENSITIVITY_LEVELS:
                return False
            return SENSITIVITY_LEVELS.index(current) <= SENSITIVITY_LEVELS.index(condition.value)

        return False

    def _evaluate_purpose(self, condition: PermissionCondition, context: RequestContext) -> bool:
        return self._match_value(condition.operator, condition.value,
                                 (condition.metadata or {}).get('purpose'))

    @staticmethod
    def _match_value(operator: ConditionOperator, value: Any, actual: Optional[str]) -> bool:
        if operator == Op.EQUALS:
            return actual is not None and actual == value
        if operator == Op.NOT_EQUALS:
            return actual != value
        if operator == Op.IN:
            return isinstance(value, (list, tuple, set, frozenset)) and actual in value
        if operator == Op.NOT_IN:
            return isinstance(value, (list, tuple, set, frozenset)) and actual not in value
        return False

    def is_business_hours(self, timestamp: Optional[datetime] = None) -> bool:
        """Monday to Friday, within the configured hours (default 9:00 to 17:00)."""
        timestamp = to_local_naive(timestamp or get_current_time())
        return (
            timestamp.weekday() < 5
            and self.business_hours_start <= timestamp.hour < self.business_hours_end
        )

    @staticmethod
    def is_within_geofence(location: Location, geofence: Geofence) -> bool:
        """Check if a point lies within a circular geofence."""
        distance = calculate_distance(
            location.latitude, location.longitude,
            geofence.latitude, geofence.longitude
        )
        return distance <= geofence.radius

    calculate_distance = staticmethod(calculate_distance)

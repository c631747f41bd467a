"""
Tests for context condition evaluation.
"""

import pytest
from datetime import datetime, timedelta

from contextgate.authz.conditions import ContextEvaluator, calculate_distance
from contextgate.authz.types import (
    ConditionOperator,
    ConditionType,
    Device,
    Geofence,
    Location,
    Network,
    PermissionCondition,
    RequestContext,
)
from contextgate.errors import ConditionError
from contextgate.metrics import MetricsCollector


SAN_FRANCISCO = {"latitude": 37.7749, "longitude": -122.4194, "radius": 100}
NEW_YORK = {"latitude": 40.7128, "longitude": -74.0060, "radius": 100}

MONDAY_AFTERNOON = datetime(2025, 1, 6, 14, 0)
MONDAY_EVENING = datetime(2025, 1, 6, 20, 0)
SATURDAY_AFTERNOON = datetime(2025, 1, 11, 14, 0)


@pytest.fixture
def evaluator():
    return ContextEvaluator()


@pytest.fixture
def context():
    return RequestContext(
        timestamp=MONDAY_AFTERNOON,
        location=Location(latitude=37.7749, longitude=-122.4194),
        device=Device(id="laptop-1", type="laptop", trusted=True),
        network=Network(type="wifi", trusted=False),
        user_activity="reviewing_records",
        user_id="u1",
    )


def condition(type, operator, value, **metadata):
    return PermissionCondition(type=type, operator=operator, value=value, metadata=metadata)


class TestGeofence:
    """Location conditions and distance helpers."""

    def test_distance_san_francisco_to_new_york(self):
        distance = calculate_distance(37.7749, -122.4194, 40.7128, -74.0060)
        assert 4_100_000 < distance < 4_160_000

    def test_distance_to_self_is_zero(self):
        assert calculate_distance(37.7749, -122.4194, 37.7749, -122.4194) == pytest.approx(0.0)

    def test_within_geofence(self):
        here = Location(latitude=37.7749, longitude=-122.4194)
        assert ContextEvaluator.is_within_geofence(here, Geofence(37.7749, -122.4194, 100))
        assert not ContextEvaluator.is_within_geofence(here, Geofence(40.7128, -74.0060, 100))

    @pytest.mark.asyncio
    async def test_location_equals(self, evaluator, context):
        inside = condition(ConditionType.LOCATION, ConditionOperator.EQUALS, SAN_FRANCISCO)
        outside = condition(ConditionType.LOCATION, ConditionOperator.EQUALS, NEW_YORK)

        assert (await evaluator.evaluate_conditions([inside], context)).satisfied
        result = await evaluator.evaluate_conditions([outside], context)
        assert not result.satisfied
        assert result.failed_conditions == [outside]

    def test_location_default_radius(self, context):
        evaluator = ContextEvaluator(default_radius=5_000_000)
        far = condition(ConditionType.LOCATION, ConditionOperator.EQUALS,
                        {"latitude": 40.7128, "longitude": -74.0060})
        assert evaluator.evaluate_condition(far, context)

    def test_location_in_and_not_in(self, evaluator, context):
        areas = [NEW_YORK, SAN_FRANCISCO]
        assert evaluator.evaluate_condition(
            condition(ConditionType.LOCATION, ConditionOperator.IN, areas), context)
        assert not evaluator.evaluate_condition(
            condition(ConditionType.LOCATION, ConditionOperator.NOT_IN, areas), context)
        assert evaluator.evaluate_condition(
            condition(ConditionType.LOCATION, ConditionOperator.NOT_EQUALS, NEW_YORK), context)

    def test_missing_location(self, evaluator):
        context = RequestContext(timestamp=MONDAY_AFTERNOON)
        assert not evaluator.evaluate_condition(
            condition(ConditionType.LOCATION, ConditionOperator.EQUALS, SAN_FRANCISCO), context)
        assert evaluator.evaluate_condition(
            condition(ConditionType.LOCATION, ConditionOperator.NOT_EQUALS, SAN_FRANCISCO), context)


class TestTimeConditions:
    """Time windows and business hours."""

    def test_business_hours(self, evaluator):
        assert evaluator.is_business_hours(MONDAY_AFTERNOON)
        assert not evaluator.is_business_hours(MONDAY_EVENING)
        assert not evaluator.is_business_hours(SATURDAY_AFTERNOON)

    def test_business_hours_boundaries(self, evaluator):
        assert evaluator.is_business_hours(datetime(2025, 1, 6, 9, 0))
        assert not evaluator.is_business_hours(datetime(2025, 1, 6, 17, 0))

    def test_custom_business_hours(self):
        evaluator = ContextEvaluator(business_hours_start=18, business_hours_end=22)
        assert evaluator.is_business_hours(MONDAY_EVENING)
        assert not evaluator.is_business_hours(MONDAY_AFTERNOON)

    def test_between_is_inclusive(self, evaluator, context):
        exact = condition(ConditionType.TIME_RANGE, ConditionOperator.BETWEEN,
                          [MONDAY_AFTERNOON, MONDAY_AFTERNOON])
        assert evaluator.evaluate_condition(exact, context)

        later = condition(ConditionType.TIME_RANGE, ConditionOperator.BETWEEN,
                          [MONDAY_EVENING, MONDAY_EVENING + timedelta(hours=1)])
        assert not evaluator.evaluate_condition(later, context)

    def test_between_accepts_iso_strings(self, evaluator, context):
        window = condition(ConditionType.TIME_RANGE, ConditionOperator.BETWEEN,
                           ["2025-01-06T09:00:00", "2025-01-06T17:00:00"])
        assert evaluator.evaluate_condition(window, context)

    def test_greater_and_less_than(self, evaluator, context):
        earlier = MONDAY_AFTERNOON - timedelta(minutes=1)
        assert evaluator.evaluate_condition(
            condition(ConditionType.TIME_RANGE, ConditionOperator.GREATER_THAN, earlier), context)
        assert not evaluator.evaluate_condition(
            condition(ConditionType.TIME_RANGE, ConditionOperator.LESS_THAN, earlier), context)


class TestDeviceAndNetwork:

    def test_device_matches_id_or_type(self, evaluator, context):
        assert evaluator.evaluate_condition(
            condition(ConditionType.DEVICE, ConditionOperator.EQUALS, "laptop"), context)
        assert evaluator.evaluate_condition(
            condition(ConditionType.DEVICE, ConditionOperator.EQUALS, "laptop-1"), context)
        assert evaluator.evaluate_condition(
            condition(ConditionType.DEVICE, ConditionOperator.IN, ["phone", "laptop"]), context)
        assert not evaluator.evaluate_condition(
            condition(ConditionType.DEVICE, ConditionOperator.NOT_IN, ["laptop"]), context)

    def test_trusted_device(self, evaluator, context):
        trusted = condition(ConditionType.DEVICE, ConditionOperator.CONTAINS, "trusted")
        assert evaluator.evaluate_condition(trusted, context)

    def test_untrusted_network(self, evaluator, context):
        trusted = condition(ConditionType.NETWORK, ConditionOperator.CONTAINS, "trusted")
        assert not evaluator.evaluate_condition(trusted, context)
        assert evaluator.evaluate_condition(
            condition(ConditionType.NETWORK, ConditionOperator.EQUALS, "wifi"), context)
        assert evaluator.evaluate_condition(
            condition(ConditionType.NETWORK, ConditionOperator.NOT_EQUALS, "cellular"), context)

    def test_missing_device(self, evaluator):
        context = RequestContext()
        assert not evaluator.evaluate_condition(
            condition(ConditionType.DEVICE, ConditionOperator.EQUALS, "laptop"), context)
        assert evaluator.evaluate_condition(
            condition(ConditionType.DEVICE, ConditionOperator.NOT_EQUALS, "laptop"), context)


class TestUserDataAndPurpose:

    def test_user_activity(self, evaluator, context):
        assert evaluator.evaluate_condition(
            condition(ConditionType.USER_CONTEXT, ConditionOperator.EQUALS, "reviewing_records"), context)
        assert evaluator.evaluate_condition(
            condition(ConditionType.USER_CONTEXT, ConditionOperator.MATCHES_PATTERN, r"^review"), context)
        assert not evaluator.evaluate_condition(
            condition(ConditionType.USER_CONTEXT, ConditionOperator.MATCHES_PATTERN, r"^export"), context)

    def test_pattern_without_activity_fails(self, evaluator):
        assert not evaluator.evaluate_condition(
            condition(ConditionType.USER_CONTEXT, ConditionOperator.MATCHES_PATTERN, ".*"),
            RequestContext())

    def test_invalid_pattern_fails_closed(self, evaluator, context):
        assert not evaluator.evaluate_condition(
            condition(ConditionType.USER_CONTEXT, ConditionOperator.MATCHES_PATTERN, "(unclosed"), context)

    def test_data_sensitivity_ceiling(self, evaluator, context):
        ceiling = condition(ConditionType.DATA_SENSITIVITY, ConditionOperator.LESS_THAN,
                            "confidential", sensitivity="internal")
        assert evaluator.evaluate_condition(ceiling, context)

        same_level = condition(ConditionType.DATA_SENSITIVITY, ConditionOperator.LESS_THAN,
                               "confidential", sensitivity="confidential")
        assert evaluator.evaluate_condition(same_level, context)

        above = condition(ConditionType.DATA_SENSITIVITY, ConditionOperator.LESS_THAN,
                          "internal", sensitivity="restricted")
        assert not evaluator.evaluate_condition(above, context)

    def test_data_sensitivity_defaults_to_public(self, evaluator, context):
        assert evaluator.evaluate_condition(
            condition(ConditionType.DATA_SENSITIVITY, ConditionOperator.LESS_THAN, "public"), context)

    def test_purpose(self, evaluator, context):
        assert evaluator.evaluate_condition(
            condition(ConditionType.PURPOSE, ConditionOperator.EQUALS, "care", purpose="care"), context)
        assert evaluator.evaluate_condition(
            condition(ConditionType.PURPOSE, ConditionOperator.IN, ["care", "billing"], purpose="billing"),
            context)
        assert not evaluator.evaluate_condition(
            condition(ConditionType.PURPOSE, ConditionOperator.EQUALS, "care"), context)


class TestFailClosed:
    """Unknown or malformed conditions evaluate to False, never raise."""

    def test_unknown_type(self, evaluator, context):
        assert not evaluator.evaluate_condition(
            condition("weather", ConditionOperator.EQUALS, "sunny"), context)

    def test_unsupported_operator(self, evaluator, context):
        assert not evaluator.evaluate_condition(
            condition(ConditionType.LOCATION, ConditionOperator.MATCHES_PATTERN, ".*"), context)
        assert not evaluator.evaluate_condition(
            condition(ConditionType.DEVICE, "approximately", "laptop"), context)

    def test_malformed_value(self, evaluator, context):
        assert not evaluator.evaluate_condition(
            condition(ConditionType.LOCATION, ConditionOperator.EQUALS, "downtown"), context)
        assert not evaluator.evaluate_condition(
            condition(ConditionType.TIME_RANGE, ConditionOperator.BETWEEN, "soon"), context)

    def test_epoch_values_out_of_range(self, evaluator, context):
        for value in (1e20, -1e20, [0, 1e20]):
            operator = ConditionOperator.BETWEEN if isinstance(value, list) else ConditionOperator.GREATER_THAN
            assert not evaluator.evaluate_condition(
                condition(ConditionType.TIME_RANGE, operator, value), context)
        assert not evaluator.evaluate_condition(
            condition(ConditionType.TIME_RANGE, ConditionOperator.LESS_THAN, 1e20), context)

    @pytest.mark.asyncio
    async def test_collects_every_failure(self, evaluator, context):
        failing = [
            condition(ConditionType.NETWORK, ConditionOperator.EQUALS, "cellular"),
            condition("weather", ConditionOperator.EQUALS, "sunny"),
        ]
        passing = condition(ConditionType.DEVICE, ConditionOperator.EQUALS, "laptop")

        result = await evaluator.evaluate_conditions([failing[0], passing, failing[1]], context)

        assert not result.satisfied
        assert result.failed_conditions == failing
        assert "2 condition(s)" in result.reason

    @pytest.mark.asyncio
    async def test_empty_conditions_are_satisfied(self, evaluator, context):
        assert (await evaluator.evaluate_conditions([], context)).satisfied

    def test_failures_are_counted(self, context):
        metrics = MetricsCollector()
        evaluator = ContextEvaluator(metrics=metrics)
        evaluator.evaluate_condition(
            condition(ConditionType.NETWORK, ConditionOperator.EQUALS, "cellular"), context)

        assert metrics.get_value("contextgate_condition_failures_total", condition_type="network") == 1.0


class TestConditionConstruction:

    def test_build_accepts_supported_pair(self):
        built = PermissionCondition.build(ConditionType.LOCATION, "equals", SAN_FRANCISCO)
        assert built.operator == ConditionOperator.EQUALS
        assert built.is_valid

    def test_build_rejects_unsupported_pair(self):
        with pytest.raises(ConditionError):
            PermissionCondition.build(ConditionType.LOCATION, ConditionOperator.MATCHES_PATTERN, ".*")

    def test_build_rejects_malformed_value(self):
        with pytest.raises(ConditionError):
            PermissionCondition.build(ConditionType.DATA_SENSITIVITY, ConditionOperator.LESS_THAN, "secret")
        with pytest.raises(ConditionError):
            PermissionCondition.build(ConditionType.TIME_RANGE, ConditionOperator.GREATER_THAN, 1e20)

    def test_round_trip_keeps_unknown_operator(self):
        raw = {"type": "device", "operator": "approximately", "value": "laptop", "metadata": {}}
        restored = PermissionCondition.from_dict(raw)
        assert restored.to_dict() == raw
        assert not restored.is_valid

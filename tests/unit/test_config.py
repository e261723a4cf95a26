from datetime import timedelta

import pytest

from reservation_arbiter.config import ArbitratorConfig, MaintenancePolicy, QuotaScope


class TestPolicyEnums:
    def test_quota_scope_values(self):
        assert QuotaScope.ALL_RESOURCES.value == "all_resources"
        assert QuotaScope.ACTIVE_RESOURCES_ONLY.value == "active_resources_only"

    def test_maintenance_policy_values(self):
        assert MaintenancePolicy.ALLOW.value == "allow"
        assert MaintenancePolicy.BLOCK.value == "block"


class TestArbitratorConfig:
    def test_default_values(self):
        """Test default configuration values."""
        config = ArbitratorConfig()

        # Booking Limits
        assert config.max_active_bookings_per_user == 2
        assert config.max_booking_duration_hours == 168
        assert config.edit_grace_period_ms == 3_600_000

        # Policies
        assert config.quota_scope is QuotaScope.ALL_RESOURCES
        assert config.maintenance_policy is MaintenancePolicy.ALLOW
        assert config.unknown_user_name == "Unknown User"

        # Transactions
        assert config.max_transaction_retries == 2
        assert config.retry_backoff_base == 0.01

    def test_derived_durations(self):
        config = ArbitratorConfig(
            max_booking_duration_hours=3, edit_grace_period_ms=90_000
        )
        assert config.max_booking_duration == timedelta(hours=3)
        assert config.edit_grace_period == timedelta(seconds=90)

    def test_zero_retries_allowed(self):
        assert ArbitratorConfig(max_transaction_retries=0).max_transaction_retries == 0

    @pytest.mark.parametrize(
        "kwargs, message",
        [
            ({"max_active_bookings_per_user": 0}, "max_active_bookings_per_user"),
            ({"max_booking_duration_hours": 0}, "max_booking_duration_hours"),
            ({"edit_grace_period_ms": -1}, "edit_grace_period_ms"),
            ({"max_transaction_retries": -1}, "max_transaction_retries"),
            ({"retry_backoff_base": -0.5}, "retry_backoff_base"),
        ],
    )
    def test_invalid_values_rejected(self, kwargs, message):
        with pytest.raises(ValueError, match=message):
            ArbitratorConfig(**kwargs)


class TestFromEnv:
    def test_empty_environment_uses_defaults(self):
        assert ArbitratorConfig.from_env(environ={}) == ArbitratorConfig()

    def test_reads_prefixed_variables(self):
        environ = {
            "RESERVATION_ARBITER_MAX_ACTIVE_BOOKINGS_PER_USER": "3",
            "RESERVATION_ARBITER_MAX_BOOKING_DURATION_HOURS": "24",
            "RESERVATION_ARBITER_EDIT_GRACE_PERIOD_MS": "60000",
            "RESERVATION_ARBITER_QUOTA_SCOPE": "ACTIVE_RESOURCES_ONLY",
            "RESERVATION_ARBITER_MAINTENANCE_POLICY": "block",
            "RESERVATION_ARBITER_UNKNOWN_USER_NAME": "Someone",
            "RESERVATION_ARBITER_RETRY_BACKOFF_BASE": "0.5",
            "UNRELATED": "ignored",
        }
        config = ArbitratorConfig.from_env(environ=environ)
        assert config.max_active_bookings_per_user == 3
        assert config.max_booking_duration_hours == 24
        assert config.edit_grace_period_ms == 60_000
        assert config.quota_scope is QuotaScope.ACTIVE_RESOURCES_ONLY
        assert config.maintenance_policy is MaintenancePolicy.BLOCK
        assert config.unknown_user_name == "Someone"
        assert config.retry_backoff_base == 0.5

    def test_custom_prefix(self):
        config = ArbitratorConfig.from_env(
            prefix="OVENS_", environ={"OVENS_MAX_TRANSACTION_RETRIES": "5"}
        )
        assert config.max_transaction_retries == 5

    def test_reads_os_environ_by_default(self, monkeypatch):
        monkeypatch.setenv("RESERVATION_ARBITER_MAX_ACTIVE_BOOKINGS_PER_USER", "4")
        assert ArbitratorConfig.from_env().max_active_bookings_per_user == 4

    def test_unconvertible_value_raises(self):
        with pytest.raises(ValueError):
            ArbitratorConfig.from_env(
                environ={"RESERVATION_ARBITER_MAX_BOOKING_DURATION_HOURS": "a week"}
            )

    def test_invalid_value_fails_validation(self):
        with pytest.raises(ValueError, match="max_active_bookings_per_user"):
            ArbitratorConfig.from_env(
                environ={"RESERVATION_ARBITER_MAX_ACTIVE_BOOKINGS_PER_USER": "0"}
            )

"""Tests for error classification and the deactivation rule."""
import asyncio

import httpx
import pytest

from pushdispatch.config import Settings
from pushdispatch.errors import OwnershipError, ValidationError
from pushdispatch.services.failure_policy import FailureCategory, FailurePolicy, normalize_code
from pushdispatch.services.gateway import GatewayError


class TestClassification:
    """Tests for code and exception classification."""

    def test_permanent_codes(self):
        policy = FailurePolicy()
        for code in ("UNREGISTERED", "INVALID_REGISTRATION", "SENDER_ID_MISMATCH", "BAD_DEVICE_TOKEN"):
            assert policy.classify(code) == FailureCategory.PERMANENT

    def test_transient_codes(self):
        policy = FailurePolicy()
        for code in ("TIMEOUT", "UNAVAILABLE", "INTERNAL", "QUOTA_EXCEEDED", "NETWORK_ERROR"):
            assert policy.classify(code) == FailureCategory.TRANSIENT

    def test_invalid_argument_is_transient(self):
        # Bad payloads share this code with bad tokens
        assert FailurePolicy().classify("INVALID_ARGUMENT") == FailureCategory.TRANSIENT

    def test_gateway_wide_codes(self):
        policy = FailurePolicy()
        for code in ("PUSH_DISABLED", "NOT_FOUND", "PERMISSION_DENIED", "UNAUTHENTICATED", "THIRD_PARTY_AUTH_ERROR"):
            assert policy.classify(code) == FailureCategory.SERVICE

    def test_codes_are_normalized(self):
        policy = FailurePolicy()
        assert normalize_code("not-registered") == "NOT_REGISTERED"
        assert policy.classify("not-registered") == FailureCategory.PERMANENT
        assert policy.classify(" unregistered ") == FailureCategory.PERMANENT

    def test_unknown_code_is_transient(self):
        policy = FailurePolicy()
        assert policy.classify("SOMETHING_NEW") == FailureCategory.TRANSIENT
        assert policy.classify(None) == FailureCategory.TRANSIENT

    def test_rejections_before_gateway(self):
        policy = FailurePolicy()
        assert policy.classify(ValidationError("bad token")) == FailureCategory.VALIDATION
        assert policy.classify(OwnershipError("not yours")) == FailureCategory.OWNERSHIP
        assert policy.classify("CANCELLED") == FailureCategory.CANCELLED

    def test_exceptions(self):
        policy = FailurePolicy()
        assert policy.code_for(GatewayError("UNREGISTERED")) == "UNREGISTERED"
        assert policy.code_for(httpx.ConnectTimeout("slow")) == "TIMEOUT"
        assert policy.code_for(asyncio.TimeoutError()) == "TIMEOUT"
        assert policy.code_for(httpx.ConnectError("refused")) == "NETWORK_ERROR"
        assert policy.code_for(RuntimeError("odd")) == "UNKNOWN_ERROR"
        assert policy.classify(httpx.ConnectError("refused")) == FailureCategory.TRANSIENT


class TestExtension:
    """Tests for extending the table without touching dispatch code."""

    def test_register_new_code(self):
        policy = FailurePolicy()
        policy.register("apns-gone", FailureCategory.PERMANENT)
        assert policy.classify("APNS_GONE") == FailureCategory.PERMANENT

    def test_override_existing_code(self):
        policy = FailurePolicy()
        policy.register("QUOTA_EXCEEDED", "permanent")
        assert policy.classify("QUOTA_EXCEEDED") == FailureCategory.PERMANENT

    def test_from_settings(self):
        settings = Settings(
            failure_threshold=3,
            push_permanent_error_codes=["DEVICE_GONE"],
            push_transient_error_codes=["SENDER_ID_MISMATCH"],
        )
        policy = FailurePolicy.from_settings(settings)
        assert policy.failure_threshold == 3
        assert policy.classify("DEVICE_GONE") == FailureCategory.PERMANENT
        assert policy.classify("SENDER_ID_MISMATCH") == FailureCategory.TRANSIENT

    def test_table_is_per_instance(self):
        first = FailurePolicy()
        first.register("ONLY_HERE", FailureCategory.PERMANENT)
        assert FailurePolicy().classify("ONLY_HERE") == FailureCategory.TRANSIENT
        assert "ONLY_HERE" in first.known_codes()


class TestDeactivationRule:
    """Tests for should_deactivate and affects_token."""

    def test_permanent_deactivates_immediately(self):
        assert FailurePolicy().should_deactivate(FailureCategory.PERMANENT, 1)

    def test_transient_uses_threshold(self):
        policy = FailurePolicy(failure_threshold=5)
        assert not policy.should_deactivate(FailureCategory.TRANSIENT, 4)
        assert policy.should_deactivate(FailureCategory.TRANSIENT, 5)
        assert policy.should_deactivate(FailureCategory.TRANSIENT, 6)

    def test_other_categories_never_deactivate(self):
        policy = FailurePolicy(failure_threshold=1)
        for category in (
            FailureCategory.VALIDATION,
            FailureCategory.OWNERSHIP,
            FailureCategory.CANCELLED,
            FailureCategory.SERVICE,
        ):
            assert not policy.should_deactivate(category, 100)
            assert not policy.affects_token(category)

    def test_threshold_must_be_positive(self):
        with pytest.raises(ValueError):
            FailurePolicy(failure_threshold=0)

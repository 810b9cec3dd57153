"""Tests for the retry/backoff policies used by the Bluetooth engines."""

import asyncio
import random

import pytest

from roomsense.bluetooth.config import BluetoothConfig
from roomsense.bluetooth.policies import ReconnectPolicy, RetryPolicy


class TestReconnectPolicy:
    """Unit tests for the ReconnectPolicy helper."""

    def test_initialization_defaults(self):
        policy = ReconnectPolicy()

        assert policy.initial_delay == 1.0
        assert policy.max_delay == 30.0
        assert policy.backoff == 2.0
        assert policy.jitter_ratio == 0.1
        assert policy.max_retries is None
        assert policy.get_attempt_count() == 0

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"initial_delay": 0},
            {"initial_delay": 5.0, "max_delay": 1.0},
            {"backoff": 0.5},
            {"jitter_ratio": 1.5},
            {"max_retries": -1},
        ],
    )
    def test_invalid_arguments_rejected(self, kwargs):
        with pytest.raises(ValueError):
            ReconnectPolicy(**kwargs)

    def test_get_attempt_count(self):
        policy = ReconnectPolicy(max_retries=3)
        policy.next_attempt()
        policy.next_attempt()
        assert policy.get_attempt_count() == 2

    def test_delay_calculation_without_jitter(self):
        policy = ReconnectPolicy(
            initial_delay=1.0,
            max_delay=100.0,
            backoff=2.0,
            jitter_ratio=0.0,
            max_retries=5,
        )

        assert policy.get_delay(0) == 1.0
        assert policy.get_delay(1) == 2.0
        assert policy.get_delay(2) == 4.0

    def test_delay_respects_maximum(self):
        policy = ReconnectPolicy(
            initial_delay=1.0,
            max_delay=5.0,
            backoff=3.0,
            jitter_ratio=0.0,
            max_retries=5,
        )

        assert policy.get_delay(1) == 3.0
        assert policy.get_delay(2) == 5.0  # capped at max_delay

    def test_delay_includes_jitter(self):
        policy = ReconnectPolicy(
            initial_delay=10.0,
            max_delay=20.0,
            jitter_ratio=0.5,
            max_retries=1,
            random_source=random.Random(0),
        )

        assert 5.0 <= policy.get_delay(0) <= 15.0

    def test_should_retry_limit(self):
        policy = ReconnectPolicy(max_retries=2)
        assert policy.should_retry(0) is True
        assert policy.should_retry(1) is True
        assert policy.should_retry(2) is False

    def test_next_attempt_advances_state(self):
        policy = ReconnectPolicy(jitter_ratio=0.0, max_retries=3)

        assert policy.next_attempt() == (1.0, True)
        assert policy.next_attempt() == (2.0, True)
        assert policy.next_attempt() == (4.0, True)
        assert policy.should_retry() is False

    def test_sleep_with_backoff_uses_sleep_hook(self, no_sleep):
        policy = ReconnectPolicy(jitter_ratio=0.0)

        asyncio.run(policy.sleep_with_backoff(2))

        assert no_sleep == [4.0]


class TestRetryPolicy:
    """Ensure the shared RetryPolicy presets are wired correctly."""

    def test_le_connect_policy_is_fixed_delay(self):
        policy = RetryPolicy.le_connect()

        delays = [policy.next_attempt()[0] for _ in range(BluetoothConfig.LE_CONNECTION_RETRIES)]

        assert delays == [BluetoothConfig.LE_CONNECTION_RETRY_DELAY] * BluetoothConfig.LE_CONNECTION_RETRIES
        assert policy.should_retry() is False

    def test_scan_restart_policy(self):
        policy = RetryPolicy.scan_restart()
        assert policy.initial_delay == 1.0
        assert policy.max_delay == BluetoothConfig.SCAN_RECOVERY_WAIT
        assert policy.max_retries == BluetoothConfig.SCAN_START_RETRIES

    def test_policy_instances_are_independent(self):
        first = RetryPolicy.le_connect()
        second = RetryPolicy.le_connect()

        first.next_attempt()

        assert first.get_attempt_count() == 1
        assert second.get_attempt_count() == 0

"""Tests for settlement tracking."""

import asyncio
import pytest
from datetime import timedelta
from unittest.mock import AsyncMock, Mock

from solver.core.monitor import SwapMonitor, final_tx_hash
from solver.core.types import BridgeApiError, SettlementTimeout, SwapStatus, _utcnow
from solver.venues.oneclick import OneClickClient

from sample_data import RaisingContext, ResponseContext, fake_http_session


class FakeTime:
    """Monotonic clock whose sleep advances time instantly."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def status(value, tx_hash=None):
    payload = {"status": value, "updatedAt": "2024-01-01T00:00:00Z"}
    if tx_hash:
        payload["swapDetails"] = {"destinationChainTxHashes": [{"hash": tx_hash, "explorerUrl": ""}]}
    return payload


class TestSwapMonitor:
    """Test polling, terminal handling and queries."""

    def setup_method(self):
        self.time = FakeTime()
        self.bridge = Mock()
        self.monitor = SwapMonitor(self.bridge, poll_interval_s=10, sleep=self.time.sleep, clock=self.time)
        self.monitor.register_swap("0xdep", "intent-1", "arbitrum", "near", "100", "alice.near", deposit_memo="m")

    def test_polls_until_success(self):
        self.bridge.get_swap_status = AsyncMock(side_effect=[
            status("PROCESSING"), status("PROCESSING"), status("PROCESSING"),
            status("SUCCESS", tx_hash="0xfinal"),
        ])

        result = asyncio.run(self.monitor.monitor_swap("0xdep", "m"))

        assert result["status"] == "SUCCESS"
        assert self.bridge.get_swap_status.await_count == 4
        assert self.time.sleeps == [10, 10, 10]
        self.bridge.get_swap_status.assert_awaited_with("0xdep", "m")

        record = self.monitor.get_swap("0xdep")
        assert record.status == SwapStatus.SUCCESS.value
        assert record.completed_at is not None
        assert record.final_tx_hash == "0xfinal"

    def test_timeout(self):
        self.bridge.get_swap_status = AsyncMock(return_value=status("PROCESSING"))

        with pytest.raises(SettlementTimeout):
            asyncio.run(self.monitor.monitor_swap("0xdep", "m", max_wait_s=30))

        record = self.monitor.get_swap("0xdep")
        assert record.status == "PROCESSING"
        assert record.error == "Swap monitoring timeout"
        assert record.completed_at is None
        assert self.time.now <= 30
        assert record.abandoned_at is not None
        assert self.monitor.get_active_swaps() == []

    def test_record_ceiling_abandons_swap(self):
        self.monitor.record_ceiling_s = 20
        self.bridge.get_swap_status = AsyncMock(return_value=status("PROCESSING"))

        with pytest.raises(SettlementTimeout):
            asyncio.run(self.monitor.monitor_swap("0xdep", "m", max_wait_s=900))

        record = self.monitor.get_swap("0xdep")
        assert record.abandoned_at is not None
        assert self.time.now == 20
        assert self.monitor.get_active_swaps() == []

    def test_poll_errors_keep_polling(self):
        self.bridge.get_swap_status = AsyncMock(side_effect=[
            BridgeApiError("502"), status("REFUNDED"),
        ])

        result = asyncio.run(self.monitor.monitor_swap("0xdep", "m"))

        assert result["status"] == "REFUNDED"
        assert self.monitor.get_swap("0xdep").completed_at is not None

    def test_terminal_record_is_frozen(self):
        self.bridge.get_swap_status = AsyncMock(return_value=status("FAILED"))
        asyncio.run(self.monitor.update_swap_status("0xdep"))

        self.bridge.get_swap_status = AsyncMock(return_value=status("SUCCESS"))
        record = asyncio.run(self.monitor.refresh_swap_status("0xdep"))

        assert record.status == "FAILED"
        self.bridge.get_swap_status.assert_not_awaited()

    def test_update_records_bridge_error(self):
        self.bridge.get_swap_status = AsyncMock(side_effect=BridgeApiError("bad gateway"))
        record = asyncio.run(self.monitor.update_swap_status("0xdep"))

        assert record.error == "bad gateway"
        assert record.status == SwapStatus.PENDING_DEPOSIT.value

    def test_update_unknown_swap(self):
        assert asyncio.run(self.monitor.update_swap_status("0xnope")) is None

    def test_queries(self):
        self.monitor.register_swap("0xother", "intent-2", "base", "near", "5", "bob.near")
        self.monitor.swaps["0xother"].status = "SUCCESS"

        assert self.monitor.get_swap_by_intent_id("intent-2").deposit_address == "0xother"
        assert self.monitor.get_swap_by_intent_id("missing") is None
        assert len(self.monitor.get_all_swaps()) == 2
        assert [r.deposit_address for r in self.monitor.get_active_swaps()] == ["0xdep"]
        assert [r.deposit_address for r in self.monitor.get_swaps_by_status(SwapStatus.SUCCESS)] == ["0xother"]

    def test_cleanup_uses_completion_time(self):
        self.monitor.register_swap("0xold", "intent-3", "base", "near", "5", "bob.near")
        old = self.monitor.swaps["0xold"]
        old.status = "SUCCESS"
        old.completed_at = _utcnow() - timedelta(days=2)

        assert self.monitor.cleanup() == 1
        assert self.monitor.get_swap("0xold") is None
        # Active records are never evicted
        assert self.monitor.get_swap("0xdep") is not None

    def test_cleanup_evicts_abandoned_swaps(self):
        self.monitor.register_swap("0xstuck", "intent-4", "base", "near", "5", "bob.near")
        stuck = self.monitor.swaps["0xstuck"]
        stuck.status = "PROCESSING"
        stuck.abandoned_at = _utcnow() - timedelta(days=2)

        assert self.monitor.cleanup() == 1
        assert self.monitor.get_swap("0xstuck") is None
        assert self.monitor.get_swap("0xdep") is not None

    def test_cleanup_keeps_recently_abandoned(self):
        self.monitor.swaps["0xdep"].abandoned_at = _utcnow()
        assert self.monitor.cleanup() == 0


class TestMonitorOverHttp:
    """Test polling through the bridge client with a stubbed HTTP session."""

    def setup_method(self):
        self.time = FakeTime()
        self.bridge = OneClickClient(base_url="https://bridge.example")
        self.monitor = SwapMonitor(self.bridge, poll_interval_s=10, sleep=self.time.sleep, clock=self.time)
        self.monitor.register_swap("0xdep", "intent-1", "arbitrum", "near", "100", "alice.near")

    def test_request_timeout_keeps_polling(self):
        self.bridge._session = fake_http_session(
            RaisingContext(asyncio.TimeoutError()),
            ResponseContext(status("SUCCESS", tx_hash="0xfinal")),
        )

        result = asyncio.run(self.monitor.monitor_swap("0xdep"))

        assert result["status"] == "SUCCESS"
        assert self.time.sleeps == [10]
        record = self.monitor.get_swap("0xdep")
        assert record.final_tx_hash == "0xfinal"
        assert record.completed_at is not None

    def test_invalid_json_keeps_polling(self):
        self.bridge._session = fake_http_session(
            ResponseContext(json_error=ValueError("Expecting value")),
            ResponseContext(status("REFUNDED")),
        )

        assert asyncio.run(self.monitor.monitor_swap("0xdep"))["status"] == "REFUNDED"
        assert "invalid JSON" in self.monitor.get_swap("0xdep").error


class TestFinalTxHash:

    def test_missing_details(self):
        assert final_tx_hash({"status": "SUCCESS"}) is None
        assert final_tx_hash({"swapDetails": {"destinationChainTxHashes": []}}) is None

    def test_first_hash(self):
        assert final_tx_hash(status("SUCCESS", tx_hash="0xabc")) == "0xabc"

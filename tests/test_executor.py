"""Tests for cross-chain execution."""

import asyncio
from unittest.mock import AsyncMock, Mock

from solver.core.executor import CrossChainExecutor, origin_token_address
from solver.core.lock import IntentLockManager
from solver.core.monitor import SwapMonitor
from solver.core.types import BridgeApiError, SwapStatus
from solver.venues.base import TransferResult

from sample_data import ARB_USDC

USDC_ADDRESS = "0xaf88d065e77c8cc2239327c5edb3a432268e5831"
DEPOSIT = "0x1111111111111111111111111111111111111111"


def binding_quote():
    return {
        "quote": {
            "depositAddress": DEPOSIT,
            "amountIn": "100",
            "amountOut": "99",
            "deadline": "2030-01-01T00:00:00Z",
            "timeEstimate": 20,
        },
    }


class TestOriginToken:

    def test_bridged_erc20(self):
        assert origin_token_address(ARB_USDC) == USDC_ADDRESS

    def test_native_and_non_evm(self):
        assert origin_token_address("nep245:v2_1.omni.hot.tg:56_11111111111111111111") is None
        assert origin_token_address("nep141:wrap.near") is None
        assert origin_token_address("nep141:arb-") is None


class TestCrossChainExecutor:
    """Test locking, funding the deposit and background settlement."""

    def setup_method(self):
        self.locks = IntentLockManager()
        self.signer = Mock()
        self.signer.transfer = AsyncMock(return_value=TransferResult(tx_hash="0xdeposit", status="confirmed"))

        self.chain_keys = Mock()
        self.chain_keys.is_chain_supported = Mock(side_effect=lambda chain: chain == "arbitrum")
        self.chain_keys.get_supported_chains = Mock(return_value=["arbitrum"])
        self.chain_keys.get_signer = Mock(return_value=self.signer)

        self.bridge = Mock()
        self.bridge.get_binding_quote = AsyncMock(return_value=binding_quote())
        self.bridge.submit_deposit_tx = AsyncMock(return_value={"status": "PENDING_DEPOSIT"})
        self.bridge.get_swap_status = AsyncMock(return_value={"status": "SUCCESS"})

        self.monitor = SwapMonitor(self.bridge, sleep=AsyncMock())
        self.executor = CrossChainExecutor(self.locks, self.chain_keys, self.bridge, self.monitor)

    def execute(self, origin_chain="arbitrum"):
        return self.executor.execute_cross_chain(
            intent_id="intent-1",
            origin_chain=origin_chain,
            origin_asset=ARB_USDC,
            destination_chain="near",
            destination_asset="nep141:usdc.near",
            amount="100",
            recipient="alice.near",
            quote_id="q-1",
        )

    def test_success_path(self):
        async def scenario():
            result = await self.execute()
            await asyncio.gather(*list(self.executor._background))
            lock_free = await self.locks.lock("intent:intent-1", 1000)
            return result, lock_free

        result, lock_free = asyncio.run(scenario())

        assert result["status"] == "processing"
        assert result["depositTxHash"] == "0xdeposit"
        assert result["depositAddress"] == DEPOSIT
        assert result["swapStatus"] == "PENDING_DEPOSIT"
        assert result["quote"] == {"amountIn": "100", "amountOut": "99", "deadline": "2030-01-01T00:00:00Z"}

        self.signer.transfer.assert_awaited_once_with(DEPOSIT, 100, USDC_ADDRESS)
        self.bridge.submit_deposit_tx.assert_awaited_once_with("0xdeposit", DEPOSIT, None)
        _, kwargs = self.bridge.get_binding_quote.call_args
        assert kwargs["refund_to"] is None
        assert kwargs["slippage_bps"] == 100

        assert lock_free
        record = self.monitor.get_swap(DEPOSIT)
        assert record.status == SwapStatus.SUCCESS.value
        assert record.deposit_tx_hash == "0xdeposit"
        assert record.intent_id == "intent-1"

    def test_busy_when_locked(self):
        async def scenario():
            await self.locks.lock("intent:intent-1", 60000)
            return await self.execute()

        result = asyncio.run(scenario())

        assert result["status"] == "busy"
        self.bridge.get_binding_quote.assert_not_awaited()

    def test_unsupported_chain_releases_lock(self):
        async def scenario():
            result = await self.execute(origin_chain="solana")
            return result, await self.locks.lock("intent:intent-1", 1000)

        result, lock_free = asyncio.run(scenario())

        assert result["status"] == "failed"
        assert result["reason"] == "unsupported_origin_chain"
        assert result["message"] == "Chain solana is not configured. Supported chains: arbitrum"
        assert lock_free

    def test_bridge_failure_releases_lock(self):
        self.bridge.get_binding_quote = AsyncMock(side_effect=BridgeApiError("quote rejected"))

        async def scenario():
            result = await self.execute()
            return result, await self.locks.lock("intent:intent-1", 1000)

        result, lock_free = asyncio.run(scenario())

        assert result["status"] == "failed"
        assert result["error"] == "quote rejected"
        assert lock_free
        self.signer.transfer.assert_not_awaited()

    def test_missing_signer_fails(self):
        self.chain_keys.get_signer = Mock(return_value=None)
        result = asyncio.run(self.execute())
        assert result["status"] == "failed"
        assert "No signer configured" in result["error"]

    def test_get_swap_status_includes_record(self):
        self.monitor.register_swap(DEPOSIT, "intent-1", "arbitrum", "near", "100", "alice.near")
        self.bridge.get_swap_status = AsyncMock(return_value={
            "status": "PROCESSING", "updatedAt": "2024-01-01T00:00:00Z", "swapDetails": {},
        })

        result = asyncio.run(self.executor.get_swap_status(DEPOSIT))

        assert result["status"] == "ok"
        assert result["swapStatus"] == "PROCESSING"
        assert result["record"]["intent_id"] == "intent-1"

    def test_get_swap_status_failure(self):
        self.bridge.get_swap_status = AsyncMock(side_effect=BridgeApiError("not found"))
        result = asyncio.run(self.executor.get_swap_status("0xnope"))
        assert result == {"status": "failed", "error": "not found"}

    def test_shutdown_releases_locks(self):
        self.bridge.get_swap_status = AsyncMock(return_value={"status": "PROCESSING"})
        self.monitor._sleep = asyncio.sleep
        self.executor.poll_interval_s = 1000

        async def scenario():
            await self.execute()
            await asyncio.sleep(0)
            await self.executor.shutdown()
            return await self.locks.lock("intent:intent-1", 1000)

        assert asyncio.run(scenario())

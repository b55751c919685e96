"""Tests for the control-surface facade."""

import asyncio
from unittest.mock import AsyncMock, Mock

from solver.core.bus import SolverBusClient
from solver.core.inventory import InventoryManager
from solver.core.quotes import QuoteCoordinator
from solver.service import SolverService

from sample_data import fixed_pricer, sample_inventory


class TestSolverService:

    def setup_method(self):
        self.inventory = InventoryManager(document=sample_inventory())
        self.pricer = fixed_pricer({"wrap.near": 5.0, "usdc.near": 1.0}, {"wrap.near": 24, "usdc.near": 6})
        self.coordinator = QuoteCoordinator(self.inventory, self.pricer, Mock())
        self.executor = Mock()
        self.executor.execute_cross_chain = AsyncMock(return_value={"status": "processing"})
        self.executor.get_swap_status = AsyncMock(return_value={"status": "ok"})
        self.bus = SolverBusClient("wss://bus.example/ws")
        self.bridge = Mock()
        self.service = SolverService(self.coordinator, self.executor, self.inventory, self.bus, self.bridge)

    def test_compute_quote(self):
        result = asyncio.run(self.service.compute_quote("nep141:wrap.near", "nep141:usdc.near",
                                                        "1000000000000000000000000"))
        assert result["status"] == "ok"
        assert result["quotes"][0]["amount_out"] == "4975000"

    def test_compute_quote_unpriceable(self):
        result = asyncio.run(self.service.compute_quote("nep141:wrap.near", "nep141:unknown.near", "1"))
        assert result == {"status": "ok", "quotes": []}

    def test_compute_quote_requires_fields(self):
        result = asyncio.run(self.service.compute_quote("nep141:wrap.near", "", "1"))
        assert result["status"] == "failed"

    def test_cross_chain_quote_takes_markup(self):
        self.bridge.get_quote_estimate = AsyncMock(return_value={
            "quote": {"amountIn": "1000", "amountOut": "1000000"}, "timestamp": "t",
        })

        result = asyncio.run(self.service.cross_chain_quote("a", "b", "1000"))

        assert result["quote"]["amountOut"] == "995000"
        assert result["quote"]["baseAmountOut"] == "1000000"
        assert result["quote"]["marketMakerFee"] == "5000"

    def test_execute_requires_fields(self):
        result = asyncio.run(self.service.execute_cross_chain({"intent_id": "i-1"}))

        assert result["status"] == "failed"
        assert "originChain" in result["error"]
        self.executor.execute_cross_chain.assert_not_awaited()

    def test_execute_delegates(self):
        body = {
            "intent_id": "i-1", "originChain": "arbitrum", "originAsset": "a",
            "destinationChain": "near", "destinationAsset": "b", "amount": 100,
            "recipient": "alice.near", "slippageTolerance": 50,
        }
        assert asyncio.run(self.service.execute_cross_chain(body)) == {"status": "processing"}

        _, kwargs = self.executor.execute_cross_chain.call_args
        assert kwargs["amount"] == "100"
        assert kwargs["slippage_bps"] == 50

    def test_swap_status_requires_address(self):
        result = asyncio.run(self.service.get_swap_status(None))
        assert result == {"status": "failed", "error": "depositAddress is required"}

    def test_bus_status(self):
        assert self.service.bus_status() == {
            "status": "ok", "enabled": False, "connected": False, "url": "wss://bus.example/ws",
        }

    def test_sync_token_failure(self):
        # No ledger configured
        result = asyncio.run(self.service.sync_token("near", "usdc.near"))
        assert result["success"] is False
        assert result["error"]

    def test_inventory_summary(self):
        result = self.service.inventory_summary()
        assert result["success"] is True
        assert "near" in result["data"]

    def test_active_quotes_empty(self):
        assert self.service.active_quotes() == {"status": "ok", "quotes": []}

"""Tests for the capacity ledger."""

import asyncio
import pytest
from unittest.mock import AsyncMock, Mock

from solver.core.inventory import InventoryManager, parse_asset_identifier, to_base_units
from solver.core.types import AssetParseError

from sample_data import ARB_USDC, sample_inventory


class TestAssetParsing:
    """Test defuse asset identifier parsing."""

    def test_home_chain_token(self):
        assert parse_asset_identifier("nep141:wrap.near") == ("near", "wrap.near")

    def test_bridged_token(self):
        assert parse_asset_identifier(ARB_USDC) == ("arbitrum", "0xaf88d065e77c8cc2239327c5edb3a432268e5831")

    def test_chain_prefix_table(self):
        assert parse_asset_identifier("nep141:eth-0xdac17f958d2ee523a2206206994597c13d831ec7.omft.near")[0] == "ethereum"
        assert parse_asset_identifier("nep141:bnb-0x55d398326f99059ff775485246999027b3197955.omft.near")[0] == "bsc"
        assert parse_asset_identifier("nep141:sol-abc.omft.near") == ("solana", "abc")

    def test_unknown_prefix_passes_through(self):
        assert parse_asset_identifier("nep141:zk-0x1234.omft.near") == ("zk", "0x1234")

    def test_empty_token_segment_fails(self):
        with pytest.raises(AssetParseError):
            parse_asset_identifier("nep141:arb-")
        with pytest.raises(AssetParseError):
            parse_asset_identifier("nep141:")

    def test_fractional_amounts_truncate(self):
        assert to_base_units("1234.99") == 1234
        assert to_base_units("1e3") == 1000
        with pytest.raises(ValueError):
            to_base_units("lots")


class TestCapacityChecks:
    """Test can_provide_quote and reservations."""

    def setup_method(self):
        self.inventory = InventoryManager(document=sample_inventory())

    def test_sufficient_balance(self):
        assert self.inventory.can_provide_quote("nep141:wrap.near", "nep141:usdc.near", "50000000")

    def test_min_balance_floor(self):
        # 100 USDC held, 1 USDC floor: 99 is the most that can go out
        assert self.inventory.can_provide_quote("nep141:wrap.near", "nep141:usdc.near", "99000000")
        assert not self.inventory.can_provide_quote("nep141:wrap.near", "nep141:usdc.near", "99000001")

    def test_insufficient_balance(self):
        assert not self.inventory.can_provide_quote("nep141:wrap.near", "nep141:usdc.near", "100000001")

    def test_fails_closed(self):
        assert not self.inventory.can_provide_quote("nep141:wrap.near", "nep141:paused.near", "1")
        assert not self.inventory.can_provide_quote("nep141:wrap.near", "nep141:unknown.near", "1")
        assert not self.inventory.can_provide_quote("nep141:wrap.near", "nep141:sol-so11111111111111111111111111111111111111112.omft.near", "1")
        assert not self.inventory.can_provide_quote("nep141:wrap.near", "nep141:arb-", "1")

    def test_lookup_is_case_insensitive(self):
        upper = "nep141:arb-0xAF88D065E77C8CC2239327C5EDB3A432268E5831.omft.near"
        assert self.inventory.can_provide_quote("nep141:wrap.near", upper, "500000")

    def test_fractional_amount_out_truncates(self):
        assert self.inventory.can_provide_quote("nep141:wrap.near", "nep141:usdc.near", "99000000.9")

    def test_reserve_release_invariant(self):
        reserved = [1000000, 2500000, 7]
        released = [2500000]
        for i, amount in enumerate(reserved):
            assert self.inventory.reserve_inventory(f"q{i}", "nep141:usdc.near", str(amount))
        for amount in released:
            self.inventory.release_inventory("q1", "nep141:usdc.near", str(amount))

        expected = 100000000 - sum(reserved) + sum(released)
        assert self.inventory.get_balance("near", "usdc.near") == expected

    def test_reserve_missing_entry(self):
        assert not self.inventory.reserve_inventory("q1", "nep141:unknown.near", "1")
        # No-op, no error
        self.inventory.release_inventory("q1", "nep141:unknown.near", "1")

    def test_update_balance(self):
        self.inventory.update_balance("near", "usdc.near", "5")
        assert self.inventory.get_balance("near", "usdc.near") == 5

    def test_summary_only_enabled_chains(self):
        summary = self.inventory.get_inventory_summary()
        assert set(summary) == {"near", "arbitrum"}
        assert summary["near"]["tokens"]["usdc.near"]["balance"] == "100000000"
        assert summary["near"]["tokens"]["usdc.near"]["minBalance"] == "1000000"

    def test_price_mappings(self):
        mappings = dict(self.inventory.get_price_mappings())
        assert set(mappings) == {"wrap.near", "0xaf88d065e77c8cc2239327c5edb3a432268e5831"}
        assert mappings["wrap.near"].price_mapping.chain_id == "near"


class TestReloadAndSync:
    """Test reload and live ledger synchronisation."""

    def setup_method(self):
        self.ledger = Mock()
        self.ledger.get_token_balance = AsyncMock(return_value="42")
        self.inventory = InventoryManager(document=sample_inventory(), ledger=self.ledger)

    def test_reload_replaces_whole_ledger(self):
        self.inventory.reserve_inventory("q1", "nep141:usdc.near", "1000")
        old = self.inventory.inventory

        asyncio.run(self.inventory.reload_inventory())

        assert self.inventory.inventory is not old
        assert self.inventory.get_balance("near", "usdc.near") == 100000000

    def test_reload_with_verify_keeps_document_balance_on_failure(self):
        async def balance(token_id, account_id=None):
            if token_id == "nep141:usdc.near":
                raise ConnectionError("rpc down")
            return "42"

        self.ledger.get_token_balance = AsyncMock(side_effect=balance)
        asyncio.run(self.inventory.reload_inventory(verify=True))

        assert self.inventory.get_balance("near", "usdc.near") == 100000000
        assert self.inventory.get_balance("near", "wrap.near") == 42
        assert self.inventory.get_balance("arbitrum", "0xaf88d065e77c8cc2239327c5edb3a432268e5831") == 42

    def test_sync_token_balance(self):
        balance = asyncio.run(self.inventory.sync_token_balance("arbitrum", "0xaf88d065e77c8cc2239327c5edb3a432268e5831"))

        assert balance == "42"
        self.ledger.get_token_balance.assert_awaited_once_with(ARB_USDC)
        assert self.inventory.get_balance("arbitrum", "0xaf88d065e77c8cc2239327c5edb3a432268e5831") == 42

    def test_sync_untracked_token(self):
        with pytest.raises(KeyError):
            asyncio.run(self.inventory.sync_token_balance("near", "nope.near"))

    def test_sync_all_reports_per_token(self):
        results = asyncio.run(self.inventory.sync_all_token_balances())
        assert results["near"]["usdc.near"] == {"success": True, "balance": "42"}
        assert "solana" not in results

    def test_fetch_without_ledger(self):
        inventory = InventoryManager(document=sample_inventory())
        with pytest.raises(RuntimeError):
            asyncio.run(inventory.fetch_token_balance("nep141:wrap.near"))

    def test_load_from_file(self, tmp_path):
        path = tmp_path / "inventory.json"
        path.write_text('{"chains": {"near": {"enabled": true, "tokens": '
                        '[{"address": "usdt.tether-token.near", "symbol": "USDT", "decimals": 6, '
                        '"currentBalance": "10", "minBalance": "0"}]}}}')
        inventory = InventoryManager(str(path))
        assert inventory.get_balance("near", "usdt.tether-token.near") == 10

    def test_missing_file_gives_empty_inventory(self, tmp_path):
        inventory = InventoryManager(str(tmp_path / "missing.json"))
        assert inventory.get_inventory_summary() == {}

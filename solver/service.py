"""Control-surface operations returning tagged result dicts."""

import time
from typing import Any, Dict, Optional
from loguru import logger

from .core.bus import SolverBusClient
from .core.executor import CrossChainExecutor
from .core.inventory import InventoryManager
from .core.quotes import QuoteCoordinator
from .venues.oneclick import OneClickClient


class SolverService:
    """Facade used by whatever transport fronts the solver.

    No exception escapes these methods; business failures come back as
    `{"status": "failed", ...}` (or `{"success": False, ...}` for inventory).
    """

    def __init__(self, coordinator: QuoteCoordinator, executor: CrossChainExecutor,
                 inventory: InventoryManager, bus: SolverBusClient, bridge: OneClickClient):
        self.coordinator = coordinator
        self.executor = executor
        self.inventory = inventory
        self.bus = bus
        self.bridge = bridge

    async def compute_quote(self, origin_asset: str, destination_asset: str, amount: str) -> Dict[str, Any]:
        """Indicative quote from the solver's own pricing."""
        if not origin_asset or not destination_asset or not amount:
            return {"status": "failed", "error": "originAsset, destinationAsset and amount are required"}
        try:
            quote = await self.coordinator.compute_quote(origin_asset, destination_asset, amount)
        except Exception as e:
            logger.error(f"[API] Quote failed: {e}")
            return {"status": "failed", "error": str(e)}

        if quote is None:
            return {"status": "ok", "quotes": []}
        return {"status": "ok", "quotes": [quote]}

    async def cross_chain_quote(self, origin_asset: str, destination_asset: str, amount: str,
                                slippage_bps: int = 100) -> Dict[str, Any]:
        """Bridge dry-run estimate with the solver's markup taken out of amountOut."""
        try:
            response = await self.bridge.get_quote_estimate(origin_asset, destination_asset, str(amount), slippage_bps)
            quote = response["quote"]
            markup = float(self.coordinator.pricer.markup_pct)
            base_amount_out = int(quote["amountOut"])
            amount_out = int(base_amount_out * (1 - markup))
        except Exception as e:
            logger.error(f"[API] Cross-chain quote failed: {e}")
            return {"status": "failed", "error": str(e)}

        return {
            "status": "ok",
            "quote": {
                "quoteId": f"quote_{int(time.time() * 1000)}",
                "amountIn": quote.get("amountIn"),
                "amountInUsd": quote.get("amountInUsd"),
                "amountOut": str(amount_out),
                "baseAmountOut": quote["amountOut"],
                "amountOutUsd": quote.get("amountOutUsd"),
                "minAmountOut": quote.get("minAmountOut"),
                "timeEstimate": quote.get("timeEstimate"),
                "deadline": quote.get("deadline"),
                "markup": markup,
                "marketMakerFee": str(base_amount_out - amount_out),
            },
            "timestamp": response.get("timestamp"),
        }

    async def supported_tokens(self) -> Dict[str, Any]:
        try:
            return {"status": "ok", "tokens": await self.bridge.get_supported_tokens()}
        except Exception as e:
            return {"status": "failed", "error": str(e)}

    async def execute_cross_chain(self, body: Dict[str, Any]) -> Dict[str, Any]:
        required = ("intent_id", "originChain", "originAsset", "destinationChain",
                    "destinationAsset", "amount", "recipient")
        missing = [field for field in required if not body.get(field)]
        if missing:
            return {"status": "failed", "error": f"Missing fields: {', '.join(missing)}"}

        return await self.executor.execute_cross_chain(
            intent_id=body["intent_id"],
            origin_chain=body["originChain"],
            origin_asset=body["originAsset"],
            destination_chain=body["destinationChain"],
            destination_asset=body["destinationAsset"],
            amount=str(body["amount"]),
            recipient=body["recipient"],
            refund_to=body.get("refundTo"),
            quote_id=body.get("quote_id"),
            slippage_bps=body.get("slippageTolerance"),
        )

    async def get_swap_status(self, deposit_address: Optional[str],
                              deposit_memo: Optional[str] = None) -> Dict[str, Any]:
        if not deposit_address:
            return {"status": "failed", "error": "depositAddress is required"}
        return await self.executor.get_swap_status(deposit_address, deposit_memo)

    def bus_status(self) -> Dict[str, Any]:
        return {"status": "ok", **self.bus.get_status()}

    async def bus_reconnect(self) -> Dict[str, Any]:
        try:
            await self.bus.reconnect()
        except Exception as e:
            return {"status": "failed", "error": str(e)}
        return {"status": "ok", "message": "WebSocket reconnection triggered"}

    def inventory_summary(self) -> Dict[str, Any]:
        try:
            return {"success": True, "data": self.inventory.get_inventory_summary()}
        except Exception as e:
            return {"success": False, "error": str(e)}

    async def sync_token(self, chain: str, token: str, token_id: Optional[str] = None) -> Dict[str, Any]:
        logger.info(f"[API] sync-token chain={chain} token={token} tokenId={token_id}")
        try:
            new_balance = await self.inventory.sync_token_balance(chain, token, token_id)
        except Exception as e:
            logger.error(f"[API] Token balance sync failed: {e}")
            return {"success": False, "error": str(e)}
        return {"success": True, "chain": chain, "token": token, "tokenId": token_id, "newBalance": new_balance}

    async def sync_all(self) -> Dict[str, Any]:
        try:
            results = await self.inventory.sync_all_token_balances()
        except Exception as e:
            logger.error(f"[API] Full sync failed: {e}")
            return {"success": False, "error": str(e)}
        return {"success": True, "message": "All token balances synced successfully", "data": results}

    async def token_balance(self, token_id: str, account_id: Optional[str] = None) -> Dict[str, Any]:
        try:
            balance = await self.inventory.fetch_token_balance(token_id, account_id)
        except Exception as e:
            logger.error(f"[API] Get token balance failed: {e}")
            return {"success": False, "error": str(e)}
        return {"success": True, "tokenId": token_id, "accountId": account_id or "default", "balance": balance}

    def active_quotes(self) -> Dict[str, Any]:
        return {
            "status": "ok",
            "quotes": [
                {
                    "quote_id": q.quote_id,
                    "originAsset": q.origin_asset,
                    "destinationAsset": q.dest_asset,
                    "amountOut": q.amount_out,
                    "createdAt": q.created_at,
                }
                for q in self.coordinator.get_active_quotes()
            ],
        }

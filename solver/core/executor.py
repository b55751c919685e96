"""Cross-chain execution: bridge quote, deposit transfer, settlement monitoring."""

import asyncio
from typing import Any, Dict, Optional, Set
from loguru import logger

from .inventory import parse_asset_identifier, to_base_units
from .lock import IntentLockManager
from .monitor import SwapMonitor
from .pricing import extract_token_address
from .types import ChainExecutionError, SettlementTimeout, UnsupportedChainError
from ..venues.chain_keys import ChainKeyRegistry
from ..venues.evm import is_evm_address
from ..venues.oneclick import OneClickClient


def origin_token_address(asset: str) -> Optional[str]:
    """ERC20 contract for an origin asset, or None for the chain's native coin."""
    if asset.startswith("nep245:"):
        token = extract_token_address(asset)
    else:
        try:
            _, token = parse_asset_identifier(asset)
        except ValueError:
            return None
    return token if is_evm_address(token) else None


class CrossChainExecutor:
    """Executes accepted intents as market maker.

    The solver requests a binding bridge quote, funds the returned deposit
    address from its own wallet on the origin chain, submits the deposit
    hash, and leaves settlement to a background monitor that releases the
    intent lock when it finishes.
    """

    def __init__(self, locks: IntentLockManager, chain_keys: ChainKeyRegistry,
                 bridge: OneClickClient, monitor: SwapMonitor,
                 lock_ttl_ms: int = 120000, max_wait_s: float = 900.0,
                 poll_interval_s: float = 10.0, slippage_bps: int = 100,
                 key_prefix: str = "intent"):
        self.locks = locks
        self.chain_keys = chain_keys
        self.bridge = bridge
        self.monitor = monitor
        self.lock_ttl_ms = lock_ttl_ms
        self.max_wait_s = max_wait_s
        self.poll_interval_s = poll_interval_s
        self.slippage_bps = slippage_bps
        self.key_prefix = key_prefix
        self._background: Set[asyncio.Task] = set()

    def lock_key(self, intent_id: str) -> str:
        return f"{self.key_prefix}:{intent_id}"

    async def execute_cross_chain(self, intent_id: str, origin_chain: str, origin_asset: str,
                                  destination_chain: str, destination_asset: str, amount: str,
                                  recipient: str, refund_to: Optional[str] = None,
                                  quote_id: Optional[str] = None,
                                  slippage_bps: Optional[int] = None) -> Dict[str, Any]:
        key = self.lock_key(intent_id)
        if not await self.locks.lock(key, self.lock_ttl_ms):
            return {"status": "busy", "message": "Intent is already being processed"}

        try:
            if not self.chain_keys.is_chain_supported(origin_chain):
                error = UnsupportedChainError(origin_chain, self.chain_keys.get_supported_chains())
                await self.locks.unlock(key)
                return {
                    "status": "failed",
                    "reason": "unsupported_origin_chain",
                    "message": str(error),
                }

            signer = self.chain_keys.get_signer(origin_chain)
            if signer is None:
                raise ChainExecutionError(f"No signer configured for chain: {origin_chain}")

            quote_response = await self.bridge.get_binding_quote(
                origin_asset,
                destination_asset,
                str(amount),
                recipient,
                refund_to=refund_to,
                slippage_bps=slippage_bps or self.slippage_bps,
            )
            quote = quote_response["quote"]
            deposit_address = quote["depositAddress"]
            deposit_memo = quote.get("depositMemo")

            transfer = await signer.transfer(deposit_address, to_base_units(amount),
                                             origin_token_address(origin_asset))
            swap_status = await self.bridge.submit_deposit_tx(transfer.tx_hash, deposit_address, deposit_memo)

            self.monitor.register_swap(
                deposit_address,
                intent_id=intent_id,
                origin_chain=origin_chain,
                destination_chain=destination_chain,
                amount=str(amount),
                recipient=recipient,
                deposit_memo=deposit_memo,
                deposit_tx_hash=transfer.tx_hash,
            )
            task = asyncio.create_task(self._monitor_in_background(deposit_address, deposit_memo, key, intent_id))
            self._background.add(task)
            task.add_done_callback(self._background.discard)

            return {
                "status": "processing",
                "intent_id": intent_id,
                "quote_id": quote_id,
                "depositTxHash": transfer.tx_hash,
                "depositAddress": deposit_address,
                "swapStatus": swap_status.get("status"),
                "estimatedTime": quote.get("timeEstimate"),
                "quote": {
                    "amountIn": quote.get("amountIn"),
                    "amountOut": quote.get("amountOut"),
                    "deadline": quote.get("deadline"),
                },
                "message": "Market maker has sent funds to the bridge. Cross-chain swap in progress.",
            }
        except Exception as e:
            await self.locks.unlock(key)
            logger.error(f"[Market Maker] Failed to execute swap for intent {intent_id}: {e}")
            return {
                "status": "failed",
                "error": str(e),
                "message": "Failed to execute cross-chain swap",
            }

    async def _monitor_in_background(self, deposit_address: str, deposit_memo: Optional[str],
                                     lock_key: str, intent_id: str):
        try:
            final_status = await self.monitor.monitor_swap(
                deposit_address, deposit_memo, self.max_wait_s, self.poll_interval_s
            )
            logger.info(f"[Monitor] Intent {intent_id} settled with status {final_status.get('status')}")
        except SettlementTimeout as e:
            logger.warning(f"[Monitor] Intent {intent_id}: {e}")
        except Exception as e:
            logger.error(f"[Monitor] Monitoring failed for intent {intent_id}: {e}")
        finally:
            await self.locks.unlock(lock_key)

    async def get_swap_status(self, deposit_address: str, deposit_memo: Optional[str] = None) -> Dict[str, Any]:
        try:
            status = await self.bridge.get_swap_status(deposit_address, deposit_memo)
        except Exception as e:
            return {"status": "failed", "error": str(e)}

        result = {
            "status": "ok",
            "swapStatus": status.get("status"),
            "details": status.get("swapDetails"),
            "updatedAt": status.get("updatedAt"),
        }
        record = self.monitor.get_swap(deposit_address)
        if record is not None:
            result["record"] = record.to_dict()
        return result

    async def shutdown(self):
        """Cancel background monitors; each still releases its lock."""
        tasks = list(self._background)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

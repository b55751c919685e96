"""Settlement tracking for bridged swaps."""

import asyncio
import time
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional
from loguru import logger

from .types import (
    BridgeApiError, SettlementTimeout, SwapRecord, SwapStatus,
    TERMINAL_SWAP_STATUSES, _utcnow,
)


def final_tx_hash(status: Dict[str, Any]) -> Optional[str]:
    """First destination-chain tx hash from a bridge status payload, if any."""
    details = status.get("swapDetails") or {}
    hashes = details.get("destinationChainTxHashes") or []
    if hashes and isinstance(hashes[0], dict):
        return hashes[0].get("hash")
    return None


class SwapMonitor:
    """Polls the bridge status endpoint and keeps a record per deposit address.

    Records stop changing once a terminal status is reached. Each record also
    carries a hard ceiling so polling is bounded even if the bridge never
    reports a terminal status.
    """

    def __init__(self, bridge, poll_interval_s: float = 10.0, record_ceiling_s: float = 3600.0,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
                 clock: Callable[[], float] = time.monotonic):
        self.bridge = bridge
        self.poll_interval_s = poll_interval_s
        self.record_ceiling_s = record_ceiling_s
        self._sleep = sleep
        self._clock = clock
        self.swaps: Dict[str, SwapRecord] = {}
        self._started_at: Dict[str, float] = {}

    def register_swap(self, deposit_address: str, intent_id: str, origin_chain: str,
                      destination_chain: str, amount: str, recipient: str,
                      deposit_memo: Optional[str] = None,
                      deposit_tx_hash: Optional[str] = None) -> SwapRecord:
        record = SwapRecord(
            deposit_address=deposit_address,
            intent_id=intent_id,
            origin_chain=origin_chain,
            destination_chain=destination_chain,
            amount=str(amount),
            recipient=recipient,
            deposit_memo=deposit_memo,
            deposit_tx_hash=deposit_tx_hash,
        )
        self.swaps[deposit_address] = record
        self._started_at[deposit_address] = self._clock()
        logger.info(f"[Monitor] Registered swap {deposit_address} for intent {intent_id}")
        return record

    def _record_expired(self, deposit_address: str) -> bool:
        started = self._started_at.get(deposit_address)
        return started is not None and self._clock() - started >= self.record_ceiling_s

    def _apply_status(self, record: SwapRecord, status: Dict[str, Any]):
        if record.is_terminal:
            logger.debug(f"[Monitor] Ignoring update for terminal swap {record.deposit_address}")
            return

        record.status = status.get("status", record.status)
        record.updated_at = _utcnow()
        tx_hash = final_tx_hash(status)
        if tx_hash:
            record.final_tx_hash = tx_hash

        if record.is_terminal:
            record.completed_at = record.updated_at
            logger.info(f"[Monitor] Swap {record.deposit_address} completed with status: {record.status}")

    async def update_swap_status(self, deposit_address: str,
                                 deposit_memo: Optional[str] = None) -> Optional[SwapRecord]:
        """Fetch the current bridge status once and fold it into the record."""
        record = self.swaps.get(deposit_address)
        if record is None:
            return None
        if record.is_terminal:
            return record

        try:
            status = await self.bridge.get_swap_status(deposit_address, deposit_memo)
        except BridgeApiError as e:
            record.error = str(e)
            record.updated_at = _utcnow()
            logger.warning(f"[Monitor] Status query failed for {deposit_address}: {e}")
            return record

        self._apply_status(record, status)
        return record

    async def monitor_swap(self, deposit_address: str, deposit_memo: Optional[str] = None,
                           max_wait_s: float = 900.0,
                           poll_interval_s: Optional[float] = None) -> Dict[str, Any]:
        """Poll until a terminal status or the time budget runs out.

        Returns the terminal status payload. Raises SettlementTimeout when
        the budget (or the record's hard ceiling) is exhausted first.
        """
        interval = self.poll_interval_s if poll_interval_s is None else poll_interval_s
        deadline = self._clock() + max_wait_s

        while self._clock() < deadline and not self._record_expired(deposit_address):
            try:
                status = await self.bridge.get_swap_status(deposit_address, deposit_memo)
            except BridgeApiError as e:
                logger.warning(f"[Monitor] Poll failed for {deposit_address}: {e}")
                record = self.swaps.get(deposit_address)
                if record is not None and not record.is_terminal:
                    record.error = str(e)
                    record.updated_at = _utcnow()
            else:
                record = self.swaps.get(deposit_address)
                if record is not None:
                    self._apply_status(record, status)
                if status.get("status") in TERMINAL_SWAP_STATUSES:
                    return status
                logger.debug(f"[Monitor] Swap {deposit_address} status: {status.get('status')}")

            if self._clock() >= deadline:
                break
            await self._sleep(interval)

        record = self.swaps.get(deposit_address)
        if record is not None and not record.is_terminal:
            record.error = "Swap monitoring timeout"
            record.updated_at = _utcnow()
            record.abandoned_at = record.updated_at
        raise SettlementTimeout(f"Swap monitoring timeout for {deposit_address}")

    async def refresh_swap_status(self, deposit_address: str,
                                  deposit_memo: Optional[str] = None) -> Optional[SwapRecord]:
        return await self.update_swap_status(deposit_address, deposit_memo)

    def get_swap(self, deposit_address: str) -> Optional[SwapRecord]:
        return self.swaps.get(deposit_address)

    def get_swap_by_intent_id(self, intent_id: str) -> Optional[SwapRecord]:
        for record in self.swaps.values():
            if record.intent_id == intent_id:
                return record
        return None

    def get_all_swaps(self) -> List[SwapRecord]:
        return list(self.swaps.values())

    def get_active_swaps(self) -> List[SwapRecord]:
        return [r for r in self.swaps.values() if not r.is_terminal and r.abandoned_at is None]

    def get_swaps_by_status(self, status: str) -> List[SwapRecord]:
        if isinstance(status, SwapStatus):
            status = status.value
        return [r for r in self.swaps.values() if r.status == status]

    def cleanup(self, older_than_s: float = 86400.0) -> int:
        """Evict completed or abandoned records older than the window."""
        cutoff = _utcnow() - timedelta(seconds=older_than_s)
        stale = []
        for address, record in self.swaps.items():
            finished_at = record.completed_at or record.abandoned_at
            if finished_at is not None and finished_at < cutoff:
                stale.append(address)
        for address in stale:
            del self.swaps[address]
            self._started_at.pop(address, None)
        if stale:
            logger.info(f"[Monitor] Cleaned up {len(stale)} finished swaps")
        return len(stale)

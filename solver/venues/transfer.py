"""Direct payouts to quote recipients on configured chains."""

from typing import Dict, List
from loguru import logger

from .base import TransferResult
from .chain_keys import ChainKeyRegistry
from .evm import is_evm_address
from ..core.types import ChainExecutionError


class TransferExecutor:
    """Pays out filled quotes from the solver's wallet on the destination chain."""

    def __init__(self, registry: ChainKeyRegistry):
        self.registry = registry

    def is_chain_configured(self, chain: str) -> bool:
        return self.registry.get_signer(chain) is not None

    async def execute_transfer(self, chain: str, token_address: str, recipient: str,
                               amount: str, quote_id: str) -> TransferResult:
        logger.info(f"[Transfer] Executing transfer on {chain} for quote {quote_id}")

        signer = self.registry.get_signer(chain)
        if signer is None:
            raise ChainExecutionError(f"No signer configured for chain: {chain}")

        token = token_address if is_evm_address(token_address) else None
        result = await signer.transfer(recipient, int(amount), token)
        logger.info(f"[Transfer] Quote {quote_id} paid out in {result.tx_hash}")
        return result

    async def execute_batch_transfers(self, chain: str, token_address: str,
                                      transfers: List[Dict[str, str]], quote_id: str) -> List[Dict[str, str]]:
        """Pay several recipients; a failed leg is reported and the rest continue."""
        results = []
        for transfer in transfers:
            try:
                result = await self.execute_transfer(chain, token_address, transfer["recipient"],
                                                     transfer["amount"], quote_id)
                results.append({"txHash": result.tx_hash, "status": result.status})
            except ChainExecutionError as e:
                logger.error(f"[Transfer] Batch leg to {transfer['recipient']} failed: {e}")
                results.append({"txHash": "", "status": "failed"})
        return results

    def get_signer_addresses(self) -> Dict[str, str]:
        addresses = {}
        for chain in self.registry.get_supported_chains():
            address = self.registry.get_address(chain)
            if address:
                addresses[chain] = address
        return addresses

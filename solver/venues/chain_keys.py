"""Per-chain signing identities from configuration."""

from typing import Dict, List, Optional
from loguru import logger

from .base import ChainSigner
from ..config import ChainConfig
from .evm import EvmSigner

EVM_CHAINS = {"ethereum", "arbitrum", "polygon", "avalanche", "bsc", "optimism", "base", "aurora"}


class ChainKeyRegistry:
    """Knows which chains the solver holds keys for and builds signers lazily."""

    def __init__(self, chains: Dict[str, ChainConfig]):
        self.chain_configs = {name.lower(): chain for name, chain in chains.items() if chain.private_key}
        self._signers: Dict[str, ChainSigner] = {}
        if self.chain_configs:
            logger.info(f"Configured chain keys: {', '.join(self.get_supported_chains())}")

    def is_chain_supported(self, chain: str) -> bool:
        return chain.lower() in self.chain_configs

    def get_supported_chains(self) -> List[str]:
        return list(self.chain_configs.keys())

    def get_signer(self, chain: str) -> Optional[ChainSigner]:
        """Signer for `chain`, or None when no usable key or RPC is configured."""
        chain = chain.lower()
        if chain in self._signers:
            return self._signers[chain]

        config = self.chain_configs.get(chain)
        if config is None:
            return None

        if chain not in EVM_CHAINS:
            logger.warning(f"No transfer support for non-EVM chain {chain}")
            return None

        try:
            signer = EvmSigner(
                chain,
                config.private_key,
                config.rpc_url,
                chain_id=config.chain_id,
            )
        except ValueError as e:
            logger.error(f"Failed to create signer for {chain}: {e}")
            return None

        self._signers[chain] = signer
        logger.info(f"Initialized {chain} signer: {signer.address}")
        return signer

    def get_address(self, chain: str) -> Optional[str]:
        signer = self.get_signer(chain)
        return signer.address if signer else None

"""Base interfaces for chain and ledger collaborators."""

from abc import ABC, abstractmethod
from typing import Dict, Optional, Any
from dataclasses import dataclass


@dataclass
class TransferResult:
    """On-chain transfer result."""
    tx_hash: str
    status: str
    block_number: Optional[int] = None
    metadata: Optional[Dict[str, Any]] = None


class ChainSigner(ABC):
    """Moves funds out of the solver's own custody on one chain."""

    def __init__(self, chain: str):
        self.chain = chain

    @property
    @abstractmethod
    def address(self) -> str:
        """Solver address on this chain."""
        pass

    @abstractmethod
    async def transfer(self, to: str, amount: int, token: Optional[str] = None) -> TransferResult:
        """Send `amount` base units of `token` (native when None) and wait for confirmation."""
        pass

    @abstractmethod
    async def get_balance(self, token: Optional[str] = None) -> int:
        """Balance of the solver address in base units."""
        pass


class LedgerQuery(ABC):
    """Read-only balance queries against the settlement ledger."""

    @abstractmethod
    async def get_token_balance(self, token_id: str, account_id: Optional[str] = None) -> str:
        """Balance of `token_id` held by `account_id` (defaults to the solver account)."""
        pass

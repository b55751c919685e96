"""External chain, bridge and price-feed integrations."""

from .base import ChainSigner, LedgerQuery, TransferResult

__all__ = [
    'ChainSigner',
    'LedgerQuery',
    'TransferResult',
]

"""Core quote lifecycle logic for the cross-chain solver."""

from .types import (
    SolverError, AssetParseError, SigningError, BridgeApiError, ChainExecutionError,
    UnsupportedChainError, SettlementTimeout, BusConnectionError,
    QuoteRequest, ActiveQuote, QuoteResult, SignedQuote, SwapRecord, QuoteStatus, SwapStatus,
)
from .inventory import InventoryManager, TokenBalance, ChainInventory, parse_asset_identifier
from .pricing import RateResolver, QuotePricer, extract_token_address
from .signer import QuoteSigner
from .lock import IntentLockManager
from .bus import SolverBusClient, BusState
from .quotes import QuoteCoordinator
from .monitor import SwapMonitor

__all__ = [
    'SolverError',
    'AssetParseError',
    'SigningError',
    'BridgeApiError',
    'ChainExecutionError',
    'UnsupportedChainError',
    'SettlementTimeout',
    'BusConnectionError',
    'QuoteRequest',
    'ActiveQuote',
    'QuoteResult',
    'SignedQuote',
    'SwapRecord',
    'QuoteStatus',
    'SwapStatus',
    'InventoryManager',
    'TokenBalance',
    'ChainInventory',
    'parse_asset_identifier',
    'RateResolver',
    'QuotePricer',
    'extract_token_address',
    'QuoteSigner',
    'IntentLockManager',
    'SolverBusClient',
    'BusState',
    'QuoteCoordinator',
    'SwapMonitor',
]

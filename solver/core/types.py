#!/usr/bin/env python3
"""
Shared types and data structures for the solver.
This file breaks circular imports between modules.
"""

import time
from typing import Dict, List, Optional, Any
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum


class SolverError(Exception):
    """Base class for solver failures."""
    pass


class AssetParseError(SolverError, ValueError):
    """Raised when an asset identifier cannot be parsed."""
    pass


class SigningError(SolverError):
    """Raised when a quote commitment cannot be signed."""
    pass


class BridgeApiError(SolverError):
    """Raised when the bridge aggregator API rejects or fails a request."""
    pass


class ChainExecutionError(SolverError):
    """Raised when an on-chain transfer cannot be completed."""
    pass


class UnsupportedChainError(SolverError):
    """Raised when no signing identity exists for a chain."""

    def __init__(self, chain: str, supported: List[str]):
        self.chain = chain
        self.supported = supported
        super().__init__(
            f"Chain {chain} is not configured. Supported chains: {', '.join(supported)}"
        )


class SettlementTimeout(SolverError):
    """Raised when settlement polling exhausts its time budget."""
    pass


class BusConnectionError(SolverError):
    """Raised when sending on a bus connection that is not open."""
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QuoteStatus(Enum):
    """Quote status values published by the solver bus."""
    PENDING = "pending"
    FILLED = "filled"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class SwapStatus(Enum):
    """Bridge swap status."""
    PENDING_DEPOSIT = "PENDING_DEPOSIT"
    PROCESSING = "PROCESSING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"
    INCOMPLETE_DEPOSIT = "INCOMPLETE_DEPOSIT"
    KNOWN_DEPOSIT_TX = "KNOWN_DEPOSIT_TX"


# Statuses that stop settlement polling
TERMINAL_SWAP_STATUSES = {
    SwapStatus.SUCCESS.value,
    SwapStatus.FAILED.value,
    SwapStatus.REFUNDED.value,
    SwapStatus.INCOMPLETE_DEPOSIT.value,
    SwapStatus.KNOWN_DEPOSIT_TX.value,
}


@dataclass
class QuoteRequest:
    """Inbound quote request from the solver bus."""
    quote_id: str
    defuse_asset_identifier_in: str
    defuse_asset_identifier_out: str
    exact_amount_in: Optional[str] = None
    exact_amount_out: Optional[str] = None
    min_deadline_ms: int = 60000

    @classmethod
    def from_event(cls, data: Dict[str, Any]) -> "QuoteRequest":
        """Build a request from a bus event payload."""
        exact_in = data.get("exact_amount_in")
        exact_out = data.get("exact_amount_out")
        # Exactly one side is authoritative; exact-in wins if both appear
        if exact_in:
            exact_out = None
        return cls(
            quote_id=str(data["quote_id"]),
            defuse_asset_identifier_in=data["defuse_asset_identifier_in"],
            defuse_asset_identifier_out=data["defuse_asset_identifier_out"],
            exact_amount_in=str(exact_in) if exact_in else None,
            exact_amount_out=str(exact_out) if exact_out else None,
            min_deadline_ms=int(data.get("min_deadline_ms") or 60000),
        )

    @property
    def amount(self) -> str:
        """The fixed side of the request."""
        return self.exact_amount_in or self.exact_amount_out or "0"


@dataclass
class ActiveQuote:
    """Reservation bookkeeping for a quote sent to the bus."""
    quote_id: str
    origin_asset: str
    dest_asset: str
    amount_out: str
    created_at: int = 0

    def __post_init__(self):
        if self.created_at == 0:
            self.created_at = int(time.time() * 1000)


@dataclass
class QuoteResult:
    """Priced quote, both sides in base units."""
    amount_out: str
    rate: float
    amount_in: Optional[str] = None


@dataclass(frozen=True)
class TokenPriceMapping:
    """Where to look up a token's USD price."""
    chain_id: str
    address: str
    decimals: Optional[int] = None


@dataclass(frozen=True)
class SignedQuote:
    """Signed NEP-413 quote commitment."""
    quote_id: str
    quote_output: Dict[str, str]
    standard: str
    message: str
    nonce: str
    recipient: str
    signature: str
    public_key: str

    def to_dict(self) -> Dict[str, Any]:
        """Wire format for `respond_quote`."""
        return {
            "quote_id": self.quote_id,
            "quote_output": dict(self.quote_output),
            "signed_data": {
                "standard": self.standard,
                "payload": {
                    "message": self.message,
                    "nonce": self.nonce,
                    "recipient": self.recipient,
                },
                "signature": self.signature,
                "public_key": self.public_key,
            },
        }


@dataclass
class SwapRecord:
    """Tracked cross-chain swap, keyed by deposit address."""
    deposit_address: str
    intent_id: str
    origin_chain: str
    destination_chain: str
    amount: str
    recipient: str
    deposit_memo: Optional[str] = None
    status: str = SwapStatus.PENDING_DEPOSIT.value
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None
    abandoned_at: Optional[datetime] = None  # monitoring gave up before a terminal status
    deposit_tx_hash: Optional[str] = None
    final_tx_hash: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_SWAP_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key in ("created_at", "updated_at", "completed_at", "abandoned_at"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data

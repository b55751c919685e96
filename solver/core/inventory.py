"""Inventory (capacity ledger) management for quote reservations."""

import json
from decimal import Decimal, InvalidOperation, ROUND_DOWN
from pathlib import Path
from typing import Dict, List, Optional, Any, Tuple
from dataclasses import dataclass, field
import yaml
from loguru import logger

from .types import AssetParseError, TokenPriceMapping
from ..venues.base import LedgerQuery

HOME_CHAIN = "near"
TOKEN_NAMESPACE = "nep141:"
BRIDGED_SUFFIX = ".omft.near"

CHAIN_PREFIXES = {
    "arb": "arbitrum",
    "eth": "ethereum",
    "sol": "solana",
    "btc": "bitcoin",
    "poly": "polygon",
    "avax": "avalanche",
    "bnb": "bsc",
    "op": "optimism",
    "base": "base",
    "aurora": "aurora",
}


def parse_asset_identifier(asset_id: str) -> Tuple[str, str]:
    """Split a defuse asset identifier into (chain, token).

    "nep141:wrap.near" -> ("near", "wrap.near")
    "nep141:arb-0xaf88...5831.omft.near" -> ("arbitrum", "0xaf88...5831")
    """
    without_prefix = asset_id[len(TOKEN_NAMESPACE):] if asset_id.startswith(TOKEN_NAMESPACE) else asset_id
    if not without_prefix:
        raise AssetParseError(f"Invalid asset identifier: {asset_id}")

    if "-" not in without_prefix:
        return HOME_CHAIN, without_prefix

    chain_prefix, _, remainder = without_prefix.partition("-")
    token = remainder.replace(BRIDGED_SUFFIX, "")
    if not chain_prefix or not token:
        raise AssetParseError(f"Invalid asset identifier: {asset_id}")

    return CHAIN_PREFIXES.get(chain_prefix, chain_prefix), token


def to_base_units(amount: Any) -> int:
    """Truncate a decimal or scientific amount string toward zero."""
    try:
        return int(Decimal(str(amount)).to_integral_value(rounding=ROUND_DOWN))
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"Invalid amount: {amount}") from e


@dataclass
class TokenBalance:
    """Balance line for one token on one chain."""
    address: str
    symbol: str
    decimals: int
    balance: int
    min_balance: int
    enabled: bool = True
    price_mapping: Optional[TokenPriceMapping] = None


@dataclass
class ChainInventory:
    """All balance lines held on one chain."""
    chain: str
    enabled: bool
    tokens: Dict[str, TokenBalance] = field(default_factory=dict)


class InventoryManager:
    """Tracks solver capacity per chain and token.

    Reservation is deliberately not re-validated: callers run
    `can_provide_quote` and `reserve_inventory` back to back inside one
    event handler with no await in between.
    """

    def __init__(self, config_path: Optional[str] = None,
                 ledger: Optional[LedgerQuery] = None,
                 document: Optional[Dict[str, Any]] = None):
        self.config_path = Path(config_path) if config_path else None
        self.ledger = ledger
        self.inventory: Dict[str, ChainInventory] = {}
        self.raw_config: Optional[Dict[str, Any]] = None

        if document is not None:
            self.inventory = self._build_inventory(document)
            self.raw_config = document
        else:
            self._load_inventory_config()

    def _read_document(self) -> Optional[Dict[str, Any]]:
        if self.config_path is None:
            return None
        if not self.config_path.exists():
            logger.warning(f"Inventory config not found at {self.config_path}, using empty inventory")
            return None

        with open(self.config_path, "r") as f:
            if self.config_path.suffix in (".yaml", ".yml"):
                return yaml.safe_load(f) or {}
            return json.load(f)

    def _load_inventory_config(self):
        """Load the inventory document into the ledger."""
        try:
            document = self._read_document()
        except Exception as e:
            logger.error(f"Failed to load inventory config: {e}")
            return

        if document is None:
            return

        logger.info(f"Loading inventory from {self.config_path}")
        self.inventory = self._build_inventory(document)
        self.raw_config = document
        logger.info("Inventory loaded successfully")

    def _build_inventory(self, document: Dict[str, Any]) -> Dict[str, ChainInventory]:
        inventory: Dict[str, ChainInventory] = {}

        for chain, chain_config in (document.get("chains") or {}).items():
            enabled = bool(chain_config.get("enabled", False))
            tokens: Dict[str, TokenBalance] = {}

            if enabled:
                for token_config in chain_config.get("tokens") or []:
                    token = self._parse_token(token_config)
                    tokens[token.address.lower()] = token

            inventory[chain.lower()] = ChainInventory(chain=chain, enabled=enabled, tokens=tokens)

            if enabled and tokens:
                enabled_tokens = [t for t in tokens.values() if t.enabled]
                logger.info(f"{chain}: {len(enabled_tokens)} enabled tokens")
                for token in enabled_tokens:
                    logger.info(
                        f"  - {token.symbol} ({token.address}): "
                        f"{self.format_balance(token.balance, token.decimals)} "
                        f"(min: {self.format_balance(token.min_balance, token.decimals)})"
                    )

        return inventory

    @staticmethod
    def _parse_token(token_config: Dict[str, Any]) -> TokenBalance:
        decimals = int(token_config.get("decimals", 18))
        price_mapping = None
        if token_config.get("chainId_price") and token_config.get("address_price"):
            price_mapping = TokenPriceMapping(
                chain_id=str(token_config["chainId_price"]),
                address=str(token_config["address_price"]),
                decimals=decimals,
            )

        return TokenBalance(
            address=str(token_config["address"]),
            symbol=str(token_config.get("symbol", "")),
            decimals=decimals,
            balance=to_base_units(token_config.get("currentBalance", token_config.get("balance", "0"))),
            min_balance=to_base_units(token_config.get("minBalance", "0")),
            enabled=bool(token_config.get("enabled", True)),
            price_mapping=price_mapping,
        )

    @staticmethod
    def format_balance(balance: int, decimals: int) -> str:
        """Whole-unit balance for display."""
        return str(balance // (10 ** decimals))

    def _get_token(self, chain: str, token: str) -> Optional[TokenBalance]:
        chain_inventory = self.inventory.get(chain.lower())
        if chain_inventory is None:
            return None
        return chain_inventory.tokens.get(token.lower())

    def can_provide_quote(self, origin_asset: str, destination_asset: str, amount_out: Any) -> bool:
        """Check whether the destination side can be paid out."""
        try:
            chain, token = parse_asset_identifier(destination_asset)
            amount = to_base_units(amount_out)
        except ValueError as e:
            logger.debug(f"Cannot quote {destination_asset}: {e}")
            return False

        chain_inventory = self.inventory.get(chain)
        if chain_inventory is None or not chain_inventory.enabled:
            logger.debug(f"Chain {chain} not enabled in inventory")
            return False

        token_balance = chain_inventory.tokens.get(token.lower())
        if token_balance is None or not token_balance.enabled:
            logger.debug(f"Token {token} not enabled on {chain}")
            return False

        if token_balance.balance < amount:
            logger.warning(
                f"Insufficient inventory: {token} on {chain}. "
                f"Have: {token_balance.balance}, Need: {amount}"
            )
            return False

        remaining = token_balance.balance - amount
        if remaining < token_balance.min_balance:
            logger.warning(
                f"Would fall below minimum balance: {token} on {chain}. "
                f"Min: {token_balance.min_balance}, Would have: {remaining}"
            )
            return False

        return True

    def reserve_inventory(self, quote_id: str, destination_asset: str, amount: Any) -> bool:
        """Deduct a quoted amount from available balance."""
        chain, token = parse_asset_identifier(destination_asset)
        token_balance = self._get_token(chain, token)
        if token_balance is None:
            return False

        token_balance.balance -= to_base_units(amount)
        logger.info(
            f"Reserved {amount} {token} on {chain} for quote {quote_id}. "
            f"New balance: {token_balance.balance}"
        )
        return True

    def release_inventory(self, quote_id: str, destination_asset: str, amount: Any):
        """Return a reserved amount to available balance."""
        chain, token = parse_asset_identifier(destination_asset)
        token_balance = self._get_token(chain, token)
        if token_balance is None:
            return

        token_balance.balance += to_base_units(amount)
        logger.info(
            f"Released {amount} {token} on {chain} for quote {quote_id}. "
            f"New balance: {token_balance.balance}"
        )

    def get_balance(self, chain: str, token: str) -> Optional[int]:
        """Current balance of a token, or None if not tracked."""
        token_balance = self._get_token(chain, token)
        return token_balance.balance if token_balance else None

    def update_balance(self, chain: str, token: str, new_balance: Any):
        """Overwrite a token balance (after transfers or a sync)."""
        token_balance = self._get_token(chain, token)
        if token_balance is None:
            return

        token_balance.balance = to_base_units(new_balance)
        logger.info(f"Updated {token} balance on {chain}: {token_balance.balance}")

    def get_inventory_summary(self) -> Dict[str, Any]:
        """Snapshot of all enabled chains and their tokens."""
        summary: Dict[str, Any] = {}

        for chain, chain_inventory in self.inventory.items():
            if not chain_inventory.enabled:
                continue
            summary[chain] = {
                "enabled": True,
                "tokens": {
                    address: {
                        "symbol": token.symbol,
                        "balance": str(token.balance),
                        "minBalance": str(token.min_balance),
                        "enabled": token.enabled,
                    }
                    for address, token in chain_inventory.tokens.items()
                },
            }

        return summary

    def get_price_mappings(self) -> List[Tuple[str, TokenBalance]]:
        """Tokens whose document entry names a price-lookup pair."""
        return [
            (token.address, token)
            for chain_inventory in self.inventory.values()
            for token in chain_inventory.tokens.values()
            if token.price_mapping is not None
        ]

    def get_token_decimals(self) -> Dict[str, int]:
        """Decimals keyed by token address as written in the document."""
        return {
            token.address: token.decimals
            for chain_inventory in self.inventory.values()
            for token in chain_inventory.tokens.values()
        }

    async def reload_inventory(self, verify: bool = False) -> Dict[str, Any]:
        """Rebuild the ledger from the inventory document.

        The new structure is assembled aside and swapped in with a single
        assignment so readers never observe a half-built ledger.
        """
        logger.info("Reloading inventory configuration...")
        document = self._read_document()
        if document is None:
            document = self.raw_config or {}

        inventory = self._build_inventory(document)
        if verify and self.ledger is not None:
            for chain, chain_inventory in inventory.items():
                for token in chain_inventory.tokens.values():
                    live = await self._fetch_live_balance(chain, token)
                    if live is not None:
                        token.balance = live

        self.inventory = inventory
        self.raw_config = document
        return self.get_inventory_summary()

    def _token_id(self, chain: str, token: TokenBalance) -> str:
        if chain == HOME_CHAIN:
            return f"{TOKEN_NAMESPACE}{token.address}"
        prefix = next((p for p, name in CHAIN_PREFIXES.items() if name == chain), chain)
        return f"{TOKEN_NAMESPACE}{prefix}-{token.address}{BRIDGED_SUFFIX}"

    async def _fetch_live_balance(self, chain: str, token: TokenBalance) -> Optional[int]:
        token_id = self._token_id(chain, token)
        try:
            return to_base_units(await self.ledger.get_token_balance(token_id))
        except Exception as e:
            logger.warning(f"Could not verify {token.symbol} on {chain}, keeping document balance: {e}")
            return None

    async def fetch_token_balance(self, token_id: str, account_id: Optional[str] = None) -> str:
        """Read a live balance from the ledger without touching inventory."""
        if self.ledger is None:
            raise RuntimeError("No ledger query client configured")
        return str(await self.ledger.get_token_balance(token_id, account_id))

    async def sync_token_balance(self, chain: str, token: str, token_id: Optional[str] = None) -> str:
        """Replace one token's balance with the live ledger value."""
        if self.ledger is None:
            raise RuntimeError("No ledger query client configured")

        token_balance = self._get_token(chain, token)
        if token_balance is None:
            raise KeyError(f"Token {token} not tracked on {chain}")

        token_id = token_id or self._token_id(chain.lower(), token_balance)
        live = str(await self.ledger.get_token_balance(token_id))
        self.update_balance(chain, token, live)
        return live

    async def sync_all_token_balances(self) -> Dict[str, Dict[str, Any]]:
        """Sync every enabled token; per-token failures are reported, not raised."""
        if self.ledger is None:
            raise RuntimeError("No ledger query client configured")

        results: Dict[str, Dict[str, Any]] = {}
        for chain, chain_inventory in self.inventory.items():
            if not chain_inventory.enabled:
                continue
            results[chain] = {}
            for address, token in chain_inventory.tokens.items():
                try:
                    results[chain][address] = {
                        "success": True,
                        "balance": await self.sync_token_balance(chain, address),
                    }
                except Exception as e:
                    logger.error(f"Failed to sync {token.symbol} on {chain}: {e}")
                    results[chain][address] = {"success": False, "error": str(e)}

        return results

"""USD rate resolution and quote pricing."""

import time
from decimal import Decimal, ROUND_CEILING, ROUND_FLOOR, localcontext
from typing import Callable, Dict, Iterable, Optional, Any, Tuple
from loguru import logger

from .types import QuoteResult, TokenPriceMapping
from ..venues.price_sources import PriceSource

NATIVE_SENTINEL = "11111111111111111111"
NATIVE_EVM_ADDRESS = "0xeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeee"

# Last-resort prices when both sources fail
DEFAULT_FALLBACK_PRICES: Dict[str, float] = {
    "usdt.tether-token.near": 1.0,
    "usdc.tether-token.near": 1.0,
    "eth-0xdac17f958d2ee523a2206206994597c13d831ec7.omft.near": 1.0,
    "eth-0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48.omft.near": 1.0,
    "0xdac17f958d2ee523a2206206994597c13d831ec7": 1.0,
    "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48": 1.0,
    "0xaf88d065e77c8cc2239327c5edb3a432268e5831": 1.0,
    "0xfd086bc7cd5c481dcc9c85ebe478a1c0b69fcbb9": 1.0,
    "wrap.near": 5.0,
    "btc.omft.near": 98000.0,
    "eth.omft.near": 3500.0,
    "native": 600.0,  # BNB
}

DEFAULT_TOKEN_MAPPINGS: Dict[str, TokenPriceMapping] = {
    # NEAR-native stables priced against their BSC counterparts
    "usdt.tether-token.near": TokenPriceMapping("56", "0x55d398326f99059ff775485246999027b3197955", 6),
    "usdc.tether-token.near": TokenPriceMapping("56", "0x8ac76a51cc950d9822d68b83fe1ad97b32cd580d", 6),
    "wrap.near": TokenPriceMapping("near", "near", 24),
    "btc.omft.near": TokenPriceMapping("bitcoin", "bitcoin", 8),
    "eth-0xdac17f958d2ee523a2206206994597c13d831ec7.omft.near": TokenPriceMapping("1", "0xdac17f958d2ee523a2206206994597c13d831ec7", 6),
    "eth-0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48.omft.near": TokenPriceMapping("1", "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48", 6),
    "eth.omft.near": TokenPriceMapping("1", NATIVE_EVM_ADDRESS, 18),
    "0xdac17f958d2ee523a2206206994597c13d831ec7": TokenPriceMapping("1", "0xdac17f958d2ee523a2206206994597c13d831ec7", 6),
    "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48": TokenPriceMapping("1", "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48", 6),
    "0xaf88d065e77c8cc2239327c5edb3a432268e5831": TokenPriceMapping("42161", "0xaf88d065e77c8cc2239327c5edb3a432268e5831", 6),
    "0xfd086bc7cd5c481dcc9c85ebe478a1c0b69fcbb9": TokenPriceMapping("42161", "0xfd086bc7cd5c481dcc9c85ebe478a1c0b69fcbb9", 6),
    "native": TokenPriceMapping("56", NATIVE_EVM_ADDRESS, 8),
}


def extract_token_address(defuse_identifier: str) -> str:
    """Canonical token key for a defuse asset identifier.

    nep141:usdt.tether-token.near -> usdt.tether-token.near
    nep245:v2_1.omni.hot.tg:56_11111111111111111111 -> native
    nep245:v2_1.omni.hot.tg:56_0xabc -> 0xabc
    """
    parts = defuse_identifier.split(":")

    if parts[0] == "nep141" and len(parts) >= 2:
        return parts[1]

    if parts[0] == "nep245" and len(parts) >= 3:
        _, _, token_address = parts[2].partition("_")
        if token_address == NATIVE_SENTINEL:
            return "native"
        return token_address or parts[2]

    return parts[-1]


def fallback_price_for_symbol(symbol: str) -> float:
    """Rough static price guess from a token symbol."""
    symbol = (symbol or "").upper()
    if "USDT" in symbol or "USDC" in symbol:
        return 1.0
    if "ETH" in symbol:
        return 3500.0
    if "BTC" in symbol:
        return 98000.0
    if "NEAR" in symbol:
        return 5.0
    return 0.01


class RateResolver:
    """Resolves token USD prices: primary source -> secondary source -> static table."""

    def __init__(self, primary: PriceSource, secondary: PriceSource,
                 token_mappings: Optional[Dict[str, TokenPriceMapping]] = None,
                 fallback_prices: Optional[Dict[str, float]] = None,
                 cache_ttl_s: float = 60.0,
                 clock: Callable[[], float] = time.time):
        self.primary = primary
        self.secondary = secondary
        self.token_mappings: Dict[str, TokenPriceMapping] = dict(
            DEFAULT_TOKEN_MAPPINGS if token_mappings is None else token_mappings
        )
        self.fallback_prices: Dict[str, float] = dict(
            DEFAULT_FALLBACK_PRICES if fallback_prices is None else fallback_prices
        )
        self.cache_ttl_s = cache_ttl_s
        self._clock = clock
        self.price_cache: Dict[str, Tuple[float, float]] = {}

    async def get_token_price_usd(self, token: str) -> Optional[float]:
        """USD price for `token`, or None when no path yields a positive price."""
        cached = self.price_cache.get(token)
        if cached and self._clock() - cached[1] < self.cache_ttl_s:
            logger.debug(f"Using cached price for {token}: ${cached[0]}")
            return cached[0]

        mapping = self.token_mappings.get(token)
        if mapping:
            for source in (self.primary, self.secondary):
                price = await source.get_price(mapping.chain_id, mapping.address)
                if price is not None and price > 0:
                    self.price_cache[token] = (price, self._clock())
                    logger.info(f"{source.name} price for {token}: ${price}")
                    return price

        fallback = self.fallback_prices.get(token)
        if fallback and fallback > 0:
            logger.info(f"Using fallback price for {token}: ${fallback}")
            self.price_cache[token] = (fallback, self._clock())
            return fallback

        logger.warning(f"No price found for token: {token}")
        return None

    def add_token_mapping(self, token: str, chain_id: str, contract_address: str,
                          decimals: Optional[int] = None):
        self.token_mappings[token] = TokenPriceMapping(str(chain_id), contract_address, decimals)
        logger.info(f"Added token mapping: {token} -> chainId={chain_id}, address={contract_address}")

    def load_mappings(self, entries: Iterable[Tuple[str, Any]]) -> int:
        """Register (token, TokenBalance) pairs from the inventory document."""
        added = 0
        for token, balance in entries:
            self.token_mappings[token] = balance.price_mapping
            if token not in self.fallback_prices:
                self.fallback_prices[token] = fallback_price_for_symbol(balance.symbol)
            added += 1
        logger.info(f"Loaded {added} token price mappings from inventory")
        return added

    def clear_cache(self):
        self.price_cache.clear()
        logger.info("Price cache cleared")

    def get_cached_prices(self) -> Dict[str, float]:
        return {token: price for token, (price, _) in self.price_cache.items()}


class QuotePricer:
    """Turns resolved USD prices into an output amount with markup."""

    def __init__(self, resolver: RateResolver, markup_pct: float = 0.005,
                 decimals: Optional[Dict[str, int]] = None, default_decimals: int = 18):
        self.resolver = resolver
        self.markup_pct = Decimal(str(markup_pct))
        self.default_decimals = default_decimals
        self.decimals: Dict[str, int] = dict(decimals or {})
        logger.info(f"Initialized with {float(self.markup_pct) * 100}% markup")

    def get_token_decimals(self, token: str) -> int:
        if token in self.decimals:
            return self.decimals[token]
        mapping = self.resolver.token_mappings.get(token)
        if mapping is not None and mapping.decimals is not None:
            return mapping.decimals
        return self.default_decimals

    async def calculate_quote(self, origin_asset: str, destination_asset: str,
                              amount: str) -> Optional[QuoteResult]:
        """Price `amount` of origin_asset in destination_asset base units.

        Returns None when either side cannot be priced.
        """
        origin_token = extract_token_address(origin_asset)
        dest_token = extract_token_address(destination_asset)
        logger.debug(f"Calculating quote: {origin_token} -> {dest_token}, amount: {amount}")

        origin_price = await self.resolver.get_token_price_usd(origin_token)
        dest_price = await self.resolver.get_token_price_usd(dest_token)
        if not origin_price or not dest_price:
            logger.warning(
                f"Skipping quote: price not found for {origin_token} "
                f"({'ok' if origin_price else 'missing'}) or {dest_token} "
                f"({'ok' if dest_price else 'missing'})"
            )
            return None

        with localcontext() as ctx:
            ctx.prec = 80
            amount_in = Decimal(str(amount)) / (Decimal(10) ** self.get_token_decimals(origin_token))
            usd_value = amount_in * Decimal(str(origin_price))
            usd_after_markup = usd_value * (Decimal(1) - self.markup_pct)
            amount_out_human = usd_after_markup / Decimal(str(dest_price))
            amount_out = (amount_out_human * (Decimal(10) ** self.get_token_decimals(dest_token))) \
                .to_integral_value(rounding=ROUND_FLOOR)

        rate = dest_price / origin_price
        logger.info(
            f"Quote: {amount_in} {origin_token} (${usd_value:.2f}) -> {amount_out_human:.6f} {dest_token} "
            f"(rate: {rate:.6f}, markup: {float(self.markup_pct) * 100}%)"
        )
        return QuoteResult(amount_out=str(int(amount_out)), rate=rate, amount_in=str(amount))

    async def calculate_required_input(self, origin_asset: str, destination_asset: str,
                                       amount_out: str) -> Optional[QuoteResult]:
        """Origin amount the solver asks for to pay out exactly `amount_out`.

        The markup is applied against the client, and the input is rounded
        up so the fixed output is never under-collected.
        """
        origin_token = extract_token_address(origin_asset)
        dest_token = extract_token_address(destination_asset)
        logger.debug(f"Calculating required input: {origin_token} -> {dest_token}, amount_out: {amount_out}")

        origin_price = await self.resolver.get_token_price_usd(origin_token)
        dest_price = await self.resolver.get_token_price_usd(dest_token)
        if not origin_price or not dest_price:
            logger.warning(f"Skipping exact-out quote: price not found for {origin_token} or {dest_token}")
            return None
        if self.markup_pct >= 1:
            logger.warning(f"Markup {self.markup_pct} leaves no output to price against")
            return None

        with localcontext() as ctx:
            ctx.prec = 80
            fixed_out = Decimal(str(amount_out)).to_integral_value(rounding=ROUND_FLOOR)
            out_human = fixed_out / (Decimal(10) ** self.get_token_decimals(dest_token))
            usd_value = out_human * Decimal(str(dest_price))
            in_human = usd_value / (Decimal(str(origin_price)) * (Decimal(1) - self.markup_pct))
            amount_in = (in_human * (Decimal(10) ** self.get_token_decimals(origin_token))) \
                .to_integral_value(rounding=ROUND_CEILING)

        rate = dest_price / origin_price
        logger.info(
            f"Exact-out quote: {out_human} {dest_token} (${usd_value:.2f}) requires {in_human:.6f} {origin_token} "
            f"(rate: {rate:.6f}, markup: {float(self.markup_pct) * 100}%)"
        )
        return QuoteResult(amount_out=str(int(fixed_out)), rate=rate, amount_in=str(int(amount_in)))

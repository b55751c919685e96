"""USD price sources used by the rate resolver."""

import time
from abc import ABC, abstractmethod
from typing import Dict, Optional, Any
import aiohttp
from loguru import logger

DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0",
    "Accept": "application/json",
}


class PriceSource(ABC):
    """A read-only USD price endpoint.

    Every failure (network, HTTP status, unexpected payload) is soft:
    `get_price` logs and returns None.
    """

    name = "base"

    def __init__(self, base_url: str, timeout_s: float = 3.0,
                 session: Optional[aiohttp.ClientSession] = None):
        self.base_url = base_url
        self.timeout = aiohttp.ClientTimeout(total=timeout_s)
        self._session = session

    async def _get_json(self, params: Dict[str, Any]) -> Optional[Any]:
        """Make REST GET request"""
        try:
            if self._session is not None:
                return await self._request(self._session, params)
            async with aiohttp.ClientSession() as session:
                return await self._request(session, params)
        except Exception as e:
            logger.debug(f"{self.name} API failed: {e}")
            return None

    async def _request(self, session: aiohttp.ClientSession, params: Dict[str, Any]) -> Optional[Any]:
        async with session.get(self.base_url, params=params, headers=DEFAULT_HEADERS,
                               timeout=self.timeout) as response:
            if response.status != 200:
                logger.debug(f"{self.name} API error {response.status}")
                return None
            return await response.json(content_type=None)

    async def get_price(self, chain_id: str, contract_address: str) -> Optional[float]:
        logger.debug(f"Fetching price from {self.name}: chainId={chain_id}, address={contract_address}")
        data = await self._get_json(self._params(chain_id, contract_address))
        if data is None:
            return None

        try:
            price = self._extract_price(data)
        except (KeyError, IndexError, TypeError, ValueError) as e:
            logger.debug(f"{self.name} returned unexpected payload: {e}")
            return None

        if price is None or price <= 0:
            logger.warning(f"No price data from {self.name} for {contract_address} on chain {chain_id}")
            return None

        logger.debug(f"{self.name} price for {contract_address} on chain {chain_id}: ${price}")
        return price

    @abstractmethod
    def _params(self, chain_id: str, contract_address: str) -> Dict[str, Any]:
        pass

    @abstractmethod
    def _extract_price(self, data: Any) -> Optional[float]:
        pass


class BinancePriceSource(PriceSource):
    """Binance web3 wallet token price endpoint (direct USD price)."""

    name = "Binance"

    def _params(self, chain_id: str, contract_address: str) -> Dict[str, Any]:
        return {"chainId": chain_id, "contractAddress": contract_address}

    def _extract_price(self, data: Any) -> Optional[float]:
        raw = (data.get("data") or {}).get("priceInUsd")
        return float(raw) if raw else None


class OkxPriceSource(PriceSource):
    """OKX DEX candle endpoint; the latest candle's close is the price."""

    name = "OKX"

    def _params(self, chain_id: str, contract_address: str) -> Dict[str, Any]:
        return {
            "chainId": chain_id,
            "address": contract_address,
            "after": int(time.time() * 1000),
            "bar": "1m",
            "limit": 1,
        }

    def _extract_price(self, data: Any) -> Optional[float]:
        # {code: "0", data: [[ts, open, high, low, close, volume]]}
        if data.get("code") != "0" or not data.get("data"):
            return None
        candle = data["data"][0]
        if len(candle) < 5:
            return None
        return float(candle[4])

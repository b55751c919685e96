"""1Click bridge aggregator API client."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Any
import aiohttp
from loguru import logger

from ..core.types import BridgeApiError

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


class OneClickClient:
    """JSON-over-HTTPS client for quotes, deposit submission and swap status."""

    def __init__(self, base_url: str = "https://1click.chaindefuser.com", api_version: str = "v0",
                 jwt_token: Optional[str] = None, timeout_s: float = 30.0,
                 quote_validity_s: int = 3600, quote_waiting_time_ms: int = 3000):
        self.base_url = base_url.rstrip("/")
        self.api_version = api_version
        self.jwt_token = jwt_token
        self.timeout = aiohttp.ClientTimeout(total=timeout_s)
        self.quote_validity_s = quote_validity_s
        self.quote_waiting_time_ms = quote_waiting_time_ms
        self._session: Optional[aiohttp.ClientSession] = None

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.jwt_token:
            headers["Authorization"] = f"Bearer {self.jwt_token}"
        return headers

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{self.api_version}/{path}"

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def close(self):
        if self._session is not None and not self._session.closed:
            await self._session.close()

    async def _request(self, method: str, path: str, json_body: Optional[Dict[str, Any]] = None,
                       params: Optional[Dict[str, Any]] = None) -> Any:
        session = await self._get_session()
        try:
            async with session.request(method, self._url(path), json=json_body, params=params,
                                       headers=self._headers()) as response:
                if response.status >= 400:
                    body = await response.text()
                    raise BridgeApiError(f"{method} /{path} failed with {response.status}: {body}")
                return await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise BridgeApiError(f"{method} /{path} failed: {e!r}") from e
        except ValueError as e:
            raise BridgeApiError(f"{method} /{path} returned invalid JSON: {e}") from e

    def _deadline(self) -> str:
        deadline = datetime.now(timezone.utc) + timedelta(seconds=self.quote_validity_s)
        return deadline.isoformat().replace("+00:00", "Z")

    async def get_supported_tokens(self) -> List[Dict[str, Any]]:
        return await self._request("GET", "tokens")

    async def request_quote(self, request: Dict[str, Any]) -> Dict[str, Any]:
        logger.debug(f"Requesting 1Click quote: dry={request.get('dry')} {request.get('originAsset')} -> {request.get('destinationAsset')}")
        return await self._request("POST", "quote", json_body=request)

    async def get_quote_estimate(self, origin_asset: str, destination_asset: str, amount: str,
                                 slippage_bps: int = 100) -> Dict[str, Any]:
        """Dry-run quote: no deposit address is generated."""
        return await self.request_quote({
            "dry": True,
            "swapType": "EXACT_INPUT",
            "slippageTolerance": slippage_bps,
            "originAsset": origin_asset,
            "depositType": "ORIGIN_CHAIN",
            "destinationAsset": destination_asset,
            "amount": amount,
            "refundTo": ZERO_ADDRESS,
            "refundType": "ORIGIN_CHAIN",
            "recipient": ZERO_ADDRESS,
            "recipientType": "DESTINATION_CHAIN",
            "deadline": self._deadline(),
        })

    async def get_binding_quote(self, origin_asset: str, destination_asset: str, amount: str,
                                recipient: str, refund_to: Optional[str] = None,
                                slippage_bps: int = 100, swap_type: str = "EXACT_INPUT") -> Dict[str, Any]:
        """Quote with a real deposit address that the solver must fund."""
        return await self.request_quote({
            "dry": False,
            "swapType": swap_type,
            "slippageTolerance": slippage_bps,
            "originAsset": origin_asset,
            "depositType": "ORIGIN_CHAIN",
            "destinationAsset": destination_asset,
            "amount": amount,
            "refundTo": refund_to or recipient,
            "refundType": "ORIGIN_CHAIN",
            "recipient": recipient,
            "recipientType": "DESTINATION_CHAIN",
            "deadline": self._deadline(),
            "quoteWaitingTimeMs": self.quote_waiting_time_ms,
        })

    async def submit_deposit_tx(self, tx_hash: str, deposit_address: str,
                                memo: Optional[str] = None) -> Dict[str, Any]:
        body = {"txHash": tx_hash, "depositAddress": deposit_address}
        if memo:
            body["memo"] = memo
        return await self._request("POST", "deposit/submit", json_body=body)

    async def get_swap_status(self, deposit_address: str, deposit_memo: Optional[str] = None) -> Dict[str, Any]:
        params = {"depositAddress": deposit_address}
        if deposit_memo:
            params["depositMemo"] = deposit_memo
        return await self._request("GET", "status", params=params)

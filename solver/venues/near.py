"""NEAR RPC view calls against the intents verifier contract."""

import asyncio
import base64
import json
from typing import Any, Dict, Optional
import aiohttp
from loguru import logger

from .base import LedgerQuery
from ..core.types import SolverError


class NearRpcError(SolverError):
    """Raised when a NEAR RPC query fails."""
    pass


class NearLedgerClient(LedgerQuery):
    """Reads multi-token balances held on the verifier contract."""

    def __init__(self, rpc_url: str = "https://rpc.mainnet.near.org",
                 verifier_contract: str = "intents.near",
                 account_id: Optional[str] = None, timeout_s: float = 10.0):
        self.rpc_url = rpc_url
        self.verifier_contract = verifier_contract
        self.account_id = account_id
        self.timeout = aiohttp.ClientTimeout(total=timeout_s)

    async def view_function(self, contract_id: str, method_name: str, args: Dict[str, Any]) -> Any:
        """Run a read-only contract call and decode its JSON result."""
        payload = {
            "jsonrpc": "2.0",
            "id": "dontcare",
            "method": "query",
            "params": {
                "request_type": "call_function",
                "finality": "optimistic",
                "account_id": contract_id,
                "method_name": method_name,
                "args_base64": base64.b64encode(json.dumps(args).encode()).decode(),
            },
        }
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(self.rpc_url, json=payload) as response:
                    if response.status != 200:
                        raise NearRpcError(f"NEAR RPC HTTP {response.status}")
                    data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NearRpcError(f"NEAR RPC request failed: {e!r}") from e
        except ValueError as e:
            raise NearRpcError(f"NEAR RPC returned invalid JSON: {e}") from e

        if "error" in data:
            raise NearRpcError(f"NEAR RPC error: {data['error']}")

        result = data.get("result") or {}
        if "error" in result:
            raise NearRpcError(f"{contract_id}.{method_name} failed: {result['error']}")

        try:
            return json.loads(bytes(result.get("result") or []).decode() or "null")
        except (TypeError, ValueError) as e:
            raise NearRpcError(f"{contract_id}.{method_name} returned an undecodable result: {e}") from e

    async def get_token_balance(self, token_id: str, account_id: Optional[str] = None) -> str:
        account = account_id or self.account_id
        if not account:
            raise NearRpcError("No NEAR account configured for balance query")

        balance = await self.view_function(
            self.verifier_contract,
            "mt_balance_of",
            {"account_id": account, "token_id": token_id},
        )
        logger.debug(f"[Balance] {token_id} for {account}: {balance}")
        return str(balance or "0")

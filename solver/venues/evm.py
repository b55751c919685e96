"""EVM transfers signed locally with eth_account and broadcast over JSON-RPC."""

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional
import aiohttp
from eth_account import Account
from eth_utils import to_checksum_address
from loguru import logger

from .base import ChainSigner, TransferResult
from ..core.types import ChainExecutionError

# ERC20 function selectors
TRANSFER_SELECTOR = "a9059cbb"
BALANCE_OF_SELECTOR = "70a08231"

NATIVE_GAS_LIMIT = 21000


def _encode_address(address: str) -> str:
    return address.lower().replace("0x", "").rjust(64, "0")


def _encode_uint(value: int) -> str:
    if value < 0:
        raise ValueError(f"Cannot encode negative amount: {value}")
    return format(value, "x").rjust(64, "0")


def encode_erc20_transfer(to: str, amount: int) -> str:
    return "0x" + TRANSFER_SELECTOR + _encode_address(to) + _encode_uint(amount)


def encode_balance_of(owner: str) -> str:
    return "0x" + BALANCE_OF_SELECTOR + _encode_address(owner)


def is_evm_address(value: Optional[str]) -> bool:
    if not value or not value.startswith("0x") or len(value) != 42:
        return False
    try:
        int(value[2:], 16)
    except ValueError:
        return False
    return True


class EvmSigner(ChainSigner):
    """Native and ERC20 transfers from the solver's key on one EVM chain."""

    def __init__(self, chain: str, private_key: str, rpc_url: str, chain_id: Optional[int] = None,
                 timeout_s: float = 30.0, receipt_timeout_s: float = 120.0, receipt_poll_s: float = 2.0,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        super().__init__(chain)
        if not rpc_url:
            raise ValueError(f"RPC url required for {chain}")
        self.account = Account.from_key(private_key)
        self.rpc_url = rpc_url
        self.chain_id = chain_id
        self.timeout = aiohttp.ClientTimeout(total=timeout_s)
        self.receipt_timeout_s = receipt_timeout_s
        self.receipt_poll_s = receipt_poll_s
        self._sleep = sleep
        self._request_id = 0

    @property
    def address(self) -> str:
        return self.account.address

    async def _rpc(self, method: str, params: List[Any]) -> Any:
        self._request_id += 1
        payload = {"jsonrpc": "2.0", "method": method, "params": params, "id": self._request_id}
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(self.rpc_url, json=payload) as response:
                    if response.status != 200:
                        raise ChainExecutionError(f"{self.chain} RPC {method} HTTP {response.status}")
                    data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ChainExecutionError(f"{self.chain} RPC {method} failed: {e!r}") from e
        except ValueError as e:
            raise ChainExecutionError(f"{self.chain} RPC {method} returned invalid JSON: {e}") from e

        if "error" in data:
            raise ChainExecutionError(f"{self.chain} RPC error in {method}: {data['error']}")
        return data.get("result")

    async def _get_chain_id(self) -> int:
        if self.chain_id is None:
            self.chain_id = int(await self._rpc("eth_chainId", []), 16)
        return self.chain_id

    async def get_balance(self, token: Optional[str] = None) -> int:
        if token is None:
            result = await self._rpc("eth_getBalance", [self.address, "latest"])
        else:
            result = await self._rpc("eth_call", [{"to": token, "data": encode_balance_of(self.address)}, "latest"])
        return int(result or "0x0", 16)

    async def transfer(self, to: str, amount: int, token: Optional[str] = None) -> TransferResult:
        if not is_evm_address(to):
            raise ChainExecutionError(f"Invalid recipient address: {to}")
        if token is not None and not is_evm_address(token):
            raise ChainExecutionError(f"Invalid token address: {token}")

        amount = int(amount)
        if token is not None:
            balance = await self.get_balance(token)
            if balance < amount:
                raise ChainExecutionError(f"Insufficient balance. Have: {balance}, Need: {amount}")

        tx: Dict[str, Any] = {
            "from": self.address,
            "to": to_checksum_address(token or to),
            "value": 0 if token else amount,
            "data": encode_erc20_transfer(to, amount) if token else "0x",
        }
        nonce = int(await self._rpc("eth_getTransactionCount", [self.address, "pending"]), 16)
        gas_price = int(await self._rpc("eth_gasPrice", []), 16)
        if token:
            estimate = {"from": tx["from"], "to": tx["to"], "data": tx["data"]}
            gas = int(await self._rpc("eth_estimateGas", [estimate]), 16)
        else:
            gas = NATIVE_GAS_LIMIT

        tx.update({
            "nonce": nonce,
            "gas": gas,
            "gasPrice": gas_price,
            "chainId": await self._get_chain_id(),
        })
        del tx["from"]

        logger.info(f"[Transfer] {self.chain}: {amount} {token or 'native'} from {self.address} to {to}")
        try:
            signed = self.account.sign_transaction(tx)
        except (TypeError, ValueError) as e:
            raise ChainExecutionError(f"Failed to sign {self.chain} transaction: {e}") from e

        tx_hash = await self._rpc("eth_sendRawTransaction", ["0x" + signed.raw_transaction.hex().replace("0x", "")])
        logger.info(f"[Transfer] Transaction sent: {tx_hash}")

        receipt = await self.wait_for_receipt(tx_hash)
        if int(receipt.get("status", "0x0"), 16) != 1:
            raise ChainExecutionError(f"Transaction {tx_hash} reverted on {self.chain}")

        block_number = int(receipt.get("blockNumber", "0x0"), 16)
        logger.info(f"[Transfer] Transfer confirmed in block {block_number}")
        return TransferResult(tx_hash=tx_hash, status="confirmed", block_number=block_number)

    async def wait_for_receipt(self, tx_hash: str) -> Dict[str, Any]:
        waited = 0.0
        while waited < self.receipt_timeout_s:
            receipt = await self._rpc("eth_getTransactionReceipt", [tx_hash])
            if receipt:
                return receipt
            await self._sleep(self.receipt_poll_s)
            waited += self.receipt_poll_s
        raise ChainExecutionError(f"Timed out waiting for receipt of {tx_hash}")

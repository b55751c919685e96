"""NEP-413 signed quote commitments."""

import base64
import hashlib
import json
import secrets
import struct
import time
from typing import Callable, Optional, Set
import base58
from loguru import logger
from solders.keypair import Keypair

from .types import QuoteRequest, SignedQuote, SigningError

KEY_PREFIX = "ed25519:"

STANDARD_NUMBERS = {
    "nep413": 413,
}


def _borsh_string(value: str) -> bytes:
    encoded = value.encode("utf-8")
    return struct.pack("<I", len(encoded)) + encoded


def serialize_nep413_payload(message: str, nonce: bytes, recipient: str,
                             callback_url: Optional[str] = None) -> bytes:
    """Borsh encoding of {message, nonce: [u8; 32], recipient, callback_url: Option<String>}."""
    if len(nonce) != 32:
        raise SigningError(f"Nonce must be 32 bytes, got {len(nonce)}")

    payload = _borsh_string(message) + nonce + _borsh_string(recipient)
    if callback_url is None:
        payload += b"\x00"
    else:
        payload += b"\x01" + _borsh_string(callback_url)
    return payload


def nep413_digest(message: str, nonce: bytes, recipient: str, standard: str = "nep413") -> bytes:
    """SHA-256 over the u32 standard tag followed by the Borsh payload."""
    tag = struct.pack("<I", 2 ** 31 + STANDARD_NUMBERS[standard])
    return hashlib.sha256(tag + serialize_nep413_payload(message, nonce, recipient)).digest()


def load_keypair(private_key: str) -> Keypair:
    """Parse an `ed25519:<base58>` key holding either a 64-byte keypair or a 32-byte seed."""
    raw = private_key[len(KEY_PREFIX):] if private_key.startswith(KEY_PREFIX) else private_key
    key_bytes = base58.b58decode(raw)
    if len(key_bytes) == 64:
        return Keypair.from_bytes(key_bytes)
    if len(key_bytes) == 32:
        return Keypair.from_seed(key_bytes)
    raise ValueError(f"Unexpected ed25519 key length: {len(key_bytes)}")


class QuoteSigner:
    """Signs quote commitments for the defuse verifier contract."""

    def __init__(self, account_id: Optional[str], private_key: Optional[str],
                 defuse_contract: str = "intents.near", standard: str = "nep413",
                 clock: Callable[[], float] = time.time):
        self.account_id = account_id
        self.defuse_contract = defuse_contract
        self.standard = standard
        self._clock = clock
        self.used_nonces: Set[str] = set()
        self.keypair: Optional[Keypair] = None

        if not account_id:
            logger.warning("Signer account id not configured. NEP-413 signing will not work.")

        if private_key:
            try:
                self.keypair = load_keypair(private_key)
                logger.info(f"Initialized NEP-413 signer for account: {account_id}")
            except Exception as e:
                logger.error(f"Failed to parse NEAR private key: {e}")

    @property
    def is_configured(self) -> bool:
        return bool(self.account_id) and self.keypair is not None

    @property
    def public_key(self) -> str:
        if self.keypair is None:
            raise SigningError("NEAR keypair not initialized")
        return KEY_PREFIX + base58.b58encode(bytes(self.keypair.pubkey())).decode()

    def generate_nonce(self) -> str:
        """Fresh base64 nonce, unique for the lifetime of this signer."""
        nonce = base64.b64encode(secrets.token_bytes(32)).decode()
        while nonce in self.used_nonces:
            nonce = base64.b64encode(secrets.token_bytes(32)).decode()
        self.used_nonces.add(nonce)
        return nonce

    def build_intent_message(self, request: QuoteRequest, calculated_amount: str) -> str:
        deadline = int((self._clock() * 1000 + request.min_deadline_ms) // 1000)
        amount_in = request.exact_amount_in or calculated_amount
        amount_out = request.exact_amount_out or calculated_amount

        message = {
            "signer_id": self.account_id,
            "deadline": {"timestamp": deadline},
            "intents": [
                {
                    "intent": "token_diff",
                    "diff": {
                        request.defuse_asset_identifier_in: str(amount_in),
                        request.defuse_asset_identifier_out: f"-{amount_out}",
                    },
                }
            ],
        }
        return json.dumps(message, separators=(",", ":"))

    def create_signed_quote(self, quote_id: str, request: QuoteRequest,
                            calculated_amount: str) -> SignedQuote:
        """Sign a token_diff intent for `request`.

        `calculated_amount` fills whichever side the request left open.
        """
        if not self.is_configured:
            raise SigningError("NEAR account not configured for signing")

        message = self.build_intent_message(request, calculated_amount)
        nonce = self.generate_nonce()
        recipient = self.defuse_contract

        try:
            digest = nep413_digest(message, base64.b64decode(nonce), recipient, self.standard)
            signature = bytes(self.keypair.sign_message(digest))
        except SigningError:
            raise
        except Exception as e:
            raise SigningError(f"Failed to sign quote {quote_id}: {e}") from e

        if request.exact_amount_in:
            quote_output = {"amount_out": calculated_amount}
        else:
            quote_output = {"amount_in": calculated_amount}

        logger.info(f"Created signed quote {quote_id} for {calculated_amount} tokens")
        return SignedQuote(
            quote_id=quote_id,
            quote_output=quote_output,
            standard=self.standard,
            message=message,
            nonce=nonce,
            recipient=recipient,
            signature=KEY_PREFIX + base58.b58encode(signature).decode(),
            public_key=self.public_key,
        )

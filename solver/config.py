"""Configuration management for the cross-chain solver."""

import os
from pathlib import Path
from typing import Dict, Optional
import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field


class BusConfig(BaseModel):
    """Solver bus (relay WebSocket) configuration."""
    ws_url: str = "wss://solver-relay-v2.chaindefuser.com/ws"
    enabled: bool = False
    simulation: bool = False  # Log quotes instead of sending them
    reconnect_delay_s: float = 5.0
    ping_interval_s: float = 30.0
    ping_timeout_s: float = 10.0


class SignerConfig(BaseModel):
    """NEP-413 quote signing configuration."""
    account_id: Optional[str] = None
    private_key: Optional[str] = None  # ed25519:<base58>
    defuse_contract: str = "intents.near"
    standard: str = "nep413"


class PricingConfig(BaseModel):
    """Quote pricing configuration."""
    markup_pct: float = 0.005  # 0.5% kept by the solver
    cache_ttl_s: float = 60.0
    source_timeout_s: float = 3.0
    binance_url: str = "https://web3.binance.com/bapi/defi/v1/public/wallet-direct/buw/wallet/token/price/info"
    okx_url: str = "https://web3.okx.com/priapi/v5/dex/token/market/dex-token-hlc-candles"
    default_decimals: int = 18


class InventoryConfig(BaseModel):
    """Inventory document location."""
    path: str = "inventory.json"
    verify_on_reload: bool = False


class BridgeConfig(BaseModel):
    """Bridge aggregator (1Click) API configuration."""
    base_url: str = "https://1click.chaindefuser.com"
    api_version: str = "v0"
    jwt_token: Optional[str] = None
    request_timeout_s: float = 30.0
    slippage_bps: int = 100  # 1%
    quote_validity_s: int = 3600
    quote_waiting_time_ms: int = 3000


class ExecutionConfig(BaseModel):
    """Cross-chain execution and settlement tracking."""
    lock_ttl_ms: int = 120000  # Cross-chain settlement outlives simple execution
    poll_interval_s: float = 10.0
    max_wait_s: float = 900.0
    record_ceiling_s: float = 3600.0
    retention_s: float = 86400.0


class LockConfig(BaseModel):
    """Distributed lock backend."""
    redis_url: Optional[str] = None
    key_prefix: str = "intent"


class ChainConfig(BaseModel):
    """Per-chain signing identity."""
    private_key: str
    rpc_url: Optional[str] = None
    chain_id: Optional[int] = None
    network_id: Optional[str] = None


class NearConfig(BaseModel):
    """NEAR RPC used for ledger queries."""
    rpc_url: str = "https://rpc.mainnet.near.org"
    verifier_contract: str = "intents.near"
    timeout_s: float = 10.0


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "INFO"
    file: Optional[str] = "solver.log"
    serialize: bool = False  # loguru JSON lines


class ServerConfig(BaseModel):
    """Control surface configuration."""
    host: str = "0.0.0.0"
    port: int = 8080
    quote_ttl_ms: int = 5000
    solver_id: str = "market-maker-solver"


class Config(BaseModel):
    """Main configuration model."""
    bus: BusConfig = Field(default_factory=BusConfig)
    signer: SignerConfig = Field(default_factory=SignerConfig)
    pricing: PricingConfig = Field(default_factory=PricingConfig)
    inventory: InventoryConfig = Field(default_factory=InventoryConfig)
    bridge: BridgeConfig = Field(default_factory=BridgeConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    lock: LockConfig = Field(default_factory=LockConfig)
    near: NearConfig = Field(default_factory=NearConfig)
    chains: Dict[str, ChainConfig] = Field(default_factory=dict)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)

    def get_chain(self, chain: str) -> Optional[ChainConfig]:
        """Get chain configuration by name (case-insensitive)."""
        return self.chains.get(chain.lower())

    @classmethod
    def load_from_file(cls, config_path: str = "config.yaml") -> "Config":
        """Load configuration from YAML file with environment variable substitution."""
        load_dotenv()

        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(config_path, "r") as f:
            config_str = f.read()

        # Substitute environment variables
        for key, value in os.environ.items():
            config_str = config_str.replace(f"${{{key}}}", value)

        config_data = yaml.safe_load(config_str) or {}
        config_data["chains"] = {
            name.lower(): chain for name, chain in (config_data.get("chains") or {}).items()
        }
        return cls(**config_data)


def get_config(config_path: str = "config.yaml") -> Config:
    """Get configuration instance."""
    return Config.load_from_file(config_path)

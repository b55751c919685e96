"""Main entry point for the cross-chain market-making solver."""

import asyncio
import json
import signal
import sys
import click
from loguru import logger

# uvloop is not available on Windows
try:
    import uvloop
    UVLOOP_AVAILABLE = True
except ImportError:
    UVLOOP_AVAILABLE = False

from .config import Config, LoggingConfig, get_config
from .core.bus import SolverBusClient
from .core.executor import CrossChainExecutor
from .core.inventory import InventoryManager
from .core.lock import IntentLockManager
from .core.monitor import SwapMonitor
from .core.pricing import QuotePricer, RateResolver
from .core.quotes import QuoteCoordinator
from .core.signer import QuoteSigner
from .service import SolverService
from .venues.chain_keys import ChainKeyRegistry
from .venues.near import NearLedgerClient
from .venues.oneclick import OneClickClient
from .venues.price_sources import BinancePriceSource, OkxPriceSource
from .venues.transfer import TransferExecutor


def setup_logging(config: LoggingConfig, level: str = None):
    logger.remove()
    logger.add(sys.stderr, level=level or config.level,
               format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>")
    if config.file:
        logger.add(config.file, level="DEBUG", rotation="50 MB", retention=5, serialize=config.serialize,
                   format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}")


class SolverApp:
    """Wires every solver component from one Config."""

    def __init__(self, config: Config):
        self.config = config
        self.running = False
        self._stop_event = None

        self.ledger = NearLedgerClient(
            rpc_url=config.near.rpc_url,
            verifier_contract=config.near.verifier_contract,
            account_id=config.signer.account_id,
            timeout_s=config.near.timeout_s,
        )
        self.inventory = InventoryManager(config.inventory.path, ledger=self.ledger)

        self.resolver = RateResolver(
            BinancePriceSource(config.pricing.binance_url, config.pricing.source_timeout_s),
            OkxPriceSource(config.pricing.okx_url, config.pricing.source_timeout_s),
            cache_ttl_s=config.pricing.cache_ttl_s,
        )
        self.resolver.load_mappings(self.inventory.get_price_mappings())
        self.pricer = QuotePricer(
            self.resolver,
            markup_pct=config.pricing.markup_pct,
            decimals=self.inventory.get_token_decimals(),
            default_decimals=config.pricing.default_decimals,
        )
        self.signer = QuoteSigner(
            config.signer.account_id,
            config.signer.private_key,
            defuse_contract=config.signer.defuse_contract,
            standard=config.signer.standard,
        )

        self.chain_keys = ChainKeyRegistry(config.chains)
        self.bus = SolverBusClient(
            config.bus.ws_url,
            enabled=config.bus.enabled,
            reconnect_delay_s=config.bus.reconnect_delay_s,
            ping_interval=config.bus.ping_interval_s,
            ping_timeout=config.bus.ping_timeout_s,
        )
        self.coordinator = QuoteCoordinator(
            self.inventory,
            self.pricer,
            self.signer,
            transfer_executor=TransferExecutor(self.chain_keys),
            simulation=config.bus.simulation,
            solver_id=config.server.solver_id,
            quote_ttl_ms=config.server.quote_ttl_ms,
        )
        self.coordinator.attach(self.bus)

        self.bridge = OneClickClient(
            base_url=config.bridge.base_url,
            api_version=config.bridge.api_version,
            jwt_token=config.bridge.jwt_token,
            timeout_s=config.bridge.request_timeout_s,
            quote_validity_s=config.bridge.quote_validity_s,
            quote_waiting_time_ms=config.bridge.quote_waiting_time_ms,
        )
        self.monitor = SwapMonitor(
            self.bridge,
            poll_interval_s=config.execution.poll_interval_s,
            record_ceiling_s=config.execution.record_ceiling_s,
        )
        self.locks = IntentLockManager(config.lock.redis_url)
        self.executor = CrossChainExecutor(
            self.locks,
            self.chain_keys,
            self.bridge,
            self.monitor,
            lock_ttl_ms=config.execution.lock_ttl_ms,
            max_wait_s=config.execution.max_wait_s,
            poll_interval_s=config.execution.poll_interval_s,
            slippage_bps=config.bridge.slippage_bps,
            key_prefix=config.lock.key_prefix,
        )
        self.service = SolverService(self.coordinator, self.executor, self.inventory, self.bus, self.bridge)

        logger.info("Cross-chain solver initialized")
        logger.info(f"Solver account: {config.signer.account_id or 'not configured'}")
        logger.info(f"Markup: {config.pricing.markup_pct * 100}%")
        logger.info(f"Supported origin chains: {self.chain_keys.get_supported_chains()}")
        logger.info(f"Lock backend: {self.locks.backend}")

    async def start(self):
        if self.running:
            return

        self.running = True
        self._stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        if sys.platform != "win32":
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, self._stop_event.set)

        if self.config.inventory.verify_on_reload:
            await self.inventory.reload_inventory(verify=True)

        try:
            await self.bus.start()
            await self._housekeeping_loop()
        finally:
            await self.stop()

    async def _housekeeping_loop(self):
        """Evict settled swap records until asked to stop."""
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=300)
            except asyncio.TimeoutError:
                self.monitor.cleanup(self.config.execution.retention_s)

    async def stop(self):
        if not self.running:
            return

        logger.info("Stopping cross-chain solver")
        self.running = False
        try:
            await self.bus.stop()
            await self.executor.shutdown()
            await self.bridge.close()
            await self.locks.close()
        except Exception as e:
            logger.error(f"Error during shutdown: {e}")


@click.group()
def cli():
    """Cross-chain market-making solver CLI."""
    pass


@cli.command()
@click.option('--config', type=click.Path(exists=True), default='config.yaml',
              help='Path to config file')
@click.option('--simulation', is_flag=True, help='Sign quotes but do not send them')
def run(config, simulation):
    """Connect to the solver bus and answer quote requests."""
    cfg = get_config(config)
    if simulation:
        cfg.bus.simulation = True
    setup_logging(cfg.logging)

    # Use uvloop on Linux for better performance
    if sys.platform != "win32" and UVLOOP_AVAILABLE:
        uvloop.install()

    app = SolverApp(cfg)
    try:
        asyncio.run(app.start())
    except KeyboardInterrupt:
        logger.info("Solver stopped by user")
    except Exception as e:
        logger.error(f"Solver failed: {e}")
        sys.exit(1)


@cli.command()
@click.option('--config', type=click.Path(exists=True), default='config.yaml',
              help='Path to config file')
@click.option('--sync', is_flag=True, help='Refresh balances from the verifier contract first')
def inventory(config, sync):
    """Print the inventory summary."""
    cfg = get_config(config)
    setup_logging(cfg.logging, level="WARNING")
    app = SolverApp(cfg)

    async def show_inventory():
        if sync:
            click.echo(json.dumps(await app.service.sync_all(), indent=2))
        click.echo(json.dumps(app.service.inventory_summary(), indent=2))

    asyncio.run(show_inventory())


@cli.command()
@click.option('--config', type=click.Path(exists=True), default='config.yaml',
              help='Path to config file')
@click.argument('origin_asset')
@click.argument('destination_asset')
@click.argument('amount')
def quote(config, origin_asset, destination_asset, amount):
    """Price AMOUNT of ORIGIN_ASSET in DESTINATION_ASSET without reserving."""
    cfg = get_config(config)
    setup_logging(cfg.logging, level="WARNING")
    app = SolverApp(cfg)
    result = asyncio.run(app.service.compute_quote(origin_asset, destination_asset, amount))
    click.echo(json.dumps(result, indent=2))


@cli.command()
@click.option('--config', type=click.Path(exists=True), default='config.yaml',
              help='Path to config file')
def status(config):
    """Show solver configuration status."""
    cfg = get_config(config)
    setup_logging(cfg.logging, level="WARNING")
    app = SolverApp(cfg)
    bus = app.service.bus_status()
    summary = app.inventory.get_inventory_summary()
    tokens = sum(len(chain["tokens"]) for chain in summary.values())

    click.echo(f"""
=== SOLVER STATUS ===
Bus: {bus['url']} (enabled: {bus['enabled']}, simulation: {cfg.bus.simulation})
Signer: {cfg.signer.account_id or 'not configured'} (ready: {app.signer.is_configured})
Origin chains: {', '.join(app.chain_keys.get_supported_chains()) or 'none'}
Inventory: {len(summary)} chains, {tokens} tokens
Lock backend: {app.locks.backend}
""")


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()

"""Quote lifecycle: price, reserve, sign, respond, and settle on status."""

import time
import uuid
from typing import Any, Dict, List, Optional
from loguru import logger

from .inventory import InventoryManager, parse_asset_identifier
from .pricing import QuotePricer
from .signer import QuoteSigner
from .types import ActiveQuote, QuoteRequest, QuoteStatus, SolverError


class QuoteCoordinator:
    """Drives each quote_id through Received -> Priced -> Reserved -> Signed -> Sent.

    Every step between the capacity check and the reservation runs without
    an await, so two quotes in flight cannot both pass the check against
    the same balance.
    """

    def __init__(self, inventory: InventoryManager, pricer: QuotePricer, signer: QuoteSigner,
                 bus=None, transfer_executor=None, simulation: bool = False,
                 solver_id: str = "market-maker-solver", quote_ttl_ms: int = 5000):
        self.inventory = inventory
        self.pricer = pricer
        self.signer = signer
        self.bus = bus
        self.transfer_executor = transfer_executor
        self.simulation = simulation
        self.solver_id = solver_id
        self.quote_ttl_ms = quote_ttl_ms
        self.active_quotes: Dict[str, ActiveQuote] = {}

        if self.simulation:
            logger.warning("SIMULATION MODE ENABLED - Quotes will NOT be sent to the solver bus")

    def attach(self, bus):
        """Register as the bus event handler."""
        self.bus = bus
        bus.on_quote_request = self.handle_quote_request
        bus.on_quote_status = self.handle_quote_status

    async def handle_quote_request(self, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Process one inbound quote request. Returns the response payload if one was produced."""
        try:
            request = QuoteRequest.from_event(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"[Quote Request] Malformed request {data.get('quote_id')}: {e}")
            return None

        quote_id = request.quote_id
        logger.info(
            f"[Quote Request] ID: {quote_id}, In: {request.defuse_asset_identifier_in}, "
            f"Out: {request.defuse_asset_identifier_out}, Amount: {request.amount}"
        )

        if quote_id in self.active_quotes:
            logger.warning(f"[Quote Request] Quote {quote_id} is already active - ignoring duplicate")
            return None

        if request.exact_amount_in:
            quote = await self.pricer.calculate_quote(
                request.defuse_asset_identifier_in,
                request.defuse_asset_identifier_out,
                request.exact_amount_in,
            )
        else:
            quote = await self.pricer.calculate_required_input(
                request.defuse_asset_identifier_in,
                request.defuse_asset_identifier_out,
                request.amount,
            )
        if quote is None:
            logger.info(f"[Quote Request] Skipping quote {quote_id} - no price mapping for tokens")
            return None

        # The signer fills whichever side the request left open
        calculated_amount = quote.amount_out if request.exact_amount_in else quote.amount_in
        logger.info(
            f"[Quote Request] Quote calculated: in {quote.amount_in}, out {quote.amount_out} "
            f"(rate: {quote.rate:.6f})"
        )

        # The price await may have let a duplicate through; re-check before reserving
        if quote_id in self.active_quotes:
            logger.warning(f"[Quote Request] Quote {quote_id} became active while pricing - ignoring")
            return None

        if not self.inventory.can_provide_quote(
            request.defuse_asset_identifier_in,
            request.defuse_asset_identifier_out,
            quote.amount_out,
        ):
            logger.info(f"[Quote Request] Insufficient inventory for {quote_id} - skipping")
            return None

        if not self.inventory.reserve_inventory(quote_id, request.defuse_asset_identifier_out, quote.amount_out):
            logger.warning(f"[Quote Request] Could not reserve inventory for {quote_id}")
            return None

        self.active_quotes[quote_id] = ActiveQuote(
            quote_id=quote_id,
            origin_asset=request.defuse_asset_identifier_in,
            dest_asset=request.defuse_asset_identifier_out,
            amount_out=quote.amount_out,
        )

        try:
            signed_quote = self.signer.create_signed_quote(quote_id, request, calculated_amount)
        except Exception as e:
            self._rollback(quote_id)
            logger.error(f"[Quote Request] Failed to sign quote {quote_id}: {e}")
            return None

        payload = signed_quote.to_dict()
        if self.simulation:
            logger.warning(f"[SIMULATION] Would send quote response for {quote_id}: {payload['quote_output']}")
            logger.warning(f"[SIMULATION] Signature: {signed_quote.signature[:30]}...")
            return payload

        try:
            await self.bus.send_quote_response(payload)
        except Exception as e:
            self._rollback(quote_id)
            logger.error(f"[Quote Request] Failed to send quote {quote_id}: {e}")
            return None

        logger.info(f"[Quote Request] Sent quote response for {quote_id}")
        return payload

    def _rollback(self, quote_id: str):
        active = self.active_quotes.pop(quote_id, None)
        if active is not None:
            self.inventory.release_inventory(quote_id, active.dest_asset, active.amount_out)

    async def handle_quote_status(self, data: Dict[str, Any]):
        quote_id = str(data.get("quote_id"))
        status = data.get("status")
        logger.info(f"[Quote Status] {quote_id}: {status}")

        active = self.active_quotes.get(quote_id)
        if active is None:
            logger.debug(f"[Quote Status] No metadata found for quote {quote_id}")
            return

        if status == QuoteStatus.FILLED.value:
            del self.active_quotes[quote_id]
            logger.info(f"[Quote Status] Quote {quote_id} was filled")
            await self._settle_filled(active, data)
        elif status in (QuoteStatus.EXPIRED.value, QuoteStatus.CANCELLED.value):
            logger.info(f"[Quote Status] Quote {quote_id} {status} - releasing inventory")
            self._rollback(quote_id)

    async def _settle_filled(self, active: ActiveQuote, data: Dict[str, Any]):
        if self.transfer_executor is None:
            return

        try:
            chain, token = parse_asset_identifier(active.dest_asset)
        except ValueError as e:
            logger.warning(f"[Transfer] Cannot parse destination {active.dest_asset}: {e}")
            return

        if not self.transfer_executor.is_chain_configured(chain):
            logger.warning(f"[Transfer] Transfer executor not configured for {chain} - skipping transfer")
            return

        recipient = data.get("recipient")
        if not recipient:
            logger.info(f"[Transfer] Transfer for {active.quote_id} pending: status carries no recipient")
            return

        try:
            await self.transfer_executor.execute_transfer(chain, token, recipient, active.amount_out, active.quote_id)
        except SolverError as e:
            logger.error(f"[Transfer] Transfer for {active.quote_id} failed: {e}")

    def get_active_quotes(self) -> List[ActiveQuote]:
        return list(self.active_quotes.values())

    async def compute_quote(self, origin_asset: str, destination_asset: str, amount: str) -> Optional[Dict[str, Any]]:
        """Indicative quote for the control surface. Reserves nothing."""
        quote = await self.pricer.calculate_quote(origin_asset, destination_asset, amount)
        if quote is None:
            return None

        return {
            "quote_id": f"quote_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}",
            "solver_id": self.solver_id,
            "amount_in": str(amount),
            "amount_out": quote.amount_out,
            "ttl_ms": self.quote_ttl_ms,
            "metadata": {
                "originAsset": origin_asset,
                "destinationAsset": destination_asset,
                "rate": quote.rate,
                "markup": float(self.pricer.markup_pct),
                "canFill": self.inventory.can_provide_quote(origin_asset, destination_asset, quote.amount_out),
            },
        }

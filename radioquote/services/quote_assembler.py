"""
Quote assembly service.

Turns a system recommendation into a persisted, line-itemized quote. All three
entry points converge on the same pipeline:

    resolve-or-create client -> create quote shell (Q{YY}{MM}{DD}-{NNN})
    -> append line items -> compute totals -> safety gate -> hydrate

The pipeline runs in one database transaction. A store error or a safety
rejection rolls back every write made for the quote, including a freshly
created client. A SKU missing from the catalog only skips that line item.

Entry points:
- create_quote_from_recommendation(): recommendation + client details
- create_multi_site_quote(): multi-site requirements
- create_system_quote(): system type + user count; the repeater is picked
  from the catalog and radios come from the fallback radio selection

Read paths:
- get_complete_quote(): header, client fields and line items
- list_quotes(): headers, newest first
- format_quote_for_display(): plain-text rendering of a hydrated quote
"""

import logging
import math
import secrets
import time
from datetime import date
from typing import Awaitable, Callable, List, Optional, Tuple

from radioquote.core.errors import PartNotFound, QuoteNotFound, QuoteRejected, StoreError
from radioquote.models.schemas import (
    Client,
    ClientInfo,
    MultiSiteRequirements,
    Part,
    PartRecommendation,
    QuoteDetail,
    QuoteValidationInput,
    Recommendation,
    RecommendedPart,
)
from radioquote.services import pricing
from radioquote.services.production_monitor import ProductionMonitor
from radioquote.services.safety_validator import SafetyValidator
from radioquote.services.store import QuoteStore, StoreSession, is_unique_violation
from radioquote.services.totals import TotalsCalculator

logger = logging.getLogger(__name__)

MAX_QUOTE_NUMBER_ATTEMPTS = 5

QUOTE_INTENT = 'quote_generation'

ItemWriter = Callable[[StoreSession, int], Awaitable[None]]


class QuoteAssembler:
    """
    Builds quotes from recommendations.

    Args:
        store: Relational store.
        totals: Totals calculator, run inside the assembly transaction.
        labor_rate: Dollars per installation hour.
        validator: When given, every assembled quote is gated; a blocked quote
            raises QuoteRejected and nothing is persisted.
        monitor: When given, receives generation and validation metrics.
        today: Date source for quote numbers.
    """

    def __init__(
        self,
        store: QuoteStore,
        totals: TotalsCalculator,
        labor_rate: float,
        validator: Optional[SafetyValidator] = None,
        monitor: Optional[ProductionMonitor] = None,
        today: Callable[[], date] = date.today,
    ):
        self.store = store
        self.totals = totals
        self.labor_rate = labor_rate
        self.validator = validator
        self.monitor = monitor
        self._today = today

    # =========================================================================
    # Entry Points
    # =========================================================================

    async def create_quote_from_recommendation(
        self,
        recommendation: Recommendation,
        client_info: Optional[ClientInfo] = None,
        session_id: Optional[str] = None,
    ) -> QuoteDetail:
        """
        Create a complete quote from a recommendation.

        Raises:
            QuoteRejected: If the safety gate blocks the quote.
            StoreError: If the store fails; nothing is persisted.
        """
        logger.info("Building formal quote from recommendation")

        info = client_info or ClientInfo()
        radio_count = recommendation.user_count or pricing.DEFAULT_RADIO_COUNT
        if not info.name:
            info = info.model_copy(update={
                'name': pricing.prospect_client_name(info.industry, radio_count),
            })

        async def add_items(session: StoreSession, quote_id: int) -> None:
            await self.add_parts_to_quote(session, quote_id, recommendation)

        return await self._assemble(
            info,
            recommendation.system_type,
            session_id,
            add_items,
            QuoteValidationInput(
                total_amount=0,
                user_count=radio_count,
                system_type=recommendation.system_type,
            ),
        )

    async def create_multi_site_quote(self, requirements: MultiSiteRequirements) -> QuoteDetail:
        """
        Create a quote for a deployment spanning several sites.

        Adds one repeater per site, radios for every user, inter-site linking
        when required, fallback accessories, multi-site labor and licensing.
        """
        req = requirements
        logger.info(
            f"Building {req.system_type} quote for {req.site_count} sites "
            f"({req.user_count} users)"
        )

        if req.is_multi_site:
            linking = 'inter-site communication' if req.requires_inter_site else 'independent operation'
            special = f"Multi-site system with {req.site_count} locations requiring {linking}"
        else:
            special = None

        info = ClientInfo(
            name=pricing.prospect_client_name(
                req.industry, req.user_count, req.site_count, req.is_multi_site
            ),
            industry=req.industry,
            user_count=req.user_count,
            special_requirements=special,
        )

        async def add_items(session: StoreSession, quote_id: int) -> None:
            await self.add_multi_site_parts(session, quote_id, req)

        return await self._assemble(
            info,
            req.system_type,
            req.session_id,
            add_items,
            QuoteValidationInput(
                total_amount=0,
                user_count=req.user_count,
                system_type=req.system_type,
                site_count=req.site_count,
                is_multi_site=req.is_multi_site,
            ),
        )

    async def create_system_quote(
        self,
        system_type: str,
        user_count: int,
        industry: str,
        session_id: Optional[str] = None,
    ) -> QuoteDetail:
        """Create a quote for a system type sized by user count."""
        logger.info(f"Building {system_type} quote for {user_count} users in {industry}")

        info = ClientInfo(
            name=pricing.prospect_client_name(industry, user_count),
            industry=industry,
            user_count=user_count,
        )

        async def add_items(session: StoreSession, quote_id: int) -> None:
            recommendation = await self.recommend_system(session, system_type, user_count)
            await self.add_parts_to_quote(session, quote_id, recommendation)

        return await self._assemble(
            info,
            system_type,
            session_id,
            add_items,
            QuoteValidationInput(
                total_amount=0, user_count=user_count, system_type=system_type
            ),
        )

    # =========================================================================
    # Pipeline
    # =========================================================================

    async def _assemble(
        self,
        client_info: ClientInfo,
        system_type: str,
        session_id: Optional[str],
        add_items: ItemWriter,
        figures: QuoteValidationInput,
    ) -> QuoteDetail:
        started = time.perf_counter()
        validation = None

        async with self.store.session() as session:
            try:
                async with session.transaction():
                    client = await self.create_or_find_client(session, client_info)
                    quote_id, quote_number = await self.create_quote_record(
                        session, client.id, system_type, session_id
                    )
                    await add_items(session, quote_id)
                    totals = await self.totals.calculate_quote_totals(quote_id, session=session)

                    if self.validator is not None:
                        figures = figures.model_copy(update={'total_amount': totals.total_amount})
                        validation = self.validator.evaluate(session_id, figures)
                        if not validation.is_valid:
                            raise QuoteRejected(validation)
            except QuoteRejected as e:
                logger.warning(
                    f"Quote rejected by safety validation: {e.result.error_kinds}"
                )
                if self.monitor is not None:
                    # One critical alert per rejection, sent by the validator when it can
                    alerted = self.validator.alerts is not None
                    for error in e.result.errors:
                        self.monitor.track_validation_failure(
                            error.severity, error.message, alert=not alerted
                        )
                raise

            quote = await self.get_complete_quote(quote_id, session=session)
            quote.validation = validation

            if session_id:
                await self._record_interaction(session, session_id, quote_id)

        elapsed_ms = (time.perf_counter() - started) * 1000
        if self.monitor is not None:
            self.monitor.track_quote_generated(
                figures.model_copy(update={'total_amount': quote.total_amount}),
                elapsed_ms,
            )

        logger.info(f"Quote #{quote_number} created: ${quote.total_amount:,.2f}")
        return quote

    async def create_or_find_client(self, session: StoreSession, info: ClientInfo) -> Client:
        """Return the (name, industry) client, creating it on first use."""
        name = info.name or pricing.prospect_client_name(info.industry, info.user_count)

        existing = await session.find_client(name, info.industry)
        if existing is not None:
            logger.info(f"Using existing client: {existing.name}")
            return existing

        client, inserted = await session.upsert_client(name, info)
        if inserted:
            logger.info(f"Created new client: {client.name}")
        else:
            logger.info(f"Client created concurrently, using: {client.name}")
        return client

    def generate_quote_number(self) -> str:
        return pricing.format_quote_number(self._today(), secrets.randbelow(1000))

    async def create_quote_record(
        self,
        session: StoreSession,
        client_id: int,
        system_type: Optional[str],
        session_id: Optional[str],
    ) -> Tuple[int, str]:
        """
        Insert the quote shell in draft status.

        Each attempt runs in a savepoint so a quote-number collision can be
        retried with a fresh number without aborting the transaction.

        Returns:
            Tuple of (quote_id, quote_number).
        """
        system_type = system_type or 'Conventional'
        notes = f"Generated from AI session: {session_id}" if session_id else 'AI Generated Quote'

        for attempt in range(1, MAX_QUOTE_NUMBER_ATTEMPTS + 1):
            quote_number = self.generate_quote_number()
            try:
                async with session.transaction():
                    quote_id = await session.insert_quote(
                        quote_number, client_id, system_type, notes
                    )
            except StoreError as e:
                if not is_unique_violation(e):
                    raise
                logger.warning(
                    f"Quote number {quote_number} already taken "
                    f"(attempt {attempt}/{MAX_QUOTE_NUMBER_ATTEMPTS})"
                )
                continue

            logger.info(f"Created quote record: {quote_number}")
            return quote_id, quote_number

        raise StoreError(
            f"Could not allocate a unique quote number after {MAX_QUOTE_NUMBER_ATTEMPTS} attempts"
        )

    async def _record_interaction(
        self, session: StoreSession, session_id: str, quote_id: int
    ) -> None:
        try:
            await session.insert_interaction(session_id, QUOTE_INTENT, quote_id)
        except StoreError as e:
            logger.warning(f"Could not record interaction for session {session_id}: {e}")

    # =========================================================================
    # Catalog Selection
    # =========================================================================

    async def recommend_system(
        self,
        session: StoreSession,
        system_type: str,
        user_count: int,
        frequency_band: str = 'UHF',
    ) -> Recommendation:
        """
        Build a recommendation from the catalog.

        Picks the cheapest repeater for the system type (any repeater when
        none match) in the quantity the user count needs. Radios are left
        unset so assembly uses the fallback radio selection.
        """
        repeater = await self.select_repeater(session, system_type)
        repeaters = None
        if repeater is not None:
            repeaters = PartRecommendation(
                recommended=RecommendedPart(sku=repeater.sku, name=repeater.name),
                quantity=pricing.repeaters_needed(user_count),
            )

        return Recommendation(
            system_type=system_type,
            user_count=user_count,
            frequency_band=frequency_band,
            repeaters=repeaters,
        )

    async def select_repeater(self, session: StoreSession, system_type: str) -> Optional[Part]:
        repeater = await session.cheapest_part(pricing.REPEATER_CATEGORY, system_type=system_type)
        if repeater is None:
            logger.warning(f"No {system_type} repeaters found, trying any repeater")
            repeater = await session.cheapest_part(pricing.REPEATER_CATEGORY)
        return repeater

    async def select_radio(self, session: StoreSession, frequency_band: str = 'UHF') -> Optional[Part]:
        """Cheapest portable radio in the band, widened to any band."""
        radio = await session.cheapest_part(pricing.RADIO_CATEGORY, frequency_band=frequency_band)
        if radio is None:
            logger.warning(f"No {frequency_band} radios found, trying any frequency")
            radio = await session.cheapest_part(pricing.RADIO_CATEGORY)
        return radio

    # =========================================================================
    # Line Items
    # =========================================================================

    async def add_parts_to_quote(
        self,
        session: StoreSession,
        quote_id: int,
        recommendation: Recommendation,
    ) -> None:
        rec = recommendation

        repeater_count = rec.repeaters.quantity if rec.repeaters else 0
        if rec.repeaters and rec.repeaters.recommended:
            await self.add_part_to_quote(
                session,
                quote_id,
                rec.repeaters.recommended.sku,
                rec.repeaters.quantity,
                'Repeater System - Provides wide area coverage',
            )

        radio_count = rec.user_count or pricing.DEFAULT_RADIO_COUNT
        if rec.radios and rec.radios.recommended:
            radio_sku = rec.radios.recommended.sku
            await self.add_part_to_quote(
                session, quote_id, radio_sku, radio_count, f"Portable radios for {radio_count} users"
            )
            await self.add_standard_accessories(session, quote_id, radio_sku, radio_count)
        else:
            await self.add_fallback_radios(session, quote_id, radio_count, rec.frequency_band)

        await self.add_installation_labor(session, quote_id, repeater_count, rec.user_count or 0)
        await self.add_licensing(session, quote_id)

    async def add_multi_site_parts(
        self,
        session: StoreSession,
        quote_id: int,
        req: MultiSiteRequirements,
    ) -> None:
        repeater = await self.select_repeater(session, req.system_type)
        if repeater is not None:
            await self.add_part_to_quote(
                session,
                quote_id,
                repeater.sku,
                req.site_count,
                f"Repeater systems - 1 per location ({req.site_count} total)",
            )
        else:
            logger.warning("No repeaters in catalog, multi-site quote has no repeater line")

        users_per_site = req.users_per_site or math.ceil(req.user_count / req.site_count)
        radio = await self.select_radio(session)
        if radio is not None:
            await self.add_part_to_quote(
                session,
                quote_id,
                radio.sku,
                req.user_count,
                f"Portable radios - {users_per_site} per location x {req.site_count} locations",
            )
        else:
            logger.warning("No portable radios in catalog, multi-site quote has no radio line")

        if req.requires_inter_site:
            await self.add_inter_site_communication(
                session, quote_id, req.site_count, req.system_type
            )

        await self.add_standard_accessory_fallback(session, quote_id, req.user_count)
        await self.add_multi_site_installation_labor(
            session, quote_id, req.site_count, req.requires_inter_site
        )
        await self.add_multi_site_licensing(
            session, quote_id, req.site_count, req.requires_inter_site
        )

    async def add_part_to_quote(
        self,
        session: StoreSession,
        quote_id: int,
        sku: str,
        quantity: int,
        notes: str = '',
    ) -> bool:
        """
        Add a catalog part; a missing SKU is logged and skipped.

        Returns:
            True if the line item was written.
        """
        try:
            part = await self._require_part(session, sku)
        except PartNotFound as e:
            logger.warning(f"{e}, skipping line item")
            return False

        total_price = part.price * quantity
        labor_hours = part.labor_hours * quantity
        await session.insert_item(
            quote_id, part.id, part.sku, quantity, part.price, total_price, labor_hours, notes
        )
        logger.info(f"Added: {quantity}x {part.name} - ${total_price:,.2f}")
        return True

    async def _require_part(self, session: StoreSession, sku: str) -> Part:
        part = await session.find_part(sku)
        if part is None:
            raise PartNotFound(sku)
        return part

    async def add_service_item(
        self,
        session: StoreSession,
        quote_id: int,
        amount: float,
        notes: str,
        labor_hours: float = 0.0,
    ) -> None:
        await session.insert_item(quote_id, None, None, 1, amount, amount, labor_hours, notes)
        logger.info(f"Added service item: {notes} - ${amount:,.2f}")

    async def add_fallback_radios(
        self,
        session: StoreSession,
        quote_id: int,
        radio_count: int,
        frequency_band: str = 'UHF',
    ) -> None:
        radio = await self.select_radio(session, frequency_band)
        if radio is None:
            logger.warning("No portable radios in catalog, quote has no radio line")
            return

        await self.add_part_to_quote(
            session, quote_id, radio.sku, radio_count, f"{radio_count}x {radio.name}"
        )
        await self.add_standard_accessory_fallback(session, quote_id, radio_count)

    async def add_standard_accessories(
        self,
        session: StoreSession,
        quote_id: int,
        radio_sku: str,
        radio_count: int,
    ) -> None:
        """
        Add battery, charger and belt clip compatible with the radio.

        Falls back to the standard accessory set when the compatibility lookup
        fails or finds nothing.
        """
        try:
            # Savepoint so a failed lookup leaves the outer transaction usable
            async with session.transaction():
                accessories = await session.compatible_accessories(radio_sku)
        except StoreError as e:
            logger.warning(f"Compatible accessory lookup failed, using fallback: {e}")
            await self.add_standard_accessory_fallback(session, quote_id, radio_count)
            return

        if not accessories:
            logger.info("No compatible accessories found, adding standard items")
            await self.add_standard_accessory_fallback(session, quote_id, radio_count)
            return

        battery = _first(a for a in accessories if a.subcategory == 'Batteries' and a.inventory_qty > 0)
        if battery is not None:
            await self.add_part_to_quote(
                session, quote_id, battery.sku, radio_count, 'Replacement battery for each radio'
            )

        charger = _first(a for a in accessories if a.subcategory == 'Chargers' and a.inventory_qty > 0)
        if charger is not None:
            await self.add_part_to_quote(
                session, quote_id, charger.sku, pricing.charger_quantity(radio_count), 'Desktop chargers'
            )

        clip = _first(
            a for a in accessories
            if 'belt' in a.name.lower() or 'clip' in a.name.lower()
        )
        if clip is not None:
            await self.add_part_to_quote(
                session, quote_id, clip.sku, radio_count, 'Belt clip for each radio'
            )

    async def add_standard_accessory_fallback(
        self,
        session: StoreSession,
        quote_id: int,
        radio_count: int,
    ) -> None:
        await self.add_part_to_quote(
            session, quote_id, pricing.FALLBACK_BATTERY_SKU, radio_count,
            'Li-ion battery for each radio',
        )
        await self.add_part_to_quote(
            session, quote_id, pricing.FALLBACK_CHARGER_SKU,
            pricing.charger_quantity(radio_count), 'Desktop chargers',
        )
        await self.add_part_to_quote(
            session, quote_id, pricing.FALLBACK_BELT_CLIP_SKU, radio_count,
            'Belt clip for each radio',
        )

    async def add_installation_labor(
        self,
        session: StoreSession,
        quote_id: int,
        repeater_count: int,
        user_count: int,
    ) -> None:
        hours = pricing.installation_hours(repeater_count, user_count)
        cost = pricing.labor_cost(hours, self.labor_rate)
        await self.add_service_item(
            session,
            quote_id,
            cost,
            f"Installation and programming ({hours} hours @ ${self.labor_rate:g}/hour)",
            labor_hours=hours,
        )

    async def add_licensing(self, session: StoreSession, quote_id: int) -> None:
        await self.add_service_item(
            session, quote_id, pricing.licensing_cost(), 'FCC licensing and frequency coordination'
        )

    async def add_inter_site_communication(
        self,
        session: StoreSession,
        quote_id: int,
        site_count: int,
        system_type: str,
    ) -> None:
        await self.add_service_item(
            session,
            quote_id,
            pricing.inter_site_linking_cost(site_count, system_type),
            f"{system_type} inter-site communication - Linking {site_count} locations",
        )

    async def add_multi_site_installation_labor(
        self,
        session: StoreSession,
        quote_id: int,
        site_count: int,
        requires_inter_site: bool,
    ) -> None:
        hours = pricing.multi_site_installation_hours(site_count, requires_inter_site)
        await self.add_service_item(
            session,
            quote_id,
            pricing.labor_cost(hours, self.labor_rate),
            f"Multi-site installation: {site_count} locations, {hours} hours total",
            labor_hours=hours,
        )

    async def add_multi_site_licensing(
        self,
        session: StoreSession,
        quote_id: int,
        site_count: int,
        requires_inter_site: bool,
    ) -> None:
        notes = f"FCC licensing: {site_count} locations"
        if requires_inter_site:
            notes += ' with inter-site coordination'
        await self.add_service_item(
            session, quote_id, pricing.licensing_cost(site_count, requires_inter_site), notes
        )

    # =========================================================================
    # Read Paths
    # =========================================================================

    async def get_complete_quote(
        self,
        quote_id: int,
        session: Optional[StoreSession] = None,
    ) -> QuoteDetail:
        """
        Load a quote with client fields and line items.

        Raises:
            QuoteNotFound: If the quote does not exist.
        """
        if session is None:
            async with self.store.session() as own:
                return await self.get_complete_quote(quote_id, session=own)

        quote = await session.quote_header(quote_id)
        if quote is None:
            raise QuoteNotFound(quote_id)
        quote.line_items = await session.quote_items(quote_id)
        return quote

    async def list_quotes(self, limit: int = 50, offset: int = 0) -> List[QuoteDetail]:
        async with self.store.session() as session:
            return await session.list_quotes(limit, offset)

    def format_quote_for_display(self, quote: QuoteDetail, tax_rate: float) -> str:
        """Render a hydrated quote as plain text."""
        created = quote.created_at.strftime('%m/%d/%Y') if quote.created_at else ''
        lines = [
            f"FORMAL QUOTE #{quote.quote_number}",
            '',
            f"Client: {quote.client_name}",
            f"Industry: {quote.industry}",
            f"System Type: {quote.system_type}",
            f"Date: {created}",
            '',
            'LINE ITEMS:',
            '=' * 60,
        ]

        for index, item in enumerate(quote.line_items, start=1):
            name = item.part_name or item.notes or 'Service Item'
            lines.append(f"{index:2d}. {name}")
            lines.append(
                f"    Qty: {item.quantity} x ${item.unit_price:,.2f} = ${item.total_price:,.2f}"
            )
            if item.sku:
                lines.append(f"    SKU: {item.sku}")
            if item.labor_hours > 0:
                lines.append(f"    Labor: {item.labor_hours:g} hours")
            lines.append('')

        lines.extend([
            '-' * 60,
            f"Subtotal (Parts): ${quote.total_parts:,.2f}",
            f"Labor: ${quote.total_labor:,.2f}",
            f"Tax ({tax_rate * 100:.0f}%): ${quote.total_tax:,.2f}",
            f"TOTAL: ${quote.total_amount:,.2f}",
            '',
        ])

        radios = _first(
            i for i in quote.line_items if i.category == pricing.RADIO_CATEGORY
        )
        if radios is not None and radios.quantity > 1:
            lines.append(f"Price per user: ${quote.total_amount / radios.quantity:,.2f}")
            lines.append('')

        lines.append(
            'This quote is valid for 30 days and includes installation, '
            'programming, and basic training.'
        )
        return '\n'.join(lines)


def _first(iterable):
    return next(iter(iterable), None)

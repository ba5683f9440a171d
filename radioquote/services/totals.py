"""
Quote totals calculation.

Sums a quote's line items into parts, labor, tax and grand total and writes
all four back in a single UPDATE. The quote row is locked first so only one
writer computes totals per quote at a time; sums use math.fsum over items in
id order and amounts are rounded to cents, so re-running on an unchanged item
set writes identical values.

Labor is charged as sum(labor_hours) x labor_rate on top of the items'
total_price. Installation labor line items carry both a total_price and their
hours, so their cost appears in total_parts as well as total_labor.
"""

import logging
import math
from typing import List, Optional, Tuple

from radioquote.core.errors import QuoteNotFound
from radioquote.models.schemas import QuoteTotals
from radioquote.services.store import QuoteStore, StoreSession

logger = logging.getLogger(__name__)


def compute_totals(
    amounts: List[Tuple[float, float]],
    labor_rate: float,
    tax_rate: float,
) -> QuoteTotals:
    """
    Aggregate (total_price, labor_hours) pairs into quote totals.

    Args:
        amounts: Sequence of (total_price, labor_hours) tuples.
        labor_rate: Dollars per labor hour.
        tax_rate: Tax applied to parts + labor.

    Returns:
        QuoteTotals rounded to cents.
    """
    total_parts = math.fsum(price for price, _ in amounts)
    total_hours = math.fsum(hours for _, hours in amounts)
    total_labor = total_hours * labor_rate
    subtotal = total_parts + total_labor
    total_tax = subtotal * tax_rate

    return QuoteTotals(
        total_parts=round(total_parts, 2),
        total_labor=round(total_labor, 2),
        total_tax=round(total_tax, 2),
        total_amount=round(subtotal + total_tax, 2),
    )


class TotalsCalculator:
    """Recomputes and persists quote totals."""

    def __init__(self, store: QuoteStore, labor_rate: float, tax_rate: float):
        self.store = store
        self.labor_rate = labor_rate
        self.tax_rate = tax_rate

    async def calculate_quote_totals(
        self,
        quote_id: int,
        session: Optional[StoreSession] = None,
    ) -> QuoteTotals:
        """
        Recompute totals for ``quote_id``.

        When ``session`` is given the work joins the caller's transaction;
        otherwise a transaction of its own is opened.

        Raises:
            QuoteNotFound: If the quote does not exist.
            StoreError: On store failure.
        """
        if session is not None:
            async with session.transaction():
                return await self._calculate(session, quote_id)

        async with self.store.transaction() as own:
            return await self._calculate(own, quote_id)

    async def _calculate(self, session: StoreSession, quote_id: int) -> QuoteTotals:
        if not await session.lock_quote(quote_id):
            raise QuoteNotFound(quote_id)

        amounts = await session.item_amounts(quote_id)
        totals = compute_totals(amounts, self.labor_rate, self.tax_rate)
        await session.update_totals(quote_id, totals)

        logger.info(f"Quote {quote_id} totals calculated: ${totals.total_amount:,.2f}")
        return totals

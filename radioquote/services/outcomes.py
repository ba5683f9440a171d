"""
Outcome recording: stores a won/lost report against a quote and moves the
quote to the matching status in one transaction.

Learning from the outcome is scheduled by the router as a background task so
the request returns as soon as the outcome row is committed.
"""

import logging

from radioquote.core.errors import QuoteNotFound
from radioquote.models.enums import OutcomeType, QuoteStatus
from radioquote.models.schemas import OutcomeRecorded, OutcomeReport
from radioquote.services.store import QuoteStore

logger = logging.getLogger(__name__)

OUTCOME_STATUS = {
    OutcomeType.WON: QuoteStatus.WON,
    OutcomeType.LOST: QuoteStatus.LOST,
}


class OutcomeRecorder:
    """Persists quote outcomes."""

    def __init__(self, store: QuoteStore):
        self.store = store

    async def record_quote_outcome(
        self,
        quote_id: int,
        outcome: OutcomeReport,
        learning_scheduled: bool = True,
    ) -> OutcomeRecorded:
        """
        Insert the outcome row and update the quote status.

        Raises:
            QuoteNotFound: No quote with this id.
            StoreError: The store rejected the write; nothing is committed.
        """
        status = OUTCOME_STATUS[outcome.outcome]

        async with self.store.transaction() as session:
            if not await session.lock_quote(quote_id):
                raise QuoteNotFound(quote_id)

            outcome_id = await session.insert_outcome(quote_id, outcome)
            await session.set_quote_status(quote_id, status)

        logger.info(
            f"Recorded outcome #{outcome_id} for quote #{quote_id}: {outcome.outcome.value}"
        )
        return OutcomeRecorded(
            outcome_id=outcome_id,
            quote_id=quote_id,
            status=status,
            learning_scheduled=learning_scheduled,
        )

"""
Relational store access for the quote engine.

This module wraps the asyncpg pool behind two small classes:

- QuoteStore: owns the pool reference and the per-call timeout, and hands out
  sessions (one pooled connection each).
- StoreSession: typed data-access methods over a single connection. Every call
  passes ``timeout=`` and every driver, network or timeout failure is re-raised
  as ``StoreError`` so services handle one exception type.

Transactions nest: ``session.transaction()`` opened inside another transaction
becomes a savepoint (asyncpg semantics), which the quote assembler uses to
retry a colliding quote number without losing earlier writes.

Usage:
    store = QuoteStore(pool, timeout=settings.store_timeout_seconds)

    async with store.session() as session:
        part = await session.find_part("PMNN4434")

    async with store.transaction() as session:
        quote_id = await session.insert_quote(number, client.id, "Conventional", None)
        await session.insert_item(...)
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Tuple

import asyncpg
from asyncpg import Pool

from radioquote.core.errors import StoreError
from radioquote.models.enums import QuoteStatus
from radioquote.models.schemas import (
    Client,
    ClientInfo,
    LearningPattern,
    LineItem,
    OutcomeReport,
    Part,
    QuoteDetail,
    QuoteTotals,
)
from radioquote.sql import learning_queries as lq
from radioquote.sql import quote_queries as qq

logger = logging.getLogger(__name__)

# Failures that mean "the store is unavailable or rejected the call"
STORE_ERRORS = (
    asyncpg.PostgresError,
    asyncpg.InterfaceError,
    OSError,
    asyncio.TimeoutError,
)


def _decode_json(value: Any) -> Any:
    """asyncpg returns json/jsonb columns as text unless a codec is set."""
    if isinstance(value, str):
        return json.loads(value)
    return value


def is_unique_violation(error: StoreError) -> bool:
    """True when the store rejected a write on a UNIQUE constraint."""
    return isinstance(error.cause, asyncpg.UniqueViolationError)


def _rows_affected(status: str) -> int:
    """Parse the row count out of a command status such as 'UPDATE 1'."""
    try:
        return int(status.split()[-1])
    except (AttributeError, IndexError, ValueError):
        return 0


class StoreSession:
    """Data-access methods bound to one pooled connection."""

    def __init__(self, conn: asyncpg.Connection, timeout: float):
        self._conn = conn
        self._timeout = timeout

    # =========================================================================
    # Low-level helpers
    # =========================================================================

    async def _run(self, op: str, query: str, *args: Any) -> Any:
        method = getattr(self._conn, op)
        try:
            return await method(query, *args, timeout=self._timeout)
        except STORE_ERRORS as e:
            raise StoreError(f"Store call failed: {e}", cause=e) from e

    async def fetch(self, query: str, *args: Any) -> List[asyncpg.Record]:
        return await self._run('fetch', query, *args)

    async def fetchrow(self, query: str, *args: Any) -> Optional[asyncpg.Record]:
        return await self._run('fetchrow', query, *args)

    async def execute(self, query: str, *args: Any) -> str:
        return await self._run('execute', query, *args)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator['StoreSession']:
        """
        Run the block in a transaction, or a savepoint if one is already open.

        Any exception leaving the block rolls the writes back.
        """
        try:
            async with self._conn.transaction():
                yield self
        except STORE_ERRORS as e:
            raise StoreError(f"Transaction failed: {e}", cause=e) from e

    # =========================================================================
    # Catalog
    # =========================================================================

    async def find_part(self, sku: str) -> Optional[Part]:
        """Look up a SKU in parts_enhanced, then in parts."""
        row = await self.fetchrow(qq.PART_BY_SKU_ENHANCED, sku)
        if row is None:
            row = await self.fetchrow(qq.PART_BY_SKU, sku)
        return Part.model_validate(dict(row)) if row else None

    async def cheapest_part(
        self,
        category: str,
        frequency_band: Optional[str] = None,
        system_type: Optional[str] = None,
    ) -> Optional[Part]:
        row = await self.fetchrow(qq.CHEAPEST_PART, category, frequency_band, system_type)
        return Part.model_validate(dict(row)) if row else None

    async def compatible_accessories(self, radio_sku: str) -> List[Part]:
        rows = await self.fetch(qq.COMPATIBLE_ACCESSORIES, radio_sku)
        return [Part.model_validate(dict(r)) for r in rows]

    async def list_parts(self) -> List[Part]:
        rows = await self.fetch(qq.LIST_PARTS)
        return [Part.model_validate(dict(r)) for r in rows]

    async def get_part(self, part_id: int) -> Optional[Part]:
        row = await self.fetchrow(qq.PART_BY_ID, part_id)
        return Part.model_validate(dict(row)) if row else None

    # =========================================================================
    # Clients
    # =========================================================================

    async def find_client(self, name: str, industry: str) -> Optional[Client]:
        row = await self.fetchrow(qq.CLIENT_BY_NAME_INDUSTRY, name, industry)
        return Client.model_validate(dict(row)) if row else None

    async def upsert_client(self, name: str, info: ClientInfo) -> Tuple[Client, bool]:
        """
        Insert the client or return the existing (name, industry) row.

        Returns:
            Tuple of the client and whether this call created it.
        """
        row = await self.fetchrow(
            qq.UPSERT_CLIENT,
            name,
            info.industry,
            info.contact_person,
            info.email,
            info.phone,
            info.address,
            info.current_system,
            info.coverage_area,
            info.user_count,
            info.special_requirements or '',
        )
        data = dict(row)
        inserted = bool(data.pop('inserted', False))
        return Client.model_validate(data), inserted

    async def get_client(self, client_id: int) -> Optional[Client]:
        row = await self.fetchrow(qq.CLIENT_BY_ID, client_id)
        return Client.model_validate(dict(row)) if row else None

    async def list_clients(self) -> List[Client]:
        rows = await self.fetch(qq.LIST_CLIENTS)
        return [Client.model_validate(dict(r)) for r in rows]

    # =========================================================================
    # Quotes
    # =========================================================================

    async def insert_quote(
        self,
        quote_number: str,
        client_id: int,
        system_type: str,
        notes: Optional[str],
    ) -> int:
        row = await self.fetchrow(qq.INSERT_QUOTE, quote_number, client_id, system_type, notes)
        return row['id']

    async def insert_item(
        self,
        quote_id: int,
        part_id: Optional[int],
        sku: Optional[str],
        quantity: int,
        unit_price: float,
        total_price: float,
        labor_hours: float,
        notes: Optional[str],
    ) -> None:
        await self.execute(
            qq.INSERT_QUOTE_ITEM,
            quote_id,
            part_id,
            sku,
            quantity,
            unit_price,
            total_price,
            labor_hours,
            notes,
        )

    async def quote_header(self, quote_id: int) -> Optional[QuoteDetail]:
        row = await self.fetchrow(qq.QUOTE_HEADER, quote_id)
        return QuoteDetail.model_validate(dict(row)) if row else None

    async def quote_items(self, quote_id: int) -> List[LineItem]:
        rows = await self.fetch(qq.QUOTE_ITEMS, quote_id)
        return [LineItem.model_validate(dict(r)) for r in rows]

    async def list_quotes(self, limit: int = 50, offset: int = 0) -> List[QuoteDetail]:
        rows = await self.fetch(qq.LIST_QUOTES, limit, offset)
        return [QuoteDetail.model_validate(dict(r)) for r in rows]

    async def lock_quote(self, quote_id: int) -> bool:
        """Take the row lock on a quote; False when the quote does not exist."""
        row = await self.fetchrow(qq.LOCK_QUOTE, quote_id)
        return row is not None

    async def item_amounts(self, quote_id: int) -> List[Tuple[float, float]]:
        rows = await self.fetch(qq.ITEM_AMOUNTS, quote_id)
        return [(float(r['total_price']), float(r['labor_hours'])) for r in rows]

    async def update_totals(self, quote_id: int, totals: QuoteTotals) -> None:
        await self.execute(
            qq.UPDATE_QUOTE_TOTALS,
            quote_id,
            totals.total_parts,
            totals.total_labor,
            totals.total_tax,
            totals.total_amount,
        )

    async def set_quote_status(self, quote_id: int, status: QuoteStatus) -> bool:
        result = await self.execute(qq.UPDATE_QUOTE_STATUS, quote_id, status.value)
        return _rows_affected(result) > 0

    # =========================================================================
    # Outcomes & Interactions
    # =========================================================================

    async def insert_outcome(self, quote_id: int, outcome: OutcomeReport) -> int:
        issues = outcome.issues_encountered
        if isinstance(issues, list):
            issues = json.dumps(issues)

        row = await self.fetchrow(
            qq.INSERT_OUTCOME,
            quote_id,
            outcome.outcome.value,
            outcome.outcome_reason,
            outcome.customer_feedback,
            outcome.actual_installation_cost,
            outcome.actual_installation_time,
            outcome.performance_rating,
            issues,
            outcome.lessons_learned,
            outcome.competitor_product,
            outcome.competitor_price,
            outcome.follow_up_opportunities,
        )
        return row['id']

    async def insert_interaction(
        self,
        session_id: str,
        intent: str,
        quote_id: Optional[int],
    ) -> None:
        await self.execute(qq.INSERT_INTERACTION, session_id, intent, quote_id)

    async def update_latest_interaction(
        self,
        session_id: str,
        satisfaction: int,
        follow_up_required: bool,
    ) -> Optional[Dict[str, Any]]:
        row = await self.fetchrow(
            lq.UPDATE_LATEST_INTERACTION, session_id, satisfaction, follow_up_required
        )
        return dict(row) if row else None

    # =========================================================================
    # Learning
    # =========================================================================

    async def learning_quote(self, quote_id: int) -> Optional[Dict[str, Any]]:
        row = await self.fetchrow(lq.LEARNING_QUOTE, quote_id)
        return dict(row) if row else None

    async def load_accumulator(self, pattern_type: str, key: str) -> Optional[Dict[str, Any]]:
        row = await self.fetchrow(lq.SELECT_ACCUMULATOR, pattern_type, key)
        return _decode_json(row['state']) if row else None

    async def save_accumulator(self, pattern_type: str, key: str, state: Dict[str, Any]) -> None:
        await self.execute(lq.UPSERT_ACCUMULATOR, pattern_type, key, json.dumps(state))

    async def accumulators_by_type(
        self, pattern_types: Sequence[str]
    ) -> List[Tuple[str, str, Dict[str, Any]]]:
        rows = await self.fetch(lq.SELECT_ACCUMULATORS_BY_TYPE, list(pattern_types))
        return [(r['pattern_type'], r['pattern_key'], _decode_json(r['state'])) for r in rows]

    async def upsert_pattern(self, pattern: LearningPattern) -> None:
        await self.execute(
            lq.UPSERT_PATTERN,
            pattern.pattern_type.value,
            pattern.pattern_key,
            pattern.pattern_data.model_dump_json(),
            pattern.confidence_score,
            pattern.success_rate,
            pattern.sample_size,
            pattern.industry,
            pattern.user_count_range,
        )

    async def relevant_patterns(
        self,
        min_confidence: float,
        min_sample_size: int,
        industry: Optional[str],
        user_count_range: str,
        limit: int,
    ) -> List[LearningPattern]:
        rows = await self.fetch(
            lq.RELEVANT_PATTERNS,
            min_confidence,
            min_sample_size,
            industry,
            user_count_range,
            limit,
        )
        patterns = []
        for r in rows:
            data = dict(r)
            data['pattern_data'] = _decode_json(data['pattern_data'])
            patterns.append(LearningPattern.model_validate(data))
        return patterns


class QuoteStore:
    """Hands out StoreSessions over the shared asyncpg pool."""

    def __init__(self, pool: Pool, timeout: float):
        self._pool = pool
        self.timeout = timeout

    @asynccontextmanager
    async def session(self) -> AsyncIterator[StoreSession]:
        try:
            async with self._pool.acquire(timeout=self.timeout) as conn:
                yield StoreSession(conn, self.timeout)
        except STORE_ERRORS as e:
            raise StoreError(f"Could not acquire store connection: {e}", cause=e) from e

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[StoreSession]:
        """Acquire a connection and open a transaction on it."""
        async with self.session() as session:
            async with session.transaction():
                yield session

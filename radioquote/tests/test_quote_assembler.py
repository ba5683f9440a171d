"""
Pytest test module for quote assembly (radioquote.services.quote_assembler).

Runs the whole pipeline against the in-memory store from conftest:
client resolution, quote numbering, line items, totals, the safety gate and
rollback.

Test Classes:
- TestRecommendationQuotes: recommendation-driven assembly and accessories
- TestSystemQuotes: catalog-driven repeater and radio selection
- TestMultiSiteQuotes: per-site repeaters, linking, labor and licensing
- TestSafetyGate: rejection, rollback and monitor tracking
- TestQuoteNumbers: collision retry
- TestReadPaths: hydration and plain-text display
"""

from datetime import date
from unittest.mock import Mock, patch

import pytest

from radioquote.core.errors import QuoteNotFound, QuoteRejected, StoreError
from radioquote.models.schemas import (
    ClientInfo,
    MultiSiteRequirements,
    PartRecommendation,
    Recommendation,
    RecommendedPart,
)
from radioquote.services.production_monitor import ProductionMonitor
from radioquote.services.quote_assembler import QuoteAssembler
from radioquote.services.safety_validator import SafetyValidator
from radioquote.services.totals import TotalsCalculator
from radioquote.tests.conftest import FakeDatabase, FakeStore

pytestmark = pytest.mark.asyncio

LABOR_RATE = 85.0
TAX_RATE = 0.08


def _assembler(store: FakeStore, validator=None, monitor=None) -> QuoteAssembler:
    totals = TotalsCalculator(store, labor_rate=LABOR_RATE, tax_rate=TAX_RATE)
    return QuoteAssembler(
        store,
        totals,
        labor_rate=LABOR_RATE,
        validator=validator,
        monitor=monitor,
        today=lambda: date(2026, 3, 14),
    )


def _recommendation(radio_sku: str = 'R7-UHF', user_count: int = 40) -> Recommendation:
    return Recommendation(
        system_type='Capacity Plus',
        user_count=user_count,
        repeaters=PartRecommendation(recommended=RecommendedPart(sku='SLR5700'), quantity=1),
        radios=PartRecommendation(recommended=RecommendedPart(sku=radio_sku)),
    )


def _skus(quote) -> list:
    return [item.sku for item in quote.line_items]


class TestRecommendationQuotes:
    """create_quote_from_recommendation end to end."""

    async def test_line_items_and_totals(self, fake_store: FakeStore) -> None:
        # Arrange
        assembler = _assembler(fake_store)

        # Act
        quote = await assembler.create_quote_from_recommendation(
            _recommendation(), ClientInfo(name='Acme Security', industry='Security', user_count=40)
        )

        # Assert: repeater, radios, compatible accessories, labor, licensing
        assert _skus(quote) == ['SLR5700', 'R7-UHF', 'PMNN4491', 'PMLN7101', 'PMLN7128', None, None]
        quantities = [item.quantity for item in quote.line_items]
        assert quantities == [1, 40, 40, 8, 40, 1, 1]

        labor = quote.line_items[5]
        assert labor.total_price == 1700.0
        assert labor.labor_hours == 20
        assert quote.line_items[6].total_price == 800.0

        # 34,260 parts + 44h x $85 labor + 8% tax
        assert quote.total_parts == 34260.0
        assert quote.total_labor == 3740.0
        assert quote.total_tax == pytest.approx(3040.0)
        assert quote.total_amount == pytest.approx(41040.0)
        assert quote.total_amount == pytest.approx(
            round((quote.total_parts + quote.total_labor) * (1 + TAX_RATE), 2)
        )

    async def test_quote_header_fields(self, fake_store: FakeStore) -> None:
        assembler = _assembler(fake_store)

        quote = await assembler.create_quote_from_recommendation(
            _recommendation(), ClientInfo(name='Acme Security', industry='Security'), 'sess-1'
        )

        assert quote.quote_number.startswith('Q260314-')
        assert len(quote.quote_number) == len('Q260314-000')
        assert quote.status.value == 'draft'
        assert quote.client_name == 'Acme Security'
        assert quote.notes == 'Generated from AI session: sess-1'

    async def test_prospect_client_created_once(
        self, fake_store: FakeStore, fake_db: FakeDatabase
    ) -> None:
        assembler = _assembler(fake_store)

        first = await assembler.create_quote_from_recommendation(_recommendation())
        second = await assembler.create_quote_from_recommendation(_recommendation())

        assert first.client_name == 'General - 40 Users'
        assert first.client_id == second.client_id
        assert len(fake_db.state['clients']) == 1

    async def test_missing_radio_sku_is_skipped(self, fake_store: FakeStore) -> None:
        assembler = _assembler(fake_store)

        quote = await assembler.create_quote_from_recommendation(_recommendation('NOPE-123'))

        assert 'NOPE-123' not in _skus(quote)
        # No compatibility rows, so the standard accessories are used
        assert {'PMNN4434', 'PMLN5188', 'PMLN4651'} <= set(_skus(quote))

    async def test_accessory_lookup_failure_uses_fallback(
        self, fake_store: FakeStore, fake_db: FakeDatabase
    ) -> None:
        fake_db.fail_on['compatible_accessories'] = OSError('connection reset')
        assembler = _assembler(fake_store)

        quote = await assembler.create_quote_from_recommendation(_recommendation())

        assert 'PMNN4491' not in _skus(quote)
        assert {'PMNN4434', 'PMLN5188', 'PMLN4651'} <= set(_skus(quote))

    async def test_out_of_stock_battery_not_added(
        self, fake_store: FakeStore, fake_db: FakeDatabase
    ) -> None:
        fake_db.enhanced = [
            p.model_copy(update={'inventory_qty': 0}) if p.sku == 'PMNN4491' else p
            for p in fake_db.enhanced
        ]
        assembler = _assembler(fake_store)

        quote = await assembler.create_quote_from_recommendation(_recommendation())

        assert 'PMNN4491' not in _skus(quote)
        assert 'PMLN7101' in _skus(quote)

    async def test_interaction_recorded_for_session(
        self, fake_store: FakeStore, fake_db: FakeDatabase
    ) -> None:
        assembler = _assembler(fake_store)

        quote = await assembler.create_quote_from_recommendation(
            _recommendation(), session_id='sess-9'
        )

        interactions = fake_db.state['interactions']
        assert len(interactions) == 1
        assert interactions[0]['session_id'] == 'sess-9'
        assert interactions[0]['quote_id'] == quote.id
        assert interactions[0]['intent_classification'] == 'quote_generation'

    async def test_store_failure_rolls_back_everything(
        self, fake_store: FakeStore, fake_db: FakeDatabase
    ) -> None:
        fake_db.fail_on['insert_item'] = OSError('connection reset')
        assembler = _assembler(fake_store)

        with pytest.raises(StoreError):
            await assembler.create_quote_from_recommendation(_recommendation())

        assert fake_db.state['quotes'] == {}
        assert fake_db.state['clients'] == []
        assert fake_db.state['items'] == []


class TestSystemQuotes:
    """create_system_quote picks parts from the catalog."""

    async def test_cheapest_matching_repeater_and_fallback_radios(
        self, fake_store: FakeStore
    ) -> None:
        assembler = _assembler(fake_store)

        quote = await assembler.create_system_quote('Capacity Plus', 40, 'Security')

        assert _skus(quote)[:2] == ['SLR5700', 'R7-UHF']
        assert {'PMNN4434', 'PMLN5188', 'PMLN4651'} <= set(_skus(quote))
        assert quote.client_name == 'Security - 40 Users'
        assert quote.total_amount == pytest.approx(39700.8)

    async def test_repeater_widens_to_any_system(self, fake_store: FakeStore) -> None:
        assembler = _assembler(fake_store)

        quote = await assembler.create_system_quote('Capacity Max', 40, 'Utilities')

        # No Capacity Max repeater, the cheapest repeater overall is used
        assert quote.line_items[0].sku == 'SLR5700'

    async def test_repeater_count_scales_with_users(self, fake_store: FakeStore) -> None:
        assembler = _assembler(fake_store)

        quote = await assembler.create_system_quote('Capacity Plus', 150, 'Education')

        assert quote.line_items[0].quantity == 2

    async def test_radio_widens_to_any_band(
        self, fake_store: FakeStore, fake_db: FakeDatabase
    ) -> None:
        fake_db.enhanced = [p for p in fake_db.enhanced if p.sku != 'R7-UHF']
        assembler = _assembler(fake_store)

        quote = await assembler.create_system_quote('Capacity Plus', 40, 'Security')

        assert 'CP100D-VHF' in _skus(quote)


class TestMultiSiteQuotes:
    """create_multi_site_quote line items."""

    async def test_multi_site_line_items(self, fake_store: FakeStore) -> None:
        # Arrange
        assembler = _assembler(fake_store)
        requirements = MultiSiteRequirements(
            system_type='IP Site Connect',
            user_count=90,
            industry='Manufacturing',
            site_count=3,
            requires_inter_site=True,
        )

        # Act
        quote = await assembler.create_multi_site_quote(requirements)

        # Assert
        repeater, radios = quote.line_items[0], quote.line_items[1]
        assert (repeater.sku, repeater.quantity) == ('SLR8000', 3)
        assert (radios.sku, radios.quantity) == ('R7-UHF', 90)
        assert 'Portable radios - 30 per location x 3 locations' == radios.notes

        services = {item.notes: item.total_price for item in quote.line_items if item.sku is None}
        assert services['IP Site Connect inter-site communication - Linking 3 locations'] == 8700.0
        assert services['Multi-site installation: 3 locations, 50 hours total'] == 4250.0
        assert services['FCC licensing: 3 locations with inter-site coordination'] == 1500.0

        assert quote.total_amount == pytest.approx(107433.0)
        assert quote.client_name == 'Manufacturing - 3 Locations (90 Users)'

    async def test_high_value_multi_site_goes_to_manager(
        self, fake_store: FakeStore, mock_alerts: Mock
    ) -> None:
        assembler = _assembler(fake_store, validator=SafetyValidator(alerts=mock_alerts))
        requirements = MultiSiteRequirements(
            system_type='IP Site Connect', user_count=90, site_count=3, requires_inter_site=True,
        )

        quote = await assembler.create_multi_site_quote(requirements)

        assert quote.validation.is_valid is True
        assert quote.validation.warning_kinds == ['HIGH_VALUE_QUOTE']
        mock_alerts.notify_manager.assert_called_once()

    async def test_without_inter_site_no_linking_line(self, fake_store: FakeStore) -> None:
        assembler = _assembler(fake_store)
        requirements = MultiSiteRequirements(
            system_type='IP Site Connect', user_count=40, site_count=2,
        )

        quote = await assembler.create_multi_site_quote(requirements)

        notes = [item.notes for item in quote.line_items]
        assert not any('inter-site communication' in (n or '') for n in notes)
        assert 'FCC licensing: 2 locations' in notes


class TestSafetyGate:
    """A blocked quote is rolled back and reported."""

    async def test_wrong_system_rejected_and_rolled_back(
        self, fake_store: FakeStore, fake_db: FakeDatabase, mock_alerts: Mock
    ) -> None:
        # Arrange
        monitor = ProductionMonitor()
        assembler = _assembler(
            fake_store, validator=SafetyValidator(alerts=mock_alerts), monitor=monitor
        )
        requirements = MultiSiteRequirements(
            system_type='Conventional', user_count=60, site_count=3,
        )

        # Act
        with pytest.raises(QuoteRejected) as exc_info:
            await assembler.create_multi_site_quote(requirements)

        # Assert
        assert 'WRONG_SYSTEM_FOR_MULTISITE' in exc_info.value.result.error_kinds
        assert fake_db.state['quotes'] == {}
        assert fake_db.state['clients'] == []
        assert monitor.metrics.validation_failures >= 1
        assert monitor.metrics.errors >= 1
        assert monitor.metrics.quotes_generated == 0
        mock_alerts.critical.assert_called()

    async def test_rejection_raises_a_single_critical_alert(
        self, fake_store: FakeStore, mock_alerts: Mock
    ) -> None:
        # Arrange: validator and monitor share one dispatcher
        monitor = ProductionMonitor(alerts=mock_alerts)
        assembler = _assembler(
            fake_store, validator=SafetyValidator(alerts=mock_alerts), monitor=monitor
        )
        requirements = MultiSiteRequirements(
            system_type='Conventional', user_count=60, site_count=3,
        )

        # Act
        with pytest.raises(QuoteRejected) as exc_info:
            await assembler.create_multi_site_quote(requirements)

        # Assert
        assert monitor.metrics.validation_failures == len(exc_info.value.result.errors)
        mock_alerts.critical.assert_called_once()
        assert mock_alerts.critical.call_args.args[0].startswith('CRITICAL QUOTE ERROR PREVENTED')

    async def test_monitor_alerts_when_validator_cannot(
        self, fake_store: FakeStore, mock_alerts: Mock
    ) -> None:
        monitor = ProductionMonitor(alerts=mock_alerts)
        assembler = _assembler(fake_store, validator=SafetyValidator(), monitor=monitor)
        requirements = MultiSiteRequirements(
            system_type='Conventional', user_count=60, site_count=3,
        )

        with pytest.raises(QuoteRejected) as exc_info:
            await assembler.create_multi_site_quote(requirements)

        assert mock_alerts.critical.call_count == len(exc_info.value.result.errors)

    async def test_valid_quote_carries_validation_and_metrics(self, fake_store: FakeStore) -> None:
        monitor = ProductionMonitor()
        assembler = _assembler(fake_store, validator=SafetyValidator(), monitor=monitor)

        quote = await assembler.create_quote_from_recommendation(_recommendation())

        assert quote.validation is not None
        assert quote.validation.is_valid is True
        assert monitor.metrics.quotes_generated == 1
        assert monitor.recent_quotes[0].amount == quote.total_amount


class TestQuoteNumbers:
    """Collisions on quote_number are retried with a fresh suffix."""

    async def test_collision_retries_with_new_number(self, fake_store: FakeStore) -> None:
        assembler = _assembler(fake_store)

        with patch('radioquote.services.quote_assembler.secrets.randbelow', side_effect=[7, 7, 8]):
            first = await assembler.create_quote_from_recommendation(_recommendation())
            second = await assembler.create_quote_from_recommendation(_recommendation())

        assert first.quote_number == 'Q260314-007'
        assert second.quote_number == 'Q260314-008'

    async def test_gives_up_after_repeated_collisions(
        self, fake_store: FakeStore, fake_db: FakeDatabase
    ) -> None:
        fake_db.taken_quote_numbers.append('Q260314-001')
        assembler = _assembler(fake_store)

        with patch('radioquote.services.quote_assembler.secrets.randbelow', return_value=1):
            with pytest.raises(StoreError):
                await assembler.create_quote_from_recommendation(_recommendation())

        assert fake_db.state['quotes'] == {}


class TestReadPaths:
    """Hydration, listing and display."""

    async def test_get_complete_quote_missing(self, fake_store: FakeStore) -> None:
        assembler = _assembler(fake_store)

        with pytest.raises(QuoteNotFound):
            await assembler.get_complete_quote(424242)

    async def test_list_quotes_newest_first(self, fake_store: FakeStore) -> None:
        assembler = _assembler(fake_store)
        first = await assembler.create_quote_from_recommendation(_recommendation())
        second = await assembler.create_quote_from_recommendation(_recommendation())

        quotes = await assembler.list_quotes()

        assert [q.id for q in quotes] == [second.id, first.id]

    async def test_format_quote_for_display(self, fake_store: FakeStore) -> None:
        assembler = _assembler(fake_store)
        quote = await assembler.create_quote_from_recommendation(
            _recommendation(), ClientInfo(name='Acme Security', industry='Security')
        )

        text = assembler.format_quote_for_display(quote, TAX_RATE)

        assert text.startswith(f"FORMAL QUOTE #{quote.quote_number}")
        assert 'Client: Acme Security' in text
        assert 'SKU: R7-UHF' in text
        assert 'Tax (8%): $3,040.00' in text
        assert 'TOTAL: $41,040.00' in text
        assert 'Price per user: $1,026.00' in text

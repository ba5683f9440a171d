"""
FastAPI router for quote assembly, retrieval and outcomes.

Key Endpoints:
- POST /quotes/from-recommendation - Assemble a quote from a recommendation
- POST /quotes/multi-site - Assemble a multi-site deployment quote
- POST /quotes/system - Assemble a quote from system type and user count
- POST /quotes/validate - Run and audit the safety rules without creating a quote
- GET /quotes - List quote headers, newest first
- GET /quotes/{quote_id} - Hydrated quote with line items
- GET /quotes/{quote_id}/display - Plain-text rendering
- POST /quotes/{quote_id}/recalculate - Recompute and store totals
- POST /quotes/{quote_id}/outcome - Record won/lost and schedule learning

Error Mapping:
- QuoteRejected -> 422 with the ValidationResult as detail
  ({isValid, errors, warnings, requiresReview})
- QuoteNotFound -> 404
- StoreError and anything unexpected -> 500, tracked by the production monitor

Learning runs as a FastAPI background task after the outcome response is sent;
its failures are logged and never reach the caller.
"""

import logging
from typing import Any, Awaitable, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, HTTPException, Query
from fastapi.responses import PlainTextResponse

from radioquote.core.dependencies import (
    AssemblerDep,
    LearningDep,
    MonitorDep,
    OutcomesDep,
    SettingsDep,
    TotalsDep,
    ValidatorDep,
)
from radioquote.core.errors import QuoteNotFound, QuoteRejected
from radioquote.models.schemas import (
    MultiSiteRequirements,
    OutcomeRecorded,
    OutcomeReport,
    QuoteDetail,
    QuoteTotals,
    QuoteValidationInput,
    RecommendationQuoteRequest,
    SystemQuoteRequest,
    ValidationResult,
)
from radioquote.services.learning_engine import LearningEngine
from radioquote.services.production_monitor import ProductionMonitor

# =============================================================================
# Module Configuration
# =============================================================================

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT: int = 50
MAX_LIST_LIMIT: int = 200

router = APIRouter()


# =============================================================================
# Helper Functions
# =============================================================================

async def _assemble(
    build: Awaitable[QuoteDetail],
    monitor: ProductionMonitor,
    context: Dict[str, Any],
) -> QuoteDetail:
    """Await an assembly call and translate its failures into HTTP errors."""
    try:
        return await build
    except QuoteRejected as e:
        raise HTTPException(
            status_code=422,
            detail=e.result.model_dump(mode='json', by_alias=True),
        )
    except Exception as e:
        logger.error(f"Error assembling quote: {e}", exc_info=True)
        monitor.track_system_error(e, context)
        raise HTTPException(status_code=500, detail="Failed to create quote")


async def _learn_in_background(
    learning: LearningEngine,
    monitor: ProductionMonitor,
    quote_id: int,
    outcome: OutcomeReport,
) -> None:
    try:
        await learning.learn_from_successful_quote(quote_id, outcome)
    except Exception as e:
        logger.error(f"Background learning failed for quote {quote_id}: {e}", exc_info=True)
        monitor.track_system_error(e, {'operation': 'learning', 'quote_id': quote_id})


# =============================================================================
# Assembly
# =============================================================================

@router.post("/from-recommendation", response_model=QuoteDetail, status_code=201)
async def create_quote_from_recommendation(
    body: RecommendationQuoteRequest,
    assembler: AssemblerDep,
    monitor: MonitorDep,
) -> QuoteDetail:
    """
    Create a formal quote from a system recommendation.

    Example Request:
        POST /quotes/from-recommendation
        {
            "recommendation": {
                "systemType": "Capacity Plus",
                "userCount": 40,
                "repeaters": {"recommended": {"sku": "SLR5700"}, "quantity": 1},
                "radios": {"recommended": {"sku": "R7-UHF"}}
            },
            "clientInfo": {"name": "Acme Security", "industry": "Security"},
            "sessionId": "abc123"
        }
    """
    return await _assemble(
        assembler.create_quote_from_recommendation(
            body.recommendation, body.client_info, body.session_id
        ),
        monitor,
        {'operation': 'create_quote_from_recommendation', 'session_id': body.session_id},
    )


@router.post("/multi-site", response_model=QuoteDetail, status_code=201)
async def create_multi_site_quote(
    body: MultiSiteRequirements,
    assembler: AssemblerDep,
    monitor: MonitorDep,
) -> QuoteDetail:
    return await _assemble(
        assembler.create_multi_site_quote(body),
        monitor,
        {'operation': 'create_multi_site_quote', 'site_count': body.site_count},
    )


@router.post("/system", response_model=QuoteDetail, status_code=201)
async def create_system_quote(
    body: SystemQuoteRequest,
    assembler: AssemblerDep,
    monitor: MonitorDep,
) -> QuoteDetail:
    return await _assemble(
        assembler.create_system_quote(
            body.system_type, body.user_count, body.industry, body.session_id
        ),
        monitor,
        {'operation': 'create_system_quote', 'system_type': body.system_type},
    )


@router.post("/validate", response_model=ValidationResult)
async def validate_quote(
    body: QuoteValidationInput,
    validator: ValidatorDep,
    session_id: Optional[str] = Query(None, alias="sessionId"),
) -> ValidationResult:
    """
    Evaluate the safety rules against quote figures.

    The evaluation is written to validation.log; no quote is stored and no
    alert is sent.
    """
    result = validator.validate_quote_before_creation(body)
    validator.log_validation_event(session_id, body, result)
    return result


# =============================================================================
# Retrieval
# =============================================================================

@router.get("/", response_model=List[QuoteDetail])
async def list_quotes(
    assembler: AssemblerDep,
    limit: int = Query(default=DEFAULT_LIST_LIMIT, ge=1, le=MAX_LIST_LIMIT),
    offset: int = Query(default=0, ge=0),
) -> List[QuoteDetail]:
    try:
        return await assembler.list_quotes(limit, offset)
    except Exception as e:
        logger.error(f"Error listing quotes: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to load quotes")


@router.get("/{quote_id}", response_model=QuoteDetail)
async def get_quote(quote_id: int, assembler: AssemblerDep) -> QuoteDetail:
    try:
        return await assembler.get_complete_quote(quote_id)
    except QuoteNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"Error loading quote {quote_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to load quote")


@router.get("/{quote_id}/display", response_class=PlainTextResponse)
async def display_quote(
    quote_id: int,
    assembler: AssemblerDep,
    settings: SettingsDep,
) -> str:
    try:
        quote = await assembler.get_complete_quote(quote_id)
    except QuoteNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"Error loading quote {quote_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to load quote")

    return assembler.format_quote_for_display(quote, settings.tax_rate)


# =============================================================================
# Totals & Outcomes
# =============================================================================

@router.post("/{quote_id}/recalculate", response_model=QuoteTotals)
async def recalculate_totals(quote_id: int, totals: TotalsDep) -> QuoteTotals:
    try:
        return await totals.calculate_quote_totals(quote_id)
    except QuoteNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"Error recalculating quote {quote_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to recalculate totals")


@router.post("/{quote_id}/outcome", response_model=OutcomeRecorded, status_code=201)
async def record_outcome(
    quote_id: int,
    outcome: OutcomeReport,
    background_tasks: BackgroundTasks,
    outcomes: OutcomesDep,
    learning: LearningDep,
    monitor: MonitorDep,
) -> OutcomeRecorded:
    """
    Record a won/lost outcome and schedule learning from it.

    Example Request:
        POST /quotes/42/outcome
        {
            "outcome": "won",
            "performance_rating": 5,
            "actual_installation_time": 22,
            "issues_encountered": ["antenna_mounting"]
        }
    """
    try:
        recorded = await outcomes.record_quote_outcome(quote_id, outcome)
    except QuoteNotFound as e:
        logger.warning(f"POST /quotes/{quote_id}/outcome rejected: {e}")
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"Error recording outcome for quote {quote_id}: {e}", exc_info=True)
        monitor.track_system_error(e, {'operation': 'record_outcome', 'quote_id': quote_id})
        raise HTTPException(status_code=500, detail="Failed to record outcome")

    background_tasks.add_task(_learn_in_background, learning, monitor, quote_id, outcome)
    return recorded

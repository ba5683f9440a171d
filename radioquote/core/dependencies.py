"""
FastAPI dependency injection module for the Radio Quote Engine.

Services are constructed once in the application lifespan and stored on
``app.state``; the getters below hand them to endpoint handlers. Tests replace
them with ``app.dependency_overrides`` or by setting ``app.state`` directly.

Key Dependencies Provided:
- get_settings_dependency / SettingsDep: the cached Settings singleton
- StoreDep, AssemblerDep, TotalsDep, ValidatorDep, LearningDep,
  MonitorDep, OutcomesDep: the services built at startup

Usage Examples:
    @router.post("/system")
    async def create_system_quote(
        body: SystemQuoteRequest,
        assembler: AssemblerDep,
    ) -> QuoteDetail:
        return await assembler.create_system_quote(
            body.system_type, body.user_count, body.industry, body.session_id
        )
"""

from typing import Annotated

from fastapi import Depends, Request

from radioquote.core.config import Settings, get_settings
from radioquote.services.learning_engine import LearningEngine
from radioquote.services.outcomes import OutcomeRecorder
from radioquote.services.production_monitor import ProductionMonitor
from radioquote.services.quote_assembler import QuoteAssembler
from radioquote.services.safety_validator import SafetyValidator
from radioquote.services.store import QuoteStore
from radioquote.services.totals import TotalsCalculator


# =============================================================================
# Settings Dependency
# =============================================================================

def get_settings_dependency() -> Settings:
    """
    Return the Settings singleton instance.

    Thin wrapper around get_settings() so tests can do:

        app.dependency_overrides[get_settings_dependency] = lambda: mock_settings
    """
    return get_settings()


# =============================================================================
# Service Dependencies
# =============================================================================

def get_store(request: Request) -> QuoteStore:
    return request.app.state.store


def get_assembler(request: Request) -> QuoteAssembler:
    return request.app.state.assembler


def get_totals(request: Request) -> TotalsCalculator:
    return request.app.state.totals


def get_validator(request: Request) -> SafetyValidator:
    return request.app.state.validator


def get_learning_engine(request: Request) -> LearningEngine:
    return request.app.state.learning


def get_monitor(request: Request) -> ProductionMonitor:
    return request.app.state.monitor


def get_outcome_recorder(request: Request) -> OutcomeRecorder:
    return request.app.state.outcomes


# =============================================================================
# Type Aliases for Dependency Injection
# =============================================================================

SettingsDep = Annotated[Settings, Depends(get_settings_dependency)]

StoreDep = Annotated[QuoteStore, Depends(get_store)]
AssemblerDep = Annotated[QuoteAssembler, Depends(get_assembler)]
TotalsDep = Annotated[TotalsCalculator, Depends(get_totals)]
ValidatorDep = Annotated[SafetyValidator, Depends(get_validator)]
LearningDep = Annotated[LearningEngine, Depends(get_learning_engine)]
MonitorDep = Annotated[ProductionMonitor, Depends(get_monitor)]
OutcomesDep = Annotated[OutcomeRecorder, Depends(get_outcome_recorder)]

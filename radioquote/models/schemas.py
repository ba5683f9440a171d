"""
Pydantic schema definitions for the Radio Quote Engine.

This module defines request/response schemas and internal value objects for:
- Catalog and client records (Part, Client)
- Quote assembly inputs (Recommendation, ClientInfo, MultiSiteRequirements)
- Hydrated quotes and totals (QuoteDetail, LineItem, QuoteTotals)
- Safety validation (QuoteValidationInput, ValidationIssue, ValidationResult)
- Learning patterns as a tagged union keyed by pattern_type
- Learning accumulators (the running state behind each pattern)
- Outcome and feedback reports
- Monitor health and readiness snapshots

Input models accept both camelCase and snake_case keys via ``CamelModel`` so
that payloads from the conversational front end (``totalAmount``,
``userCount``) and internal callers (``total_amount``) validate alike.
"""

from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from radioquote.models.enums import (
    HealthStatus,
    OutcomeType,
    PatternType,
    QuoteStatus,
    Severity,
    ValidationAction,
    ValidationKind,
)


class CamelModel(BaseModel):
    """Base for models exchanged with camelCase clients."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


# =============================================================================
# Catalog & Client Records
# =============================================================================

class Part(BaseModel):
    """
    Catalog part from either ``parts_enhanced`` or ``parts``.

    Read-only from the quote engine's point of view.
    """
    model_config = ConfigDict(from_attributes=True)

    id: int
    sku: str
    name: str
    category: str
    subcategory: Optional[str] = None
    model: Optional[str] = None
    description: Optional[str] = None
    price: float
    labor_hours: float = 0.0
    frequency_band: Optional[str] = None
    system_type: Optional[str] = None
    inventory_qty: int = 0


class Client(BaseModel):
    """Client registry row, unique on (name, industry)."""

    id: int
    name: str
    industry: str
    contact_person: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    current_system: Optional[str] = None
    coverage_area: Optional[str] = None
    user_count: int = 0
    special_requirements: Optional[str] = None
    created_at: Optional[datetime] = None


class ClientInfo(CamelModel):
    """
    Client details supplied with a quote request.

    Missing fields are filled with prospect defaults when the client row is
    created. A missing name is derived from industry and user count.
    """
    name: Optional[str] = None
    industry: str = "General"
    contact_person: str = "Prospect"
    email: str = "prospect@example.com"
    phone: str = ""
    address: str = ""
    current_system: str = ""
    coverage_area: str = ""
    user_count: int = 0
    special_requirements: Optional[str] = None


# =============================================================================
# Assembly Inputs
# =============================================================================

class RecommendedPart(CamelModel):
    """A single catalog pick inside a recommendation."""
    sku: str
    name: Optional[str] = None


class PartRecommendation(CamelModel):
    """Recommended part plus the quantity to quote."""
    recommended: Optional[RecommendedPart] = None
    quantity: int = Field(default=1, ge=0)


class Recommendation(CamelModel):
    """
    Abstract system recommendation to be turned into a quote.

    When ``radios`` carries no recommended SKU the assembler falls back to the
    cheapest portable radio in ``frequency_band`` (widening to any band).
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "systemType": "Capacity Plus",
                "userCount": 40,
                "repeaters": {"recommended": {"sku": "SLR5700"}, "quantity": 1},
                "radios": {"recommended": {"sku": "R7-UHF"}},
            }
        },
    )

    system_type: str = "Conventional"
    user_count: Optional[int] = Field(default=None, ge=0)
    frequency_band: str = "UHF"
    repeaters: Optional[PartRecommendation] = None
    radios: Optional[PartRecommendation] = None


class RecommendationQuoteRequest(CamelModel):
    """Body for POST /quotes/from-recommendation."""
    recommendation: Recommendation
    client_info: ClientInfo = Field(default_factory=ClientInfo)
    session_id: Optional[str] = None


class MultiSiteRequirements(CamelModel):
    """Requirements for a multi-site deployment quote."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "systemType": "IP Site Connect",
                "userCount": 90,
                "industry": "Manufacturing",
                "siteCount": 3,
                "usersPerSite": 30,
                "requiresInterSite": True,
                "isMultiSite": True,
            }
        },
    )

    system_type: str
    user_count: int = Field(..., ge=1)
    industry: str = "General"
    session_id: Optional[str] = None
    site_count: int = Field(..., ge=1)
    users_per_site: Optional[int] = None
    requires_inter_site: bool = False
    is_multi_site: bool = True


class SystemQuoteRequest(CamelModel):
    """Body for POST /quotes/system."""
    system_type: str
    user_count: int = Field(..., ge=1)
    industry: str = "General"
    session_id: Optional[str] = None


# =============================================================================
# Quotes
# =============================================================================

class LineItem(BaseModel):
    """
    Priced quote row.

    ``part_id`` and ``sku`` are null for service charges (labor, licensing,
    inter-site linking). ``labor_hours`` is the line total, not per unit.
    """
    id: Optional[int] = None
    quote_id: int
    part_id: Optional[int] = None
    sku: Optional[str] = None
    part_name: Optional[str] = None
    category: Optional[str] = None
    subcategory: Optional[str] = None
    model: Optional[str] = None
    frequency_band: Optional[str] = None
    system_type: Optional[str] = None
    description: Optional[str] = None
    quantity: int
    unit_price: float
    total_price: float
    labor_hours: float = 0.0
    notes: Optional[str] = None


class QuoteTotals(BaseModel):
    """Aggregated quote amounts written back by the totals calculator."""
    total_parts: float
    total_labor: float
    total_tax: float
    total_amount: float


class QuoteDetail(BaseModel):
    """Quote header joined with client fields and, when hydrated, its line items."""

    id: int
    quote_number: str
    client_id: Optional[int] = None
    status: QuoteStatus = QuoteStatus.DRAFT
    system_type: Optional[str] = None
    total_parts: float = 0.0
    total_labor: float = 0.0
    total_tax: float = 0.0
    total_amount: float = 0.0
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    client_name: Optional[str] = None
    industry: Optional[str] = None
    contact_person: Optional[str] = None
    email: Optional[str] = None
    user_count: Optional[int] = None
    line_items: List[LineItem] = Field(default_factory=list)
    validation: Optional["ValidationResult"] = None


# =============================================================================
# Safety Validation
# =============================================================================

class QuoteValidationInput(CamelModel):
    """Figures the safety validator evaluates."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "totalAmount": 50000,
                "userCount": 100,
                "systemType": "Capacity Plus",
                "siteCount": 1,
                "isMultiSite": False,
            }
        },
    )

    total_amount: float
    user_count: int
    system_type: Optional[str] = None
    site_count: int = 1
    is_multi_site: bool = False

    @property
    def multi_site(self) -> bool:
        return self.is_multi_site or self.site_count > 1


class ValidationIssue(BaseModel):
    """One triggered validation rule."""

    type: ValidationKind
    message: str
    severity: Severity
    action: Optional[ValidationAction] = None
    recommendation: Optional[str] = None
    calculation: Optional[str] = None
    details: Optional[str] = None


class ValidationResult(CamelModel):
    """
    Outcome of a safety evaluation.

    Serializes as ``{isValid, errors, warnings, requiresReview}``.
    """
    is_valid: bool
    errors: List[ValidationIssue] = Field(default_factory=list)
    warnings: List[ValidationIssue] = Field(default_factory=list)
    requires_review: bool = False

    @property
    def error_kinds(self) -> List[str]:
        return [e.type.value for e in self.errors]

    @property
    def warning_kinds(self) -> List[str]:
        return [w.type.value for w in self.warnings]


# =============================================================================
# Learning Patterns (tagged union on pattern_type)
# =============================================================================

class UserRange(BaseModel):
    min: int
    max: int
    avg: float


class PriceBucketStats(BaseModel):
    price_range: str
    win_rate: float
    sample_size: int


class ProductCombinationData(BaseModel):
    pattern_type: Literal["product_combination"] = "product_combination"
    combination: List[str]
    success_rate: float
    industries: List[str] = Field(default_factory=list)
    avg_user_count: float = 0.0
    avg_price_per_user: Optional[float] = None


class IndustryPreferenceData(BaseModel):
    pattern_type: Literal["industry_preference"] = "industry_preference"
    industry: str
    preferred_radios: List[str] = Field(default_factory=list)
    preferred_accessories: List[str] = Field(default_factory=list)
    typical_user_range: Optional[UserRange] = None
    avg_price_per_user: Optional[float] = None
    success_rate: float = 0.0


class PriceSensitivityData(BaseModel):
    pattern_type: Literal["price_sensitivity"] = "price_sensitivity"
    industry: Optional[str] = None
    user_range: str
    win_rates_by_price: List[PriceBucketStats] = Field(default_factory=list)
    optimal_price_range: Optional[str] = None


class ConfigurationSuccessData(BaseModel):
    pattern_type: Literal["configuration_success"] = "configuration_success"
    system_type: Optional[str] = None
    avg_accuracy: float
    avg_estimated_hours: float
    avg_actual_hours: float
    avg_performance_rating: float = 0.0
    common_issues: Dict[str, int] = Field(default_factory=dict)


PatternData = Annotated[
    Union[
        ProductCombinationData,
        IndustryPreferenceData,
        PriceSensitivityData,
        ConfigurationSuccessData,
    ],
    Field(discriminator="pattern_type"),
]


class LearningPattern(BaseModel):
    """
    Persisted pattern row from ``ai_learning_patterns``.

    ``pattern_key`` identifies the accumulator the pattern was flushed from;
    (pattern_type, pattern_key) is unique.
    """
    id: Optional[int] = None
    pattern_type: PatternType
    pattern_key: str
    pattern_data: PatternData
    confidence_score: float = Field(..., ge=0.0, le=1.0)
    success_rate: float = 0.0
    sample_size: int
    industry: Optional[str] = None
    user_count_range: Optional[str] = None
    last_validated: Optional[datetime] = None


# =============================================================================
# Learning Accumulators
# =============================================================================

class CombinationAccumulator(BaseModel):
    products: List[str]
    success_count: int = 0
    total_count: int = 0
    industries: List[str] = Field(default_factory=list)
    user_counts: List[int] = Field(default_factory=list)
    avg_price_per_user: Optional[float] = None

    @property
    def sample_size(self) -> int:
        return self.total_count


class IndustryAccumulator(BaseModel):
    industry: str
    preferred_radios: Dict[str, int] = Field(default_factory=dict)
    preferred_accessories: Dict[str, int] = Field(default_factory=dict)
    user_counts: List[int] = Field(default_factory=list)
    avg_price_per_user: Optional[float] = None
    total_quotes: int = 0
    won_quotes: int = 0

    @property
    def sample_size(self) -> int:
        return self.total_quotes

    @property
    def success_rate(self) -> float:
        return self.won_quotes / self.total_quotes if self.total_quotes else 0.0


class PriceOutcome(BaseModel):
    price_per_user: float
    outcome: OutcomeType
    performance_rating: int = 0


class PriceBucket(BaseModel):
    wins: int = 0
    total: int = 0


class PriceSensitivityAccumulator(BaseModel):
    industry: Optional[str] = None
    user_range: str
    outcomes: List[PriceOutcome] = Field(default_factory=list)
    win_rates_by_price: Dict[str, PriceBucket] = Field(default_factory=dict)

    @property
    def sample_size(self) -> int:
        return len(self.outcomes)


class ConfigurationAccumulator(BaseModel):
    system_type: Optional[str] = None
    time_estimates: List[float] = Field(default_factory=list)
    actual_times: List[float] = Field(default_factory=list)
    accuracy_scores: List[float] = Field(default_factory=list)
    performance_ratings: List[int] = Field(default_factory=list)
    common_issues: Dict[str, int] = Field(default_factory=dict)

    @property
    def sample_size(self) -> int:
        return len(self.accuracy_scores)


class FeedbackAccumulator(BaseModel):
    intent: Optional[str] = None
    feedback_scores: List[int] = Field(default_factory=list)
    improvement_areas: Dict[str, int] = Field(default_factory=dict)


# =============================================================================
# Outcomes, Feedback & Learning Requests
# =============================================================================

class OutcomeReport(BaseModel):
    """Won/lost report for a quote, stored in ``quote_outcomes``."""
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "outcome": "won",
                "performance_rating": 5,
                "actual_installation_time": 22,
                "issues_encountered": ["antenna_mounting"],
            }
        }
    )

    outcome: OutcomeType
    outcome_reason: Optional[str] = None
    customer_feedback: Optional[str] = None
    actual_installation_cost: Optional[float] = None
    actual_installation_time: Optional[float] = Field(default=None, ge=0)
    performance_rating: Optional[int] = Field(default=None, ge=1, le=5)
    issues_encountered: Optional[Union[List[str], str]] = None
    lessons_learned: Optional[str] = None
    competitor_product: Optional[str] = None
    competitor_price: Optional[float] = None
    follow_up_opportunities: Optional[str] = None


class OutcomeRecorded(BaseModel):
    outcome_id: int
    quote_id: int
    status: QuoteStatus
    learning_scheduled: bool


class FeedbackRequest(BaseModel):
    session_id: str
    satisfaction: int = Field(..., ge=1, le=5)
    follow_up_required: bool = False
    improvement_area: Optional[str] = None


class FeedbackSummary(BaseModel):
    session_id: str
    intent: Optional[str] = None
    feedback_count: int = 0
    avg_satisfaction: float = 0.0
    improvement_areas: Dict[str, int] = Field(default_factory=dict)


class LearningContext(CamelModel):
    industry: Optional[str] = None
    user_count: int = Field(default=0, ge=0)
    request_type: Optional[str] = None


class ApplyLearningRequest(BaseModel):
    recommendation: Dict[str, Any] = Field(default_factory=dict)
    context: LearningContext


class FlushResult(BaseModel):
    patterns_stored: int


# =============================================================================
# Monitoring
# =============================================================================

class MonitorMetrics(BaseModel):
    quotes_generated: int = 0
    errors: int = 0
    warnings: int = 0
    validation_failures: int = 0
    high_value_quotes: int = 0
    average_response_time: float = 0.0


class RecentActivity(BaseModel):
    quote_count: int
    average_amount: float
    max_amount: float
    min_amount: float
    system_type_distribution: Dict[str, int]
    multi_site_percentage: float


class HealthSnapshot(BaseModel):
    status: HealthStatus
    uptime_hours: float
    error_rate: float = Field(..., description="Errors per quote generated, in percent")
    average_response_time_ms: float
    metrics: MonitorMetrics


class PeriodicReport(BaseModel):
    timestamp: datetime
    health: HealthSnapshot
    recent_activity: Optional[RecentActivity] = None


class ReadinessCheck(BaseModel):
    status: Literal["PASS", "FAIL"]
    value: str
    requirement: str


class ReadinessReport(BaseModel):
    ready: bool
    checks: Dict[str, ReadinessCheck]
    recommendation: str


QuoteDetail.model_rebuild()

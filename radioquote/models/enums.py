"""
Enumeration definitions for the Radio Quote Engine.

All enums inherit from both `str` and `Enum` so they serialize as plain strings
in Pydantic models, JSON responses and NDJSON audit records.
"""

from enum import Enum


class QuoteStatus(str, Enum):
    """
    Quote lifecycle state.

    Quotes are created as DRAFT; an external process moves them to SENT and
    finally WON or LOST when the customer decides.
    """
    DRAFT = "draft"
    SENT = "sent"
    WON = "won"
    LOST = "lost"


class OutcomeType(str, Enum):
    """Final customer decision on a quote."""
    WON = "won"
    LOST = "lost"


class SystemType(str, Enum):
    """
    Two-way radio system architectures, ordered roughly by capacity.

    - CONVENTIONAL / BASIC: single-site, no trunking
    - IP_SITE_CONNECT: IP-linked multi-site, small fleets (<=250 users)
    - CAPACITY_PLUS: single-site trunking
    - LINKED_CAPACITY_PLUS: multi-site trunking (<=1500 users)
    - CAPACITY_MAX: large multi-site trunking
    """
    CONVENTIONAL = "Conventional"
    BASIC = "Basic"
    IP_SITE_CONNECT = "IP Site Connect"
    CAPACITY_PLUS = "Capacity Plus"
    LINKED_CAPACITY_PLUS = "Linked Capacity Plus"
    CAPACITY_MAX = "Capacity Max"


class PatternType(str, Enum):
    """Families of patterns mined from quote outcomes."""
    PRODUCT_COMBINATION = "product_combination"
    INDUSTRY_PREFERENCE = "industry_preference"
    PRICE_SENSITIVITY = "price_sensitivity"
    CONFIGURATION_SUCCESS = "configuration_success"


class PriceRange(str, Enum):
    """
    Price-per-user buckets.

    Thresholds: budget < $500, mid_range < $800, premium < $1200,
    enterprise >= $1200.
    """
    BUDGET = "budget"
    MID_RANGE = "mid_range"
    PREMIUM = "premium"
    ENTERPRISE = "enterprise"


class Severity(str, Enum):
    """Validation issue severity."""
    STOP_PROCESSING = "STOP_PROCESSING"
    ATTENTION_NEEDED = "ATTENTION_NEEDED"
    VERIFY_CALCULATION = "VERIFY_CALCULATION"


class ValidationKind(str, Enum):
    """
    Rules evaluated by the safety validator.

    Error kinds block the quote; HIGH_VALUE_QUOTE and
    SUSPICIOUSLY_LOW_MULTISITE are advisory.
    """
    CRITICAL_AMOUNT_EXCEEDED = "CRITICAL_AMOUNT_EXCEEDED"
    IMPOSSIBLE_USER_COUNT = "IMPOSSIBLE_USER_COUNT"
    INVALID_USER_COUNT = "INVALID_USER_COUNT"
    SITE_COUNT_EXCEEDED = "SITE_COUNT_EXCEEDED"
    PRICE_PER_USER_TOO_HIGH = "PRICE_PER_USER_TOO_HIGH"
    PRICE_PER_USER_TOO_LOW = "PRICE_PER_USER_TOO_LOW"
    WRONG_SYSTEM_FOR_MULTISITE = "WRONG_SYSTEM_FOR_MULTISITE"
    SYSTEM_CAPACITY_EXCEEDED = "SYSTEM_CAPACITY_EXCEEDED"
    INVALID_INPUT = "INVALID_INPUT"
    HIGH_VALUE_QUOTE = "HIGH_VALUE_QUOTE"
    SUSPICIOUSLY_LOW_MULTISITE = "SUSPICIOUSLY_LOW_MULTISITE"


class ValidationAction(str, Enum):
    """Follow-up requested by a validation issue."""
    REQUIRE_MANUAL_REVIEW = "REQUIRE_MANUAL_REVIEW"
    NOTIFY_MANAGER = "NOTIFY_MANAGER"
    VERIFY_INPUT = "VERIFY_INPUT"


class HealthStatus(str, Enum):
    """
    Monitor health classification by error rate.

    HEALTHY < 1%, WARNING < 5%, CRITICAL >= 5%.
    """
    HEALTHY = "HEALTHY"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


class AlertLevel(str, Enum):
    """Alert routing level."""
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"
    MANAGER = "MANAGER"

"""
Pricing rules for radio system quotes.

Pure functions with no I/O so the quote assembler and tests share one source
for every surcharge, ratio and labor formula.

Rules:
- Accessories: 1 battery and 1 belt clip per radio, max(1, ceil(radios / 5)) chargers
- Inter-site linking: per-site rate by system type plus a flat networking fee
- Licensing: base fee, per-additional-site fee, inter-site coordination fee
- Labor: single-site and multi-site hour formulas, billed at the labor rate
"""

import math
from datetime import date
from typing import Optional

from radioquote.models.enums import SystemType

# =============================================================================
# Constants
# =============================================================================

# Fallback accessory SKUs used when compatibility data is missing
FALLBACK_BATTERY_SKU = 'PMNN4434'
FALLBACK_CHARGER_SKU = 'PMLN5188'
FALLBACK_BELT_CLIP_SKU = 'PMLN4651'

RADIOS_PER_CHARGER = 5

# Inter-site linking, dollars per site
DEFAULT_LINKING_RATE = 2500.0
LINKING_RATES = {
    SystemType.IP_SITE_CONNECT.value: 2500.0,
    SystemType.LINKED_CAPACITY_PLUS.value: 3500.0,
    SystemType.CAPACITY_MAX.value: 5000.0,
}
NETWORKING_FEE = 1200.0

# FCC licensing
BASE_LICENSING = 800.0
ADDITIONAL_SITE_LICENSING = 150.0
INTER_SITE_LICENSING_FEE = 400.0

# Installation hours
BASE_PROGRAMMING_HOURS = 2
HOURS_PER_REPEATER = 8
HOURS_PER_RADIO = 0.25
MINIMUM_INSTALL_HOURS = 4
HOURS_PER_SITE = 12
TRAVEL_HOURS_PER_SITE = 2
INTER_SITE_COORDINATION_HOURS = 8
STANDALONE_COORDINATION_HOURS = 4

DEFAULT_RADIO_COUNT = 25

RADIO_CATEGORY = 'Portable Radios'
REPEATER_CATEGORY = 'Repeaters'


# =============================================================================
# Accessory Ratios
# =============================================================================

def charger_quantity(radio_count: int) -> int:
    """One desktop charger per five radios, never fewer than one."""
    return max(1, math.ceil(radio_count / RADIOS_PER_CHARGER))


def repeaters_needed(user_count: int) -> int:
    """Repeater count for a single-site system sized by user count."""
    if user_count > 200:
        return 3
    if user_count > 100:
        return 2
    return 1


# =============================================================================
# Surcharges
# =============================================================================

def linking_rate(system_type: Optional[str]) -> float:
    return LINKING_RATES.get(system_type or '', DEFAULT_LINKING_RATE)


def inter_site_linking_cost(site_count: int, system_type: Optional[str]) -> float:
    """Per-site linking at the system type's rate plus one networking fee."""
    return linking_rate(system_type) * site_count + NETWORKING_FEE


def licensing_cost(site_count: int = 1, requires_inter_site: bool = False) -> float:
    """
    FCC licensing and frequency coordination.

    A single-site quote pays the base fee only.
    """
    cost = BASE_LICENSING + max(0, site_count - 1) * ADDITIONAL_SITE_LICENSING
    if requires_inter_site:
        cost += INTER_SITE_LICENSING_FEE
    return cost


# =============================================================================
# Labor
# =============================================================================

def installation_hours(repeater_count: int, user_count: int) -> int:
    hours = BASE_PROGRAMMING_HOURS
    hours += HOURS_PER_REPEATER * max(0, repeater_count)
    hours += math.ceil(max(0, user_count) * HOURS_PER_RADIO)
    return max(MINIMUM_INSTALL_HOURS, hours)


def multi_site_installation_hours(site_count: int, requires_inter_site: bool) -> int:
    coordination = (
        INTER_SITE_COORDINATION_HOURS if requires_inter_site
        else STANDALONE_COORDINATION_HOURS
    )
    return HOURS_PER_SITE * site_count + TRAVEL_HOURS_PER_SITE * site_count + coordination


def labor_cost(hours: float, labor_rate: float) -> float:
    return hours * labor_rate


# =============================================================================
# Quote Numbers & Naming
# =============================================================================

def format_quote_number(day: date, suffix: int) -> str:
    """Render ``Q{YY}{MM}{DD}-{NNN}``."""
    return f"Q{day:%y%m%d}-{suffix % 1000:03d}"


def prospect_client_name(
    industry: str,
    user_count: int,
    site_count: int = 1,
    is_multi_site: bool = False,
) -> str:
    if is_multi_site:
        return f"{industry} - {site_count} Locations ({user_count} Users)"
    return f"{industry} - {user_count} Users"


def price_per_user(total_amount: float, user_count: int) -> Optional[float]:
    if user_count <= 0:
        return None
    return total_amount / user_count

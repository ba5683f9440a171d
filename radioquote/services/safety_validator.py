"""
Business-safety validation for quotes.

The validator catches pricing and sizing mistakes before a quote is finalized.
``validate_quote_before_creation`` is pure: it never raises for business rule
violations and never touches I/O, returning a ValidationResult so the caller
decides whether to persist or escalate. ``evaluate`` adds the side effects:
an audit record per evaluation and fire-and-forget alerts.

Stop rules (severity STOP_PROCESSING, block the quote):
- CRITICAL_AMOUNT_EXCEEDED: total > $2,000,000 (manual review)
- IMPOSSIBLE_USER_COUNT: users > 5,000
- INVALID_USER_COUNT: users <= 0
- SITE_COUNT_EXCEEDED: sites > 50
- PRICE_PER_USER_TOO_HIGH / TOO_LOW: outside [$200, $10,000]
- WRONG_SYSTEM_FOR_MULTISITE: Conventional/Basic spanning several sites
- SYSTEM_CAPACITY_EXCEEDED: IP Site Connect > 250 or Linked Capacity Plus
  > 1,500 users on a multi-site quote
- INVALID_INPUT: figures missing or not numeric (reported, never raised)

Advisory rules (never block):
- HIGH_VALUE_QUOTE: total > $100,000 (notify manager)
- SUSPICIOUSLY_LOW_MULTISITE: multi-site total < $5,000
"""

import logging
from typing import Any, Dict, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from radioquote.core.audit import VALIDATION_LOG, AuditLog
from radioquote.models.enums import Severity, SystemType, ValidationAction, ValidationKind
from radioquote.models.schemas import QuoteValidationInput, ValidationIssue, ValidationResult
from radioquote.services.alerts import AlertDispatcher

logger = logging.getLogger(__name__)

# =============================================================================
# Limits
# =============================================================================

MAX_QUOTE_AMOUNT = 2_000_000
MAX_USER_COUNT = 5000
MAX_SITE_COUNT = 50
MAX_PRICE_PER_USER = 10_000
MIN_PRICE_PER_USER = 200

HIGH_VALUE_THRESHOLD = 100_000
SUSPICIOUSLY_LOW_MULTISITE = 5000

SINGLE_SITE_SYSTEMS = {SystemType.CONVENTIONAL.value, SystemType.BASIC.value}

# Multi-site user capacity per system type
MULTISITE_CAPACITY = {
    SystemType.IP_SITE_CONNECT.value: (250, 'Use Linked Capacity Plus for 251-1500 users'),
    SystemType.LINKED_CAPACITY_PLUS.value: (1500, 'Use Capacity Max for more than 1500 users'),
}

QuoteData = Union[QuoteValidationInput, Mapping[str, Any]]


def _coerce(quote_data: QuoteData) -> QuoteValidationInput:
    if isinstance(quote_data, QuoteValidationInput):
        return quote_data
    if isinstance(quote_data, Mapping):
        quote_data = dict(quote_data)
    return QuoteValidationInput.model_validate(quote_data)


def _figures(quote_data: QuoteData) -> Dict[str, Any]:
    """Amount, users and system type for audit and alert context, even from malformed input."""
    try:
        data = _coerce(quote_data)
    except PydanticValidationError:
        raw = quote_data if isinstance(quote_data, Mapping) else {}
        return {
            'amount': raw.get('totalAmount', raw.get('total_amount')),
            'users': raw.get('userCount', raw.get('user_count')),
            'system_type': raw.get('systemType', raw.get('system_type')),
        }
    return {'amount': data.total_amount, 'users': data.user_count, 'system_type': data.system_type}


def _money(value: Any) -> str:
    if isinstance(value, (int, float)):
        return f"${value:,.2f}"
    return str(value)


def _invalid_input(error: PydanticValidationError) -> ValidationResult:
    fields = ', '.join(
        '.'.join(str(part) for part in detail['loc']) or 'quote'
        for detail in error.errors()
    )
    return ValidationResult(
        is_valid=False,
        errors=[ValidationIssue(
            type=ValidationKind.INVALID_INPUT,
            message=f"Quote figures missing or malformed: {fields}",
            severity=Severity.STOP_PROCESSING,
            action=ValidationAction.VERIFY_INPUT,
        )],
        warnings=[],
        requires_review=False,
    )


class SafetyValidator:
    """
    Stateless rule evaluator with audit and alert side effects.

    Args:
        audit: Audit log receiving validation.log records. Optional for
            pure validation use.
        alerts: Dispatcher for critical and manager alerts. Optional.
    """

    def __init__(
        self,
        audit: Optional[AuditLog] = None,
        alerts: Optional[AlertDispatcher] = None,
    ):
        self.audit = audit
        self.alerts = alerts

    def validate_quote_before_creation(self, quote_data: QuoteData) -> ValidationResult:
        """
        Evaluate every rule against the quote figures.

        Args:
            quote_data: QuoteValidationInput or a mapping with camelCase or
                snake_case keys (totalAmount/total_amount, userCount, ...).

        Returns:
            ValidationResult with is_valid False when any stop rule fired.
            Missing or malformed figures are reported as INVALID_INPUT.
        """
        try:
            data = _coerce(quote_data)
        except PydanticValidationError as e:
            logger.warning(f"Rejecting malformed quote figures: {e.error_count()} error(s)")
            return _invalid_input(e)

        amount = data.total_amount
        users = data.user_count
        multi_site = data.multi_site
        errors = []
        warnings = []

        if amount > MAX_QUOTE_AMOUNT:
            errors.append(ValidationIssue(
                type=ValidationKind.CRITICAL_AMOUNT_EXCEEDED,
                message=f"Quote amount ${amount:,.2f} exceeds $2M limit - likely calculation error",
                severity=Severity.STOP_PROCESSING,
                action=ValidationAction.REQUIRE_MANUAL_REVIEW,
            ))

        if users > MAX_USER_COUNT:
            errors.append(ValidationIssue(
                type=ValidationKind.IMPOSSIBLE_USER_COUNT,
                message=f"{users} users exceeds reasonable limit of {MAX_USER_COUNT}",
                severity=Severity.STOP_PROCESSING,
                action=ValidationAction.VERIFY_INPUT,
            ))

        if users <= 0:
            errors.append(ValidationIssue(
                type=ValidationKind.INVALID_USER_COUNT,
                message=f"User count must be positive, got {users}",
                severity=Severity.STOP_PROCESSING,
                action=ValidationAction.VERIFY_INPUT,
            ))
        else:
            per_user = amount / users
            calculation = f"${amount:,.2f} / {users} users"
            if per_user > MAX_PRICE_PER_USER:
                errors.append(ValidationIssue(
                    type=ValidationKind.PRICE_PER_USER_TOO_HIGH,
                    message=f"${per_user:,.2f} per user exceeds ${MAX_PRICE_PER_USER:,} - likely error",
                    severity=Severity.STOP_PROCESSING,
                    calculation=calculation,
                ))
            if per_user < MIN_PRICE_PER_USER:
                errors.append(ValidationIssue(
                    type=ValidationKind.PRICE_PER_USER_TOO_LOW,
                    message=f"${per_user:,.2f} per user below ${MIN_PRICE_PER_USER} - suspiciously low",
                    severity=Severity.STOP_PROCESSING,
                    calculation=calculation,
                ))

        if data.site_count > MAX_SITE_COUNT:
            errors.append(ValidationIssue(
                type=ValidationKind.SITE_COUNT_EXCEEDED,
                message=f"{data.site_count} sites exceeds reasonable limit of {MAX_SITE_COUNT}",
                severity=Severity.STOP_PROCESSING,
                action=ValidationAction.VERIFY_INPUT,
            ))

        if multi_site:
            if data.system_type in SINGLE_SITE_SYSTEMS:
                errors.append(ValidationIssue(
                    type=ValidationKind.WRONG_SYSTEM_FOR_MULTISITE,
                    message=(
                        f"{data.system_type} system cannot handle {data.site_count} "
                        f"sites with inter-site communication"
                    ),
                    severity=Severity.STOP_PROCESSING,
                    recommendation='Use IP Site Connect, Linked Capacity Plus, or Capacity Max',
                ))

            capacity = MULTISITE_CAPACITY.get(data.system_type or '')
            if capacity and users > capacity[0]:
                errors.append(ValidationIssue(
                    type=ValidationKind.SYSTEM_CAPACITY_EXCEEDED,
                    message=(
                        f"{data.system_type} max capacity is {capacity[0]} users, "
                        f"quote has {users}"
                    ),
                    severity=Severity.STOP_PROCESSING,
                    recommendation=capacity[1],
                ))

        if amount > HIGH_VALUE_THRESHOLD:
            warnings.append(ValidationIssue(
                type=ValidationKind.HIGH_VALUE_QUOTE,
                message=f"High-value quote: ${amount:,.2f}",
                severity=Severity.ATTENTION_NEEDED,
                action=ValidationAction.NOTIFY_MANAGER,
            ))

        if multi_site and amount < SUSPICIOUSLY_LOW_MULTISITE:
            warnings.append(ValidationIssue(
                type=ValidationKind.SUSPICIOUSLY_LOW_MULTISITE,
                message='Multi-site quote under $5K seems too low',
                severity=Severity.VERIFY_CALCULATION,
                details=f"{data.site_count} sites, {users} users",
            ))

        requires_review = (
            any(e.action == ValidationAction.REQUIRE_MANUAL_REVIEW for e in errors)
            or any(w.action == ValidationAction.NOTIFY_MANAGER for w in warnings)
        )

        return ValidationResult(
            is_valid=not errors,
            errors=errors,
            warnings=warnings,
            requires_review=requires_review,
        )

    def log_validation_event(
        self,
        session_id: Optional[str],
        quote_data: QuoteData,
        result: ValidationResult,
    ) -> Dict[str, Any]:
        """Append the evaluation to validation.log and return the record."""
        figures = _figures(quote_data)
        entry = {
            'sessionId': session_id,
            'quoteAmount': figures['amount'],
            'userCount': figures['users'],
            'systemType': figures['system_type'],
            'isValid': result.is_valid,
            'errorCount': len(result.errors),
            'warningCount': len(result.warnings),
            'requiresReview': result.requires_review,
            'errors': result.error_kinds,
            'warnings': result.warning_kinds,
        }

        logger.info(
            f"VALIDATION_EVENT session={session_id} valid={result.is_valid} "
            f"errors={entry['errors']} warnings={entry['warnings']}"
        )
        if self.audit is not None:
            self.audit.append(VALIDATION_LOG, entry)
        return entry

    def send_alert_if_needed(self, result: ValidationResult, quote_data: QuoteData) -> bool:
        """
        Dispatch critical and manager alerts for a result.

        Delivery failures are logged; this never raises.

        Returns:
            True when a critical alert was raised for the stop rules.
        """
        if self.alerts is None:
            return False

        figures = _figures(quote_data)
        context = {
            'Amount': _money(figures['amount']),
            'Users': figures['users'],
            'System': figures['system_type'] or 'Unknown',
        }

        critical_sent = False
        try:
            stops = [e for e in result.errors if e.severity == Severity.STOP_PROCESSING]
            if stops:
                self.alerts.critical(
                    "CRITICAL QUOTE ERROR PREVENTED\n"
                    + "\n".join(f"- {e.message}" for e in stops),
                    context,
                )
                critical_sent = True

            if result.requires_review:
                self.alerts.notify_manager(
                    f"Quote requires manager review: {_money(figures['amount'])} "
                    f"for {figures['users']} users",
                    context,
                )
        except Exception as e:
            logger.error(f"Alert dispatch failed: {e}")
        return critical_sent

    def evaluate(self, session_id: Optional[str], quote_data: QuoteData) -> ValidationResult:
        """Validate, audit and alert in one call."""
        result = self.validate_quote_before_creation(quote_data)
        self.log_validation_event(session_id, quote_data, result)
        self.send_alert_if_needed(result, quote_data)
        return result

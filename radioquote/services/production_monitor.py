"""
Production monitoring for the quote engine.

Tracks quote generation counters, an exponential moving average of response
time and a ring buffer of the most recent quotes. A background task owned by
start()/stop() writes a health snapshot to periodic_reports.log every
interval and raises a critical alert when health is CRITICAL.

Health status by error rate (errors per quote generated):
- HEALTHY: < 1%
- WARNING: < 5%
- CRITICAL: >= 5%

Anomaly rule: more than 20 quotes inside a trailing 5-minute window raises a
rate warning.

Readiness passes when the error rate is below 1%, the average response time is
below 3000 ms and the status is not CRITICAL.

The clock is injectable so windowing and uptime are testable without sleeping.
"""

import asyncio
import logging
import time
import traceback
from collections import Counter, deque
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, Optional

import numpy as np
from pydantic import BaseModel

from radioquote.core.audit import PERIODIC_REPORTS_LOG, SYSTEM_ERRORS_LOG, AuditLog
from radioquote.models.enums import HealthStatus, Severity
from radioquote.models.schemas import (
    HealthSnapshot,
    MonitorMetrics,
    PeriodicReport,
    QuoteValidationInput,
    ReadinessCheck,
    ReadinessReport,
    RecentActivity,
)
from radioquote.services.alerts import AlertDispatcher

logger = logging.getLogger(__name__)

# =============================================================================
# Thresholds
# =============================================================================

RESPONSE_TIME_ALPHA = 0.1
MAX_RECENT_QUOTES = 100
HIGH_VALUE_AMOUNT = 100_000

RAPID_FIRE_WINDOW_SECONDS = 300
RAPID_FIRE_LIMIT = 20

HEALTHY_ERROR_RATE = 1.0
WARNING_ERROR_RATE = 5.0

READY_MAX_ERROR_RATE = 1.0
READY_MAX_RESPONSE_MS = 3000.0


class RecentQuote(BaseModel):
    timestamp: float
    amount: float
    user_count: int
    system_type: Optional[str] = None
    response_time_ms: float
    is_multi_site: bool = False


class ProductionMonitor:
    """
    In-process metrics and health reporting.

    Args:
        audit: Audit log for periodic reports and system errors.
        alerts: Dispatcher for rate warnings and critical alerts.
        report_interval_seconds: Interval of the periodic report task.
        clock: Returns the current time in seconds (defaults to time.time).
    """

    def __init__(
        self,
        audit: Optional[AuditLog] = None,
        alerts: Optional[AlertDispatcher] = None,
        report_interval_seconds: float = 300.0,
        clock: Callable[[], float] = time.time,
    ):
        self.audit = audit
        self.alerts = alerts
        self.report_interval_seconds = report_interval_seconds
        self._clock = clock
        self.start_time = clock()
        self.metrics = MonitorMetrics()
        self.recent_quotes: Deque[RecentQuote] = deque(maxlen=MAX_RECENT_QUOTES)
        self._response_samples = 0
        self._task: Optional[asyncio.Task] = None

    # =========================================================================
    # Tracking
    # =========================================================================

    def track_quote_generated(self, quote: QuoteValidationInput, response_time_ms: float) -> None:
        self.metrics.quotes_generated += 1
        self._update_average_response_time(response_time_ms)

        if quote.total_amount > HIGH_VALUE_AMOUNT:
            self.metrics.high_value_quotes += 1

        self.recent_quotes.append(RecentQuote(
            timestamp=self._clock(),
            amount=quote.total_amount,
            user_count=quote.user_count,
            system_type=quote.system_type,
            response_time_ms=response_time_ms,
            is_multi_site=quote.multi_site,
        ))

        self._check_rapid_fire_quotes()

    def track_validation_failure(self, severity: Severity, message: str, alert: bool = True) -> None:
        """
        Count a triggered rule. Stop rules count as errors and raise a
        critical alert unless the caller already alerted for them.
        """
        self.metrics.validation_failures += 1

        if severity == Severity.STOP_PROCESSING:
            self.metrics.errors += 1
            if alert and self.alerts is not None:
                self.alerts.critical(f"Validation failure: {message}")
        else:
            self.metrics.warnings += 1

    def track_system_error(self, error: BaseException, context: Optional[Dict[str, Any]] = None) -> None:
        """Count an unexpected error, log it to system_errors.log and alert."""
        self.metrics.errors += 1

        record = {
            'error': str(error),
            'error_type': type(error).__name__,
            'stack': ''.join(traceback.format_exception(type(error), error, error.__traceback__)),
            'context': context or {},
        }
        logger.error(f"SYSTEM_ERROR: {type(error).__name__}: {error} context={context}")

        if self.audit is not None:
            self.audit.append(SYSTEM_ERRORS_LOG, record)
        if self.alerts is not None:
            self.alerts.critical(f"System error: {error}", context)

    def _update_average_response_time(self, response_time_ms: float) -> None:
        # First sample seeds the average
        if self._response_samples == 0:
            self.metrics.average_response_time = response_time_ms
        else:
            self.metrics.average_response_time = (
                RESPONSE_TIME_ALPHA * response_time_ms
                + (1 - RESPONSE_TIME_ALPHA) * self.metrics.average_response_time
            )
        self._response_samples += 1

    def _check_rapid_fire_quotes(self) -> None:
        window_start = self._clock() - RAPID_FIRE_WINDOW_SECONDS
        recent = sum(1 for q in self.recent_quotes if q.timestamp > window_start)

        if recent > RAPID_FIRE_LIMIT:
            message = (
                f"{recent} quotes generated in 5 minutes - possible automation or testing"
            )
            logger.warning(message)
            if self.alerts is not None:
                self.alerts.warning(message)

    # =========================================================================
    # Health & Readiness
    # =========================================================================

    @property
    def error_rate(self) -> float:
        """Errors per quote generated, in percent; 0 before the first quote."""
        if self.metrics.quotes_generated == 0:
            return 0.0
        return self.metrics.errors / self.metrics.quotes_generated * 100

    def get_health_status(self) -> HealthSnapshot:
        rate = self.error_rate
        if rate < HEALTHY_ERROR_RATE:
            status = HealthStatus.HEALTHY
        elif rate < WARNING_ERROR_RATE:
            status = HealthStatus.WARNING
        else:
            status = HealthStatus.CRITICAL

        return HealthSnapshot(
            status=status,
            uptime_hours=round((self._clock() - self.start_time) / 3600, 2),
            error_rate=round(rate, 2),
            average_response_time_ms=round(self.metrics.average_response_time, 1),
            metrics=self.metrics.model_copy(),
        )

    def analyze_recent_activity(self) -> Optional[RecentActivity]:
        """Summarize the ring buffer; None when no quotes were tracked."""
        if not self.recent_quotes:
            return None

        amounts = np.array([q.amount for q in self.recent_quotes], dtype=float)
        multi_site = sum(1 for q in self.recent_quotes if q.is_multi_site)
        distribution = Counter(q.system_type or 'Unknown' for q in self.recent_quotes)

        return RecentActivity(
            quote_count=len(amounts),
            average_amount=round(float(np.mean(amounts)), 2),
            max_amount=float(np.max(amounts)),
            min_amount=float(np.min(amounts)),
            system_type_distribution=dict(distribution),
            multi_site_percentage=round(multi_site / len(amounts) * 100, 1),
        )

    def generate_periodic_report(self) -> PeriodicReport:
        health = self.get_health_status()
        report = PeriodicReport(
            timestamp=datetime.now(timezone.utc),
            health=health,
            recent_activity=self.analyze_recent_activity(),
        )

        logger.info(
            f"PERIODIC_REPORT status={health.status.value} "
            f"quotes={health.metrics.quotes_generated} error_rate={health.error_rate}%"
        )
        if self.audit is not None:
            self.audit.append(PERIODIC_REPORTS_LOG, report.model_dump(mode='json'))

        if health.status == HealthStatus.CRITICAL and self.alerts is not None:
            self.alerts.critical(
                f"System health is CRITICAL - Error rate: {health.error_rate:.2f}%"
            )
        return report

    def get_production_readiness(self) -> ReadinessReport:
        health = self.get_health_status()
        avg_response = self.metrics.average_response_time

        checks = {
            'error_rate': ReadinessCheck(
                status='PASS' if self.error_rate < READY_MAX_ERROR_RATE else 'FAIL',
                value=f"{self.error_rate:.2f}%",
                requirement='<1%',
            ),
            'response_time': ReadinessCheck(
                status='PASS' if avg_response < READY_MAX_RESPONSE_MS else 'FAIL',
                value=f"{avg_response:.0f}ms",
                requirement='<3000ms',
            ),
            'uptime': ReadinessCheck(
                status='PASS' if health.status != HealthStatus.CRITICAL else 'FAIL',
                value=health.status.value,
                requirement='Not CRITICAL',
            ),
        }

        ready = all(check.status == 'PASS' for check in checks.values())
        return ReadinessReport(
            ready=ready,
            checks=checks,
            recommendation=(
                'System meets production readiness criteria' if ready
                else 'System requires attention before production deployment'
            ),
        )

    # =========================================================================
    # Periodic Reporting Task
    # =========================================================================

    def start(self) -> None:
        """Start the periodic report task on the running event loop."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._report_loop(), name='production-monitor')
            logger.info(f"Production monitor started (interval {self.report_interval_seconds}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Production monitor stopped")

    async def _report_loop(self) -> None:
        while True:
            await asyncio.sleep(self.report_interval_seconds)
            try:
                self.generate_periodic_report()
            except Exception as e:
                logger.error(f"Periodic report failed: {e}", exc_info=True)

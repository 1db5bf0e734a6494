"""
Metrics Collection with Prometheus.

Exposes auth, OTP, session and system metrics for monitoring.
"""

from enum import Enum
from typing import Callable

from prometheus_client import Counter, Gauge, Histogram, Info

from app.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    OUTCOME = "outcome"
    PURPOSE = "purpose"
    REASON = "reason"
    ERROR_TYPE = "error_type"


class IdentityMetrics:
    """
    Centralized metrics for the identity API.

    Covers:
    - HTTP requests (rate, duration, in progress)
    - Auth attempts (signup/login by method and outcome)
    - OTP lifecycle (issued, rate limited, verification outcomes)
    - Session lifecycle (created, evicted, refreshed, revoked)
    - Store availability
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info(
            "identity_service",
            "Service information",
        )
        self.service_info.info(
            {
                "version": settings.api_version,
                "service_name": settings.service_name,
            }
        )

        # ====================================================================
        # HTTP Metrics
        # ====================================================================
        self.http_requests_total = Counter(
            "identity_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "identity_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "identity_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Auth Metrics
        # ====================================================================
        self.auth_attempts_total = Counter(
            "identity_auth_attempts_total",
            "Signup and login attempts",
            [MetricLabels.OPERATION, MetricLabels.METHOD, MetricLabels.OUTCOME],
        )

        # ====================================================================
        # OTP Metrics
        # ====================================================================
        self.otps_issued_total = Counter(
            "identity_otps_issued_total",
            "OTPs issued",
            [MetricLabels.PURPOSE],
        )

        self.otps_rate_limited_total = Counter(
            "identity_otps_rate_limited_total",
            "OTP issue requests rejected by the rate limit",
            [MetricLabels.PURPOSE],
        )

        self.otp_verifications_total = Counter(
            "identity_otp_verifications_total",
            "OTP verification outcomes",
            [MetricLabels.PURPOSE, MetricLabels.OUTCOME],
        )

        # ====================================================================
        # Session Metrics
        # ====================================================================
        self.sessions_created_total = Counter(
            "identity_sessions_created_total",
            "Sessions created",
            [MetricLabels.METHOD],
        )

        self.sessions_evicted_total = Counter(
            "identity_sessions_evicted_total",
            "Sessions deactivated to make room for a new one",
            [MetricLabels.REASON],
        )

        self.sessions_refreshed_total = Counter(
            "identity_sessions_refreshed_total",
            "Refresh token rotations",
            [MetricLabels.OUTCOME],
        )

        self.sessions_revoked_total = Counter(
            "identity_sessions_revoked_total",
            "Sessions revoked",
            [MetricLabels.REASON],
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.store_unavailable_total = Counter(
            "identity_store_unavailable_total",
            "Operations that failed because the store did not answer",
            [MetricLabels.OPERATION],
        )

        self.errors_total = Counter(
            "identity_errors_total",
            "Total errors by type",
            [MetricLabels.ERROR_TYPE, MetricLabels.OPERATION],
        )

    # ========================================================================
    # Helper Methods
    # ========================================================================

    def record_http_request(
        self, endpoint: str, method: str, status_code: int, duration: float
    ) -> None:
        """Record HTTP request metrics."""
        self.http_requests_total.labels(
            endpoint=endpoint, method=method, status_code=status_code
        ).inc()
        self.http_request_duration_seconds.labels(endpoint=endpoint, method=method).observe(
            duration
        )

    def record_auth_attempt(self, operation: str, method: str, outcome: str) -> None:
        self.auth_attempts_total.labels(operation=operation, method=method, outcome=outcome).inc()

    def record_otp_issued(self, purpose: str) -> None:
        self.otps_issued_total.labels(purpose=purpose).inc()

    def record_otp_rate_limited(self, purpose: str) -> None:
        self.otps_rate_limited_total.labels(purpose=purpose).inc()

    def record_otp_verification(self, purpose: str, outcome: str) -> None:
        self.otp_verifications_total.labels(purpose=purpose, outcome=outcome).inc()

    def record_session_created(self, method: str, evicted: dict[str, int] | None = None) -> None:
        """Record a new session and any evictions it caused, keyed by reason."""
        self.sessions_created_total.labels(method=method).inc()
        for reason, count in (evicted or {}).items():
            self.sessions_evicted_total.labels(reason=reason).inc(count)

    def record_session_refreshed(self, outcome: str) -> None:
        self.sessions_refreshed_total.labels(outcome=outcome).inc()

    def record_session_revoked(self, reason: str, count: int = 1) -> None:
        if count > 0:
            self.sessions_revoked_total.labels(reason=reason).inc(count)

    def record_store_unavailable(self, operation: str) -> None:
        self.store_unavailable_total.labels(operation=operation).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = IdentityMetrics()


def get_metrics_handler() -> Callable[[], bytes]:
    """
    Get Prometheus metrics handler for FastAPI.

    Usage:
        handler = get_metrics_handler()
        return Response(content=handler(), media_type=CONTENT_TYPE_LATEST)
    """
    from prometheus_client import REGISTRY, generate_latest

    def metrics_endpoint() -> bytes:
        return generate_latest(REGISTRY)

    return metrics_endpoint

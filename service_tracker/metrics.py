"""Business metrics for the service tracker."""

from opentelemetry import metrics

from .logging_config import get_logger

logger = get_logger(__name__)

meter = metrics.get_meter(__name__)

# HTTP Request Metrics
http_request_duration = meter.create_histogram(
    name="http_request_duration_seconds",
    description="Duration of HTTP requests in seconds",
    unit="s",
)

http_requests_total = meter.create_counter(
    name="http_requests_total",
    description="Total number of HTTP requests",
)

http_request_errors = meter.create_counter(
    name="http_request_errors_total",
    description="Total number of HTTP request errors",
)

# Access approval metrics
access_requests_total = meter.create_counter(
    name="access_requests_total",
    description="Total number of access requests by resulting state",
)

telegram_notifications_total = meter.create_counter(
    name="telegram_notifications_total",
    description="Total number of approval notifications by outcome",
)

webhook_callbacks_total = meter.create_counter(
    name="webhook_callbacks_total",
    description="Total number of Telegram callback taps by action and outcome",
)

# Service day metrics
service_writes_total = meter.create_counter(
    name="service_writes_total",
    description="Total number of staff writes by kind",
)

refresh_attempts_total = meter.create_counter(
    name="refresh_attempts_total",
    description="Total number of service-day refresh attempts",
)


def record_http_request(method: str, endpoint: str, status_code: int, duration: float):
    """Record HTTP request metrics."""
    labels = {"method": method, "endpoint": endpoint, "status_code": str(status_code)}

    http_request_duration.record(duration, labels)
    http_requests_total.add(1, labels)

    if status_code >= 400:
        http_request_errors.add(1, labels)


def record_access_request(state: str):
    """Record the state an access request resolved to."""
    access_requests_total.add(1, {"state": state})


def record_notification(outcome: str):
    """Record a notification attempt (sent, failed, skipped)."""
    telegram_notifications_total.add(1, {"outcome": outcome})


def record_webhook_callback(action: str, outcome: str):
    """Record a Telegram callback tap and what it resulted in."""
    webhook_callbacks_total.add(1, {"action": action, "outcome": outcome})


def record_service_write(kind: str):
    """Record a status, time override or ready write."""
    service_writes_total.add(1, {"kind": kind})


def record_refresh_attempt(source: str, success: bool):
    """Record a service-day refresh attempt."""
    refresh_attempts_total.add(
        1, {"source": source, "outcome": "success" if success else "failure"}
    )


logger.info("Business metrics instruments created")

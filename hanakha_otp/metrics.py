"""
OTP Metrics
===========
Prometheus metric definitions for OTP send, verify and delivery outcomes.
"""

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
    CONTENT_TYPE_LATEST,
)


OTP_REGISTRY = CollectorRegistry()

OTP_SEND_TOTAL = Counter(
    name="otp_send_total",
    documentation="OTP send requests by outcome",
    labelnames=["channel", "outcome"],
    registry=OTP_REGISTRY,
)

OTP_VERIFY_TOTAL = Counter(
    name="otp_verify_total",
    documentation="OTP verification requests by outcome",
    labelnames=["channel", "outcome"],
    registry=OTP_REGISTRY,
)

OTP_DELIVERY_TOTAL = Counter(
    name="otp_delivery_total",
    documentation="Notification deliveries by provider and outcome",
    labelnames=["channel", "provider", "outcome"],
    registry=OTP_REGISTRY,
)

OTP_SEND_LATENCY = Histogram(
    name="otp_send_duration_seconds",
    documentation="Time spent in the core send procedure",
    labelnames=["channel"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 15.0],
    registry=OTP_REGISTRY,
)


def record_send(channel: str, outcome: str) -> None:
    OTP_SEND_TOTAL.labels(channel=channel, outcome=outcome).inc()


def record_verify(channel: str, outcome: str) -> None:
    OTP_VERIFY_TOTAL.labels(channel=channel, outcome=outcome).inc()


def record_delivery(channel: str, provider: str, delivered: bool) -> None:
    OTP_DELIVERY_TOTAL.labels(
        channel=channel,
        provider=provider,
        outcome="delivered" if delivered else "failed",
    ).inc()


def observe_send_latency(channel: str, seconds: float) -> None:
    OTP_SEND_LATENCY.labels(channel=channel).observe(seconds)


def get_metrics_text() -> bytes:
    """Render all OTP metrics in the Prometheus exposition format."""
    return generate_latest(OTP_REGISTRY)


__all__ = [
    "OTP_REGISTRY",
    "CONTENT_TYPE_LATEST",
    "record_send",
    "record_verify",
    "record_delivery",
    "observe_send_latency",
    "get_metrics_text",
]

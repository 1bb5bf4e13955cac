"""Prometheus metrics for the webhook."""

from contextlib import contextmanager
from typing import Iterator, Optional

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, Histogram, generate_latest

__all__ = ["CONTENT_TYPE_LATEST", "HookMetrics"]


class HookMetrics:
    """
    Metrics owned by one application instance.

    Each instance registers into its own CollectorRegistry unless one is
    passed in, so tests can build as many apps as they like.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()
        self.received = Counter(
            "mailhook_emails_received_total",
            "Emails that passed the allow-list and were processed",
            registry=self.registry,
        )
        self.filtered = Counter(
            "mailhook_emails_filtered_total",
            "Emails dropped by the allow-list",
            ["reason"],  # sender|recipient
            registry=self.registry,
        )
        self.processing_seconds = Histogram(
            "mailhook_email_processing_seconds",
            "Time spent parsing and dispatching an email",
            buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0],
            registry=self.registry,
        )

    def inc_received(self) -> None:
        self.received.inc()

    def inc_filtered(self, reason: str) -> None:
        """Count a dropped email under the allow-list rule that refused it."""
        self.filtered.labels(reason=reason).inc()

    @contextmanager
    def time_processing(self) -> Iterator[None]:
        with self.processing_seconds.time():
            yield

    def generate_latest(self) -> bytes:
        """Return the current snapshot in Prometheus text format."""
        return generate_latest(self.registry)

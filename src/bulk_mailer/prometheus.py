# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Prometheus metrics for the bulk mailer.

All metrics use the ``bulk_mailer_`` prefix.

Metrics exposed:
    - ``bulk_mailer_sent_total``: Counter of emails accepted by the relay.
    - ``bulk_mailer_errors_total``: Counter of failed sends.
    - ``bulk_mailer_batches_total``: Counter of processed ``/send`` batches.
    - ``bulk_mailer_batch_in_progress``: Gauge of batches currently running.

Example:
    Scraping the metrics::

        GET /metrics
"""

from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest


class DispatchMetrics:
    """Prometheus collector updated by :class:`bulk_mailer.core.MailDispatcher`.

    Each instance owns its own registry so tests and multiple apps in one
    process never collide on metric names.
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        self.registry = registry or CollectorRegistry()
        self.sent = Counter(
            "bulk_mailer_sent_total",
            "Total emails accepted by the relay",
            registry=self.registry,
        )
        self.errors = Counter(
            "bulk_mailer_errors_total",
            "Total failed sends",
            registry=self.registry,
        )
        self.batches = Counter(
            "bulk_mailer_batches_total",
            "Total processed batches",
            registry=self.registry,
        )
        self.in_progress = Gauge(
            "bulk_mailer_batch_in_progress",
            "Batches currently being dispatched",
            registry=self.registry,
        )

    def inc_sent(self) -> None:
        self.sent.inc()

    def inc_error(self) -> None:
        self.errors.inc()

    def batch_started(self) -> None:
        self.in_progress.inc()

    def batch_finished(self) -> None:
        """Count a completed batch and drop it from the in-progress gauge."""
        self.batches.inc()
        self.in_progress.dec()

    def generate_latest(self) -> bytes:
        """Export all metrics in Prometheus text exposition format."""
        return generate_latest(self.registry)

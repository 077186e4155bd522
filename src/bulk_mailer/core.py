# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Serial per-recipient dispatch loop.

This module provides :class:`MailDispatcher`, which turns a
:class:`~bulk_mailer.models.SendRequest` into a
:class:`~bulk_mailer.models.SendReport`:

- One envelope per recipient, in input order
- Sends are strictly serialized through the injected transport
- A fixed pacing delay follows every send, the last one included
- A failure for one recipient is recorded and never aborts the batch

Example:
    Dispatching a batch::

        from bulk_mailer.core import DispatchConfig, MailDispatcher, parse_recipients
        from bulk_mailer.models import SendRequest

        dispatcher = MailDispatcher(DispatchConfig(sender="me@example.com"), transport)
        report = await dispatcher.dispatch(
            SendRequest(recipients=parse_recipients("a@example.com, b@example.com"))
        )

Attributes:
    DEFAULT_SUBJECT: Subject used when the request leaves it empty.
    DEFAULT_BODY: Body used when the request leaves it empty.
    DEFAULT_PACING_INTERVAL: Seconds waited after each send.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from .logger import get_logger
from .models import Envelope, RecipientOutcome, SendReport, SendRequest
from .prometheus import DispatchMetrics
from .transport import MailTransport

DEFAULT_SUBJECT = "(No Subject)"
DEFAULT_BODY = "(No Message)"
DEFAULT_PACING_INTERVAL = 1.0

NO_RECIPIENTS_MESSAGE = "No recipients provided."


class NoRecipientsError(ValueError):
    """Raised when a batch has no recipient left after parsing."""

    def __init__(self, message: str = NO_RECIPIENTS_MESSAGE):
        super().__init__(message)
        self.code = "no_recipients"


def parse_recipients(raw: str | None) -> tuple[str, ...]:
    """Split a comma-separated recipient field.

    Entries are trimmed and empty ones dropped. Order and duplicates are
    preserved.

    >>> parse_recipients("a@example.com, , b@example.com ,,")
    ('a@example.com', 'b@example.com')
    """
    if not raw:
        return ()
    return tuple(part.strip() for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class DispatchConfig:
    """Explicit dispatcher configuration.

    Attributes:
        sender: Address placed in the ``From`` header of every envelope.
            May be ``None`` when unconfigured; the relay then rejects the
            send and the failure is recorded per recipient.
        pacing_interval: Seconds to wait after every send.
        default_subject: Fallback for an empty subject.
        default_body: Fallback for an empty body.
    """

    sender: str | None = None
    pacing_interval: float = DEFAULT_PACING_INTERVAL
    default_subject: str = DEFAULT_SUBJECT
    default_body: str = DEFAULT_BODY


class MailDispatcher:
    """Send one message per recipient, one at a time.

    The dispatcher holds no per-request state, so a single instance serves
    concurrent requests. Each call to :meth:`dispatch` runs in the caller's
    task and yields only while awaiting the transport and the pacing delay.

    Attributes:
        config: Sender identity, pacing interval and placeholders.
        transport: Object exposing ``async send(envelope) -> str``.
        metrics: Prometheus collector updated for every outcome.
        logger: Logger used for per-recipient and batch messages.
    """

    def __init__(
        self,
        config: DispatchConfig,
        transport: MailTransport,
        *,
        metrics: DispatchMetrics | None = None,
        logger=None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ):
        """Initialize the dispatcher.

        Args:
            config: Dispatcher configuration.
            transport: Mail transport used for every send.
            metrics: Prometheus collector. If None, a new one is created.
            logger: Custom logger. If None, uses the module logger.
            sleep: Coroutine used for the pacing delay. Defaults to
                ``asyncio.sleep``; tests inject a recorder.
        """
        self.config = config
        self.transport = transport
        self.metrics = metrics or DispatchMetrics()
        self.logger = logger or get_logger("BulkMailer.core")
        self._sleep = sleep or asyncio.sleep

    def build_envelope(self, request: SendRequest, recipient: str) -> Envelope:
        """Build the envelope for ``recipient``.

        The request's attachment reference is reused as is, so every
        recipient points at the same stored file.
        """
        return Envelope(
            sender=self.config.sender,
            recipient=recipient,
            subject=request.subject or self.config.default_subject,
            body=request.message or self.config.default_body,
            attachment=request.attachment,
        )

    async def dispatch(self, request: SendRequest) -> SendReport:
        """Send ``request`` to each of its recipients and report the outcomes.

        Args:
            request: Parsed batch. ``recipients`` must not be empty.

        Returns:
            A report with one outcome per recipient, in input order. Its
            ``success`` flag is always True: it means the batch ran.

        Raises:
            NoRecipientsError: If ``request.recipients`` is empty. Nothing is
                sent in that case.

        When the transport has a ``release()`` coroutine it is awaited after
        the last send, so per-batch resources do not outlive the batch.
        """
        if not request.recipients:
            raise NoRecipientsError()

        outcomes: list[RecipientOutcome] = []
        self.metrics.batch_started()
        try:
            for recipient in request.recipients:
                outcome = await self._send_one(self.build_envelope(request, recipient))
                outcomes.append(outcome)
                await self._sleep(self.config.pacing_interval)
        finally:
            self.metrics.batch_finished()
            release = getattr(self.transport, "release", None)
            if release is not None:
                await release()

        report = SendReport(outcomes=tuple(outcomes))
        self.logger.info(
            "Processed %d emails (%d failed)",
            report.total_processed,
            report.failed,
        )
        return report

    async def _send_one(self, envelope: Envelope) -> RecipientOutcome:
        """Attempt a single send, converting any transport error to an outcome."""
        try:
            ack = await self.transport.send(envelope)
        except Exception as exc:
            detail = str(exc) or type(exc).__name__
            self.logger.error("Failed to send to %s: %s", envelope.recipient, detail)
            self.metrics.inc_error()
            return RecipientOutcome(recipient=envelope.recipient, success=False, detail=detail)

        self.logger.info("Email sent to %s: %s", envelope.recipient, ack)
        self.metrics.inc_sent()
        return RecipientOutcome(recipient=envelope.recipient, success=True, detail=str(ack))

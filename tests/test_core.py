import asyncio
import time
import types
from pathlib import Path
from typing import List

import pytest
from prometheus_client import CollectorRegistry

from bulk_mailer.core import (
    DEFAULT_BODY,
    DEFAULT_SUBJECT,
    DispatchConfig,
    MailDispatcher,
    NoRecipientsError,
    parse_recipients,
)
from bulk_mailer.models import AttachmentRef, Envelope, SendRequest
from bulk_mailer.prometheus import DispatchMetrics


class DummyTransport:
    def __init__(self, failures=None):
        self.envelopes: List[Envelope] = []
        self.failures = failures or {}

    async def send(self, envelope):
        self.envelopes.append(envelope)
        if envelope.recipient in self.failures:
            raise self.failures[envelope.recipient]
        return f"250 OK queued for {envelope.recipient}"


class SleepRecorder:
    def __init__(self, transport=None):
        self.calls: List[float] = []
        self.sent_before_each: List[int] = []
        self.transport = transport

    async def __call__(self, delay):
        self.calls.append(delay)
        if self.transport is not None:
            self.sent_before_each.append(len(self.transport.envelopes))


def quiet_logger():
    return types.SimpleNamespace(
        info=lambda *args, **kwargs: None,
        error=lambda *args, **kwargs: None,
        warning=lambda *args, **kwargs: None,
        debug=lambda *args, **kwargs: None,
    )


def make_dispatcher(transport, sleep=None, **config):
    config.setdefault("sender", "sender@example.com")
    return MailDispatcher(
        DispatchConfig(**config),
        transport,
        metrics=DispatchMetrics(CollectorRegistry()),
        logger=quiet_logger(),
        sleep=sleep or SleepRecorder(),
    )


def test_parse_recipients_trims_and_drops_empty_entries():
    assert parse_recipients("a@example.com, , b@example.com ,,") == ("a@example.com", "b@example.com")


def test_parse_recipients_keeps_duplicates_and_order():
    assert parse_recipients("z@example.com,a@example.com, z@example.com") == (
        "z@example.com",
        "a@example.com",
        "z@example.com",
    )


@pytest.mark.parametrize("raw", [None, "", "   ", " , ,, "])
def test_parse_recipients_empty_inputs(raw):
    assert parse_recipients(raw) == ()


@pytest.mark.asyncio
async def test_dispatch_returns_one_outcome_per_recipient_in_order():
    transport = DummyTransport()
    dispatcher = make_dispatcher(transport)
    recipients = ("c@example.com", "a@example.com", "b@example.com", "a@example.com")

    report = await dispatcher.dispatch(SendRequest(recipients=recipients, subject="Hi", message="Body"))

    assert report.success is True
    assert report.total_processed == 4
    assert [o.recipient for o in report.outcomes] == list(recipients)
    assert [e.recipient for e in transport.envelopes] == list(recipients)
    assert all(o.success for o in report.outcomes)
    assert report.outcomes[0].detail == "250 OK queued for c@example.com"


@pytest.mark.asyncio
async def test_dispatch_records_failures_without_aborting():
    transport = DummyTransport(failures={"bad@example.com": RuntimeError("535 Authentication failed")})
    dispatcher = make_dispatcher(transport)

    report = await dispatcher.dispatch(
        SendRequest(recipients=("good@example.com", "bad@example.com", "last@example.com"))
    )

    assert report.success is True
    assert report.total_processed == 3
    good, bad, last = report.outcomes
    assert good.success is True
    assert bad.success is False
    assert bad.detail == "535 Authentication failed"
    assert last.success is True
    assert len(transport.envelopes) == 3


@pytest.mark.asyncio
async def test_dispatch_reports_success_even_when_every_send_fails():
    transport = DummyTransport(failures={"x@example.com": OSError("network down"), "y@example.com": OSError("network down")})
    dispatcher = make_dispatcher(transport)

    report = await dispatcher.dispatch(SendRequest(recipients=("x@example.com", "y@example.com")))

    assert report.success is True
    assert report.failed == 2


@pytest.mark.asyncio
async def test_dispatch_uses_exception_name_when_message_is_empty():
    transport = DummyTransport(failures={"t@example.com": asyncio.TimeoutError()})
    dispatcher = make_dispatcher(transport)

    report = await dispatcher.dispatch(SendRequest(recipients=("t@example.com",)))

    assert report.outcomes[0].success is False
    assert report.outcomes[0].detail == "TimeoutError"


@pytest.mark.asyncio
async def test_dispatch_rejects_empty_recipient_list():
    transport = DummyTransport()
    sleep = SleepRecorder()
    dispatcher = make_dispatcher(transport, sleep=sleep)

    with pytest.raises(NoRecipientsError) as excinfo:
        await dispatcher.dispatch(SendRequest(recipients=()))

    assert str(excinfo.value) == "No recipients provided."
    assert transport.envelopes == []
    assert sleep.calls == []


@pytest.mark.asyncio
async def test_dispatch_paces_after_every_send_including_the_last():
    transport = DummyTransport()
    sleep = SleepRecorder(transport)
    dispatcher = make_dispatcher(transport, sleep=sleep, pacing_interval=1.0)

    await dispatcher.dispatch(SendRequest(recipients=("a@example.com", "b@example.com", "c@example.com")))

    assert sleep.calls == [1.0, 1.0, 1.0]
    # each pause happens right after the matching send
    assert sleep.sent_before_each == [1, 2, 3]


@pytest.mark.asyncio
async def test_dispatch_elapsed_time_covers_pacing():
    transport = DummyTransport()
    dispatcher = MailDispatcher(
        DispatchConfig(sender="sender@example.com", pacing_interval=0.05),
        transport,
        metrics=DispatchMetrics(CollectorRegistry()),
        logger=quiet_logger(),
    )

    started = time.monotonic()
    await dispatcher.dispatch(SendRequest(recipients=("a@example.com", "b@example.com", "c@example.com")))
    elapsed = time.monotonic() - started

    assert elapsed >= 3 * 0.05 - 0.01


@pytest.mark.asyncio
async def test_dispatch_applies_placeholders_for_empty_subject_and_body():
    transport = DummyTransport()
    dispatcher = make_dispatcher(transport)

    await dispatcher.dispatch(SendRequest(recipients=("a@example.com",)))

    envelope = transport.envelopes[0]
    assert envelope.subject == DEFAULT_SUBJECT == "(No Subject)"
    assert envelope.body == DEFAULT_BODY == "(No Message)"
    assert envelope.sender == "sender@example.com"


@pytest.mark.asyncio
async def test_dispatch_keeps_explicit_subject_and_body():
    transport = DummyTransport()
    dispatcher = make_dispatcher(transport)

    await dispatcher.dispatch(SendRequest(recipients=("a@example.com",), subject="Launch", message="We are live"))

    assert transport.envelopes[0].subject == "Launch"
    assert transport.envelopes[0].body == "We are live"


@pytest.mark.asyncio
async def test_dispatch_reuses_the_same_attachment_for_every_recipient(tmp_path):
    stored = tmp_path / "1700000000000-report.pdf"
    stored.write_bytes(b"%PDF-1.4")
    attachment = AttachmentRef(original_name="report.pdf", stored_path=stored)
    transport = DummyTransport()
    dispatcher = make_dispatcher(transport)

    await dispatcher.dispatch(
        SendRequest(recipients=("a@example.com", "b@example.com"), attachment=attachment)
    )

    first, second = transport.envelopes
    assert first.attachment is attachment
    assert second.attachment is attachment
    assert second.attachment.stored_path == Path(stored)
    assert stored.exists()


@pytest.mark.asyncio
async def test_dispatch_updates_metrics():
    metrics = DispatchMetrics(CollectorRegistry())
    transport = DummyTransport(failures={"bad@example.com": RuntimeError("rejected")})
    dispatcher = MailDispatcher(
        DispatchConfig(sender="sender@example.com"),
        transport,
        metrics=metrics,
        logger=quiet_logger(),
        sleep=SleepRecorder(),
    )

    await dispatcher.dispatch(SendRequest(recipients=("ok@example.com", "bad@example.com", "ok2@example.com")))

    output = metrics.generate_latest()
    assert b"bulk_mailer_sent_total 2.0" in output
    assert b"bulk_mailer_errors_total 1.0" in output
    assert b"bulk_mailer_batches_total 1.0" in output
    assert b"bulk_mailer_batch_in_progress 0.0" in output


class ReleasingTransport(DummyTransport):
    def __init__(self, failures=None):
        super().__init__(failures)
        self.released_after: List[int] = []

    async def release(self):
        self.released_after.append(len(self.envelopes))


@pytest.mark.asyncio
async def test_dispatch_releases_transport_after_the_batch():
    transport = ReleasingTransport(failures={"b@example.com": RuntimeError("boom")})
    dispatcher = make_dispatcher(transport)

    await dispatcher.dispatch(SendRequest(recipients=("a@example.com", "b@example.com", "c@example.com")))

    assert transport.released_after == [3]


@pytest.mark.asyncio
async def test_dispatch_releases_transport_when_cancelled():
    transport = ReleasingTransport()

    async def cancelled_sleep(_delay):
        raise asyncio.CancelledError()

    dispatcher = make_dispatcher(transport, sleep=cancelled_sleep)

    with pytest.raises(asyncio.CancelledError):
        await dispatcher.dispatch(SendRequest(recipients=("a@example.com", "b@example.com")))

    assert transport.released_after == [1]

# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Request-scoped value types exchanged between the API, the dispatcher and the transport.

Nothing here is persisted. A :class:`SendRequest` is built for each HTTP call
and turned into one :class:`Envelope` per recipient. Each send produces a
:class:`RecipientOutcome`. The outcomes are then gathered into a
:class:`SendReport` and thrown away once the response is serialized.

Models:
    - AttachmentRef: Stored upload referenced by every envelope of a batch
    - SendRequest: Parsed and validated form input
    - Envelope: Fully-populated message handed to the transport
    - RecipientOutcome: Result of one send attempt
    - SendReport: Ordered outcomes of a whole batch
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path


@dataclass(frozen=True)
class AttachmentRef:
    """A file written by the upload store, attached by reference.

    Attributes:
        original_name: Filename as sent by the client; used in the MIME part.
        stored_path: Location on disk the transport reads from.
        size_bytes: Size of the stored file, informational only.
    """

    original_name: str
    stored_path: Path
    size_bytes: int | None = None


@dataclass(frozen=True)
class SendRequest:
    """Input of one dispatch batch.

    ``recipients`` is already split and trimmed (see
    :func:`bulk_mailer.core.parse_recipients`); duplicates are kept.
    """

    recipients: tuple[str, ...]
    subject: str = ""
    message: str = ""
    attachment: AttachmentRef | None = None


@dataclass(frozen=True)
class Envelope:
    """Message handed to :class:`bulk_mailer.transport.MailTransport`."""

    sender: str | None
    recipient: str
    subject: str
    body: str
    attachment: AttachmentRef | None = None


@dataclass(frozen=True)
class RecipientOutcome:
    """Result of sending to one recipient.

    ``detail`` holds the relay acknowledgment on success and the error
    description on failure.
    """

    recipient: str
    success: bool
    detail: str


@dataclass(frozen=True)
class SendReport:
    """Outcomes of a batch, in send order.

    ``success`` only says the batch ran; callers inspect ``outcomes`` to
    know which recipients were actually reached.
    """

    outcomes: tuple[RecipientOutcome, ...] = field(default_factory=tuple)
    success: bool = True

    @property
    def total_processed(self) -> int:
        return len(self.outcomes)

    @property
    def failed(self) -> int:
        return sum(1 for outcome in self.outcomes if not outcome.success)

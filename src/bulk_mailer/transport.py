# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Mail transport used by the dispatch loop.

The dispatcher only depends on :class:`MailTransport`, a protocol with a
single ``send`` coroutine. :class:`SMTPTransport` is the production
implementation: it renders an :class:`~bulk_mailer.models.Envelope` into an
``EmailMessage`` and hands it to the relay through :class:`SMTPPool`.

Example:
    Sending one envelope::

        transport = SMTPTransport(
            host="smtp.gmail.com", port=465,
            user="me@gmail.com", password="app-password",
        )
        ack = await transport.send(envelope)   # "250 2.0.0 OK ..."
"""

from __future__ import annotations

import asyncio
import mimetypes
from email.message import EmailMessage
from typing import Protocol, runtime_checkable

from .logger import get_logger
from .models import Envelope
from .smtp_pool import SMTPPool

DEFAULT_SMTP_HOST = "smtp.gmail.com"
DEFAULT_SMTP_PORT = 465

logger = get_logger("BulkMailer.transport")


@runtime_checkable
class MailTransport(Protocol):
    """Anything able to deliver an envelope.

    ``send`` returns the relay acknowledgment and raises on failure; the
    exception message becomes the recipient's error detail.
    """

    async def send(self, envelope: Envelope) -> str: ...


def guess_mime(filename: str) -> tuple[str, str]:
    """Return ``(maintype, subtype)`` for ``filename``.

    Unknown extensions fall back to ``application/octet-stream``.
    """
    mime_type, _ = mimetypes.guess_type(filename)
    if not mime_type or "/" not in mime_type:
        return "application", "octet-stream"
    maintype, subtype = mime_type.split("/", 1)
    return maintype, subtype


async def build_message(envelope: Envelope) -> EmailMessage:
    """Render ``envelope`` as a plain-text ``EmailMessage``.

    The attachment, if any, is read from its stored path on every call; the
    file itself is left in place.

    Raises:
        OSError: If the stored attachment cannot be read.
    """
    msg = EmailMessage()
    if envelope.sender:
        msg["From"] = envelope.sender
    msg["To"] = envelope.recipient
    msg["Subject"] = envelope.subject
    msg.set_content(envelope.body)

    if envelope.attachment is not None:
        attachment = envelope.attachment
        content = await asyncio.to_thread(attachment.stored_path.read_bytes)
        maintype, subtype = guess_mime(attachment.original_name)
        msg.add_attachment(content, maintype=maintype, subtype=subtype, filename=attachment.original_name)
    return msg


class SMTPTransport:
    """Deliver envelopes through an authenticated SMTP relay.

    Attributes:
        host: Relay hostname.
        port: Relay port; 465 means implicit TLS when ``use_tls`` is set.
        user: Login name, normally the sender address.
        password: Login secret.
        use_tls: Whether to encrypt (implicit TLS on 465, STARTTLS elsewhere).
        send_timeout: Upper bound in seconds for one ``send_message`` call.
        pool: Connection pool shared by every batch.
    """

    def __init__(
        self,
        *,
        host: str = DEFAULT_SMTP_HOST,
        port: int = DEFAULT_SMTP_PORT,
        user: str | None = None,
        password: str | None = None,
        use_tls: bool = True,
        send_timeout: float = 30.0,
        pool: SMTPPool | None = None,
    ):
        self.host = host
        self.port = int(port)
        self.user = user
        self.password = password
        self.use_tls = use_tls
        self.send_timeout = send_timeout
        self.pool = pool or SMTPPool()

    async def send(self, envelope: Envelope) -> str:
        """Send ``envelope`` and return the relay's final response line.

        Raises:
            aiosmtplib.SMTPException: On relay rejection or login failure.
            asyncio.TimeoutError: If the relay does not answer in time.
            OSError: On network errors or an unreadable attachment.
        """
        msg = await build_message(envelope)
        async with self.pool.connection(
            self.host, self.port, self.user, self.password, use_tls=self.use_tls
        ) as smtp:
            _errors, response = await asyncio.wait_for(smtp.send_message(msg), timeout=self.send_timeout)
        logger.debug("Relay accepted message for %s", envelope.recipient)
        return response

    async def release(self) -> None:
        """Close the calling task's pooled connection once its batch is done."""
        await self.pool.discard()

    async def close(self) -> None:
        await self.pool.close_all()

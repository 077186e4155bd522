# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Component wiring shared by the ASGI module and the CLI.

Turns :class:`~bulk_mailer.config.MailerSettings` into a transport, a
dispatcher, an upload store and finally the FastAPI application.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .api import create_app
from .config import MailerSettings
from .core import MailDispatcher
from .logger import get_logger
from .smtp_pool import SMTPPool
from .transport import SMTPTransport
from .uploads import UploadStore

POOL_CLEANUP_INTERVAL = 60.0

logger = get_logger("BulkMailer.bootstrap")


def build_transport(settings: MailerSettings) -> SMTPTransport:
    return SMTPTransport(
        host=settings.smtp_host,
        port=settings.smtp_port,
        user=settings.sender_address,
        password=settings.sender_password,
        use_tls=settings.smtp_use_tls,
        send_timeout=settings.smtp_timeout,
        pool=SMTPPool(),
    )


def warn_missing_credentials(settings: MailerSettings) -> bool:
    """Log a warning when the sender is not configured.

    Sends are still attempted; the relay rejects them per recipient.

    Returns:
        True if a warning was emitted.
    """
    missing = settings.missing_credentials()
    if missing:
        logger.warning("%s not set; sends will fail until configured", " or ".join(missing))
        return True
    return False


async def _pool_cleanup_loop(pool: SMTPPool, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        await pool.cleanup()


def build_app(settings: MailerSettings) -> FastAPI:
    """Wire every component described by ``settings`` into a FastAPI app."""
    transport = build_transport(settings)
    dispatcher = MailDispatcher(settings.dispatch_config(), transport)
    uploads = UploadStore(settings.upload_dir, max_bytes=settings.max_upload_bytes)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Warn about configuration, keep the relay pool tidy, close it on shutdown."""
        warn_missing_credentials(settings)
        cleanup = asyncio.create_task(_pool_cleanup_loop(transport.pool, POOL_CLEANUP_INTERVAL))
        try:
            yield
        finally:
            cleanup.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await cleanup
            await transport.close()

    return create_app(
        dispatcher,
        uploads,
        public_dir=settings.public_dir,
        cors_origins=settings.cors_origins,
        lifespan=lifespan,
    )



# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Disk storage for the optional ``/send`` attachment.

Each upload is streamed to ``<directory>/<epoch-millis>-<original name>``
and described by an :class:`~bulk_mailer.models.AttachmentRef`. Every
recipient of the batch then reads that same file. Files are never deleted by
the service.
"""

from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import Protocol

from .logger import get_logger
from .models import AttachmentRef

DEFAULT_MAX_BYTES = 25 * 1024 * 1024
CHUNK_SIZE = 1024 * 1024

logger = get_logger("BulkMailer.uploads")


class AttachmentTooLargeError(ValueError):
    """Raised when an upload exceeds the configured size ceiling."""

    def __init__(self, limit: int):
        mib = limit / (1024 * 1024)
        super().__init__(f"Attachment exceeds the {mib:g} MiB limit.")
        self.limit = limit
        self.code = "attachment_too_large"


class UploadLike(Protocol):
    """Subset of ``fastapi.UploadFile`` used by the store."""

    filename: str | None

    async def read(self, size: int = -1) -> bytes: ...


class UploadStore:
    """Write uploads to a fixed directory, enforcing a size ceiling.

    Attributes:
        directory: Target directory, created on first use.
        max_bytes: Largest accepted upload in bytes.
    """

    def __init__(self, directory: str | Path = "uploads", max_bytes: int = DEFAULT_MAX_BYTES):
        self.directory = Path(directory)
        self.max_bytes = int(max_bytes)

    def target_path(self, original_name: str) -> Path:
        """Timestamp-prefixed path for ``original_name``.

        Only the basename is kept so a client cannot escape ``directory``.
        """
        safe_name = Path(original_name.replace("\\", "/")).name or "attachment"
        return self.directory / f"{int(time.time() * 1000)}-{safe_name}"

    async def save(self, upload: UploadLike) -> AttachmentRef:
        """Stream ``upload`` to disk.

        Returns:
            Reference to the stored file, with the client's filename.

        Raises:
            AttachmentTooLargeError: If more than ``max_bytes`` were received.

        Whatever the error, including cancellation, the partial file is
        removed before the exception propagates.
        """
        original_name = upload.filename or "attachment"
        await asyncio.to_thread(self.directory.mkdir, parents=True, exist_ok=True)
        path = self.target_path(original_name)

        written = 0
        fh = await asyncio.to_thread(path.open, "wb")
        try:
            while chunk := await upload.read(CHUNK_SIZE):
                written += len(chunk)
                if written > self.max_bytes:
                    raise AttachmentTooLargeError(self.max_bytes)
                await asyncio.to_thread(fh.write, chunk)
        except AttachmentTooLargeError:
            logger.warning("Rejected upload %s: larger than %d bytes", original_name, self.max_bytes)
            fh.close()
            path.unlink(missing_ok=True)
            raise
        except BaseException:
            logger.error("Upload %s interrupted after %d bytes", original_name, written)
            fh.close()
            path.unlink(missing_ok=True)
            raise
        await asyncio.to_thread(fh.close)

        logger.info("Stored attachment %s at %s (%d bytes)", original_name, path, written)
        return AttachmentRef(original_name=original_name, stored_path=path, size_bytes=written)

# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Asyncio-friendly pool of relay connections.

A batch sends its messages one after the other from a single request task.
Connections are keyed by asyncio task ID, so a batch logs in once and keeps
reusing that connection for every recipient, while concurrent batches keep
their own connections.

The pool handles:
- TTL-based connection expiration
- Health checks via SMTP NOOP before reuse
- Dropping a connection after a failed send
- Releasing a task's connection when its batch ends
- Best-effort cleanup of stale entries

Example:
    Sending through a pooled connection::

        pool = SMTPPool(ttl=300)

        async with pool.connection("smtp.gmail.com", 465, user, password, use_tls=True) as smtp:
            await smtp.send_message(message)

        await pool.cleanup()
"""

import asyncio
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import aiosmtplib

ConnectionParams = tuple[str, int, str | None, str | None, bool]


class SMTPPool:
    """Per-task pool of authenticated ``aiosmtplib.SMTP`` clients.

    Attributes:
        ttl: Maximum idle age in seconds before a connection is replaced.
        timeout: Socket timeout passed to ``aiosmtplib.SMTP``.
        pool: Task ID -> (client, last use, connection parameters).
        lock: Guards ``pool`` across tasks.
    """

    def __init__(self, ttl: int = 300, timeout: float = 10.0):
        self.ttl = ttl
        self.timeout = timeout
        self.pool: dict[int, tuple[aiosmtplib.SMTP, float, ConnectionParams]] = {}
        self.lock = asyncio.Lock()

    async def _connect(self, host: str, port: int, user: str | None, password: str | None, use_tls: bool) -> aiosmtplib.SMTP:
        """Open a new connection and log in when credentials are given.

        TLS behavior:
        - Port 465 with use_tls=True: implicit TLS
        - Other ports with use_tls=True: STARTTLS
        - use_tls=False: plain SMTP

        Raises:
            asyncio.TimeoutError: If connecting and logging in exceed 15 seconds.
            aiosmtplib.SMTPException: If the relay refuses the connection or
                the credentials.
        """
        if use_tls and port == 465:
            smtp = aiosmtplib.SMTP(hostname=host, port=port, start_tls=False, use_tls=True, timeout=self.timeout)
        elif use_tls:
            smtp = aiosmtplib.SMTP(hostname=host, port=port, start_tls=True, use_tls=False, timeout=self.timeout)
        else:
            smtp = aiosmtplib.SMTP(hostname=host, port=port, start_tls=False, use_tls=False, timeout=self.timeout)

        async def _do_connect():
            await smtp.connect()
            if user and password:
                await smtp.login(user, password)

        await asyncio.wait_for(_do_connect(), timeout=15.0)
        return smtp

    async def _is_alive(self, smtp: aiosmtplib.SMTP) -> bool:
        """Return True when the relay answers NOOP with 250 within 5 seconds."""
        try:
            code, _ = await asyncio.wait_for(smtp.noop(), timeout=5.0)
            return code == 250
        except (aiosmtplib.SMTPException, asyncio.TimeoutError, OSError):
            return False

    @staticmethod
    async def _close(smtp: aiosmtplib.SMTP) -> None:
        try:
            await smtp.quit()
        except (aiosmtplib.SMTPException, asyncio.TimeoutError, OSError):
            smtp.close()

    async def get_connection(self, host: str, port: int, user: str | None, password: str | None, *, use_tls: bool) -> aiosmtplib.SMTP:
        """Return the current task's connection, opening one if needed.

        A pooled connection is reused only when its parameters match, it is
        younger than ``ttl`` and it answers NOOP. Otherwise it is closed and
        replaced.
        """
        task_id = id(asyncio.current_task())
        params: ConnectionParams = (host, port, user, password, use_tls)

        async with self.lock:
            entry = self.pool.get(task_id)

        if entry:
            smtp, last_used, pooled_params = entry
            fresh_enough = (time.time() - last_used) < self.ttl
            if pooled_params == params and fresh_enough and await self._is_alive(smtp):
                async with self.lock:
                    self.pool[task_id] = (smtp, time.time(), params)
                return smtp
            async with self.lock:
                self.pool.pop(task_id, None)
            await self._close(smtp)

        smtp = await self._connect(host, port, user, password, use_tls)
        async with self.lock:
            self.pool[task_id] = (smtp, time.time(), params)
        return smtp

    async def discard(self) -> None:
        """Drop and close the current task's connection, if any."""
        task_id = id(asyncio.current_task())
        async with self.lock:
            entry = self.pool.pop(task_id, None)
        if entry:
            await self._close(entry[0])

    @asynccontextmanager
    async def connection(self, host: str, port: int, user: str | None, password: str | None, *, use_tls: bool) -> AsyncIterator[aiosmtplib.SMTP]:
        """Yield a pooled connection; discard it if the body raises."""
        smtp = await self.get_connection(host, port, user, password, use_tls=use_tls)
        try:
            yield smtp
        except BaseException:
            await self.discard()
            raise

    async def cleanup(self) -> None:
        """Close connections that expired or no longer answer NOOP."""
        now = time.time()
        async with self.lock:
            items = list(self.pool.items())

        expired: list[int] = []
        for task_id, (smtp, last_used, _params) in items:
            if (now - last_used) > self.ttl or not await self._is_alive(smtp):
                expired.append(task_id)

        for task_id in expired:
            async with self.lock:
                entry = self.pool.pop(task_id, None)
            if entry:
                await self._close(entry[0])

    async def close_all(self) -> None:
        """Close every pooled connection, used on shutdown."""
        async with self.lock:
            entries = list(self.pool.values())
            self.pool.clear()
        for smtp, _last_used, _params in entries:
            await self._close(smtp)

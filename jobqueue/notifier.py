"""
Change notifier consumer side.

Triggers on the jobs table emit an empty NOTIFY on the configured channel
whenever a job becomes PENDING (insert or retry). PostgreSQL delivers the
signal only after the writing transaction commits, so a consumer that
wakes up always sees the new row.

A wake-up is a hint, never a work item: signals may coalesce or be lost,
so consumers re-scan the table on every wake and also on a timeout.
"""

import asyncio
import logging
from typing import Any

import asyncpg

from jobqueue.constants import DEFAULT_NOTIFY_CHANNEL

logger = logging.getLogger(__name__)


class JobNotificationListener:
    """
    Dedicated LISTEN connection that turns notifications into a wake event.

    The connection is held outside the SQLAlchemy pool because a LISTEN
    registration lives as long as the session that issued it.
    """

    def __init__(
        self,
        dsn: str,
        channel: str = DEFAULT_NOTIFY_CHANNEL,
        reconnect_delay_seconds: float = 2.0,
    ):
        """
        Args:
            dsn: libpq-style connection string (``postgresql://...``).
            channel: Channel name the notify triggers publish on.
            reconnect_delay_seconds: Pause before re-establishing a lost connection.
        """
        self.dsn = dsn
        self.channel = channel
        self.reconnect_delay = reconnect_delay_seconds
        self._conn: Any = None
        self._wake = asyncio.Event()
        self._lost = asyncio.Event()

    @property
    def connected(self) -> bool:
        return self._conn is not None and not self._conn.is_closed()

    async def connect(self) -> None:
        """Open the connection and subscribe to the channel."""
        conn = await asyncpg.connect(self.dsn)
        try:
            await conn.add_listener(self.channel, self._on_notify)
        except BaseException:
            await conn.close()
            raise
        conn.add_termination_listener(self._on_termination)
        self._conn = conn
        self._lost.clear()
        logger.info("Listening for job notifications", extra={"channel": self.channel})

    async def close(self) -> None:
        """Unsubscribe and close the connection."""
        conn, self._conn = self._conn, None
        if conn is None or conn.is_closed():
            return
        try:
            await conn.remove_listener(self.channel, self._on_notify)
        finally:
            await conn.close()
        logger.info("Stopped listening for job notifications")

    async def __aenter__(self) -> "JobNotificationListener":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def _on_notify(self, connection: Any, pid: int, channel: str, payload: str) -> None:
        self._wake.set()

    def _on_termination(self, connection: Any) -> None:
        logger.warning("Notification connection lost", extra={"channel": self.channel})
        self._lost.set()
        # Wake the consumer so it re-scans while we reconnect
        self._wake.set()

    async def ensure_connected(self) -> bool:
        """
        Reconnect if the connection was lost.

        Returns:
            True if the listener is connected afterwards.
        """
        if self.connected and not self._lost.is_set():
            return True

        self._conn = None
        try:
            await self.connect()
        except (OSError, asyncpg.PostgresError) as e:
            logger.warning(
                "Failed to re-establish notification connection",
                extra={"channel": self.channel, "error": str(e)},
            )
            await asyncio.sleep(self.reconnect_delay)
            return False
        return True

    def interrupt(self) -> None:
        """Wake any pending wait() without a notification."""
        self._wake.set()

    async def wait(self, timeout: float) -> bool:
        """
        Block until a notification arrives or ``timeout`` elapses.

        Several notifications that arrive before the consumer calls wait()
        collapse into a single wake-up.

        Args:
            timeout: Maximum seconds to wait.

        Returns:
            True if woken by a notification, False on timeout.
        """
        try:
            await asyncio.wait_for(self._wake.wait(), timeout=timeout)
        except TimeoutError:
            return False
        self._wake.clear()
        return True

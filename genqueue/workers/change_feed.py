"""
Job change feed over PostgreSQL LISTEN/NOTIFY.

``init_db`` installs a trigger that publishes every insert/update on ``jobs``
to the ``job_changes`` channel as JSON. This feed holds one asyncpg
connection, listens on the channel and hands each decoded row to a callback
until it is stopped or the connection drops.
"""

import asyncio
import json
import logging
from typing import Awaitable, Callable

import asyncpg

from genqueue.db.database import JOB_CHANGES_CHANNEL

logger = logging.getLogger(__name__)

ChangeHandler = Callable[[dict], Awaitable[None]]


class SubscriptionError(Exception):
    """The change feed could not be opened or was lost."""


def asyncpg_dsn(database_url: str) -> str:
    """asyncpg only understands plain ``postgresql://`` URLs."""
    scheme, sep, rest = database_url.partition("://")
    if scheme.startswith("postgresql+") or scheme == "postgres":
        scheme = "postgresql"
    return f"{scheme}{sep}{rest}"


def log_handler_failure(task: asyncio.Task):
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error(f"Change handler failed: {error}", exc_info=error)


class PostgresChangeFeed:
    def __init__(self, database_url: str, channel: str = JOB_CHANGES_CHANNEL):
        self.dsn = asyncpg_dsn(database_url)
        self.channel = channel
        self._stop = asyncio.Event()

    def stop(self):
        self._stop.set()

    async def listen(self, on_change: ChangeHandler):
        """
        Deliver job changes to ``on_change`` until ``stop()`` is called.

        Raises SubscriptionError if the connection cannot be opened or is lost.
        """
        try:
            conn = await asyncpg.connect(self.dsn)
        except (OSError, asyncpg.PostgresError) as e:
            raise SubscriptionError(f"Could not connect to change feed: {e}") from e

        lost = asyncio.Event()
        tasks = set()

        def _on_notify(connection, pid, channel, payload):
            try:
                row = json.loads(payload)
            except json.JSONDecodeError:
                logger.warning(f"Ignoring malformed notification on {channel}: {payload[:200]}")
                return
            task = asyncio.ensure_future(on_change(row))
            tasks.add(task)
            task.add_done_callback(tasks.discard)
            task.add_done_callback(log_handler_failure)

        conn.add_termination_listener(lambda connection: lost.set())
        try:
            await conn.add_listener(self.channel, _on_notify)
            logger.info(f"Subscribed to {self.channel}")

            stop_wait = asyncio.ensure_future(self._stop.wait())
            lost_wait = asyncio.ensure_future(lost.wait())
            done, pending = await asyncio.wait(
                {stop_wait, lost_wait}, return_when=asyncio.FIRST_COMPLETED
            )
            for fut in pending:
                fut.cancel()
            if lost_wait in done and not self._stop.is_set():
                raise SubscriptionError(f"Connection to {self.channel} lost")
        finally:
            if tasks:
                await asyncio.gather(*tasks, return_exceptions=True)
            if not conn.is_closed():
                await conn.close()

"""SQL Server sessions over pymssql.

pymssql is blocking, so every driver call for a session is submitted to a
single-worker thread pool owned by that session. The event loop only waits on
futures, and a session can never run two statements at once.
"""

import asyncio
import logging
import math
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Dict, List, Optional

import pymssql

from ..collectors.base import SYNC_QUERY_TIMEOUT
from ..config.models import ConnectionConfig
from ..utils.errors import ConnectError

Row = Dict[str, Any]

# DB-Library codes meaning the session is gone: write failed, unexpected EOF, dead DBPROCESS
SESSION_LOST_CODES = {20006, 20017, 20047}


def _decode(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def _error_args(error: BaseException) -> tuple:
    args = error.args
    # DB-Library failures arrive as ((code, message), ...)
    if args and isinstance(args[0], tuple):
        args = args[0]
    return args


def error_code(error: BaseException) -> Optional[int]:
    """Server or DB-Library error number of a driver error, if any."""
    if isinstance(error, pymssql.Error):
        args = _error_args(error)
        if args and isinstance(args[0], int):
            return args[0]
    return None


def error_message(error: BaseException) -> str:
    """
    Extract the human-readable part of a driver error.

    pymssql errors carry ``(code, message bytes)`` in ``args``.

    Args:
        error: Exception raised by the driver

    Returns:
        str: Decoded message without the error number
    """
    if isinstance(error, pymssql.Error):
        args = _error_args(error)
        if len(args) >= 2 and isinstance(args[0], int):
            return _decode(args[1]).strip()
    return str(error)


class Connection:
    """One live database session."""

    def __init__(self, conn: Any, executor: ThreadPoolExecutor, logger: logging.Logger):
        self._conn = conn
        self._executor = executor
        self._closed = False
        self._broken = False
        self.logger = logger

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def broken(self) -> bool:
        """True once the server side of the session is known to be gone."""
        return self._broken

    async def execute(self, query: str) -> List[Row]:
        """
        Run a query and fetch every row.

        The driver aborts the statement once the query timeout given to
        ConnectionFactory.open() elapses.

        Args:
            query: SQL text

        Returns:
            List[Row]: Rows as dicts keyed by column name

        Raises:
            ConnectError: If the session is closed or was lost
            pymssql.Error: Any other driver failure
        """
        if self._closed:
            raise ConnectError("Connection is closed")

        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(self._executor, self._execute, query)
        except pymssql.Error as e:
            if error_code(e) in SESSION_LOST_CODES:
                self._broken = True
                raise ConnectError(f"Connection to database lost: {error_message(e)}", cause=e) from e
            raise

    def _execute(self, query: str) -> List[Row]:
        cursor = self._conn.cursor(as_dict=True)
        try:
            cursor.execute(query)
            if cursor.description is None:
                return []
            return list(cursor.fetchall())
        finally:
            cursor.close()

    async def close(self) -> None:
        """
        Close the session and release its worker thread.

        The close is queued behind any statement still running on the
        session and completes even if the awaiting task is cancelled.
        """
        if self._closed:
            return
        self._closed = True

        future = self._executor.submit(self._conn.close)
        self._executor.shutdown(wait=False)
        try:
            await asyncio.shield(asyncio.wrap_future(future))
        except pymssql.Error as e:
            self.logger.warning(f"Error while closing database connection: {error_message(e)}")
        self.logger.debug("Connection to database ended")


class ConnectionFactory:
    """Opens authenticated SQL Server sessions from static configuration."""

    def __init__(self, config: ConnectionConfig, logger: logging.Logger):
        """
        Initialize connection factory.

        Args:
            config: Validated connection configuration
            logger: Parent logger; the factory logs on its ``db`` child
        """
        self.config = config
        self.logger = logger.getChild("db")

        if config.encrypt and not config.trust_server_certificate:
            self.logger.warning(
                "TRUST_SERVER_CERTIFICATE=false: certificate validation is governed by "
                "the FreeTDS configuration (ca file) of this host"
            )

    def connect_params(self, query_timeout: float) -> Dict[str, Any]:
        """
        Keyword arguments for pymssql.connect().

        Args:
            query_timeout: Statement timeout in seconds, rounded up

        Returns:
            Dict[str, Any]: Parameters including the password
        """
        cfg = self.config
        return {
            "server": cfg.server,
            "port": str(cfg.port),
            "user": cfg.username,
            "password": cfg.password.get_secret_value(),
            "login_timeout": cfg.login_timeout,
            "timeout": max(1, math.ceil(query_timeout)),
            "encryption": "require" if cfg.encrypt else "off",
            "appname": cfg.appname,
            "autocommit": True,
        }

    async def open(self, query_timeout: float = SYNC_QUERY_TIMEOUT) -> Connection:
        """
        Open a new session. No retry is attempted.

        Args:
            query_timeout: Statement timeout applied by the driver for the
                whole life of the session, in seconds

        Returns:
            Connection: Ready session, owned by the caller

        Raises:
            ConnectError: If the handshake or login fails
        """
        cfg = self.config
        self.logger.debug(
            f"Connecting to {cfg.address} encrypt: {cfg.encrypt} "
            f"trustServerCertificate: {cfg.trust_server_certificate}"
        )

        params = self.connect_params(query_timeout)
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="mssql-session")
        future = executor.submit(pymssql.connect, **params)
        try:
            conn = await asyncio.wrap_future(future)
        except asyncio.CancelledError:
            future.add_done_callback(lambda done: self._abandon(done, executor))
            raise
        except pymssql.Error as e:
            executor.shutdown(wait=False)
            message = error_message(e)
            self.logger.error(f"Failed to connect to database: {message}")
            raise ConnectError(message, cause=e) from e

        self.logger.debug("Connected to database")
        return Connection(conn, executor, self.logger)

    def _abandon(self, future: Future, executor: ThreadPoolExecutor) -> None:
        """Close a session whose opener was cancelled before the handshake finished."""
        try:
            if not future.cancelled() and future.exception() is None:
                future.result().close()
        except pymssql.Error as e:
            self.logger.warning(f"Error while closing abandoned connection: {error_message(e)}")
        finally:
            executor.shutdown(wait=False)

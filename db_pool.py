"""SQLite connection pool shared by request threads."""
import logging
import sqlite3
import threading
from contextlib import contextmanager
from queue import Empty, Queue
from typing import Generator

logger = logging.getLogger(__name__)

# Seconds a writer waits on a locked database before giving up.
BUSY_TIMEOUT = 30.0


class SQLiteConnectionPool:
    """Thread-safe SQLite connection pool.

    Connections are handed to one thread at a time but may move between
    threads, since FastAPI runs sync endpoints on a worker pool.
    """

    def __init__(self, database: str, max_connections: int = 5):
        self.database = database
        self.max_connections = max_connections
        self._pool: Queue[sqlite3.Connection] = Queue(maxsize=max_connections)
        self._lock = threading.Lock()
        self._created_connections = 0

    def _create_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self.database,
            timeout=BUSY_TIMEOUT,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Borrow a connection; uncommitted work is rolled back on return."""
        connection = None
        try:
            connection = self._pool.get(block=False)
        except Empty:
            with self._lock:
                if self._created_connections < self.max_connections:
                    connection = self._create_connection()
                    self._created_connections += 1
                    logger.debug("Created new connection (total: %s)", self._created_connections)
            if connection is None:
                connection = self._pool.get(block=True)

        try:
            yield connection
        finally:
            try:
                connection.rollback()
                self._pool.put(connection)
            except sqlite3.Error as e:
                logger.error("Error returning connection to pool: %s", e)
                self._discard(connection)

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """Run a write transaction holding the database write lock.

        ``BEGIN IMMEDIATE`` takes the reserved lock up front, so a
        read-then-write sequence inside the block cannot interleave with
        another writer.
        """
        with self.get_connection() as connection:
            connection.execute("BEGIN IMMEDIATE")
            try:
                yield connection
            except BaseException:
                connection.rollback()
                raise
            else:
                connection.commit()

    def _discard(self, connection: sqlite3.Connection) -> None:
        try:
            connection.close()
        except sqlite3.Error:
            logger.debug("Ignoring error while closing pooled connection", exc_info=True)
        with self._lock:
            self._created_connections -= 1

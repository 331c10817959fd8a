"""
Database Connection Management with Connection Pooling and Transactions
Provides SQLite-backed persistence for classification rules and counters.
"""
import sqlite3
import logging
import threading
from contextlib import contextmanager
from typing import Optional, List, Tuple, Any
from queue import Queue, Empty
from pathlib import Path

from exceptions import (
    VigilError,
    DatabaseError,
    ConnectionPoolExhaustedError,
    TransactionError,
    QueryExecutionError
)


logger = logging.getLogger("VigilDatabase")

SCHEMA_VERSION = 1


class DatabaseConnection:
    """
    Wrapper for SQLite connection with transaction support.
    """

    def __init__(self, connection: sqlite3.Connection, pool: 'SQLitePool'):
        self.connection = connection
        self.pool = pool
        self.in_transaction = False

    def execute(self, query: str, params: Optional[Tuple] = None) -> sqlite3.Cursor:
        """
        Execute a query with parameters.

        Raises:
            QueryExecutionError: If query execution fails
        """
        try:
            cursor = self.connection.cursor()
            if params:
                return cursor.execute(query, params)
            else:
                return cursor.execute(query)
        except sqlite3.Error as e:
            raise QueryExecutionError(
                f"Query execution failed: {e}",
                component="DatabaseConnection",
                context={"query": query[:100]}  # Truncate long queries
            )

    def commit(self) -> None:
        """
        Commit current transaction.

        Raises:
            TransactionError: If commit fails
        """
        try:
            self.connection.commit()
            self.in_transaction = False
        except sqlite3.Error as e:
            raise TransactionError(
                f"Transaction commit failed: {e}",
                component="DatabaseConnection"
            )

    def rollback(self) -> None:
        """
        Rollback current transaction.

        Raises:
            TransactionError: If rollback fails
        """
        try:
            self.connection.rollback()
            self.in_transaction = False
        except sqlite3.Error as e:
            raise TransactionError(
                f"Transaction rollback failed: {e}",
                component="DatabaseConnection"
            )

    def close(self) -> None:
        """Return connection to pool."""
        if self.in_transaction:
            logger.warning("Closing connection with active transaction - rolling back")
            self.rollback()
        self.pool.return_connection(self.connection)


class SQLitePool:
    """
    Thread-safe connection pool for SQLite database.
    """

    def __init__(
        self,
        db_path: str,
        max_connections: int = 5,
        timeout: float = 30.0,
        check_same_thread: bool = False
    ):
        self.db_path = db_path
        self.max_connections = max_connections
        self.timeout = timeout
        self.check_same_thread = check_same_thread

        self._pool: Queue = Queue(maxsize=max_connections)
        self._all_connections: List[sqlite3.Connection] = []
        self._lock = threading.Lock()
        self._closed = False
        self._initialize_pool()

    def _initialize_pool(self) -> None:
        try:
            db_path = Path(self.db_path)
            db_path.parent.mkdir(parents=True, exist_ok=True)
            for _ in range(self.max_connections):
                conn = self._create_connection()
                self._all_connections.append(conn)
                self._pool.put(conn)
            logger.info(f"Initialized SQLite connection pool with {self.max_connections} connections")
        except (OSError, sqlite3.Error) as e:
            raise DatabaseError(f"Failed to initialize SQLite pool: {e}", component="SQLitePool")

    def _create_connection(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(
                self.db_path,
                timeout=self.timeout,
                check_same_thread=self.check_same_thread
            )
            conn.execute("PRAGMA foreign_keys = ON")
            conn.execute("PRAGMA journal_mode = WAL")
            return conn
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to create SQLite connection: {e}", component="SQLitePool")

    def get_connection(self) -> DatabaseConnection:
        if self._closed:
            raise DatabaseError("Connection pool is closed", component="SQLitePool")
        try:
            conn = self._pool.get(timeout=self.timeout)
            return DatabaseConnection(conn, self)
        except Empty:
            raise ConnectionPoolExhaustedError(
                f"Connection pool exhausted (max: {self.max_connections})",
                component="SQLitePool"
            )

    def return_connection(self, connection: sqlite3.Connection) -> None:
        if not self._closed:
            self._pool.put(connection)

    def close_all(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            for conn in self._all_connections:
                try:
                    conn.close()
                except sqlite3.Error as e:
                    logger.error(f"Error closing connection: {e}")
            self._all_connections.clear()
            logger.info("SQLite connection pool closed")


class DatabaseManager:
    """
    High-level database manager with schema management.
    """

    def __init__(self, config: Any):
        """
        Initialize database manager.

        Args:
            config: Database configuration object (path, max_connections, connection_timeout)
        """
        self.config = config
        self.pool = SQLitePool(
            config.path,
            max_connections=config.max_connections,
            timeout=float(config.connection_timeout)
        )
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        """
        Ensure database schema exists.

        Raises:
            DatabaseError: If schema creation fails
        """
        try:
            with self.transaction() as conn:
                # seq gives every rule a stable creation order for priority ties
                conn.execute('''
                    CREATE TABLE IF NOT EXISTS classification_rules (
                        seq INTEGER PRIMARY KEY AUTOINCREMENT,
                        id TEXT NOT NULL UNIQUE,
                        rule_type TEXT NOT NULL,
                        condition_pattern TEXT NOT NULL,
                        classification_value TEXT NOT NULL,
                        confidence_score REAL NOT NULL,
                        priority INTEGER NOT NULL,
                        is_active INTEGER NOT NULL DEFAULT 1,
                        source_types TEXT NOT NULL DEFAULT '[]',
                        created_by TEXT,
                        created_at TEXT NOT NULL,
                        updated_at TEXT
                    )
                ''')

                conn.execute('''
                    CREATE INDEX IF NOT EXISTS idx_classification_rules_type_active
                    ON classification_rules(rule_type, is_active)
                ''')

                conn.execute('''
                    CREATE TABLE IF NOT EXISTS hierarchy_config (
                        key TEXT PRIMARY KEY,
                        value TEXT NOT NULL,
                        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
                    )
                ''')

                conn.execute('''
                    CREATE TABLE IF NOT EXISTS rule_performance (
                        rule_id TEXT PRIMARY KEY,
                        rule_type TEXT,
                        total_processed INTEGER NOT NULL DEFAULT 0,
                        successful_matches INTEGER NOT NULL DEFAULT 0,
                        confidence_average REAL NOT NULL DEFAULT 0,
                        last_used_at TEXT,
                        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
                    )
                ''')

                conn.execute('''
                    CREATE TABLE IF NOT EXISTS schema_version (
                        version INTEGER PRIMARY KEY,
                        applied_at DATETIME DEFAULT CURRENT_TIMESTAMP
                    )
                ''')

                conn.execute('INSERT OR IGNORE INTO schema_version (version) VALUES (?)', (SCHEMA_VERSION,))

            logger.info("Database schema initialized successfully")

        except DatabaseError as e:
            raise DatabaseError(
                f"Failed to initialize database schema: {e}",
                component="DatabaseManager"
            )

    def schema_version(self) -> int:
        """Return the latest applied schema version."""
        with self.connection() as conn:
            row = conn.execute('SELECT MAX(version) FROM schema_version').fetchone()
            return int(row[0]) if row and row[0] is not None else 0

    @contextmanager
    def transaction(self):
        """
        Context manager for database transactions.
        """
        conn = self.pool.get_connection()
        conn.in_transaction = True

        try:
            yield conn
            # Auto-commit if caller did not explicitly commit/rollback.
            if conn.in_transaction:
                conn.commit()
        except Exception as e:
            if conn.in_transaction:
                try:
                    conn.rollback()
                except TransactionError as rollback_error:
                    logger.error(f"Rollback failed: {rollback_error}")
            if isinstance(e, VigilError):
                raise
            raise TransactionError(
                f"Transaction failed: {e}",
                component="DatabaseManager"
            ) from e
        finally:
            conn.close()

    @contextmanager
    def connection(self):
        """
        Context manager for simple database operations.
        """
        conn = self.pool.get_connection()
        try:
            yield conn
        finally:
            conn.close()

    def close(self) -> None:
        """Close database manager and connection pool."""
        self.pool.close_all()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()

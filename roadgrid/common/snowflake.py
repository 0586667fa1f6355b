"""
Snowflake connection and utility functions for the roadgrid routing substrate.

Provides connection management, per-phase transactions, chunked multi-row
statements and SQL file execution for the world and graph tables.
"""

from typing import Any, Dict, Iterable, List, Optional, Sequence, Union
from contextlib import contextmanager

import snowflake.connector
from snowflake.connector import DictCursor
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.serialization import load_pem_private_key

from .config import config
from .logging import get_logger, TimedLogger, log_database_operation

logger = get_logger("snowflake")


def chunked(rows: Sequence[Any], size: int) -> Iterable[Sequence[Any]]:
    """Yield consecutive slices of at most ``size`` rows."""
    for start in range(0, len(rows), size):
        yield rows[start : start + size]


def values_placeholders(row_count: int, width: int) -> str:
    """Build ``(%s, %s), (%s, %s)`` for a multi-row VALUES clause."""
    row = "(" + ", ".join(["%s"] * width) + ")"
    return ", ".join([row] * row_count)


def in_placeholders(count: int) -> str:
    return ", ".join(["%s"] * count)


def execute_values(
    cursor,
    sql_template: str,
    rows: Sequence[Sequence[Any]],
    chunk_size: Optional[int] = None,
    table: str = "",
    operation: str = "MERGE",
) -> int:
    """
    Execute a statement once per chunk of rows.

    ``sql_template`` contains a ``{values}`` marker that is replaced with the
    placeholders for the chunk; row values are flattened into the bind list.

    Args:
        cursor: Open cursor, normally from SnowflakeConnection.transaction()
        sql_template: Statement with a {values} marker
        rows: Equal-width row tuples
        chunk_size: Rows per statement (defaults to ingest.batch_size)
        table: Table name for logging
        operation: Operation label for logging

    Returns:
        Number of rows sent
    """
    if not rows:
        return 0

    size = chunk_size or config.ingest.batch_size
    width = len(rows[0])
    sent = 0

    for chunk in chunked(rows, size):
        sql = sql_template.format(values=values_placeholders(len(chunk), width))
        params: List[Any] = [value for row in chunk for value in row]
        cursor.execute(sql, params)
        sent += len(chunk)

    logger.debug(
        f"{operation} {table}: {sent} rows",
        extra=log_database_operation(operation=operation, table=table, rows_affected=sent),
    )
    return sent


class SnowflakeConnection:
    """
    Opens short-lived Snowflake sessions for ingest phases and graph loads.

    Every session is tagged with QUERY_TAG so a phase's statements can be
    found together in the warehouse query history.
    """

    def __init__(self, schema: Optional[str] = None, query_tag: str = "roadgrid"):
        """
        Args:
            schema: Default schema for the session
            query_tag: Prefix for the QUERY_TAG session parameter
        """
        self.config = config.snowflake
        self.default_schema = schema
        self.query_tag = query_tag

    def _connect_params(self, tag: Optional[str] = None) -> Dict[str, Any]:
        params = {
            "account": self.config.account,
            "user": self.config.user,
            "role": self.config.role,
            "warehouse": self.config.warehouse,
            "database": self.config.database,
            "session_parameters": {
                "QUERY_TAG": f"{self.query_tag}:{tag}" if tag else self.query_tag
            },
        }
        if self.default_schema:
            params["schema"] = self.default_schema

        if self.config.password:
            params["password"] = self.config.password
        elif self.config.private_key_path:
            params["private_key"] = self._load_private_key(self.config.private_key_path)
        else:
            raise ValueError("Either password or private_key_path must be configured")
        return params

    @staticmethod
    def _load_private_key(key_path: str) -> bytes:
        """Read a PEM key and re-encode it as the DER bytes the connector expects."""
        try:
            with open(key_path, "rb") as key_file:
                private_key = load_pem_private_key(key_file.read(), password=None)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load private key from {key_path}: {e}")
            raise
        return private_key.private_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )

    @contextmanager
    def get_connection(self, autocommit: bool = True, tag: Optional[str] = None):
        """
        Yield an open connection and close it afterwards.

        Args:
            autocommit: Session autocommit mode
            tag: Suffix for the session QUERY_TAG
        """
        connection = snowflake.connector.connect(**self._connect_params(tag))
        try:
            connection.autocommit(autocommit)
            logger.debug(
                "Connected to Snowflake",
                extra=log_database_operation(
                    operation="CONNECT",
                    table="",
                    database=self.config.database,
                    schema=self.default_schema,
                    query_tag=tag,
                ),
            )
            yield connection
        finally:
            try:
                connection.close()
            except Exception as e:
                logger.warning(f"Error closing Snowflake connection: {e}")

    @contextmanager
    def transaction(self, name: str = "transaction"):
        """
        Run a block of statements as one transaction.

        Commits when the block exits cleanly and rolls back on any exception,
        which is re-raised.

        Yields:
            Cursor bound to the transaction
        """
        with self.get_connection(autocommit=False, tag=name) as conn:
            cursor = conn.cursor()
            try:
                with TimedLogger(logger, name):
                    yield cursor
                conn.commit()
            except Exception:
                conn.rollback()
                logger.warning(f"Rolled back {name}")
                raise
            finally:
                cursor.close()

    def execute_query(
        self,
        query: str,
        params: Optional[Union[Dict[str, Any], Sequence[Any]]] = None,
        fetch: bool = False,
    ) -> Optional[List[Dict[str, Any]]]:
        """
        Execute one statement in autocommit mode.

        With ``fetch`` the rows come back as dicts keyed by upper-case column
        name (DictCursor).
        """
        with self.get_connection() as conn:
            cursor = conn.cursor(DictCursor) if fetch else conn.cursor()
            try:
                cursor.execute(query, params or None)
                if not fetch:
                    return None
                results = cursor.fetchall()
                logger.debug(
                    f"Fetched {len(results)} rows",
                    extra=log_database_operation(operation="SELECT", table="", rows_affected=len(results)),
                )
                return results
            finally:
                cursor.close()


def get_core_connection() -> SnowflakeConnection:
    """Connection to the schema holding the world and graph tables."""
    return SnowflakeConnection(schema=config.snowflake.schema_core)


def split_sql_statements(sql: str) -> List[str]:
    """Split a DDL script on ``;`` after dropping ``--`` comment lines."""
    lines = [line for line in sql.splitlines() if not line.strip().startswith("--")]
    return [stmt.strip() for stmt in "\n".join(lines).split(";") if stmt.strip()]


def execute_sql_file(file_path: str, schema: Optional[str] = None) -> int:
    """
    Run every statement of a SQL file in one transaction.

    Returns:
        Number of statements executed
    """
    conn = SnowflakeConnection(schema=schema or config.snowflake.schema_core)
    with open(file_path, "r") as f:
        statements = split_sql_statements(f.read())

    with conn.transaction(f"execute_sql_file: {file_path}") as cursor:
        for statement in statements:
            logger.info(f"Executing SQL: {statement[:100]}...")
            cursor.execute(statement)
    return len(statements)

# -*- coding: utf-8 -*-
import logging
from typing import Optional

import oracledb
import psycopg2
from psycopg2.extras import NamedTupleCursor

from oracle_sync.config import OracleConfig, PostgresConfig
from oracle_sync.errors import (
    ConnectivityError,
    IndexCreationError,
    InspectionError,
    LockError,
    StatisticsRefreshError,
    TransferError,
    TruncateError,
)
from oracle_sync.jobs import Pipeline

# Oracle identifiers were limited to 30 bytes before 12.2
IDENTIFIER_LIMIT = 30

# ORA-00955: name is already used by an existing object
NAME_ALREADY_USED = 955


def quote_identifier(name: str) -> str:
    return '"{}"'.format(name.replace('"', '""'))


def index_name(table: str, limit: int = IDENTIFIER_LIMIT) -> str:
    """Name of the spatial index of a table, cut to the identifier length limit."""
    return f"{table}_GEOM_IDX"[:limit]


def error_code(error: Exception) -> Optional[int]:
    """Return the ORA- number carried by an oracledb exception, if any."""
    if error.args:
        return getattr(error.args[0], "code", None)
    return None


class _Database(object):
    """Lazily opened connection shared by every operation of a run.

    Args:
        config: connection parameters.
        log (logging.Logger): the run logger.
    """

    name = "database"

    def __init__(self, config, log: logging.Logger):
        self.config = config
        self.log = log
        self._connection = None

    def _connect(self):
        raise NotImplementedError

    @property
    def connection(self):
        if self._connection is None:
            self._connection = self._connect()
        return self._connection

    @property
    def is_connected(self) -> bool:
        return self._connection is not None

    def close(self):
        if self._connection is None:
            return
        try:
            self._connection.close()
        finally:
            self._connection = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class SourceDatabase(_Database):
    """The PostgreSQL source of truth."""

    name = "PostgreSQL"

    def __init__(self, config: PostgresConfig, log: logging.Logger):
        super().__init__(config, log)

    def _connect(self):
        connection = psycopg2.connect(
            cursor_factory=NamedTupleCursor, **self.config.connect_kwargs()
        )
        # session level: the advisory lock outlives every statement of the run
        connection.autocommit = True
        return connection

    def ping(self):
        """Run a trivial query.

        Raises:
            ConnectivityError: raised when the database cannot be reached.
        """
        try:
            with self.connection.cursor() as cursor:
                cursor.execute("SELECT 1;")
                cursor.fetchone()
        except psycopg2.Error as e:
            raise ConnectivityError(self.name, str(e).strip()) from e

    def count_active(self, pipeline: Pipeline) -> Optional[int]:
        """Count the rows the pipeline's query selects.

        Returns:
            int: the row count, or None when the count cannot be read.
        """
        try:
            with self.connection.cursor() as cursor:
                cursor.execute(pipeline.count_sql())
                return cursor.fetchone()[0]
        except psycopg2.Error as e:
            self.log.warning(f"Could not count source rows of {pipeline.source}: {e}")
            return None

    def try_lock(self, key: str) -> bool:
        """Take the session advisory lock for `key` without waiting.

        Returns:
            bool: True when the lock was granted.

        Raises:
            LockError: raised when the lock query itself fails.
        """
        try:
            with self.connection.cursor() as cursor:
                cursor.execute(
                    "SELECT pg_try_advisory_lock(hashtext(%s)) AS locked;", (key,)
                )
                return bool(cursor.fetchone().locked)
        except psycopg2.Error as e:
            raise LockError(f"Could not acquire advisory lock {key!r}: {e}") from e

    def unlock(self, key: str):
        if not self.is_connected:
            return
        try:
            with self.connection.cursor() as cursor:
                cursor.execute("SELECT pg_advisory_unlock(hashtext(%s));", (key,))
        except psycopg2.Error as e:
            # closing the session releases the lock as well
            self.log.warning(f"Could not release advisory lock {key!r}: {e}")


class DestinationDatabase(_Database):
    """The Oracle Spatial destination."""

    name = "Oracle"

    def __init__(self, config: OracleConfig, log: logging.Logger):
        super().__init__(config, log)

    def _connect(self):
        if self.config.client_lib_dir and oracledb.is_thin_mode():
            oracledb.init_oracle_client(lib_dir=self.config.client_lib_dir)
        return oracledb.connect(
            user=self.config.user,
            password=self.config.password,
            dsn=self.config.dsn(),
        )

    def ping(self):
        """Run a trivial query.

        Raises:
            ConnectivityError: raised when the database cannot be reached.
        """
        try:
            with self.connection.cursor() as cursor:
                cursor.execute("SELECT 1 FROM DUAL")
                cursor.fetchone()
        except oracledb.Error as e:
            raise ConnectivityError(self.name, str(e).strip()) from e

    def table_exists(self, table: str) -> bool:
        """Check the catalog for a table owned by the connected user.

        Args:
            table (str): the upper case table name.

        Returns:
            bool: True if the catalog reports the table, False if it reports zero rows.

        Raises:
            InspectionError: raised when the catalog cannot be read or its answer
                is not a count.
        """
        try:
            with self.connection.cursor() as cursor:
                cursor.execute(
                    "SELECT COUNT(*) FROM user_tables WHERE table_name = :name",
                    name=table,
                )
                row = cursor.fetchone()
        except oracledb.Error as e:
            raise InspectionError(f"Could not inspect table {table}: {e}") from e

        count = row[0] if row else None
        if isinstance(count, bool) or not isinstance(count, int) or count < 0:
            raise InspectionError(
                f"Unexpected catalog answer while inspecting {table}: {row!r}"
            )
        return count > 0

    def truncate(self, table: str) -> Optional[str]:
        """Remove every row of the table and restart its sequence at 1.

        The sequence is the first one, by name, whose name contains the table
        name. A table without sequence is not an error.

        Returns:
            str: the name of the sequence that was reset, None if there was none.

        Raises:
            TruncateError: raised on any database error.
        """
        sequence = None
        try:
            with self.connection.cursor() as cursor:
                cursor.execute(f"TRUNCATE TABLE {quote_identifier(table)}")
                self.log.info(f"Table {table} truncated")

                cursor.execute(
                    """SELECT sequence_name FROM user_sequences
                    WHERE INSTR(sequence_name, :name) > 0
                    ORDER BY sequence_name""",
                    name=table,
                )
                row = cursor.fetchone()
                if row is None:
                    self.log.info(f"No sequence found for table {table}")
                else:
                    sequence = row[0]
                    cursor.execute(f"DROP SEQUENCE {quote_identifier(sequence)}")
                    cursor.execute(
                        f"CREATE SEQUENCE {quote_identifier(sequence)} "
                        "START WITH 1 INCREMENT BY 1"
                    )
                    self.log.info(f"Sequence {sequence} reset to 1")
            self.connection.commit()
        except oracledb.Error as e:
            raise TruncateError(f"Failed to truncate Oracle table {table}: {e}") from e

        return sequence

    def row_count(self, table: str) -> int:
        """Count the rows of a table.

        Raises:
            TransferError: raised when the count cannot be read.
        """
        try:
            with self.connection.cursor() as cursor:
                cursor.execute(f"SELECT COUNT(*) FROM {quote_identifier(table)}")
                row = cursor.fetchone()
        except oracledb.Error as e:
            raise TransferError(f"Could not count rows of {table}: {e}") from e

        if not row or not isinstance(row[0], int):
            raise TransferError(f"Unreadable row count for {table}: {row!r}")
        return row[0]

    def create_spatial_index(
        self, table: str, column: str = "GEOMETRY", dimensions: int = 2
    ) -> bool:
        """Create the spatial index of a table.

        Returns:
            bool: True if the index was created, False if it already existed.

        Raises:
            IndexCreationError: raised on any other database error.
        """
        name = index_name(table)
        statement = (
            f"CREATE INDEX {quote_identifier(name)} "
            f"ON {quote_identifier(table)} ({quote_identifier(column)}) "
            "INDEXTYPE IS MDSYS.SPATIAL_INDEX "
            f"PARAMETERS('SDO_INDX_DIMS={int(dimensions)}')"
        )
        try:
            with self.connection.cursor() as cursor:
                cursor.execute(statement)
            self.connection.commit()
        except oracledb.DatabaseError as e:
            if error_code(e) == NAME_ALREADY_USED:
                self.log.info(f"Index already exists: {name}")
                return False
            raise IndexCreationError(f"Failed to create spatial index {name}: {e}") from e

        self.log.info(f"Spatial index created: {name}")
        return True

    def gather_statistics(self, owner: str, table: str):
        """Refresh the optimizer statistics of a table.

        Raises:
            StatisticsRefreshError: raised when DBMS_STATS fails.
        """
        try:
            with self.connection.cursor() as cursor:
                cursor.callproc("DBMS_STATS.GATHER_TABLE_STATS", [owner.upper(), table])
        except oracledb.Error as e:
            raise StatisticsRefreshError(
                f"Failed to update statistics of {table}: {e}"
            ) from e

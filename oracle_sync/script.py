# -*- coding: utf-8 -*-
import enum
import logging
import time
from typing import Callable, Optional

from oracle_sync.config import Settings
from oracle_sync.databases import DestinationDatabase, SourceDatabase, index_name
from oracle_sync.errors import (
    IndexCreationError,
    LockError,
    StatisticsRefreshError,
    TransferError,
)
from oracle_sync.transfer import (
    BulkTransfer,
    TransferMode,
    TransferOutcome,
    check_dependencies,
)


class State(enum.Enum):
    IDLE = "Idle"
    CONFIG_LOADED = "ConfigLoaded"
    DEPENDENCIES_CHECKED = "DependenciesChecked"
    CONNECTIONS_VERIFIED = "ConnectionsVerified"
    TABLE_INSPECTED = "TableInspected"
    APPENDED = "Appended"
    CREATED_AND_INDEXED = "CreatedAndIndexed"
    STATISTICS_UPDATED = "StatisticsUpdated"
    DONE = "Done"
    FAILED = "Failed"


class Synchronizer(object):
    """The Synchronizer copies one pipeline's source view into its Oracle table

    A run checks dependencies and both connections before touching anything,
    takes an advisory lock so that a single run per destination table is active,
    then inspects the destination table exactly once. An existing table is
    truncated and appended to; a missing table is created by the transfer and
    indexed afterwards. Statistics are refreshed in both cases.

    Args:
        settings (Settings): resolved settings of the run.
        log (logging.Logger): the run logger, shared with every collaborator.
        source (SourceDatabase, optional): the PostgreSQL source.
        destination (DestinationDatabase, optional): the Oracle destination.
        transfer (BulkTransfer, optional): the ogr2ogr runner.
        dependency_check (callable, optional): checks the external tools.

    Attributes:
        state (State): the current state of the run.
        mode (TransferMode): the transfer mode chosen by the inspection.
    """

    def __init__(
        self,
        settings: Settings,
        log: logging.Logger,
        source: Optional[SourceDatabase] = None,
        destination: Optional[DestinationDatabase] = None,
        transfer: Optional[BulkTransfer] = None,
        dependency_check: Callable = check_dependencies,
    ):
        self.settings = settings
        self.log = log
        self.source = source or SourceDatabase(settings.postgres, log)
        self.destination = destination or DestinationDatabase(settings.oracle, log)
        self.transfer = transfer or BulkTransfer(settings, log)
        self._check_dependencies = dependency_check
        self.lock_key = f"oracle_sync:{settings.table}"
        self.mode = None
        self.state = State.IDLE
        self._advance(State.CONFIG_LOADED)

    @property
    def table(self) -> str:
        return self.settings.table

    def _advance(self, state: State):
        self.state = state
        self.log.debug(f"State: {state.value}")

    def _report_configuration(self):
        for name in self.settings.defaults:
            self.log.debug(f"{name} not set, using default")
        for name in self.settings.invalid:
            self.log.warning(f"Ignoring unusable value of {name}, using default")
        if "SYNC_MODE" in self.settings.invalid:
            self.log.warning("Only the 'truncate' sync mode is supported")

    def check_dependencies(self):
        self._check_dependencies(self.log)
        self._advance(State.DEPENDENCIES_CHECKED)

    def verify_connections(self):
        """Check PostgreSQL, then Oracle. Stops at the first failure."""
        self.log.info("Testing database connections...")
        self.source.ping()
        self.destination.ping()
        self.log.success("Database connections successful")
        self._advance(State.CONNECTIONS_VERIFIED)

    def acquire_lock(self):
        if not self.source.try_lock(self.lock_key):
            raise LockError(
                f"Another sync of {self.table} is running (lock {self.lock_key!r})"
            )
        self.log.debug(f"Advisory lock {self.lock_key!r} acquired")

    def release_lock(self):
        self.source.unlock(self.lock_key)

    def inspect(self) -> bool:
        """Check whether the destination table exists and truncate it if it does.

        Returns:
            bool: True if the table existed.
        """
        self.log.info("Checking Oracle table status...")
        exists = self.destination.table_exists(self.table)

        if exists:
            self.log.info("Table exists, truncating...")
            self.destination.truncate(self.table)
            self.log.success("Oracle table truncated and sequence reset successfully")
        else:
            self.log.info("Table does not exist, will be created by ogr2ogr...")

        self._advance(State.TABLE_INSPECTED)
        return exists

    def load(self, table_exists: bool) -> TransferOutcome:
        """Run the transfer in the mode matching the table state and verify it.

        In CREATE mode the spatial index is attempted as soon as ogr2ogr has
        run, also when the verification fails: the next run finds the table and
        appends to it, so it would never index it.

        Raises:
            TransferError: raised when ogr2ogr fails or the table ends up empty.
        """
        self.mode = TransferMode.APPEND if table_exists else TransferMode.CREATE
        pipeline = self.settings.job.pipeline

        expected = self.source.count_active(pipeline)
        if expected is not None:
            self.log.info(f"Source records in {pipeline.source}: {expected}")

        self.log.info("Executing ogr2ogr data transfer...")
        if self.mode is TransferMode.APPEND:
            self.log.info("Using APPEND mode (table exists)...")
        else:
            self.log.info("Using CREATE mode (table will be created)...")

        exit_status = self.transfer.run(self.mode)
        try:
            records = self._verify(exit_status, expected)
        except TransferError:
            if self.mode is TransferMode.CREATE:
                self.create_index(best_effort=True)
            raise

        if self.mode is TransferMode.APPEND:
            self._advance(State.APPENDED)
        else:
            self.create_index()
            self._advance(State.CREATED_AND_INDEXED)
        return TransferOutcome(exit_status, records)

    def _verify(self, exit_status: int, expected: Optional[int]) -> int:
        if exit_status != 0:
            raise TransferError(f"ogr2ogr failed with exit code: {exit_status}")

        self.log.info("Verifying data transfer...")
        records = self.destination.row_count(self.table)
        if records <= 0:
            raise TransferError("No data transferred to Oracle")
        if expected is not None and records != expected:
            self.log.warning(
                f"Transferred {records} of {expected} source records, "
                f"{expected - records} skipped"
            )

        self.log.success(f"Data transfer completed. Transferred records: {records}")
        return records

    def create_index(self, best_effort: bool = False):
        """Create the spatial index of a table created by this run.

        Args:
            best_effort (bool): log a failure as a warning instead of raising it,
                used while a transfer error is already on its way out.
        """
        pipeline = self.settings.job.pipeline
        self.log.info(f"Creating spatial index {index_name(self.table)}...")
        try:
            self.destination.create_spatial_index(
                self.table, pipeline.geometry_column, pipeline.dimensions
            )
        except IndexCreationError as e:
            if not best_effort:
                raise
            self.log.warning(f"Spatial index not created: {e}")

    def finalize(self):
        """Refresh optimizer statistics, failures are only logged."""
        self.log.info("Updating Oracle table statistics...")
        try:
            self.destination.gather_statistics(self.settings.oracle.user, self.table)
            self.log.success("Statistics updated successfully")
        except StatisticsRefreshError as e:
            self.log.warning(f"Failed to update statistics: {e}")
        self._advance(State.STATISTICS_UPDATED)

    def close(self):
        for database in (self.source, self.destination):
            try:
                database.close()
            except Exception as e:
                self.log.warning(f"Failed to close {database.name} connection: {e}")

    def run(self) -> TransferOutcome:
        """Run the synchronization from start to end.

        Returns:
            TransferOutcome: exit status of ogr2ogr and the destination row count.

        Raises:
            SyncError: raised by the failing step. The state is then `FAILED`.
        """
        started = time.monotonic()
        pipeline = self.settings.job.pipeline
        self.log.info(f"=== Oracle Sync Started: {pipeline.source} -> {self.table} ===")
        self._report_configuration()

        try:
            self.check_dependencies()
            self.verify_connections()
            self.acquire_lock()
            try:
                outcome = self.load(self.inspect())
                self.finalize()
            finally:
                self.release_lock()
        except Exception:
            self.state = State.FAILED
            raise
        finally:
            self.close()

        self._advance(State.DONE)
        duration = round(time.monotonic() - started)
        self.log.success(f"Sync completed in {duration} seconds")
        self.log.info(f"Log file: {self.settings.log_path}")
        return outcome

    def test(self):
        """Check dependencies and connectivity without changing anything."""
        self._report_configuration()
        try:
            self.check_dependencies()
            self.verify_connections()
        except Exception:
            self.state = State.FAILED
            raise
        finally:
            self.close()
        self.log.success("Connection tests passed")


def synchronize(settings: Settings, log: logging.Logger) -> TransferOutcome:
    """Entrypoint for initializing and running the Synchronizer"""
    return Synchronizer(settings, log).run()


def test_connections(settings: Settings, log: logging.Logger):
    Synchronizer(settings, log).test()

# -*- coding: utf-8 -*-


class SyncError(Exception):
    """Base class for every error that aborts a sync run."""

    stage = "sync"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(SyncError):
    stage = "config"


class DependencyMissingError(SyncError):
    stage = "dependencies"


class ConnectivityError(SyncError):
    """Raised when one of the two databases cannot be reached.

    Args:
        database (str): which database failed, `PostgreSQL` or `Oracle`.
        reason (str): the driver's error message.
    """

    stage = "connectivity"

    def __init__(self, database: str, reason: str):
        super().__init__(f"{database} connection failed: {reason}")


class LockError(SyncError):
    stage = "lock"


class InspectionError(SyncError):
    stage = "inspection"


class TruncateError(SyncError):
    stage = "truncate"


class TransferError(SyncError):
    stage = "transfer"


class IndexCreationError(SyncError):
    stage = "index"


class StatisticsRefreshError(SyncError):
    """Never fatal: the orchestrator logs it as a warning."""

    stage = "statistics"

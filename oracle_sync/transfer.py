# -*- coding: utf-8 -*-
import enum
import logging
import os
import shutil
import subprocess
from collections import namedtuple
from typing import Iterable, List

from oracle_sync.config import Settings
from oracle_sync.errors import DependencyMissingError

OGR2OGR = "ogr2ogr"
REQUIRED_DRIVERS = ("OCI", "PostgreSQL")

# rows per transaction
GROUP_TRANSACTIONS = 65536

TransferOutcome = namedtuple("TransferOutcome", ["exit_status", "records"])


class TransferMode(enum.Enum):
    APPEND = "append"
    CREATE = "create"


def check_dependencies(log: logging.Logger, executable: str = OGR2OGR) -> str:
    """Check that ogr2ogr is installed with the OCI and PostgreSQL drivers.

    Returns:
        str: the path of the executable.

    Raises:
        DependencyMissingError: raised when the tool or one of its drivers is missing.
    """
    log.info("Checking dependencies...")

    path = shutil.which(executable)
    if path is None:
        raise DependencyMissingError(f"Missing dependencies: {executable}")

    try:
        result = subprocess.run(
            [path, "--formats"], capture_output=True, text=True, check=True
        )
    except (OSError, subprocess.CalledProcessError) as e:
        raise DependencyMissingError(f"Could not list {executable} drivers: {e}") from e

    # lines look like "  OCI -vector- (rw+): Oracle Spatial"
    drivers = {line.split()[0] for line in result.stdout.splitlines() if line.strip()}
    missing = [d for d in REQUIRED_DRIVERS if d not in drivers]
    if missing:
        raise DependencyMissingError(
            f"{executable} lacks drivers: {', '.join(missing)}"
        )

    log.success("All dependencies found")
    return path


def build_command(
    settings: Settings, mode: TransferMode, executable: str = OGR2OGR
) -> List[str]:
    """Build the ogr2ogr command line for a transfer mode.

    Both modes read the job's single row-selection query. APPEND loads into the
    existing table and skips rows that fail; CREATE defines the table with an
    explicit geometry type and dimension and leaves indexing to a later step.
    """
    job = settings.job
    pipeline = job.pipeline

    command = [
        executable,
        "-f", "OCI",
        settings.oracle.ogr_destination(job.table),
        settings.postgres.ogr_source(),
        "-sql", job.query,
        "-nln", job.table,
    ]

    if mode is TransferMode.APPEND:
        command += ["-append"]
    else:
        command += ["-nlt", pipeline.geometry_type]

    command += [
        "-lco", "LAUNDER=NO",
        "-lco", f"GEOMETRY_NAME={pipeline.geometry_column}",
        "-lco", "PRECISION=YES",
        "-lco", f"SRID={pipeline.srid}",
    ]

    if mode is TransferMode.APPEND:
        command += ["-skipfailures"]
    else:
        command += [
            "-lco", f"DIM={pipeline.dimensions}",
            "-lco", "INDEX=NO",
            "-lco", "SPATIAL_INDEX=NO",
        ]

    command += [
        "-a_srs", f"EPSG:{pipeline.srid}",
        "-gt", str(GROUP_TRANSACTIONS),
        "-progress",
        "--config", "PG_USE_COPY", "YES",
        "--config", "OCI_VARCHAR2_SIZE", "4000",
    ]
    return command


def masked(command: Iterable[str], password: str) -> List[str]:
    """Copy of a command line with the password of the `OCI:` datasource
    replaced by `***`. The other arguments, `-sql` included, are left alone."""
    result = []
    for arg in command:
        if password and arg.startswith("OCI:"):
            # OCI:user/password@host:port/service:TABLE
            credentials, at, location = arg.partition("@")
            user, slash, secret = credentials.partition("/")
            if at and slash and secret == password:
                arg = f"{user}/***@{location}"
        result.append(arg)
    return result


class BulkTransfer(object):
    """Runs ogr2ogr for one job and streams its output into the run log.

    Args:
        settings (Settings): the run settings.
        log (logging.Logger): the run logger.
        executable (str): the ogr2ogr executable.
    """

    def __init__(self, settings: Settings, log: logging.Logger, executable: str = OGR2OGR):
        self.settings = settings
        self.log = log
        self.executable = executable

    def environment(self) -> dict:
        env = dict(os.environ)
        env.update(self.settings.driver_env)
        env["PGPASSWORD"] = self.settings.postgres.password
        return env

    def run(self, mode: TransferMode) -> int:
        """Run the transfer and wait for it, however long it takes.

        Returns:
            int: the exit status of ogr2ogr.
        """
        command = build_command(self.settings, mode, self.executable)
        self.log.debug(
            "running {}".format(
                subprocess.list2cmdline(masked(command, self.settings.oracle.password))
            )
        )

        # feature values echoed back in warnings are not always UTF-8
        with subprocess.Popen(
            command,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            encoding="utf-8",
            errors="replace",
            env=self.environment(),
        ) as process:
            for line in process.stdout:
                line = line.rstrip()
                if line:
                    self.log.info(f"ogr2ogr: {line}")
            return process.wait()

# -*- coding: utf-8 -*-
import os
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, Mapping, Optional, Tuple

from dotenv import dotenv_values

from oracle_sync.errors import ConfigurationError
from oracle_sync.jobs import Pipeline, SyncJob

ENV_FILES = (".env", "../.env")
LOG_DIRS = ("/app/logs", "./logs")

SYNC_MODES = ("truncate",)
DEFAULT_SYNC_MODE = "truncate"

IDENTIFIER = re.compile(r"^[A-Za-z][A-Za-z0-9_$#]{0,127}$")


@dataclass(frozen=True)
class PostgresConfig:
    host: str = "localhost"
    port: int = 5432
    dbname: str = "cadastral_db"
    user: str = "postgres"
    password: str = field(default="password", repr=False)

    def connect_kwargs(self) -> dict:
        return dict(
            host=self.host,
            port=self.port,
            dbname=self.dbname,
            user=self.user,
            password=self.password,
        )

    def ogr_source(self) -> str:
        """str: the `PG:` datasource for ogr2ogr. The password is passed through
        `PGPASSWORD` in the child environment instead."""
        return (
            f"PG:host={self.host} port={self.port} "
            f"dbname={self.dbname} user={self.user}"
        )


@dataclass(frozen=True)
class OracleConfig:
    host: str = "localhost"
    port: int = 1521
    service_name: str = "ORCL"
    user: str = "cadastral"
    password: str = field(default="password", repr=False)
    client_lib_dir: Optional[str] = None

    def dsn(self) -> str:
        return f"{self.host}:{self.port}/{self.service_name}"

    def ogr_destination(self, table: str) -> str:
        return f"OCI:{self.user}/{self.password}@{self.dsn()}:{table}"


@dataclass(frozen=True)
class Settings:
    """Everything a run needs, resolved once from the environment.

    Attributes:
        postgres (PostgresConfig): the source database.
        oracle (OracleConfig): the destination database.
        job (SyncJob): pipeline, destination table and sync mode.
        log_path (Path): the timestamped log file of this run.
        driver_env (dict): NLS/TNS/GDAL variables exported to ogr2ogr.
        defaults (tuple): variables that were not set and fell back to their default.
        invalid (tuple): variables that were set to an unusable value and fell back
            to their default.
    """

    postgres: PostgresConfig
    oracle: OracleConfig
    job: SyncJob
    log_path: Path
    driver_env: Dict[str, str] = field(default_factory=dict)
    defaults: Tuple[str, ...] = ()
    invalid: Tuple[str, ...] = ()

    @property
    def table(self) -> str:
        return self.job.table


class _Reader(object):
    """Reads variables from a mapping and remembers which ones fell back."""

    def __init__(self, environ: Mapping[str, str]):
        self.environ = environ
        self.defaults = []
        self.invalid = []

    def get(self, name: str, default: str) -> str:
        value = self.environ.get(name)
        if not value:
            self.defaults.append(name)
            return default
        return value

    def get_int(self, name: str, default: int) -> int:
        value = self.environ.get(name)
        if not value:
            self.defaults.append(name)
            return default
        try:
            return int(value)
        except ValueError:
            self.invalid.append(name)
            return default


def read_environment(env_files: Iterable[str] = ENV_FILES) -> Dict[str, str]:
    """Merge the first `.env` file found with the process environment. Variables
    already set in the process environment win."""
    environ = {}
    for env_file in env_files:
        if os.path.isfile(env_file):
            environ.update({k: v for k, v in dotenv_values(env_file).items() if v is not None})
            break
    environ.update(os.environ)
    return environ


def resolve_log_dir(candidates: Iterable[str] = LOG_DIRS) -> Path:
    """Return the first candidate directory that exists or can be created.

    Falls back to the current directory when none of them is usable.
    """
    for candidate in candidates:
        path = Path(candidate)
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError:
            continue
        if os.access(path, os.W_OK):
            return path
    return Path(".")


def log_file_name(pipeline: str, now: Optional[datetime] = None) -> str:
    now = now or datetime.now()
    return f"sync_{pipeline}_{now:%Y%m%d_%H%M%S}.log"


def validate_identifier(name: str) -> str:
    """Check an Oracle object name and return it in upper case.

    Raises:
        ConfigurationError: raised when the name is not a plain identifier.
    """
    if not isinstance(name, str) or not IDENTIFIER.match(name):
        raise ConfigurationError(f"{name!r} is not a valid Oracle table name.")
    return name.upper()


def load_settings(
    pipeline: Pipeline,
    environ: Optional[Mapping[str, str]] = None,
    log_dirs: Optional[Iterable[str]] = None,
    now: Optional[datetime] = None,
) -> Settings:
    """Resolve the settings of a run for the given pipeline.

    Args:
        pipeline (Pipeline): the pipeline to run.
        environ (dict, optional): variables to read. Defaults to the `.env` file
            merged with the process environment.
        log_dirs (list, optional): candidate log directories, in order of
            preference. `LOG_DIR` takes precedence when it is set.
        now (datetime, optional): timestamp used for the log file name.

    Returns:
        Settings: the resolved settings.

    Raises:
        ConfigurationError: raised when the destination table name is invalid.
    """
    env = _Reader(read_environment() if environ is None else environ)

    postgres = PostgresConfig(
        host=env.get("POSTGRES_HOST", "localhost"),
        port=env.get_int("POSTGRES_PORT", 5432),
        dbname=env.get("POSTGRES_DB", "cadastral_db"),
        user=env.get("POSTGRES_USER", "postgres"),
        password=env.get("POSTGRES_PASS", "password"),
    )
    oracle = OracleConfig(
        host=env.get("ORACLE_HOST", "localhost"),
        port=env.get_int("ORACLE_PORT", 1521),
        service_name=env.get("ORACLE_SERVICE_NAME", "ORCL"),
        user=env.get("ORACLE_USER", "cadastral"),
        password=env.get("ORACLE_PASS", "password"),
        client_lib_dir=env.environ.get("ORACLE_CLIENT_LIB_DIR") or None,
    )

    table = validate_identifier(env.get(pipeline.table_env, pipeline.default_table))

    mode = env.get("SYNC_MODE", DEFAULT_SYNC_MODE).lower()
    if mode not in SYNC_MODES:
        env.invalid.append("SYNC_MODE")
        mode = DEFAULT_SYNC_MODE

    driver_env = {
        "TNS_ADMIN": env.get("TNS_ADMIN", "/usr/lib/oracle/instantclient"),
        "NLS_LANG": env.get("NLS_LANG", "AMERICAN_AMERICA.UTF8"),
        "NLS_DATE_FORMAT": env.get("NLS_DATE_FORMAT", "YYYY-MM-DD HH24:MI:SS"),
        "GDAL_CACHEMAX": str(env.get_int("GDAL_CACHEMAX", 2048)),
    }

    log_dir = env.environ.get("LOG_DIR")
    candidates = [log_dir] if log_dir else []
    candidates.extend(LOG_DIRS if log_dirs is None else log_dirs)
    log_path = resolve_log_dir(candidates) / log_file_name(pipeline.name, now)

    return Settings(
        postgres=postgres,
        oracle=oracle,
        job=SyncJob(pipeline=pipeline, table=table, mode=mode),
        log_path=log_path,
        driver_env=driver_env,
        defaults=tuple(env.defaults),
        invalid=tuple(env.invalid),
    )

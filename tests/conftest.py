"""
pytest configuration
"""

import io
import sys
from datetime import datetime
from pathlib import Path
from unittest.mock import MagicMock

import pytest

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from oracle_sync.config import load_settings  # noqa: E402
from oracle_sync.jobs import ABONE_ADRES_BILGILERI  # noqa: E402
from oracle_sync.logs import close_logger, make_logger  # noqa: E402


@pytest.fixture
def environ():
    return {
        "POSTGRES_HOST": "pg.local",
        "POSTGRES_USER": "etl",
        "POSTGRES_PASS": "pgsecret",
        "ORACLE_HOST": "ora.local",
        "ORACLE_USER": "cadastral",
        "ORACLE_PASS": "orasecret",
    }


@pytest.fixture
def settings(environ, tmp_path):
    return load_settings(
        ABONE_ADRES_BILGILERI,
        environ=environ,
        log_dirs=[str(tmp_path / "logs")],
        now=datetime(2024, 1, 2, 3, 4, 5),
    )


@pytest.fixture
def stream():
    return io.StringIO()


@pytest.fixture
def log(stream):
    logger = make_logger("test", stream=stream, verbose=True)
    yield logger
    close_logger(logger)


@pytest.fixture
def connection():
    """A mocked DB-API connection and the cursor its `cursor()` context yields."""
    conn = MagicMock()
    cursor = conn.cursor.return_value.__enter__.return_value
    return conn, cursor

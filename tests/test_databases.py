"""
Database wrapper tests
"""

from dataclasses import replace
from types import SimpleNamespace
from unittest.mock import Mock, patch

import oracledb
import psycopg2
import pytest

from oracle_sync.databases import (
    DestinationDatabase,
    SourceDatabase,
    error_code,
    index_name,
    quote_identifier,
)
from oracle_sync.errors import (
    ConnectivityError,
    IndexCreationError,
    InspectionError,
    LockError,
    StatisticsRefreshError,
    TransferError,
    TruncateError,
)
from oracle_sync.jobs import ABONE_ADRES_BILGILERI

TABLE = "ABONE_ADRES_BILGILERI"


def ora_error(code, message="ORA-error"):
    return oracledb.DatabaseError(SimpleNamespace(code=code, message=message))


def statements(cursor):
    return [c.args[0] for c in cursor.execute.call_args_list]


class TestHelpers:
    def test_index_name(self):
        assert index_name(TABLE) == "ABONE_ADRES_BILGILERI_GEOM_IDX"

    def test_index_name_is_cut_to_identifier_limit(self):
        name = index_name("SU_ABONE_ADRES_BILGILERI_ARSIV")

        assert len(name) == 30
        assert name == "SU_ABONE_ADRES_BILGILERI_ARSIV"

    def test_quote_identifier(self):
        assert quote_identifier("ABC") == '"ABC"'
        assert quote_identifier('A"B') == '"A""B"'

    def test_error_code(self):
        assert error_code(ora_error(955)) == 955
        assert error_code(oracledb.DatabaseError()) is None


class TestSourceDatabase:
    def setup_method(self):
        self.log = Mock()

    @patch("oracle_sync.databases.psycopg2.connect")
    def test_ping(self, mock_connect, settings, connection):
        conn, cursor = connection
        mock_connect.return_value = conn

        SourceDatabase(settings.postgres, self.log).ping()

        cursor.execute.assert_called_once_with("SELECT 1;")
        kwargs = mock_connect.call_args.kwargs
        assert kwargs["host"] == "pg.local"
        assert kwargs["password"] == "pgsecret"
        assert conn.autocommit is True

    @patch("oracle_sync.databases.psycopg2.connect")
    def test_ping_failure(self, mock_connect, settings):
        mock_connect.side_effect = psycopg2.OperationalError("could not connect")

        with pytest.raises(ConnectivityError) as exc:
            SourceDatabase(settings.postgres, self.log).ping()

        assert exc.value.message.startswith("PostgreSQL connection failed: ")
        assert "could not connect" in exc.value.message

    @patch("oracle_sync.databases.psycopg2.connect")
    def test_connection_is_reused(self, mock_connect, settings, connection):
        mock_connect.return_value = connection[0]
        database = SourceDatabase(settings.postgres, self.log)

        database.ping()
        database.ping()

        mock_connect.assert_called_once()

    @patch("oracle_sync.databases.psycopg2.connect")
    def test_count_active(self, mock_connect, settings, connection):
        conn, cursor = connection
        mock_connect.return_value = conn
        cursor.fetchone.return_value = (1200,)

        assert SourceDatabase(settings.postgres, self.log).count_active(
            ABONE_ADRES_BILGILERI
        ) == 1200
        cursor.execute.assert_called_once_with(
            "SELECT COUNT(*) FROM abys.abone_adres_bilgileri_vw WHERE durum <> '2'"
        )

    @patch("oracle_sync.databases.psycopg2.connect")
    def test_count_active_failure_is_not_fatal(self, mock_connect, settings, connection):
        conn, cursor = connection
        mock_connect.return_value = conn
        cursor.execute.side_effect = psycopg2.ProgrammingError("no such view")

        database = SourceDatabase(settings.postgres, self.log)

        assert database.count_active(ABONE_ADRES_BILGILERI) is None
        self.log.warning.assert_called_once()

    @patch("oracle_sync.databases.psycopg2.connect")
    def test_try_lock(self, mock_connect, settings, connection):
        conn, cursor = connection
        mock_connect.return_value = conn
        cursor.fetchone.return_value = SimpleNamespace(locked=False)

        granted = SourceDatabase(settings.postgres, self.log).try_lock("oracle_sync:T")

        assert granted is False
        query, params = cursor.execute.call_args.args
        assert "pg_try_advisory_lock" in query
        assert params == ("oracle_sync:T",)

    @patch("oracle_sync.databases.psycopg2.connect")
    def test_try_lock_failure(self, mock_connect, settings, connection):
        conn, cursor = connection
        mock_connect.return_value = conn
        cursor.execute.side_effect = psycopg2.OperationalError("server closed")

        with pytest.raises(LockError):
            SourceDatabase(settings.postgres, self.log).try_lock("k")

    @patch("oracle_sync.databases.psycopg2.connect")
    def test_unlock_without_connection_does_nothing(self, mock_connect, settings):
        SourceDatabase(settings.postgres, self.log).unlock("k")

        mock_connect.assert_not_called()

    @patch("oracle_sync.databases.psycopg2.connect")
    def test_close(self, mock_connect, settings, connection):
        conn, _ = connection
        mock_connect.return_value = conn

        with SourceDatabase(settings.postgres, self.log) as database:
            database.ping()
            assert database.is_connected

        conn.close.assert_called_once()
        assert not database.is_connected


class TestDestinationDatabase:
    def setup_method(self):
        self.log = Mock()
        self.patcher = patch("oracle_sync.databases.oracledb.connect")
        self.mock_connect = self.patcher.start()

    def teardown_method(self):
        self.patcher.stop()

    def database(self, settings, connection):
        self.mock_connect.return_value = connection[0]
        return DestinationDatabase(settings.oracle, self.log)

    def test_ping(self, settings, connection):
        self.database(settings, connection).ping()

        connection[1].execute.assert_called_once_with("SELECT 1 FROM DUAL")
        self.mock_connect.assert_called_once_with(
            user="cadastral", password="orasecret", dsn="ora.local:1521/ORCL"
        )

    def test_ping_failure(self, settings):
        self.mock_connect.side_effect = ora_error(12541, "ORA-12541: TNS:no listener")

        with pytest.raises(ConnectivityError) as exc:
            DestinationDatabase(settings.oracle, self.log).ping()

        assert exc.value.message.startswith("Oracle connection failed: ")
        assert exc.value.stage == "connectivity"

    @patch("oracle_sync.databases.oracledb.init_oracle_client")
    @patch("oracle_sync.databases.oracledb.is_thin_mode", return_value=True)
    def test_thick_mode(self, mock_thin, mock_init, settings, connection):
        config = replace(settings.oracle, client_lib_dir="/opt/instantclient")
        self.mock_connect.return_value = connection[0]

        DestinationDatabase(config, self.log).ping()

        mock_init.assert_called_once_with(lib_dir="/opt/instantclient")

    @pytest.mark.parametrize("count, expected", [(1, True), (0, False)])
    def test_table_exists(self, settings, connection, count, expected):
        connection[1].fetchone.return_value = (count,)

        assert self.database(settings, connection).table_exists(TABLE) is expected

        query = connection[1].execute.call_args
        assert "user_tables" in query.args[0]
        assert query.kwargs == {"name": TABLE}

    @pytest.mark.parametrize("row", [None, ("EXISTS",), (None,), (-1,), ()])
    def test_table_exists_ambiguous_answer(self, settings, connection, row):
        connection[1].fetchone.return_value = row

        with pytest.raises(InspectionError):
            self.database(settings, connection).table_exists(TABLE)

    def test_table_exists_driver_error(self, settings, connection):
        connection[1].execute.side_effect = ora_error(942)

        with pytest.raises(InspectionError):
            self.database(settings, connection).table_exists(TABLE)

    def test_truncate_resets_sequence(self, settings, connection):
        conn, cursor = connection
        cursor.fetchone.return_value = ("ABONE_ADRES_BILGILERI_SEQ",)

        sequence = self.database(settings, connection).truncate(TABLE)

        assert sequence == "ABONE_ADRES_BILGILERI_SEQ"
        executed = statements(cursor)
        assert executed[0] == 'TRUNCATE TABLE "ABONE_ADRES_BILGILERI"'
        assert "user_sequences" in executed[1]
        assert executed[2] == 'DROP SEQUENCE "ABONE_ADRES_BILGILERI_SEQ"'
        assert executed[3] == (
            'CREATE SEQUENCE "ABONE_ADRES_BILGILERI_SEQ" START WITH 1 INCREMENT BY 1'
        )
        conn.commit.assert_called_once()

    def test_truncate_without_sequence(self, settings, connection):
        conn, cursor = connection
        cursor.fetchone.return_value = None

        assert self.database(settings, connection).truncate(TABLE) is None
        assert len(statements(cursor)) == 2
        conn.commit.assert_called_once()

    def test_truncate_failure(self, settings, connection):
        conn, cursor = connection
        cursor.execute.side_effect = ora_error(54, "ORA-00054: resource busy")

        with pytest.raises(TruncateError):
            self.database(settings, connection).truncate(TABLE)
        conn.commit.assert_not_called()

    def test_sequence_reset_failure_is_fatal(self, settings, connection):
        _, cursor = connection
        cursor.fetchone.return_value = ("ABONE_ADRES_BILGILERI_SEQ",)
        cursor.execute.side_effect = [None, None, ora_error(1031)]

        with pytest.raises(TruncateError):
            self.database(settings, connection).truncate(TABLE)

    def test_row_count(self, settings, connection):
        connection[1].fetchone.return_value = (1050,)

        assert self.database(settings, connection).row_count(TABLE) == 1050
        connection[1].execute.assert_called_once_with(
            'SELECT COUNT(*) FROM "ABONE_ADRES_BILGILERI"'
        )

    @pytest.mark.parametrize("row", [None, (None,)])
    def test_row_count_unreadable(self, settings, connection, row):
        connection[1].fetchone.return_value = row

        with pytest.raises(TransferError):
            self.database(settings, connection).row_count(TABLE)

    def test_row_count_driver_error(self, settings, connection):
        connection[1].execute.side_effect = ora_error(942)

        with pytest.raises(TransferError):
            self.database(settings, connection).row_count(TABLE)

    def test_create_spatial_index(self, settings, connection):
        conn, cursor = connection

        assert self.database(settings, connection).create_spatial_index(TABLE) is True

        statement = cursor.execute.call_args.args[0]
        assert statement.startswith(
            'CREATE INDEX "ABONE_ADRES_BILGILERI_GEOM_IDX" '
            'ON "ABONE_ADRES_BILGILERI" ("GEOMETRY")'
        )
        assert "INDEXTYPE IS MDSYS.SPATIAL_INDEX" in statement
        assert "PARAMETERS('SDO_INDX_DIMS=2')" in statement
        conn.commit.assert_called_once()

    def test_existing_index_is_benign(self, settings, connection):
        connection[1].execute.side_effect = ora_error(955)

        assert self.database(settings, connection).create_spatial_index(TABLE) is False

    def test_other_index_errors_are_raised(self, settings, connection):
        connection[1].execute.side_effect = ora_error(13249)

        with pytest.raises(IndexCreationError):
            self.database(settings, connection).create_spatial_index(TABLE)

    def test_gather_statistics(self, settings, connection):
        self.database(settings, connection).gather_statistics("cadastral", TABLE)

        connection[1].callproc.assert_called_once_with(
            "DBMS_STATS.GATHER_TABLE_STATS", ["CADASTRAL", TABLE]
        )

    def test_gather_statistics_failure(self, settings, connection):
        connection[1].callproc.side_effect = ora_error(20000)

        with pytest.raises(StatisticsRefreshError):
            self.database(settings, connection).gather_statistics("cadastral", TABLE)

"""Exhaustive tests for the storage error classification."""

from __future__ import annotations

import pytest
from sqlalchemy import exc as sa_exc

from categorizer.core.errors import (
    CategorizerError,
    DatabaseConnectionError,
    OracleError,
    SessionNotFoundError,
    TransientError,
    ValidationError,
)
from categorizer.core.storage_errors import (
    MYSQL_ERRNO,
    PG_SQLSTATE,
    Fatal,
    Retryable,
    StorageErrorKind,
    classify_storage_error,
    driver_error_kind,
    is_retryable_storage_error,
)


# ── Fake driver exceptions ───────────────────────────────────────────────


class PgError(Exception):
    def __init__(self, sqlstate: str):
        super().__init__(f"pg {sqlstate}")
        self.sqlstate = sqlstate


class Psycopg2Error(Exception):
    def __init__(self, pgcode: str):
        super().__init__(f"pg {pgcode}")
        self.pgcode = pgcode


class SqliteError(Exception):
    def __init__(self, name: str):
        super().__init__(name)
        self.sqlite_errorname = name


def _mysql_error(errno: int) -> Exception:
    cls = type("OperationalError", (Exception,), {"__module__": "pymysql.err"})
    return cls(errno, "mysql says no")


def _dbapi(orig: Exception, cls=sa_exc.OperationalError, **kwargs) -> sa_exc.DBAPIError:
    return cls("SELECT 1", {}, orig, **kwargs)


# ── Driver codes ─────────────────────────────────────────────────────────


class TestPostgresCodes:
    @pytest.mark.parametrize("sqlstate,kind", sorted(PG_SQLSTATE.items()))
    def test_every_mapped_sqlstate(self, sqlstate, kind):
        verdict = classify_storage_error(_dbapi(PgError(sqlstate)))
        assert isinstance(verdict, Retryable)
        assert verdict.kind == kind

    def test_too_many_connections_reconnects(self):
        verdict = classify_storage_error(_dbapi(PgError("53300")))
        assert verdict == Retryable(StorageErrorKind.TOO_MANY_CONNECTIONS, reconnect=True)

    def test_admin_shutdown_reconnects(self):
        assert classify_storage_error(_dbapi(PgError("57P01"))).reconnect is True

    def test_connection_failure_does_not_reconnect(self):
        assert classify_storage_error(_dbapi(PgError("08006"))).reconnect is False

    @pytest.mark.parametrize("sqlstate", ["23505", "23503", "23502"])
    def test_integrity_class_is_fatal(self, sqlstate):
        assert classify_storage_error(_dbapi(PgError(sqlstate))) == Fatal(StorageErrorKind.CONSTRAINT)

    def test_data_class_is_fatal(self):
        assert classify_storage_error(_dbapi(PgError("22001"))) == Fatal(StorageErrorKind.DATA)

    def test_unmapped_connection_class_is_retryable(self):
        assert classify_storage_error(_dbapi(PgError("08P01"))).kind == StorageErrorKind.CONNECTION_LOST

    def test_pgcode_attribute(self):
        assert driver_error_kind(Psycopg2Error("40P01")) == StorageErrorKind.BUSY

    def test_syntax_error_is_fatal(self):
        verdict = classify_storage_error(_dbapi(PgError("42601"), cls=sa_exc.ProgrammingError))
        assert verdict == Fatal(StorageErrorKind.UNKNOWN)


class TestMySQLCodes:
    @pytest.mark.parametrize("errno,kind", sorted(MYSQL_ERRNO.items()))
    def test_every_mapped_errno(self, errno, kind):
        verdict = classify_storage_error(_dbapi(_mysql_error(errno)))
        assert verdict.kind == kind
        expected_fatal = kind == StorageErrorKind.CONSTRAINT
        assert isinstance(verdict, Fatal) is expected_fatal

    def test_errno_from_unrelated_module_ignored(self):
        assert driver_error_kind(Exception(1040, "not mysql")) is None

    def test_too_many_connections_reconnects(self):
        assert classify_storage_error(_dbapi(_mysql_error(1040))).reconnect is True


class TestSQLiteCodes:
    @pytest.mark.parametrize("name", ["SQLITE_BUSY", "SQLITE_BUSY_SNAPSHOT", "SQLITE_LOCKED"])
    def test_busy_is_retryable(self, name):
        verdict = classify_storage_error(_dbapi(SqliteError(name)))
        assert verdict == Retryable(StorageErrorKind.BUSY)

    def test_constraint_is_fatal(self):
        error = _dbapi(SqliteError("SQLITE_CONSTRAINT_UNIQUE"), cls=sa_exc.IntegrityError)
        assert classify_storage_error(error) == Fatal(StorageErrorKind.CONSTRAINT)

    @pytest.mark.parametrize("name", ["SQLITE_MISMATCH", "SQLITE_TOOBIG", "SQLITE_RANGE"])
    def test_data_errors_are_fatal(self, name):
        assert classify_storage_error(_dbapi(SqliteError(name))) == Fatal(StorageErrorKind.DATA)


# ── SQLAlchemy types without driver codes ────────────────────────────────


class TestSQLAlchemyTypes:
    def test_pool_timeout_reconnects(self):
        verdict = classify_storage_error(sa_exc.TimeoutError("QueuePool limit reached"))
        assert verdict == Retryable(StorageErrorKind.TOO_MANY_CONNECTIONS, reconnect=True)

    def test_disconnection(self):
        verdict = classify_storage_error(sa_exc.DisconnectionError("gone"))
        assert verdict == Retryable(StorageErrorKind.CONNECTION_LOST)

    def test_no_result(self):
        assert classify_storage_error(sa_exc.NoResultFound()) == Fatal(StorageErrorKind.NOT_FOUND)

    def test_invalidated_connection(self):
        error = _dbapi(Exception("server closed the connection"), connection_invalidated=True)
        assert classify_storage_error(error) == Retryable(StorageErrorKind.CONNECTION_LOST)

    def test_integrity_without_code(self):
        error = _dbapi(Exception("dup"), cls=sa_exc.IntegrityError)
        assert classify_storage_error(error) == Fatal(StorageErrorKind.CONSTRAINT)

    def test_data_error_without_code(self):
        error = _dbapi(Exception("bad"), cls=sa_exc.DataError)
        assert classify_storage_error(error) == Fatal(StorageErrorKind.DATA)

    def test_operational_error_without_code_is_fatal(self):
        # No substring sniffing: an unknown message is never guessed retryable
        error = _dbapi(Exception("connection reset, please retry"))
        assert classify_storage_error(error) == Fatal(StorageErrorKind.UNKNOWN)


# ── Builtins and our own hierarchy ───────────────────────────────────────


class TestBuiltinsAndHierarchy:
    @pytest.mark.parametrize("exc", [ConnectionResetError(), ConnectionRefusedError(), BrokenPipeError()])
    def test_os_connection_errors(self, exc):
        assert classify_storage_error(exc) == Retryable(StorageErrorKind.CONNECTION_LOST)

    def test_builtin_timeout(self):
        assert classify_storage_error(TimeoutError()) == Retryable(StorageErrorKind.TIMEOUT)

    def test_database_connection_error(self):
        verdict = classify_storage_error(DatabaseConnectionError("lost"))
        assert verdict == Retryable(StorageErrorKind.CONNECTION_LOST)

    @pytest.mark.parametrize("exc", [TransientError("x"), OracleError("x"), CategorizerError("x", retryable=True)])
    def test_transient_family(self, exc):
        assert classify_storage_error(exc) == Retryable(StorageErrorKind.TRANSIENT)

    def test_validation_is_fatal(self):
        assert classify_storage_error(ValidationError("bad")) == Fatal(StorageErrorKind.VALIDATION)

    def test_session_error_is_fatal(self):
        assert classify_storage_error(SessionNotFoundError("s")) == Fatal(StorageErrorKind.UNKNOWN)

    @pytest.mark.parametrize("exc", [ValueError("x"), KeyError("k"), RuntimeError("r")])
    def test_everything_else_is_fatal(self, exc):
        assert classify_storage_error(exc) == Fatal(StorageErrorKind.UNKNOWN)
        assert not is_retryable_storage_error(exc)

    def test_verdict_retryable_flags(self):
        assert Retryable(StorageErrorKind.BUSY).retryable is True
        assert Fatal(StorageErrorKind.DATA).retryable is False

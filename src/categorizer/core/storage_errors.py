"""
Closed classification of storage failures.

``classify_storage_error`` maps any exception raised while talking to the
relational store onto a tagged verdict: :class:`Retryable` or
:class:`Fatal`. The gateway retries only ``Retryable`` verdicts. Every input
that is not on an allow-list below is ``Fatal(UNKNOWN)``, so a new driver
error never gets retried by accident.

Inputs considered, in order:

    1. categorizer errors          TransientError / ValidationError / ...
    2. SQLAlchemy exception types  pool TimeoutError, DisconnectionError,
                                   NoResultFound, invalidated connections
    3. driver error codes          PostgreSQL SQLSTATE, MySQL errno,
                                   SQLite error name
    4. SQLAlchemy DBAPI subclasses IntegrityError, DataError
    5. builtins                    ConnectionError, TimeoutError

Examples:
    >>> classify_storage_error(ConnectionResetError())
    Retryable(kind=<StorageErrorKind.CONNECTION_LOST: 'connection_lost'>, reconnect=False)
    >>> classify_storage_error(ValueError("x")).retryable
    False
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union

from sqlalchemy import exc as sa_exc

from categorizer.core.errors import (
    CategorizerError,
    DatabaseConnectionError,
    TransientError,
    ValidationError,
)


class StorageErrorKind(str, Enum):
    # retryable
    CONNECTION_LOST = "connection_lost"
    TIMEOUT = "timeout"
    TOO_MANY_CONNECTIONS = "too_many_connections"
    SERVER_CLOSED = "server_closed"
    BUSY = "busy"
    TRANSIENT = "transient"
    # fatal
    CONSTRAINT = "constraint"
    DATA = "data"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    UNKNOWN = "unknown"


# Kinds after which the pool is disposed before the next attempt
_RECONNECT_KINDS = frozenset({StorageErrorKind.TOO_MANY_CONNECTIONS, StorageErrorKind.SERVER_CLOSED})


@dataclass(frozen=True)
class Retryable:
    kind: StorageErrorKind
    reconnect: bool = False

    @property
    def retryable(self) -> bool:
        return True


@dataclass(frozen=True)
class Fatal:
    kind: StorageErrorKind

    @property
    def retryable(self) -> bool:
        return False


StorageVerdict = Union[Retryable, Fatal]


def _retryable(kind: StorageErrorKind) -> Retryable:
    return Retryable(kind=kind, reconnect=kind in _RECONNECT_KINDS)


# ── PostgreSQL SQLSTATE ──────────────────────────────────────────────────

PG_SQLSTATE: dict[str, StorageErrorKind] = {
    "08000": StorageErrorKind.CONNECTION_LOST,   # connection_exception
    "08001": StorageErrorKind.CONNECTION_LOST,   # sqlclient_unable_to_establish_sqlconnection
    "08003": StorageErrorKind.CONNECTION_LOST,   # connection_does_not_exist
    "08004": StorageErrorKind.CONNECTION_LOST,   # sqlserver_rejected_establishment_of_sqlconnection
    "08006": StorageErrorKind.CONNECTION_LOST,   # connection_failure
    "08007": StorageErrorKind.CONNECTION_LOST,   # transaction_resolution_unknown
    "57P01": StorageErrorKind.SERVER_CLOSED,     # admin_shutdown
    "57P02": StorageErrorKind.SERVER_CLOSED,     # crash_shutdown
    "57P03": StorageErrorKind.SERVER_CLOSED,     # cannot_connect_now
    "53300": StorageErrorKind.TOO_MANY_CONNECTIONS,
    "57014": StorageErrorKind.TIMEOUT,           # query_canceled (statement_timeout)
    "40001": StorageErrorKind.BUSY,              # serialization_failure
    "40P01": StorageErrorKind.BUSY,              # deadlock_detected
}

# ── MySQL errno ──────────────────────────────────────────────────────────

MYSQL_ERRNO: dict[int, StorageErrorKind] = {
    1040: StorageErrorKind.TOO_MANY_CONNECTIONS,   # ER_CON_COUNT_ERROR
    1203: StorageErrorKind.TOO_MANY_CONNECTIONS,   # ER_TOO_MANY_USER_CONNECTIONS
    2002: StorageErrorKind.CONNECTION_LOST,        # CR_CONNECTION_ERROR
    2003: StorageErrorKind.CONNECTION_LOST,        # CR_CONN_HOST_ERROR
    2006: StorageErrorKind.SERVER_CLOSED,          # CR_SERVER_GONE_ERROR
    2013: StorageErrorKind.CONNECTION_LOST,        # CR_SERVER_LOST
    1205: StorageErrorKind.TIMEOUT,                # ER_LOCK_WAIT_TIMEOUT
    3024: StorageErrorKind.TIMEOUT,                # ER_QUERY_TIMEOUT
    1213: StorageErrorKind.BUSY,                   # ER_LOCK_DEADLOCK
    1062: StorageErrorKind.CONSTRAINT,             # ER_DUP_ENTRY
    1451: StorageErrorKind.CONSTRAINT,             # ER_ROW_IS_REFERENCED_2
    1452: StorageErrorKind.CONSTRAINT,             # ER_NO_REFERENCED_ROW_2
}

_MYSQL_MODULES = ("pymysql", "MySQLdb", "mysql", "asyncmy", "aiomysql")

_FATAL_KINDS = frozenset({
    StorageErrorKind.CONSTRAINT,
    StorageErrorKind.DATA,
    StorageErrorKind.VALIDATION,
    StorageErrorKind.NOT_FOUND,
    StorageErrorKind.UNKNOWN,
})


def _verdict(kind: StorageErrorKind) -> StorageVerdict:
    if kind in _FATAL_KINDS:
        return Fatal(kind)
    return _retryable(kind)


def _sqlstate_kind(sqlstate: str) -> StorageErrorKind | None:
    if sqlstate in PG_SQLSTATE:
        return PG_SQLSTATE[sqlstate]
    if sqlstate.startswith("23"):
        return StorageErrorKind.CONSTRAINT
    if sqlstate.startswith("22"):
        return StorageErrorKind.DATA
    if sqlstate.startswith("08"):
        return StorageErrorKind.CONNECTION_LOST
    return None


def _sqlite_kind(errorname: str) -> StorageErrorKind | None:
    if errorname.startswith(("SQLITE_BUSY", "SQLITE_LOCKED")):
        return StorageErrorKind.BUSY
    if errorname.startswith("SQLITE_CONSTRAINT"):
        return StorageErrorKind.CONSTRAINT
    if errorname.startswith(("SQLITE_MISMATCH", "SQLITE_TOOBIG", "SQLITE_RANGE")):
        return StorageErrorKind.DATA
    return None


def _mysql_kind(orig: BaseException) -> StorageErrorKind | None:
    if not type(orig).__module__.startswith(_MYSQL_MODULES):
        return None
    if not orig.args or not isinstance(orig.args[0], int):
        return None
    return MYSQL_ERRNO.get(orig.args[0])


def driver_error_kind(orig: BaseException | None) -> StorageErrorKind | None:
    """Read the driver-specific code off a DBAPI exception, if it has one."""
    if orig is None:
        return None

    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if isinstance(sqlstate, str) and sqlstate:
        kind = _sqlstate_kind(sqlstate)
        if kind is not None:
            return kind

    errorname = getattr(orig, "sqlite_errorname", None)
    if isinstance(errorname, str) and errorname:
        kind = _sqlite_kind(errorname)
        if kind is not None:
            return kind

    return _mysql_kind(orig)


def classify_storage_error(exc: BaseException) -> StorageVerdict:
    """Classify a storage failure as :class:`Retryable` or :class:`Fatal`."""
    # 1. our own hierarchy
    if isinstance(exc, CategorizerError):
        if isinstance(exc, DatabaseConnectionError):
            return _retryable(StorageErrorKind.CONNECTION_LOST)
        if isinstance(exc, TransientError) or exc.retryable:
            return _retryable(StorageErrorKind.TRANSIENT)
        if isinstance(exc, ValidationError):
            return Fatal(StorageErrorKind.VALIDATION)
        return Fatal(StorageErrorKind.UNKNOWN)

    # 2. SQLAlchemy types that carry no driver code
    if isinstance(exc, sa_exc.TimeoutError):
        # QueuePool exhausted: every connection is checked out
        return _retryable(StorageErrorKind.TOO_MANY_CONNECTIONS)
    if isinstance(exc, sa_exc.NoResultFound):
        return Fatal(StorageErrorKind.NOT_FOUND)
    if isinstance(exc, sa_exc.DisconnectionError):
        return _retryable(StorageErrorKind.CONNECTION_LOST)

    if isinstance(exc, sa_exc.DBAPIError):
        # 3. driver codes
        kind = driver_error_kind(exc.orig)
        if kind is not None:
            return _verdict(kind)
        if exc.connection_invalidated:
            return _retryable(StorageErrorKind.CONNECTION_LOST)
        # 4. DBAPI subclasses
        if isinstance(exc, sa_exc.IntegrityError):
            return Fatal(StorageErrorKind.CONSTRAINT)
        if isinstance(exc, sa_exc.DataError):
            return Fatal(StorageErrorKind.DATA)
        return Fatal(StorageErrorKind.UNKNOWN)

    # 5. builtins raised by drivers or sockets directly
    if isinstance(exc, ConnectionError):
        return _retryable(StorageErrorKind.CONNECTION_LOST)
    if isinstance(exc, TimeoutError):
        return _retryable(StorageErrorKind.TIMEOUT)

    return Fatal(StorageErrorKind.UNKNOWN)


def is_retryable_storage_error(exc: BaseException) -> bool:
    return isinstance(classify_storage_error(exc), Retryable)


__all__ = [
    "StorageErrorKind",
    "Retryable",
    "Fatal",
    "StorageVerdict",
    "PG_SQLSTATE",
    "MYSQL_ERRNO",
    "driver_error_kind",
    "classify_storage_error",
    "is_retryable_storage_error",
]

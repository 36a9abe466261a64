"""Map asyncpg/PostgreSQL failures onto the Result error hierarchy.

Everything raised by the store is infrastructure, never domain: PostgreSQL
errors become ``DatabaseError`` (with SQLSTATE context) and connection, pool
or timeout failures become ``SystemError``.
"""

from __future__ import annotations

from typing import Any

import asyncpg

from src.infra.result import DatabaseError, Error, SystemError


class _UnavailablePoolError(Exception):
    """Placeholder for asyncpg releases that do not export ``PoolError``; never raised."""


# Must never resolve to a broad base class, or every exception would look like a store failure.
PoolError: type[BaseException] = getattr(asyncpg, "PoolError", _UnavailablePoolError)

POSTGRES_ERROR_CODES = {
    "08000": "connection_exception",
    "08003": "connection_does_not_exist",
    "08006": "connection_failure",
    "08001": "sqlclient_unable_to_establish_sqlconnection",
    "08004": "sqlserver_rejected_establishment_of_sqlconnection",
    "23000": "integrity_constraint_violation",
    "23502": "not_null_violation",
    "23503": "foreign_key_violation",
    "23505": "unique_violation",
    "23514": "check_violation",
    "25006": "read_only_sql_transaction",
    "40001": "serialization_failure",
    "40P01": "deadlock_detected",
    "57014": "query_canceled",
    "57P01": "admin_shutdown",
    "57P03": "cannot_connect_now",
    "42P01": "undefined_table",
    "42703": "undefined_column",
    "42883": "undefined_function",
}

_RETRYABLE_SQLSTATES = frozenset({"40001", "40P01", "57014", "57P03"})


def map_postgres_error(error: asyncpg.PostgresError) -> DatabaseError:
    """Translate a PostgreSQL error into a ``DatabaseError`` with SQLSTATE context."""
    raw_sqlstate = getattr(error, "sqlstate", None)
    sqlstate: str | None = str(raw_sqlstate) if raw_sqlstate is not None else None
    message = str(error)

    context: dict[str, Any] = {
        "sqlstate": sqlstate,
        "error_type": POSTGRES_ERROR_CODES.get(sqlstate or "", "unknown_postgres_error"),
        "original_message": message,
    }
    for attr in ("table_name", "schema_name", "constraint_name", "column_name", "detail"):
        value = getattr(error, attr, None)
        if value:
            context[attr] = value

    if sqlstate in _RETRYABLE_SQLSTATES:
        context["retry_possible"] = True
    elif sqlstate is not None and sqlstate.startswith("08"):
        context["connection_error"] = True

    return DatabaseError(message=message, context=context, cause=error)


def map_connection_pool_error(error: BaseException) -> SystemError:
    context: dict[str, Any] = {
        "error_type": type(error).__name__,
        "original_message": str(error),
        "pool_error": True,
    }
    if isinstance(error, asyncpg.TooManyConnectionsError):
        context["too_many_connections"] = True
        context["retry_possible"] = True
    elif isinstance(error, asyncpg.InterfaceError):
        context["interface_error"] = True

    return SystemError(
        message=f"Connection pool error: {error}",
        context=context,
        cause=error,
    )


def map_asyncpg_error(error: BaseException) -> DatabaseError | SystemError:
    """Main entry point: convert any store exception to an infrastructure error."""
    if isinstance(error, asyncpg.TooManyConnectionsError):
        return map_connection_pool_error(error)
    if isinstance(error, asyncpg.PostgresError):
        return map_postgres_error(error)
    if isinstance(error, asyncpg.InterfaceError):
        return SystemError(
            message=f"Database interface error: {error}",
            context={"interface_error": True, "original_error": str(error)},
            cause=error,
        )
    if isinstance(error, TimeoutError):
        return SystemError(
            message=f"Database operation timed out: {error}",
            context={"timeout": True, "retry_possible": True, "original_error": str(error)},
            cause=error,
        )
    if isinstance(error, OSError):
        return SystemError(
            message=f"Database unavailable: {error}",
            context={"connection_error": True, "original_error": str(error)},
            cause=error,
        )
    if isinstance(error, PoolError):
        return map_connection_pool_error(error)
    return SystemError(
        message=f"Database error: {error}",
        context={"generic_db_error": True, "original_error": str(error)},
        cause=error,
    )


def is_store_failure(error: BaseException) -> bool:
    """True for exceptions that originate from the database driver or socket."""
    if isinstance(error, Error):
        return False
    return isinstance(
        error,
        (asyncpg.PostgresError, asyncpg.InterfaceError, PoolError, TimeoutError, OSError),
    )


def is_retryable_error(error: DatabaseError | SystemError) -> bool:
    sqlstate = error.context.get("sqlstate")
    if sqlstate in _RETRYABLE_SQLSTATES:
        return True
    return bool(error.context.get("retry_possible") or error.context.get("too_many_connections"))


__all__ = [
    "POSTGRES_ERROR_CODES",
    "PoolError",
    "is_retryable_error",
    "is_store_failure",
    "map_asyncpg_error",
    "map_connection_pool_error",
    "map_postgres_error",
]

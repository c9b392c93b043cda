"""
Exception classes for magicsql.

Operations never raise these for expected failures; they are latched onto the
owning Operation and reported through its `err` property.
"""
import sqlite3

import psycopg
import sqlalchemy.exc


class DatabaseError(Exception):
    """Base class for all magicsql errors.
    """


class ConfigurationError(DatabaseError):
    """Error in how tables, records or transactions were set up.
    """


class TableNotRegisteredError(ConfigurationError):
    """A table name or record type was used without being registered.
    """


class NoPrimaryKeyError(ConfigurationError):
    """A primary-key-dependent operation was requested on a mapping without one.
    """


class NestedTransactionError(ConfigurationError):
    """A transaction was started while another one was still active.
    """


class ScanError(DatabaseError):
    """Row values could not be delivered to the scan destinations.
    """


class NoLastInsertIdError(DatabaseError):
    """The driver reported no generated id for the statement.
    """


DatabaseErrors = (
    sqlalchemy.exc.SQLAlchemyError,
    sqlite3.Error,
    psycopg.Error,
    DatabaseError,
    )

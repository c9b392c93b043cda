"""
Database connection handling with SQLAlchemy.

This module provides:
1. The `connect()` and `wrap()` functions returning a table-registering `DB`
2. The `ConnectionWrapper` class, the executor every Operation runs statements
   through: `query()`, `execute()`, `prepare()` and `begin()`
3. Engine creation and management through a thread-safe registry

Outside an explicit transaction every statement executed through the wrapper
is committed immediately.
"""
import atexit
import datetime
import logging
import sqlite3
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Self

import dateutil.parser
import numpy as np
import sqlalchemy as sa
from sqlalchemy.engine import Engine
from sqlalchemy.pool import NullPool

from magicsql.cursor import dumpsql
from magicsql.exceptions import DatabaseErrors
from magicsql.options import DatabaseOptions
from magicsql.sql import standardize_placeholders
from magicsql.transaction import Transaction

if TYPE_CHECKING:
    from magicsql.db import DB

__all__ = [
    'ConnectionWrapper',
    'ExecResult',
    'PreparedStatement',
    'connect',
    'wrap',
    'configure_connection',
    'create_url_from_options',
    'get_engine_for_options',
    'dispose_all_engines',
]

logger = logging.getLogger(__name__)

_engine_registry: dict[str, Engine] = {}
_engine_registry_lock = threading.RLock()


@dataclass(frozen=True, slots=True)
class ExecResult:
    """Row count and generated id captured right after a statement runs."""
    rowcount: int
    lastrowid: int | None


def convert_param(value: Any) -> Any:
    """Convert NumPy scalars to the Python values DBAPI drivers understand.
    """
    if isinstance(value, np.generic):
        return value.item()
    return value


def convert_date(val: bytes) -> datetime.date:
    """Convert ISO 8601 date string to date object."""
    return dateutil.parser.isoparse(val.decode()).date()


def convert_datetime(val: bytes) -> datetime.datetime:
    """Convert ISO 8601 datetime string to datetime object."""
    return dateutil.parser.isoparse(val.decode())


def adapt_datetime(val: datetime.datetime) -> str:
    """Store datetimes as ISO 8601 text."""
    return val.isoformat(' ')


def adapt_date(val: datetime.date) -> str:
    """Store dates as ISO 8601 text."""
    return val.isoformat()


def create_url_from_options(options: DatabaseOptions,
                            url_creator: Callable[..., sa.URL] = sa.URL.create) -> sa.URL:
    """Convert DatabaseOptions to SQLAlchemy URL.
    """
    if options.drivername == 'sqlite':
        return url_creator(
            drivername='sqlite',
            database=options.database
        )

    elif options.drivername == 'postgresql':
        query = {}
        if options.timeout:
            query['connect_timeout'] = str(options.timeout)

        return url_creator(
            drivername='postgresql+psycopg',
            username=options.username,
            password=options.password,
            host=options.hostname,
            port=options.port or None,
            database=options.database,
            query=query
        )

    raise ValueError(f'Unsupported database type: {options.drivername}')


def get_engine_for_options(options: DatabaseOptions,
                           engine_factory: Callable[..., Engine] = sa.create_engine,
                           **kwargs: Any) -> Engine:
    """Get or create a SQLAlchemy engine for the given options.
    """
    key = options.model_dump_json()

    with _engine_registry_lock:
        if key in _engine_registry:
            logger.debug(f'Using existing engine for {options.drivername}')
            return _engine_registry[key]

        url = create_url_from_options(options)

        engine_kwargs: dict[str, Any] = {'echo': False}

        if options.drivername == 'sqlite':
            engine_kwargs['connect_args'] = {
                'detect_types': sqlite3.PARSE_DECLTYPES | sqlite3.PARSE_COLNAMES
            }
            if not options.use_pool:
                engine_kwargs['poolclass'] = NullPool
        elif not options.use_pool:
            engine_kwargs['poolclass'] = NullPool
        else:
            engine_kwargs['pool_size'] = options.pool_max_connections
            engine_kwargs['pool_recycle'] = options.pool_max_idle_time
            engine_kwargs['pool_timeout'] = options.pool_wait_timeout
            engine_kwargs['max_overflow'] = 10
            engine_kwargs['pool_pre_ping'] = True
            engine_kwargs['pool_reset_on_return'] = 'rollback'

        engine_kwargs.update(kwargs)

        engine = engine_factory(url, **engine_kwargs)

        _engine_registry[key] = engine
        logger.debug(f'Created new engine for {options.drivername}')

        return engine


def dispose_all_engines() -> None:
    """Dispose all engines in the registry.
    """
    with _engine_registry_lock:
        for engine in _engine_registry.values():
            engine.dispose()
        _engine_registry.clear()
        logger.debug('All database engines disposed')


atexit.register(dispose_all_engines)


class PreparedStatement:
    """A statement bound to a connection, executed with fresh arguments each time.

    DBAPI drivers cache prepared statements themselves, so preparing only
    checks that the connection is usable.
    """

    def __init__(self, cn: 'ConnectionWrapper', sql: str) -> None:
        self.cn = cn
        self.sql = sql
        self.closed = False

    def _check_open(self) -> None:
        if self.closed:
            raise sa.exc.ResourceClosedError('This prepared statement is closed.')

    def execute(self, args: tuple = ()) -> ExecResult:
        self._check_open()
        return self.cn.execute(self.sql, args)

    def query(self, args: tuple = ()) -> Any:
        self._check_open()
        return self.cn.query(self.sql, args)

    def close(self) -> None:
        self.closed = True


class ConnectionWrapper:
    """Wraps a SQLAlchemy connection object to track calls and execution time

    This class provides the executor used by Operations:
    1. query/execute/prepare with `?` placeholders on any dialect
    2. begin() for explicit transactions; otherwise statements autocommit
    3. Query counts and timing, logged on close
    4. Context manager protocol for explicit resource management
    """

    def __init__(self, sa_connection: sa.engine.Connection,
                 options: DatabaseOptions | None = None) -> None:
        self.sa_connection = sa_connection
        self.engine = sa_connection.engine
        self.options = options
        self.dialect = sa_connection.dialect.name
        self.calls = 0
        self.time = 0.0
        self.in_transaction = False

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None,
                 exc_tb: Any | None) -> None:
        self.close()

    def addcall(self, elapsed: float) -> None:
        """Track execution statistics
        """
        self.time += elapsed
        self.calls += 1

    @property
    def closed(self) -> bool:
        return self.sa_connection.closed

    def _run(self, sql: str, args: tuple) -> sa.engine.CursorResult:
        sql = standardize_placeholders(sql, self.dialect)
        params = tuple(convert_param(arg) for arg in args) if args else None
        return self.sa_connection.exec_driver_sql(sql, params)

    def _rollback_failed_statement(self) -> None:
        """Discard the implicit transaction a failed statement left behind.
        """
        if self.in_transaction or self.closed:
            return
        try:
            self.sa_connection.rollback()
        except DatabaseErrors as err:
            logger.warning(f'Rollback after failed statement also failed: {err}')

    @dumpsql
    def query(self, sql: str, args: tuple = ()) -> sa.engine.CursorResult:
        """Run a row-returning statement and return its open cursor result.
        """
        try:
            return self._run(sql, args)
        except DatabaseErrors:
            self._rollback_failed_statement()
            raise

    @dumpsql
    def execute(self, sql: str, args: tuple = (), returning: bool = False) -> ExecResult:
        """Run a statement and return its row count and generated id.

        With `returning`, the generated id is the first column of the row the
        statement returns (`INSERT ... RETURNING`) rather than the driver's
        `lastrowid`.
        """
        try:
            result = self._run(sql, args)
            if returning:
                row = result.fetchone()
                captured = ExecResult(result.rowcount, row[0] if row is not None else None)
            else:
                captured = ExecResult(result.rowcount, result.lastrowid)
            result.close()
            if not self.in_transaction:
                self.commit()
            return captured
        except DatabaseErrors:
            self._rollback_failed_statement()
            raise

    def prepare(self, sql: str) -> PreparedStatement:
        """Return a reusable statement bound to this connection.
        """
        if self.closed:
            raise sa.exc.ResourceClosedError('This Connection is closed')
        logger.debug(f'Prepared statement:\n{sql}')
        return PreparedStatement(self, sql)

    def begin(self) -> Transaction:
        """Start an explicit transaction.  Statements no longer autocommit until it ends.
        """
        if self.sa_connection.in_transaction():
            self.sa_connection.commit()
        transaction = Transaction(self, self.sa_connection.begin())
        self.in_transaction = True
        logger.debug(f'Started transaction for connection {id(self)}')
        return transaction

    def commit(self) -> None:
        """Explicit commit that works regardless of transaction state
        """
        self.sa_connection.commit()

    def close(self) -> None:
        """Close the SQLAlchemy connection, committing first if needed
        """
        if self.closed:
            return
        if not self.in_transaction:
            self.commit()
        self.sa_connection.close()
        logger.debug(f'Connection closed: {self.calls} queries in {self.time:.2f}s (avg: {self.time/max(1,self.calls):.3f}s per query)')


def configure_connection(sa_connection: sa.engine.Connection) -> None:
    """Configure a SQLAlchemy connection with database-specific settings.
    """
    if sa_connection.dialect.name == 'sqlite':
        sqlite3.register_adapter(datetime.datetime, adapt_datetime)
        sqlite3.register_adapter(datetime.date, adapt_date)
        sqlite3.register_converter('date', convert_date)
        sqlite3.register_converter('datetime', convert_datetime)
        sqlite3.register_converter('timestamp', convert_datetime)


def wrap(sa_connection: sa.engine.Connection,
         options: DatabaseOptions | None = None) -> 'DB':
    """Create a DB from an existing SQLAlchemy connection.
    """
    from magicsql.db import DB

    configure_connection(sa_connection)
    return DB(ConnectionWrapper(sa_connection, options))


def connect(options: DatabaseOptions | dict[str, Any] | str | None = None,
            **kw: Any) -> 'DB':
    """Connect to a database using SQLAlchemy for connection management

    Args:
        options: Can be:
                - DatabaseOptions object
                - Dictionary of options
                - SQLAlchemy URL string, e.g. 'sqlite:///app.db'
                - None, reading options from MAGICSQL_* environment variables
        **kw: Additional keyword arguments to override options

    Returns
        DB registry bound to one open connection
    """
    if isinstance(options, DatabaseOptions):
        if kw:
            options = options.model_copy(update=kw)
    elif isinstance(options, str):
        options = DatabaseOptions.from_url(options, **kw)
    else:
        options = DatabaseOptions(**{**(options or {}), **kw})

    engine = get_engine_for_options(options)
    sa_connection = engine.connect()
    return wrap(sa_connection, options)

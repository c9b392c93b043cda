"""
Deferred-error database operations.

An Operation is a short-lived, single-purpose combination of database calls.
The first failure is stored on it, and every child it hands out (rows,
results, statements, transactions, select scopes) refuses to do any more work
from then on.  A chain of related calls can therefore run unchecked, with one
look at `op.err` at the end:

    op = db.operation()
    op.begin_transaction()
    op.save(foo)
    op.exec('UPDATE counters SET n = n + 1 WHERE name = ?', 'foos')
    op.end_transaction()
    if op.err is not None:
        ...

An Operation is not safe for concurrent use: the latch has no locking, and an
error from one caller would silently stop another.
"""
import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from magicsql.cursor import Result, Rows, Stmt
from magicsql.exceptions import ConfigurationError, DatabaseErrors
from magicsql.exceptions import NestedTransactionError
from magicsql.exceptions import NoPrimaryKeyError, TableNotRegisteredError
from magicsql.nullable import NullableField
from magicsql.select import Select
from magicsql.table import ConfigTags, MagicTable
from magicsql.transaction import Transaction, Tx

if TYPE_CHECKING:
    from magicsql.db import DB

logger = logging.getLogger(__name__)

__all__ = ['Operation', 'OperationTable']


class Operation:
    """Executes statements for one logical task, latching the first error.

    Calls go straight to the connection until `begin_transaction()`; from then
    until the transaction ends they are routed through it.  Only one
    transaction at a time is supported.
    """

    def __init__(self, db: 'DB | None' = None) -> None:
        self.parent = db
        self._err: BaseException | None = None
        self.tx: Transaction | None = None
        self.q = db.connection if db is not None else None

    def __repr__(self) -> str:
        return f'Operation(err={self._err!r}, in_transaction={self.tx is not None})'

    @property
    def err(self) -> BaseException | None:
        """The *first* error which occurred on any call owned by the Operation.
        """
        return self._err

    def set_err(self, err: BaseException | None) -> None:
        """Stop handling any more queries if `err` is an error.

        Usually called internally, but useful to force a rollback or to feed an
        application-level failure into the chain.  Ignored when an error is
        already stored.
        """
        if err is None or self._err is not None:
            return
        logger.debug(f'Operation latched error: {err!r}')
        self._err = err

    def reset(self) -> None:
        """Clear the stored error, if any.
        """
        self._err = None

    def guard(self, func: Callable[..., Any], *args: Any) -> Any:
        """Call `func`, latching a database error instead of raising it.

        Returns None when the call failed.
        """
        try:
            return func(*args)
        except DatabaseErrors as err:
            self.set_err(err)
            return None

    @property
    def dialect(self) -> str:
        """SQL dialect of the database, `sqlite` when there is none.
        """
        return self.parent.connection.dialect if self.parent is not None else 'sqlite'

    def _ready(self) -> bool:
        """Check that calls may reach the database, latching when there is none.
        """
        if self._err is None and self.parent is None:
            self.set_err(ConfigurationError('operation is not attached to a database'))
        return self._err is None

    def query(self, sql: str, *args: Any) -> Rows:
        """Run a row-returning statement, returning wrapped Rows.
        """
        if not self._ready():
            return Rows(None, self)
        return Rows(self.guard(self.q.query, sql, args), self)

    def exec(self, sql: str, *args: Any) -> Result:
        """Run a statement, returning a wrapped Result.
        """
        return self._exec(sql, args)

    def _exec(self, sql: str, args: tuple | list, returning: bool = False) -> Result:
        if not self._ready():
            return Result(None, self)
        return Result(self.guard(self.q.execute, sql, tuple(args), returning), self)

    def prepare(self, sql: str) -> Stmt:
        """Prepare a statement for repeated use, returning a wrapped Stmt.
        """
        if not self._ready():
            return Stmt(None, self)
        return Stmt(self.guard(self.q.prepare, sql), self)

    def begin_transaction(self) -> Tx:
        """Start a transaction and route all further calls through it.

        Instead of committing or rolling back by hand, call
        `end_transaction()` (or `Tx.done()`) and the error state decides.
        To force a rollback, set an error with `set_err()` first, or call
        `rollback()`.  Starting a transaction while one is running stores a
        NestedTransactionError and leaves the running one alone.
        """
        if not self._ready():
            return Tx(None, self)

        if self.tx is not None:
            self.set_err(NestedTransactionError('cannot nest transactions'))
            return Tx(None, self)

        tx = self.guard(self.parent.connection.begin)
        if tx is not None:
            self.tx = tx
            self.q = tx
        return Tx(tx, self)

    def _detach_transaction(self) -> Transaction | None:
        tx = self.tx
        self.tx = None
        self.q = self.parent.connection if self.parent is not None else None
        return tx

    def rollback(self) -> None:
        """Roll back the running transaction even if there is no error.
        """
        tx = self._detach_transaction()
        if tx is None:
            return
        self.guard(tx.rollback)

    def end_transaction(self) -> None:
        """Commit the running transaction, or roll back if an error is stored.

        A failed commit is stored like any other error.  Does nothing when no
        transaction was started.
        """
        tx = self._detach_transaction()
        if tx is None:
            return

        if self._err is not None:
            self.guard(tx.rollback)
        else:
            self.guard(tx.commit)

    @contextmanager
    def transaction(self) -> Iterator[Tx]:
        """Context manager running its block in a transaction.

        The transaction ends normally (commit unless an error was stored) when
        the block finishes, and is rolled back if the block raises.

        Examples
            with op.transaction():
                op.save(foo)
                op.save(bar)
        """
        tx = self.begin_transaction()
        try:
            yield tx
        except BaseException:
            if tx.active:
                self.rollback()
            raise
        tx.done()

    def table(self, table_name: str, obj: Any) -> 'OperationTable':
        """Tie a table name to `obj`'s type for this operation only.
        """
        return OperationTable(self, MagicTable(table_name, obj))

    def operation_table(self, mt: MagicTable) -> 'OperationTable':
        """Tie an existing MagicTable to this operation.
        """
        return OperationTable(self, mt)

    def save(self, obj: Any, table: str | None = None) -> Result:
        """INSERT or UPDATE `obj` depending on whether its primary key is zero.

        Without `table`, the mapping registered for `obj`'s type is used;
        with it, `obj`'s own tags are read for this call.
        """
        if self._err is not None:
            return Result(None, self)

        if table is not None:
            return self.table(table, obj).save(obj)

        mt = self.parent.find_table_by_type(type(obj)) if self.parent is not None else None
        if mt is None:
            self.set_err(TableNotRegisteredError(f'table for type {type(obj).__name__} not registered'))
            return Result(None, self)
        return OperationTable(self, mt).save(obj)

    def select(self, table_name: str, obj: Any) -> Select:
        """Start a SELECT scope for an ad-hoc table/type pairing.
        """
        return self.table(table_name, obj).select()

    def from_(self, table_name: str) -> Select:
        """Start a SELECT scope for a registered table.

            op.from_('people').where('city = ?', city).all_objects()
            rows = op.from_('people').limit(10).query()
        """
        empty = Select(OperationTable(self, None))
        if self._err is not None:
            return empty

        mt = self.parent.find_table_by_name(table_name) if self.parent is not None else None
        if mt is None:
            self.set_err(TableNotRegisteredError(f'table {table_name} not registered'))
            return empty
        return OperationTable(self, mt).select()


class OperationTable:
    """A MagicTable tied to an in-progress Operation.
    """

    def __init__(self, op: Operation, table: MagicTable | None) -> None:
        self.op = op
        self.table = table

    def reconfigure(self, conf: ConfigTags) -> None:
        """Replace the table's tag-derived bindings with explicit ConfigTags.
        """
        self.table.configure(conf)

    def select(self) -> Select:
        return Select(self)

    def save(self, obj: Any) -> Result:
        """INSERT `obj` when its primary key is zero, UPDATE it otherwise.

        After an INSERT the generated id is written back into the primary key.
        On postgres the id comes from `INSERT ... RETURNING`; elsewhere from the
        driver's last insert id, and a driver without one stores an error.
        """
        if self.op.err is not None:
            return Result(None, self.op)

        pk = self.table.primary_key
        if pk is None:
            self.op.set_err(NoPrimaryKeyError(f'no primary key tagged for {self.table.rtype.__name__}'))
            return Result(None, self.op)

        if self.table.is_new(obj):
            returning = self.op.dialect == 'postgresql'
            res = self.op._exec(self.table.insert_sql(returning), self.table.insert_args(obj), returning)
            key = res.last_insert_id()
            if self.op.err is None:
                NullableField(obj, pk.attr, pk.kind).scan(key)
            return res

        return self.op.exec(self.table.update_sql(), *self.table.update_args(obj))

    def insert(self, obj: Any) -> Result:
        """Force an INSERT regardless of the primary key value.

        The generated id is *not* written back.
        """
        return self.op.exec(self.table.insert_sql(), *self.table.insert_args(obj))

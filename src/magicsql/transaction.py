"""
Transaction handling.

`Transaction` is the executor-level handle returned by
`ConnectionWrapper.begin()`.  `Tx` is what an Operation hands to callers: it
shares the Operation's error latch and ends by committing or rolling back
depending on that latch.
"""
import logging
from typing import TYPE_CHECKING, Any

from magicsql.cursor import Result, Rows, Stmt
from magicsql.exceptions import DatabaseErrors

if TYPE_CHECKING:
    import sqlalchemy as sa
    from magicsql.connection import ConnectionWrapper, ExecResult
    from magicsql.connection import PreparedStatement
    from magicsql.operation import Operation

logger = logging.getLogger(__name__)

__all__ = ['Transaction', 'Tx']


class Transaction:
    """An explicit transaction on a wrapped connection.

    Statements run through it are not committed until `commit()`.
    """

    def __init__(self, cn: 'ConnectionWrapper', sa_transaction: 'sa.engine.RootTransaction') -> None:
        self.cn = cn
        self.sa_transaction = sa_transaction

    @property
    def is_active(self) -> bool:
        return self.sa_transaction.is_active

    def query(self, sql: str, args: tuple = ()) -> Any:
        return self.cn.query(sql, args)

    def execute(self, sql: str, args: tuple = (), returning: bool = False) -> 'ExecResult':
        return self.cn.execute(sql, args, returning)

    def prepare(self, sql: str) -> 'PreparedStatement':
        return self.cn.prepare(sql)

    def commit(self) -> None:
        """Commit, or roll back and re-raise when the commit itself fails.

        Either way the transaction is finished and the connection is usable
        again afterwards.
        """
        try:
            self.sa_transaction.commit()
            logger.debug(f'Committed transaction for connection {id(self.cn)}')
        except DatabaseErrors as err:
            logger.warning(f'Commit failed, rolling back: {err}')
            self._discard()
            raise
        finally:
            self.cn.in_transaction = False

    def rollback(self) -> None:
        try:
            self.sa_transaction.rollback()
            logger.warning('Rolling back the current transaction')
        finally:
            self.cn.in_transaction = False

    def _discard(self) -> None:
        """Clear a transaction whose commit failed.

        SQLAlchemy marks it inactive without rolling back the driver
        connection, and SQLite keeps the failed transaction open.
        """
        try:
            self.sa_transaction.rollback()
            self.cn.sa_connection.begin().rollback()
        except DatabaseErrors as err:
            logger.warning(f'Rollback after failed commit also failed: {err}')


class Tx:
    """Light wrapper for the Operation's active transaction.

    Examples
        tx = op.begin_transaction()
        tx.exec('delete from ...', *args)
        tx.exec('update ...', *args)
        tx.done()
    """

    def __init__(self, tx: Transaction | None, op: 'Operation') -> None:
        self.tx = tx
        self.op = op

    @property
    def err(self) -> BaseException | None:
        """First error encountered by the owning Operation.
        """
        return self.op.err

    @property
    def active(self) -> bool:
        """True while this is still the Operation's running transaction.
        """
        return self.tx is not None and self.op.tx is self.tx

    def exec(self, sql: str, *args: Any) -> Result:
        if self.op.err is not None or not self.active:
            return Result(None, self.op)
        return Result(self.op.guard(self.tx.execute, sql, args), self.op)

    def query(self, sql: str, *args: Any) -> Rows:
        if self.op.err is not None or not self.active:
            return Rows(None, self.op)
        return Rows(self.op.guard(self.tx.query, sql, args), self.op)

    def prepare(self, sql: str) -> Stmt:
        if self.op.err is not None or not self.active:
            return Stmt(None, self.op)
        return Stmt(self.op.guard(self.tx.prepare, sql), self.op)

    def done(self) -> None:
        """Commit if no error occurred, otherwise roll back.
        """
        if not self.active:
            return
        self.op.end_transaction()

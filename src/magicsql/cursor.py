"""
Error-latching wrappers for query results, exec results and prepared statements.

Every wrapper shares its parent Operation's error latch.  Once that latch holds
an error, each method returns a zero value without touching the database, so a
chain of dependent calls can run to the end and be checked once.
"""
import logging
import time
from collections.abc import Callable, Iterator
from functools import wraps
from typing import TYPE_CHECKING, Any, Protocol, Self

from magicsql.exceptions import NoLastInsertIdError, ScanError

if TYPE_CHECKING:
    from magicsql.connection import ExecResult, PreparedStatement
    from magicsql.operation import Operation

logger = logging.getLogger(__name__)

__all__ = [
    'Scanner',
    'Rows',
    'Result',
    'Stmt',
    'dumpsql',
]


def dumpsql(func: Callable[..., Any]) -> Callable[..., Any]:
    """Decorator for logging SQL statements, their arguments and timing.
    """
    @wraps(func)
    def wrapper(self, sql: str, args: tuple = (), *rest: Any, **kwargs: Any) -> Any:
        start = time.time()
        logger.debug(f'SQL:\n{sql}\nargs: {args}')
        try:
            return func(self, sql, args, *rest, **kwargs)
        except Exception:
            logger.error(f'Error with query:\nSQL:\n{sql}\nargs: {args}')
            raise
        finally:
            elapsed = time.time() - start
            self.addcall(elapsed)
            logger.debug(f'Query time: {elapsed:.4f}s')
    return wrapper


class Scanner(Protocol):
    """Anything that can receive one column value from a row.
    """

    def scan(self, src: Any) -> None: ...


class Rows:
    """Light wrapper for a query's result cursor.

    Iterating yields the Rows object itself once per row, ready for `scan()`
    or `values()`.
    """

    def __init__(self, result: Any, op: 'Operation') -> None:
        self.result = result
        self.op = op
        self.row: tuple | None = None

    def __iter__(self) -> Iterator[Self]:
        while self.next():
            yield self

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None,
                 exc_tb: Any | None) -> None:
        self.close()

    @property
    def err(self) -> BaseException | None:
        """First error encountered by the owning Operation.
        """
        return self.op.err

    def _dead(self) -> bool:
        return self.op.err is not None or self.result is None

    def next(self) -> bool:
        """Advance to the next row.  Returns False at the end or once latched.
        """
        if self._dead():
            return False

        row = self.op.guard(self.result.fetchone)
        self.row = tuple(row) if row is not None else None
        return self.row is not None

    def values(self) -> tuple | None:
        """Return the current row's raw values, or None when there is none.
        """
        if self._dead():
            return None
        return self.row

    def columns(self) -> list[str] | None:
        """Return the result's column names, or None once latched.
        """
        if self._dead():
            return None
        return self.op.guard(lambda: list(self.result.keys()))

    def scan(self, *dest: Scanner) -> None:
        """Deliver the current row's values to `dest`, one target per column.
        """
        if self._dead():
            return

        if self.row is None:
            self.op.set_err(ScanError('scan called without a current row'))
            return
        if len(dest) != len(self.row):
            self.op.set_err(ScanError(
                f'expected {len(self.row)} destination arguments in scan, not {len(dest)}'))
            return

        for target, value in zip(dest, self.row):
            target.scan(value)

    def close(self) -> None:
        if self._dead():
            return
        self.op.guard(self.result.close)


class Result:
    """Wrapper for the outcome of an INSERT, UPDATE or other statement.
    """

    def __init__(self, result: 'ExecResult | None', op: 'Operation') -> None:
        self.result = result
        self.op = op

    @property
    def err(self) -> BaseException | None:
        return self.op.err

    def last_insert_id(self) -> int:
        """Return the id generated by the statement, or 0 once latched.

        A driver that reports no id stores a NoLastInsertIdError.
        """
        if self.op.err is not None or self.result is None:
            return 0
        if self.result.lastrowid is None:
            self.op.set_err(NoLastInsertIdError('last insert id is not available for this statement'))
            return 0
        return self.result.lastrowid

    def rows_affected(self) -> int:
        """Return the number of rows the statement touched, or 0 once latched.
        """
        if self.op.err is not None or self.result is None:
            return 0
        return self.result.rowcount


class Stmt:
    """Light wrapper for a prepared statement.
    """

    def __init__(self, stmt: 'PreparedStatement | None', op: 'Operation') -> None:
        self.stmt = stmt
        self.op = op

    @property
    def err(self) -> BaseException | None:
        return self.op.err

    def _dead(self) -> bool:
        return self.op.err is not None or self.stmt is None

    def exec(self, *args: Any) -> Result:
        if self._dead():
            return Result(None, self.op)
        return Result(self.op.guard(self.stmt.execute, args), self.op)

    def query(self, *args: Any) -> Rows:
        if self._dead():
            return Rows(None, self.op)
        return Rows(self.op.guard(self.stmt.query, args), self.op)

    def close(self) -> None:
        if self._dead():
            return
        self.op.guard(self.stmt.close)

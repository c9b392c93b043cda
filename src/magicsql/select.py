"""
Immutable query scopes over a mapped table.

Every builder method returns a modified copy, so a partially configured scope
can be kept and reused:

    recent = op.from_('foos').order('two DESC')
    first_page = recent.limit(10).all_objects()
    second_page = recent.limit(10).offset(10).all_objects()
"""
import dataclasses
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import pandas as pd

from magicsql.cursor import Rows
from magicsql.nullable import NullableField
from magicsql.options import pandas_numpy_data_loader
from magicsql.sql import build_count_sql, build_select_sql

if TYPE_CHECKING:
    from magicsql.operation import OperationTable

logger = logging.getLogger(__name__)

__all__ = ['Select', 'Counter']


@dataclass
class Counter:
    """Receives the single column of a COUNT query."""
    row_count: int = 0


@dataclass(frozen=True)
class Select:
    """A SELECT statement under construction for one OperationTable.
    """
    ot: 'OperationTable'
    where_clause: str = ''
    where_args: tuple = ()
    order_clause: str = ''
    limit_value: int = 0
    offset_value: int = 0

    @property
    def _latched(self) -> bool:
        return self.ot.op.err is not None or self.ot.table is None

    def where(self, clause: str, *args: Any) -> 'Select':
        """Replace the WHERE clause and its arguments.
        """
        return dataclasses.replace(self, where_clause=clause, where_args=args)

    def order(self, clause: str) -> 'Select':
        return dataclasses.replace(self, order_clause=clause)

    def limit(self, n: int) -> 'Select':
        if n < 0:
            raise ValueError(f'limit must not be negative, got {n}')
        return dataclasses.replace(self, limit_value=n)

    def offset(self, n: int) -> 'Select':
        if n < 0:
            raise ValueError(f'offset must not be negative, got {n}')
        return dataclasses.replace(self, offset_value=n)

    def sql(self) -> str:
        """Render the SELECT statement for this scope.
        """
        if self.ot.table is None:
            return ''
        return build_select_sql(self.ot.table.name, self.ot.table.field_names(),
                                where=self.where_clause, order=self.order_clause,
                                limit=self.limit_value, offset=self.offset_value)

    def count_sql(self) -> str:
        """Render the COUNT statement for this scope.  Order, limit and offset do not apply.
        """
        if self.ot.table is None:
            return ''
        return build_count_sql(self.ot.table.name, where=self.where_clause)

    def query(self) -> Rows:
        """Run the scope's SELECT and return the raw rows.
        """
        if self._latched:
            return Rows(None, self.ot.op)
        return self.ot.op.query(self.sql(), *self.where_args)

    def first(self, dest: Any) -> bool:
        """Scan the first matching row into `dest`.

        Returns False, leaving `dest` untouched, when nothing matched or the
        operation is latched.
        """
        with self.query() as rows:
            if not rows.next():
                return False
            rows.scan(*self.ot.table.scan_struct(dest))
        return self.ot.op.err is None

    def all_objects(self, dest: list | None = None) -> list:
        """Return a fresh record for every matching row, in database order.

        Records are appended to `dest` when it is given.
        """
        records = dest if dest is not None else []
        with self.query() as rows:
            for row in rows:
                record = self.ot.table.new_record()
                row.scan(*self.ot.table.scan_struct(record))
                if self.ot.op.err is not None:
                    break
                records.append(record)
        return records

    def each_row(self, callback: Callable[[Rows], None]) -> None:
        """Call `callback` with the Rows positioned on each matching row.
        """
        with self.query() as rows:
            for row in rows:
                callback(row)

    def each_object(self, dest: Any, callback: Callable[[Any], None]) -> None:
        """Scan each matching row into the same `dest` and call `callback(dest)`.

        `dest` is overwritten on every row; copy it to keep a row around.
        """
        with self.query() as rows:
            for row in rows:
                row.scan(*self.ot.table.scan_struct(dest))
                if self.ot.op.err is not None:
                    return
                callback(dest)

    def count(self) -> int:
        """Return the number of rows matching the WHERE clause.
        """
        if self._latched:
            return 0
        counter = Counter()
        with self.ot.op.query(self.count_sql(), *self.where_args) as rows:
            if rows.next():
                rows.scan(NullableField(counter, 'row_count', int))
        return counter.row_count

    def frame(self) -> pd.DataFrame:
        """Return every matching row as a DataFrame with the mapped column names.
        """
        columns = self.ot.table.field_names() if self.ot.table is not None else []
        with self.query() as rows:
            data = [row.values() for row in rows]
        if self.ot.op.err is not None:
            data = []
        logger.debug(f'Loaded {len(data)} rows from {self.ot.table.name if self.ot.table else None}')
        return pandas_numpy_data_loader(data, columns)

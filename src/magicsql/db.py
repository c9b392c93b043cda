"""
Table registry bound to one database connection.
"""
import logging
import threading
from typing import Any, Self

from magicsql.connection import ConnectionWrapper
from magicsql.operation import Operation
from magicsql.table import MagicTable

logger = logging.getLogger(__name__)

__all__ = ['DB']


class DB:
    """Registry of table mappings sharing a connection.

    Register each record type once, then start an Operation per unit of work:

        db = connect('sqlite:///app.db')
        db.register_table('foos', Foo)
        op = db.operation()
        op.from_('foos').where('four > ?', 3).all_objects()
    """

    def __init__(self, connection: ConnectionWrapper) -> None:
        self.connection = connection
        self._lock = threading.RLock()
        self._by_name: dict[str, MagicTable] = {}
        self._by_type: dict[type, MagicTable] = {}

    def __repr__(self) -> str:
        return f'DB({self.connection.dialect}, tables={sorted(self._by_name)})'

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None,
                 exc_tb: Any | None) -> None:
        self.close()

    def register_table(self, table_name: str, generator: Any) -> MagicTable:
        """Tie `table_name` to a record type, replacing any earlier registration.

        `generator` is the dataclass, an instance of it, or a factory
        returning one.
        """
        mt = MagicTable(table_name, generator)
        with self._lock:
            previous = self._by_name.get(table_name)
            if previous is not None and self._by_type.get(previous.rtype) is previous:
                del self._by_type[previous.rtype]
            self._by_name[table_name] = mt
            self._by_type[mt.rtype] = mt
        logger.debug(f'Registered {mt!r}')
        return mt

    def find_table_by_name(self, table_name: str) -> MagicTable | None:
        with self._lock:
            return self._by_name.get(table_name)

    def find_table_by_type(self, rtype: type) -> MagicTable | None:
        with self._lock:
            return self._by_type.get(rtype)

    def operation(self) -> Operation:
        """Start a new Operation on this database.
        """
        return Operation(self)

    def data_source(self) -> ConnectionWrapper:
        """Return the wrapped connection statements run through.
        """
        return self.connection

    def close(self) -> None:
        self.connection.close()

"""
Record-to-table mapping with deferred error checking.

Register dataclass records against tables, then run chains of dependent
statements through an Operation and check its `err` once at the end:

    db = magicsql.connect('sqlite:///app.db')
    db.register_table('foos', Foo)
    op = db.operation()
    op.save(foo)
    foos = op.from_('foos').where('four > ?', 3).all_objects()
    if op.err is not None:
        ...
"""
__version__ = '0.1.0'

from magicsql.connection import ConnectionWrapper, connect, wrap
from magicsql.cursor import Result, Rows, Stmt
from magicsql.db import DB
from magicsql.exceptions import ConfigurationError, DatabaseError
from magicsql.exceptions import DatabaseErrors, NestedTransactionError
from magicsql.exceptions import NoLastInsertIdError, NoPrimaryKeyError
from magicsql.exceptions import ScanError
from magicsql.exceptions import TableNotRegisteredError
from magicsql.naming import to_underscore
from magicsql.nullable import NullableField
from magicsql.operation import Operation, OperationTable
from magicsql.options import DatabaseOptions
from magicsql.select import Counter, Select
from magicsql.table import ConfigTags, FieldBinding, MagicTable, column
from magicsql.transaction import Tx

__all__ = [
    'ConfigTags',
    'ConfigurationError',
    'ConnectionWrapper',
    'Counter',
    'DB',
    'DatabaseError',
    'DatabaseErrors',
    'DatabaseOptions',
    'FieldBinding',
    'MagicTable',
    'NestedTransactionError',
    'NoLastInsertIdError',
    'NoPrimaryKeyError',
    'NullableField',
    'Operation',
    'OperationTable',
    'Result',
    'Rows',
    'ScanError',
    'Select',
    'Stmt',
    'TableNotRegisteredError',
    'Tx',
    'column',
    'connect',
    'to_underscore',
    'wrap',
]

"""
Unit tests for first-error latching on Operations and their children.
"""
import sqlite3

import pytest
from magicsql import ConfigurationError, NestedTransactionError
from magicsql import NoPrimaryKeyError, Operation, ScanError
from magicsql import TableNotRegisteredError
from magicsql.exceptions import NoLastInsertIdError

from tests.fixtures.records import Foo, Note


def test_first_error_wins():
    """Test a second error never replaces the first"""
    op = Operation()
    first = RuntimeError('first')
    op.set_err(first)
    op.set_err(RuntimeError('second'))
    assert op.err is first


def test_set_err_none_is_ignored():
    """Test setting None leaves the operation clear"""
    op = Operation()
    op.set_err(None)
    assert op.err is None


def test_reset_clears_error():
    """Test reset clears a stored error"""
    op = Operation()
    op.set_err(RuntimeError('boom'))
    op.reset()
    assert op.err is None


def test_latched_operation_returns_zero_wrappers():
    """Test every child of a latched operation is a no-op reporting the error"""
    op = Operation()
    err = RuntimeError('boom')
    op.set_err(err)

    rows = op.query('SELECT 1')
    assert rows.next() is False
    assert rows.values() is None
    assert rows.columns() is None
    assert rows.err is err
    rows.close()

    res = op.exec('DELETE FROM foos')
    assert res.last_insert_id() == 0
    assert res.rows_affected() == 0
    assert res.err is err

    stmt = op.prepare('SELECT 1')
    assert stmt.exec(1).rows_affected() == 0
    assert stmt.query(1).next() is False
    stmt.close()

    tx = op.begin_transaction()
    assert not tx.active
    assert tx.exec('DELETE FROM foos').rows_affected() == 0
    tx.done()
    assert op.err is err


@pytest.mark.parametrize('call', [
    lambda op: op.query('SELECT 1'),
    lambda op: op.exec('DELETE FROM foos'),
    lambda op: op.prepare('SELECT 1'),
    lambda op: op.begin_transaction(),
])
def test_operation_without_database_latches(call):
    """Test calls on an operation with no database store a ConfigurationError"""
    op = Operation()
    call(op)
    assert isinstance(op.err, ConfigurationError)
    assert str(op.err) == 'operation is not attached to a database'
    assert op.tx is None


def test_driver_errors_are_latched(mock_db):
    """Test a driver error is stored and later statements are skipped"""
    db = mock_db(fail_on='DELETE')
    op = db.operation()

    res = op.exec('DELETE FROM foos')
    assert isinstance(op.err, sqlite3.OperationalError)
    assert res.rows_affected() == 0

    op.exec('INSERT INTO foos (one) VALUES (?)', 'x')
    assert db.connection.statements == ['DELETE FROM foos']


def test_non_database_errors_propagate():
    """Test programming errors are raised, not stored"""
    op = Operation()

    def broken():
        raise KeyError('not a database problem')

    with pytest.raises(KeyError):
        op.guard(broken)
    assert op.err is None


def test_exec_result_values(mock_db):
    """Test the result reports the executor's id and row count"""
    db = mock_db(lastrowid=7)
    res = db.operation().exec('INSERT INTO notes (body) VALUES (?)', 'x')
    assert res.last_insert_id() == 7
    assert res.rows_affected() == 1


def test_missing_last_insert_id_latches(mock_db):
    """Test a driver reporting no generated id stores an error"""
    op = mock_db(lastrowid=None).operation()
    res = op.exec('INSERT INTO notes (body) VALUES (?)', 'x')
    assert res.last_insert_id() == 0
    assert isinstance(op.err, NoLastInsertIdError)


def test_rows_iterate_and_scan(mock_db):
    """Test iterating rows positions on each row in turn"""
    db = mock_db(rows=[(1, 'a'), (2, 'b')])
    op = db.operation()
    seen = []

    with op.query('SELECT author, body FROM notes') as rows:
        assert rows.columns() == ['c1', 'c2']
        for row in rows:
            seen.append(row.values())

    assert seen == [(1, 'a'), (2, 'b')]
    assert op.err is None


def test_scan_count_mismatch_latches(mock_db):
    """Test scanning into the wrong number of targets stores a ScanError"""
    db = mock_db(rows=[(1, 'a')])
    op = db.operation()
    rows = op.query('SELECT a, b FROM t')
    assert rows.next()
    rows.scan(op)
    assert isinstance(op.err, ScanError)
    assert 'expected 2 destination arguments' in str(op.err)


def test_scan_without_row_latches(mock_db):
    """Test scanning before next() stores a ScanError"""
    op = mock_db().operation()
    op.query('SELECT a FROM t').scan()
    assert isinstance(op.err, ScanError)


def test_nested_transaction_latches(mock_db):
    """Test a second begin stores an error and the first is rolled back at the end"""
    db = mock_db()
    op = db.operation()
    outer = op.begin_transaction()
    inner = op.begin_transaction()

    assert isinstance(op.err, NestedTransactionError)
    assert str(op.err) == 'cannot nest transactions'
    assert outer.active
    assert not inner.active
    assert db.connection.begun == 1

    op.end_transaction()
    assert db.connection.rollbacks == 1
    assert db.connection.commits == 0


def test_end_transaction_commits_when_clean(mock_db):
    """Test a clean transaction commits on done()"""
    db = mock_db()
    op = db.operation()
    tx = op.begin_transaction()
    tx.exec('INSERT INTO notes (body) VALUES (?)', 'x')
    tx.done()

    assert op.err is None
    assert op.tx is None
    assert db.connection.commits == 1
    assert not tx.active


def test_end_transaction_rolls_back_when_latched(mock_db):
    """Test a failed statement makes end_transaction roll back"""
    db = mock_db(fail_on='UPDATE')
    op = db.operation()
    op.begin_transaction()
    op.exec('INSERT INTO notes (body) VALUES (?)', 'x')
    op.exec('UPDATE notes SET body = ?', 'y')
    op.end_transaction()

    assert db.connection.rollbacks == 1
    assert db.connection.commits == 0


def test_end_transaction_without_transaction_is_a_no_op(mock_db):
    """Test ending or rolling back with no transaction does nothing"""
    op = mock_db().operation()
    op.end_transaction()
    op.rollback()
    assert op.err is None


def test_transaction_context_rolls_back_on_exception(mock_db):
    """Test the context manager rolls back when its block raises"""
    db = mock_db()
    op = db.operation()

    with pytest.raises(ZeroDivisionError), op.transaction():
        op.exec('INSERT INTO notes (body) VALUES (?)', 'x')
        1 / 0

    assert db.connection.rollbacks == 1
    assert op.tx is None
    assert op.err is None


def test_transaction_context_leaves_outer_transaction_alone(mock_db):
    """Test a failed nested block does not end the running transaction"""
    db = mock_db()
    op = db.operation()
    op.begin_transaction()

    with pytest.raises(RuntimeError), op.transaction():
        raise RuntimeError('inside nested block')

    assert op.tx is not None
    assert db.connection.rollbacks == 0


def test_unregistered_table_name_latches(mock_db):
    """Test selecting from an unknown table stores an error"""
    op = mock_db().operation()
    s = op.from_('foos')
    assert isinstance(op.err, TableNotRegisteredError)
    assert str(op.err) == 'table foos not registered'
    assert s.all_objects() == []
    assert s.count() == 0
    assert s.first(Foo()) is False


def test_unregistered_type_latches_on_save(mock_db):
    """Test saving an unregistered type stores an error"""
    op = mock_db().operation()
    res = op.save(Foo())
    assert isinstance(op.err, TableNotRegisteredError)
    assert str(op.err) == 'table for type Foo not registered'
    assert res.last_insert_id() == 0


def test_save_without_primary_key_latches(mock_db):
    """Test saving a record without a primary key stores an error"""
    db = mock_db()
    db.register_table('notes', Note)
    op = db.operation()
    op.save(Note(body='x'))
    assert isinstance(op.err, NoPrimaryKeyError)
    assert db.connection.statements == []


def test_save_inserts_and_writes_back_key(mock_db):
    """Test save inserts a new record, writes back its key, then updates"""
    db = mock_db(lastrowid=42)
    db.register_table('foos', Foo)
    op = db.operation()
    foo = Foo(ONE='a', Four=4)

    op.save(foo)
    assert foo.Two == 42
    assert db.connection.statements == ['INSERT INTO foos (one,tree,four) VALUES (?,?,?)']

    op.save(foo)
    assert db.connection.statements[-1] == 'UPDATE foos SET one = ?,tree = ?,four = ? WHERE two = ?'


def test_save_without_generated_id_latches(mock_db):
    """Test a missing generated id stops save from inserting the record twice"""
    db = mock_db(lastrowid=None)
    db.register_table('foos', Foo)
    op = db.operation()
    foo = Foo(ONE='a')

    op.save(foo)
    op.save(foo)

    assert isinstance(op.err, NoLastInsertIdError)
    assert foo.Two == 0
    assert db.connection.statements == ['INSERT INTO foos (one,tree,four) VALUES (?,?,?)']


def test_save_on_postgres_returns_key(mock_db):
    """Test postgres inserts read the new key from RETURNING"""
    db = mock_db(lastrowid=5, dialect='postgresql')
    db.register_table('foos', Foo)
    op = db.operation()
    foo = Foo(ONE='a')

    op.save(foo)
    assert op.err is None
    assert foo.Two == 5
    assert db.connection.statements == ['INSERT INTO foos (one,tree,four) VALUES (?,?,?) RETURNING two']
    assert db.connection.returning == [True]


def test_forced_insert_does_not_write_back(mock_db):
    """Test insert() never touches the primary key"""
    db = mock_db(lastrowid=42)
    op = db.operation()
    foo = Foo(ONE='a')
    op.table('foos', Foo).insert(foo)
    assert foo.Two == 0
    assert op.err is None

"""
Integration tests for Operation transactions on SQLite.
"""
import pytest
from magicsql import NestedTransactionError

from tests.fixtures.records import Foo


def _count(db):
    """Count foos through a separate Operation"""
    return db.operation().from_('foos').count()


def test_commit_on_clean_end(sqlite_db):
    """Test a clean transaction commits on end_transaction"""
    op = sqlite_db.operation()
    op.begin_transaction()
    op.save(Foo(ONE='a'))
    op.save(Foo(ONE='b'))
    op.end_transaction()

    assert op.err is None
    assert _count(sqlite_db) == 2


def test_forced_error_rolls_back_and_reset_recovers(sqlite_db):
    """Test a forced error rolls back, and reset restores normal operation"""
    op = sqlite_db.operation()
    op.save(Foo(ONE='before'))
    before = _count(sqlite_db)

    op.begin_transaction()
    op.save(Foo(ONE='inside'))
    op.set_err(RuntimeError('forced'))
    op.save(Foo(ONE='skipped'))
    op.end_transaction()

    assert str(op.err) == 'forced'
    assert _count(sqlite_db) == before

    op.reset()
    op.save(Foo(ONE='after'))
    assert op.err is None
    assert _count(sqlite_db) == before + 1


def test_statement_failure_rolls_back_transaction(sqlite_db):
    """Test a failed statement rolls back the whole transaction"""
    op = sqlite_db.operation()
    tx = op.begin_transaction()
    tx.exec('INSERT INTO foos (one, four) VALUES (?, ?)', 'x', 1)
    tx.exec('INSERT INTO no_such_table VALUES (1)')
    tx.exec('INSERT INTO foos (one, four) VALUES (?, ?)', 'y', 2)
    tx.done()

    assert op.err is not None
    assert tx.err is op.err
    assert _count(sqlite_db) == 0


def test_explicit_rollback_without_error(sqlite_db):
    """Test rollback discards work without storing an error"""
    op = sqlite_db.operation()
    op.begin_transaction()
    op.save(Foo(ONE='discarded'))
    op.rollback()

    assert op.err is None
    assert op.tx is None
    assert _count(sqlite_db) == 0


def test_reads_inside_transaction_see_uncommitted_rows(sqlite_db):
    """Test reads in a transaction are routed through it"""
    op = sqlite_db.operation()
    with op.transaction():
        op.save(Foo(ONE='pending'))
        assert op.from_('foos').count() == 1
        found = op.from_('foos').all_objects()
        assert [f.ONE for f in found] == ['pending']
    assert _count(sqlite_db) == 1


def test_transaction_context_rolls_back_on_exception(sqlite_db):
    """Test the context manager rolls back when its block raises"""
    op = sqlite_db.operation()
    with pytest.raises(ValueError), op.transaction():
        op.save(Foo(ONE='gone'))
        raise ValueError('abort')

    assert op.err is None
    assert _count(sqlite_db) == 0


def test_nesting_is_rejected(sqlite_db):
    """Test a nested begin is stored as an error and the work rolled back"""
    op = sqlite_db.operation()
    op.begin_transaction()
    op.save(Foo(ONE='outer'))
    op.begin_transaction()
    op.end_transaction()

    assert isinstance(op.err, NestedTransactionError)
    assert _count(sqlite_db) == 0


def test_prepared_statement_in_transaction(sqlite_db):
    """Test a prepared statement reused inside a transaction"""
    op = sqlite_db.operation()
    tx = op.begin_transaction()
    stmt = tx.prepare('INSERT INTO foos (one, four) VALUES (?, ?)')
    for i in range(5):
        stmt.exec(f'p{i}', i)
    stmt.close()
    tx.done()

    assert op.err is None
    assert _count(sqlite_db) == 5


def test_prepared_query_outside_transaction(sqlite_db, foo_factory):
    """Test a prepared query, and that a closed statement stores an error"""
    op = sqlite_db.operation()
    for i in range(3):
        op.save(foo_factory(four=i))

    stmt = op.prepare('SELECT one FROM foos WHERE four = ?')
    rows = stmt.query(2)
    assert rows.next()
    assert rows.values() == ('hello',)
    rows.close()
    stmt.close()
    assert stmt.exec(1).rows_affected() == 0
    assert op.err is not None


def test_failed_commit_is_latched_and_connection_recovers(sqlite_db):
    """Test a commit rejected by a deferred foreign key is stored and leaves the connection usable"""
    op = sqlite_db.operation()
    op.exec('PRAGMA foreign_keys = ON')
    op.exec('CREATE TABLE parents (id INTEGER PRIMARY KEY)')
    op.exec("""
    CREATE TABLE children (
        parent_id INTEGER REFERENCES parents(id) DEFERRABLE INITIALLY DEFERRED
    )
    """)
    assert op.err is None

    op.begin_transaction()
    op.exec('INSERT INTO children (parent_id) VALUES (?)', 99)
    assert op.err is None
    op.end_transaction()

    assert op.err is not None
    assert 'FOREIGN KEY' in str(op.err)
    assert op.tx is None

    op.reset()
    op.exec('INSERT INTO parents (id) VALUES (?)', 1)
    assert op.err is None

    fresh = sqlite_db.operation()
    with fresh.query('SELECT COUNT(*) FROM children') as rows:
        assert rows.next()
        assert rows.values() == (0,)
    assert fresh.from_('foos').count() == 0
    assert fresh.err is None

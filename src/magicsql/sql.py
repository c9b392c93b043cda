"""
SQL statement rendering.

Everything here is pure text generation.  Statements are always rendered with
`?` placeholders; `standardize_placeholders()` rewrites them for drivers using
the `%s` style right before execution.
"""
import logging
import re

logger = logging.getLogger(__name__)

__all__ = [
    'build_select_sql',
    'build_count_sql',
    'build_insert_sql',
    'build_update_sql',
    'make_placeholders',
    'standardize_placeholders',
    'has_placeholders',
]

# String literals are matched first so placeholders inside them are skipped
_TOKENIZE = re.compile(r"""
    (?P<string>'(?:[^']|'')*'|"(?:[^"]|"")*")
    |(?P<percent_s>%s)
    |(?P<qmark>\?)
""", re.VERBOSE)

_HAS_PLACEHOLDER = re.compile(r'%s|\?|%\([^)]+\)s')


def make_placeholders(count: int, dialect: str = 'sqlite') -> str:
    """Return `count` comma-joined positional placeholders.
    """
    marker = '%s' if dialect == 'postgresql' else '?'
    return ','.join([marker] * count)


def build_select_sql(table: str, columns: list[str], where: str = '',
                     order: str = '', limit: int = 0, offset: int = 0) -> str:
    """Generate a SELECT statement.

    Clauses are appended only when set, always in the order WHERE, ORDER BY,
    LIMIT, OFFSET.

    Args:
        table: Table name
        columns: Column names, in mapping order
        where: WHERE clause (without the 'WHERE' keyword)
        order: ORDER BY clause (without the 'ORDER BY' keywords)
        limit: LIMIT value, 0 for none
        offset: OFFSET value, 0 for none

    Returns
        SQL query string
    """
    sql = f"SELECT {','.join(columns)} FROM {table}"
    if where:
        sql += f' WHERE {where}'
    if order:
        sql += f' ORDER BY {order}'
    if limit > 0:
        sql += f' LIMIT {limit}'
    if offset > 0:
        sql += f' OFFSET {offset}'
    return sql


def build_count_sql(table: str, where: str = '') -> str:
    """Generate a SELECT COUNT(*) statement, honoring only the WHERE clause.
    """
    sql = f'SELECT COUNT(*) FROM {table}'
    if where:
        sql += f' WHERE {where}'
    return sql


def build_insert_sql(table: str, columns: list[str], returning: str = '') -> str:
    """Generate an INSERT statement with one placeholder per column.

    With `returning`, the statement hands back that column of the new row.
    """
    sql = f"INSERT INTO {table} ({','.join(columns)}) VALUES ({make_placeholders(len(columns))})"
    if returning:
        sql += f' RETURNING {returning}'
    return sql


def build_update_sql(table: str, columns: list[str], key: str) -> str:
    """Generate an UPDATE statement setting `columns` on the row matching `key`.
    """
    sets = ','.join(f'{col} = ?' for col in columns)
    return f'UPDATE {table} SET {sets} WHERE {key} = ?'


def has_placeholders(sql: str | None) -> bool:
    """Check if SQL has any parameter placeholders.
    """
    return bool(sql) and bool(_HAS_PLACEHOLDER.search(sql))


def standardize_placeholders(sql: str, dialect: str = 'sqlite') -> str:
    """Convert positional placeholders between `?` and `%s` for a dialect.

    Placeholder-looking text inside string literals is left alone.
    """
    if not sql:
        return sql

    if dialect == 'postgresql':
        source, target = '?', '%s'
    else:
        source, target = '%s', '?'

    if source not in sql:
        return sql

    result = []
    last_end = 0
    for match in _TOKENIZE.finditer(sql):
        result.append(sql[last_end:match.start()])
        text = match.group(0)
        result.append(target if text == source else text)
        last_end = match.end()
    result.append(sql[last_end:])

    converted = ''.join(result)
    logger.debug(f'Standardized placeholders for {dialect}')
    return converted

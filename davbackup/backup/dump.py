"""
SQL dump generator.

Writes a portable SQL script (schema + data) for every table reachable through
a SQLAlchemy engine. Output is appended to the dump file table by table and
row by row, so large databases never have to fit in memory.
"""

import re
import logging
from typing import Callable, Sequence

from sqlalchemy import MetaData, Table, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import CompileError, SQLAlchemyError
from sqlalchemy.schema import CreateTable


logger = logging.getLogger(__name__)

# Declared column types whose values are written as bare numeric literals
NUMERIC_TYPES = frozenset({
    'tinyint',
    'smallint',
    'mediumint',
    'int',
    'bigint',
    'float',
    'double',
    'decimal',
    'real',
    # ANSI spellings reflected by non-MySQL dialects
    'integer',
    'numeric',
})

_CREATE_TABLE = re.compile(r'^\s*CREATE\s+TABLE\s+(?!IF\s+NOT\s+EXISTS\b)', re.IGNORECASE)


class DatabaseError(Exception):
    """Raised when the database cannot be read or the dump cannot be written."""
    pass


def column_base_type(column_type) -> str:
    """
    Reduce a declared column type to its lowercase base name.

    ``DECIMAL(10, 2)`` -> ``decimal``, ``int(11) unsigned`` -> ``int``.

    Args:
        column_type: SQLAlchemy type object or declared type string

    Returns:
        Base type name, or an empty string if the type cannot be rendered
    """
    if not isinstance(column_type, str):
        try:
            column_type = str(column_type)
        except CompileError:
            return ''

    name = column_type.strip().lower().split('(', 1)[0].strip()
    return name.split()[0] if name else ''


def string_quoter(dialect) -> Callable[[str], str]:
    """
    Build a string literal renderer for a dialect.

    Single quotes are doubled everywhere; MySQL additionally treats the
    backslash as an escape character unless NO_BACKSLASH_ESCAPES is set.
    """
    backslash_escapes = (
        dialect.name in ('mysql', 'mariadb')
        and getattr(dialect, '_backslash_escapes', True)
    )

    def quote(value: str) -> str:
        if backslash_escapes:
            value = value.replace('\\', '\\\\')
        return "'" + value.replace("'", "''") + "'"

    return quote


def format_value(value, type_name: str, quote: Callable[[str], str]) -> str:
    """
    Render a single column value as an SQL literal.

    Args:
        value: Value fetched from the database
        type_name: Base type of the column (see column_base_type)
        quote: Dialect specific string literal renderer

    Returns:
        ``NULL``, a bare numeric literal or a quoted string literal
    """
    if value is None:
        return 'NULL'

    if isinstance(value, bool):
        value = int(value)

    if isinstance(value, (bytes, bytearray, memoryview)):
        return f"X'{bytes(value).hex()}'"

    rendered = str(value)
    if type_name in NUMERIC_TYPES and rendered != '':
        return rendered

    return quote(rendered)


class SQLDumpGenerator:
    """
    Dumps every table of a database into an SQL script.

    For each table the script contains a DROP TABLE IF EXISTS statement, the
    table definition using CREATE TABLE IF NOT EXISTS, and one INSERT
    statement carrying all rows.
    """

    def __init__(self, engine: Engine):
        self.engine = engine

    def dump(self, output_path: str) -> int:
        """
        Append the dump of all tables to ``output_path``.

        Args:
            output_path: Dump file (opened in append mode)

        Returns:
            Number of tables dumped

        Raises:
            DatabaseError: On any database or file error
        """
        try:
            with self.engine.connect() as conn, open(output_path, 'a', encoding='utf-8') as out:
                inspector = inspect(conn)
                tables = inspector.get_table_names()
                logger.info(f"Dumping {len(tables)} tables to {output_path}")

                for table in tables:
                    self._dump_table(conn, inspector, table, out)

                return len(tables)

        except SQLAlchemyError as e:
            raise DatabaseError(f"Database dump failed: {e}") from e
        except OSError as e:
            raise DatabaseError(f"Failed to write dump {output_path}: {e}") from e

    def _dump_table(self, conn, inspector, table: str, out):
        dialect = conn.dialect
        quoted_table = dialect.identifier_preparer.quote(table)
        quote = string_quoter(dialect)

        out.write(f"DROP TABLE IF EXISTS {quoted_table};")
        out.write(f"\n\n{self._create_statement(conn, table)};\n\n")

        types = {
            column['name']: column_base_type(column['type'])
            for column in inspector.get_columns(table)
        }

        result = conn.execute(
            text(f"SELECT * FROM {quoted_table}"),
            execution_options={'stream_results': True}
        )
        columns = list(result.keys())
        column_types = [types.get(name, '') for name in columns]

        rows = 0
        previous = None
        for row in result:
            if previous is None:
                names = ', '.join(dialect.identifier_preparer.quote(name) for name in columns)
                out.write(f"INSERT INTO {quoted_table} ({names}) VALUES")
            else:
                out.write(self._format_row(previous, column_types, quote) + ',')
            previous = row
            rows += 1

        if previous is not None:
            out.write(self._format_row(previous, column_types, quote) + ';')

        out.write("\n\n")
        logger.debug(f"Dumped table {table} ({rows} rows)")

    def _format_row(self, row: Sequence, column_types: Sequence[str], quote) -> str:
        values = ','.join(
            format_value(value, type_name, quote)
            for value, type_name in zip(row, column_types)
        )
        return f"\n\t({values})"

    def _create_statement(self, conn, table: str) -> str:
        """Fetch the table definition, rewritten to CREATE TABLE IF NOT EXISTS."""
        dialect_name = conn.dialect.name
        quoted_table = conn.dialect.identifier_preparer.quote(table)

        if dialect_name in ('mysql', 'mariadb'):
            row = conn.execute(text(f"SHOW CREATE TABLE {quoted_table}")).fetchone()
            statement = row[1]
        elif dialect_name == 'sqlite':
            statement = conn.execute(
                text("SELECT sql FROM sqlite_master WHERE type = 'table' AND name = :name"),
                {'name': table}
            ).scalar()
        else:
            reflected = Table(table, MetaData(), autoload_with=conn)
            return str(CreateTable(reflected, if_not_exists=True).compile(dialect=conn.dialect)).strip()

        return _CREATE_TABLE.sub('CREATE TABLE IF NOT EXISTS ', statement.strip().rstrip(';'), count=1)

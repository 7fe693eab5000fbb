"""
Unit tests for the SQL dump generator (davbackup/backup/dump.py).

Tests value formatting and full dumps of SQLite databases.
"""

import sqlite3
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.dialects import mysql, sqlite
from sqlalchemy.types import NullType, Numeric, String

from davbackup.backup.dump import (
    NUMERIC_TYPES,
    SQLDumpGenerator,
    DatabaseError,
    column_base_type,
    format_value,
    string_quoter
)


@pytest.fixture
def quote():
    return string_quoter(sqlite.dialect())


class TestFormatValue:
    """Test format_value function."""

    def test_decimal_is_bare(self, quote):
        """Test that a decimal column value is written unquoted."""
        assert format_value(Decimal('3.50'), 'decimal', quote) == '3.50'

    def test_string_is_quoted_and_escaped(self, quote):
        """Test that a varchar value is quoted with the quote doubled."""
        assert format_value("O'Brien", 'varchar', quote) == "'O''Brien'"

    @pytest.mark.parametrize("type_name", ['int', 'varchar', 'decimal', 'text', ''])
    def test_null_for_every_type(self, quote, type_name):
        """Test that None is always NULL."""
        assert format_value(None, type_name, quote) == 'NULL'

    @pytest.mark.parametrize("type_name", [
        'tinyint', 'smallint', 'mediumint', 'int', 'bigint',
        'float', 'double', 'decimal', 'real', 'integer', 'numeric'
    ])
    def test_numeric_types(self, quote, type_name):
        """Test every numeric type renders bare literals."""
        assert format_value(42, type_name, quote) == '42'

    def test_number_in_text_column_is_quoted(self, quote):
        """Test that numbers stored in text columns stay strings."""
        assert format_value(42, 'varchar', quote) == "'42'"

    def test_empty_value_in_numeric_column_is_quoted(self, quote):
        """Test that an empty value in a numeric column is written as a string."""
        assert format_value('', 'int', quote) == "''"

    def test_bytes_as_hex(self, quote):
        """Test that binary values become hex literals."""
        assert format_value(b'\x00\xffA', 'blob', quote) == "X'00ff41'"

    def test_bool_as_integer(self, quote):
        """Test that booleans in numeric columns become 0/1."""
        assert format_value(True, 'tinyint', quote) == '1'


class TestColumnBaseType:
    """Test column_base_type function."""

    @pytest.mark.parametrize("declared,expected", [
        ('DECIMAL(10, 2)', 'decimal'),
        ('int(11) unsigned', 'int'),
        ('VARCHAR(20)', 'varchar'),
        ('double precision', 'double'),
        ('INTEGER', 'integer'),
        ('', ''),
    ])
    def test_declared_strings(self, declared, expected):
        """Test reducing declared type strings."""
        assert column_base_type(declared) == expected

    def test_reflected_types(self):
        """Test reducing SQLAlchemy type objects."""
        assert column_base_type(Numeric(10, 2)) == 'numeric'
        assert column_base_type(String(20)) == 'varchar'
        assert column_base_type(NullType()) not in NUMERIC_TYPES


class TestStringQuoter:
    """Test dialect specific string quoting."""

    def test_sqlite_keeps_backslashes(self):
        """Test SQLite literals only double quotes."""
        quote = string_quoter(sqlite.dialect())
        assert quote("a\\b'c") == "'a\\b''c'"

    def test_mysql_escapes_backslashes(self):
        """Test MySQL literals escape backslashes."""
        quote = string_quoter(mysql.dialect())
        assert quote("a\\b'c") == "'a\\\\b''c'"

    def test_percent_signs_untouched(self):
        """Test that percent signs are written as-is."""
        quote = string_quoter(mysql.dialect())
        assert quote("100%") == "'100%'"


class TestSQLDumpGenerator:
    """Test SQLDumpGenerator against SQLite databases."""

    def test_dump_exact_output(self, tmp_path):
        """Test the exact script produced for a small table."""
        engine = create_engine(f"sqlite:///{tmp_path / 'small.db'}")
        with engine.begin() as conn:
            conn.execute(text("CREATE TABLE t (id INTEGER, label VARCHAR(10))"))
            conn.execute(text("INSERT INTO t VALUES (1, 'a'), (2, NULL)"))

        output = tmp_path / "dump.sql"
        tables = SQLDumpGenerator(engine).dump(str(output))
        engine.dispose()

        assert tables == 1
        assert output.read_text() == (
            "DROP TABLE IF EXISTS t;"
            "\n\nCREATE TABLE IF NOT EXISTS t (id INTEGER, label VARCHAR(10));\n\n"
            "INSERT INTO t (id, label) VALUES"
            "\n\t(1,'a'),"
            "\n\t(2,NULL);"
            "\n\n"
        )

    def test_dump_all_tables(self, sqlite_engine, tmp_path):
        """Test that every table gets drop and create statements."""
        output = tmp_path / "dump.sql"
        SQLDumpGenerator(sqlite_engine).dump(str(output))
        script = output.read_text()

        assert script.count("DROP TABLE IF EXISTS") == 2
        assert script.count("CREATE TABLE IF NOT EXISTS") == 2
        assert "INSERT INTO people (id, name, balance, note) VALUES" in script
        assert "'O''Brien'" in script
        assert "\n\t(1,'Alice',3.5,'first')," in script
        assert "\n\t(3,'Carol',NULL,'semi;colon');" in script

    def test_empty_table_has_no_insert(self, sqlite_engine, tmp_path):
        """Test that tables without rows get no INSERT statement."""
        output = tmp_path / "dump.sql"
        SQLDumpGenerator(sqlite_engine).dump(str(output))
        script = output.read_text()

        assert "INSERT INTO tags" not in script
        assert "CREATE TABLE IF NOT EXISTS tags" in script

    def test_dump_round_trip(self, sqlite_engine, tmp_path):
        """Test that the script recreates the tables and rows in an empty database."""
        output = tmp_path / "dump.sql"
        SQLDumpGenerator(sqlite_engine).dump(str(output))

        with sqlite_engine.connect() as conn:
            expected = conn.execute(text("SELECT * FROM people ORDER BY id")).fetchall()

        restored = sqlite3.connect(str(tmp_path / "restored.db"))
        try:
            restored.executescript(output.read_text())
            rows = restored.execute("SELECT * FROM people ORDER BY id").fetchall()
            columns = [row[1] for row in restored.execute("PRAGMA table_info(people)")]
            tags = restored.execute("SELECT COUNT(*) FROM tags").fetchone()[0]
        finally:
            restored.close()

        assert [tuple(row) for row in expected] == rows
        assert columns == ['id', 'name', 'balance', 'note']
        assert tags == 0

    def test_dump_appends(self, sqlite_engine, tmp_path):
        """Test that the dump is appended to an existing file."""
        output = tmp_path / "dump.sql"
        output.write_text("-- header\n")

        SQLDumpGenerator(sqlite_engine).dump(str(output))

        assert output.read_text().startswith("-- header\nDROP TABLE IF EXISTS")

    def test_dump_database_error(self, tmp_path):
        """Test that connection failures raise DatabaseError."""
        engine = create_engine(f"sqlite:///{tmp_path / 'missing' / 'db.sqlite'}")

        with pytest.raises(DatabaseError, match="Database dump failed"):
            SQLDumpGenerator(engine).dump(str(tmp_path / "dump.sql"))

    def test_dump_write_error(self, sqlite_engine, tmp_path):
        """Test that an unwritable dump path raises DatabaseError."""
        with pytest.raises(DatabaseError, match="Failed to write dump"):
            SQLDumpGenerator(sqlite_engine).dump(str(tmp_path / "missing" / "dump.sql"))

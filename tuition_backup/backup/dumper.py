"""
Database dump generation.

Renders the full relational state reachable through a SQLAlchemy engine as a
SQL script: for every table a DROP/CREATE pair followed by one INSERT per row,
wrapped in a foreign-key-check disable/enable pair so the script can be
replayed regardless of table order.
"""

import logging
import math
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import MetaData, Table, inspect, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.schema import CreateTable

from .errors import DumpFailure


logger = logging.getLogger(__name__)


# (disable, enable) statements per dialect name
FOREIGN_KEY_TOGGLES = {
    'mysql': ('SET FOREIGN_KEY_CHECKS = 0;', 'SET FOREIGN_KEY_CHECKS = 1;'),
    'mariadb': ('SET FOREIGN_KEY_CHECKS = 0;', 'SET FOREIGN_KEY_CHECKS = 1;'),
    'sqlite': ('PRAGMA foreign_keys = OFF;', 'PRAGMA foreign_keys = ON;'),
    'postgresql': ('SET session_replication_role = replica;', 'SET session_replication_role = DEFAULT;'),
}

# Emitted before any data; string literals only escape quotes by doubling them
SESSION_SETUP = {
    'mysql': "SET SESSION sql_mode = CONCAT(@@sql_mode, ',NO_BACKSLASH_ESCAPES');",
    'mariadb': "SET SESSION sql_mode = CONCAT(@@sql_mode, ',NO_BACKSLASH_ESCAPES');",
}


def serialize_value(value: Any) -> str:
    """
    Render a Python value as a SQL literal.

    Args:
        value: Column value as returned by the database driver

    Returns:
        SQL literal text
    """
    if value is None:
        return 'NULL'
    if isinstance(value, bool):
        return '1' if value else '0'
    if isinstance(value, float) and not math.isfinite(value):
        return 'NULL'
    if isinstance(value, Decimal) and not value.is_finite():
        return 'NULL'
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return f"'{value.strftime('%Y-%m-%d %H:%M:%S')}'"
    if isinstance(value, date):
        return f"'{value.strftime('%Y-%m-%d')}'"
    if isinstance(value, (bytes, bytearray, memoryview)):
        return f"X'{bytes(value).hex()}'"
    return quote_string(str(value))


def quote_string(value: str) -> str:
    """Single-quote a string, doubling embedded quotes."""
    return "'" + value.replace("'", "''") + "'"


class DatabaseDumper:
    """
    Produces a textual schema + data dump of every table in a database.
    """

    def __init__(self, title: str = 'Aaradhya Tuition System Database Backup', database_name: str = None):
        """
        Args:
            title: First header line of the dump
            database_name: Name shown in the header (defaults to the engine's database)
        """
        self.title = title
        self.database_name = database_name

    def dump(self, engine: Engine) -> str:
        """
        Dump all tables reachable through the engine.

        A single connection is held for the whole dump and always released.

        Args:
            engine: SQLAlchemy engine for the target database

        Returns:
            Complete SQL dump text

        Raises:
            DumpFailure: If any query fails; no partial dump is returned
        """
        try:
            with engine.connect() as conn:
                return self._dump_connection(conn)
        except DumpFailure:
            raise
        except SQLAlchemyError as e:
            raise DumpFailure(f"Database dump failed: {e}") from e

    def write(self, engine: Engine, output_path: str) -> str:
        """
        Dump the database and write the result to a file.

        Args:
            engine: SQLAlchemy engine for the target database
            output_path: Destination .sql file

        Returns:
            output_path
        """
        sql_dump = self.dump(engine)
        try:
            with open(output_path, 'w', encoding='utf-8') as f:
                f.write(sql_dump)
        except OSError as e:
            raise DumpFailure(f"Failed to write database dump {output_path}: {e}") from e
        return output_path

    def _dump_connection(self, conn: Connection) -> str:
        dialect = conn.dialect.name
        disable_fk, enable_fk = FOREIGN_KEY_TOGGLES.get(dialect, FOREIGN_KEY_TOGGLES['mysql'])
        database_name = self.database_name or conn.engine.url.database or dialect
        session_setup = SESSION_SETUP.get(dialect)

        table_names = inspect(conn).get_table_names()
        logger.info(f"Dumping {len(table_names)} tables from {database_name}")

        parts = [
            f"-- {self.title}\n"
            f"-- Generated: {datetime.now(timezone.utc).isoformat()}\n"
            f"-- Database: {database_name}\n"
            f"\n"
        ]
        if session_setup:
            parts.append(f"{session_setup}\n")
        parts.append(f"{disable_fk}\n")

        for table_name in table_names:
            logger.debug(f"Dumping table: {table_name}")
            parts.append(self._dump_table(conn, table_name))

        parts.append(f"{enable_fk}\n")
        return ''.join(parts)

    def _dump_table(self, conn: Connection, table_name: str) -> str:
        quoted = self._quote(conn, table_name)

        lines = [
            f"\n-- Table: {table_name}\n",
            f"DROP TABLE IF EXISTS {quoted};\n",
            self._create_statement(conn, table_name).rstrip().rstrip(';') + ';\n\n',
        ]

        result = conn.execute(text(f"SELECT * FROM {quoted}"))
        columns = ', '.join(self._quote(conn, col) for col in result.keys())
        rows = result.fetchall()

        if rows:
            lines.append(f"-- Data for table: {table_name}\n")
            for row in rows:
                values = ', '.join(serialize_value(value) for value in row)
                lines.append(f"INSERT INTO {quoted} ({columns}) VALUES ({values});\n")
            lines.append('\n')

        return ''.join(lines)

    def _create_statement(self, conn: Connection, table_name: str) -> str:
        """
        Fetch the table's structural definition as stored by the database.

        MySQL and SQLite report their own DDL; other dialects fall back to
        compiling the reflected table.
        """
        dialect = conn.dialect.name

        if dialect in ('mysql', 'mariadb'):
            row = conn.execute(text(f"SHOW CREATE TABLE {self._quote(conn, table_name)}")).fetchone()
            return row[1]

        if dialect == 'sqlite':
            row = conn.execute(
                text("SELECT sql FROM sqlite_master WHERE type = 'table' AND name = :name"),
                {'name': table_name}
            ).fetchone()
            if row is None or row[0] is None:
                raise DumpFailure(f"No table definition found for {table_name}")
            return row[0]

        table = Table(table_name, MetaData(), autoload_with=conn)
        return str(CreateTable(table).compile(dialect=conn.dialect)).strip()

    @staticmethod
    def _quote(conn: Connection, identifier: str) -> str:
        return conn.dialect.identifier_preparer.quote_identifier(identifier)


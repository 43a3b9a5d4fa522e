# sqldump/schema.py
"""
Schema introspection for MySQL-dialect servers.

Reads creation statements, table and view listings and foreign key metadata
through a sqldump Cursor. Names are inlined into the statements as quoted
identifiers or escaped literals; no bind parameters are used.
"""

import logging
from typing import List, Union

from .cursors import Cursor
from .database import Database
from .exceptions import TableNotFoundError
from .utils import escape_string, quote_identifier

logger = logging.getLogger(__name__)

__all__ = ['SchemaIntrospector']


class SchemaIntrospector:
    """
    Introspects a MySQL database through a single cursor.

    Listings are returned in the order the server returns them. Ordering
    tables by foreign keys is the job of :func:`sqldump.dependency.sort_tables`.

    Parameters
    ----------
    source : Database or Cursor
        Connection (a cursor is created from it) or an existing cursor

    Example
    -------
    ::

        introspector = SchemaIntrospector(db)
        for table in introspector.get_all_table_names():
            print(introspector.get_create_statement(table))
    """

    def __init__(self, source: Union[Cursor, Database]):
        if isinstance(source, Cursor):
            self.cursor = source
        else:
            self.cursor = source.cursor()

    def use_database(self, database_name: str) -> None:
        """Make database_name the active schema of the connection."""
        self.cursor.execute(f"USE {quote_identifier(database_name)}")

    def get_create_statement(self, name: str) -> str:
        """
        Return the creation statement for a table or view.

        Only the second column of ``SHOW CREATE TABLE`` is used; servers that
        return extra informational columns (views return four) have them
        discarded. ``CREATE TABLE`` becomes ``CREATE TABLE IF NOT EXISTS``
        at its first occurrence so replaying the statement is idempotent.

        Raises:
            TableNotFoundError: fewer than two columns, or no row returned
        """
        self.cursor.execute(f"SHOW CREATE TABLE {quote_identifier(name)}")
        columns = self.cursor.columns()
        if len(columns) < 2:
            raise TableNotFoundError(name, f"less than 2 columns found on querying table {name}")

        row = self.cursor.fetchone()
        if row is None:
            raise TableNotFoundError(name)
        # drain anything left so the connection is free for the next query
        self.cursor.fetchall()

        create_sql = row[1]
        if isinstance(create_sql, (bytes, bytearray)):
            create_sql = create_sql.decode('utf-8')
        return create_sql.replace('CREATE TABLE', 'CREATE TABLE IF NOT EXISTS', 1)

    def get_all_table_names(self) -> List[str]:
        """Every table name in the active database (views included, as SHOW TABLES lists them)."""
        self.cursor.execute("SHOW TABLES")
        return [row[0] for row in self.cursor.fetchall()]

    def get_all_view_names(self) -> List[str]:
        """Every view name in the active database."""
        self.cursor.execute(
            "SELECT TABLE_NAME FROM information_schema.TABLES "
            "WHERE TABLE_TYPE = 'VIEW' AND TABLE_SCHEMA = DATABASE()"
        )
        return [row[0] for row in self.cursor.fetchall()]

    def get_referencing_tables(self, table: str) -> List[str]:
        """
        Tables holding a foreign key that references table.

        An empty list means nothing depends on the table.
        """
        self.cursor.execute(
            "SELECT DISTINCT TABLE_NAME FROM information_schema.KEY_COLUMN_USAGE "
            "WHERE TABLE_SCHEMA = DATABASE() "
            "AND REFERENCED_TABLE_SCHEMA = DATABASE() "
            f"AND REFERENCED_TABLE_NAME = '{escape_string(table)}'"
        )
        referencing = [row[0] for row in self.cursor.fetchall()]
        if referencing:
            logger.debug(f"{table} is referenced by {', '.join(referencing)}")
        return referencing

    def get_row_count(self, table: str) -> int:
        """Advisory row count, used for reporting only."""
        row = self.cursor.selectinto(f"SELECT COUNT(*) FROM {quote_identifier(table)}")
        return int(row[0] or 0)

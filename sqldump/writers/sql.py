# sqldump/writers/sql.py
"""
Batched INSERT statement writer.

Rows are read from the cursor one batch at a time and each batch becomes a
single multi-row INSERT, so memory use is bounded by the batch size rather
than by the size of the table.
"""

import logging
from pathlib import Path
from typing import Any, Optional, Union

from .base import BaseWriter
from ..cursors import Cursor
from ..defaults import settings
from ..schema import SchemaIntrospector
from ..utils import column_list, format_tuple, quote_identifier

logger = logging.getLogger(__name__)

RULE = '-- ----------------------------\n'


class InsertWriter(BaseWriter):
    """
    Writes the rows of an executed query as batched INSERT statements.

    Every value is rendered as a quoted string literal with single quotes
    doubled, and NULL is written bare::

        INSERT INTO `users` (`id`,`name`) VALUES ('1','O''Brien'),('2',NULL);

    A table with M rows and a batch size of N produces ceil(M/N) statements;
    an empty result set produces none.

    Parameters
    ----------
    cursor : Cursor
        Cursor holding an executed ``SELECT``
    table : str
        Table named in the INSERT statements
    file : file-like, str or Path, optional
        Output destination. None writes to stdout.
    batch_size : int, optional
        Rows per INSERT statement, default ``settings['insert_batch_size']``
    backslash_escapes : bool, optional
        Also double backslashes, for servers that treat them as escapes.
        Default ``settings['backslash_escapes']``.

    Example
    -------
    ::

        cursor = db.cursor()
        cursor.execute("SELECT * FROM `users`")
        with open('users.sql', 'w') as fp:
            InsertWriter(cursor, 'users', fp, batch_size=500).write()
    """

    def __init__(self,
                 cursor: Cursor,
                 table: str,
                 file: Optional[Union[str, Path, Any]] = None,
                 batch_size: Optional[int] = None,
                 backslash_escapes: Optional[bool] = None,
                 encoding: str = 'utf-8'):
        super().__init__(cursor, file, encoding=encoding)
        self.table = table
        if batch_size is None:
            batch_size = settings.get('insert_batch_size', 600)
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self.batch_size = batch_size
        if backslash_escapes is None:
            backslash_escapes = settings.get('backslash_escapes', True)
        self.backslash_escapes = backslash_escapes
        self.statement_count = 0
        self.insert_prefix = f"INSERT INTO {quote_identifier(table)} ({column_list(self.columns)}) VALUES "

    def format_statement(self, rows) -> str:
        """Render one batch of rows as a single INSERT statement."""
        values = ','.join(format_tuple(row, self.backslash_escapes) for row in rows)
        return f"{self.insert_prefix}{values};\n"

    def _write_data(self, file_obj) -> None:
        for rows in self.cursor.batches(self.batch_size):
            file_obj.write(self.format_statement(rows))
            self._row_num += len(rows)
            self.statement_count += 1
            logger.debug(f"{self.table}: batch {self.statement_count}, {self._row_num} rows written")


def to_inserts(cursor: Cursor,
               table: str,
               file: Optional[Union[str, Path, Any]] = None,
               batch_size: Optional[int] = None,
               backslash_escapes: Optional[bool] = None) -> int:
    """
    Write the rows of an executed query as batched INSERT statements.

    Returns:
        Number of rows written

    Example:
        cursor.execute("SELECT * FROM `users` WHERE active = 1")
        to_inserts(cursor, 'users', 'active_users.sql')
    """
    writer = InsertWriter(cursor, table, file, batch_size=batch_size,
                          backslash_escapes=backslash_escapes)
    return writer.write()


def serialize_table_data(source,
                         table: str,
                         file,
                         batch_size: Optional[int] = None,
                         backslash_escapes: Optional[bool] = None) -> int:
    """
    Write the records banner and every row of a table as INSERT statements.

    The banner carries the advisory ``COUNT(*)`` taken before the scan. The
    return value is the number of rows actually written, which can differ if
    the table changed in between.

    The scan runs on a streaming cursor of its own, so only one batch of rows
    is held in memory. It is closed before returning, leaving the connection
    free for the next query.

    Args:
        source: Database or Cursor to read from
        table: Table to scan
        file: Open text stream to write to
        batch_size: Rows per INSERT statement
        backslash_escapes: Also double backslashes in literals

    Returns:
        Number of rows written
    """
    db = source.connection if isinstance(source, Cursor) else source
    advisory_count = SchemaIntrospector(source).get_row_count(table)

    file.write(RULE)
    file.write(f"-- Records of {table} ({advisory_count} Rows)\n")
    file.write(RULE)

    scan = db.streaming_cursor()
    try:
        scan.execute(f"SELECT * FROM {quote_identifier(table)}")
        rows = InsertWriter(scan, table, file, batch_size=batch_size,
                            backslash_escapes=backslash_escapes).write()
    finally:
        scan.close()
    file.write('\n')
    if rows != advisory_count:
        logger.warning(f"{table}: counted {advisory_count} rows but wrote {rows}")
    return rows

# sqldump/cursors.py
"""
Cursor wrapper that delegates to the underlying DB-API cursor stored in _cursor.
"""

import logging
from typing import List, Any, Optional, Iterator

from .defaults import settings

logger = logging.getLogger(__name__)
__all__ = ['Cursor']


class Cursor:
    """
    Cursor that returns query results as plain lists.

    Wraps a driver specific cursor and adds debug echo of statements, column
    name introspection with the server's original case, and single row
    selects. Identifiers returned by :meth:`columns` are never sanitized
    because they are written back into SQL.

    Attributes
    ----------
    connection : Database
        The database connection this cursor belongs to
    debug : bool
        Log every statement at DEBUG before executing it
    batch_size : int
        Rows fetched per round-trip by :meth:`batches`

    Example
    -------
    ::

        cursor = db.cursor()
        cursor.execute("SELECT * FROM `users`")
        for row in cursor:
            user_id, name = row
    """
    # Attributes that live on this class and are not delegated to the underlying cursor
    _local_attrs = ['connection', 'debug', 'batch_size', '_cursor', '_statement']

    def __init__(self,
                 connection,
                 batch_size: Optional[int] = None,
                 debug: Optional[bool] = False,
                 **kwargs):
        """
        Initialize a cursor for database operations.

        Parameters
        ----------
        connection : Database
            Database connection object
        batch_size : int, optional
            Rows fetched per round-trip by batches()
        debug : bool, default False
            Enable debug output showing statements
        **kwargs
            Additional arguments passed to the underlying database cursor
        """
        self.connection = connection
        self.debug = debug
        if batch_size is None:
            batch_size = settings.get('fetch_size', 600)
        self.batch_size = batch_size
        self._statement = None
        try:
            if hasattr(self.connection, '_connection'):
                self._cursor = self.connection._connection.cursor(**kwargs)
            else:
                self._cursor = self.connection.cursor(**kwargs)
        except Exception as e:
            raise TypeError(f'First argument must be a database connection object: {e}')

    def __getattr__(self, key: str) -> Any:
        """Delegate attribute access to underlying cursor."""
        if key == 'statement' and not hasattr(self._cursor, 'statement'):
            return self._statement
        return getattr(self._cursor, key)

    def __setattr__(self, key: str, value: Any) -> None:
        """Set attributes on this cursor or delegate to underlying cursor."""
        if key in self._local_attrs:
            self.__dict__[key] = value
        else:
            setattr(self._cursor, key, value)

    def __iter__(self) -> Iterator:
        """Make cursor iterable."""
        if self._is_ready():
            return self

    def __next__(self) -> Any:
        """Iterator protocol."""
        row = self.fetchone()
        if row is not None:
            return row
        else:
            raise StopIteration

    def _is_ready(self) -> bool:
        """Check if cursor is ready to fetch results."""
        if self._cursor.description is None:
            raise Exception('Query has not been run or did not succeed.')
        return True

    def columns(self) -> List[str]:
        """Return list of column names from the last query, in result-set order."""
        if not self._cursor.description:
            return []
        return [c[0] for c in self._cursor.description]

    def execute(self, query: str, bind_vars: tuple = ()) -> None:
        """Execute a database statement."""
        if self.debug:
            logger.debug(f'Query:\n{query}')

        if not hasattr(self._cursor, 'statement'):
            self.__dict__['_statement'] = query

        # some adapters return a cursor instead of the Database API specified None
        if bind_vars:
            _ = self._cursor.execute(query, bind_vars)
        else:
            _ = self._cursor.execute(query)

    def selectinto(self, query: str) -> List[Any]:
        """Execute query that must return exactly one row."""
        self.execute(query)
        rows = self.fetchmany(2)

        if len(rows) == 0:
            raise self.connection.interface.DatabaseError('No Data Found.')
        elif len(rows) > 1:
            raise self.connection.interface.DatabaseError(
                'selectinto() must return one and only one row.'
            )
        else:
            return rows[0]

    def fetchone(self) -> Optional[List[Any]]:
        """Fetch the next row."""
        if self._is_ready():
            row = self._cursor.fetchone()
            if row is not None:
                return list(row)
        return None

    def fetchmany(self, size: Optional[int] = None) -> List[List[Any]]:
        """Fetch the next set of rows."""
        if size is None:
            size = self.batch_size
        if self._is_ready():
            return [list(row) for row in self._cursor.fetchmany(size)]
        return []

    def fetchall(self) -> List[List[Any]]:
        """Fetch all remaining rows."""
        if self._is_ready():
            return [list(row) for row in self._cursor.fetchall()]
        return []

    def batches(self, size: Optional[int] = None) -> Iterator[List[List[Any]]]:
        """Yield the remaining rows in chunks of at most size rows."""
        while True:
            rows = self.fetchmany(size)
            if not rows:
                break
            yield rows

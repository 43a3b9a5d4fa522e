# sqldump/writers/base.py
"""
Base class for writers that turn query results into SQL text.
"""

import logging
import sys
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, List, Optional, Union

logger = logging.getLogger(__name__)


class BaseWriter(ABC):
    """
    Abstract base class for sqldump writers.

    A writer reads rows from an executed cursor and renders them to a text
    stream. The destination can be an open file-like object (left open), a
    path (opened and closed by :meth:`write`), or None for stdout.

    Parameters
    ----------
    cursor : Cursor
        Cursor holding an executed query
    file : file-like, str or Path, optional
        Output destination. None writes to stdout.
    encoding : str, default 'utf-8'
        Encoding used when ``file`` is a path

    Attributes
    ----------
    columns : List[str]
        Column names of the result set, in result-set order
    _row_num : int
        Number of rows written (updated during write operation)

    Notes
    -----
    Subclasses must implement ``_write_data()``.
    """

    def __init__(self,
                 cursor,
                 file: Optional[Union[str, Path, Any]] = None,
                 encoding: str = 'utf-8'):
        self.cursor = cursor
        self.file = file
        self.encoding = encoding
        self._row_num = 0
        self.columns: List[str] = cursor.columns()
        if not self.columns:
            raise ValueError("Cursor has no result set to write")

    @property
    def row_count(self) -> int:
        """ Returns the number of rows written."""
        return self._row_num

    @property
    def destination(self) -> str:
        """Name of the destination, for log messages."""
        if self.file is None:
            return 'stdout'
        if isinstance(self.file, (str, Path)):
            return str(self.file)
        return getattr(self.file, 'name', None) or type(self.file).__name__

    def _get_file_handle(self, mode='a'):
        """
        Get file handle, returning stdout if file is None.

        Returns:
            Tuple of (file_obj, should_close)
        """
        if self.file is None:
            return sys.stdout, False
        elif isinstance(self.file, (str, Path)):
            return open(self.file, mode, encoding=self.encoding, newline=''), True
        else:
            return self.file, False

    @abstractmethod
    def _write_data(self, file_obj) -> None:
        """
        Write the actual data. Subclasses implement format-specific logic.

        Args:
            file_obj: File object to write to
        """
        pass

    def write(self) -> int:
        """
        Main entry point for writing data.

        Returns:
            Number of rows written
        """
        file_obj, should_close = self._get_file_handle()
        try:
            self._write_data(file_obj)
            logger.debug(f"Wrote {self._row_num} rows to {self.destination}")
            return self._row_num
        except Exception as e:
            logger.error(f"Error writing data: {e}")
            raise
        finally:
            if should_close:
                file_obj.close()

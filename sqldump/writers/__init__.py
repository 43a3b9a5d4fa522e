"""
SQL text writers.

Example
-------
::
    from sqldump.writers import to_inserts

    cursor.execute("SELECT * FROM `users`")
    to_inserts(cursor, 'users', 'users.sql', batch_size=500)
"""

from .base import BaseWriter
from .sql import InsertWriter, to_inserts, serialize_table_data

__all__ = ['BaseWriter', 'InsertWriter', 'to_inserts', 'serialize_table_data']

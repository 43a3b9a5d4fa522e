"""
sqldump - SQL dumps of MySQL databases over a plain DB-API connection

- Schema dumps ordered by foreign keys so they replay cleanly
- Table data as batched multi-row INSERT statements, read in bounded memory
- Restores that re-batch small INSERTs into fewer, larger ones
- YAML-based configuration with password encryption

Basic usage::

    import sqldump

    with sqldump.connect('prod_reader') as db:
        sqldump.dump(db, 'shop', file='shop.sql', data=True, drop_tables=True)

    with sqldump.connect('staging') as db:
        sqldump.source(db, 'shop.sql', merge_size=1000)

Direct connections:
    from sqldump.database import mysql

    db = mysql(user='backup', password='secret', database='shop', host='db1')
"""

__version__ = '0.3.0'

from .database import Database
from .config import connect, set_config_file
from .cursors import Cursor
from .dependency import sort_tables, DependencySorter
from .dump import dump, DumpOptions, DumpResult
from .exceptions import DumpError, TableNotFoundError, MalformedStatementError
from .logging_utils import setup_logging, cleanup_old_logs, errors_logged
from .schema import SchemaIntrospector
from .source import source, SourceOptions, SourceResult
from . import writers

__all__ = [
    'connect',
    'set_config_file',
    'Database',
    'Cursor',
    'SchemaIntrospector',
    'sort_tables',
    'DependencySorter',
    'dump',
    'DumpOptions',
    'DumpResult',
    'source',
    'SourceOptions',
    'SourceResult',
    'DumpError',
    'TableNotFoundError',
    'MalformedStatementError',
    'writers',
    'setup_logging',
    'cleanup_old_logs',
    'errors_logged',
]

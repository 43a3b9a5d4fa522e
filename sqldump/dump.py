# sqldump/dump.py
"""
Dump a MySQL database to a stream of SQL statements.

The output replays with any MySQL client: schema for every table in foreign
key order, optional data as batched INSERT statements, then view definitions.

Example
-------
::

    import sqldump

    db = sqldump.connect('prod_reader')
    result = sqldump.dump(db, 'shop', file='shop.sql', data=True, drop_tables=True)
    print(f"{result.table_count} tables, {result.row_count} rows")
"""

import datetime as dt
import logging
import sys
import time
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, List, Optional, Sequence, Tuple

from .defaults import settings
from .dependency import DependencySorter
from .schema import SchemaIntrospector
from .utils import quote_identifier
from .writers.sql import RULE, serialize_table_data

logger = logging.getLogger(__name__)

__all__ = ['DumpOptions', 'DumpResult', 'dump']


@dataclass(frozen=True)
class DumpOptions:
    """
    What to include in a dump and how to bracket it.

    Attributes
    ----------
    tables : tuple of str
        Tables to dump. Ignored when ``all_tables`` is set; an empty list
        means every table.
    views : tuple of str
        Views to dump. Ignored when ``all_views`` is set.
    all_tables : bool
        Dump every table in the database
    all_views : bool
        Dump every view in the database
    data : bool
        Include table rows as INSERT statements
    drop_tables : bool
        Emit ``DROP TABLE IF EXISTS`` before each table definition
    drop_views : bool
        Emit ``DROP VIEW IF EXISTS`` before each view definition
    use_database : bool
        Emit a ``USE`` statement so the dump replays into the same database name
    transaction : bool
        Wrap the table and data section in ``START TRANSACTION`` / ``COMMIT``
    batch_size : int, optional
        Rows per INSERT statement, default ``settings['insert_batch_size']``
    backslash_escapes : bool, optional
        Double backslashes in literals so servers that read backslash as an
        escape get the value back unchanged. Default
        ``settings['backslash_escapes']``; turn off for servers running with
        ``NO_BACKSLASH_ESCAPES``.
    file : file-like, str or Path, optional
        Destination. None writes to stdout.
    """
    tables: Tuple[str, ...] = ()
    views: Tuple[str, ...] = ()
    all_tables: bool = False
    all_views: bool = False
    data: bool = False
    drop_tables: bool = False
    drop_views: bool = False
    use_database: bool = False
    transaction: bool = False
    batch_size: Optional[int] = None
    backslash_escapes: Optional[bool] = None
    file: Any = field(default=None, compare=False)

    def __post_init__(self):
        # frozen, so normalise through object.__setattr__
        object.__setattr__(self, 'tables', tuple(self.tables or ()))
        object.__setattr__(self, 'views', tuple(self.views or ()))
        if self.batch_size is not None and self.batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {self.batch_size}")

    @classmethod
    def from_kwargs(cls, options: Optional['DumpOptions'] = None, **kwargs) -> 'DumpOptions':
        """Build options from keyword arguments, overriding a base set if given."""
        valid = {f.name for f in fields(cls)}
        unknown = set(kwargs) - valid
        if unknown:
            raise TypeError(f"Unknown dump options: {', '.join(sorted(unknown))}")
        if options is None:
            return cls(**kwargs)
        return replace(options, **kwargs)

    def resolve(self, introspector: SchemaIntrospector) -> Tuple[List[str], List[str]]:
        """
        Work out the tables and views to dump.

        ``all_tables`` wins over an explicit table list and no list at all
        means every table. Views are dumped only when listed or when
        ``all_views`` is set. Anything that is a view is removed from the
        table list.

        Returns:
            Tuple of (tables in listing order, views)
        """
        view_names = introspector.get_all_view_names()
        if self.all_tables or not self.tables:
            tables = introspector.get_all_table_names()
        else:
            tables = list(self.tables)

        if self.all_views:
            views = view_names
        else:
            views = list(self.views)

        known_views = set(view_names)
        tables = [table for table in tables if table not in known_views]
        return tables, views


@dataclass
class DumpResult:
    """Summary of a finished dump."""
    tables: List[str] = field(default_factory=list)
    views: List[str] = field(default_factory=list)
    row_count: int = 0
    elapsed: float = 0.0

    @property
    def table_count(self) -> int:
        return len(self.tables)


def _write_banner(file, lines: Sequence[str]) -> None:
    file.write(RULE)
    for line in lines:
        file.write(f"-- {line}\n")
    file.write(RULE)


def _write_create(file, introspector: SchemaIntrospector, name: str, drop_sql: Optional[str]) -> None:
    """Structure banner, optional DROP, then the creation statement."""
    _write_banner(file, [f"Table structure for {name}"])
    create_sql = introspector.get_create_statement(name)
    if drop_sql:
        file.write(drop_sql)
    file.write(f"{create_sql};\n\n")


def _open_transaction(file) -> None:
    file.write("SET AUTOCOMMIT=0;\n")
    file.write("START TRANSACTION;\n\n")


def _close_transaction(file) -> None:
    file.write("COMMIT;\n")
    file.write("SET AUTOCOMMIT=1;\n")


def _write_dump(db, database_name: str, options: DumpOptions, file) -> DumpResult:
    time_format = settings.get('banner_time_format', '%Y-%m-%d %H:%M:%S')
    started = time.perf_counter()
    result = DumpResult()

    _write_banner(file, ["MySQL Database Dump",
                         f"Start Time: {dt.datetime.now().strftime(time_format)}",
                         f"Database Name: {database_name}"])
    if options.transaction:
        _open_transaction(file)
    if options.use_database:
        file.write(f"USE {quote_identifier(database_name)};\n\n")
    file.write("SET FOREIGN_KEY_CHECKS=0;\n\n")

    cursor = db.cursor()
    introspector = SchemaIntrospector(cursor)
    introspector.use_database(database_name)

    tables, views = options.resolve(introspector)
    tables = DependencySorter(introspector).sort(tables)
    logger.info(f"Dumping {len(tables)} tables and {len(views)} views from {database_name}")

    for table in tables:
        drop_sql = f"DROP TABLE IF EXISTS {quote_identifier(table)};\n" if options.drop_tables else None
        _write_create(file, introspector, table, drop_sql)
        if options.data:
            file.write(f"LOCK TABLES {quote_identifier(table)} WRITE;\n\n")
            rows = serialize_table_data(cursor, table, file, batch_size=options.batch_size,
                                        backslash_escapes=options.backslash_escapes)
            file.write("UNLOCK TABLES;\n\n")
            result.row_count += rows
            logger.info(f"{table}: {rows} rows")
        else:
            logger.info(f"{table}: structure only")
        result.tables.append(table)

    if options.transaction:
        # views are defined outside the data transaction
        _close_transaction(file)

    for view in views:
        drop_sql = f"DROP VIEW IF EXISTS {quote_identifier(view)};\n" if options.drop_views else None
        _write_create(file, introspector, view, drop_sql)
        result.views.append(view)
        logger.info(f"{view}: view")

    if options.transaction:
        _open_transaction(file)
    file.write("SET FOREIGN_KEY_CHECKS=1;\n")
    if options.transaction:
        _close_transaction(file)

    result.elapsed = time.perf_counter() - started
    _write_banner(file, ["Dumped by sqldump",
                         f"Cost Time: {dt.timedelta(seconds=result.elapsed)}",
                         f"Complete Time: {dt.datetime.now().strftime(time_format)}",
                         f"Table Counts: {result.table_count}",
                         f"Table Rows: {result.row_count}"])
    file.flush()
    return result


def dump(db, database_name: str, options: Optional[DumpOptions] = None, **kwargs) -> DumpResult:
    """
    Dump database_name to a stream of SQL statements.

    Options come from ``options``, from keyword arguments, or both (keywords
    override). The connection is switched to database_name before anything
    is read. Any error stops the dump at once: output already written stays
    in the destination and the error is re-raised unchanged.

    Args:
        db: Database connection
        database_name: Database to dump
        options: DumpOptions instance
        **kwargs: Any DumpOptions field

    Returns:
        DumpResult with the tables, views and row count written

    Example:
        result = dump(db, 'shop', tables=['users', 'orders'], data=True, file='shop.sql')
    """
    options = DumpOptions.from_kwargs(options, **kwargs)
    destination = options.file
    if destination is None:
        file, should_close = sys.stdout, False
    elif isinstance(destination, (str, Path)):
        file, should_close = open(destination, 'w', encoding='utf-8', newline=''), True
    else:
        file, should_close = destination, False

    try:
        result = _write_dump(db, database_name, options, file)
        logger.info(f"Dumped {result.table_count} tables, {result.row_count} rows "
                    f"in {result.elapsed:.2f}s")
        return result
    except Exception as e:
        logger.error(f"Dump of {database_name} failed: {e}")
        raise
    finally:
        if should_close:
            file.close()

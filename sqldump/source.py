# sqldump/source.py
"""
Replay a SQL dump against a connection.

Statements are read from a text stream and executed one at a time. With a
merge size, runs of INSERT statements for the same table and column list
are recombined into fewer, larger INSERTs before execution.

Example
-------
::

    import sqldump

    db = sqldump.connect('staging')
    result = sqldump.source(db, 'shop.sql', merge_size=1000)
    print(f"{result.statements} statements, {result.rows} rows")
"""

import logging
import re
import sys
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Callable, Iterator, List, Optional, Tuple

from .defaults import settings
from .exceptions import MalformedStatementError
from .utils import quote_identifier

logger = logging.getLogger(__name__)

__all__ = ['SourceOptions', 'SourceResult', 'StatementReader', 'InsertStatement',
           'parse_insert', 'InsertMerger', 'source']

QUOTES = ("'", '"', '`')

_IDENT = r'(?:`(?:[^`]|``)+`|[\w$]+)'
INSERT_PATTERN = re.compile(
    rf'^INSERT\s+INTO\s+(?P<table>{_IDENT}(?:\s*\.\s*{_IDENT})?)\s*'
    r'(?P<columns>\((?:[^()`]|`(?:[^`]|``)*`)*\))?\s*VALUES\s*',
    re.IGNORECASE
)


def _skip_quoted(text: str, i: int, quote: str, backslash_escapes: bool = True) -> Tuple[int, bool]:
    """
    Advance past the quoted run starting at text[i], inside a quote.

    Backslash escapes apply inside string literals only, never inside
    backtick quoted identifiers.

    Returns:
        Tuple of (next index, still inside the quote)
    """
    n = len(text)
    while i < n:
        ch = text[i]
        if ch == '\\' and backslash_escapes and quote != '`':
            i += 2
            continue
        if ch == quote:
            if text.startswith(quote, i + 1):
                i += 2
                continue
            return i + 1, False
        i += 1
    return n, True


def _is_comment(line: str, i: int) -> bool:
    if line.startswith('#', i):
        return True
    return line.startswith('--', i) and (i + 2 >= len(line) or line[i + 2].isspace())


class StatementReader:
    """
    Splits a text stream into SQL statements.

    A statement ends at a ``;`` outside single quotes, double quotes and
    backticks. Inside string literals ``''`` doubling is always honoured,
    and backslash escapes are too unless ``backslash_escapes`` is off (for
    dumps taken from servers running with ``NO_BACKSLASH_ESCAPES``).
    Comment lines (``-- `` or ``#``) between statements are skipped;
    statements are returned stripped, with their terminating ``;``.

    The stream is read line by line, so only the statement being assembled
    is held in memory.

    Example
    -------
    ::

        with open('shop.sql') as fp:
            for statement in StatementReader(fp):
                cursor.execute(statement)

    Raises:
        MalformedStatementError: input ends inside a quoted string
    """

    def __init__(self, stream, backslash_escapes: Optional[bool] = None):
        self.stream = stream
        if backslash_escapes is None:
            backslash_escapes = settings.get('backslash_escapes', True)
        self.backslash_escapes = backslash_escapes
        self.line_num = 0

    def __iter__(self) -> Iterator[str]:
        pending: List[str] = []
        quote = None
        blank = True
        for line in self.stream:
            self.line_num += 1
            start = i = 0
            n = len(line)
            while i < n:
                if quote:
                    i, still_open = _skip_quoted(line, i, quote, self.backslash_escapes)
                    if not still_open:
                        quote = None
                    continue
                ch = line[i]
                if blank:
                    if ch.isspace():
                        i += 1
                        continue
                    if _is_comment(line, i):
                        start = n
                        break
                    blank = False
                if ch in QUOTES:
                    quote = ch
                elif ch == ';':
                    pending.append(line[start:i + 1])
                    statement = ''.join(pending).strip()
                    pending = []
                    start = i + 1
                    blank = True
                    if statement != ';':
                        yield statement
                i += 1
            if start < n and (pending or not blank):
                pending.append(line[start:])

        tail = ''.join(pending).strip()
        if quote:
            raise MalformedStatementError(
                f"Unterminated {quote} quote at end of input (line {self.line_num})", tail)
        if tail:
            yield tail


def _split_tuples(text: str, backslash_escapes: bool = True) -> Tuple[List[str], str]:
    """
    Split the VALUES part of an INSERT into its parenthesised tuples.

    Returns:
        Tuple of (tuple strings, unparsed remainder)
    """
    tuples = []
    depth = 0
    start = 0
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch in QUOTES:
            i, still_open = _skip_quoted(text, i + 1, ch, backslash_escapes)
            if still_open:
                raise MalformedStatementError("Unterminated quote in VALUES", text)
            continue
        if ch == '(':
            if depth == 0:
                start = i
            depth += 1
        elif ch == ')':
            depth -= 1
            if depth < 0:
                raise MalformedStatementError("Unbalanced ')' in VALUES", text)
            if depth == 0:
                tuples.append(text[start:i + 1])
        elif depth == 0 and not (ch == ',' or ch.isspace()):
            break
        i += 1
    if depth:
        raise MalformedStatementError("Unbalanced '(' in VALUES", text)
    return tuples, text[i:]


@dataclass
class InsertStatement:
    """
    A parsed ``INSERT INTO ... VALUES`` statement.

    ``table`` and ``columns`` keep the text of the original statement, so
    identifiers are written back exactly as they were read.
    """
    table: str
    columns: str = ''
    tuples: List[str] = field(default_factory=list)

    @property
    def key(self) -> Tuple[str, str]:
        """Statements with equal keys can be merged."""
        return self.table, self.columns

    def retarget(self, table: str) -> 'InsertStatement':
        """Copy of this statement inserting into table instead."""
        return InsertStatement(quote_identifier(table), self.columns, list(self.tuples))

    def to_sql(self, tuples: Optional[List[str]] = None) -> str:
        if tuples is None:
            tuples = self.tuples
        columns = f" {self.columns}" if self.columns else ''
        return f"INSERT INTO {self.table}{columns} VALUES {','.join(tuples)};"


def parse_insert(statement: str, backslash_escapes: bool = True) -> Optional[InsertStatement]:
    """
    Parse a plain multi-row INSERT.

    Returns None for anything that is not of the form
    ``INSERT INTO t [(cols)] VALUES (..),(..);``, including INSERTs with
    trailing clauses such as ``ON DUPLICATE KEY UPDATE``; those are executed
    unchanged.

    Raises:
        MalformedStatementError: statement looks like an INSERT but its
            tuples are not balanced
    """
    match = INSERT_PATTERN.match(statement)
    if not match:
        return None
    tuples, remainder = _split_tuples(statement[match.end():], backslash_escapes)
    if not tuples:
        raise MalformedStatementError("INSERT has no VALUES tuples", statement)
    if remainder.strip() not in ('', ';'):
        return None
    return InsertStatement(match.group('table'), match.group('columns') or '', tuples)


class InsertMerger:
    """
    Accumulates INSERT tuples and executes them in batches of merge_size.

    Pending tuples are flushed when merge_size of them have accumulated,
    when an INSERT for a different table or column list arrives, and when
    :meth:`flush` is called. Feeding M tuples for one target executes
    ceil(M / merge_size) statements.

    Parameters
    ----------
    execute : callable
        Called with the SQL text of each merged statement
    merge_size : int
        Maximum tuples per executed statement
    """

    def __init__(self, execute: Callable[[str], Any], merge_size: int):
        if merge_size < 1:
            raise ValueError(f"merge_size must be positive, got {merge_size}")
        self.execute = execute
        self.merge_size = merge_size
        self.statements = 0
        self.rows = 0
        self._template: Optional[InsertStatement] = None
        self._pending: List[str] = []

    def add(self, insert: InsertStatement) -> None:
        if self._pending and insert.key != self._template.key:
            self.flush()
        self._template = insert
        for values in insert.tuples:
            self._pending.append(values)
            if len(self._pending) >= self.merge_size:
                self.flush()

    def flush(self) -> None:
        if not self._pending:
            return
        tuples = self._pending
        self._pending = []
        self.execute(self._template.to_sql(tuples))
        self.statements += 1
        self.rows += len(tuples)


@dataclass(frozen=True)
class SourceOptions:
    """
    How to replay a dump.

    Attributes
    ----------
    merge_size : int, optional
        Re-batch INSERTs into statements of up to this many tuples. 0 executes
        every statement as read. None uses ``settings['merge_insert_size']``.
    debug : bool
        Log each statement at INFO before executing it
    table : str, optional
        Insert into this table instead of the one named in each INSERT
    database : str, optional
        Switch to this database before replaying
    commit : bool
        Commit once every statement has executed
    backslash_escapes : bool, optional
        Read backslashes in string literals as escapes, matching how the
        dump was written. Default ``settings['backslash_escapes']``.
    file : file-like, str or Path, optional
        Dump to read. None reads stdin.
    """
    merge_size: Optional[int] = None
    debug: bool = False
    table: Optional[str] = None
    database: Optional[str] = None
    commit: bool = True
    backslash_escapes: Optional[bool] = None
    file: Any = field(default=None, compare=False)

    def __post_init__(self):
        if self.merge_size is not None and self.merge_size < 0:
            raise ValueError(f"merge_size cannot be negative, got {self.merge_size}")

    @classmethod
    def from_kwargs(cls, options: Optional['SourceOptions'] = None, **kwargs) -> 'SourceOptions':
        """Build options from keyword arguments, overriding a base set if given."""
        valid = {f.name for f in fields(cls)}
        unknown = set(kwargs) - valid
        if unknown:
            raise TypeError(f"Unknown source options: {', '.join(sorted(unknown))}")
        if options is None:
            return cls(**kwargs)
        return replace(options, **kwargs)


@dataclass
class SourceResult:
    """Summary of a finished replay."""
    statements: int = 0
    rows: int = 0


def _replay(db, stream, options: SourceOptions) -> SourceResult:
    cursor = db.cursor()
    result = SourceResult()

    def execute(sql: str) -> None:
        if options.debug:
            logger.info(sql)
        cursor.execute(sql)

    if options.database:
        execute(f"USE {quote_identifier(options.database)}")

    merge_size = options.merge_size
    if merge_size is None:
        merge_size = settings.get('merge_insert_size', 0)
    merger = InsertMerger(execute, merge_size) if merge_size else None
    parse = merger is not None or bool(options.table)

    reader = StatementReader(stream, options.backslash_escapes)
    for statement in reader:
        insert = parse_insert(statement, reader.backslash_escapes) if parse else None
        if insert is not None and options.table:
            insert = insert.retarget(options.table)

        if insert is not None and merger is not None:
            merger.add(insert)
            continue
        if merger is not None:
            merger.flush()

        if insert is not None:
            execute(insert.to_sql())
            result.rows += len(insert.tuples)
        else:
            execute(statement)
        result.statements += 1

    if merger is not None:
        merger.flush()
        result.statements += merger.statements
        result.rows += merger.rows

    if options.commit:
        db.commit()
    return result


def source(db, file=None, options: Optional[SourceOptions] = None, **kwargs) -> SourceResult:
    """
    Execute every statement of a SQL dump against db.

    Errors from the server propagate at once. Nothing is retried or rolled
    back; wrap the call in ``db.transaction()`` with ``commit=False`` for an
    all-or-nothing restore on servers that support it.

    Args:
        db: Database connection
        file: Dump to read (file-like, str or Path). Overrides ``options.file``.
        options: SourceOptions instance
        **kwargs: Any SourceOptions field

    Returns:
        SourceResult with the number of statements executed and, when INSERTs
        are parsed (merge_size or table set), the number of rows inserted

    Example:
        with open('shop.sql') as fp:
            source(db, fp, merge_size=1000, debug=True)
    """
    if file is not None:
        kwargs['file'] = file
    options = SourceOptions.from_kwargs(options, **kwargs)
    destination = options.file
    if destination is None:
        stream, should_close = sys.stdin, False
    elif isinstance(destination, (str, Path)):
        stream, should_close = open(destination, 'r', encoding='utf-8'), True
    else:
        stream, should_close = destination, False

    name = str(destination) if isinstance(destination, (str, Path)) else getattr(stream, 'name', 'stream')
    try:
        result = _replay(db, stream, options)
        logger.info(f"Sourced {name}: {result.statements} statements, {result.rows} rows")
        return result
    except Exception as e:
        logger.error(f"Source of {name} failed: {e}")
        raise
    finally:
        if should_close:
            stream.close()

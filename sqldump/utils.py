# sqldump/utils.py
"""
Utility functions for sqldump.

Identifiers and values are always inlined into SQL text: identifiers are
backtick quoted and values are rendered as escaped string literals.
"""

import datetime as dt
from typing import Any, Iterable, Optional, Sequence

from .defaults import settings

MIDNIGHT = dt.time(0, 0, 0)
NULL = 'NULL'
# cache format strings for performance
_format_cache = None


def _build_format_strings():
    """Build format strings for datetime and date objects."""
    return {
        'date': settings.get('date_format', '%Y-%m-%d'),
        'datetime': settings.get('datetime_format', '%Y-%m-%d %H:%M:%S'),
        'datetime_tz': settings.get('datetime_format', '%Y-%m-%d %H:%M:%S') +
                       settings.get('tz_suffix', '%z'),
        'timestamp': settings.get('timestamp_format', '%Y-%m-%d %H:%M:%S.%f'),
        'timestamp_tz': settings.get('timestamp_format', '%Y-%m-%d %H:%M:%S.%f') +
                        settings.get('tz_suffix', '%z'),
        'time': settings.get('time_format', '%H:%M:%S'),
        'time_micro': settings.get('time_format', '%H:%M:%S') + '.%f',
    }


def reset_format_cache():
    """Clear format cache to force rebuilding on next call."""
    global _format_cache
    _format_cache = None


def _get_format_strings():
    global _format_cache
    if _format_cache is None:
        _format_cache = _build_format_strings()
    return _format_cache


def to_string(obj: Any) -> Optional[str]:
    """
    Convert a database value to its text form, keeping None as None.

    Columns are treated as opaque text: there is no type specific encoding
    beyond choosing a stable textual form for dates, times and bytes.

    Args:
        obj: Value to convert

    Returns:
        String representation, or None for NULL
    """
    if obj is None:
        return None
    fmts = _get_format_strings()
    if isinstance(obj, str):
        return obj
    elif isinstance(obj, bool):
        return '1' if obj else '0'
    elif isinstance(obj, dt.datetime):
        if obj.microsecond:
            return obj.strftime(fmts['timestamp_tz'] if obj.tzinfo else fmts['timestamp'])
        return obj.strftime(fmts['datetime_tz'] if obj.tzinfo else fmts['datetime'])
    elif isinstance(obj, dt.date):
        return obj.strftime(fmts['date'])
    elif isinstance(obj, dt.time):
        if obj.microsecond:
            return obj.strftime(fmts['time_micro'])
        return obj.strftime(fmts['time'])
    elif isinstance(obj, (bytes, bytearray, memoryview)):
        return bytes(obj).decode('utf-8', errors='replace')
    elif hasattr(obj, 'read'):
        # Handle LOB objects
        return to_string(obj.read())
    else:
        return str(obj)


def quote_identifier(identifier: str) -> str:
    """Backtick quote an identifier, doubling any embedded backticks."""
    return '`' + identifier.replace('`', '``') + '`'


def escape_string(value: str, backslash_escapes: bool = False) -> str:
    """
    Escape text for use inside a single quoted SQL literal.

    Every single quote is doubled. With backslash_escapes, backslashes are
    doubled first so servers that treat backslash as an escape character
    read the value back unchanged.
    """
    if backslash_escapes:
        value = value.replace('\\', '\\\\')
    return value.replace("'", "''")


def sql_literal(value: Any, backslash_escapes: bool = False) -> str:
    """
    Render a value as an SQL literal.

    Example
    -------
    ::
        >>> sql_literal("O'Brien")
        "'O''Brien'"
        >>> sql_literal(None)
        'NULL'
    """
    text = to_string(value)
    if text is None:
        return NULL
    return "'" + escape_string(text, backslash_escapes) + "'"


def format_tuple(row: Sequence[Any], backslash_escapes: bool = False) -> str:
    """Render one row as a parenthesised literal tuple: ('1','a',NULL)."""
    return '(' + ','.join(sql_literal(value, backslash_escapes) for value in row) + ')'


def column_list(columns: Iterable[str]) -> str:
    """Quoted, comma-joined column names: `id`,`name`"""
    return ','.join(quote_identifier(col) for col in columns)


# sqldump/exceptions.py
"""
Errors raised by sqldump itself.

Database driver errors (connectivity, permissions, syntax) are never wrapped;
they propagate to the caller as raised by the driver.
"""


class DumpError(Exception):
    """Base class for sqldump errors."""


class TableNotFoundError(DumpError, LookupError):
    """A table or view produced no creation statement."""

    def __init__(self, table: str, message: str = None):
        self.table = table
        super().__init__(message or f"Table {table} not found")


class MalformedStatementError(DumpError, ValueError):
    """A statement in a source stream could not be parsed for re-batching."""

    def __init__(self, message: str, statement: str = ''):
        self.statement = statement
        if statement:
            excerpt = statement if len(statement) <= 80 else statement[:77] + '...'
            message = f"{message}: {excerpt}"
        super().__init__(message)

# sqldump/dependency.py
"""
Foreign key aware table ordering.

Tables are ordered so that a referenced table comes before every table whose
foreign key points at it. The dump runs with foreign key checks disabled, so
this is a best-effort ordering: cycles are tolerated and broken arbitrarily
but deterministically.
"""

import logging
from typing import Callable, Dict, Iterable, List

logger = logging.getLogger(__name__)

__all__ = ['sort_tables', 'DependencySorter']


def sort_tables(tables: Iterable[str], get_dependents: Callable[[str], Iterable[str]]) -> List[str]:
    """
    Order tables so referenced tables precede the tables that reference them.

    Depth-first traversal over the "referenced-by" relation. A table is
    appended to the post-order list once all of its dependents have been
    visited, and the result is the reverse of that list. Roots and dependents
    are walked in reverse input order so that, after the final reversal,
    tables with no relationship between them keep their input order.

    Args:
        tables: Table names, in the order they should appear when unconstrained.
            Duplicates are ignored.
        get_dependents: Returns the tables whose foreign keys reference the
            given table. Names outside ``tables`` are ignored. Any exception
            raised aborts the sort.

    Returns:
        Every input table exactly once.

    Example
    -------
    ::

        >>> deps = {'users': ['orders'], 'orders': ['order_items']}
        >>> sort_tables(['order_items', 'orders', 'users'], lambda t: deps.get(t, []))
        ['users', 'orders', 'order_items']
    """
    order = list(dict.fromkeys(tables))
    position = {name: i for i, name in enumerate(order)}

    def dependents_of(table: str) -> List[str]:
        found = {name for name in get_dependents(table) if name in position and name != table}
        return sorted(found, key=position.__getitem__, reverse=True)

    visited = set()
    post_order = []
    for root in reversed(order):
        if root in visited:
            continue
        visited.add(root)
        stack = [(root, iter(dependents_of(root)))]
        while stack:
            table, pending = stack[-1]
            for child in pending:
                if child not in visited:
                    visited.add(child)
                    stack.append((child, iter(dependents_of(child))))
                    break
            else:
                stack.pop()
                post_order.append(table)

    post_order.reverse()
    return post_order


class DependencySorter:
    """
    Orders tables using foreign key metadata from a SchemaIntrospector.

    Lookups are cached for the lifetime of the sorter, so every table is
    queried at most once.

    Example
    -------
    ::

        sorter = DependencySorter(SchemaIntrospector(db))
        ordered = sorter.sort(['orders', 'users'])
    """

    def __init__(self, introspector):
        self.introspector = introspector
        self._dependents: Dict[str, List[str]] = {}

    def dependents(self, table: str) -> List[str]:
        """Tables referencing table, as reported by the server."""
        if table not in self._dependents:
            self._dependents[table] = self.introspector.get_referencing_tables(table)
        return self._dependents[table]

    def sort(self, tables: Iterable[str]) -> List[str]:
        ordered = sort_tables(tables, self.dependents)
        logger.debug(f"Table order: {', '.join(ordered)}")
        return ordered

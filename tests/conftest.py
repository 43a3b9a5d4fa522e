# tests/conftest.py
"""
Shared test fixtures and configuration for pytest.
"""

import copy
import io
import os
import re
import types
from pathlib import Path
from unittest.mock import patch

import pytest

from sqldump.database import Database, sqlite
from sqldump.defaults import settings


TEST_KEY = '2YvTXI9DHQPy4d6-ZC9NxcypvLMsJ94OBdmoHyjmwbM='


@pytest.fixture(autouse=True)
def setup_test_config():
    """Use tests/test.yml and a fixed encryption key; restore global settings afterwards."""
    from sqldump.config import set_config_file

    saved = copy.deepcopy(settings)
    test_config = Path(__file__).parent / 'test.yml'
    set_config_file(str(test_config))

    with patch.dict(os.environ, {'SQLDUMP_ENCRYPTION_KEY': TEST_KEY}):
        yield

    settings.clear()
    settings.update(saved)


class FakeMySQLError(Exception):
    """Stands in for the driver's DatabaseError."""


class FakeServer:
    """
    In-memory MySQL server answering the statements sqldump issues.

    tables: name -> (create_sql, columns, rows)
    views: name -> create_sql
    references: referenced table -> tables whose foreign keys point at it
    """

    def __init__(self, tables=None, views=None, references=None):
        self.tables = dict(tables or {})
        self.views = dict(views or {})
        self.references = dict(references or {})
        self.database = None
        self.executed = []
        self.fetch_sizes = []
        self.commits = 0
        # cursor class requested for each cursor, None for the default
        self.cursor_classes = []
        # name -> COUNT(*) answer that disagrees with the rows
        self.count_override = {}
        # names whose SHOW CREATE TABLE misbehaves
        self.empty_create = set()
        self.narrow_create = set()

    def listing(self):
        return list(self.tables) + list(self.views)


class FakeCursor:
    def __init__(self, server):
        self.server = server
        self.description = None
        self._rows = []
        self.arraysize = 1

    def _result(self, columns, rows):
        self.description = [(name, None, None, None, None, None, None) for name in columns]
        self._rows = [tuple(row) for row in rows]

    def execute(self, query, params=None):
        server = self.server
        server.executed.append(query)
        self.description = None
        self._rows = []

        match = re.match(r"^USE `((?:[^`]|``)+)`$", query)
        if match:
            server.database = match.group(1).replace('``', '`')
            return
        if query == 'SHOW TABLES':
            self._result([f'Tables_in_{server.database}'], [[name] for name in server.listing()])
            return
        if "TABLE_TYPE = 'VIEW'" in query:
            self._result(['TABLE_NAME'], [[name] for name in server.views])
            return
        match = re.search(r"REFERENCED_TABLE_NAME = '((?:[^']|'')*)'", query)
        if match:
            table = match.group(1).replace("''", "'")
            self._result(['TABLE_NAME'], [[name] for name in server.references.get(table, [])])
            return
        match = re.match(r"^SHOW CREATE TABLE `((?:[^`]|``)+)`$", query)
        if match:
            name = match.group(1).replace('``', '`')
            if name in server.narrow_create:
                self._result(['Table'], [[name]])
            elif name in server.empty_create:
                self._result(['Table', 'Create Table'], [])
            elif name in server.tables:
                self._result(['Table', 'Create Table'], [[name, server.tables[name][0]]])
            elif name in server.views:
                self._result(['View', 'Create View', 'character_set_client', 'collation_connection'],
                             [[name, server.views[name], 'utf8mb4', 'utf8mb4_general_ci']])
            else:
                raise FakeMySQLError(f"Table '{server.database}.{name}' doesn't exist")
            return
        match = re.match(r"^SELECT (COUNT\(\*\)|\*) FROM `((?:[^`]|``)+)`$", query)
        if match:
            name = match.group(2).replace('``', '`')
            if name not in server.tables:
                raise FakeMySQLError(f"Table '{server.database}.{name}' doesn't exist")
            _, columns, rows = server.tables[name]
            if match.group(1) == '*':
                self._result(columns, rows)
            else:
                self._result(['COUNT(*)'], [[server.count_override.get(name, len(rows))]])
            return
        raise FakeMySQLError(f"Unsupported statement: {query}")

    def fetchone(self):
        if not self._rows:
            return None
        return self._rows.pop(0)

    def fetchmany(self, size=None):
        size = size or self.arraysize
        self.server.fetch_sizes.append(size)
        rows, self._rows = self._rows[:size], self._rows[size:]
        return rows

    def fetchall(self):
        rows, self._rows = self._rows, []
        return rows

    def close(self):
        pass


class FakeConnection:
    def __init__(self, server):
        self.server = server

    def cursor(self, cursor=None):
        self.server.cursor_classes.append(cursor)
        return FakeCursor(self.server)

    def commit(self):
        self.server.commits += 1

    def rollback(self):
        pass

    def close(self):
        pass


def fake_interface():
    """A module object that registers as pymysql."""
    module = types.ModuleType('pymysql')
    module.DatabaseError = FakeMySQLError
    module.paramstyle = 'pyformat'
    return module


USERS_DDL = ("CREATE TABLE `users` (\n"
             "  `id` int NOT NULL,\n"
             "  `name` varchar(50) DEFAULT NULL,\n"
             "  PRIMARY KEY (`id`)\n"
             ") ENGINE=InnoDB DEFAULT CHARSET=utf8mb4")
ORDERS_DDL = ("CREATE TABLE `orders` (\n"
              "  `id` int NOT NULL,\n"
              "  `user_id` int NOT NULL,\n"
              "  PRIMARY KEY (`id`),\n"
              "  CONSTRAINT `fk_orders_users` FOREIGN KEY (`user_id`) REFERENCES `users` (`id`)\n"
              ") ENGINE=InnoDB DEFAULT CHARSET=utf8mb4")
ORDER_ITEMS_DDL = ("CREATE TABLE `order_items` (\n"
                   "  `order_id` int NOT NULL,\n"
                   "  `sku` varchar(20) NOT NULL,\n"
                   "  CONSTRAINT `fk_items_orders` FOREIGN KEY (`order_id`) REFERENCES `orders` (`id`)\n"
                   ") ENGINE=InnoDB DEFAULT CHARSET=utf8mb4")
NOTES_DDL = "CREATE TABLE `notes` (\n  `body` text\n) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4"
ACTIVE_USERS_DDL = ("CREATE ALGORITHM=UNDEFINED DEFINER=`root`@`%` SQL SECURITY DEFINER VIEW "
                    "`active_users` AS select `users`.`id` AS `id` from `users`")


@pytest.fixture
def shop_server():
    """Shop schema listed children first: order_items -> orders -> users, plus notes and a view."""
    return FakeServer(
        tables={
            'order_items': (ORDER_ITEMS_DDL, ['order_id', 'sku'], [[10, 'A-1'], [10, 'B-2'], [11, 'A-1']]),
            'orders': (ORDERS_DDL, ['id', 'user_id'], [[10, 1], [11, 2]]),
            'users': (USERS_DDL, ['id', 'name'], [[1, "O'Brien"], [2, None], [3, 'Ann']]),
            'notes': (NOTES_DDL, ['body'], []),
        },
        views={'active_users': ACTIVE_USERS_DDL},
        references={'users': ['orders'], 'orders': ['order_items']},
    )


@pytest.fixture
def shop_db(shop_server):
    """Database wrapper over the fake shop server."""
    return Database(FakeConnection(shop_server), fake_interface(), 'shop')


@pytest.fixture
def sqlite_db():
    """In-memory sqlite Database with a small people table."""
    db = sqlite(':memory:')
    cursor = db.cursor()
    cursor.execute("CREATE TABLE `people` (`id` INTEGER PRIMARY KEY, `name` TEXT)")
    db.commit()
    yield db
    db.close()


@pytest.fixture
def out():
    """Text buffer standing in for the dump destination."""
    return io.StringIO()

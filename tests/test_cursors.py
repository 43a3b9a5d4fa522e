# tests/test_cursors.py
import logging
import sqlite3

import pytest

from sqldump.cursors import Cursor
from sqldump.defaults import settings


@pytest.fixture
def people(sqlite_db):
    cursor = sqlite_db.cursor()
    for i, name in enumerate(['Ann', "O'Brien", None, 'Zed', 'Eve'], start=1):
        cursor.execute("INSERT INTO `people` (`id`, `name`) VALUES (?, ?)", (i, name))
    sqlite_db.commit()
    return sqlite_db


class TestCursor:
    """Test the Cursor wrapper over a sqlite connection."""

    def test_rows_are_lists(self, people):
        cursor = people.cursor()
        cursor.execute("SELECT `id`, `name` FROM `people` WHERE `id` = 2")
        assert cursor.fetchone() == [2, "O'Brien"]
        assert cursor.fetchone() is None

    def test_columns_keep_case(self, people):
        cursor = people.cursor()
        cursor.execute("SELECT `id` AS `UserId`, `name` FROM `people`")
        assert cursor.columns() == ['UserId', 'name']

    def test_columns_before_query(self, sqlite_db):
        assert sqlite_db.cursor().columns() == []

    def test_fetch_before_query(self, sqlite_db):
        with pytest.raises(Exception, match='Query has not been run'):
            sqlite_db.cursor().fetchall()

    def test_iteration(self, people):
        cursor = people.cursor()
        cursor.execute("SELECT `id` FROM `people` ORDER BY `id`")
        assert [row[0] for row in cursor] == [1, 2, 3, 4, 5]

    def test_batches(self, people):
        cursor = people.cursor()
        cursor.execute("SELECT `id` FROM `people` ORDER BY `id`")
        assert [len(batch) for batch in cursor.batches(2)] == [2, 2, 1]

    def test_batch_size_default(self, sqlite_db):
        assert sqlite_db.cursor().batch_size == settings['fetch_size']
        assert sqlite_db.cursor(batch_size=10).batch_size == 10

    def test_cursor_settings_from_connection(self, sqlite_db):
        sqlite_db.cursor_settings = {'batch_size': 3}
        assert sqlite_db.cursor().batch_size == 3

    def test_selectinto(self, people):
        cursor = people.cursor()
        assert cursor.selectinto("SELECT COUNT(*) FROM `people`") == [5]

    def test_selectinto_no_rows(self, people):
        cursor = people.cursor()
        with pytest.raises(sqlite3.DatabaseError, match='No Data Found'):
            cursor.selectinto("SELECT `id` FROM `people` WHERE `id` = 99")

    def test_selectinto_many_rows(self, people):
        cursor = people.cursor()
        with pytest.raises(sqlite3.DatabaseError, match='one and only one row'):
            cursor.selectinto("SELECT `id` FROM `people`")

    def test_debug_logs_statement(self, people, caplog):
        cursor = people.cursor(debug=True)
        with caplog.at_level(logging.DEBUG, logger='sqldump.cursors'):
            cursor.execute("SELECT 1")
        assert 'SELECT 1' in caplog.text

    def test_statement_remembered(self, people):
        cursor = people.cursor()
        cursor.execute("SELECT 1")
        assert cursor.statement == "SELECT 1"

    def test_delegates_to_driver_cursor(self, people):
        cursor = people.cursor()
        cursor.execute("SELECT 1")
        assert cursor.rowcount == -1

    def test_requires_connection(self):
        with pytest.raises(TypeError, match='must be a database connection'):
            Cursor(object())


class TestDatabase:
    """Test the Database wrapper."""

    def test_server_type(self, sqlite_db):
        assert sqlite_db.server_type == 'sqlite'

    def test_transaction_rolls_back(self, people):
        with pytest.raises(RuntimeError):
            with people.transaction():
                people.cursor().execute("DELETE FROM `people`")
                raise RuntimeError('boom')
        cursor = people.cursor()
        assert cursor.selectinto("SELECT COUNT(*) FROM `people`") == [5]

    def test_transaction_commits(self, people):
        with people.transaction():
            people.cursor().execute("DELETE FROM `people` WHERE `id` = 1")
        people.rollback()
        assert people.cursor().selectinto("SELECT COUNT(*) FROM `people`") == [4]

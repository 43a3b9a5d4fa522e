# tests/test_source.py
import io
import logging

import pytest

from sqldump.defaults import settings
from sqldump.exceptions import MalformedStatementError
from sqldump.source import (
    InsertMerger, InsertStatement, SourceOptions, SourceResult, StatementReader, parse_insert, source
)


class RecordingCursor:
    def __init__(self, db):
        self.db = db

    def execute(self, query):
        if self.db.fail_on and self.db.fail_on in query:
            raise RuntimeError(f"server rejected: {query}")
        self.db.executed.append(query)


class RecordingDatabase:
    """Stands in for a Database, recording every statement executed."""

    def __init__(self, fail_on=None):
        self.executed = []
        self.commits = 0
        self.rollbacks = 0
        self.fail_on = fail_on

    def cursor(self):
        return RecordingCursor(self)

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1


def read(text):
    return list(StatementReader(io.StringIO(text)))


class TestStatementReader:
    """Test splitting a stream into statements."""

    def test_splits_on_semicolons(self):
        assert read("SET FOREIGN_KEY_CHECKS=0;\nSET FOREIGN_KEY_CHECKS=1;\n") == [
            'SET FOREIGN_KEY_CHECKS=0;', 'SET FOREIGN_KEY_CHECKS=1;']

    def test_multiline_statement(self):
        text = "CREATE TABLE `t` (\n  `id` int\n);\n"
        assert read(text) == ["CREATE TABLE `t` (\n  `id` int\n);"]

    def test_several_on_one_line(self):
        assert read("COMMIT; SET AUTOCOMMIT=1;") == ['COMMIT;', 'SET AUTOCOMMIT=1;']

    def test_semicolon_inside_quotes(self):
        text = "INSERT INTO `t` VALUES ('a;b'),(\"c;d\");\nINSERT INTO `semi;colon` VALUES ('x');\n"
        assert read(text) == ["INSERT INTO `t` VALUES ('a;b'),(\"c;d\");",
                              "INSERT INTO `semi;colon` VALUES ('x');"]

    def test_doubled_and_escaped_quotes(self):
        text = "INSERT INTO `t` VALUES ('O''Brien;'),('it\\'s;');\nCOMMIT;\n"
        assert read(text) == ["INSERT INTO `t` VALUES ('O''Brien;'),('it\\'s;');", 'COMMIT;']

    def test_quote_spanning_lines(self):
        text = "INSERT INTO `t` VALUES ('line one;\nline two');\n"
        assert read(text) == ["INSERT INTO `t` VALUES ('line one;\nline two');"]

    def test_comment_lines_skipped(self):
        text = ("-- ----------------------------\n"
                "-- Records of O'Brien (2 Rows)\n"
                "# another comment\n"
                "--\n"
                "COMMIT; -- trailing\n"
                "\n")
        assert read(text) == ['COMMIT;']

    def test_unterminated_tail_yielded(self):
        assert read("COMMIT;\nSET AUTOCOMMIT=1") == ['COMMIT;', 'SET AUTOCOMMIT=1']

    def test_unterminated_quote(self):
        with pytest.raises(MalformedStatementError, match="Unterminated ' quote"):
            read("INSERT INTO `t` VALUES ('oops);\n")

    def test_empty_statements_dropped(self):
        assert read(";\n;\nCOMMIT;") == ['COMMIT;']

    def test_escaped_backslash_before_quote(self):
        text = "INSERT INTO `t` VALUES ('C:\\\\');\nCOMMIT;\n"
        assert read(text) == ["INSERT INTO `t` VALUES ('C:\\\\');", 'COMMIT;']

    def test_backslash_plain_when_escapes_off(self):
        text = "INSERT INTO `t` VALUES ('C:\\');\nCOMMIT;\n"
        reader = StatementReader(io.StringIO(text), backslash_escapes=False)
        assert list(reader) == ["INSERT INTO `t` VALUES ('C:\\');", 'COMMIT;']

    def test_escapes_follow_setting(self):
        settings['backslash_escapes'] = False
        assert StatementReader(io.StringIO('')).backslash_escapes is False


class TestParseInsert:
    """Test recognising INSERT statements."""

    def test_with_columns(self):
        insert = parse_insert("INSERT INTO `t` (`a`,`b`) VALUES ('1','x'),('2',NULL);")
        assert insert.table == '`t`'
        assert insert.columns == '(`a`,`b`)'
        assert insert.tuples == ["('1','x')", "('2',NULL)"]

    def test_without_columns(self):
        insert = parse_insert("insert into orders values (1, 'a'), (2, 'b')")
        assert insert.table == 'orders'
        assert insert.columns == ''
        assert insert.tuples == ["(1, 'a')", "(2, 'b')"]

    def test_qualified_table(self):
        assert parse_insert("INSERT INTO `shop`.`t` VALUES (1);").table == '`shop`.`t`'

    def test_parentheses_inside_values(self):
        insert = parse_insert("INSERT INTO `t` VALUES ('(x)'),(CONCAT('a', ')'));")
        assert insert.tuples == ["('(x)')", "(CONCAT('a', ')'))"]

    def test_not_an_insert(self):
        assert parse_insert("CREATE TABLE `t` (`id` int);") is None
        assert parse_insert("LOCK TABLES `t` WRITE;") is None

    def test_trailing_clause_not_mergeable(self):
        assert parse_insert("INSERT INTO `t` VALUES (1) ON DUPLICATE KEY UPDATE `id` = 1;") is None

    def test_unbalanced_tuple(self):
        with pytest.raises(MalformedStatementError, match="Unbalanced"):
            parse_insert("INSERT INTO `t` VALUES ('1','a';")

    def test_backslash_plain_when_escapes_off(self):
        insert = parse_insert("INSERT INTO `t` VALUES ('C:\\'),('x');", backslash_escapes=False)
        assert insert.tuples == ["('C:\\')", "('x')"]

    def test_no_tuples(self):
        with pytest.raises(MalformedStatementError, match="no VALUES tuples"):
            parse_insert("INSERT INTO `t` VALUES ;")

    def test_to_sql(self):
        insert = InsertStatement('`t`', '(`a`)', ["('1')", "('2')"])
        assert insert.to_sql() == "INSERT INTO `t` (`a`) VALUES ('1'),('2');"
        assert insert.to_sql(["('3')"]) == "INSERT INTO `t` (`a`) VALUES ('3');"

    def test_retarget(self):
        insert = InsertStatement('`t`', '', ["('1')"]).retarget('t_copy')
        assert insert.to_sql() == "INSERT INTO `t_copy` VALUES ('1');"


class TestInsertMerger:
    """Test re-batching of INSERT tuples."""

    def test_three_rows_merge_size_two(self):
        executed = []
        merger = InsertMerger(executed.append, 2)
        for value in ['a', 'b', 'c']:
            merger.add(parse_insert(f"INSERT INTO `t` (`v`) VALUES ('{value}');"))
        merger.flush()

        assert executed == ["INSERT INTO `t` (`v`) VALUES ('a'),('b');",
                            "INSERT INTO `t` (`v`) VALUES ('c');"]
        assert merger.statements == 2
        assert merger.rows == 3

    @pytest.mark.parametrize('tuple_total, merge_size, expected', [(1, 5, 1), (10, 5, 2), (11, 5, 3), (7, 1, 7)])
    def test_ceiling_law(self, tuple_total, merge_size, expected):
        executed = []
        merger = InsertMerger(executed.append, merge_size)
        for i in range(tuple_total):
            merger.add(InsertStatement('`t`', '', [f"('{i}')"]))
        merger.flush()
        assert len(executed) == expected

    def test_large_statement_split(self):
        executed = []
        merger = InsertMerger(executed.append, 2)
        merger.add(InsertStatement('`t`', '', ["(1)", "(2)", "(3)", "(4)", "(5)"]))
        merger.flush()
        assert executed == ["INSERT INTO `t` VALUES (1),(2);", "INSERT INTO `t` VALUES (3),(4);",
                            "INSERT INTO `t` VALUES (5);"]

    def test_flush_on_table_change(self):
        executed = []
        merger = InsertMerger(executed.append, 10)
        merger.add(InsertStatement('`a`', '', ["(1)"]))
        merger.add(InsertStatement('`b`', '', ["(2)"]))
        merger.add(InsertStatement('`b`', '', ["(3)"]))
        merger.flush()
        assert executed == ["INSERT INTO `a` VALUES (1);", "INSERT INTO `b` VALUES (2),(3);"]

    def test_flush_on_column_change(self):
        executed = []
        merger = InsertMerger(executed.append, 10)
        merger.add(InsertStatement('`a`', '(`x`)', ["(1)"]))
        merger.add(InsertStatement('`a`', '(`y`)', ["(2)"]))
        merger.flush()
        assert len(executed) == 2

    def test_flush_when_empty(self):
        executed = []
        InsertMerger(executed.append, 3).flush()
        assert executed == []

    def test_invalid_size(self):
        with pytest.raises(ValueError, match="merge_size must be positive"):
            InsertMerger(print, 0)


DUMP_TEXT = """\
-- ----------------------------
-- MySQL Database Dump
-- ----------------------------
SET FOREIGN_KEY_CHECKS=0;

-- ----------------------------
-- Table structure for people
-- ----------------------------
CREATE TABLE IF NOT EXISTS `people` (
  `id` INTEGER PRIMARY KEY,
  `name` TEXT
);

INSERT INTO `people` (`id`,`name`) VALUES ('1','O''Brien');
INSERT INTO `people` (`id`,`name`) VALUES ('2',NULL);
INSERT INTO `people` (`id`,`name`) VALUES ('3','semi;colon');

SET FOREIGN_KEY_CHECKS=1;
"""


class TestSource:
    """Test replaying statements against a connection."""

    def test_verbatim_without_merge(self):
        db = RecordingDatabase()
        result = source(db, io.StringIO(DUMP_TEXT))

        assert db.executed[0] == 'SET FOREIGN_KEY_CHECKS=0;'
        assert db.executed[2] == "INSERT INTO `people` (`id`,`name`) VALUES ('1','O''Brien');"
        assert len(db.executed) == 6
        assert result == SourceResult(statements=6, rows=0)
        assert db.commits == 1

    def test_merge_size_two(self):
        db = RecordingDatabase()
        result = source(db, io.StringIO(DUMP_TEXT), merge_size=2)

        inserts = [q for q in db.executed if q.startswith('INSERT')]
        assert inserts == [
            "INSERT INTO `people` (`id`,`name`) VALUES ('1','O''Brien'),('2',NULL);",
            "INSERT INTO `people` (`id`,`name`) VALUES ('3','semi;colon');",
        ]
        assert db.executed[-1] == 'SET FOREIGN_KEY_CHECKS=1;'
        assert result.statements == 5
        assert result.rows == 3

    def test_pending_rows_flushed_before_other_statements(self):
        db = RecordingDatabase()
        source(db, io.StringIO(DUMP_TEXT), merge_size=100)
        assert db.executed[-2:] == [
            "INSERT INTO `people` (`id`,`name`) VALUES ('1','O''Brien'),('2',NULL),('3','semi;colon');",
            'SET FOREIGN_KEY_CHECKS=1;',
        ]

    def test_table_override(self):
        db = RecordingDatabase()
        result = source(db, io.StringIO(DUMP_TEXT), table='people_copy')
        inserts = [q for q in db.executed if q.startswith('INSERT')]
        assert all(q.startswith('INSERT INTO `people_copy` (`id`,`name`) VALUES') for q in inserts)
        assert result.rows == 3

    def test_database_switch(self):
        db = RecordingDatabase()
        source(db, io.StringIO("COMMIT;"), database='shop_restore')
        assert db.executed == ['USE `shop_restore`', 'COMMIT;']

    def test_debug_echo(self, caplog):
        db = RecordingDatabase()
        with caplog.at_level(logging.INFO, logger='sqldump.source'):
            source(db, io.StringIO(DUMP_TEXT), merge_size=2, debug=True)
        echoed = [r.getMessage() for r in caplog.records if r.name == 'sqldump.source']
        assert echoed[:-1] == db.executed

    def test_no_echo_without_debug(self, caplog):
        db = RecordingDatabase()
        with caplog.at_level(logging.INFO, logger='sqldump.source'):
            source(db, io.StringIO("COMMIT;"))
        assert 'COMMIT;' not in [r.getMessage() for r in caplog.records]

    def test_error_stops_without_rollback(self):
        db = RecordingDatabase(fail_on="'2'")
        with pytest.raises(RuntimeError, match="server rejected"):
            source(db, io.StringIO(DUMP_TEXT))
        assert len(db.executed) == 3
        assert db.rollbacks == 0
        assert db.commits == 0

    def test_no_commit(self):
        db = RecordingDatabase()
        source(db, io.StringIO("COMMIT;"), commit=False)
        assert db.commits == 0

    def test_malformed_insert_when_merging(self):
        db = RecordingDatabase()
        with pytest.raises(MalformedStatementError):
            source(db, io.StringIO("INSERT INTO `t` VALUES ((1);\n"), merge_size=10)

    def test_merge_size_from_settings(self):
        settings['merge_insert_size'] = 3
        db = RecordingDatabase()
        result = source(db, io.StringIO(DUMP_TEXT))
        assert len([q for q in db.executed if q.startswith('INSERT')]) == 1
        assert result.rows == 3

    def test_explicit_zero_disables_merging(self):
        settings['merge_insert_size'] = 3
        db = RecordingDatabase()
        source(db, io.StringIO(DUMP_TEXT), merge_size=0)
        assert len([q for q in db.executed if q.startswith('INSERT')]) == 3

    def test_options_object(self):
        db = RecordingDatabase()
        options = SourceOptions(merge_size=2, file=io.StringIO(DUMP_TEXT))
        assert source(db, options=options).rows == 3

    def test_unknown_option(self):
        with pytest.raises(TypeError, match="Unknown source options: size"):
            source(RecordingDatabase(), io.StringIO(''), size=3)

    def test_negative_merge_size(self):
        with pytest.raises(ValueError, match="cannot be negative"):
            SourceOptions(merge_size=-1)

    def test_reads_path(self, tmp_path):
        path = tmp_path / 'dump.sql'
        path.write_text(DUMP_TEXT, encoding='utf-8')
        db = RecordingDatabase()
        assert source(db, str(path)).statements == 6


SQLITE_TEXT = "\n".join(line for line in DUMP_TEXT.splitlines() if not line.startswith("SET "))


class TestSourceIntoSqlite:
    """Test a real replay into sqlite."""

    def test_rows_loaded(self, sqlite_db):
        sqlite_db.cursor().execute("DROP TABLE `people`")
        result = source(sqlite_db, io.StringIO(SQLITE_TEXT), merge_size=2)

        cursor = sqlite_db.cursor()
        cursor.execute("SELECT `id`, `name` FROM `people` ORDER BY `id`")
        assert cursor.fetchall() == [[1, "O'Brien"], [2, None], [3, 'semi;colon']]
        assert result.rows == 3

    def test_same_rows_with_and_without_merge(self, sqlite_db):
        sqlite_db.cursor().execute("DROP TABLE `people`")
        source(sqlite_db, io.StringIO(SQLITE_TEXT))
        cursor = sqlite_db.cursor()
        cursor.execute("SELECT `id`, `name` FROM `people` ORDER BY `id`")
        plain = cursor.fetchall()

        cursor.execute("DROP TABLE `people`")
        source(sqlite_db, io.StringIO(SQLITE_TEXT), merge_size=3)
        cursor.execute("SELECT `id`, `name` FROM `people` ORDER BY `id`")
        assert cursor.fetchall() == plain


PATHS_DDL = "CREATE TABLE `paths` (\n  `id` int NOT NULL,\n  `path` text\n) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4"


class TestDumpThenSource:
    """Test that a dump replays to the same values."""

    @pytest.fixture
    def paths_db(self):
        from conftest import FakeConnection, FakeServer, fake_interface
        from sqldump.database import Database

        server = FakeServer(tables={'paths': (PATHS_DDL, ['id', 'path'], [[1, 'C:\\'], [2, "a\\'b"]])})
        return Database(FakeConnection(server), fake_interface(), 'files')

    @pytest.mark.parametrize('escapes, tuples', [
        (True, ["('1','C:\\\\')", "('2','a\\\\''b')"]),
        (False, ["('1','C:\\')", "('2','a\\''b')"]),
    ])
    @pytest.mark.parametrize('merge_size', [0, 2])
    def test_backslash_values(self, paths_db, escapes, tuples, merge_size):
        from sqldump.dump import dump

        out = io.StringIO()
        dump(paths_db, 'files', data=True, file=out, backslash_escapes=escapes)
        dumped = [line for line in out.getvalue().splitlines() if line.startswith('INSERT INTO `paths`')]
        assert dumped == ["INSERT INTO `paths` (`id`,`path`) VALUES " + ','.join(tuples) + ';']

        db = RecordingDatabase()
        out.seek(0)
        source(db, out, merge_size=merge_size, backslash_escapes=escapes)

        assert [q for q in db.executed if q.startswith('INSERT')] == dumped
        assert db.executed[-1] == 'SET FOREIGN_KEY_CHECKS=1;'
        assert parse_insert(dumped[0], escapes).tuples == tuples

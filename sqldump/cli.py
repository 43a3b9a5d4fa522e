# sqldump/cli.py

import argparse
import importlib.util
import logging
import sys
from importlib.metadata import distributions, requires, PackageNotFoundError

from . import config
from .database import get_all_drivers
from .defaults import settings
from .dump import DumpOptions, dump
from .logging_utils import setup_logging
from .source import source

logger = logging.getLogger(__name__)


def _name_cleanup(name):
    """Cleanup module names for search and display"""
    return name.lower().replace('-', '_')


def _get_optional_deps(extra_name='recommended'):
    """ Get optional dependencies for sqldump """
    try:
        reqs = requires('sqldump') or []
    except PackageNotFoundError:
        return []
    deps = []
    # Parse requirements like: 'keyring>=24; extra == "recommended"'
    for req in reqs:
        req = req.replace("'", '"')  # quoting changed between versions
        if f'extra == "{extra_name}"' in req:
            pkg = req.split(';')[0].strip()
            deps.append(pkg.split('>=')[0].split('==')[0].split('<')[0].strip())
    return deps


def _is_installed(pkg: str, installed: dict) -> bool:
    pkg = _name_cleanup(pkg)
    try:
        found = importlib.util.find_spec(pkg) is not None
    except (ImportError, ValueError):
        found = False
    return found or pkg in sys.modules or pkg in installed


def checkup():
    """ Check which optional dependencies are installed."""
    installed = {_name_cleanup(d.metadata['Name']): d.version for d in distributions()}

    print(f"{'Package':<24} {'Status':<8} {'Version'}")
    print("-" * 44)
    for dep in _get_optional_deps('recommended'):
        status = "✓" if _is_installed(dep, installed) else "✗"
        version = installed.get(_name_cleanup(dep), '-')
        print(f"{dep:<24} {status:<8} {version}")

    print("\nDB Drivers           Priority* Status   Version")
    print("-" * 56)
    by_type = {}
    for name, info in get_all_drivers().items():
        by_type.setdefault(info['database_type'], []).append((info['priority'], name, info))

    for db_type in sorted(by_type):
        print(f"{db_type}")
        for pri, name, info in sorted(by_type[db_type], key=lambda x: x[0]):
            module_name = info.get('module', name)
            try:
                status = "✓" if importlib.util.find_spec(module_name) else "✗"
            except ModuleNotFoundError:
                status = "✗"
            version = installed.get(_name_cleanup(module_name), '--')
            print(f"{'  ' + name:<20} {pri:<9} {status:<8} {version}")

    print("\n* Lower priority = preferred")

    print("\nConfig Health")
    print("-" * 40)
    for status, msg in config.diagnose_config():
        print(f"{status} {msg}")
    return 0


def _run_dump(args) -> int:
    db = config.connect(args.connection)
    database_name = args.database or db.database_name
    if not database_name:
        db.close()
        print(f"No database given and connection '{args.connection}' has none configured", file=sys.stderr)
        return 2

    options = DumpOptions(
        tables=args.tables or (),
        views=args.views or (),
        all_tables=args.all_tables,
        all_views=args.all_views,
        data=args.data,
        drop_tables=args.drop_tables,
        drop_views=args.drop_views,
        use_database=args.use_database,
        transaction=args.transaction,
        batch_size=args.batch_size,
        backslash_escapes=args.backslash_escapes,
        file=args.output,
    )
    with db:
        result = dump(db, database_name, options)
    print(f"Dumped {result.table_count} tables, {len(result.views)} views, "
          f"{result.row_count} rows in {result.elapsed:.2f}s", file=sys.stderr)
    return 0


def _run_source(args) -> int:
    db = config.connect(args.connection)
    stream = sys.stdin if args.file == '-' else args.file
    with db:
        result = source(db, stream,
                        merge_size=args.merge_size,
                        debug=args.debug,
                        table=args.table,
                        database=args.database,
                        backslash_escapes=args.backslash_escapes,
                        commit=not args.no_commit)
    print(f"Executed {result.statements} statements, {result.rows} rows", file=sys.stderr)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='sqldump', description='Dump and restore MySQL databases as SQL')
    parser.add_argument('--config', help='Config file (default: ./sqldump.yml or ~/.config/sqldump.yml)')
    parser.add_argument('--log-dir', help='Write timestamped log files to this directory')
    parser.add_argument('--log-level', default=None, help='DEBUG, INFO, WARNING or ERROR')
    subparsers = parser.add_subparsers(dest='command', required=True)

    # dump
    dump_parser = subparsers.add_parser('dump', help='Dump a database to SQL')
    dump_parser.add_argument('connection', help='Connection name from the config file')
    dump_parser.add_argument('--database', '-d', help="Database to dump (default: the connection's database)")
    dump_parser.add_argument('--tables', '-t', nargs='+', metavar='TABLE', help='Tables to dump (default: all)')
    dump_parser.add_argument('--all-tables', action='store_true', help='Dump every table, ignoring --tables')
    dump_parser.add_argument('--views', nargs='+', metavar='VIEW', help='Views to dump')
    dump_parser.add_argument('--all-views', action='store_true', help='Dump every view')
    dump_parser.add_argument('--data', action='store_true', help='Include table rows')
    dump_parser.add_argument('--drop-tables', action='store_true', help='Add DROP TABLE IF EXISTS before each table')
    dump_parser.add_argument('--drop-views', action='store_true', help='Add DROP VIEW IF EXISTS before each view')
    dump_parser.add_argument('--use-database', action='store_true', help='Add a USE statement for the database')
    dump_parser.add_argument('--transaction', action='store_true', help='Wrap table data in a transaction')
    dump_parser.add_argument('--batch-size', type=int, default=None,
                             help=f"Rows per INSERT (default: {settings['insert_batch_size']})")
    dump_parser.add_argument('--no-backslash-escapes', dest='backslash_escapes', action='store_const',
                             const=False, help='Leave backslashes as is, for NO_BACKSLASH_ESCAPES servers')
    dump_parser.add_argument('--output', '-o', help='Output file (default: stdout)')

    # source
    source_parser = subparsers.add_parser('source', help='Execute a SQL dump against a database')
    source_parser.add_argument('connection', help='Connection name from the config file')
    source_parser.add_argument('file', help="Dump file, or '-' for stdin")
    source_parser.add_argument('--merge-size', type=int, default=None,
                               help='Merge INSERTs into statements of this many rows (default: no merging)')
    source_parser.add_argument('--table', help='Insert into this table instead')
    source_parser.add_argument('--database', '-d', help='Switch to this database first')
    source_parser.add_argument('--debug', action='store_true', help='Log each statement before executing it')
    source_parser.add_argument('--no-commit', action='store_true', help='Do not commit when finished')
    source_parser.add_argument('--no-backslash-escapes', dest='backslash_escapes', action='store_const',
                               const=False, help='Read backslashes in literals as plain characters')

    # checkup
    subparsers.add_parser('checkup', help='Check for dependencies and configuration issues')

    # generate-key
    subparsers.add_parser('generate-key', help='Generate encryption key')

    # store-key
    key_parser = subparsers.add_parser('store-key',
                                       help='Store encryption key in system keyring (generate if not provided)')
    key_parser.add_argument('key', nargs='?', default=None,
                            help='Encryption key to store. If omitted, a new key is generated and stored.')
    key_parser.add_argument('--force', action='store_true',
                            help='Overwrite existing encryption key in system keyring')

    # encrypt-config
    encrypt_parser = subparsers.add_parser('encrypt-config', help='Encrypt passwords in config file')
    encrypt_parser.add_argument('config_file', help='Config file path')

    # encrypt-password
    pwd_parser = subparsers.add_parser('encrypt-password', help='Encrypt a password')
    pwd_parser.add_argument('password', nargs='?', help='Password to encrypt (prompts if omitted)')

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        if args.config:
            config.set_config_file(args.config)
        if args.log_dir:
            setup_logging('sqldump', log_dir=args.log_dir, level=args.log_level)
        else:
            logging.basicConfig(level=(args.log_level or 'WARNING').upper(), stream=sys.stderr,
                                format='%(levelname)s %(name)s: %(message)s')
        source_logger = logging.getLogger('sqldump.source')
        if getattr(args, 'debug', False) and source_logger.getEffectiveLevel() > logging.INFO:
            # the statement echo is logged at INFO
            source_logger.setLevel(logging.INFO)

        if args.command == 'dump':
            return _run_dump(args)
        elif args.command == 'source':
            return _run_source(args)
        elif args.command == 'checkup':
            return checkup()
        elif args.command == 'generate-key':
            print(config.generate_encryption_key())
        elif args.command == 'store-key':
            config.store_key(args.key, force=args.force)
        elif args.command == 'encrypt-config':
            config.encrypt_config_file(args.config_file)
        elif args.command == 'encrypt-password':
            config.encrypt_password(args.password)
    except (FileNotFoundError, ValueError) as e:
        logger.error(str(e))
        print(f"sqldump: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())

# sqldump/database.py
"""
Database connection wrapper that provides a uniform interface
to the MySQL family of DB-API adapters (and sqlite3 for local use).
"""

import importlib
import importlib.util
import logging
import os
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

from .cursors import Cursor

logger = logging.getLogger(__name__)

# users can define their own drivers in the config file
_user_drivers = {}

# streaming_cursor holds the cursor() keyword arguments for an unbuffered
# cursor; 'module:Class' strings are imported when the cursor is created
DRIVERS = {
    # MySQL / MariaDB Drivers
    'pymysql': {
        'database_type': 'mysql',
        'priority': 11,
        'param_map': {},
        'required_params': [{'host', 'user'}, {'unix_socket', 'user'}],
        'optional_params': {'port', 'password', 'database', 'charset', 'sql_mode', 'read_default_file',
                            'connect_timeout', 'read_timeout', 'write_timeout', 'autocommit',
                            'init_command', 'bind_address', 'unix_socket', 'ssl_ca', 'ssl_cert', 'ssl_key'},
        'connection_method': 'kwargs',
        'streaming_cursor': {'cursor': 'pymysql.cursors:SSCursor'},
        'default_port': 3306
    },
    'MySQLdb': {  # mysqlclient
        'database_type': 'mysql',
        'priority': 12,
        'param_map': {'database': 'db', 'password': 'passwd'},
        'required_params': [{'host', 'user'}, {'unix_socket', 'user'}],
        'optional_params': {'port', 'password', 'database', 'charset', 'use_unicode', 'sql_mode',
                            'read_default_file', 'connect_timeout', 'compress', 'init_command',
                            'read_default_group', 'unix_socket', 'autocommit'},
        'connection_method': 'kwargs',
        'streaming_cursor': {'cursorclass': 'MySQLdb.cursors:SSCursor'},
        'default_port': 3306
    },
    'mysql.connector': {
        'database_type': 'mysql',
        'priority': 13,
        'param_map': {},
        'required_params': [{'host', 'user'}, {'unix_socket', 'user'}],
        'optional_params': {'port', 'password', 'database', 'charset', 'collation', 'autocommit',
                            'time_zone', 'sql_mode', 'use_unicode', 'connection_timeout', 'unix_socket'},
        'connection_method': 'kwargs',
        'streaming_cursor': {'buffered': False},
        'default_port': 3306
    },

    # SQLite Driver
    'sqlite3': {
        'database_type': 'sqlite',
        'priority': 1,
        'param_map': {},
        'required_params': [{'database'}],
        'optional_params': {'timeout', 'detect_types', 'isolation_level', 'check_same_thread',
                            'cached_statements', 'uri'},
        'connection_method': 'kwargs'
    }
}


def register_user_drivers(drivers_config: dict) -> None:
    """Register drivers from config file."""
    _user_drivers.update(drivers_config)


def get_all_drivers() -> dict:
    """Get combined built-in and user drivers."""
    return {**DRIVERS, **_user_drivers}


def _driver_available(module_name: str) -> bool:
    """True when the driver module can be imported."""
    try:
        return importlib.util.find_spec(module_name) is not None
    except ModuleNotFoundError:
        # parent package of a dotted module (mysql.connector) is missing
        return False


def get_drivers_for_database(db_type: str, valid_only: bool = True) -> List[str]:
    """
    Gets a list of drivers available for the specified database type.

    Parameters:
        db_type (str): The type of database for which to retrieve drivers.
        valid_only (bool): Only include drivers that are currently importable.

    Returns:
        List[str]: Driver names sorted by priority, lowest first.
    """
    all_drivers = get_all_drivers()
    available_drivers = []

    for driver_name, info in all_drivers.items():
        if info['database_type'] != db_type:
            continue
        if valid_only and not _driver_available(info.get('module', driver_name)):
            continue
        available_drivers.append(driver_name)

    def sort_key(driver_name):
        priority = all_drivers[driver_name]['priority']
        # User drivers get slight priority boost for tie-breaking
        if driver_name in _user_drivers:
            priority -= 0.5
        return priority

    available_drivers.sort(key=sort_key)
    return available_drivers


def get_params_for_database(db_type: str, driver: str = None) -> set:
    """Get all valid parameters for a database type from DRIVERS metadata."""
    valid_params = set()

    for driver_name, driver_info in get_all_drivers().items():
        if driver_info['database_type'] != db_type:
            continue
        if driver and driver_name != driver:
            continue
        for param_set in driver_info['required_params']:
            valid_params.update(param_set)
        valid_params.update(driver_info.get('optional_params', set()))

    return valid_params


def validate_connection_params(driver_name: str, **params) -> dict:
    """
    Validate connection parameters against driver requirements.

    Args:
        driver_name: Name of the database driver
        **params: Connection parameters

    Returns:
        Dict of validated parameters with extras removed and names mapped
        to the driver's keyword arguments

    Raises:
        ValueError: If the driver is unknown or required parameters are missing
    """
    all_drivers = get_all_drivers()
    if driver_name not in all_drivers:
        raise ValueError(f"Unknown driver: {driver_name}")

    driver_info = all_drivers[driver_name]
    params = {key: val for key, val in params.items() if val is not None}

    if 'port' not in params and driver_info.get('default_port'):
        params['port'] = driver_info['default_port']

    if not any(required.issubset(params.keys()) for required in driver_info['required_params']):
        raise ValueError(f"Missing required parameters. Need one of: {driver_info['required_params']}")

    param_map = driver_info.get('param_map', {})
    all_valid_params = set(driver_info.get('optional_params', set()))
    for req_set in driver_info['required_params']:
        all_valid_params.update(req_set)

    validated_params = {}
    for key, value in params.items():
        if key in all_valid_params:
            validated_params[param_map.get(key, key)] = value
        else:
            logger.debug(f"Ignoring parameter '{key}' not supported by {driver_name}")

    return validated_params


def _resolve_cursor_options(options: dict) -> dict:
    """Import any 'module:Class' values in a cursor option dict."""
    resolved = {}
    for key, value in options.items():
        if isinstance(value, str) and ':' in value:
            module_name, attr = value.split(':', 1)
            value = getattr(importlib.import_module(module_name), attr)
        resolved[key] = value
    return resolved


class Database:
    """
    Database connection wrapper that provides uniform interface
    across different database adapters.

    Attribute access not handled here is delegated to the underlying
    connection, so ``commit()``, ``rollback()`` and ``close()`` work as usual.
    """

    # Attributes stored locally, others delegated to _connection
    _local_attrs = ['_connection', 'server_type', 'database_name', 'interface', 'cursor_settings']

    def __init__(self, connection, interface, database_name: Optional[str] = None,
                 cursor_settings: Optional[Dict[str, Any]] = None):
        """
        Initialize Database wrapper.

        Args:
            connection: Underlying database connection object
            interface: Database adapter module (pymysql, sqlite3, etc.)
            database_name: Name of the database
            cursor_settings: Default keyword arguments for cursor()
        """
        self._connection = connection
        self.interface = interface
        self.database_name = database_name
        self.cursor_settings = dict(cursor_settings or {})

        if interface.__name__ in get_all_drivers():
            self.server_type = get_all_drivers()[interface.__name__]['database_type']
        else:
            self.server_type = 'unknown'

    def __getattr__(self, key: str) -> Any:
        """Delegate attribute access to underlying connection."""
        return getattr(self._connection, key)

    def __setattr__(self, key: str, value: Any) -> None:
        """Set attributes locally or delegate to connection."""
        if key in self._local_attrs:
            self.__dict__[key] = value
        else:
            setattr(self._connection, key, value)

    def __str__(self) -> str:
        if self.database_name:
            return f'Database({self.database_name}:{self.server_type})'
        else:
            return f'Database({self.server_type})'

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - close connection."""
        self.close()

    def cursor(self, **kwargs) -> Cursor:
        """
        Create a cursor, applying any cursor settings from the connection config.

        Examples:
            cursor = db.cursor()
            cursor = db.cursor(debug=True)
        """
        options = {**self.cursor_settings, **kwargs}
        return Cursor(self, **options)

    def streaming_cursor(self, **kwargs) -> Cursor:
        """
        Create a cursor that streams rows from the server instead of
        buffering the whole result set on execute().

        Only one streaming result can be open per connection: read it to the
        end or close the cursor before running another query. Drivers without
        an unbuffered cursor get a normal one.

        Example:
            cursor = db.streaming_cursor()
            cursor.execute("SELECT * FROM `orders`")
            for rows in cursor.batches(1000):
                ...
            cursor.close()
        """
        driver_info = get_all_drivers().get(self.interface.__name__, {})
        streaming = _resolve_cursor_options(driver_info.get('streaming_cursor', {}))
        return self.cursor(**streaming, **kwargs)

    @contextmanager
    def transaction(self):
        """
        Context manager for database transactions.

        Example:
            with db.transaction():
                source(db, 'dump.sql', commit=False)
                # Auto-commit on success, rollback on exception
        """
        try:
            yield self
            self.commit()
        except Exception:
            self.rollback()
            raise

    @classmethod
    def create(cls, db_type: str, driver: str = None, cursor_settings: Optional[dict] = None,
               **kwargs) -> 'Database':
        """
        Factory method to create database connections.

        Args:
            db_type: Database type ('mysql' or 'sqlite')
            driver: Specific driver module to use instead of the highest priority one
            cursor_settings: Default keyword arguments for cursors
            **kwargs: Connection parameters

        Returns:
            Database instance
        """
        all_drivers = get_all_drivers()
        db_driver = None
        driver_name = None
        if driver:
            if driver not in all_drivers:
                raise ValueError(f"Unknown driver: {driver}")
            if all_drivers[driver]['database_type'] != db_type:
                raise ValueError(f"Driver '{driver}' is not compatible with database type '{db_type}'")
            try:
                db_driver = importlib.import_module(all_drivers[driver].get('module', driver))
                driver_name = driver
            except ImportError:
                logger.warning(f"Driver '{driver}' not available, falling back to default")

        if db_driver is None:
            for candidate in get_drivers_for_database(db_type):
                try:
                    db_driver = importlib.import_module(all_drivers[candidate].get('module', candidate))
                    driver_name = candidate
                    break
                except ImportError:
                    pass

        if db_driver is None:
            raise ImportError(f"No database driver found for database type '{db_type}'")

        database_name = kwargs.get('database')
        params = validate_connection_params(driver_name, **kwargs)
        logger.debug(f"Connecting with {driver_name} to {params.get('host', database_name)}")
        connection = db_driver.connect(**params)
        return cls(connection, db_driver, database_name, cursor_settings=cursor_settings)


def mysql(user: str, password: Optional[str] = None, database: Optional[str] = None,
          host: str = 'localhost', port: int = 3306, driver: str = None, **kwargs) -> Database:
    """Create MySQL connection."""
    return Database.create('mysql', user=user, password=password, database=database,
                           host=host, port=port, driver=driver, **kwargs)


def sqlite(database: str, **kwargs) -> Database:
    """Create SQLite connection."""
    import sqlite3

    connection = sqlite3.connect(database, **kwargs)
    return Database(connection, sqlite3, os.path.basename(database))

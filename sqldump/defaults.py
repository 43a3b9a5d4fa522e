# sqldump/defaults.py
"""Default settings - no imports to avoid circular dependencies."""

settings = {
    'insert_batch_size': 600,      # rows per INSERT statement when dumping
    'merge_insert_size': 0,        # tuples per merged INSERT when sourcing, 0 = off
    'fetch_size': 600,             # rows fetched per round-trip while scanning a table
    'backslash_escapes': True,     # backslash is an escape character in dumped literals (off for NO_BACKSLASH_ESCAPES)
    'default_db_type': 'mysql',
    'date_format': '%Y-%m-%d',
    'time_format': '%H:%M:%S',
    'datetime_format': '%Y-%m-%d %H:%M:%S',
    'timestamp_format': '%Y-%m-%d %H:%M:%S.%f',  # with microseconds
    'tz_suffix': '%z',
    'banner_time_format': '%Y-%m-%d %H:%M:%S',
    'logging': {
        'directory': './logs',
        'level': 'INFO',
        'format': '%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        'timestamp_format': '%Y-%m-%d %H:%M:%S',
        'filename_format': '%Y%m%d_%H%M%S',  # Set to '' for single log file (no timestamp)
        'split_errors': True,
        'console': True,
        'retention_days': 30,
    }
}

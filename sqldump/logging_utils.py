# sqldump/logging_utils.py
"""
Logging for scheduled dump and restore runs.

Each run gets its own log file, named after the job and the start time
(``nightly_backup_20240102_030000.log``). Errors are also copied to a
companion ``_error.log`` that is only created once the first error is logged,
so a cron wrapper can alert on its existence. Console output goes to stderr
so a dump written to stdout stays clean.
"""

import logging
import sys
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Optional, Tuple

logger = logging.getLogger(__name__)


class ErrorCountHandler(logging.Handler):
    """Counts ERROR and CRITICAL records and opens the error log on the first one."""

    def __init__(self, error_log_path: Optional[str] = None, formatter: Optional[logging.Formatter] = None):
        super().__init__(level=logging.ERROR)
        self.error_count = 0
        self.error_log_path = error_log_path
        self.formatter = formatter
        self._error_file_handler = None

    def emit(self, record):
        if record.levelno < logging.ERROR:
            return
        self.error_count += 1
        if self.error_log_path and self._error_file_handler is None:
            self._open_error_log()

    def _open_error_log(self) -> None:
        try:
            handler = logging.FileHandler(self.error_log_path, encoding='utf-8')
        except OSError as e:
            logger.warning(f"Could not open error log {self.error_log_path}: {e}")
            return
        handler.setLevel(logging.ERROR)
        if self.formatter:
            handler.setFormatter(self.formatter)
        # the root logger is still dispatching this record, so the new
        # handler receives it too
        logging.getLogger().addHandler(handler)
        self._error_file_handler = handler
        logger.debug(f"Opened error log {self.error_log_path}")


@dataclass
class _LogRun:
    main_log: str
    error_log: Optional[str]
    error_handler: ErrorCountHandler


_current_run: Optional[_LogRun] = None


def _log_paths(log_dir: Path, job_name: str, filename_format: str,
               split_errors: bool) -> Tuple[Path, Optional[Path]]:
    stem = f"{job_name}_{datetime.now().strftime(filename_format)}" if filename_format else job_name
    main_log = log_dir / f"{stem}.log"
    error_log = log_dir / f"{stem}_error.log" if split_errors else None
    return main_log, error_log


def _clear_root_handlers(root: logging.Logger) -> None:
    for handler in list(root.handlers):
        root.removeHandler(handler)
        if isinstance(handler, logging.FileHandler):
            handler.close()


def setup_logging(
    script_name: Optional[str] = None,
    log_dir: Optional[str] = None,
    level: Optional[str] = None,
    split_errors: Optional[bool] = None,
    console: Optional[bool] = None
) -> Tuple[str, Optional[str]]:
    """
    Send all sqldump logging for this run to a fresh log file.

    Any handlers already on the root logger are replaced. Unset arguments
    come from the ``logging`` block of the settings.

    Args:
        script_name: Job name used in the file names (defaults to the running script's name)
        log_dir: Directory for log files (default ``./logs``)
        level: DEBUG, INFO, WARNING or ERROR (default INFO)
        split_errors: Also copy errors to ``<name>_error.log`` (default True)
        console: Also log to stderr (default True)

    Returns:
        Tuple of (log_file_path, error_log_path or None)

    Example
    -------
    ::
        import sqldump

        sqldump.setup_logging('nightly_backup')
        sqldump.dump(db, 'shop', file='/backups/shop.sql', data=True)

    Note:
        ``logging.filename_format`` controls the timestamp in file names:
        ``'%Y%m%d_%H%M%S'`` gives one file per run (default), ``'%Y%m%d'`` one
        per day, and ``''`` a single file that keeps growing.
    """
    from sqldump.config import get_setting

    global _current_run

    options = get_setting('logging', {})
    job_name = script_name or Path(sys.argv[0]).stem
    level = (level or options.get('level', 'INFO')).upper()
    if split_errors is None:
        split_errors = options.get('split_errors', True)
    if console is None:
        console = options.get('console', True)

    directory = Path(log_dir or options.get('directory', './logs'))
    directory.mkdir(parents=True, exist_ok=True)
    main_log, error_log = _log_paths(directory, job_name,
                                     options.get('filename_format', '%Y%m%d_%H%M%S'), split_errors)

    formatter = logging.Formatter(options.get('format', '%(asctime)s [%(levelname)s] %(name)s: %(message)s'),
                                  datefmt=options.get('timestamp_format', '%Y-%m-%d %H:%M:%S'))

    root = logging.getLogger()
    root.setLevel(getattr(logging, level))
    _clear_root_handlers(root)

    error_handler = ErrorCountHandler(str(error_log) if error_log else None, formatter)
    root.addHandler(error_handler)

    file_handler = logging.FileHandler(main_log, encoding='utf-8')
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)

    if console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(getattr(logging, level))
        console_handler.setFormatter(formatter)
        root.addHandler(console_handler)

    _current_run = _LogRun(str(main_log), str(error_log) if error_log else None, error_handler)
    logger.info(f"Logging to {main_log}")
    if error_log:
        logger.info(f"Errors will also go to {error_log}")
    return _current_run.main_log, _current_run.error_log


def errors_logged() -> Optional[str]:
    """
    Path of the log holding this run's errors, or None if there were none.

    The error log is returned when errors are split out, otherwise the main
    log. None is also returned when :func:`setup_logging` was never called.

    Example
    -------
    ::

        sqldump.setup_logging('nightly_backup')
        try:
            sqldump.dump(db, 'shop', file='shop.sql', data=True)
        except Exception:
            pass  # already logged by dump()

        error_log = sqldump.errors_logged()
        if error_log:
            notify_operator(error_log)
    """
    if _current_run is None:
        logger.warning("errors_logged() called before setup_logging()")
        return None
    if _current_run.error_handler.error_count == 0:
        return None
    return _current_run.error_log or _current_run.main_log


def cleanup_old_logs(
    log_dir: Optional[str] = None,
    retention_days: Optional[int] = None,
    pattern: str = "*.log",
    dry_run: bool = False
) -> List[str]:
    """
    Delete log files last modified before the retention window.

    Args:
        log_dir: Directory to clean (default ``./logs``)
        retention_days: Days of logs to keep (default 30)
        pattern: Glob for the files to consider
        dry_run: Report what would be deleted without deleting

    Returns:
        Paths deleted, or that would be deleted on a dry run
    """
    from sqldump.config import get_setting

    options = get_setting('logging', {})
    directory = Path(log_dir or options.get('directory', './logs'))
    retention_days = retention_days or options.get('retention_days', 30)

    if not directory.exists():
        logger.warning(f"Log directory does not exist: {directory}")
        return []

    cutoff = (datetime.now() - timedelta(days=retention_days)).timestamp()
    expired = [path for path in directory.glob(pattern)
               if path.is_file() and path.stat().st_mtime < cutoff]

    deleted = []
    for path in expired:
        if dry_run:
            logger.info(f"Would delete: {path}")
        else:
            try:
                path.unlink()
            except OSError as e:
                logger.warning(f"Failed to delete {path}: {e}")
                continue
            logger.info(f"Deleted old log: {path}")
        deleted.append(str(path))

    if deleted and not dry_run:
        logger.info(f"Removed {len(deleted)} old log files")
    return deleted

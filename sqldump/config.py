# sqldump/config.py
"""
Configuration management for database connections.
Supports YAML configuration files with optional password encryption and global settings.
"""

import os
from textwrap import dedent
import logging
from pathlib import Path
from typing import Dict, Any, Optional, List, Tuple

from .defaults import settings
from .database import Database, get_params_for_database, register_user_drivers

try:
    import yaml
except ImportError:
    raise ImportError("PyYAML is required. Install with: pip install PyYAML")

try:
    from cryptography.fernet import Fernet
    HAS_CRYPTO = True
except ImportError:
    HAS_CRYPTO = False

try:
    import keyring
    HAS_KEYRING = True
except ImportError:
    HAS_KEYRING = False

logger = logging.getLogger(__name__)

KEY_ENV_VAR = 'SQLDUMP_ENCRYPTION_KEY'
KEYRING_SERVICE = 'sqldump'
KEYRING_USER = 'encryption_key'
CURSOR_SETTINGS = ('batch_size', 'debug')


def _ensure_sample_config():
    """Copy sample config to ~/.config if no config exists and sample doesn't exist there."""
    import shutil

    user_config_dir = Path.home() / '.config'
    user_config_file = user_config_dir / 'sqldump.yml'

    if user_config_file.exists():
        return

    package_dir = Path(__file__).parent
    sample_config = package_dir / 'sqldump_sample.yml'
    sample_target = user_config_dir / 'sqldump_sample.yml'

    if not sample_config.exists() or sample_target.exists():
        return

    try:
        user_config_dir.mkdir(parents=True, exist_ok=True)
        shutil.copy(sample_config, sample_target)
        logger.info(f"Created sample config at {sample_target}")
    except OSError as e:
        logger.debug(f"Could not create sample config: {e}")


def diagnose_config(config_file: Optional[str] = None) -> List[Tuple[str, str]]:
    """Full config health check using a real ConfigManager instance."""
    results = []

    try:
        mgr = ConfigManager(config_file)
        results.append(('✓', f"Config loaded: {mgr.config_file}"))
    except (FileNotFoundError, ValueError) as e:
        results.append(('✗', f"Config failed: {e}"))
        return results

    results.append(('✓', "cryptography ready") if HAS_CRYPTO else ('✗', "cryptography missing"))
    results.append(('✓', "keyring ready") if HAS_KEYRING else ('?', "keyring optional"))

    # keys - peek only, no decrypt
    env_key = os.getenv(KEY_ENV_VAR)
    keyring_key = _keyring_key() if HAS_KEYRING else None

    if env_key:
        results.append(('✓', f"{KEY_ENV_VAR} set"))
        results.append(('✓', "Env key valid") if _valid_fernet(env_key) else ('✗', "Env key invalid"))
    else:
        results.append(('?', "No env key"))

    if keyring_key:
        results.append(('✓', "Keyring key set"))
        results.append(('✓', "Keyring key valid") if _valid_fernet(keyring_key) else ('✗', "Keyring key invalid"))
    elif HAS_KEYRING:
        results.append(('?', "Keyring empty"))

    if env_key and keyring_key:
        results.append(('✓', "Keys match") if env_key == keyring_key else ('✗', "KEYS MISMATCH"))

    connections = mgr.config.get('connections', {})
    passwords = mgr.config.get('passwords', {})
    results.append(('✓', f"{len(connections)} connections: {', '.join(connections) or '-'}"))

    enc_count = sum(1 for c in connections.values() if 'encrypted_password' in c) + \
        sum(1 for p in passwords.values() if 'encrypted_password' in p)
    results.append(('✓', f"{enc_count} encrypted passwords") if enc_count else ('✓', "No encrypted passwords"))

    uenc_count = sum(
        1 for c in connections.values()
        if 'password' in c and not str(c.get('password', '')).startswith('${')
    ) + sum(
        1 for p in passwords.values()
        if 'password' in p and not str(p.get('password', '')).startswith('${')
    )
    results.append(("✗", f"{uenc_count} unencrypted passwords!") if uenc_count else ('✓', "No unencrypted passwords"))

    known = set(mgr.list_passwords())
    for name, c in connections.items():
        if 'password_ref' in c and c['password_ref'] not in known:
            results.append(('✗', f"Connection '{name}' refers to unknown password '{c['password_ref']}'"))
    return results


def _keyring_key() -> Optional[str]:
    try:
        return keyring.get_password(KEYRING_SERVICE, KEYRING_USER)
    except Exception as e:
        logger.debug(f"Keyring lookup failed: {e}")
        return None


def _valid_fernet(key: str) -> bool:
    try:
        Fernet(key.encode())
        return True
    except (ValueError, TypeError):
        return False


class ConfigManager:
    """
    Manage sqldump configuration from YAML files.

    Loads named connections, stored passwords and global settings. Settings
    are merged into :data:`sqldump.defaults.settings` on load, so they change
    defaults such as the INSERT batch size for the whole process.

    Configuration File Structure
    ----------------------------
    ::

        # sqldump.yml
        settings:
          insert_batch_size: 1000
          merge_insert_size: 1000

        connections:
          prod_reader:
            type: mysql
            host: db1.example.com
            database: shop
            user: backup
            encrypted_password: gAAAAABh...
            cursor:
              batch_size: 2000
          restore:
            type: mysql
            host: db2.example.com
            user: restore
            password_ref: restore_user

        passwords:
          restore_user:
            encrypted_password: gAAAAABh...

    Configuration Locations
    -----------------------
    1. File specified in config_file parameter
    2. ``./sqldump.yml`` then ``./sqldump.yaml``
    3. ``~/.config/sqldump.yml`` then ``~/.config/sqldump.yaml``

    Parameters
    ----------
    config_file : str or Path, optional
        Path to YAML config file. If None, searches standard locations.

    Raises
    ------
    FileNotFoundError
        If no config file found in any search location
    ValueError
        If config file is invalid or malformed

    Notes
    -----
    * Connections require a 'type' (mysql, sqlite) or 'driver' field
    * Encrypted passwords need the key in SQLDUMP_ENCRYPTION_KEY or the system keyring
    * ``password_ref`` takes a connection's password from the ``passwords`` section,
      so several connections can share one stored password
    * Environment variables can be used with ${VAR_NAME} syntax
    """

    def __init__(self, config_file: Optional[str] = None):
        self.config_file = self._find_config_file(config_file)
        self.config = self._load_config()
        self._fernet = None

        self._apply_settings()

    def _find_config_file(self, config_file: Optional[str]) -> Path:
        """Find the configuration file."""
        if config_file:
            path = Path(config_file)
            if not path.exists():
                raise FileNotFoundError(f"Config file not found: {config_file}")
            return path

        candidates = [
            Path("sqldump.yml"),
            Path("sqldump.yaml"),
            Path.home() / ".config" / "sqldump.yml",
            Path.home() / ".config" / "sqldump.yaml"
        ]

        for candidate in candidates:
            if candidate.exists():
                return candidate

        # leave a sample next to where the config is expected
        _ensure_sample_config()

        raise FileNotFoundError(
            "No config file found. Looked in: " +
            ", ".join(str(c) for c in candidates)
        )

    def _load_config(self) -> Dict[str, Any]:
        """Load and validate configuration file."""
        try:
            with open(self.config_file, 'r') as f:
                config = yaml.safe_load(f) or {}
            if not isinstance(config, dict):
                raise ValueError(f"Invalid config file {self.config_file}.")

            if 'connections' in config:
                if not isinstance(config['connections'], dict):
                    raise ValueError(f"Invalid config file {self.config_file}: 'connections' must be a dictionary")
                for name, conn in config['connections'].items():
                    if not isinstance(conn, dict) or ('type' not in conn and 'driver' not in conn):
                        raise ValueError(f"Invalid connection '{name}' in {self.config_file}: 'type' or 'driver' is required")

            if 'passwords' in config:
                if not isinstance(config['passwords'], dict):
                    raise ValueError(f"Invalid config file {self.config_file}: 'passwords' must be a dictionary")
                for name, password_data in config['passwords'].items():
                    if not isinstance(password_data, dict):
                        raise ValueError(f"Invalid password entry '{name}' in {self.config_file}: must be a dictionary")
                    if 'password' not in password_data and 'encrypted_password' not in password_data:
                        raise ValueError(
                            f"Invalid password entry '{name}' in {self.config_file}: 'password' or 'encrypted_password' is required")

            if 'settings' in config:
                if not isinstance(config['settings'], dict):
                    raise ValueError(f"Invalid config file {self.config_file}: 'settings' must be a dictionary")

            logger.info(f"Loaded config from {self.config_file}")
            return config
        except (OSError, yaml.YAMLError, ValueError) as e:
            raise ValueError(f"Failed to load config file {self.config_file}: {e}")

    def _apply_settings(self) -> None:
        """Apply global settings from config."""
        config_settings = dict(self.config.get('settings', {}))
        drivers = config_settings.pop('drivers', None)
        if drivers:
            register_user_drivers(drivers)

        logging_settings = config_settings.pop('logging', None)
        if isinstance(logging_settings, dict):
            settings['logging'] = {**settings['logging'], **logging_settings}
        settings.update(config_settings)

        # date formats may have changed
        from .utils import reset_format_cache
        reset_format_cache()

    def get_setting(self, key: str, default: Any = None) -> Any:
        """
        Get a setting value from the config.

        Args:
            key: Setting key (supports dot notation like 'logging.level')
            default: Default value if key not found

        Returns:
            Setting value or default
        """
        value = self.config.get('settings', {})
        for k in key.split('.'):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default
        return value

    def _get_encryption_key(self) -> bytes:
        """Get encryption key from keyring or environment variable."""
        # environment variable takes precedence
        key_str = os.environ.get(KEY_ENV_VAR)
        if key_str:
            logger.debug(f"Using {KEY_ENV_VAR} from environment")
            return key_str.encode()

        if not HAS_CRYPTO:
            raise ValueError("Encryption not available. Install cryptography package to enable encryption.")

        if HAS_KEYRING:
            key_str = _keyring_key()
            if key_str:
                logger.debug("Using encryption key from keyring")
                return key_str.encode()
            msg = dedent("""\
            Encryption key not found in environment or keyring.
            Run: `sqldump store-key` to generate and store a new encryption key in the keyring.
            """)
        else:
            msg = dedent(f"""\
            Encryption key not found in environment or keyring.
            Run `sqldump generate-key` to generate a new encryption key
            then store it in the {KEY_ENV_VAR} environment variable.""")
        raise ValueError(msg)

    def _get_fernet(self) -> 'Fernet':
        """Get or create Fernet instance for encryption/decryption."""
        if self._fernet is None:
            if not HAS_CRYPTO:
                raise ValueError("Encryption not available. Install cryptography package to enable encryption.")
            self._fernet = Fernet(self._get_encryption_key())
        return self._fernet

    def decrypt_password(self, encrypted_password: str) -> str:
        """Decrypt an encrypted password."""
        try:
            fernet = self._get_fernet()
            return fernet.decrypt(encrypted_password.encode()).decode()
        except Exception as e:
            raise ValueError(f"Failed to decrypt password: {e}")

    def encrypt_password(self, password: str) -> str:
        """Encrypt a password for storage."""
        try:
            fernet = self._get_fernet()
            return fernet.encrypt(password.encode()).decode()
        except Exception as e:
            raise ValueError(f"Failed to encrypt password: {e}")

    @staticmethod
    def _substitute_env(value: Any) -> Any:
        if isinstance(value, str) and value.startswith('${') and value.endswith('}'):
            env_var = value[2:-1]
            env_value = os.environ.get(env_var)
            if env_value is None:
                raise ValueError(f"Environment variable {env_var} not set")
            return env_value
        return value

    def get_connection_config(self, name: str) -> Dict[str, Any]:
        """Get configuration for a named connection, with its password resolved."""
        connections = self.config.get('connections', {})

        if name not in connections:
            available = list(connections.keys())
            raise ValueError(
                f"Connection '{name}' not found in config. "
                f"Available connections: {available}"
            )

        config = connections[name].copy()

        if 'password_ref' in config:
            config['password'] = self.get_password(config.pop('password_ref'))
        elif 'encrypted_password' in config:
            config['password'] = self.decrypt_password(config.pop('encrypted_password'))
        elif 'password' in config:
            config['password'] = self._substitute_env(config['password'])

        return config

    def list_connections(self) -> list:
        """List all available connection names."""
        return list(self.config.get('connections', {}).keys())

    def get_password(self, name: str) -> str:
        """
        Get a stored password by name.

        Raises:
            ValueError: If password not found or decryption fails
        """
        passwords = self.config.get('passwords', {})

        if name not in passwords:
            available = self.list_passwords()
            raise ValueError(
                f"Password '{name}' not found in config. "
                f"Available passwords: {available}"
            )

        password_entry = passwords[name]
        if 'encrypted_password' in password_entry:
            return self.decrypt_password(password_entry['encrypted_password'])
        return self._substitute_env(password_entry['password'])

    def list_passwords(self) -> list:
        """List all available password names."""
        return list(self.config.get('passwords', {}).keys())


# Global config manager instance
_config_manager: Optional[ConfigManager] = None


def _get_manager(config_file: Optional[str] = None) -> ConfigManager:
    global _config_manager

    if config_file:
        return ConfigManager(config_file)
    if _config_manager is None:
        _config_manager = ConfigManager()
    return _config_manager


def store_key(key: Optional[str] = None, force: bool = False) -> None:
    """CLI utility to store encryption key in system keyring."""
    if not HAS_CRYPTO:
        raise ValueError("Encryption not available. Install cryptography package to enable encryption.")

    if not HAS_KEYRING:
        raise ValueError("Keyring not available. Install keyring package to store key in system keyring.")

    current_key = _keyring_key()
    if current_key:
        if force:
            msg = "Encryption key already stored in system keyring. Overwriting!"
            logger.warning(msg)
            print(msg)
        else:
            msg = "Encryption key already stored in system keyring. Use --force to overwrite."
            logger.warning(msg)
            print(msg)
            return

    if key is None:
        key = _generate_encryption_key()
    elif not _valid_fernet(key):
        raise ValueError("Invalid encryption key. Must be 32 url-safe base64-encoded bytes.")

    try:
        keyring.set_password(KEYRING_SERVICE, KEYRING_USER, key)
    except Exception as e:
        msg = f"Failed to store encryption key in system keyring: {e}"
        logger.error(msg)
        raise ValueError(msg)
    msg = "Stored encryption key in system keyring"
    logger.info(msg)
    print(msg)


def _generate_encryption_key() -> str:
    return Fernet.generate_key().decode()


def generate_encryption_key() -> str:
    """
    Generate a random encryption key.

    The key should be stored in the SQLDUMP_ENCRYPTION_KEY environment
    variable or in the keyring with `sqldump store-key [your key]`.

    Returns:
        str: A randomly generated encryption key.
    """
    if not HAS_CRYPTO:
        raise ValueError("Encryption not available. Install cryptography package to enable encryption.")
    key = _generate_encryption_key()
    if HAS_KEYRING:
        msg = "Key generated.  Store in system keyring with `sqldump store-key [your key]`"
    else:
        msg = f"Key generated.  Store in {KEY_ENV_VAR} environment variable"
    print(msg)
    return key


def set_config_file(config_file: str) -> None:
    """Set the configuration file to use globally."""
    global _config_manager
    _config_manager = ConfigManager(config_file)


def connect(name: str, password: str = None, config_file: Optional[str] = None) -> Database:
    """
    Connect to a named database from configuration.

    Args:
        name: Connection name from config file
        password: Optional password if not stored in config
        config_file: Optional path to config file

    Returns:
        Database connection instance

    Example:
        db = connect('prod_reader')
        result = dump(db, db.database_name, data=True)
    """
    config = _get_manager(config_file).get_connection_config(name)
    if password:
        config['password'] = password
    info = {key: val for key, val in config.items() if key != 'password'}
    logger.debug(f"Connecting to database {name} with config: {info}")

    db_type = config.pop('type', None) or settings.get('default_db_type', 'mysql')
    driver = config.pop('driver', None)
    cursor_settings = config.pop('cursor', None)
    if cursor_settings is not None:
        unknown = set(cursor_settings.keys()) - set(CURSOR_SETTINGS)
        if unknown:
            logger.warning(f"Unknown cursor settings (ignored): {unknown}")
        cursor_settings = {key: val for key, val in cursor_settings.items() if key in CURSOR_SETTINGS}

    # remove any params that are not allowed for the database type
    allowed_params = get_params_for_database(db_type, driver)
    config = {key: val for key, val in config.items() if key in allowed_params}

    return Database.create(db_type, driver=driver, cursor_settings=cursor_settings, **config)


def get_password(name: str, config_file: Optional[str] = None) -> str:
    """
    Get a stored password from configuration.

    Example:
        restore_password = get_password('restore_user')
    """
    return _get_manager(config_file).get_password(name)


def get_setting(key: str, default: Any = None, config_file: Optional[str] = None) -> Any:
    """
    Get a setting value from configuration.

    Values come from the process-wide settings, which the config file
    overrides. Without a config file the defaults are used.

    Example:
        batch_size = get_setting('insert_batch_size', 600)
        level = get_setting('logging.level', 'INFO')
    """
    try:
        # loading the config merges its settings into the defaults
        _get_manager(config_file)
    except FileNotFoundError:
        logger.debug("No config file, using default settings")

    value = settings
    for k in key.split('.'):
        if isinstance(value, dict) and k in value:
            value = value[k]
        else:
            return default
    return value


def encrypt_password(password: str = None, encryption_key: str = None) -> str:
    """
    CLI utility function to encrypt a password.

    Args:
        password: Password to encrypt (if None, prompts for input)
        encryption_key: Optional encryption key. If None, uses SQLDUMP_ENCRYPTION_KEY or the keyring

    Returns:
        str: Encrypted password
    """
    if password is None:
        import getpass
        password = getpass.getpass("Enter password to encrypt: ")

    if encryption_key:
        encrypted = Fernet(encryption_key.encode()).encrypt(password.encode()).decode()
    else:
        temp_config = ConfigManager.__new__(ConfigManager)
        temp_config._fernet = None
        encrypted = temp_config.encrypt_password(password)

    print(encrypted)
    return encrypted


def encrypt_config_file(filename: str) -> int:
    """CLI Utility to encrypt all passwords in a config file. Returns the number encrypted."""
    temp_config = ConfigManager.__new__(ConfigManager)
    temp_config._fernet = None
    with open(filename) as fp:
        config = yaml.safe_load(fp)
    changes = 0
    if config:
        sections = list(config.get('connections', {}).values()) + list(config.get('passwords', {}).values())
        for entry in sections:
            password = entry.get('password')
            if not password or 'encrypted_password' in entry or str(password).startswith('${'):
                continue
            entry['encrypted_password'] = temp_config.encrypt_password(str(password))
            del entry['password']
            changes += 1

    if changes > 0:
        with open(filename, 'w') as fp:
            yaml.safe_dump(config, fp, default_flow_style=False, sort_keys=False)
        print(f"Encrypted {changes} passwords in {filename}")
    else:
        print(f"No passwords to encrypt in {filename}")
    return changes

"""
Update Configuration

Loads the line-oriented `Key value` configuration file into an immutable
Config value. Command-line overrides are applied on top of the file.
"""

import os
import re
import logging
from dataclasses import dataclass, replace
from datetime import timedelta
from typing import Dict, Optional, Tuple
from urllib.parse import quote, urlsplit

from . import (
    DEFAULT_DATABASE_DIRECTORY,
    DEFAULT_LOCK_FILE_NAME,
    DEFAULT_PARALLELISM,
    DEFAULT_RETRY_FOR,
    DEFAULT_UPDATE_URL,
)
from .errors import ConfigError

logger = logging.getLogger(__name__)

KNOWN_KEYS = (
    'AccountID', 'DatabaseDirectory', 'EditionIDs', 'Host', 'LicenseKey', 'LockFile',
    'PreserveFileTimes', 'Proxy', 'ProxyUserPassword', 'RetryFor', 'Parallelism',
)
DEPRECATED_KEYS = ('Protocol', 'SkipHostnameVerification', 'SkipPeerVerification')
KEY_ALIASES = {
    'UserId': 'AccountID',
    'ProductIds': 'EditionIDs',
}
SUPPORTED_PROXY_SCHEMES = ('http', 'https', 'socks5')
DEFAULT_PROXY_PORT = 1080

_DURATION_PART_RE = re.compile(r'(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)')
_DURATION_UNITS = {
    'ns': 1e-9,
    'us': 1e-6,
    'µs': 1e-6,
    'ms': 1e-3,
    's': 1.0,
    'm': 60.0,
    'h': 3600.0,
}
_SCHEME_RE = re.compile(r'^([a-z][a-z0-9+\-.]*)://', re.IGNORECASE)


@dataclass(frozen=True)
class Config:
    """Configuration for an update run."""
    account_id: int
    license_key: str
    edition_ids: Tuple[str, ...]

    # Storage configuration
    database_directory: str = DEFAULT_DATABASE_DIRECTORY
    lock_file: str = ''
    preserve_file_times: bool = False

    # Update service configuration
    url: str = DEFAULT_UPDATE_URL
    proxy: Optional[str] = None

    # Run configuration
    parallelism: int = DEFAULT_PARALLELISM
    retry_for: timedelta = DEFAULT_RETRY_FOR
    verbose: bool = False

    def __post_init__(self):
        if not self.lock_file:
            object.__setattr__(
                self, 'lock_file',
                os.path.join(self.database_directory, DEFAULT_LOCK_FILE_NAME)
            )

    def with_overrides(self, database_directory: Optional[str] = None,
                       parallelism: Optional[int] = None,
                       verbose: Optional[bool] = None) -> 'Config':
        """Return a copy with command-line overrides applied."""
        default_lock_file = os.path.join(self.database_directory, DEFAULT_LOCK_FILE_NAME)
        return _apply_overrides(self, database_directory, parallelism, verbose,
                                lock_file_set=self.lock_file != default_lock_file)


def parse_duration(value: str) -> timedelta:
    """
    Parse a duration such as "5m", "1h30m" or "45s".

    Raises:
        ConfigError: If the value is not a valid non-negative duration
    """
    text = value.strip()
    if text in ('0', '+0'):
        return timedelta(0)
    if text.startswith('-'):
        raise ConfigError(f"'{value}' is not a valid duration")
    text = text.lstrip('+')

    position = 0
    seconds = 0.0
    for match in _DURATION_PART_RE.finditer(text):
        if match.start() != position:
            break
        seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()

    if position == 0 or position != len(text):
        raise ConfigError(f"'{value}' is not a valid duration")

    return timedelta(seconds=seconds)


def parse_proxy(proxy: str, proxy_user_password: str = '') -> Optional[str]:
    """
    Normalize the proxy settings into a single proxy URL.

    Args:
        proxy: Proxy host, host:port or URL; scheme defaults to http
        proxy_user_password: Optional "user:password" credentials

    Returns:
        Proxy URL, or None when no proxy is configured
    """
    if not proxy:
        return None

    match = _SCHEME_RE.match(proxy)
    if match is None:
        proxy = 'http://' + proxy
    else:
        scheme = match.group(1).lower()
        if scheme not in SUPPORTED_PROXY_SCHEMES:
            raise ConfigError(f"unsupported proxy type: {scheme}")
        proxy = scheme + proxy[len(match.group(1)):]

    try:
        parts = urlsplit(proxy)
        port = parts.port
    except ValueError as e:
        raise ConfigError(f"error parsing proxy URL: {e}") from e

    if not parts.hostname:
        raise ConfigError(f"error parsing proxy URL: no host in '{proxy}'")

    netloc = parts.netloc
    if port is None:
        netloc += f":{DEFAULT_PROXY_PORT}"

    # Credentials in the Proxy option win over ProxyUserPassword
    if '@' not in netloc and proxy_user_password:
        if ':' not in proxy_user_password:
            raise ConfigError("proxy user/password is malformed")
        user, password = proxy_user_password.split(':', 1)
        netloc = f"{quote(user, safe='')}:{quote(password, safe='')}@{netloc}"

    return f"{parts.scheme}://{netloc}{parts.path}"


def _parse_bool_flag(key: str, value: str) -> bool:
    if value not in ('0', '1'):
        raise ConfigError(f"`{key}' must be 0 or 1")
    return value == '1'


def _parse_parallelism(value: str) -> int:
    try:
        parallelism = int(value)
    except ValueError as e:
        raise ConfigError(f"'{value}' is not a valid parallelism value: {e}") from e
    if parallelism <= 0:
        raise ConfigError(f"parallelism should be greater than 0, got '{parallelism}'")
    return parallelism


def _read_entries(path: str) -> Dict[str, Tuple[str, str]]:
    """Read `Key value` lines, returning {canonical key: (key, value)}."""
    try:
        with open(path, 'r', encoding='utf-8') as f:
            lines = f.readlines()
    except OSError as e:
        raise ConfigError(f"error opening file: {e}") from e

    entries: Dict[str, Tuple[str, str]] = {}
    for line_number, raw_line in enumerate(lines, 1):
        line = raw_line.strip()
        if not line or line.startswith('#'):
            continue

        fields = line.split()
        if len(fields) < 2:
            raise ConfigError(f"invalid format on line {line_number}")

        key, value = fields[0], ' '.join(fields[1:])
        canonical = KEY_ALIASES.get(key, key)
        if canonical in entries:
            raise ConfigError(f"`{key}' is in the config multiple times")

        if key in DEPRECATED_KEYS:
            logger.debug(f"Ignoring deprecated option {key} on line {line_number}")
        elif canonical not in KNOWN_KEYS:
            raise ConfigError(f"unknown option on line {line_number}")

        entries[canonical] = (key, value)

    return entries


def load_config(path: str, database_directory: Optional[str] = None,
                parallelism: Optional[int] = None,
                verbose: Optional[bool] = None) -> Config:
    """
    Load configuration from a file.

    Args:
        path: Configuration file path
        database_directory: Overrides DatabaseDirectory when non-empty
        parallelism: Overrides Parallelism when positive; negative is an error
        verbose: Overrides the verbose flag when given

    Returns:
        Config: Immutable configuration value

    Raises:
        ConfigError: If the file is missing, malformed or incomplete
    """
    entries = _read_entries(os.path.normpath(path))

    for required in ('EditionIDs', 'AccountID', 'LicenseKey'):
        if required not in entries:
            raise ConfigError(f"the `{required}` option is required")

    values = {key: value for key, (_, value) in entries.items()}

    try:
        account_id = int(values['AccountID'])
    except ValueError as e:
        raise ConfigError(f"invalid account ID format: {e}") from e

    options = {
        'account_id': account_id,
        'license_key': values['LicenseKey'],
        'edition_ids': tuple(values['EditionIDs'].split()),
    }

    if 'DatabaseDirectory' in values:
        options['database_directory'] = os.path.normpath(values['DatabaseDirectory'])
    if 'Host' in values:
        options['url'] = 'https://' + values['Host']
    if 'LockFile' in values:
        options['lock_file'] = os.path.normpath(values['LockFile'])
    if 'PreserveFileTimes' in values:
        options['preserve_file_times'] = _parse_bool_flag('PreserveFileTimes', values['PreserveFileTimes'])
    if 'RetryFor' in values:
        options['retry_for'] = parse_duration(values['RetryFor'])
    if 'Parallelism' in values:
        options['parallelism'] = _parse_parallelism(values['Parallelism'])

    options['proxy'] = parse_proxy(values.get('Proxy', ''), values.get('ProxyUserPassword', ''))

    # Placeholder credentials from the old free-download instructions
    if account_id in (0, 999999) and options['license_key'] == '000000000000':
        raise ConfigError("a valid AccountID and LicenseKey combination is required")

    config = Config(**options)
    return _apply_overrides(config, database_directory, parallelism, verbose,
                            lock_file_set='LockFile' in values)


def _apply_overrides(config: Config, database_directory: Optional[str],
                     parallelism: Optional[int], verbose: Optional[bool],
                     lock_file_set: bool) -> Config:
    changes = {}

    if database_directory:
        changes['database_directory'] = os.path.normpath(database_directory)
        if not lock_file_set:
            changes['lock_file'] = os.path.join(changes['database_directory'], DEFAULT_LOCK_FILE_NAME)

    if parallelism is not None:
        if parallelism < 0:
            raise ConfigError(f"parallelism can't be negative, got '{parallelism}'")
        if parallelism > 0:
            changes['parallelism'] = parallelism

    if verbose is not None:
        changes['verbose'] = verbose

    if not changes:
        return config
    return replace(config, **changes)

#!/usr/bin/env python3
"""
Exporter configuration

Settings are layered with the following precedence:
- command line flag
- environment variable (upper case, '-' replaced by '_', e.g. WALLIX_USERNAME)
- YAML config file (optional, keys are the flag names, e.g. wallix-username)
- built-in default
"""

import argparse
import logging
import os
from typing import Any, Dict, List, Mapping, Optional

import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = 'config.yaml'

DEFAULTS = {
    'listen-address': ':9191',
    'telemetry-path': '/metrics',
    'scrape-uri': 'https://127.0.0.1/api',
    'skip-verify': False,
    'timeout': 10,
    'wallix-username': None,
    'wallix-password': None,
    'sessions-closed-minutes': 5,
    'log-level': 'INFO',
}

MANDATORY = ('wallix-username', 'wallix-password')

INT_KEYS = ('timeout', 'sessions-closed-minutes')
BOOL_KEYS = ('skip-verify',)
LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR')


class ExporterConfig:
    """Resolved exporter settings"""

    def __init__(self, wallix_username: str, wallix_password: str,
                 listen_address: str = ':9191', telemetry_path: str = '/metrics',
                 scrape_uri: str = 'https://127.0.0.1/api', skip_verify: bool = False,
                 timeout: int = 10, sessions_closed_minutes: int = 5,
                 log_level: str = 'INFO'):
        self.wallix_username = wallix_username
        self.wallix_password = wallix_password
        self.listen_address = listen_address
        self.telemetry_path = telemetry_path
        self.scrape_uri = scrape_uri
        self.skip_verify = skip_verify
        self.timeout = timeout
        self.sessions_closed_minutes = sessions_closed_minutes
        self.log_level = log_level

    @classmethod
    def from_dict(cls, values: Mapping[str, Any]) -> 'ExporterConfig':
        """Build from a mapping keyed by flag names"""
        return cls(**{key.replace('-', '_'): value for key, value in values.items()})

    def listen_host_port(self):
        """Split listen_address (":9191", "0.0.0.0:9191", "[::]:9191") into (host, port)"""
        host, sep, port = self.listen_address.rpartition(':')
        if not sep:
            host, port = '', self.listen_address
        try:
            return host.strip('[]'), int(port)
        except ValueError:
            raise ConfigError(f"invalid listen-address: {self.listen_address!r}")

    def __repr__(self):
        return (f"ExporterConfig(listen_address={self.listen_address!r}, "
                f"telemetry_path={self.telemetry_path!r}, scrape_uri={self.scrape_uri!r}, "
                f"skip_verify={self.skip_verify}, timeout={self.timeout}, "
                f"wallix_username={self.wallix_username!r}, wallix_password='***', "
                f"sessions_closed_minutes={self.sessions_closed_minutes})")


def build_parser() -> argparse.ArgumentParser:
    """Flags default to None so that unset flags fall through to lower layers"""
    parser = argparse.ArgumentParser(
        prog='wallix-bastion-exporter',
        description='Prometheus exporter for the Wallix Bastion API',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Every flag can also be set through the environment (e.g. WALLIX_PASSWORD)
or in the YAML config file (e.g. "wallix-password: secret").
        """
    )
    parser.add_argument('-c', '--config-file', default=DEFAULT_CONFIG_FILE,
                        help=f'Path to optional YAML configuration file (default: {DEFAULT_CONFIG_FILE})')
    parser.add_argument('--listen-address',
                        help='Address to listen on for web interface and telemetry (default: :9191)')
    parser.add_argument('--telemetry-path',
                        help='Path under which to expose metrics (default: /metrics)')
    parser.add_argument('-w', '--scrape-uri',
                        help='URI on which to scrape Wallix Bastion API (default: https://127.0.0.1/api)')
    parser.add_argument('-u', '--wallix-username',
                        help='The username used for authentication to request Wallix Bastion API')
    parser.add_argument('-p', '--wallix-password',
                        help='The password used for authentication to request Wallix Bastion API')
    parser.add_argument('-s', '--skip-verify', action='store_true', default=None,
                        help='Disable TLS certificate verification for the scrape URI')
    parser.add_argument('-t', '--timeout', type=int,
                        help='Timeout in seconds for requests to Wallix Bastion API (default: 10)')
    parser.add_argument('--sessions-closed-minutes', type=int,
                        help='Time window in minutes used to count closed sessions (default: 5)')
    parser.add_argument('--log-level', type=str.upper, choices=LOG_LEVELS,
                        help='Log level (default: INFO)')
    return parser


def read_config_file(path: str) -> Dict[str, Any]:
    """Read the YAML config file; a missing file is not an error"""
    try:
        with open(path, 'r') as f:
            content = yaml.safe_load(f)
    except FileNotFoundError:
        logger.debug(f"Configuration file not found, ignoring: {path}")
        return {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"cannot read configuration file {path}: {e}")

    if content is None:
        return {}
    if not isinstance(content, dict):
        raise ConfigError(f"configuration file {path} must contain a mapping")

    values = {}
    for key, value in content.items():
        key = str(key).replace('_', '-')
        if key not in DEFAULTS:
            logger.warning(f"Ignoring unknown configuration key: {key}")
            continue
        values[key] = value
    return values


def read_environment(environ: Mapping[str, str]) -> Dict[str, str]:
    values = {}
    for key in DEFAULTS:
        env_name = key.upper().replace('-', '_')
        if env_name in environ:
            values[key] = environ[env_name]
    return values


def _coerce(key: str, value: Any) -> Any:
    if value is None:
        return None
    if key in BOOL_KEYS:
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in ('1', 'true', 'yes', 'on'):
            return True
        if text in ('0', 'false', 'no', 'off', ''):
            return False
        raise ConfigError(f"{key} must be a boolean, got {value!r}")
    if key in INT_KEYS:
        if isinstance(value, bool):
            raise ConfigError(f"{key} must be an integer, got {value!r}")
        try:
            number = int(value)
        except (TypeError, ValueError):
            raise ConfigError(f"{key} must be an integer, got {value!r}")
        if number <= 0:
            raise ConfigError(f"{key} must be positive, got {number}")
        return number
    if key == 'log-level':
        level = str(value).upper()
        if level not in LOG_LEVELS:
            raise ConfigError(f"log-level must be one of {', '.join(LOG_LEVELS)}, got {value!r}")
        return level
    return str(value)


def load_config(argv: Optional[List[str]] = None,
                environ: Optional[Mapping[str, str]] = None) -> ExporterConfig:
    """
    Resolve the exporter configuration.

    Args:
        argv: Command line arguments (default: sys.argv[1:])
        environ: Environment mapping (default: os.environ)

    Raises:
        ConfigError: mandatory credential missing or invalid value
    """
    environ = os.environ if environ is None else environ
    args = build_parser().parse_args(argv)

    flags = {key: getattr(args, key.replace('-', '_')) for key in DEFAULTS}
    flags = {key: value for key, value in flags.items() if value is not None}

    values = dict(DEFAULTS)
    for layer in (read_config_file(args.config_file), read_environment(environ), flags):
        for key, value in layer.items():
            values[key] = _coerce(key, value)

    for key in MANDATORY:
        if not values.get(key):
            raise ConfigError(f"{key} is a mandatory input")

    # Basic auth separates login and password with ':'
    if ':' in values['wallix-username']:
        raise ConfigError("wallix-username must not contain ':'")

    if not values['telemetry-path'].startswith('/'):
        values['telemetry-path'] = '/' + values['telemetry-path']

    return ExporterConfig.from_dict(values)

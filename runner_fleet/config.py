"""
Fleet Configuration Module

Builds an immutable configuration from the process environment, a .env file
and an optional YAML settings file.
"""

import os
import re
import socket
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple

import yaml

from .errors import ConfigError

DEFAULT_SETTINGS_FILE = 'fleet.yaml'
REPOSITORY_PATTERN = re.compile(r'^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$')
LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')


@dataclass(frozen=True)
class TargetScope:
    """Repository or organization the runners register against"""

    kind: str
    path: str

    @property
    def api_path(self) -> str:
        """Path prefix for API calls (e.g. 'repos/owner/repo', 'orgs/acme')"""
        return f"{self.kind}/{self.path}"

    def registration_url(self, web_url: str) -> str:
        """URL passed to the runner's configure step"""
        return f"{web_url.rstrip('/')}/{self.path}"


@dataclass(frozen=True)
class FleetConfig:
    """Configuration for the supervisor, reconciler and teardown coordinator"""

    # Remote platform
    repository: str = ''
    organization: str = ''
    access_token: str = field(default='', repr=False)
    api_url: str = 'https://api.github.com'
    web_url: str = 'https://github.com'
    api_timeout: int = 30

    # Fleet identity
    service_name: str = ''
    environment: str = ''

    # Runner binary
    runner_name: str = ''
    work_dir: str = '_work'
    group: str = 'Default'
    labels: Tuple[str, ...] = ('self-hosted', 'Linux', 'X64')
    runner_home: Path = Path('/home/runner')
    connect_timeout: int = 180
    stop_timeout: int = 30

    # Container runtime
    compose_file: Optional[Path] = None
    project_dir: Path = Path('.')
    runner_service: str = 'runner'
    cache_service: str = 'cache'
    build_image: bool = True
    lock_file: Optional[Path] = Path('.runner-fleet.lock')

    # Logging
    log_level: str = 'INFO'
    log_file: Optional[Path] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None,
                 env_file: Optional[Path] = Path('.env'),
                 settings_file: Optional[Path] = None) -> 'FleetConfig':
        """
        Build configuration from environment, .env and YAML settings

        Process environment wins over .env, which wins over the YAML
        settings file.

        Args:
            environ: Environment mapping (defaults to os.environ)
            env_file: Path of the .env file, None to skip
            settings_file: YAML settings path; FLEET_SETTINGS_FILE or
                fleet.yaml when omitted

        Returns:
            FleetConfig instance

        Raises:
            ConfigError: If a file cannot be parsed or a number is malformed
        """
        environ = dict(os.environ if environ is None else environ)

        if settings_file is None:
            settings_file = Path(environ.get('FLEET_SETTINGS_FILE', DEFAULT_SETTINGS_FILE))

        values: Dict[str, str] = {}
        values.update(load_settings_file(settings_file))
        if env_file is not None:
            values.update(load_env_file(env_file))
        values.update(environ)

        def get(key: str, default: str = '') -> str:
            return values.get(key, default).strip()

        labels = [label.strip() for label in get('RUNNER_LABELS', 'self-hosted,Linux,X64').split(',')]
        compose_file = get('COMPOSE_FILE')
        lock_file = get('FLEET_LOCK_FILE', '.runner-fleet.lock')
        log_file = get('LOG_FILE')

        return cls(
            repository=get('REPO'),
            organization=get('ORG'),
            access_token=get('ACCESS_TOKEN'),
            api_url=get('GITHUB_API_URL', 'https://api.github.com').rstrip('/'),
            web_url=get('GITHUB_URL', 'https://github.com').rstrip('/'),
            api_timeout=_parse_int('API_TIMEOUT', get('API_TIMEOUT', '30')),
            service_name=get('SERVICE_NAME'),
            environment=get('ENVIRONMENT'),
            runner_name=get('RUNNER_NAME') or socket.gethostname(),
            work_dir=get('RUNNER_WORKDIR', '_work'),
            group=get('RUNNER_GROUP', 'Default'),
            labels=tuple(label for label in labels if label),
            runner_home=Path(get('RUNNER_HOME', '/home/runner')),
            connect_timeout=_parse_int('RUNNER_CONNECT_TIMEOUT', get('RUNNER_CONNECT_TIMEOUT', '180')),
            stop_timeout=_parse_int('RUNNER_STOP_TIMEOUT', get('RUNNER_STOP_TIMEOUT', '30')),
            compose_file=Path(compose_file) if compose_file else None,
            project_dir=Path(get('FLEET_PROJECT_DIR', '.')),
            runner_service=get('RUNNER_SERVICE', 'runner'),
            cache_service=get('CACHE_SERVICE', 'cache'),
            build_image=get('FLEET_BUILD_IMAGE', 'true').lower() == 'true',
            lock_file=Path(lock_file) if lock_file else None,
            log_level=get('LOG_LEVEL', 'INFO').upper(),
            log_file=Path(log_file) if log_file else None,
        )

    @property
    def scope(self) -> Optional[TargetScope]:
        """Target scope, or None unless exactly one of repository/organization is set"""
        if self.repository and not self.organization:
            return TargetScope('repos', self.repository)
        if self.organization and not self.repository:
            return TargetScope('orgs', self.organization)
        return None

    def validate(self, fleet: bool = False) -> List[str]:
        """
        Validate configuration and return list of errors

        Args:
            fleet: Also require the fleet identity (service name, environment)

        Returns:
            List of human-readable problems, empty when valid
        """
        errors = []

        if self.repository and self.organization:
            errors.append("Set only one of REPO or ORG")
        elif not self.repository and not self.organization:
            errors.append("REPO (owner/repo) or ORG is required")
        elif self.repository and not REPOSITORY_PATTERN.match(self.repository):
            errors.append(f"Invalid REPO: {self.repository} (expected owner/repo)")

        if not self.access_token:
            errors.append("ACCESS_TOKEN is required")

        if fleet:
            if not self.service_name:
                errors.append("SERVICE_NAME is required")
            if not self.environment:
                errors.append("ENVIRONMENT is required")

        if self.api_timeout <= 0:
            errors.append(f"Invalid API_TIMEOUT: {self.api_timeout} (must be > 0)")

        if self.log_level not in LOG_LEVELS:
            errors.append(f"Invalid LOG_LEVEL: {self.log_level}")

        return errors

    def ensure_valid(self, fleet: bool = False):
        """Raise ConfigError listing every validation problem"""
        errors = self.validate(fleet=fleet)
        if errors:
            raise ConfigError("; ".join(errors))


def _parse_int(key: str, value: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got {value!r}") from None


def load_env_file(path: Path) -> Dict[str, str]:
    """
    Parse a .env file into a dictionary

    Blank lines and comments are skipped; an ``export`` prefix and matching
    surrounding quotes are stripped.

    Args:
        path: Path to the .env file

    Returns:
        Parsed key/value pairs (empty if the file does not exist)
    """
    values = {}
    if not path.exists():
        return values

    with open(path) as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith('#') or '=' not in line:
                continue
            if line.startswith('export '):
                line = line[len('export '):]
            key, value = line.split('=', 1)
            key = key.strip()
            value = value.strip()
            if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
                value = value[1:-1]
            if key and value:
                values[key] = value
    return values


def load_settings_file(path: Path) -> Dict[str, str]:
    """
    Load a YAML settings file using the same keys as the environment

    Args:
        path: Path to the YAML file

    Returns:
        Settings as strings (empty if the file does not exist)

    Raises:
        ConfigError: If the file is not valid YAML or not a mapping
    """
    if not path.exists():
        return {}

    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Cannot parse settings file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Settings file {path} must contain a mapping")

    values = {}
    for key, value in data.items():
        if value is None:
            continue
        if isinstance(value, bool):
            value = 'true' if value else 'false'
        elif isinstance(value, (list, tuple)):
            value = ','.join(str(item) for item in value)
        values[str(key)] = str(value)
    return values

"""
Credential Broker Module

Requests short-lived runner registration and removal tokens from the
platform API.
"""

import json
import logging
import urllib.error
import urllib.request
from enum import Enum
from typing import Dict, Optional

from .errors import BrokerUnreachable, ConfigError, InvalidToken, NetworkError

USER_AGENT = 'runner-fleet'


class TokenKind(Enum):
    """Token types issued by the platform"""

    REGISTRATION = 'registration-token'
    REMOVAL = 'remove-token'


class CredentialBroker:
    """Platform API client for runner tokens"""

    def __init__(self, config, logger: Optional[logging.Logger] = None):
        """
        Initialize broker client

        Args:
            config: FleetConfig instance
            logger: Logger instance
        """
        self.config = config
        self.logger = logger or logging.getLogger(__name__)

    def _headers(self) -> Dict[str, str]:
        return {
            'Authorization': f'token {self.config.access_token}',
            'Accept': 'application/vnd.github.v3+json',
            'User-Agent': USER_AGENT,
        }

    def _make_request(self, endpoint: str, method: str = 'GET') -> Dict:
        """
        Make an authenticated request scoped to the target repository/org

        Args:
            endpoint: API endpoint (e.g., 'actions/runners/registration-token')
            method: HTTP method (GET, POST, etc.)

        Returns:
            Response data as dictionary

        Raises:
            BrokerUnreachable: On transport errors
            InvalidToken: On HTTP error statuses or undecodable bodies
        """
        scope = self.config.scope
        if scope is None:
            raise ConfigError("Exactly one of REPO or ORG must be set")

        url = f"{self.config.api_url}/{scope.api_path}/{endpoint}"
        req = urllib.request.Request(url, headers=self._headers(), method=method)

        try:
            with urllib.request.urlopen(req, timeout=self.config.api_timeout) as response:
                body = response.read().decode('utf-8')
        except urllib.error.HTTPError as e:
            error_msg = e.read().decode('utf-8', 'replace') if e.fp else str(e)
            self.logger.error(f"Platform API error: {e.code} - {error_msg.strip()}")
            raise InvalidToken(f"{method} {endpoint} returned HTTP {e.code}") from e
        except (urllib.error.URLError, OSError) as e:
            self.logger.error(f"Request failed: {e}")
            raise BrokerUnreachable(f"Cannot reach {self.config.api_url}: {e}") from e

        try:
            data = json.loads(body) if body else {}
        except ValueError as e:
            raise InvalidToken(f"{method} {endpoint} returned a non-JSON body") from e
        return data if isinstance(data, dict) else {}

    def acquire(self, kind: TokenKind) -> str:
        """
        Mint a single-use token

        Every call consumes a fresh token on the platform; do not call twice
        expecting the same value.

        Args:
            kind: TokenKind.REGISTRATION or TokenKind.REMOVAL

        Returns:
            Token string

        Raises:
            BrokerUnreachable: If the API cannot be reached
            InvalidToken: If the response carries no usable token
        """
        self.logger.debug(f"Requesting {kind.value}...")
        response = self._make_request(f'actions/runners/{kind.value}', method='POST')
        token = response.get('token')

        if not token or token == 'null':
            raise InvalidToken(f"Failed to get {kind.value.replace('-', ' ')}")

        expires_at = response.get('expires_at')
        if expires_at:
            self.logger.debug(f"Obtained {kind.value} (expires: {expires_at})")
        return token

    def check_connectivity(self):
        """
        Probe the API root

        Raises:
            NetworkError: If the probe fails for any reason
        """
        url = f"{self.config.api_url}/zen"
        req = urllib.request.Request(url, headers={'User-Agent': USER_AGENT})
        try:
            with urllib.request.urlopen(req, timeout=self.config.api_timeout) as response:
                response.read()
        except (urllib.error.URLError, OSError) as e:
            raise NetworkError(
                f"Cannot reach {self.config.api_url}. Please check network connectivity. ({e})"
            ) from e

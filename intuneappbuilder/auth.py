# Copyright 2025 Roger Cibrian
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Microsoft Graph access tokens for publishing.

Credentials are read from INTUNE_* environment variables, optionally loaded
from a .env file:

- INTUNE_ACCESS_TOKEN: a pre-acquired token, used as-is when set
- INTUNE_TENANT_ID, INTUNE_CLIENT_ID, INTUNE_CLIENT_SECRET: app registration
  used for the client-credentials flow otherwise

Tokens from the client-credentials flow are cached and refreshed shortly
before they expire, so get_token can be handed to GraphClient directly.
"""

from __future__ import annotations

from collections.abc import Callable
import getpass
import os
import sys
import time

from dotenv import load_dotenv
import requests

from intuneappbuilder.exceptions import ConfigError, NetworkError

TOKEN_URL = "https://login.microsoftonline.com/{tenant}/oauth2/v2.0/token"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"


class CredentialManager:
    """Loads INTUNE_* environment variables and manages a cached token.

    Args:
        env_prefix: Prefix used for environment variables.
        refresh_margin: Seconds before real expiry when the token is
            proactively refreshed.
        session: Session used for the token request.
        clock: Wall clock returning epoch seconds.
    """

    def __init__(
        self,
        env_prefix: str = "INTUNE_",
        refresh_margin: int = 60,
        session: requests.Session | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        load_dotenv()
        self.env_prefix = env_prefix
        self.refresh_margin = refresh_margin
        self.session = session or requests.Session()
        self._clock = clock
        self._token: str | None = None
        self._token_expires_at: float | None = None

    # -------------------------------
    # Environment
    # -------------------------------

    def _env(self, key: str) -> str:
        full_key = f"{self.env_prefix}{key}"
        value = os.getenv(full_key)
        if not value:
            raise ConfigError(f"Missing required environment variable: {full_key}")
        return value

    def get_client_id(self) -> str:
        return self._env("CLIENT_ID")

    def get_tenant_id(self) -> str:
        return self._env("TENANT_ID")

    def get_client_secret(self) -> str:
        try:
            return self._env("CLIENT_SECRET")
        except ConfigError:
            if not sys.stdin.isatty():
                raise
            return getpass.getpass("Enter your client secret: ")

    # -------------------------------
    # Token handling
    # -------------------------------

    def _token_expired(self) -> bool:
        if self._token is None or self._token_expires_at is None:
            return True
        return self._clock() >= (self._token_expires_at - self.refresh_margin)

    def _fetch_token(self) -> None:
        """Performs the client-credentials flow and caches the token."""
        from intuneappbuilder.logging import get_global_logger

        logger = get_global_logger()
        tenant = self.get_tenant_id()
        url = TOKEN_URL.format(tenant=tenant)
        data = {
            "client_id": self.get_client_id(),
            "client_secret": self.get_client_secret(),
            "grant_type": "client_credentials",
            "scope": GRAPH_SCOPE,
        }

        logger.verbose("AUTH", f"Requesting access token for tenant {tenant}")
        try:
            response = self.session.post(url, data=data, timeout=60)
            response.raise_for_status()
            token_data = response.json()
            token = token_data["access_token"]
        except requests.RequestException as err:
            raise NetworkError(f"Failed to acquire access token: {err}") from err
        except (KeyError, ValueError) as err:
            raise NetworkError(f"Invalid token response from {url}") from err

        self._token = token
        # expires_in is seconds until expiry
        self._token_expires_at = self._clock() + int(token_data.get("expires_in", 0))

    def get_token(self) -> str:
        """Return a valid access token, refreshing it when necessary.

        A token set in INTUNE_ACCESS_TOKEN is returned without a request.

        Raises:
            ConfigError: If required credentials are missing.
            NetworkError: If the token request fails.
        """
        static = os.getenv(f"{self.env_prefix}ACCESS_TOKEN")
        if static:
            return static
        if self._token_expired():
            self._fetch_token()
        return self._token  # type: ignore[return-value]
